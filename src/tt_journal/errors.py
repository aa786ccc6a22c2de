"""Exception hierarchy for journal operations."""

from __future__ import annotations

from typing import Optional


class JournalError(Exception):
    """Base exception for journal operations."""
    pass


class JournalParseError(JournalError):
    """Raised when a journal line is not a valid event record.

    Carries the file path and 1-based line number when known.
    """

    def __init__(self, reason: str, path: Optional[str] = None, line: int = 0):
        self.reason = reason
        self.path = path
        self.line = line
        super().__init__(self._format())

    def _format(self) -> str:
        if self.path and self.line > 0:
            return f"parse error {self.path}:{self.line}: {self.reason}"
        if self.path:
            return f"parse error {self.path}: {self.reason}"
        if self.line > 0:
            return f"parse error line {self.line}: {self.reason}"
        return f"parse error: {self.reason}"


class InvalidReferenceError(JournalError):
    """Raised when an event references an invalid interval or entry."""

    def __init__(
        self,
        reason: str,
        event_id: Optional[str] = None,
        path: Optional[str] = None,
        line: int = 0,
    ):
        self.reason = reason
        self.event_id = event_id
        self.path = path
        self.line = line
        where = ""
        if path and line > 0:
            where = f" at {path}:{line}"
        elif path:
            where = f" in {path}"
        subject = f"event {event_id}" if event_id else "event"
        super().__init__(f"{subject}{where}: {reason}")


class ReconstructionError(InvalidReferenceError):
    """Raised in strict mode when a base event cannot be replayed."""
    pass


class CorrectionError(InvalidReferenceError):
    """Raised in strict mode when an amend/split/merge cannot be applied."""
    pass


class JournalLockError(JournalError):
    """Raised when the journal file lock cannot be acquired."""
    pass


class RepairError(JournalError):
    """Raised when a repair cannot be completed."""
    pass
