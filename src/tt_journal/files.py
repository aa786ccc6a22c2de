"""Journal file layout: ``<root>/<YYYY>/<MM>/<YYYY-MM-DD>.jsonl`` plus anchors."""

from __future__ import annotations

import json
import logging
from datetime import date, datetime, tzinfo
from pathlib import Path
from typing import Iterator, Optional

from .errors import JournalParseError
from .models import Event

logger = logging.getLogger(__name__)

JOURNAL_SUFFIX = ".jsonl"
ANCHOR_SUFFIX = ".hash"


def day_path(root: Path, day: date) -> Path:
    """Path of the journal file for a calendar day."""
    return root / f"{day:%Y}" / f"{day:%m}" / f"{day:%Y-%m-%d}{JOURNAL_SUFFIX}"


def journal_path_for(root: Path, ts: datetime, tz: tzinfo) -> Path:
    """Path of the journal file holding ``ts`` in the local calendar of ``tz``."""
    return day_path(root, ts.astimezone(tz).date())


def anchor_path_for(journal_path: Path) -> Path:
    """Sibling anchor file: ``.jsonl`` replaced by ``.hash``."""
    return journal_path.with_suffix(ANCHOR_SUFFIX)


def read_anchor(journal_path: Path) -> Optional[str]:
    """Return the trimmed anchor for a journal file, or None if absent."""
    anchor_path = anchor_path_for(journal_path)
    if not anchor_path.exists():
        return None
    return anchor_path.read_text(encoding="utf-8").strip()


def read_lines(path: Path) -> list[str]:
    """Read a journal file as raw lines without line terminators."""
    content = path.read_text(encoding="utf-8")
    lines = content.split("\n")
    if lines and lines[-1] == "":
        lines.pop()
    return [line[:-1] if line.endswith("\r") else line for line in lines]


def iter_journal_files(root: Path) -> Iterator[Path]:
    """Yield every journal file under ``root`` in path order."""
    if not root.exists():
        return
    for path in sorted(root.rglob(f"*{JOURNAL_SUFFIX}")):
        if path.is_file():
            yield path


def parse_events(path: Path, strict: bool = False) -> list[Event]:
    """Parse all events of one journal file in storage order.

    A missing file yields no events. Malformed lines raise in strict mode and
    are skipped with a warning otherwise.

    Raises:
        JournalParseError: In strict mode, for a malformed line.
    """
    if not path.exists():
        return []

    events: list[Event] = []
    malformed_count = 0

    for line_no, raw in enumerate(read_lines(path), start=1):
        text = raw.strip()
        if not text:
            continue
        try:
            events.append(Event.from_json(text, source=str(path), line=line_no))
        except (json.JSONDecodeError, ValueError) as e:
            if strict:
                raise JournalParseError(str(e), str(path), line_no) from e
            malformed_count += 1
            logger.warning("Skipping malformed line %s:%d: %s", path, line_no, e)

    if malformed_count > 0:
        logger.warning("Skipped %d malformed line(s) in %s", malformed_count, path)

    return events
