"""Core journal engine - append-only writes and entry materialization."""

from __future__ import annotations

import logging
from datetime import date, datetime, time, timedelta
from pathlib import Path
from typing import Callable, Iterable, Optional, Union

from .audit import AuditSummary, RepairSummary, repair_tree, verify_tree
from .config import JournalConfig
from .corrections import apply_corrections
from .errors import JournalError
from .files import anchor_path_for, day_path, journal_path_for, parse_events, read_anchor
from .hashing import write_scheme
from .locking import atomic_write_text, file_lock
from .models import (
    Entry,
    Event,
    EventType,
    new_event_id,
    new_start_event,
    new_stop_event,
    try_parse_timestamp,
)
from .reconstruct import partition_events, reconstruct_base

logger = logging.getLogger(__name__)

DayLike = Union[date, datetime]


def materialize_entries(events: Iterable[Event], strict: bool = False) -> list[Entry]:
    """Replay events into the effective entries (base replay, then corrections)."""
    base_events, corrections = partition_events(events)
    base = reconstruct_base(base_events, strict=strict)
    return apply_corrections(base, corrections, strict=strict)


class JournalEngine:
    """Repository over one journal tree.

    Construct once per process and hand it to collaborators. ``now`` and
    ``id_factory`` are injectable for deterministic tests.
    """

    def __init__(
        self,
        config: JournalConfig,
        now: Optional[Callable[[], datetime]] = None,
        id_factory: Optional[Callable[[], str]] = None,
    ):
        self.config = config
        self.timezone = config.get_timezone()
        self._now = now or (lambda: datetime.now(self.timezone))
        self._id_factory = id_factory or new_event_id

    @property
    def root(self) -> Path:
        return self.config.journal_root

    def now(self) -> datetime:
        return self._now()

    def new_id(self) -> str:
        return self._id_factory()

    def _strict(self, strict: Optional[bool]) -> bool:
        return self.config.strict if strict is None else strict

    def _as_day(self, value: DayLike) -> date:
        if isinstance(value, datetime):
            if value.tzinfo is not None:
                return value.astimezone(self.timezone).date()
            return value.date()
        return value

    # ========== Paths ==========

    def journal_path_for(self, ts: datetime) -> Path:
        """Get path to journal file for the local calendar day of ``ts``."""
        return journal_path_for(self.root, ts, self.timezone)

    def anchor_path_for(self, path: Path) -> Path:
        return anchor_path_for(path)

    def read_anchor(self, path: Path) -> str:
        """Current anchor of a journal file; empty if file or anchor is absent."""
        if not path.exists():
            return ""
        return read_anchor(path) or ""

    # ========== Writer ==========

    def write_event(self, event: Event) -> Event:
        """Append an event to its day file and advance the anchor.

        Returns:
            The stored event with ``prev_hash`` and ``hash`` set.

        Raises:
            OSError: On any open/write failure (not rolled back).
            JournalLockError: If the day file lock cannot be acquired.
        """
        path = self.journal_path_for(event.ts)

        if not self.config.lock_writes:
            return self._append(path, event)

        with file_lock(path, timeout=self.config.lock_timeout):
            return self._append(path, event)

    def _append(self, path: Path, event: Event) -> Event:
        prev = self.read_anchor(path)
        stored = event.with_chain(prev, write_scheme().compute(event, prev))

        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "a", encoding="utf-8", newline="") as f:
            f.write(stored.to_json() + "\n")

        atomic_write_text(self.anchor_path_for(path), stored.hash)

        logger.debug("Appended %s event %s to %s", stored.type, stored.id, path)
        return stored

    def switch(
        self,
        customer: str = "",
        project: str = "",
        activity: str = "",
        billable: Optional[bool] = True,
        note: str = "",
        tags: Optional[list[str]] = None,
    ) -> Event:
        """Stop the current entry and start a new one at the same instant."""
        ts = self.now()
        self.write_event(new_stop_event(self.new_id(), ts))
        return self.write_event(new_start_event(
            self.new_id(),
            ts,
            customer=customer,
            project=project,
            activity=activity,
            billable=billable,
            note=note,
            tags=tags,
        ))

    # ========== Readers ==========

    def read_events(self, path: Path, strict: Optional[bool] = None) -> list[Event]:
        """Read the events of one day file in storage order."""
        return parse_events(path, strict=self._strict(strict))

    def events_between(self, from_: DayLike, to: DayLike, strict: Optional[bool] = None) -> list[Event]:
        """Gather events of every calendar day from ``from_`` to ``to`` inclusive."""
        day = self._as_day(from_)
        last = self._as_day(to)
        events: list[Event] = []
        while day <= last:
            events.extend(self.read_events(day_path(self.root, day), strict=strict))
            day += timedelta(days=1)
        return events

    def load_entries(self, from_: DayLike, to: DayLike, strict: Optional[bool] = None) -> list[Entry]:
        """Materialize entries intersecting the calendar days ``from_``..``to``.

        Bounds are widened to whole local days. Entries are sorted by start.

        Raises:
            JournalParseError, ReconstructionError, CorrectionError: In strict mode.
        """
        strict = self._strict(strict)
        first = self._as_day(from_)
        last = self._as_day(to)

        entries = materialize_entries(self.events_between(first, last, strict=strict), strict=strict)

        lo = datetime.combine(first, time.min, tzinfo=self.timezone)
        hi = datetime.combine(last, time.max, tzinfo=self.timezone)
        return sorted((e for e in entries if e.overlaps(lo, hi)), key=lambda e: e.start)

    # ========== Auto-stop sweep ==========

    def sweep_auto_stops(self) -> list[Event]:
        """Write stop events for running entries whose scheduled auto-stop is due.

        Start events carry the schedule in ``meta["auto_stop"]``. The check
        uses the corrected view, so entries closed, split or merged since
        are left alone.

        Returns:
            The stop events written.
        """
        now = self.now()
        today = self._as_day(now)

        events: list[Event] = []
        due: dict[str, datetime] = {}
        for offset in range(self.config.auto_stop_scan_days - 1, -1, -1):
            day_events = parse_events(day_path(self.root, today - timedelta(days=offset)))
            events.extend(day_events)
            for event in day_events:
                if event.type != EventType.START:
                    continue
                auto_stop = try_parse_timestamp(event.meta.get("auto_stop"))
                if auto_stop is not None and auto_stop <= now:
                    due[event.id] = auto_stop

        if not due:
            return []

        current = {e.id: e for e in materialize_entries(events)}
        written: list[Event] = []
        for start_id, auto_stop in due.items():
            entry = current.get(start_id)
            if entry is None or not entry.is_running:
                continue
            try:
                written.append(self.write_event(new_stop_event(self.new_id(), auto_stop)))
            except (OSError, JournalError) as e:
                logger.warning("Failed to write auto-stop for start %s: %s", start_id, e)
        return written

    # ========== Audit ==========

    def audit_verify(self) -> AuditSummary:
        """Verify every day file of this journal."""
        return verify_tree(self.root)

    def audit_repair(self, dry_run: bool = True, apply: bool = False) -> RepairSummary:
        """Repair every day file of this journal."""
        return repair_tree(self.root, dry_run=dry_run, apply=apply)
