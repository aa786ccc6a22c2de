"""Replay of base events (start/stop/note/add) into entries."""

from __future__ import annotations

import logging
from typing import Iterable, Optional

from .errors import InvalidReferenceError, ReconstructionError
from .models import BASE_TYPES, CORRECTION_TYPES, Entry, Event, EventType, IntervalPayload, decode_payload

logger = logging.getLogger(__name__)


def sort_events(events: Iterable[Event]) -> list[Event]:
    """Sort events by ``ts``; equal timestamps keep their input order."""
    return sorted(events, key=lambda e: e.ts)


def partition_events(events: Iterable[Event]) -> tuple[list[Event], list[Event]]:
    """Split events into (base, corrections); other types are dropped."""
    base: list[Event] = []
    corrections: list[Event] = []
    for event in events:
        if event.type in BASE_TYPES:
            base.append(event)
        elif event.type in CORRECTION_TYPES:
            corrections.append(event)
    return base, corrections


def _open_entry(event: Event) -> Entry:
    entry = Entry(
        id=event.id,
        start=event.ts,
        customer=event.customer,
        project=event.project,
        activity=event.activity,
        billable=True if event.billable is None else event.billable,
        tags=list(event.tags),
        source=event.source,
    )
    if event.note:
        entry.notes.append(event.note)
    return entry


def reconstruct_base(events: Iterable[Event], strict: bool = False) -> list[Entry]:
    """Replay base events into entries.

    Entries are emitted in the order their closing event (or end of stream)
    is processed. A running entry at end of stream has ``end=None``.

    Args:
        events: Events in storage order; non-base types are ignored
        strict: Raise on an invalid ``add`` instead of skipping it

    Raises:
        ReconstructionError: In strict mode, for an ``add`` with a bad interval.
    """
    entries: list[Entry] = []
    current: Optional[Entry] = None

    for event in sort_events(events):
        if event.type == EventType.START:
            if current is not None:
                current.end = event.ts
                entries.append(current)
            current = _open_entry(event)

        elif event.type == EventType.NOTE:
            if current is not None and event.note:
                current.notes.append(event.note)

        elif event.type == EventType.STOP:
            if current is not None:
                current.end = event.ts
                entries.append(current)
                current = None

        elif event.type == EventType.ADD:
            try:
                payload = decode_payload(event)
            except InvalidReferenceError as e:
                if strict:
                    raise ReconstructionError(e.reason, event.id, event.source, event.line) from e
                logger.warning("Skipping add event: %s", e)
                continue
            assert isinstance(payload, IntervalPayload)
            entry = Entry(
                id=event.id,
                start=payload.start,
                end=payload.end,
                customer=event.customer,
                project=event.project,
                activity=event.activity,
                billable=True if event.billable is None else event.billable,
                tags=list(event.tags),
                source=event.source,
            )
            if event.note:
                entry.notes.append(event.note)
            entries.append(entry)

    if current is not None:
        entries.append(current)

    return entries
