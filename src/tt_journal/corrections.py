"""Application of amend/split/merge events to reconstructed entries.

Corrections never touch stored events. They are replayed in their own
chronological order against a map of entries keyed by ID, producing the
effective view.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Iterable

from .errors import CorrectionError, InvalidReferenceError
from .models import (
    AmendPayload,
    Entry,
    Event,
    EventType,
    MergePayload,
    SplitPayload,
    decode_payload,
)
from .reconstruct import sort_events

logger = logging.getLogger(__name__)


def _fail(event: Event, reason: str) -> CorrectionError:
    return CorrectionError(reason, event.id, event.source, event.line)


def _apply_amend(entries: dict[str, Entry], event: Event, payload: AmendPayload) -> None:
    target = entries.get(payload.target)
    if target is None:
        raise _fail(event, f"amend target {payload.target!r} not found")

    if payload.start is not None:
        target.start = payload.start
    if payload.end is not None:
        target.end = payload.end
    if event.customer:
        target.customer = event.customer
    if event.project:
        target.project = event.project
    if event.activity:
        target.activity = event.activity
    if event.billable is not None:
        target.billable = event.billable
    if event.tags:
        target.tags = list(event.tags)
    if event.note:
        target.notes.append(event.note)


def _apply_split(entries: dict[str, Entry], event: Event, payload: SplitPayload) -> None:
    target = entries.get(payload.target)
    if target is None:
        raise _fail(event, f"split target {payload.target!r} not found")
    if target.end is None:
        raise _fail(event, f"split target {payload.target!r} is still running")
    if not (target.start < payload.split_at < target.end):
        raise _fail(event, f"split_at is outside the interval of {payload.target!r}")

    halves = []
    for suffix, start, end, note in (
        ("L", target.start, payload.split_at, payload.left_note),
        ("R", payload.split_at, target.end, payload.right_note),
    ):
        half = replace(
            target,
            id=f"{event.id}.{suffix}",
            start=start,
            end=end,
            notes=[note] if note else [],
            tags=list(event.tags) if event.tags else list(target.tags),
        )
        if event.customer:
            half.customer = event.customer
        if event.project:
            half.project = event.project
        if event.activity:
            half.activity = event.activity
        if event.billable is not None:
            half.billable = event.billable
        halves.append(half)

    del entries[payload.target]
    for half in halves:
        entries[half.id] = half


def _single_value(targets: list[Entry], field_name: str) -> bool:
    values = {getattr(t, field_name) for t in targets if getattr(t, field_name)}
    return len(values) <= 1


def _first_non_empty(targets: list[Entry], field_name: str) -> str:
    for t in targets:
        value = getattr(t, field_name)
        if value:
            return value
    return ""


def _apply_merge(entries: dict[str, Entry], event: Event, payload: MergePayload) -> None:
    targets = []
    for target_id in payload.targets:
        entry = entries.get(target_id)
        if entry is None:
            logger.debug("Merge %s: dropping unknown target %s", event.id, target_id)
            continue
        targets.append(entry)
    if not targets:
        raise _fail(event, "none of the merge targets exist")

    if not event.customer and not _single_value(targets, "customer"):
        raise _fail(event, "merge targets have conflicting customers")
    if not event.project and not _single_value(targets, "project"):
        raise _fail(event, "merge targets have conflicting projects")

    ends = [t.end for t in targets if t.end is not None]
    merged = Entry(
        id=event.id,
        start=min(t.start for t in targets),
        end=max(ends) if ends else None,
        customer=event.customer or _first_non_empty(targets, "customer"),
        project=event.project or _first_non_empty(targets, "project"),
        activity=event.activity or _first_non_empty(targets, "activity"),
        billable=event.billable if event.billable is not None else any(t.billable for t in targets),
        notes=[n for t in targets for n in t.notes],
        tags=[tag for t in targets for tag in t.tags],
        source=targets[0].source,
    )
    if event.note:
        merged.notes.append(event.note)

    for t in targets:
        del entries[t.id]
    entries[merged.id] = merged


def apply_corrections(
    base: Iterable[Entry],
    corrections: Iterable[Event],
    strict: bool = False,
) -> list[Entry]:
    """Apply correction events to base entries.

    The input entries are not modified. Output order is the insertion order
    of the effective map; callers re-sort for presentation.

    Args:
        base: Entries produced by reconstruction
        corrections: amend/split/merge events (other types are ignored)
        strict: Raise on the first invalid correction instead of skipping it

    Raises:
        CorrectionError: In strict mode, for an invalid correction.
    """
    entries: dict[str, Entry] = {e.id: e.copy() for e in base}

    for event in sort_events(corrections):
        try:
            payload = decode_payload(event)
            if event.type == EventType.AMEND:
                _apply_amend(entries, event, payload)
            elif event.type == EventType.SPLIT:
                _apply_split(entries, event, payload)
            elif event.type == EventType.MERGE:
                _apply_merge(entries, event, payload)
        except InvalidReferenceError as e:
            if strict:
                if isinstance(e, CorrectionError):
                    raise
                raise CorrectionError(e.reason, event.id, event.source, event.line) from e
            logger.warning("Skipping %s event: %s", event.type, e)

    return list(entries.values())
