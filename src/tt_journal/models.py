"""Data models for journal events, typed payloads and reconstructed entries."""

from __future__ import annotations

import json
import re
import time
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Optional, Union

from .errors import InvalidReferenceError


class EventType(str, Enum):
    """Kinds of journal events understood by reconstruction."""
    START = "start"
    STOP = "stop"
    NOTE = "note"
    ADD = "add"
    AMEND = "amend"
    SPLIT = "split"
    MERGE = "merge"


BASE_TYPES = frozenset(t.value for t in (EventType.START, EventType.STOP, EventType.NOTE, EventType.ADD))
CORRECTION_TYPES = frozenset(t.value for t in (EventType.AMEND, EventType.SPLIT, EventType.MERGE))

INTERVAL_SEPARATOR = ".."

_FRACTION_RE = re.compile(r"\.(\d+)")

# Escapes applied on top of compact JSON; part of the hashed byte format.
_HTML_SAFE = {
    "<": "\\u003c",
    ">": "\\u003e",
    "&": "\\u0026",
    "\u2028": "\\u2028",
    "\u2029": "\\u2029",
}


def utc_now() -> datetime:
    """Get current UTC time with timezone info."""
    return datetime.now(timezone.utc)


def new_event_id() -> str:
    """Generate a unique event ID in format tt_<unix-nanoseconds>."""
    return f"tt_{time.time_ns()}"


def format_timestamp(dt: datetime, precise: bool = True, nanos: int = 0) -> str:
    """Format datetime as RFC 3339.

    With ``precise`` the fractional seconds are kept with trailing zeros
    trimmed; otherwise they are dropped. ``nanos`` is the sub-microsecond
    remainder (0-999) appended to the fraction. A zero UTC offset renders
    as ``Z``.
    """
    offset = dt.utcoffset()
    if offset is None:
        raise ValueError(f"timestamp must be timezone-aware: {dt!r}")

    text = f"{dt.year:04d}-{dt.month:02d}-{dt.day:02d}T{dt.hour:02d}:{dt.minute:02d}:{dt.second:02d}"
    fraction = dt.microsecond * 1000 + nanos
    if precise and fraction:
        text += "." + f"{fraction:09d}".rstrip("0")

    if not offset:
        return text + "Z"
    total = int(offset.total_seconds())
    sign = "+" if total >= 0 else "-"
    total = abs(total)
    return f"{text}{sign}{total // 3600:02d}:{(total % 3600) // 60:02d}"


def split_timestamp(s: str) -> tuple[datetime, int]:
    """Parse an RFC 3339 timestamp, keeping nanosecond precision.

    Returns the instant truncated to microseconds and the remaining
    nanoseconds (0-999). Digits past the ninth are dropped. Timestamps
    without an offset are rejected.
    """
    text = s.strip()
    nanos = 0

    match = _FRACTION_RE.search(text)
    if match:
        digits = match.group(1)
        nanos = int(digits[6:9].ljust(3, "0"))
        text = text[:match.start()] + "." + digits[:6].ljust(6, "0") + text[match.end():]

    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    dt = datetime.fromisoformat(text)
    if dt.tzinfo is None:
        raise ValueError(f"timestamp has no UTC offset: {s!r}")
    return dt, nanos


def parse_timestamp(s: str) -> datetime:
    """Parse an RFC 3339 timestamp string.

    Fractions finer than microseconds are truncated; use
    :func:`split_timestamp` to keep them.
    """
    return split_timestamp(s)[0]


def try_parse_timestamp(s: Optional[str]) -> Optional[datetime]:
    """Parse a timestamp, returning None when absent or invalid."""
    if not s:
        return None
    try:
        return parse_timestamp(s)
    except ValueError:
        return None


def format_interval(start: datetime, end: datetime) -> str:
    """Encode an interval as ``<startISO>..<endISO>``."""
    return f"{format_timestamp(start, precise=False)}{INTERVAL_SEPARATOR}{format_timestamp(end, precise=False)}"


def parse_interval(ref: str) -> tuple[datetime, datetime]:
    """Decode ``<startISO>..<endISO>``.

    Raises:
        ValueError: If the string is not exactly two valid timestamps.
    """
    parts = ref.split(INTERVAL_SEPARATOR)
    if len(parts) != 2:
        raise ValueError("invalid ref format; expected startISO..endISO")
    return parse_timestamp(parts[0]), parse_timestamp(parts[1])


def parse_bool_flag(s: Optional[str]) -> Optional[bool]:
    """Parse a tri-state boolean; empty input means "inherit"."""
    if s is None or s == "":
        return None
    value = s.strip().lower()
    if value in ("true", "1", "yes", "y"):
        return True
    if value in ("false", "0", "no", "n"):
        return False
    raise ValueError(f"invalid boolean: {s}")


def dumps_compact(data: Any) -> str:
    """Serialize to compact JSON with HTML-safe escaping."""
    text = json.dumps(data, ensure_ascii=False, separators=(",", ":"))
    for char, escaped in _HTML_SAFE.items():
        if char in text:
            text = text.replace(char, escaped)
    return text


@dataclass(frozen=True)
class Event:
    """A single immutable journal record.

    ``ts`` holds microsecond precision; ``ts_nanos`` carries the remaining
    nanoseconds of the stored timestamp so it hashes exactly as written.
    ``source`` and ``line`` record where the event was read from; they are
    not part of the stored record.
    """
    id: str
    type: str
    ts: datetime
    user: str = ""
    customer: str = ""
    project: str = ""
    activity: str = ""
    billable: Optional[bool] = None
    note: str = ""
    tags: list[str] = field(default_factory=list)
    ref: str = ""
    meta: dict[str, str] = field(default_factory=dict)
    prev_hash: str = ""
    hash: str = ""
    ts_nanos: int = 0

    source: Optional[str] = field(default=None, compare=False, repr=False)
    line: int = field(default=0, compare=False, repr=False)

    def with_chain(self, prev_hash: str, hash: str) -> "Event":
        """Return a copy linked into a chain."""
        return replace(self, prev_hash=prev_hash, hash=hash)

    def ts_text(self) -> str:
        """The stored RFC 3339 form of ``ts``, nanoseconds included."""
        return format_timestamp(self.ts, nanos=self.ts_nanos)

    def to_dict(self) -> dict:
        """Convert event to its stored JSON shape, omitting empty fields."""
        data: dict[str, Any] = {
            "id": self.id,
            "type": self.type,
            "ts": self.ts_text(),
        }
        if self.user:
            data["user"] = self.user
        if self.customer:
            data["customer"] = self.customer
        if self.project:
            data["project"] = self.project
        if self.activity:
            data["activity"] = self.activity
        if self.billable is not None:
            data["billable"] = self.billable
        if self.note:
            data["note"] = self.note
        if self.tags:
            data["tags"] = list(self.tags)
        if self.ref:
            data["ref"] = self.ref
        if self.meta:
            data["meta"] = {k: self.meta[k] for k in sorted(self.meta)}
        if self.prev_hash:
            data["prev_hash"] = self.prev_hash
        if self.hash:
            data["hash"] = self.hash
        return data

    def to_json(self) -> str:
        """Serialize as a single journal line (without newline)."""
        return dumps_compact(self.to_dict())

    @classmethod
    def from_dict(cls, data: Any, source: Optional[str] = None, line: int = 0) -> "Event":
        """Build an event from a decoded JSON object.

        Raises:
            ValueError: If required fields are missing or mistyped.
        """
        if not isinstance(data, dict):
            raise ValueError("event record must be a JSON object")
        for key in ("id", "type", "ts"):
            if not isinstance(data.get(key), str):
                raise ValueError(f"event record missing string field {key!r}")

        billable = data.get("billable")
        if billable is not None and not isinstance(billable, bool):
            raise ValueError("billable must be a boolean")

        tags = data.get("tags") or []
        if not isinstance(tags, list) or not all(isinstance(t, str) for t in tags):
            raise ValueError("tags must be a list of strings")

        meta = data.get("meta") or {}
        if not isinstance(meta, dict):
            raise ValueError("meta must be an object")

        ts, ts_nanos = split_timestamp(data["ts"])

        return cls(
            id=data["id"],
            type=data["type"],
            ts=ts,
            user=data.get("user") or "",
            customer=data.get("customer") or "",
            project=data.get("project") or "",
            activity=data.get("activity") or "",
            billable=billable,
            note=data.get("note") or "",
            tags=list(tags),
            ref=data.get("ref") or "",
            meta={str(k): str(v) for k, v in meta.items()},
            prev_hash=data.get("prev_hash") or "",
            hash=data.get("hash") or "",
            ts_nanos=ts_nanos,
            source=source,
            line=line,
        )

    @classmethod
    def from_json(cls, text: str, source: Optional[str] = None, line: int = 0) -> "Event":
        """Parse a single journal line."""
        return cls.from_dict(json.loads(text), source=source, line=line)


# ========== Typed payloads ==========


@dataclass(frozen=True)
class IntervalPayload:
    """Closed interval carried by an ``add`` event."""
    start: datetime
    end: datetime


@dataclass(frozen=True)
class AmendPayload:
    """Target and optional new boundaries of an ``amend`` event."""
    target: str
    start: Optional[datetime] = None
    end: Optional[datetime] = None


@dataclass(frozen=True)
class SplitPayload:
    """Target, split point and per-half notes of a ``split`` event."""
    target: str
    split_at: datetime
    left_note: str = ""
    right_note: str = ""


@dataclass(frozen=True)
class MergePayload:
    """Ordered target IDs of a ``merge`` event."""
    targets: tuple[str, ...]


Payload = Union[IntervalPayload, AmendPayload, SplitPayload, MergePayload]


def _target_of(event: Event) -> str:
    target = event.ref or event.meta.get("target", "")
    if not target:
        raise InvalidReferenceError(
            f"{event.type} event has no target", event.id, event.source, event.line
        )
    return target


def decode_payload(event: Event) -> Optional[Payload]:
    """Decode the type-specific payload of an event.

    Returns None for event types without a payload.

    Raises:
        InvalidReferenceError: If the payload is missing or malformed.
    """
    if event.type == EventType.ADD:
        try:
            start, end = parse_interval(event.ref)
        except ValueError as e:
            raise InvalidReferenceError(str(e), event.id, event.source, event.line) from e
        return IntervalPayload(start=start, end=end)

    if event.type == EventType.AMEND:
        return AmendPayload(
            target=_target_of(event),
            start=try_parse_timestamp(event.meta.get("start")),
            end=try_parse_timestamp(event.meta.get("end")),
        )

    if event.type == EventType.SPLIT:
        target = _target_of(event)
        split_at = try_parse_timestamp(event.meta.get("split_at"))
        if split_at is None:
            raise InvalidReferenceError(
                "split event has no valid split_at", event.id, event.source, event.line
            )
        return SplitPayload(
            target=target,
            split_at=split_at,
            left_note=event.meta.get("left_note", ""),
            right_note=event.meta.get("right_note", ""),
        )

    if event.type == EventType.MERGE:
        targets = []
        for part in event.meta.get("targets", "").split(","):
            part = part.strip()
            if part and part not in targets:
                targets.append(part)
        if not targets:
            raise InvalidReferenceError(
                "merge event has no targets", event.id, event.source, event.line
            )
        return MergePayload(targets=tuple(targets))

    return None


# ========== Entries ==========


@dataclass
class Entry:
    """A materialized time entry derived from events."""
    id: str
    start: datetime
    end: Optional[datetime] = None
    customer: str = ""
    project: str = ""
    activity: str = ""
    billable: bool = True
    notes: list[str] = field(default_factory=list)
    tags: list[str] = field(default_factory=list)
    source: Optional[str] = None  # Journal file the entry originated from

    @property
    def is_running(self) -> bool:
        return self.end is None

    def duration(self, now: Optional[datetime] = None) -> timedelta:
        """Length of the entry; running entries are measured up to ``now``."""
        end = self.end
        if end is None:
            if now is None:
                return timedelta(0)
            end = now
        return end - self.start

    def overlaps(self, start: datetime, end: datetime) -> bool:
        """Whether the entry intersects the closed range [start, end]."""
        if self.start > end:
            return False
        return self.end is None or self.end >= start

    def copy(self) -> "Entry":
        return replace(self, notes=list(self.notes), tags=list(self.tags))

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "start": format_timestamp(self.start),
            "end": format_timestamp(self.end) if self.end is not None else None,
            "customer": self.customer,
            "project": self.project,
            "activity": self.activity,
            "billable": self.billable,
            "notes": list(self.notes),
            "tags": list(self.tags),
            "source": self.source,
        }


# ========== Event factories ==========


def new_start_event(
    id: str,
    ts: datetime,
    customer: str = "",
    project: str = "",
    activity: str = "",
    billable: Optional[bool] = None,
    note: str = "",
    tags: Optional[list[str]] = None,
    auto_stop: Optional[datetime] = None,
) -> Event:
    meta = {}
    if auto_stop is not None:
        meta["auto_stop"] = format_timestamp(auto_stop, precise=False)
    return Event(
        id=id,
        type=EventType.START.value,
        ts=ts,
        customer=customer,
        project=project,
        activity=activity,
        billable=billable,
        note=note,
        tags=list(tags or []),
        meta=meta,
    )


def new_stop_event(id: str, ts: datetime) -> Event:
    return Event(id=id, type=EventType.STOP.value, ts=ts)


def new_note_event(id: str, ts: datetime, note: str) -> Event:
    return Event(id=id, type=EventType.NOTE.value, ts=ts, note=note)


def new_add_event(
    id: str,
    ts: datetime,
    start: datetime,
    end: datetime,
    customer: str = "",
    project: str = "",
    activity: str = "",
    billable: Optional[bool] = None,
    note: str = "",
    tags: Optional[list[str]] = None,
) -> Event:
    """Create an ``add`` event; ``ts`` is the journal time, not the interval."""
    return Event(
        id=id,
        type=EventType.ADD.value,
        ts=ts,
        customer=customer,
        project=project,
        activity=activity,
        billable=billable,
        note=note,
        tags=list(tags or []),
        ref=format_interval(start, end),
    )


def new_amend_event(
    id: str,
    ts: datetime,
    target: str,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    customer: str = "",
    project: str = "",
    activity: str = "",
    billable: Optional[bool] = None,
    note: str = "",
    tags: Optional[list[str]] = None,
) -> Event:
    meta = {}
    if start is not None:
        meta["start"] = format_timestamp(start, precise=False)
    if end is not None:
        meta["end"] = format_timestamp(end, precise=False)
    return Event(
        id=id,
        type=EventType.AMEND.value,
        ts=ts,
        ref=target,
        customer=customer,
        project=project,
        activity=activity,
        billable=billable,
        note=note,
        tags=list(tags or []),
        meta=meta,
    )


def new_split_event(
    id: str,
    ts: datetime,
    target: str,
    split_at: datetime,
    left_note: str = "",
    right_note: str = "",
    customer: str = "",
    project: str = "",
    activity: str = "",
    billable: Optional[bool] = None,
    tags: Optional[list[str]] = None,
) -> Event:
    meta = {"split_at": format_timestamp(split_at, precise=False)}
    if left_note:
        meta["left_note"] = left_note
    if right_note:
        meta["right_note"] = right_note
    return Event(
        id=id,
        type=EventType.SPLIT.value,
        ts=ts,
        ref=target,
        customer=customer,
        project=project,
        activity=activity,
        billable=billable,
        tags=list(tags or []),
        meta=meta,
    )


def new_merge_event(
    id: str,
    ts: datetime,
    targets: list[str],
    customer: str = "",
    project: str = "",
    activity: str = "",
    billable: Optional[bool] = None,
    note: str = "",
) -> Event:
    ids = [t.strip() for t in targets if t.strip()]
    if not ids:
        raise ValueError("merge requires at least one target")
    return Event(
        id=id,
        type=EventType.MERGE.value,
        ts=ts,
        customer=customer,
        project=project,
        activity=activity,
        billable=billable,
        note=note,
        meta={"targets": ",".join(ids)},
    )
