"""Tests for event models, timestamps and payload decoding."""

import json
from datetime import datetime, timedelta, timezone

import pytest

from conftest import utc
from tt_journal.errors import InvalidReferenceError
from tt_journal.models import (
    AmendPayload,
    Entry,
    Event,
    EventType,
    IntervalPayload,
    MergePayload,
    SplitPayload,
    decode_payload,
    dumps_compact,
    format_interval,
    format_timestamp,
    new_add_event,
    new_amend_event,
    new_event_id,
    new_merge_event,
    new_split_event,
    new_start_event,
    parse_bool_flag,
    parse_interval,
    parse_timestamp,
    split_timestamp,
    try_parse_timestamp,
)


class TestTimestamps:
    """Tests for RFC 3339 formatting and parsing."""

    def test_format_utc_uses_z(self):
        assert format_timestamp(utc(2025, 1, 7, 9, 0)) == "2025-01-07T09:00:00Z"

    def test_format_trims_fraction(self):
        ts = utc(2025, 1, 7, 9, 0, 0, 500000)
        assert format_timestamp(ts) == "2025-01-07T09:00:00.5Z"
        assert format_timestamp(ts, precise=False) == "2025-01-07T09:00:00Z"

    def test_format_offsets(self):
        plus_two = datetime(2025, 1, 7, 9, 0, tzinfo=timezone(timedelta(hours=2)))
        minus = datetime(2025, 1, 7, 9, 0, tzinfo=timezone(-timedelta(hours=5, minutes=30)))
        assert format_timestamp(plus_two) == "2025-01-07T09:00:00+02:00"
        assert format_timestamp(minus) == "2025-01-07T09:00:00-05:30"

    def test_format_rejects_naive(self):
        with pytest.raises(ValueError):
            format_timestamp(datetime(2025, 1, 7, 9, 0))

    def test_parse_truncates_nanoseconds(self):
        ts = parse_timestamp("2025-01-07T09:00:00.123456789Z")
        assert ts.microsecond == 123456
        assert ts == utc(2025, 1, 7, 9, 0, 0, 123456)

    def test_split_keeps_nanoseconds(self):
        ts, nanos = split_timestamp("2025-01-07T09:00:00.123456789Z")
        assert ts == utc(2025, 1, 7, 9, 0, 0, 123456)
        assert nanos == 789

    def test_split_short_fraction(self):
        assert split_timestamp("2025-01-07T09:00:00.1234567+02:00")[1] == 700
        assert split_timestamp("2025-01-07T09:00:00.5Z")[1] == 0

    def test_format_with_nanoseconds(self):
        ts = utc(2025, 1, 7, 9, 0, 0, 123456)
        assert format_timestamp(ts, nanos=789) == "2025-01-07T09:00:00.123456789Z"
        assert format_timestamp(ts, nanos=700) == "2025-01-07T09:00:00.1234567Z"
        assert format_timestamp(utc(2025, 1, 7, 9, 0), nanos=5) == "2025-01-07T09:00:00.000000005Z"

    def test_parse_short_fraction(self):
        assert parse_timestamp("2025-01-07T09:00:00.5Z").microsecond == 500000

    def test_parse_offset(self):
        ts = parse_timestamp("2025-01-07T10:00:00+01:00")
        assert ts == utc(2025, 1, 7, 9, 0)

    def test_parse_rejects_naive(self):
        with pytest.raises(ValueError):
            parse_timestamp("2025-01-07T09:00:00")

    def test_try_parse(self):
        assert try_parse_timestamp(None) is None
        assert try_parse_timestamp("") is None
        assert try_parse_timestamp("not a time") is None
        assert try_parse_timestamp("2025-01-07T09:00:00Z") == utc(2025, 1, 7, 9, 0)


class TestIntervals:
    """Tests for the ``start..end`` interval encoding."""

    def test_format_interval(self):
        ref = format_interval(utc(2025, 1, 7, 9, 0), utc(2025, 1, 7, 10, 0))
        assert ref == "2025-01-07T09:00:00Z..2025-01-07T10:00:00Z"

    def test_parse_interval(self):
        start, end = parse_interval("2025-01-07T09:00:00Z..2025-01-07T10:00:00Z")
        assert start == utc(2025, 1, 7, 9, 0)
        assert end == utc(2025, 1, 7, 10, 0)

    @pytest.mark.parametrize("ref", [
        "",
        "2025-01-07T09:00:00Z",
        "2025-01-07T09:00:00Z..",
        "a..b..c",
        "garbage..2025-01-07T10:00:00Z",
    ])
    def test_parse_interval_invalid(self, ref):
        with pytest.raises(ValueError):
            parse_interval(ref)


class TestHelpers:
    """Tests for small helpers."""

    @pytest.mark.parametrize("text,expected", [
        (None, None),
        ("", None),
        ("true", True),
        ("Yes", True),
        ("1", True),
        ("false", False),
        ("n", False),
        ("0", False),
    ])
    def test_parse_bool_flag(self, text, expected):
        assert parse_bool_flag(text) is expected

    def test_parse_bool_flag_invalid(self):
        with pytest.raises(ValueError):
            parse_bool_flag("maybe")

    def test_new_event_id_format(self):
        event_id = new_event_id()
        assert event_id.startswith("tt_")
        assert event_id[3:].isdigit()

    def test_dumps_compact_html_safe(self):
        text = dumps_compact({"note": "<a & b>\u2028\u2029"})
        assert text == '{"note":"\\u003ca \\u0026 b\\u003e\\u2028\\u2029"}'
        assert json.loads(text) == {"note": "<a & b>\u2028\u2029"}

    def test_dumps_compact_keeps_unicode(self):
        assert dumps_compact({"note": "café"}) == '{"note":"café"}'


class TestEvent:
    """Tests for the stored event record."""

    def test_to_dict_omits_empty_fields(self):
        event = Event(id="e1", type="stop", ts=utc(2025, 1, 7, 9, 0))
        assert event.to_dict() == {"id": "e1", "type": "stop", "ts": "2025-01-07T09:00:00Z"}

    def test_to_dict_field_order(self):
        event = Event(
            id="e1",
            type="start",
            ts=utc(2025, 1, 7, 9, 0),
            user="ann",
            customer="acme",
            project="web",
            activity="dev",
            billable=False,
            note="n",
            tags=["x"],
            ref="r",
            meta={"z": "1", "a": "2"},
            prev_hash="p",
            hash="h",
        )
        data = event.to_dict()
        assert list(data) == [
            "id", "type", "ts", "user", "customer", "project", "activity",
            "billable", "note", "tags", "ref", "meta", "prev_hash", "hash",
        ]
        assert list(data["meta"]) == ["a", "z"]

    def test_billable_false_is_kept(self):
        event = Event(id="e1", type="start", ts=utc(2025, 1, 7, 9, 0), billable=False)
        assert event.to_dict()["billable"] is False

    def test_json_roundtrip(self):
        event = new_start_event(
            "e1", utc(2025, 1, 7, 9, 0), customer="acme", billable=True, note="hi", tags=["a"]
        ).with_chain("", "abc")
        parsed = Event.from_json(event.to_json(), source="f.jsonl", line=3)
        assert parsed == event
        assert parsed.source == "f.jsonl"
        assert parsed.line == 3

    def test_stored_nanoseconds_survive_roundtrip(self):
        line = '{"id":"e1","type":"start","ts":"2025-01-07T09:00:00.123456789Z"}'
        event = Event.from_json(line)
        assert event.ts == utc(2025, 1, 7, 9, 0, 0, 123456)
        assert event.ts_nanos == 789
        assert event.ts_text() == "2025-01-07T09:00:00.123456789Z"
        assert event.to_json() == line

    def test_with_chain_returns_copy(self):
        event = Event(id="e1", type="stop", ts=utc(2025, 1, 7, 9, 0))
        chained = event.with_chain("prev", "next")
        assert event.hash == ""
        assert chained.prev_hash == "prev"
        assert chained.hash == "next"

    @pytest.mark.parametrize("data", [
        [],
        {"type": "start", "ts": "2025-01-07T09:00:00Z"},
        {"id": "e1", "ts": "2025-01-07T09:00:00Z"},
        {"id": "e1", "type": "start"},
        {"id": "e1", "type": "start", "ts": "2025-01-07T09:00:00Z", "billable": "yes"},
        {"id": "e1", "type": "start", "ts": "2025-01-07T09:00:00Z", "tags": "a"},
        {"id": "e1", "type": "start", "ts": "2025-01-07T09:00:00Z", "meta": "x"},
        {"id": "e1", "type": "start", "ts": "yesterday"},
    ])
    def test_from_dict_rejects_invalid(self, data):
        with pytest.raises(ValueError):
            Event.from_dict(data)

    def test_unknown_type_is_carried(self):
        event = Event.from_dict({"id": "e1", "type": "pause", "ts": "2025-01-07T09:00:00Z"})
        assert event.type == "pause"


class TestDecodePayload:
    """Tests for typed payload decoding."""

    def test_add_payload(self):
        event = new_add_event(
            "a1", utc(2025, 1, 7, 12, 0), utc(2025, 1, 7, 9, 0), utc(2025, 1, 7, 10, 0)
        )
        assert decode_payload(event) == IntervalPayload(utc(2025, 1, 7, 9, 0), utc(2025, 1, 7, 10, 0))

    def test_add_bad_interval(self):
        event = Event(id="a1", type="add", ts=utc(2025, 1, 7, 9, 0), ref="nonsense")
        with pytest.raises(InvalidReferenceError) as exc_info:
            decode_payload(event)
        assert exc_info.value.event_id == "a1"

    def test_amend_payload(self):
        event = new_amend_event("m1", utc(2025, 1, 7, 12, 0), "e1", end=utc(2025, 1, 7, 11, 0))
        assert decode_payload(event) == AmendPayload("e1", None, utc(2025, 1, 7, 11, 0))

    def test_amend_target_from_meta(self):
        event = Event(id="m1", type="amend", ts=utc(2025, 1, 7, 9, 0), meta={"target": "e9"})
        assert decode_payload(event).target == "e9"

    def test_amend_without_target(self):
        event = Event(id="m1", type="amend", ts=utc(2025, 1, 7, 9, 0))
        with pytest.raises(InvalidReferenceError):
            decode_payload(event)

    def test_split_payload(self):
        event = new_split_event(
            "s1", utc(2025, 1, 7, 12, 0), "e1", utc(2025, 1, 7, 10, 0), left_note="L", right_note="R"
        )
        assert decode_payload(event) == SplitPayload("e1", utc(2025, 1, 7, 10, 0), "L", "R")

    def test_split_without_split_at(self):
        event = Event(id="s1", type="split", ts=utc(2025, 1, 7, 9, 0), ref="e1")
        with pytest.raises(InvalidReferenceError):
            decode_payload(event)

    def test_merge_targets_deduplicated(self):
        event = Event(
            id="g1", type="merge", ts=utc(2025, 1, 7, 9, 0), meta={"targets": "a, b,,a"}
        )
        assert decode_payload(event) == MergePayload(("a", "b"))

    def test_merge_without_targets(self):
        event = Event(id="g1", type="merge", ts=utc(2025, 1, 7, 9, 0), meta={"targets": " , "})
        with pytest.raises(InvalidReferenceError):
            decode_payload(event)

    def test_plain_events_have_no_payload(self):
        event = new_start_event("e1", utc(2025, 1, 7, 9, 0))
        assert decode_payload(event) is None


class TestFactories:
    """Tests for event factories."""

    def test_start_with_auto_stop(self):
        event = new_start_event("e1", utc(2025, 1, 7, 9, 0), auto_stop=utc(2025, 1, 7, 17, 0))
        assert event.type == EventType.START
        assert event.meta == {"auto_stop": "2025-01-07T17:00:00Z"}

    def test_merge_joins_targets(self):
        event = new_merge_event("g1", utc(2025, 1, 7, 9, 0), ["a", " b "])
        assert event.meta == {"targets": "a,b"}

    def test_merge_requires_targets(self):
        with pytest.raises(ValueError):
            new_merge_event("g1", utc(2025, 1, 7, 9, 0), ["", "  "])


class TestEntry:
    """Tests for materialized entries."""

    def test_running_entry(self):
        entry = Entry(id="e1", start=utc(2025, 1, 7, 9, 0))
        assert entry.is_running
        assert entry.duration() == timedelta(0)
        assert entry.duration(utc(2025, 1, 7, 9, 30)) == timedelta(minutes=30)

    def test_closed_duration(self):
        entry = Entry(id="e1", start=utc(2025, 1, 7, 9, 0), end=utc(2025, 1, 7, 11, 0))
        assert not entry.is_running
        assert entry.duration() == timedelta(hours=2)

    def test_overlaps(self):
        entry = Entry(id="e1", start=utc(2025, 1, 7, 9, 0), end=utc(2025, 1, 7, 11, 0))
        assert entry.overlaps(utc(2025, 1, 7, 10, 0), utc(2025, 1, 7, 12, 0))
        assert entry.overlaps(utc(2025, 1, 7, 11, 0), utc(2025, 1, 7, 12, 0))
        assert not entry.overlaps(utc(2025, 1, 7, 11, 1), utc(2025, 1, 7, 12, 0))
        assert not entry.overlaps(utc(2025, 1, 7, 7, 0), utc(2025, 1, 7, 8, 59))

    def test_running_overlaps_future(self):
        entry = Entry(id="e1", start=utc(2025, 1, 7, 9, 0))
        assert entry.overlaps(utc(2025, 1, 9, 0, 0), utc(2025, 1, 9, 23, 0))

    def test_copy_is_independent(self):
        entry = Entry(id="e1", start=utc(2025, 1, 7, 9, 0), notes=["a"], tags=["t"])
        clone = entry.copy()
        clone.notes.append("b")
        clone.tags.clear()
        assert entry.notes == ["a"]
        assert entry.tags == ["t"]

    def test_to_dict(self):
        entry = Entry(id="e1", start=utc(2025, 1, 7, 9, 0), customer="acme")
        data = entry.to_dict()
        assert data["start"] == "2025-01-07T09:00:00Z"
        assert data["end"] is None
        assert data["billable"] is True
