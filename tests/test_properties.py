"""Property-based tests for hashing, replay and audit invariants.

Uses hypothesis to verify algorithmic properties hold for many inputs.
"""

import itertools
import shutil
import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path

from hypothesis import given, settings, strategies as st

from conftest import utc, write_day
from tt_journal.audit import repair_file, verify_file
from tt_journal.config import JournalConfig
from tt_journal.corrections import apply_corrections
from tt_journal.engine import JournalEngine
from tt_journal.files import day_path
from tt_journal.hashing import canonical_hash, legacy_hash
from tt_journal.models import (
    Entry,
    Event,
    format_timestamp,
    new_amend_event,
    new_merge_event,
    new_split_event,
    parse_timestamp,
    split_timestamp,
)

DAY_START = utc(2025, 1, 7, 0, 0)

short_text = st.text(max_size=12)
offsets = st.integers(min_value=-14 * 60, max_value=14 * 60).map(
    lambda minutes: timezone(timedelta(minutes=minutes))
)
aware_datetimes = st.datetimes(
    min_value=datetime(1970, 1, 1),
    max_value=datetime(2100, 1, 1),
    timezones=offsets,
)
seconds_in_day = st.integers(min_value=0, max_value=86399)


@st.composite
def events(draw, event_id=None):
    """Draw a plain event on 2025-01-07 UTC."""
    return Event(
        id=event_id or draw(st.text(min_size=1, max_size=8)),
        type=draw(st.sampled_from(["start", "stop", "note", "add", "amend", "split", "merge"])),
        ts=DAY_START + timedelta(seconds=draw(seconds_in_day)),
        user=draw(short_text),
        customer=draw(short_text),
        project=draw(short_text),
        activity=draw(short_text),
        billable=draw(st.none() | st.booleans()),
        note=draw(short_text),
        tags=draw(st.lists(short_text, max_size=3)),
        ref=draw(short_text),
    )


@st.composite
def event_lists(draw):
    count = draw(st.integers(min_value=1, max_value=6))
    return [draw(events(event_id=f"e{i}")) for i in range(count)]


def make_temp_engine():
    """Create a fresh engine with temp directory for each hypothesis example."""
    tmpdir = Path(tempfile.mkdtemp())
    counter = itertools.count(1)
    config = JournalConfig(journal_root=tmpdir / "journal", timezone="UTC")
    return JournalEngine(config, id_factory=lambda: f"tt_{next(counter)}"), tmpdir


class TestTimestampProperties:
    """Property-based tests for timestamp handling."""

    @given(dt=aware_datetimes)
    def test_format_parse_roundtrip(self, dt):
        """Formatting then parsing preserves the instant."""
        assert parse_timestamp(format_timestamp(dt)) == dt

    @given(dt=aware_datetimes)
    def test_coarse_format_drops_fraction(self, dt):
        assert parse_timestamp(format_timestamp(dt, precise=False)) == dt.replace(microsecond=0)

    @given(dt=aware_datetimes, nanos=st.integers(min_value=0, max_value=999))
    def test_nanosecond_roundtrip(self, dt, nanos):
        """Sub-microsecond digits survive a format and split cycle."""
        assert split_timestamp(format_timestamp(dt, nanos=nanos)) == (dt, nanos)


class TestHashProperties:
    """Property-based tests for hash schemes."""

    @given(event=events(), prev=st.text(alphabet="0123456789abcdef", max_size=64))
    def test_canonical_hash_deterministic(self, event, prev):
        """Recomputing the canonical hash yields identical output."""
        first = canonical_hash(event, prev)
        assert first == canonical_hash(event, prev)
        assert len(first) == 64

    @given(event=events())
    def test_stored_form_roundtrip(self, event):
        """A stored line parses back to the same event and the same hash."""
        chained = event.with_chain("", canonical_hash(event, ""))
        parsed = Event.from_json(chained.to_json())
        assert parsed == chained
        assert canonical_hash(parsed, "") == chained.hash
        assert legacy_hash(parsed, "") == legacy_hash(event, "")


class TestAuditProperties:
    """Property-based tests for verify and repair."""

    @settings(max_examples=25, deadline=None)
    @given(batch=event_lists())
    def test_writer_output_is_canonical(self, batch):
        """Writer output verifies and repair leaves it untouched."""
        engine, tmpdir = make_temp_engine()
        try:
            for event in batch:
                engine.write_event(event)
            path = engine.journal_path_for(DAY_START)

            assert verify_file(path).ok
            result = repair_file(path)
            assert not result.changed
            assert not result.wrote
            assert not path.with_name(path.name + ".repair").exists()
        finally:
            shutil.rmtree(tmpdir, ignore_errors=True)

    @settings(max_examples=25, deadline=None)
    @given(batch=event_lists())
    def test_apply_then_verify(self, batch):
        """Applying a repair to a legacy file always yields a verified file."""
        tmpdir = Path(tempfile.mkdtemp())
        try:
            path = day_path(tmpdir, DAY_START.date())
            write_day(path, batch, legacy_hash)

            repair_file(path, dry_run=False, apply=True)

            report = verify_file(path)
            assert report.ok
            assert report.legacy_rows == 0
        finally:
            shutil.rmtree(tmpdir, ignore_errors=True)


class TestCorrectionProperties:
    """Property-based tests for correction laws."""

    @given(
        start=seconds_in_day,
        length=st.integers(min_value=2, max_value=86400),
        data=st.data(),
    )
    def test_split_partition(self, start, length, data):
        """Split halves partition the original interval."""
        s = DAY_START + timedelta(seconds=start)
        e = s + timedelta(seconds=length)
        at = s + timedelta(seconds=data.draw(st.integers(min_value=1, max_value=length - 1)))

        base = [Entry(id="e1", start=s, end=e)]
        split = new_split_event("s1", e + timedelta(hours=1), "e1", at)
        halves = {x.id: x for x in apply_corrections(base, [split], strict=True)}

        assert (halves["s1.L"].start, halves["s1.L"].end) == (s, at)
        assert (halves["s1.R"].start, halves["s1.R"].end) == (at, e)

    @given(spans=st.lists(
        st.tuples(seconds_in_day, st.integers(min_value=1, max_value=3600)),
        min_size=1,
        max_size=5,
    ))
    def test_merge_span(self, spans):
        """A merged entry spans from the earliest start to the latest end."""
        base = [
            Entry(id=f"e{i}", start=DAY_START + timedelta(seconds=s), end=DAY_START + timedelta(seconds=s + n))
            for i, (s, n) in enumerate(spans)
        ]
        merge = new_merge_event("m1", utc(2025, 1, 8, 0, 0), [e.id for e in base])
        merged = apply_corrections(base, [merge], strict=True)

        assert len(merged) == 1
        assert merged[0].start == min(e.start for e in base)
        assert merged[0].end == max(e.end for e in base)

    @given(
        notes=st.lists(short_text.filter(bool), max_size=3),
        note=short_text.filter(bool),
        customer=short_text,
        billable=st.booleans(),
    )
    def test_amend_note_only(self, notes, note, customer, billable):
        """A note-only amend appends the note and changes nothing else."""
        target = Entry(
            id="e1",
            start=utc(2025, 1, 7, 9, 0),
            end=utc(2025, 1, 7, 10, 0),
            customer=customer,
            billable=billable,
            notes=list(notes),
            tags=["t"],
        )
        amend = new_amend_event("a1", utc(2025, 1, 7, 12, 0), "e1", note=note)
        result = apply_corrections([target], [amend], strict=True)[0]

        assert result.notes == notes + [note]
        assert (result.start, result.end, result.customer, result.billable, result.tags) == (
            target.start, target.end, target.customer, target.billable, target.tags,
        )
