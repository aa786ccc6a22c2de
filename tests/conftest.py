"""Shared pytest fixtures for tt-journal tests."""

import itertools
import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from tt_journal.config import JournalConfig
from tt_journal.engine import JournalEngine
from tt_journal.files import anchor_path_for


def utc(*args) -> datetime:
    """Shorthand for an aware UTC datetime."""
    return datetime(*args, tzinfo=timezone.utc)


class FakeClock:
    """Settable clock injected into engines."""

    def __init__(self, now: datetime):
        self.current = now

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> datetime:
        self.current += timedelta(**kwargs)
        return self.current


@pytest.fixture
def temp_root():
    """Create a temporary directory for a journal tree."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def config(temp_root):
    """Create a test configuration pinned to UTC."""
    return JournalConfig(
        journal_root=temp_root / "journal",
        timezone="UTC",
        lock_timeout=1.0,
    )


@pytest.fixture
def clock():
    return FakeClock(utc(2025, 1, 7, 9, 0))


@pytest.fixture
def engine(config, clock):
    """Create a test engine with a fixed clock and sequential IDs."""
    counter = itertools.count(1)
    return JournalEngine(config, now=clock, id_factory=lambda: f"tt_{next(counter)}")


def write_day(path: Path, events, hasher, anchor: bool = True) -> str:
    """Write a chained day file using ``hasher`` and return the final hash."""
    prev = ""
    lines = []
    for event in events:
        digest = hasher(event, prev)
        lines.append(event.with_chain(prev, digest).to_json())
        prev = digest
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("".join(line + "\n" for line in lines), encoding="utf-8")
    if anchor:
        anchor_path_for(path).write_text(prev + "\n", encoding="utf-8")
    return prev
