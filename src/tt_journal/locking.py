"""Advisory write locks and atomic anchor replacement."""

from __future__ import annotations

import os
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

import portalocker

from .errors import JournalLockError


def lock_path_for(path: Path) -> Path:
    """Sibling ``.lock`` file guarding ``path``."""
    return path.with_name(path.name + ".lock")


@contextmanager
def file_lock(path: Path, timeout: float = 10.0) -> Iterator[Path]:
    """Hold an exclusive advisory lock for a journal file.

    The lock lives on ``<file>.lock`` so the journal itself can be opened in
    append mode by the holder.

    Args:
        path: Journal file to guard
        timeout: Seconds to wait before giving up

    Yields:
        The lock file path

    Raises:
        JournalLockError: If the lock is still held elsewhere after ``timeout``
    """
    lock_path = lock_path_for(path)
    lock_path.parent.mkdir(parents=True, exist_ok=True)

    lock = portalocker.Lock(lock_path, mode="a", timeout=timeout)
    try:
        lock.acquire()
    except portalocker.LockException as e:
        raise JournalLockError(f"Could not lock {path} within {timeout}s") from e

    try:
        yield lock_path
    finally:
        lock.release()


def atomic_write_text(path: Path, content: str) -> None:
    """Replace ``path`` with ``content`` so readers never see a partial file.

    The temporary file is flushed to disk before the rename.
    """
    tmp_path = path.with_name(f".{path.name}.{os.getpid()}.tmp")
    path.parent.mkdir(parents=True, exist_ok=True)

    try:
        with open(tmp_path, "w", encoding="utf-8", newline="") as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)
    except Exception:
        tmp_path.unlink(missing_ok=True)
        raise
