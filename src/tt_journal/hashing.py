"""Hash schemes for the per-day event chain.

The canonical scheme serializes a fixed field order and is the only scheme
used for new writes. The legacy scheme reproduces hashes written before the
canonical format existed and is accepted for verification only.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from typing import Any, Callable, Optional

from .models import Event, dumps_compact


def canonical_payload(event: Event, prev_hash: str) -> dict[str, Any]:
    """Build the fixed-order payload hashed for ``event``.

    Empty optional members are omitted; ``id``, ``type`` and ``ts`` are
    always present.
    """
    payload: dict[str, Any] = {
        "id": event.id,
        "type": event.type,
        "ts": event.ts_text(),
    }
    if event.user:
        payload["user"] = event.user
    if event.customer:
        payload["customer"] = event.customer
    if event.project:
        payload["project"] = event.project
    if event.activity:
        payload["activity"] = event.activity
    if event.billable is not None:
        payload["billable"] = event.billable
    if event.note:
        payload["note"] = event.note
    if event.tags:
        payload["tags"] = list(event.tags)
    if event.ref:
        payload["ref"] = event.ref
    if prev_hash:
        payload["prev_hash"] = prev_hash
    return payload


def legacy_payload(event: Event, prev_hash: str) -> dict[str, Any]:
    """Build the legacy payload: every member present, keys sorted."""
    payload = {
        "id": event.id,
        "type": event.type,
        "ts": event.ts_text(),
        "user": event.user,
        "customer": event.customer,
        "project": event.project,
        "activity": event.activity,
        "billable": event.billable,
        "note": event.note,
        "tags": list(event.tags) if event.tags else None,
        "ref": event.ref,
        "prev_hash": prev_hash,
    }
    return {key: payload[key] for key in sorted(payload)}


def _sha256_hex(payload: dict[str, Any]) -> str:
    return hashlib.sha256(dumps_compact(payload).encode("utf-8")).hexdigest()


def canonical_hash(event: Event, prev_hash: str) -> str:
    """SHA-256 hex digest of the canonical payload."""
    return _sha256_hex(canonical_payload(event, prev_hash))


def legacy_hash(event: Event, prev_hash: str) -> str:
    """SHA-256 hex digest of the legacy payload."""
    return _sha256_hex(legacy_payload(event, prev_hash))


@dataclass(frozen=True)
class HashScheme:
    """A named, pure ``(event, prev_hash) -> hex`` function."""
    name: str
    compute: Callable[[Event, str], str]


CANONICAL = HashScheme("canonical", canonical_hash)
LEGACY = HashScheme("legacy", legacy_hash)

# Priority order; only the first scheme produces hashes for new writes.
HASH_SCHEMES: tuple[HashScheme, ...] = (CANONICAL, LEGACY)


def write_scheme() -> HashScheme:
    return HASH_SCHEMES[0]


def match_scheme(event: Event, prev_hash: str, stored: str) -> Optional[HashScheme]:
    """Return the first scheme whose hash of ``event`` equals ``stored``."""
    for scheme in HASH_SCHEMES:
        if scheme.compute(event, prev_hash) == stored:
            return scheme
    return None
