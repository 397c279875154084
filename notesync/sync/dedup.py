"""Idempotency keys for deliveries to the remote store.

Delivery is at-least-once: a record whose success response is lost (crash
between delivery and queue removal, dropped connection) is sent again on the
next pass.  Each delivery therefore carries an ``Idempotency-Key`` the remote
store deduplicates on.

The key is derived from the payload content, not from the queue id, so it is
identical for the gateway's direct attempt and every later retry of the same
record from the queue.
"""

from __future__ import annotations

import hashlib
import json

from notesync.sync.base import IngestionPayload


def payload_content_hash(payload: dict) -> str:
    """Compute a content hash for detecting identical payloads.

    Args:
        payload: A JSON-serializable dict.

    Returns:
        SHA-256 hex digest of the canonicalized JSON.
    """
    # Sort keys for deterministic serialization
    canonical = json.dumps(payload, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


def idempotency_key(payload: IngestionPayload) -> str:
    """Return the ``Idempotency-Key`` header value for a payload.

    Two submissions with the same profile, note text and creation
    timestamp are the same record as far as the remote store is concerned.
    """
    return f"ingestion:{payload_content_hash(payload.to_wire())}"


class InFlightRegistry:
    """Queue ids with a delivery attempt currently in progress.

    The store's SYNCING claim is what keeps two passes from delivering the
    same record; this registry lets the engine refuse a second local attempt
    without a database round trip, and reports what is in flight.
    """

    def __init__(self) -> None:
        self._ids: set[str] = set()

    def try_acquire(self, record_id: str) -> bool:
        """Mark ``record_id`` in flight.  False if it already was."""
        if record_id in self._ids:
            return False
        self._ids.add(record_id)
        return True

    def release(self, record_id: str) -> None:
        self._ids.discard(record_id)

    def __contains__(self, record_id: object) -> bool:
        return record_id in self._ids

    def __len__(self) -> int:
        return len(self._ids)
