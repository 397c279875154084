"""Domain types for the NoteSync offline synchronization core.

The queue store, sync engine and submission gateway all speak in terms of
these dataclasses.  ``IngestionPayload`` is the record a user submits;
``QueuedRecord`` wraps it with delivery bookkeeping while it waits in the
local queue.
"""

from __future__ import annotations

import logging
import secrets
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

logger = logging.getLogger("notesync.sync")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def new_record_id(prefix: str) -> str:
    """Return ``<prefix>-<epoch ms>-<9 random hex chars>``.

    Creation time keeps ids roughly ordered; the random suffix avoids
    collisions between records created in the same millisecond.
    """
    return f"{prefix}-{int(time.time() * 1000)}-{secrets.token_hex(5)[:9]}"


def to_epoch(value: datetime | None) -> float | None:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.timestamp()


def from_epoch(value: float | None) -> datetime | None:
    if value is None:
        return None
    return datetime.fromtimestamp(float(value), tz=timezone.utc)


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class RecordStatus(str, Enum):
    """Lifecycle state of a queued record.

    Deletion (successful delivery) is terminal and has no status value.
    """

    PENDING = "pending"
    SYNCING = "syncing"
    FAILED = "failed"


class SubmissionResult(str, Enum):
    """What the submission gateway did with a new record."""

    DELIVERED = "delivered"
    QUEUED = "queued"


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class IngestionPayload:
    """A contact note submitted by the user.

    Attributes:
        profile_url: Profile reference (a LinkedIn profile URL).
        notes:       Free-text note about the contact.
        created_at:  UTC timestamp of creation on the client.
    """

    profile_url: str
    notes: str
    created_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict:
        return {
            "profile_url": self.profile_url,
            "notes": self.notes,
            "created_at": to_epoch(self.created_at),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "IngestionPayload":
        created_at = from_epoch(data.get("created_at")) or utc_now()
        return cls(
            profile_url=str(data["profile_url"]),
            notes=str(data["notes"]),
            created_at=created_at,
        )

    def to_wire(self) -> dict:
        """Body posted to the remote ingestion endpoint."""
        return {
            "linkedinUrl": self.profile_url,
            "notes": self.notes,
            "timestamp": int((to_epoch(self.created_at) or 0.0) * 1000),
        }


@dataclass(frozen=True)
class QueuedRecord:
    """A record awaiting delivery to the remote store.

    Attributes:
        id:            Unique queue id, assigned at enqueue time.
        payload:       The submitted record (opaque to the queue).
        status:        Current lifecycle state.
        retry_count:   Number of failed delivery attempts so far.
        last_retry_at: UTC timestamp of the most recent failed attempt.
        enqueued_at:   UTC timestamp when the record entered the queue.
    """

    id: str
    payload: IngestionPayload
    status: RecordStatus = RecordStatus.PENDING
    retry_count: int = 0
    last_retry_at: datetime | None = None
    enqueued_at: datetime = field(default_factory=utc_now)


@dataclass(frozen=True)
class CompletedItem:
    """A record confirmed delivered to the remote store.

    Attributes:
        id:           ``synced-<queue id>`` or ``ingestion-…`` for direct sends.
        payload:      The delivered record.
        completed_at: UTC timestamp of confirmation.
        via:          'sync' (drained from the queue) or 'direct'.
    """

    id: str
    payload: IngestionPayload
    completed_at: datetime = field(default_factory=utc_now)
    via: str = "sync"


@dataclass
class SyncReport:
    """Outcome of one sync pass.

    Attributes:
        trigger:       'reconnect', 'manual' or 'retry'.
        attempted:     Records for which a delivery attempt was made.
        delivered:     Records delivered and removed from the queue.
        failed:        Records moved to FAILED.
        skipped:       Candidates not attempted (claimed elsewhere or vanished).
        delivered_ids: Queue ids that were delivered.
        failed_ids:    Queue ids that failed.
        status:        'idle', 'success', 'partial' or 'error'.
        error:         Error message if status == 'error'.
    """

    trigger: str = "manual"
    attempted: int = 0
    delivered: int = 0
    failed: int = 0
    skipped: int = 0
    delivered_ids: list[str] = field(default_factory=list)
    failed_ids: list[str] = field(default_factory=list)
    status: str = "idle"
    error: str | None = None
    started_at: datetime = field(default_factory=utc_now)
    finished_at: datetime | None = None

    def finish(self) -> "SyncReport":
        if self.status != "error":
            problems = self.failed > 0 or self.error is not None
            if self.attempted == 0 and not problems:
                self.status = "idle"
            elif not problems:
                self.status = "success"
            elif self.delivered == 0:
                self.status = "error"
                self.error = self.error or f"{self.failed} record(s) failed delivery"
            else:
                self.status = "partial"
        self.finished_at = utc_now()
        return self
