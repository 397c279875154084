"""Offline-first synchronization core for NoteSync.

Modules:
    base         — Domain records, status enums, sync reports
    errors       — StorageUnavailable / RecordNotFound / DeliveryFailed / Offline
    queue_store  — Durable SQLite queue of records awaiting delivery
    completed    — Append-only completed-items set
    remote       — Remote store client (JSON over HTTP)
    dedup        — Idempotency keys and in-flight tracking
    connectivity — Process-wide online/offline monitor with subscriptions
    probe        — Background reachability probe feeding the monitor
    engine       — Sync engine draining the queue against the remote store
    gateway      — Submission gateway (deliver now or queue for later)
    runtime      — Wiring of the above into one process-wide runtime
"""

from notesync.sync.base import (
    CompletedItem,
    IngestionPayload,
    QueuedRecord,
    RecordStatus,
    SubmissionResult,
    SyncReport,
)
from notesync.sync.errors import (
    DeliveryFailed,
    Offline,
    RecordNotFound,
    StorageUnavailable,
    SyncError,
)

__all__ = [
    "CompletedItem",
    "IngestionPayload",
    "QueuedRecord",
    "RecordStatus",
    "SubmissionResult",
    "SyncReport",
    "SyncError",
    "StorageUnavailable",
    "RecordNotFound",
    "DeliveryFailed",
    "Offline",
]
