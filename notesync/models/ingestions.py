"""Pydantic models for ingestion submissions, the offline queue and connectivity."""

from __future__ import annotations

from datetime import datetime

from pydantic import Field

from notesync.models.base import NoteSyncBase
from notesync.sync.base import (
    CompletedItem,
    IngestionPayload,
    QueuedRecord,
    RecordStatus,
    SubmissionResult,
    utc_now,
)

LINKEDIN_PROFILE_PATTERN = r"^https?://(www\.)?linkedin\.com/(in|pub)/[a-zA-Z0-9\-_%]+/?.*$"


# ---------- Submissions ----------

class IngestionCreate(NoteSyncBase):
    profile_url: str = Field(pattern=LINKEDIN_PROFILE_PATTERN, max_length=2048)
    notes: str = Field(min_length=10, max_length=20000)
    created_at: datetime | None = None

    def to_payload(self) -> IngestionPayload:
        return IngestionPayload(
            profile_url=self.profile_url,
            notes=self.notes,
            created_at=self.created_at or utc_now(),
        )


class SubmissionRead(NoteSyncBase):
    result: SubmissionResult


class IngestionPayloadRead(NoteSyncBase):
    profile_url: str
    notes: str
    created_at: datetime


# ---------- Queue ----------

class QueuedRecordRead(NoteSyncBase):
    id: str
    payload: IngestionPayloadRead
    status: RecordStatus
    retry_count: int = Field(ge=0)
    last_retry_at: datetime | None = None
    enqueued_at: datetime

    @classmethod
    def from_record(cls, record: QueuedRecord) -> "QueuedRecordRead":
        return cls.model_validate(record)


class QueueStatusRead(NoteSyncBase):
    online: bool
    total: int
    by_status: dict[RecordStatus, int]


class QueueClearedRead(NoteSyncBase):
    removed: int


class CompletedItemRead(NoteSyncBase):
    id: str
    payload: IngestionPayloadRead
    completed_at: datetime
    via: str

    @classmethod
    def from_item(cls, item: CompletedItem) -> "CompletedItemRead":
        return cls.model_validate(item)


# ---------- Sync ----------

class SyncReportRead(NoteSyncBase):
    trigger: str
    attempted: int
    delivered: int
    failed: int
    skipped: int
    delivered_ids: list[str] = Field(default_factory=list)
    failed_ids: list[str] = Field(default_factory=list)
    status: str
    error: str | None = None
    started_at: datetime
    finished_at: datetime | None = None


# ---------- Connectivity ----------

class ConnectivityRead(NoteSyncBase):
    online: bool


class ConnectivityUpdate(NoteSyncBase):
    online: bool


class ConnectivityChangeRead(ConnectivityRead):
    changed: bool
