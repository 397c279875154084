"""Endpoints the UI uses to submit notes and manage the offline queue."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, HTTPException, Query, Response

from notesync.dependencies import Runtime
from notesync.models.base import ErrorDetail
from notesync.models.ingestions import (
    CompletedItemRead,
    IngestionCreate,
    QueueClearedRead,
    QueuedRecordRead,
    QueueStatusRead,
    SubmissionRead,
    SyncReportRead,
)
from notesync.sync.base import RecordStatus, SubmissionResult
from notesync.sync.errors import Offline, StorageUnavailable

router = APIRouter(prefix="/ingestions", tags=["ingestions"])
logger = logging.getLogger("notesync.routers.ingestions")


# ---------- Submissions ----------

@router.post(
    "",
    response_model=SubmissionRead,
    status_code=201,
    responses={202: {"model": SubmissionRead}, 503: {"model": ErrorDetail}},
)
async def submit_ingestion(body: IngestionCreate, runtime: Runtime, response: Response) -> Any:
    """Submit a contact note.  201 when delivered, 202 when queued for later."""
    try:
        result = await runtime.gateway.submit(body.to_payload())
    except StorageUnavailable as exc:
        logger.error("Submission could not be saved: %s", exc)
        raise HTTPException(
            status_code=503, detail="Note could not be saved locally. Please try again."
        ) from exc
    if result is SubmissionResult.QUEUED:
        response.status_code = 202
    return {"result": result}


@router.get("/completed", response_model=list[CompletedItemRead])
async def list_completed(runtime: Runtime) -> Any:
    items = await _storage_call(runtime.completed.list_all())
    return [CompletedItemRead.from_item(i) for i in items]


# ---------- Queue ----------

@router.get("/queue", response_model=list[QueuedRecordRead])
async def list_queue(
    runtime: Runtime,
    status: RecordStatus | None = Query(default=None, description="Only records in this state"),
) -> Any:
    if status is None:
        records = await _storage_call(runtime.queue.list_all())
    else:
        records = await _storage_call(runtime.queue.list_by_status(status))
    return [QueuedRecordRead.from_record(r) for r in records]


@router.get("/queue/status", response_model=QueueStatusRead)
async def queue_status(runtime: Runtime) -> Any:
    by_status = await _storage_call(runtime.queue.count_by_status())
    return {
        "online": runtime.monitor.get_status(),
        "total": sum(by_status.values()),
        "by_status": by_status,
    }


@router.delete("/queue", response_model=QueueClearedRead)
async def clear_queue(
    runtime: Runtime,
    confirm: bool = Query(default=False, description="Must be true; clearing is irreversible"),
) -> Any:
    if not confirm:
        raise HTTPException(status_code=400, detail="Pass confirm=true to clear all offline data")
    removed = await _storage_call(runtime.queue.clear_all())
    return {"removed": removed}


# ---------- Sync ----------

@router.post("/sync", response_model=SyncReportRead)
async def sync_now(runtime: Runtime) -> Any:
    """Run one sync pass over PENDING and FAILED records."""
    report = await runtime.engine.sync_all(trigger="manual")
    return SyncReportRead.model_validate(report)


@router.post("/retry", response_model=SyncReportRead, responses={409: {"model": ErrorDetail}})
async def retry_failed(runtime: Runtime) -> Any:
    """Retry FAILED records.  409 while offline."""
    try:
        report = await runtime.engine.retry_failed()
    except Offline as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    return SyncReportRead.model_validate(report)


async def _storage_call(awaitable: Any) -> Any:
    try:
        return await awaitable
    except StorageUnavailable as exc:
        raise HTTPException(status_code=503, detail="Local storage unavailable") from exc
