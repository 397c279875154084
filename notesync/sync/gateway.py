"""Submission gateway — the only way a new record enters the system.

Online, the gateway tries the remote store straight away and records the
item in the completed set.  Offline, or when that direct attempt fails, the
record goes to the durable queue and the sync engine picks it up later.
Either way the caller learns only whether the record was DELIVERED or QUEUED.
"""

from __future__ import annotations

import logging

from notesync.sync.base import IngestionPayload, SubmissionResult, new_record_id
from notesync.sync.completed import CompletedStore
from notesync.sync.connectivity import ConnectivityMonitor
from notesync.sync.dedup import idempotency_key
from notesync.sync.errors import DeliveryFailed, StorageUnavailable
from notesync.sync.queue_store import QueueStore
from notesync.sync.remote import RemoteStore

logger = logging.getLogger("notesync.sync.gateway")


class SubmissionGateway:
    """Route new submissions to the remote store or the local queue."""

    def __init__(
        self,
        queue: QueueStore,
        remote: RemoteStore,
        completed: CompletedStore,
        monitor: ConnectivityMonitor,
    ) -> None:
        self._queue = queue
        self._remote = remote
        self._completed = completed
        self._monitor = monitor

    async def submit(self, payload: IngestionPayload) -> SubmissionResult:
        """Hand off a new record.

        Args:
            payload: The validated record.

        Returns:
            DELIVERED if the remote store accepted it now, QUEUED otherwise.

        Raises:
            StorageUnavailable: If the record had to be queued and the local
                                database could not take it.
        """
        if self._monitor.get_status():
            try:
                await self._remote.deliver(payload, idempotency_key=idempotency_key(payload))
            except DeliveryFailed as exc:
                logger.warning("Direct delivery failed, queueing instead: %s", exc)
            else:
                await self._record_completed(payload)
                return SubmissionResult.DELIVERED

        record_id = await self._queue.enqueue(payload)
        logger.info("Submission queued as %s", record_id)
        return SubmissionResult.QUEUED

    async def _record_completed(self, payload: IngestionPayload) -> None:
        item_id = new_record_id("ingestion")
        try:
            await self._completed.append(item_id, payload, via="direct")
        except StorageUnavailable as exc:
            # The remote store has the record; only the local copy is missing
            logger.error("Delivered %s but could not record it locally: %s", item_id, exc)
