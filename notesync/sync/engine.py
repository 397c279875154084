"""Sync engine: drain the local queue against the remote store.

One pass (``sync_all``) does the following:
1. Read the current queue
2. Pick records that are PENDING or FAILED (SYNCING means another pass owns it)
3. For each, claim it by moving it to SYNCING with a compare-and-set
4. Deliver the payload to the remote store
5. On success append it to the completed set and remove it from the queue
6. On failure mark it FAILED with retry_count + 1 and last_retry_at = now

A pass makes at most one attempt per record and never loops.  Retries happen
when another pass runs (reconnect, or the user asking for one); nothing is
time-scheduled.
"""

from __future__ import annotations

import logging
from typing import Iterable

from notesync.sync.base import QueuedRecord, RecordStatus, SyncReport, utc_now
from notesync.sync.completed import CompletedStore
from notesync.sync.connectivity import ConnectivityMonitor
from notesync.sync.dedup import InFlightRegistry, idempotency_key
from notesync.sync.errors import (
    DeliveryFailed,
    Offline,
    RecordNotFound,
    StorageUnavailable,
)
from notesync.sync.queue_store import QueueStore
from notesync.sync.remote import RemoteStore

logger = logging.getLogger("notesync.sync.engine")

# Every legal status change.  Deletion after SYNCING (success) is not a
# status and is handled by QueueStore.remove.
TRANSITIONS: dict[RecordStatus, frozenset[RecordStatus]] = {
    RecordStatus.PENDING: frozenset({RecordStatus.SYNCING}),
    RecordStatus.FAILED: frozenset({RecordStatus.SYNCING}),
    RecordStatus.SYNCING: frozenset({RecordStatus.FAILED, RecordStatus.PENDING}),
}

# Statuses a record may be claimed from
CLAIMABLE: frozenset[RecordStatus] = frozenset(
    s for s, targets in TRANSITIONS.items() if RecordStatus.SYNCING in targets
)


class InvalidTransition(ValueError):
    """A status change outside TRANSITIONS was requested."""


def check_transition(current: RecordStatus, target: RecordStatus) -> None:
    """Raise InvalidTransition unless ``current`` → ``target`` is legal."""
    if target not in TRANSITIONS[current]:
        raise InvalidTransition(f"{current.value} -> {target.value} is not allowed")


class SyncEngine:
    """Replay queued records against the remote store.

    Usage::

        engine = SyncEngine(queue, remote, completed, monitor)
        report = await engine.sync_all()
        report = await engine.retry_failed()
    """

    def __init__(
        self,
        queue: QueueStore,
        remote: RemoteStore,
        completed: CompletedStore,
        monitor: ConnectivityMonitor,
    ) -> None:
        """Initialize the engine.

        Args:
            queue:     Durable queue; the only source of truth for records.
            remote:    Remote store records are delivered to.
            completed: Completed set successful deliveries are appended to.
            monitor:   Process-wide connectivity monitor (for retry_failed).
        """
        self._queue = queue
        self._remote = remote
        self._completed = completed
        self._monitor = monitor
        self._in_flight = InFlightRegistry()
        self._last_report: SyncReport | None = None

    @property
    def last_report(self) -> SyncReport | None:
        return self._last_report

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    async def sync_all(self, trigger: str = "manual") -> SyncReport:
        """Attempt delivery of every PENDING or FAILED record once.

        Safe to run concurrently with other passes and with submissions.

        Args:
            trigger: Why the pass runs ('reconnect' or 'manual'); for reporting.

        Returns:
            SyncReport for this pass.
        """
        return await self._run_pass(trigger, CLAIMABLE)

    async def retry_failed(self) -> SyncReport:
        """Attempt delivery of FAILED records only.

        Raises:
            Offline: If the monitor reports offline.  Nothing is attempted
                     or mutated in that case.
        """
        if not self._monitor.get_status():
            raise Offline("Cannot retry sync while offline")
        return await self._run_pass("retry", frozenset({RecordStatus.FAILED}))

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _run_pass(
        self, trigger: str, eligible: Iterable[RecordStatus]
    ) -> SyncReport:
        report = SyncReport(trigger=trigger)
        eligible = frozenset(eligible)

        try:
            records = await self._queue.list_all()
        except StorageUnavailable as exc:
            logger.error("Sync pass (%s) could not read the queue: %s", trigger, exc)
            report.status = "error"
            report.error = str(exc)
            self._last_report = report.finish()
            return report

        candidates = [r for r in records if r.status in eligible]
        if not candidates:
            logger.debug("Sync pass (%s): nothing to deliver", trigger)
            self._last_report = report.finish()
            return report

        logger.info("Sync pass (%s): %d candidate(s)", trigger, len(candidates))
        for record in candidates:
            await self._sync_record(record, report)

        report.finish()
        self._last_report = report
        logger.info(
            "Sync pass (%s) complete: %d delivered, %d failed, %d skipped",
            trigger, report.delivered, report.failed, report.skipped,
        )
        return report

    async def _sync_record(self, record: QueuedRecord, report: SyncReport) -> None:
        if not self._in_flight.try_acquire(record.id):
            report.skipped += 1
            return
        claimed = False
        try:
            claimed = await self._claim(record)
            if not claimed:
                report.skipped += 1
                return

            report.attempted += 1
            try:
                await self._remote.deliver(
                    record.payload, idempotency_key=idempotency_key(record.payload)
                )
            except DeliveryFailed as exc:
                logger.warning(
                    "Delivery failed for %s (attempt %d): %s",
                    record.id, record.retry_count + 1, exc,
                )
                await self._mark_failed(record)
                report.failed += 1
                report.failed_ids.append(record.id)
                return

            await self._complete(record)
            report.delivered += 1
            report.delivered_ids.append(record.id)
        except StorageUnavailable as exc:
            logger.error("Storage error while syncing %s: %s", record.id, exc)
            report.skipped += 1
            report.error = str(exc)
        except ValueError as exc:
            logger.exception("Record %s left the pass in an unexpected state", record.id)
            if claimed:
                await self._release_claim(record)
            report.skipped += 1
            report.error = str(exc)
        finally:
            self._in_flight.release(record.id)

    async def _claim(self, record: QueuedRecord) -> bool:
        """Move ``record`` to SYNCING if it is still exactly as listed.

        Both status and retry_count must match the pass's snapshot; a record
        another pass has touched since is left alone until the next pass.
        """
        check_transition(record.status, RecordStatus.SYNCING)
        try:
            claimed = await self._queue.update_fields(
                record.id,
                expect_status={record.status},
                expect_retry_count=record.retry_count,
                status=RecordStatus.SYNCING,
            )
        except RecordNotFound:
            logger.debug("Record %s vanished before sync", record.id)
            return False
        if not claimed:
            logger.debug("Record %s changed since it was listed; skipping", record.id)
        return claimed

    async def _mark_failed(self, record: QueuedRecord) -> None:
        check_transition(RecordStatus.SYNCING, RecordStatus.FAILED)
        try:
            await self._queue.record_failure(record.id, failed_at=utc_now())
        except RecordNotFound:
            # Cleared by the user mid-flight
            logger.info("Record %s removed while its delivery was failing", record.id)

    async def _complete(self, record: QueuedRecord) -> None:
        """Hand the payload to the completed set, then drop it from the queue.

        If bookkeeping fails after a successful delivery the record goes back
        to PENDING; the redelivery carries the same idempotency key.
        """
        try:
            await self._completed.append(f"synced-{record.id}", record.payload, via="sync")
            await self._queue.remove(record.id)
        except StorageUnavailable:
            await self._release_claim(record)
            raise
        logger.debug("Record %s delivered", record.id)

    async def _release_claim(self, record: QueuedRecord) -> None:
        check_transition(RecordStatus.SYNCING, RecordStatus.PENDING)
        try:
            await self._queue.update_fields(
                record.id,
                expect_status={RecordStatus.SYNCING},
                status=RecordStatus.PENDING,
            )
        except (StorageUnavailable, RecordNotFound) as exc:
            logger.error(
                "Could not release %s; it will be recovered on restart: %s",
                record.id, exc,
            )
