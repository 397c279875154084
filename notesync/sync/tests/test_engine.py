"""Tests for the sync engine — draining, retry accounting and concurrency."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import pytest

from notesync.sync.base import RecordStatus
from notesync.sync.completed import CompletedStore
from notesync.sync.connectivity import ConnectivityMonitor
from notesync.sync.dedup import idempotency_key
from notesync.sync.engine import (
    CLAIMABLE,
    InvalidTransition,
    SyncEngine,
    check_transition,
)
from notesync.sync.errors import Offline, StorageUnavailable
from notesync.sync.queue_store import QueueStore
from notesync.sync.tests.conftest import (
    GatedRemoteStore,
    StubRemoteStore,
    make_payload,
)


# ---------------------------------------------------------------------------
# Transition table
# ---------------------------------------------------------------------------


class TestTransitions:
    @pytest.mark.parametrize(
        "current,target",
        [
            (RecordStatus.PENDING, RecordStatus.SYNCING),
            (RecordStatus.FAILED, RecordStatus.SYNCING),
            (RecordStatus.SYNCING, RecordStatus.FAILED),
        ],
    )
    def test_allowed(self, current: RecordStatus, target: RecordStatus) -> None:
        check_transition(current, target)

    @pytest.mark.parametrize(
        "current,target",
        [
            (RecordStatus.PENDING, RecordStatus.FAILED),
            (RecordStatus.FAILED, RecordStatus.PENDING),
            (RecordStatus.SYNCING, RecordStatus.SYNCING),
        ],
    )
    def test_rejected(self, current: RecordStatus, target: RecordStatus) -> None:
        with pytest.raises(InvalidTransition):
            check_transition(current, target)

    def test_claimable_statuses(self) -> None:
        assert CLAIMABLE == {RecordStatus.PENDING, RecordStatus.FAILED}


# ---------------------------------------------------------------------------
# sync_all
# ---------------------------------------------------------------------------


class TestSyncAll:
    @pytest.mark.asyncio
    async def test_three_records_one_failure(
        self,
        queue: QueueStore,
        completed: CompletedStore,
        monitor: ConnectivityMonitor,
    ) -> None:
        monitor.set_status(False)
        ids = [await queue.enqueue(make_payload(n)) for n in (1, 2, 3)]

        remote = StubRemoteStore(fail_urls={make_payload(2).profile_url})
        engine = SyncEngine(queue, remote, completed, monitor)
        monitor.set_status(True)
        report = await engine.sync_all()

        records = await queue.list_all()
        assert [r.id for r in records] == [ids[1]]
        assert records[0].status is RecordStatus.FAILED
        assert records[0].retry_count == 1
        assert records[0].last_retry_at is not None

        done = {item.id for item in await completed.list_all()}
        assert done == {f"synced-{ids[0]}", f"synced-{ids[2]}"}

        assert report.attempted == 3
        assert report.delivered == 2
        assert report.failed == 1
        assert report.failed_ids == [ids[1]]
        assert report.status == "partial"

    @pytest.mark.asyncio
    async def test_retry_count_grows_by_one_per_pass(
        self,
        queue: QueueStore,
        completed: CompletedStore,
        monitor: ConnectivityMonitor,
    ) -> None:
        record_id = await queue.enqueue(make_payload(1))
        engine = SyncEngine(queue, StubRemoteStore(always_fail=True), completed, monitor)

        for n in range(1, 5):
            report = await engine.sync_all()
            record = await queue.get(record_id)
            assert report.attempted == 1
            assert record.status is RecordStatus.FAILED
            assert record.retry_count == n

    @pytest.mark.asyncio
    async def test_one_attempt_per_record_per_pass(
        self,
        queue: QueueStore,
        completed: CompletedStore,
        monitor: ConnectivityMonitor,
    ) -> None:
        for n in range(3):
            await queue.enqueue(make_payload(n))
        remote = StubRemoteStore(always_fail=True)
        engine = SyncEngine(queue, remote, completed, monitor)

        await engine.sync_all()

        assert len(remote.calls) == 3

    @pytest.mark.asyncio
    async def test_syncing_records_are_skipped(
        self,
        queue: QueueStore,
        engine: SyncEngine,
        remote: StubRemoteStore,
    ) -> None:
        busy = await queue.enqueue(make_payload(1))
        await queue.update_fields(busy, status=RecordStatus.SYNCING)
        free = await queue.enqueue(make_payload(2))

        report = await engine.sync_all()

        assert remote.delivered_urls() == [make_payload(2).profile_url]
        assert report.delivered_ids == [free]
        assert (await queue.get(busy)).status is RecordStatus.SYNCING

    @pytest.mark.asyncio
    async def test_empty_queue_is_idle(self, engine: SyncEngine, remote: StubRemoteStore) -> None:
        report = await engine.sync_all()
        assert report.status == "idle"
        assert report.attempted == 0
        assert remote.calls == []
        assert engine.last_report is report

    @pytest.mark.asyncio
    async def test_idempotency_key_is_stable_across_retries(
        self,
        queue: QueueStore,
        completed: CompletedStore,
        monitor: ConnectivityMonitor,
    ) -> None:
        await queue.enqueue(make_payload(1))
        remote = StubRemoteStore(always_fail=True)
        engine = SyncEngine(queue, remote, completed, monitor)

        await engine.sync_all()
        await engine.sync_all()

        keys = {key for _, key in remote.calls}
        assert keys == {idempotency_key(make_payload(1))}

    @pytest.mark.asyncio
    async def test_unreadable_queue_reports_error(
        self,
        completed: CompletedStore,
        monitor: ConnectivityMonitor,
        remote: StubRemoteStore,
    ) -> None:
        broken = AsyncMock(spec=QueueStore)
        broken.list_all.side_effect = StorageUnavailable("disk gone")
        engine = SyncEngine(broken, remote, completed, monitor)

        report = await engine.sync_all()

        assert report.status == "error"
        assert "disk gone" in (report.error or "")
        assert remote.calls == []

    @pytest.mark.asyncio
    async def test_bookkeeping_failure_releases_claim(
        self,
        queue: QueueStore,
        monitor: ConnectivityMonitor,
        remote: StubRemoteStore,
    ) -> None:
        record_id = await queue.enqueue(make_payload(1))
        broken_completed = AsyncMock(spec=CompletedStore)
        broken_completed.append.side_effect = StorageUnavailable("read-only")
        engine = SyncEngine(queue, remote, broken_completed, monitor)

        report = await engine.sync_all()

        record = await queue.get(record_id)
        assert record.status is RecordStatus.PENDING
        assert record.retry_count == 0
        assert report.delivered == 0
        assert report.skipped == 1
        assert report.status == "error"


# ---------------------------------------------------------------------------
# Concurrency
# ---------------------------------------------------------------------------


class TestConcurrentPasses:
    @pytest.mark.asyncio
    async def test_two_passes_deliver_once(
        self,
        queue: QueueStore,
        completed: CompletedStore,
        monitor: ConnectivityMonitor,
    ) -> None:
        await queue.enqueue(make_payload(1))
        remote = StubRemoteStore(delay=0.05)
        engine = SyncEngine(queue, remote, completed, monitor)

        first, second = await asyncio.gather(engine.sync_all(), engine.sync_all())

        assert len(remote.calls) == 1
        assert first.delivered + second.delivered == 1
        assert await queue.count() == 0
        assert await completed.count() == 1

    @pytest.mark.asyncio
    async def test_two_engines_sharing_a_queue_deliver_once(
        self,
        queue: QueueStore,
        completed: CompletedStore,
        monitor: ConnectivityMonitor,
    ) -> None:
        await queue.enqueue(make_payload(1))
        remote = StubRemoteStore(delay=0.05)
        reconnect = SyncEngine(queue, remote, completed, monitor)
        manual = SyncEngine(queue, remote, completed, monitor)

        await asyncio.gather(
            reconnect.sync_all(trigger="reconnect"), manual.sync_all(trigger="manual")
        )

        assert len(remote.calls) == 1
        assert await queue.count() == 0

    @pytest.mark.asyncio
    async def test_overlapping_failures_keep_retry_count_exact(
        self,
        queue: QueueStore,
        completed: CompletedStore,
        monitor: ConnectivityMonitor,
    ) -> None:
        first = await queue.enqueue(make_payload(1))
        second = await queue.enqueue(make_payload(2))
        remote = GatedRemoteStore(
            hold_url=make_payload(1).profile_url,
            fail_urls={make_payload(2).profile_url},
        )
        slow = SyncEngine(queue, remote, completed, monitor)
        manual = SyncEngine(queue, remote, completed, monitor)

        # The slow pass lists both records, then blocks delivering the first
        slow_pass = asyncio.create_task(slow.sync_all())
        await remote.entered.wait()

        await manual.sync_all()
        await manual.sync_all()
        remote.release.set()
        slow_report = await slow_pass

        record = await queue.get(second)
        attempts = [p for p, _ in remote.calls if p == make_payload(2)]
        assert record.status is RecordStatus.FAILED
        assert record.retry_count == len(attempts) == 2
        assert slow_report.delivered_ids == [first]
        assert second not in slow_report.failed_ids
        assert slow_report.skipped == 1

    @pytest.mark.asyncio
    async def test_one_bad_record_does_not_abort_the_pass(
        self,
        queue: QueueStore,
        completed: CompletedStore,
        monitor: ConnectivityMonitor,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        bad = await queue.enqueue(make_payload(1))
        good = await queue.enqueue(make_payload(2))
        monkeypatch.setattr(
            queue, "record_failure", AsyncMock(side_effect=ValueError("corrupt row"))
        )
        remote = StubRemoteStore(fail_urls={make_payload(1).profile_url})
        engine = SyncEngine(queue, remote, completed, monitor)

        report = await engine.sync_all()

        assert report.delivered_ids == [good]
        assert report.error == "corrupt row"
        assert (await queue.get(bad)).status is RecordStatus.PENDING

    @pytest.mark.asyncio
    async def test_submission_during_pass_is_kept(
        self,
        queue: QueueStore,
        completed: CompletedStore,
        monitor: ConnectivityMonitor,
    ) -> None:
        await queue.enqueue(make_payload(1))
        remote = StubRemoteStore(delay=0.05)
        engine = SyncEngine(queue, remote, completed, monitor)

        await asyncio.gather(engine.sync_all(), queue.enqueue(make_payload(2)))

        queued = {r.payload.profile_url for r in await queue.list_all()}
        done = {i.payload.profile_url for i in await completed.list_all()}
        assert make_payload(1).profile_url in done
        assert make_payload(2).profile_url in queued | done


# ---------------------------------------------------------------------------
# retry_failed
# ---------------------------------------------------------------------------


class TestRetryFailed:
    @pytest.mark.asyncio
    async def test_offline_retry_raises_and_touches_nothing(
        self,
        queue: QueueStore,
        completed: CompletedStore,
        offline_monitor: ConnectivityMonitor,
    ) -> None:
        record_id = await queue.enqueue(make_payload(1))
        await queue.update_fields(record_id, status=RecordStatus.FAILED, retry_count=1)
        before = await queue.list_all()
        remote = StubRemoteStore()
        engine = SyncEngine(queue, remote, completed, offline_monitor)

        with pytest.raises(Offline):
            await engine.retry_failed()

        assert remote.calls == []
        assert await queue.list_all() == before

    @pytest.mark.asyncio
    async def test_retries_only_failed_records(
        self,
        queue: QueueStore,
        engine: SyncEngine,
        remote: StubRemoteStore,
    ) -> None:
        failed_id = await queue.enqueue(make_payload(1))
        await queue.update_fields(failed_id, status=RecordStatus.FAILED, retry_count=2)
        pending_id = await queue.enqueue(make_payload(2))

        report = await engine.retry_failed()

        assert report.trigger == "retry"
        assert report.delivered_ids == [failed_id]
        assert remote.delivered_urls() == [make_payload(1).profile_url]
        assert [r.id for r in await queue.list_all()] == [pending_id]
