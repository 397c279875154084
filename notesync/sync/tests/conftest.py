"""Shared fixtures and stubs for sync core tests."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
import pytest_asyncio

from notesync.services.sqlite import LocalDatabase
from notesync.sync.base import IngestionPayload
from notesync.sync.completed import CompletedStore
from notesync.sync.connectivity import ConnectivityMonitor
from notesync.sync.engine import SyncEngine
from notesync.sync.errors import DeliveryFailed
from notesync.sync.gateway import SubmissionGateway
from notesync.sync.queue_store import QueueStore
from notesync.sync.remote import RemoteStore

BASE_TIME = datetime(2026, 2, 23, 9, 30, tzinfo=timezone.utc)


def make_payload(n: int = 1, notes: str | None = None) -> IngestionPayload:
    """A realistic contact note; ``n`` keeps payloads distinct and ordered."""
    return IngestionPayload(
        profile_url=f"https://www.linkedin.com/in/contact-{n}",
        notes=notes or f"Met contact {n} at the meetup, follow up about the pilot.",
        created_at=BASE_TIME + timedelta(minutes=n),
    )


class StubRemoteStore(RemoteStore):
    """Remote store double that counts calls.

    Attributes:
        calls:        Every (payload, idempotency_key) passed to deliver().
        fail_urls:    Profile URLs whose delivery always fails.
        always_fail:  Fail every delivery.
        delay:        Seconds to sleep inside deliver() (to overlap passes).
        reachable:    Value returned by probe().
    """

    def __init__(
        self,
        fail_urls: set[str] | None = None,
        always_fail: bool = False,
        delay: float = 0.0,
        reachable: bool = True,
    ) -> None:
        self.calls: list[tuple[IngestionPayload, str]] = []
        self.fail_urls = fail_urls or set()
        self.always_fail = always_fail
        self.delay = delay
        self.reachable = reachable
        self.closed = False

    async def deliver(self, payload: IngestionPayload, *, idempotency_key: str) -> None:
        self.calls.append((payload, idempotency_key))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.always_fail or payload.profile_url in self.fail_urls:
            raise DeliveryFailed("stub remote rejected record", status_code=503)

    async def probe(self) -> bool:
        return self.reachable

    async def aclose(self) -> None:
        self.closed = True

    def delivered_urls(self) -> list[str]:
        return [p.profile_url for p, _ in self.calls]


class GatedRemoteStore(StubRemoteStore):
    """Stub whose delivery of ``hold_url`` blocks until ``release`` is set.

    ``entered`` is set as soon as that delivery starts, so a test can run
    other work while a pass is parked mid-flight.
    """

    def __init__(self, hold_url: str, **kwargs) -> None:
        super().__init__(**kwargs)
        self.hold_url = hold_url
        self.entered = asyncio.Event()
        self.release = asyncio.Event()

    async def deliver(self, payload: IngestionPayload, *, idempotency_key: str) -> None:
        if payload.profile_url == self.hold_url:
            self.entered.set()
            await self.release.wait()
        await super().deliver(payload, idempotency_key=idempotency_key)


# ---------------------------------------------------------------------------
# Storage fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "data" / "notesync.db"


@pytest_asyncio.fixture
async def db(db_path: Path):
    database = LocalDatabase(db_path)
    await database.open()
    yield database
    await database.close()


@pytest_asyncio.fixture
async def queue(db: LocalDatabase) -> QueueStore:
    store = QueueStore(db)
    await store.open()
    return store


@pytest.fixture
def completed(db: LocalDatabase) -> CompletedStore:
    return CompletedStore(db)


# ---------------------------------------------------------------------------
# Component fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def remote() -> StubRemoteStore:
    return StubRemoteStore()


@pytest.fixture
def monitor() -> ConnectivityMonitor:
    return ConnectivityMonitor(initial_online=True)


@pytest.fixture
def offline_monitor() -> ConnectivityMonitor:
    return ConnectivityMonitor(initial_online=False)


@pytest.fixture
def engine(
    queue: QueueStore,
    remote: StubRemoteStore,
    completed: CompletedStore,
    monitor: ConnectivityMonitor,
) -> SyncEngine:
    return SyncEngine(queue, remote, completed, monitor)


@pytest.fixture
def gateway(
    queue: QueueStore,
    remote: StubRemoteStore,
    completed: CompletedStore,
    monitor: ConnectivityMonitor,
) -> SubmissionGateway:
    return SubmissionGateway(queue, remote, completed, monitor)
