"""Build and own the process-wide sync components.

There is exactly one ``SyncRuntime`` per process.  It constructs the
connectivity monitor once and injects it, together with the shared stores
and remote client, into the engine and the gateway.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field

from notesync.config import Settings, get_settings
from notesync.services.sqlite import LocalDatabase
from notesync.sync.completed import CompletedStore
from notesync.sync.connectivity import ConnectivityMonitor
from notesync.sync.engine import SyncEngine
from notesync.sync.gateway import SubmissionGateway
from notesync.sync.probe import ConnectivityProbe
from notesync.sync.queue_store import QueueStore
from notesync.sync.remote import HttpRemoteStore, RemoteStore

logger = logging.getLogger("notesync.sync.runtime")


@dataclass
class SyncRuntime:
    """The wired-up sync core.

    Attributes:
        database:  Local SQLite database.
        queue:     Durable queue store.
        completed: Completed-items store.
        remote:    Remote store client.
        monitor:   The process-wide connectivity monitor.
        engine:    Sync engine.
        gateway:   Submission gateway.
        probe:     Background connectivity probe.
    """

    database: LocalDatabase
    queue: QueueStore
    completed: CompletedStore
    remote: RemoteStore
    monitor: ConnectivityMonitor
    engine: SyncEngine
    gateway: SubmissionGateway
    probe: ConnectivityProbe
    sync_on_startup: bool = True
    owns_database: bool = True
    _startup_task: asyncio.Task | None = field(default=None, init=False, repr=False)

    @classmethod
    def build(
        cls,
        settings: Settings | None = None,
        *,
        database: LocalDatabase | None = None,
        remote: RemoteStore | None = None,
    ) -> "SyncRuntime":
        s = settings or get_settings()
        db = database or LocalDatabase(s.database_path)
        remote_store = remote or HttpRemoteStore.from_settings(s)

        queue = QueueStore(db)
        completed = CompletedStore(db)
        monitor = ConnectivityMonitor(initial_online=s.connectivity_initial_online)
        engine = SyncEngine(queue, remote_store, completed, monitor)
        gateway = SubmissionGateway(queue, remote_store, completed, monitor)
        monitor.set_reconnect_handler(lambda: engine.sync_all(trigger="reconnect"))
        probe = ConnectivityProbe(
            monitor, remote_store, interval_seconds=s.connectivity_probe_interval_seconds
        )
        return cls(
            database=db,
            queue=queue,
            completed=completed,
            remote=remote_store,
            monitor=monitor,
            engine=engine,
            gateway=gateway,
            probe=probe,
            sync_on_startup=s.sync_on_startup,
            owns_database=database is None,
        )

    async def start(self) -> None:
        """Open storage, start the probe and drain leftovers in the background.

        The startup pass runs as a task so the API serves submissions while
        a backlog is replayed against a slow or unreachable remote store.
        """
        recovered = await self.queue.open()
        queued = await self.queue.count()
        logger.info(
            "Sync runtime started: %d queued record(s), %d recovered, online=%s",
            queued, recovered, self.monitor.get_status(),
        )
        self.probe.start()
        if self.sync_on_startup and queued and self.monitor.get_status():
            self._startup_task = asyncio.get_running_loop().create_task(
                self.engine.sync_all(trigger="startup")
            )

    @property
    def startup_sync_running(self) -> bool:
        return self._startup_task is not None and not self._startup_task.done()

    async def wait_startup_sync(self) -> None:
        """Wait for the startup pass, if one was scheduled."""
        if self._startup_task is not None:
            await self._startup_task

    async def stop(self) -> None:
        if self.startup_sync_running:
            # Records interrupted mid-delivery are recovered on the next start
            self._startup_task.cancel()
            try:
                await self._startup_task
            except asyncio.CancelledError:
                logger.info("Startup sync cancelled at shutdown")
        self._startup_task = None
        await self.probe.stop()
        await self.monitor.close()
        await self.remote.aclose()
        if self.owns_database:
            await self.database.close()
        logger.info("Sync runtime stopped")
