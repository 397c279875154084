"""Background connectivity probe.

Polls the remote store's health endpoint on a fixed interval and feeds the
result to the ``ConnectivityMonitor`` as an environment signal.  The monitor
itself never probes; it only caches what this task (or the client, over
HTTP) reports.
"""

from __future__ import annotations

import asyncio
import logging

from notesync.sync.connectivity import ConnectivityMonitor
from notesync.sync.remote import RemoteStore

logger = logging.getLogger("notesync.sync.probe")


class ConnectivityProbe:
    """Periodic reachability check driving a ConnectivityMonitor.

    Usage::

        probe = ConnectivityProbe(monitor, remote, interval_seconds=15)
        probe.start()
        ...
        await probe.stop()
    """

    def __init__(
        self,
        monitor: ConnectivityMonitor,
        remote: RemoteStore,
        interval_seconds: float = 15.0,
    ) -> None:
        self._monitor = monitor
        self._remote = remote
        self._interval = float(interval_seconds)
        self._task: asyncio.Task | None = None

    @property
    def enabled(self) -> bool:
        return self._interval > 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def check_once(self) -> bool:
        """Probe the remote store once and report the result to the monitor."""
        try:
            online = await self._remote.probe()
        except Exception as exc:
            logger.warning("Connectivity probe raised: %s", exc)
            online = False
        self._monitor.set_status(online)
        return online

    def start(self) -> None:
        """Start the polling loop.  No-op when disabled or already running."""
        if not self.enabled:
            logger.info("Connectivity probe disabled")
            return
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._loop())
        logger.info("Connectivity probe started (every %.1fs)", self._interval)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Connectivity probe stopped")

    async def _loop(self) -> None:
        while True:
            await self.check_once()
            await asyncio.sleep(self._interval)
