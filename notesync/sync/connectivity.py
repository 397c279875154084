"""Process-wide view of network connectivity.

``ConnectivityMonitor`` caches a boolean online/offline signal fed by the
environment (the client's browser signal over HTTP, or the background
``ConnectivityProbe``) and notifies subscribers on every transition.

Construct exactly one monitor per process and pass it to the components that
need it.  On a transition to online the monitor also schedules one sync pass
through its reconnect handler; the sync engine does not depend on that
trigger and can always be invoked directly.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable

logger = logging.getLogger("notesync.sync.connectivity")

ConnectivityCallback = Callable[[bool], Any]
ReconnectHandler = Callable[[], Awaitable[Any]]


class ConnectivityMonitor:
    """Cached online/offline status with publish/subscribe notification.

    Usage::

        monitor = ConnectivityMonitor(initial_online=True)
        monitor.set_reconnect_handler(lambda: engine.sync_all(trigger="reconnect"))
        monitor.subscribe(lambda online: logger.info("online=%s", online))
        monitor.set_status(False)   # environment went offline
    """

    def __init__(self, initial_online: bool | None = None) -> None:
        """Initialize the monitor.

        Args:
            initial_online: The environment's signal at process start.  None
                            (no signal available) means online.
        """
        self._online = True if initial_online is None else bool(initial_online)
        self._subscribers: list[ConnectivityCallback] = []
        self._reconnect_handler: ReconnectHandler | None = None
        self._tasks: set[asyncio.Task] = set()

    @property
    def is_online(self) -> bool:
        return self._online

    def get_status(self) -> bool:
        """Return the cached status.  Never probes the network."""
        return self._online

    # ------------------------------------------------------------------
    # Subscription
    # ------------------------------------------------------------------

    def subscribe(self, callback: ConnectivityCallback) -> None:
        """Register ``callback(online)`` to run on every transition.

        Plain functions are called inline; coroutine functions are scheduled
        as tasks on the running loop.  Registering the same callback twice
        has no effect.
        """
        if callback not in self._subscribers:
            self._subscribers.append(callback)

    def unsubscribe(self, callback: ConnectivityCallback) -> None:
        """Remove a callback.  Unknown callbacks are ignored."""
        try:
            self._subscribers.remove(callback)
        except ValueError:
            pass

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def set_reconnect_handler(self, handler: ReconnectHandler | None) -> None:
        """Set the coroutine function run once after each transition to online."""
        self._reconnect_handler = handler

    # ------------------------------------------------------------------
    # Environment events
    # ------------------------------------------------------------------

    def set_status(self, online: bool) -> bool:
        """Apply an environment signal.

        Args:
            online: True if the environment reports connectivity.

        Returns:
            True if this was a transition, False if the status was unchanged.
        """
        online = bool(online)
        if online == self._online:
            return False

        self._online = online
        logger.info("Connectivity changed: %s", "online" if online else "offline")

        # Snapshot so a subscriber can unsubscribe itself during dispatch
        for callback in list(self._subscribers):
            self._dispatch(callback, online)

        if online and self._reconnect_handler is not None:
            self._schedule(self._reconnect_handler(), "reconnect sync")
        return True

    def _dispatch(self, callback: ConnectivityCallback, online: bool) -> None:
        try:
            result = callback(online)
        except Exception:
            logger.exception("Connectivity subscriber %r failed", callback)
            return
        if inspect.isawaitable(result):
            self._schedule(result, f"subscriber {callback!r}")

    def _schedule(self, awaitable: Awaitable[Any], label: str) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("No running event loop; dropping %s", label)
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            return

        task = loop.create_task(_run_logged(awaitable, label))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def wait_idle(self) -> None:
        """Wait for scheduled subscriber tasks and reconnect syncs to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def close(self) -> None:
        """Drop subscribers and the reconnect handler, then finish pending work."""
        self._subscribers.clear()
        self._reconnect_handler = None
        await self.wait_idle()


async def _run_logged(awaitable: Awaitable[Any], label: str) -> Any:
    try:
        return await awaitable
    except Exception:
        logger.exception("Background %s failed", label)
        return None
