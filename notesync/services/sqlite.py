"""Local SQLite database shared by the queue and completed-items stores.

SQLite is the durable local storage for records created while offline.  The
``sqlite3`` module is blocking, so every call is pushed onto a worker thread
with ``asyncio.to_thread`` and serialised with a lock; callers only ever see
coroutines.

Usage::

    db = await init_database(settings)
    rows = await db.run(lambda conn: conn.execute("SELECT 1").fetchall())
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Iterator, TypeVar

from notesync.config import Settings, get_settings
from notesync.sync.errors import StorageUnavailable

logger = logging.getLogger("notesync.db")

T = TypeVar("T")

SCHEMA = """
CREATE TABLE IF NOT EXISTS pending_ingestions (
  id TEXT PRIMARY KEY,
  payload_json TEXT NOT NULL,
  created_at REAL NOT NULL,
  status TEXT NOT NULL DEFAULT 'pending',
  retry_count INTEGER NOT NULL DEFAULT 0,
  last_retry_at REAL,
  enqueued_at REAL NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_pending_status
ON pending_ingestions(status);

CREATE INDEX IF NOT EXISTS idx_pending_created_at
ON pending_ingestions(created_at);

CREATE TABLE IF NOT EXISTS completed_ingestions (
  id TEXT PRIMARY KEY,
  payload_json TEXT NOT NULL,
  created_at REAL NOT NULL,
  completed_at REAL NOT NULL,
  via TEXT NOT NULL DEFAULT 'sync'
);

CREATE INDEX IF NOT EXISTS idx_completed_created_at
ON completed_ingestions(created_at);
"""


class LocalDatabase:
    """One SQLite connection plus the lock that serialises access to it."""

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        self._lock = threading.RLock()
        self._conn: sqlite3.Connection | None = None

    @property
    def path(self) -> Path:
        return self._path

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    async def open(self) -> None:
        """Open the database and create the schema.  Safe to call twice.

        Raises:
            StorageUnavailable: If the file or its directory cannot be used.
        """
        await asyncio.to_thread(self._open_sync)

    def _open_sync(self) -> None:
        with self._lock:
            if self._conn is not None:
                return
            try:
                if str(self._path) != ":memory:":
                    self._path.parent.mkdir(parents=True, exist_ok=True)
                conn = sqlite3.connect(
                    str(self._path),
                    isolation_level=None,
                    check_same_thread=False,
                )
                conn.row_factory = sqlite3.Row
                conn.execute("PRAGMA journal_mode=WAL;")
                conn.execute("PRAGMA synchronous=FULL;")
                conn.executescript(SCHEMA)
            except (OSError, sqlite3.Error) as exc:
                logger.error("Could not open local database %s: %s", self._path, exc)
                raise StorageUnavailable(
                    f"Local database {self._path} unavailable: {exc}"
                ) from exc
            self._conn = conn
            logger.info("Local database opened at %s", self._path)

    async def close(self) -> None:
        await asyncio.to_thread(self._close_sync)

    def _close_sync(self) -> None:
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None
                logger.info("Local database closed")

    async def run(self, fn: Callable[..., T], *args: Any) -> T:
        """Run ``fn(conn, *args)`` on a worker thread while holding the lock.

        The database is opened lazily on first use.  SQLite errors are
        translated into ``StorageUnavailable``; any other exception raised by
        ``fn`` propagates unchanged.
        """
        return await asyncio.to_thread(self._run_sync, fn, *args)

    def _run_sync(self, fn: Callable[..., T], *args: Any) -> T:
        with self._lock:
            if self._conn is None:
                self._open_sync()
            assert self._conn is not None
            try:
                return fn(self._conn, *args)
            except sqlite3.Error as exc:
                logger.error("Local database error: %s", exc)
                raise StorageUnavailable(f"Local database error: {exc}") from exc


@contextmanager
def transaction(conn: sqlite3.Connection) -> Iterator[sqlite3.Cursor]:
    """``BEGIN IMMEDIATE`` … ``COMMIT``, rolling back on any exception.

    Only call from inside ``LocalDatabase.run`` so the lock is held.
    """
    cur = conn.cursor()
    cur.execute("BEGIN IMMEDIATE;")
    try:
        yield cur
    except BaseException:
        cur.execute("ROLLBACK;")
        raise
    cur.execute("COMMIT;")


# Module-level database, initialized once at app startup
_database: LocalDatabase | None = None


async def init_database(settings: Settings | None = None) -> LocalDatabase:
    """Open the process-wide local database.  Call once at app startup."""
    global _database
    s = settings or get_settings()
    db = LocalDatabase(s.database_path)
    await db.open()
    _database = db
    return db


async def close_database() -> None:
    """Close the database. Call at app shutdown."""
    global _database
    if _database:
        await _database.close()
        _database = None
