"""Durable queue of records waiting to be delivered to the remote store.

Backed by the ``pending_ingestions`` table of the local SQLite database.
Every mutating call commits before its coroutine returns, so a caller may
treat a resolved ``enqueue`` / ``update_fields`` / ``remove`` as durable.

All mutation is point-wise (one id per statement or transaction); nothing
reads the whole collection, edits it and writes it back.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from datetime import datetime
from typing import Any, Collection

from notesync.services.sqlite import LocalDatabase, transaction
from notesync.sync.base import (
    IngestionPayload,
    QueuedRecord,
    RecordStatus,
    from_epoch,
    new_record_id,
    to_epoch,
    utc_now,
)
from notesync.sync.errors import RecordNotFound

logger = logging.getLogger("notesync.sync.queue")

_UPDATABLE_FIELDS = frozenset({"status", "retry_count", "last_retry_at"})
_MAX_ID_ATTEMPTS = 5

_SELECT_COLUMNS = """
    SELECT id, payload_json, status, retry_count, last_retry_at, enqueued_at
    FROM pending_ingestions
"""


class QueueStore:
    """Keyed, persistent storage for ``QueuedRecord`` objects.

    Usage::

        store = QueueStore(db)
        await store.open()
        record_id = await store.enqueue(payload)
        await store.update_fields(record_id, status=RecordStatus.FAILED, retry_count=1)
        await store.remove(record_id)
    """

    def __init__(self, db: LocalDatabase) -> None:
        self._db = db

    async def open(self) -> int:
        """Open storage and recover records interrupted mid-delivery.

        A record still marked SYNCING belonged to a pass that died with the
        previous process.  It goes back to PENDING so the next pass retries it.

        Returns:
            Number of recovered records.

        Raises:
            StorageUnavailable: If the database cannot be opened.
        """
        await self._db.open()
        recovered = await self._db.run(_reset_interrupted)
        if recovered:
            logger.warning(
                "Recovered %d record(s) left in '%s' by a previous run",
                recovered, RecordStatus.SYNCING.value,
            )
        return recovered

    # ------------------------------------------------------------------
    # Create / read
    # ------------------------------------------------------------------

    async def enqueue(self, payload: IngestionPayload) -> str:
        """Store a new PENDING record with retry_count 0.

        Returns:
            The new record id.

        Raises:
            StorageUnavailable: If storage cannot be opened or written.
        """
        record_id = await self._db.run(_insert, payload)
        logger.info("Queued record %s", record_id)
        return record_id

    async def list_all(self) -> list[QueuedRecord]:
        """Return every queued record, oldest submission first.

        Each call reads current state; nothing is cached.
        """
        rows = await self._db.run(
            lambda conn: conn.execute(
                _SELECT_COLUMNS + " ORDER BY created_at ASC, id ASC"
            ).fetchall()
        )
        return [_row_to_record(row) for row in rows]

    async def list_by_status(self, *statuses: RecordStatus) -> list[QueuedRecord]:
        """Return records in any of ``statuses``, oldest submission first."""
        if not statuses:
            return []
        values = tuple(RecordStatus(s).value for s in statuses)
        placeholders = ",".join("?" for _ in values)
        rows = await self._db.run(
            lambda conn: conn.execute(
                _SELECT_COLUMNS
                + f" WHERE status IN ({placeholders}) ORDER BY created_at ASC, id ASC",
                values,
            ).fetchall()
        )
        return [_row_to_record(row) for row in rows]

    async def get(self, record_id: str) -> QueuedRecord:
        """Return one record.

        Raises:
            RecordNotFound: If ``record_id`` is not queued.
        """
        row = await self._db.run(
            lambda conn: conn.execute(
                _SELECT_COLUMNS + " WHERE id = ?", (record_id,)
            ).fetchone()
        )
        if row is None:
            raise RecordNotFound(record_id)
        return _row_to_record(row)

    async def count(self) -> int:
        row = await self._db.run(
            lambda conn: conn.execute(
                "SELECT COUNT(*) AS c FROM pending_ingestions"
            ).fetchone()
        )
        return int(row["c"]) if row is not None else 0

    async def count_by_status(self) -> dict[RecordStatus, int]:
        """Return a per-status record count; every status is present."""
        rows = await self._db.run(
            lambda conn: conn.execute(
                "SELECT status, COUNT(*) AS c FROM pending_ingestions GROUP BY status"
            ).fetchall()
        )
        counts = {status: 0 for status in RecordStatus}
        for row in rows:
            counts[RecordStatus(row["status"])] = int(row["c"])
        return counts

    # ------------------------------------------------------------------
    # Update / delete
    # ------------------------------------------------------------------

    async def update_fields(
        self,
        record_id: str,
        *,
        expect_status: Collection[RecordStatus] | None = None,
        expect_retry_count: int | None = None,
        **fields: Any,
    ) -> bool:
        """Merge ``fields`` into an existing record.

        The read and the write happen inside one ``BEGIN IMMEDIATE``
        transaction, so concurrent writers to the same id never lose updates.

        Args:
            record_id:     Queue id to update.
            expect_status: If given, only apply the update while the record's
                           current status is one of these (compare-and-set).
            expect_retry_count: If given, also require the stored retry_count
                           to equal this value.
            **fields:      Any of ``status``, ``retry_count``, ``last_retry_at``.

        Returns:
            True if the update was applied, False if an ``expect_*`` guard did
            not match.

        Raises:
            RecordNotFound: If ``record_id`` does not exist.
            ValueError:     On unknown fields or a decreasing ``retry_count``.
        """
        unknown = set(fields) - _UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update queued record fields: {sorted(unknown)}")
        if not fields:
            return True

        expected = (
            None
            if expect_status is None
            else {RecordStatus(s).value for s in expect_status}
        )
        applied = await self._db.run(
            _update, record_id, expected, expect_retry_count, fields
        )
        if applied:
            logger.debug("Updated record %s: %s", record_id, fields)
        return applied

    async def record_failure(self, record_id: str, *, failed_at: datetime | None = None) -> int:
        """Mark a record FAILED and bump its retry_count in one statement.

        The increment happens in SQL against the stored value, so two writers
        never overwrite each other's count.

        Returns:
            The new retry_count.

        Raises:
            RecordNotFound: If ``record_id`` does not exist.
        """
        retry_count = await self._db.run(
            _record_failure, record_id, to_epoch(failed_at or utc_now())
        )
        logger.debug("Record %s failed (retry_count=%d)", record_id, retry_count)
        return retry_count

    async def remove(self, record_id: str) -> None:
        """Delete a record.  Deleting an unknown id is not an error."""
        deleted = await self._db.run(_delete, record_id)
        if deleted:
            logger.debug("Removed record %s", record_id)

    async def clear_all(self) -> int:
        """Drop every queued record.  Irreversible.

        Returns:
            Number of records removed.
        """
        deleted = await self._db.run(
            lambda conn: conn.execute("DELETE FROM pending_ingestions").rowcount
        )
        logger.warning("Cleared %d queued record(s)", deleted)
        return int(deleted)


# ---------------------------------------------------------------------------
# Blocking helpers, always run through LocalDatabase.run
# ---------------------------------------------------------------------------


def _insert(conn: sqlite3.Connection, payload: IngestionPayload) -> str:
    now = to_epoch(utc_now())
    payload_json = json.dumps(payload.to_dict(), sort_keys=True)
    created_at = to_epoch(payload.created_at)
    for _ in range(_MAX_ID_ATTEMPTS):
        record_id = new_record_id("pending")
        cur = conn.execute(
            """
            INSERT OR IGNORE INTO pending_ingestions(
              id, payload_json, created_at, status, retry_count, last_retry_at, enqueued_at
            ) VALUES(?, ?, ?, ?, 0, NULL, ?)
            """,
            (record_id, payload_json, created_at, RecordStatus.PENDING.value, now),
        )
        if cur.rowcount == 1:
            return record_id
    raise sqlite3.IntegrityError("could not allocate a unique queue id")


def _update(
    conn: sqlite3.Connection,
    record_id: str,
    expected: set[str] | None,
    expected_retry_count: int | None,
    fields: dict[str, Any],
) -> bool:
    with transaction(conn) as cur:
        row = cur.execute(
            "SELECT status, retry_count FROM pending_ingestions WHERE id = ?",
            (record_id,),
        ).fetchone()
        if row is None:
            raise RecordNotFound(record_id)
        if expected is not None and row["status"] not in expected:
            return False
        if expected_retry_count is not None and int(row["retry_count"]) != expected_retry_count:
            return False

        values: dict[str, Any] = {}
        if "status" in fields:
            values["status"] = RecordStatus(fields["status"]).value
        if "retry_count" in fields:
            retry_count = int(fields["retry_count"])
            if retry_count < int(row["retry_count"]):
                raise ValueError(
                    f"retry_count for {record_id} cannot decrease "
                    f"({row['retry_count']} -> {retry_count})"
                )
            values["retry_count"] = retry_count
        if "last_retry_at" in fields:
            values["last_retry_at"] = to_epoch(fields["last_retry_at"])

        set_clause = ", ".join(f"{column} = ?" for column in values)
        cur.execute(
            f"UPDATE pending_ingestions SET {set_clause} WHERE id = ?",
            (*values.values(), record_id),
        )
        return True


def _record_failure(conn: sqlite3.Connection, record_id: str, failed_at: float) -> int:
    with transaction(conn) as cur:
        cur.execute(
            """
            UPDATE pending_ingestions
            SET status = ?, retry_count = retry_count + 1, last_retry_at = ?
            WHERE id = ?
            """,
            (RecordStatus.FAILED.value, failed_at, record_id),
        )
        if cur.rowcount == 0:
            raise RecordNotFound(record_id)
        row = cur.execute(
            "SELECT retry_count FROM pending_ingestions WHERE id = ?", (record_id,)
        ).fetchone()
        return int(row["retry_count"])


def _delete(conn: sqlite3.Connection, record_id: str) -> int:
    return conn.execute(
        "DELETE FROM pending_ingestions WHERE id = ?", (record_id,)
    ).rowcount


def _reset_interrupted(conn: sqlite3.Connection) -> int:
    return conn.execute(
        "UPDATE pending_ingestions SET status = ? WHERE status = ?",
        (RecordStatus.PENDING.value, RecordStatus.SYNCING.value),
    ).rowcount


def _row_to_record(row: sqlite3.Row) -> QueuedRecord:
    return QueuedRecord(
        id=str(row["id"]),
        payload=IngestionPayload.from_dict(json.loads(row["payload_json"])),
        status=RecordStatus(row["status"]),
        retry_count=int(row["retry_count"]),
        last_retry_at=from_epoch(row["last_retry_at"]),
        enqueued_at=from_epoch(row["enqueued_at"]) or utc_now(),
    )
