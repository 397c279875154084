"""Append-only log of records confirmed delivered to the remote store.

The search/query side of the application reads this log; the sync core only
ever appends to it.  Appending an id that is already present is a no-op, so a
record redelivered after a crash does not appear twice.
"""

from __future__ import annotations

import json
import logging
import sqlite3

from notesync.services.sqlite import LocalDatabase
from notesync.sync.base import (
    CompletedItem,
    IngestionPayload,
    from_epoch,
    to_epoch,
    utc_now,
)

logger = logging.getLogger("notesync.sync.completed")


class CompletedStore:
    """Completed-items set stored in the ``completed_ingestions`` table."""

    def __init__(self, db: LocalDatabase) -> None:
        self._db = db

    async def append(
        self, item_id: str, payload: IngestionPayload, *, via: str = "sync"
    ) -> CompletedItem:
        """Record a delivered payload.

        Args:
            item_id: ``synced-<queue id>`` or a direct-submission id.
            payload: The delivered record.
            via:     'sync' or 'direct'.

        Returns:
            The CompletedItem as appended.

        Raises:
            StorageUnavailable: If the database cannot be written.
        """
        item = CompletedItem(id=item_id, payload=payload, completed_at=utc_now(), via=via)
        inserted = await self._db.run(_insert, item)
        if inserted:
            logger.debug("Completed item %s (%s)", item_id, via)
        else:
            logger.info("Completed item %s already recorded", item_id)
        return item

    async def list_all(self) -> list[CompletedItem]:
        """Return completed items, newest submission first."""
        rows = await self._db.run(
            lambda conn: conn.execute(
                """
                SELECT id, payload_json, completed_at, via
                FROM completed_ingestions
                ORDER BY created_at DESC, id ASC
                """
            ).fetchall()
        )
        return [
            CompletedItem(
                id=str(row["id"]),
                payload=IngestionPayload.from_dict(json.loads(row["payload_json"])),
                completed_at=from_epoch(row["completed_at"]) or utc_now(),
                via=str(row["via"]),
            )
            for row in rows
        ]

    async def count(self) -> int:
        row = await self._db.run(
            lambda conn: conn.execute(
                "SELECT COUNT(*) AS c FROM completed_ingestions"
            ).fetchone()
        )
        return int(row["c"]) if row is not None else 0


def _insert(conn: sqlite3.Connection, item: CompletedItem) -> bool:
    cur = conn.execute(
        """
        INSERT OR IGNORE INTO completed_ingestions(id, payload_json, created_at, completed_at, via)
        VALUES(?, ?, ?, ?, ?)
        """,
        (
            item.id,
            json.dumps(item.payload.to_dict(), sort_keys=True),
            to_epoch(item.payload.created_at),
            to_epoch(item.completed_at),
            item.via,
        ),
    )
    return cur.rowcount == 1
