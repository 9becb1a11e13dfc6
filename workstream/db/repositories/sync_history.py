"""SQLite implementation of the append-only sync history."""
from __future__ import annotations

import json
from typing import Any

import aiosqlite

from workstream.db.connection import connection_lock
from workstream.models import SyncRecord


def row_to_sync_record(row: Any) -> SyncRecord:
    data = dict(row)
    try:
        errors = json.loads(data.get("errors_json") or "[]")
    except ValueError:
        errors = []
    return SyncRecord(
        source=data["source"],
        syncTime=data["sync_time"],
        mode=data.get("mode") or "none",
        itemsProcessed=data.get("items_processed") or 0,
        itemsAdded=data.get("items_added") or 0,
        itemsUpdated=data.get("items_updated") or 0,
        success=bool(data["success"]),
        errors=errors,
    )


class SqliteSyncHistoryRepository:
    """Records one row per sync attempt; rows are never updated."""

    def __init__(self, db: aiosqlite.Connection):
        self.db = db
        self._lock = connection_lock(db)

    async def record(self, record: SyncRecord) -> None:
        async with self._lock:
            await self.db.execute(
                """INSERT INTO sync_history (
                    source, sync_time, mode, items_processed, items_added,
                    items_updated, success, errors_json
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    record.source,
                    record.syncTime,
                    record.mode,
                    record.itemsProcessed,
                    record.itemsAdded,
                    record.itemsUpdated,
                    1 if record.success else 0,
                    json.dumps(record.errors),
                ),
            )
            await self.db.commit()

    async def get_last_successful_sync(self, source: str) -> SyncRecord | None:
        async with self._lock:
            async with self.db.execute(
                """SELECT * FROM sync_history
                   WHERE source = ? AND success = 1
                   ORDER BY sync_time DESC, id DESC LIMIT 1""",
                (source,),
            ) as cur:
                row = await cur.fetchone()
        return row_to_sync_record(row) if row else None

    async def list_recent(self, source: str | None = None, limit: int = 50) -> list[SyncRecord]:
        if source:
            sql = "SELECT * FROM sync_history WHERE source = ? ORDER BY id DESC LIMIT ?"
            params: tuple = (source, limit)
        else:
            sql = "SELECT * FROM sync_history ORDER BY id DESC LIMIT ?"
            params = (limit,)
        async with self._lock:
            async with self.db.execute(sql, params) as cur:
                rows = await cur.fetchall()
        return [row_to_sync_record(r) for r in rows]
