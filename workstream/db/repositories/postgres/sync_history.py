"""PostgreSQL implementation of the append-only sync history."""
from __future__ import annotations

import json

import asyncpg

from workstream.db.repositories.sync_history import row_to_sync_record
from workstream.models import SyncRecord


class PostgresSyncHistoryRepository:
    def __init__(self, db: asyncpg.Pool | asyncpg.Connection):
        self.db = db

    async def record(self, record: SyncRecord) -> None:
        await self.db.execute(
            """INSERT INTO sync_history (
                source, sync_time, mode, items_processed, items_added,
                items_updated, success, errors_json
            ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8)""",
            record.source,
            record.syncTime,
            record.mode,
            record.itemsProcessed,
            record.itemsAdded,
            record.itemsUpdated,
            record.success,
            json.dumps(record.errors),
        )

    async def get_last_successful_sync(self, source: str) -> SyncRecord | None:
        row = await self.db.fetchrow(
            """SELECT * FROM sync_history
               WHERE source = $1 AND success = TRUE
               ORDER BY sync_time DESC, id DESC LIMIT 1""",
            source,
        )
        return row_to_sync_record(row) if row else None

    async def list_recent(self, source: str | None = None, limit: int = 50) -> list[SyncRecord]:
        if source:
            rows = await self.db.fetch(
                "SELECT * FROM sync_history WHERE source = $1 ORDER BY id DESC LIMIT $2",
                source, limit,
            )
        else:
            rows = await self.db.fetch("SELECT * FROM sync_history ORDER BY id DESC LIMIT $1", limit)
        return [row_to_sync_record(r) for r in rows]
