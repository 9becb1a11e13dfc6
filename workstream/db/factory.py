"""Backend dispatch on connection type: repositories and schema migrations.

SQLite connections get the aiosqlite implementations; anything else is treated
as an asyncpg pool, whose modules are imported only when first needed.
"""
from __future__ import annotations

import logging
from typing import Any

import aiosqlite

from workstream.db import sqlite_migrations
from workstream.db.repositories.content import SqliteContentRepository
from workstream.db.repositories.sync_history import SqliteSyncHistoryRepository

logger = logging.getLogger("workstream.db")


def get_content_repository(db: Any):
    if isinstance(db, aiosqlite.Connection):
        return SqliteContentRepository(db)
    from workstream.db.repositories.postgres.content import PostgresContentRepository
    return PostgresContentRepository(db)


def get_sync_history_repository(db: Any):
    if isinstance(db, aiosqlite.Connection):
        return SqliteSyncHistoryRepository(db)
    from workstream.db.repositories.postgres.sync_history import PostgresSyncHistoryRepository
    return PostgresSyncHistoryRepository(db)


async def run_migrations(db: Any) -> None:
    if isinstance(db, aiosqlite.Connection):
        logger.info("Applying SQLite schema")
        await sqlite_migrations.run_migrations(db)
        return
    from workstream.db import postgres_migrations
    logger.info("Applying Postgres schema")
    await postgres_migrations.run_migrations(db)
