"""Database connection factory.

Provides a singleton async connection to SQLite (default) with WAL mode,
or an asyncpg pool when WORKSTREAM_DB_BACKEND=postgres.
"""
from __future__ import annotations

import asyncio
import logging
import weakref
from pathlib import Path
from typing import Any, Union

import aiosqlite
import asyncpg

from workstream import config

logger = logging.getLogger("workstream.db")

# Type alias for DB connection/pool
DbConnection = Union[aiosqlite.Connection, Any]  # Any covers asyncpg.Pool

_connection: DbConnection | None = None


async def get_connection() -> DbConnection:
    """Return the singleton database connection/pool, creating it if needed."""
    global _connection
    if _connection is not None:
        return _connection

    if config.DB_BACKEND == "postgres":
        logger.info("Connecting to PostgreSQL")
        _connection = await asyncpg.create_pool(config.DATABASE_URL)
        return _connection

    db_path = Path(config.DB_PATH)
    db_path.parent.mkdir(parents=True, exist_ok=True)
    conn = await aiosqlite.connect(str(db_path))
    conn.row_factory = aiosqlite.Row
    await conn.execute("PRAGMA journal_mode=WAL")
    await conn.execute("PRAGMA busy_timeout=5000")
    logger.info("Database connection established: %s", db_path)
    _connection = conn
    return _connection


async def close_connection() -> None:
    """Close the database connection."""
    global _connection
    if _connection is not None:
        await _connection.close()
        _connection = None
        logger.info("Database connection closed")


def is_connected() -> bool:
    return _connection is not None


# SQLite shares one connection: writers and readers serialize on this lock so a
# batch stays invisible until it commits.
_connection_locks: "weakref.WeakKeyDictionary[Any, asyncio.Lock]" = weakref.WeakKeyDictionary()


def connection_lock(db: Any) -> asyncio.Lock:
    lock = _connection_locks.get(db)
    if lock is None:
        lock = asyncio.Lock()
        _connection_locks[db] = lock
    return lock
