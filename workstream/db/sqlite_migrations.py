"""SQLite schema creation and versioning.

Uses IF NOT EXISTS for idempotent runs.
"""
from __future__ import annotations

import logging

import aiosqlite

logger = logging.getLogger("workstream.db")

SCHEMA_VERSION = 1

_TABLES = """
-- ── Schema version tracking ────────────────────────────────────────
CREATE TABLE IF NOT EXISTS schema_version (
    version   INTEGER NOT NULL,
    applied   TEXT NOT NULL DEFAULT (datetime('now'))
);

-- ── 1. Unified content ─────────────────────────────────────────────
CREATE TABLE IF NOT EXISTS unified_content (
    id                   TEXT PRIMARY KEY,
    source               TEXT NOT NULL,
    content_type         TEXT NOT NULL,
    title                TEXT NOT NULL,
    description          TEXT,
    url                  TEXT,
    created_at           TEXT NOT NULL,
    updated_at           TEXT NOT NULL,
    extracted_at         TEXT NOT NULL,
    parent_id            TEXT,
    child_ids_json       TEXT DEFAULT '[]',
    related_ids_json     TEXT DEFAULT '[]',
    source_metadata_json TEXT NOT NULL DEFAULT '{}',
    content              TEXT NOT NULL DEFAULT '',
    searchable_text      TEXT NOT NULL DEFAULT '',
    keywords_json        TEXT DEFAULT '[]',
    structured_data_json TEXT
);

CREATE INDEX IF NOT EXISTS idx_content_source     ON unified_content(source);
CREATE INDEX IF NOT EXISTS idx_content_type       ON unified_content(content_type);
CREATE INDEX IF NOT EXISTS idx_content_created_at ON unified_content(created_at);
CREATE INDEX IF NOT EXISTS idx_content_updated_at ON unified_content(updated_at);
CREATE INDEX IF NOT EXISTS idx_content_parent     ON unified_content(parent_id);

-- ── 2. Relationships ───────────────────────────────────────────────
CREATE TABLE IF NOT EXISTS content_relationships (
    parent_id         TEXT NOT NULL,
    child_id          TEXT NOT NULL,
    relationship_type TEXT NOT NULL,
    created_at        TEXT NOT NULL,
    PRIMARY KEY (parent_id, child_id, relationship_type)
);

CREATE INDEX IF NOT EXISTS idx_relationships_child ON content_relationships(child_id);

-- ── 3. Sync history (append-only) ──────────────────────────────────
CREATE TABLE IF NOT EXISTS sync_history (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    source          TEXT NOT NULL,
    sync_time       TEXT NOT NULL,
    mode            TEXT DEFAULT 'none',
    items_processed INTEGER DEFAULT 0,
    items_added     INTEGER DEFAULT 0,
    items_updated   INTEGER DEFAULT 0,
    success         INTEGER NOT NULL,
    errors_json     TEXT DEFAULT '[]'
);

CREATE INDEX IF NOT EXISTS idx_sync_history_source ON sync_history(source, success, sync_time DESC);
"""


async def run_migrations(db: aiosqlite.Connection) -> None:
    """Create all tables and record the schema version."""
    await db.executescript(_TABLES)

    async with db.execute("SELECT MAX(version) FROM schema_version") as cur:
        row = await cur.fetchone()
        current = row[0] if row and row[0] is not None else 0

    if current < SCHEMA_VERSION:
        await db.execute("INSERT INTO schema_version (version) VALUES (?)", (SCHEMA_VERSION,))
        logger.info("SQLite schema at version %s", SCHEMA_VERSION)
    await db.commit()
