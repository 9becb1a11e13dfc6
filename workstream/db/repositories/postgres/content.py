"""PostgreSQL implementation of the unified content store."""
from __future__ import annotations

import contextlib
from typing import Any, Iterable

import asyncpg

from workstream.date_utils import normalize_range_bounds, utc_now_iso
from workstream.db.repositories.content import (
    SORT_COLUMNS,
    TIME_COLUMNS,
    content_to_row,
    escape_like,
    relationship_rows,
    row_to_content,
)
from workstream.models import DataQuery, DataQueryResult, UnifiedContent

_UPSERT_SQL = """INSERT INTO unified_content (
    id, source, content_type, title, description, url,
    created_at, updated_at, extracted_at, parent_id,
    child_ids_json, related_ids_json, source_metadata_json,
    content, searchable_text, keywords_json, structured_data_json
) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13, $14, $15, $16, $17)
ON CONFLICT(id) DO UPDATE SET
    source=EXCLUDED.source,
    content_type=EXCLUDED.content_type,
    title=EXCLUDED.title,
    description=EXCLUDED.description,
    url=EXCLUDED.url,
    created_at=EXCLUDED.created_at,
    updated_at=EXCLUDED.updated_at,
    extracted_at=EXCLUDED.extracted_at,
    parent_id=EXCLUDED.parent_id,
    child_ids_json=EXCLUDED.child_ids_json,
    related_ids_json=EXCLUDED.related_ids_json,
    source_metadata_json=EXCLUDED.source_metadata_json,
    content=EXCLUDED.content,
    searchable_text=EXCLUDED.searchable_text,
    keywords_json=EXCLUDED.keywords_json,
    structured_data_json=EXCLUDED.structured_data_json
"""


class _Params:
    """Accumulates positional ``$n`` parameters."""

    def __init__(self):
        self.values: list[Any] = []

    def add(self, value: Any) -> str:
        self.values.append(value)
        return f"${len(self.values)}"

    def add_many(self, values: Iterable[Any]) -> str:
        return ", ".join(self.add(v) for v in values)


class PostgresContentRepository:
    def __init__(self, db: asyncpg.Pool | asyncpg.Connection):
        self.db = db

    @contextlib.asynccontextmanager
    async def _transaction(self):
        if isinstance(self.db, asyncpg.Pool):
            async with self.db.acquire() as conn:
                async with conn.transaction():
                    yield conn
        else:
            async with self.db.transaction():
                yield self.db

    async def upsert(self, content: UnifiedContent) -> None:
        await self.upsert_batch([content])

    async def upsert_batch(self, contents: Iterable[UnifiedContent]) -> int:
        items = list(contents)
        if not items:
            return 0
        now = utc_now_iso()
        async with self._transaction() as conn:
            for content in items:
                await conn.execute(_UPSERT_SQL, *content_to_row(content))
                await conn.execute("DELETE FROM content_relationships WHERE parent_id = $1", content.id)
                for parent_id, child_id, rel_type in relationship_rows(content):
                    await conn.execute(
                        """INSERT INTO content_relationships (parent_id, child_id, relationship_type, created_at)
                           VALUES ($1, $2, $3, $4)
                           ON CONFLICT (parent_id, child_id, relationship_type) DO UPDATE SET
                               created_at=EXCLUDED.created_at""",
                        parent_id, child_id, rel_type, now,
                    )
        return len(items)

    async def get_by_id(self, content_id: str) -> UnifiedContent | None:
        row = await self.db.fetchrow("SELECT * FROM unified_content WHERE id = $1", content_id)
        return row_to_content(row) if row else None

    async def get_existing_ids(self, content_ids: Iterable[str]) -> set[str]:
        ids = list(dict.fromkeys(content_ids))
        if not ids:
            return set()
        rows = await self.db.fetch("SELECT id FROM unified_content WHERE id = ANY($1::text[])", ids)
        return {row["id"] for row in rows}

    def _build_where_clause(self, query: DataQuery, params: _Params) -> str:
        clauses = ["1=1"]

        if query.sources:
            clauses.append(f"source IN ({params.add_many(query.sources)})")
        if query.contentTypes:
            clauses.append(f"content_type IN ({params.add_many(query.contentTypes)})")
        if query.timeRange:
            column = TIME_COLUMNS[query.timeRange.field]
            start, end = normalize_range_bounds(query.timeRange.start, query.timeRange.end)
            if start:
                clauses.append(f"{column} >= {params.add(start)}")
            if end:
                clauses.append(f"{column} <= {params.add(end)}")
        if query.textSearch and query.textSearch.strip():
            mark = params.add(f"%{escape_like(query.textSearch.strip().lower())}%")
            clauses.append(
                f"""(
                    lower(title) LIKE {mark} ESCAPE '\\'
                    OR lower(content) LIKE {mark} ESCAPE '\\'
                    OR searchable_text LIKE {mark} ESCAPE '\\'
                )"""
            )

        filters = query.filters
        facets = "structured_data_json::jsonb"
        if filters.status:
            marks = params.add_many(filters.status)
            clauses.append(f"({facets}->>'status' IN ({marks}) OR {facets}->>'state' IN ({marks}))")
        if filters.assignees:
            marks = params.add_many(filters.assignees)
            clauses.append(
                f"""EXISTS (
                    SELECT 1 FROM jsonb_array_elements(COALESCE({facets}->'assignees', '[]'::jsonb)) AS a
                    WHERE a->>'name' IN ({marks})
                )"""
            )
        if filters.labels:
            marks = params.add_many(filters.labels)
            clauses.append(
                f"""EXISTS (
                    SELECT 1 FROM jsonb_array_elements(COALESCE({facets}->'labels', '[]'::jsonb)) AS l
                    WHERE l->>'name' IN ({marks})
                )"""
            )
        if filters.projects:
            marks = params.add_many(filters.projects)
            clauses.append(f"({facets}->'project'->>'id' IN ({marks}) OR {facets}->'project'->>'name' IN ({marks}))")
        if filters.cycles:
            marks = params.add_many(filters.cycles)
            clauses.append(f"({facets}->'cycle'->>'id' IN ({marks}) OR {facets}->'cycle'->>'name' IN ({marks}))")

        return " AND ".join(clauses)

    async def query(self, query: DataQuery) -> DataQueryResult:
        params = _Params()
        where_sql = self._build_where_clause(query, params)
        sort_column = SORT_COLUMNS.get(query.sortBy, "updated_at")
        direction = "ASC" if query.sortOrder == "asc" else "DESC"

        total = await self.db.fetchval(f"SELECT COUNT(*) FROM unified_content WHERE {where_sql}", *params.values)

        sql = f"SELECT * FROM unified_content WHERE {where_sql} ORDER BY {sort_column} {direction}, id ASC"
        page_params = _Params()
        page_params.values = list(params.values)
        if query.limit is not None:
            sql += f" LIMIT {page_params.add(query.limit)}"
        if query.offset:
            sql += f" OFFSET {page_params.add(query.offset)}"
        rows = await self.db.fetch(sql, *page_params.values)

        items = [row_to_content(r) for r in rows]
        total = int(total or 0)
        has_more = (query.offset + len(items) < total) if query.limit is not None else False
        return DataQueryResult(items=items, totalCount=total, hasMore=has_more)

    async def get_relationships(self, content_id: str) -> dict[str, list[dict]]:
        children = await self.db.fetch(
            """SELECT * FROM content_relationships
               WHERE parent_id = $1 AND relationship_type = 'parent-child'
               ORDER BY child_id""",
            content_id,
        )
        parents = await self.db.fetch(
            """SELECT * FROM content_relationships
               WHERE child_id = $1 AND relationship_type = 'parent-child'
               ORDER BY parent_id""",
            content_id,
        )
        related = await self.db.fetch(
            """SELECT * FROM content_relationships
               WHERE (parent_id = $1 OR child_id = $1) AND relationship_type = 'related'
               ORDER BY parent_id, child_id""",
            content_id,
        )
        return {
            "children": [dict(r) for r in children],
            "parents": [dict(r) for r in parents],
            "related": [dict(r) for r in related],
        }

    async def count(self) -> int:
        return int(await self.db.fetchval("SELECT COUNT(*) FROM unified_content") or 0)
