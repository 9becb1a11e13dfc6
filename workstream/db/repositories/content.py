"""SQLite implementation of the unified content store."""
from __future__ import annotations

import json
from typing import Any, Iterable

import aiosqlite

from workstream.date_utils import normalize_range_bounds, utc_now_iso
from workstream.db.connection import connection_lock
from workstream.models import DataQuery, DataQueryResult, UnifiedContent

SORT_COLUMNS = {
    "createdAt": "created_at",
    "updatedAt": "updated_at",
    "title": "title",
}
TIME_COLUMNS = {
    "createdAt": "created_at",
    "updatedAt": "updated_at",
    "extractedAt": "extracted_at",
}


def escape_like(value: str) -> str:
    """Escape LIKE wildcards so user search text only ever matches literally."""
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def content_to_row(content: UnifiedContent) -> tuple:
    structured = content.structuredData.model_dump(mode="json") if content.structuredData else None
    return (
        content.id,
        content.source,
        content.contentType,
        content.title,
        content.description,
        content.url,
        content.createdAt,
        content.updatedAt,
        content.extractedAt,
        content.parentId,
        json.dumps(content.childIds),
        json.dumps(content.relatedIds),
        json.dumps(content.sourceMetadata),
        content.content,
        content.searchableText,
        json.dumps(content.keywords),
        json.dumps(structured) if structured is not None else None,
    )


def _load_json(raw: Any, default: Any) -> Any:
    if raw is None or raw == "":
        return default
    try:
        return json.loads(raw)
    except (TypeError, ValueError):
        return default


def row_to_content(row: Any) -> UnifiedContent:
    data = dict(row)
    structured = _load_json(data.get("structured_data_json"), None)
    return UnifiedContent(
        id=data["id"],
        source=data["source"],
        contentType=data["content_type"],
        title=data["title"],
        description=data.get("description"),
        url=data.get("url"),
        createdAt=data["created_at"],
        updatedAt=data["updated_at"],
        extractedAt=data["extracted_at"],
        parentId=data.get("parent_id"),
        childIds=_load_json(data.get("child_ids_json"), []),
        relatedIds=_load_json(data.get("related_ids_json"), []),
        sourceMetadata=_load_json(data.get("source_metadata_json"), {}),
        content=data.get("content") or "",
        searchableText=data.get("searchable_text") or "",
        keywords=_load_json(data.get("keywords_json"), []),
        structuredData=structured,
    )


def relationship_rows(content: UnifiedContent) -> list[tuple[str, str, str]]:
    rows: list[tuple[str, str, str]] = []
    for child_id in content.childIds:
        rows.append((content.id, child_id, "parent-child"))
    for related_id in content.relatedIds:
        rows.append((content.id, related_id, "related"))
    return list(dict.fromkeys(rows))


_UPSERT_SQL = """INSERT INTO unified_content (
    id, source, content_type, title, description, url,
    created_at, updated_at, extracted_at, parent_id,
    child_ids_json, related_ids_json, source_metadata_json,
    content, searchable_text, keywords_json, structured_data_json
) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
ON CONFLICT(id) DO UPDATE SET
    source=excluded.source,
    content_type=excluded.content_type,
    title=excluded.title,
    description=excluded.description,
    url=excluded.url,
    created_at=excluded.created_at,
    updated_at=excluded.updated_at,
    extracted_at=excluded.extracted_at,
    parent_id=excluded.parent_id,
    child_ids_json=excluded.child_ids_json,
    related_ids_json=excluded.related_ids_json,
    source_metadata_json=excluded.source_metadata_json,
    content=excluded.content,
    searchable_text=excluded.searchable_text,
    keywords_json=excluded.keywords_json,
    structured_data_json=excluded.structured_data_json
"""


class SqliteContentRepository:
    """SQLite-backed unified content storage with relationship tracking."""

    def __init__(self, db: aiosqlite.Connection):
        self.db = db
        self._lock = connection_lock(db)

    async def _write(self, content: UnifiedContent) -> None:
        await self.db.execute(_UPSERT_SQL, content_to_row(content))
        await self.db.execute(
            "DELETE FROM content_relationships WHERE parent_id = ?",
            (content.id,),
        )
        now = utc_now_iso()
        for parent_id, child_id, rel_type in relationship_rows(content):
            await self.db.execute(
                """INSERT OR REPLACE INTO content_relationships (parent_id, child_id, relationship_type, created_at)
                   VALUES (?, ?, ?, ?)""",
                (parent_id, child_id, rel_type, now),
            )

    async def upsert(self, content: UnifiedContent) -> None:
        """Replace the stored row for ``content.id`` in full."""
        await self.upsert_batch([content])

    async def upsert_batch(self, contents: Iterable[UnifiedContent]) -> int:
        """Write every record in one transaction; nothing is applied on failure."""
        items = list(contents)
        if not items:
            return 0
        async with self._lock:
            try:
                for content in items:
                    await self._write(content)
                await self.db.commit()
            except Exception:
                await self.db.rollback()
                raise
        return len(items)

    async def get_by_id(self, content_id: str) -> UnifiedContent | None:
        async with self._lock:
            async with self.db.execute("SELECT * FROM unified_content WHERE id = ?", (content_id,)) as cur:
                row = await cur.fetchone()
        return row_to_content(row) if row else None

    async def get_existing_ids(self, content_ids: Iterable[str]) -> set[str]:
        ids = list(dict.fromkeys(content_ids))
        found: set[str] = set()
        # Stay below SQLite's bound-parameter limit
        for start in range(0, len(ids), 500):
            chunk = ids[start:start + 500]
            placeholders = ",".join("?" for _ in chunk)
            async with self._lock:
                async with self.db.execute(
                    f"SELECT id FROM unified_content WHERE id IN ({placeholders})", chunk
                ) as cur:
                    found.update(row[0] for row in await cur.fetchall())
        return found

    def _build_where_clause(self, query: DataQuery) -> tuple[str, list[Any]]:
        clauses = ["1=1"]
        params: list[Any] = []

        if query.sources:
            clauses.append(f"source IN ({','.join('?' for _ in query.sources)})")
            params.extend(query.sources)
        if query.contentTypes:
            clauses.append(f"content_type IN ({','.join('?' for _ in query.contentTypes)})")
            params.extend(query.contentTypes)
        if query.timeRange:
            column = TIME_COLUMNS[query.timeRange.field]
            start, end = normalize_range_bounds(query.timeRange.start, query.timeRange.end)
            if start:
                clauses.append(f"{column} >= ?")
                params.append(start)
            if end:
                clauses.append(f"{column} <= ?")
                params.append(end)
        if query.textSearch and query.textSearch.strip():
            needle = f"%{escape_like(query.textSearch.strip().lower())}%"
            clauses.append(
                """
                (
                    lower(title) LIKE ? ESCAPE '\\'
                    OR lower(content) LIKE ? ESCAPE '\\'
                    OR searchable_text LIKE ? ESCAPE '\\'
                )
                """
            )
            params.extend([needle] * 3)

        filters = query.filters
        if filters.status:
            marks = ",".join("?" for _ in filters.status)
            clauses.append(
                f"(json_extract(structured_data_json, '$.status') IN ({marks})"
                f" OR json_extract(structured_data_json, '$.state') IN ({marks}))"
            )
            params.extend(filters.status)
            params.extend(filters.status)
        if filters.assignees:
            marks = ",".join("?" for _ in filters.assignees)
            clauses.append(
                f"""EXISTS (
                    SELECT 1 FROM json_each(unified_content.structured_data_json, '$.assignees') AS a
                    WHERE json_extract(a.value, '$.name') IN ({marks})
                )"""
            )
            params.extend(filters.assignees)
        if filters.labels:
            marks = ",".join("?" for _ in filters.labels)
            clauses.append(
                f"""EXISTS (
                    SELECT 1 FROM json_each(unified_content.structured_data_json, '$.labels') AS l
                    WHERE json_extract(l.value, '$.name') IN ({marks})
                )"""
            )
            params.extend(filters.labels)
        if filters.projects:
            marks = ",".join("?" for _ in filters.projects)
            clauses.append(
                f"(json_extract(structured_data_json, '$.project.id') IN ({marks})"
                f" OR json_extract(structured_data_json, '$.project.name') IN ({marks}))"
            )
            params.extend(filters.projects)
            params.extend(filters.projects)
        if filters.cycles:
            marks = ",".join("?" for _ in filters.cycles)
            clauses.append(
                f"(json_extract(structured_data_json, '$.cycle.id') IN ({marks})"
                f" OR json_extract(structured_data_json, '$.cycle.name') IN ({marks}))"
            )
            params.extend(filters.cycles)
            params.extend(filters.cycles)

        return " AND ".join(clauses), params

    async def query(self, query: DataQuery) -> DataQueryResult:
        where_sql, params = self._build_where_clause(query)
        sort_column = SORT_COLUMNS.get(query.sortBy, "updated_at")
        direction = "ASC" if query.sortOrder == "asc" else "DESC"

        sql = f"SELECT * FROM unified_content WHERE {where_sql} ORDER BY {sort_column} {direction}, id ASC"
        page_params = list(params)
        if query.limit is not None:
            sql += " LIMIT ? OFFSET ?"
            page_params.extend([query.limit, query.offset])
        elif query.offset:
            sql += " LIMIT -1 OFFSET ?"
            page_params.append(query.offset)

        async with self._lock:
            async with self.db.execute(sql, page_params) as cur:
                rows = await cur.fetchall()
            async with self.db.execute(f"SELECT COUNT(*) FROM unified_content WHERE {where_sql}", params) as cur:
                row = await cur.fetchone()
        total = int(row[0] if row else 0)
        items = [row_to_content(r) for r in rows]
        has_more = (query.offset + len(items) < total) if query.limit is not None else False
        return DataQueryResult(items=items, totalCount=total, hasMore=has_more)

    async def get_relationships(self, content_id: str) -> dict[str, list[dict]]:
        """Return children, parents, and related edges for one record."""
        async with self._lock:
            async with self.db.execute(
                """SELECT * FROM content_relationships
                   WHERE parent_id = ? AND relationship_type = 'parent-child'
                   ORDER BY child_id""",
                (content_id,),
            ) as cur:
                children = [dict(r) for r in await cur.fetchall()]
            async with self.db.execute(
                """SELECT * FROM content_relationships
                   WHERE child_id = ? AND relationship_type = 'parent-child'
                   ORDER BY parent_id""",
                (content_id,),
            ) as cur:
                parents = [dict(r) for r in await cur.fetchall()]
            async with self.db.execute(
                """SELECT * FROM content_relationships
                   WHERE (parent_id = ? OR child_id = ?) AND relationship_type = 'related'
                   ORDER BY parent_id, child_id""",
                (content_id, content_id),
            ) as cur:
                related = [dict(r) for r in await cur.fetchall()]
        return {"children": children, "parents": parents, "related": related}

    async def count(self) -> int:
        async with self._lock:
            async with self.db.execute("SELECT COUNT(*) FROM unified_content") as cur:
                row = await cur.fetchone()
        return int(row[0] if row else 0)
