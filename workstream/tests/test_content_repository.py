import unittest
from unittest.mock import patch

import aiosqlite

from workstream.db import factory
from workstream.db.repositories.content import SqliteContentRepository
from workstream.db.repositories.sync_history import SqliteSyncHistoryRepository
from workstream.db.sqlite_migrations import run_migrations
from workstream.models import (
    DataQuery,
    DataQueryFilters,
    Label,
    Person,
    Reference,
    StructuredData,
    SyncRecord,
    TimeRange,
    UnifiedContent,
)


def _content(idx: int, **overrides) -> UnifiedContent:
    payload = {
        "id": f"issue-tracker-issue-{idx}",
        "source": "issue-tracker",
        "contentType": "issue",
        "title": f"Issue {idx:02d}",
        "createdAt": f"2024-01-{(idx % 28) + 1:02d}T00:00:00.000Z",
        "updatedAt": f"2024-02-{(idx % 28) + 1:02d}T00:00:00.000Z",
        "extractedAt": "2024-03-01T00:00:00.000Z",
        "content": f"body {idx}",
        "searchableText": f"issue {idx:02d} body {idx}",
    }
    payload.update(overrides)
    return UnifiedContent(**payload)


class ContentRepositoryTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.db = await aiosqlite.connect(":memory:")
        self.db.row_factory = aiosqlite.Row
        await run_migrations(self.db)
        self.repo = SqliteContentRepository(self.db)

    async def asyncTearDown(self) -> None:
        await self.db.close()

    async def test_second_upsert_replaces_row_in_full(self) -> None:
        first = _content(
            1,
            description="original",
            structuredData=StructuredData(status="Todo", labels=[Label(name="Bug")]),
        )
        second = _content(1, title="Renamed", structuredData=StructuredData(status="Done"))

        await self.repo.upsert(first)
        await self.repo.upsert(second)

        self.assertEqual(await self.repo.count(), 1)
        stored = await self.repo.get_by_id(second.id)
        self.assertEqual(stored, second)
        self.assertIsNone(stored.description)
        self.assertEqual(stored.structuredData.labels, [])

    async def test_get_by_id_returns_none_for_unknown_id(self) -> None:
        self.assertIsNone(await self.repo.get_by_id("missing"))

    async def test_relationships_are_rederived_on_each_upsert(self) -> None:
        parent = _content(1, childIds=["c-1", "c-2", "c-1"], relatedIds=["r-1"])
        await self.repo.upsert(parent)
        await self.repo.upsert(parent)

        rels = await self.repo.get_relationships(parent.id)
        self.assertEqual([r["child_id"] for r in rels["children"]], ["c-1", "c-2"])
        self.assertEqual([r["child_id"] for r in rels["related"]], ["r-1"])

        await self.repo.upsert(parent.model_copy(update={"childIds": ["c-2"], "relatedIds": []}))
        rels = await self.repo.get_relationships(parent.id)
        self.assertEqual([r["child_id"] for r in rels["children"]], ["c-2"])
        self.assertEqual(rels["related"], [])

        child_rels = await self.repo.get_relationships("c-2")
        self.assertEqual([r["parent_id"] for r in child_rels["parents"]], [parent.id])

    async def test_pagination_counts_against_unpaginated_predicate(self) -> None:
        await self.repo.upsert_batch([_content(i) for i in range(25)])

        page = await self.repo.query(DataQuery(limit=10, offset=20))
        self.assertEqual(len(page.items), 5)
        self.assertEqual(page.totalCount, 25)
        self.assertFalse(page.hasMore)

        first = await self.repo.query(DataQuery(limit=10, offset=0))
        self.assertEqual(len(first.items), 10)
        self.assertTrue(first.hasMore)

        unlimited = await self.repo.query(DataQuery())
        self.assertEqual(len(unlimited.items), 25)
        self.assertFalse(unlimited.hasMore)

        skipped = await self.repo.query(DataQuery(offset=20))
        self.assertEqual(len(skipped.items), 5)

    async def test_sort_by_title_ascending(self) -> None:
        await self.repo.upsert_batch([_content(3), _content(1), _content(2)])
        result = await self.repo.query(DataQuery(sortBy="title", sortOrder="asc"))
        self.assertEqual([item.title for item in result.items], ["Issue 01", "Issue 02", "Issue 03"])

    async def test_source_type_and_time_range_filters(self) -> None:
        await self.repo.upsert_batch(
            [
                _content(1),
                _content(2, updatedAt="2024-05-01T00:00:00.000Z"),
                _content(
                    3,
                    id="version-control-pull-request-3",
                    source="version-control",
                    contentType="pull-request",
                ),
            ]
        )
        by_source = await self.repo.query(DataQuery(sources=["version-control"]))
        self.assertEqual([i.id for i in by_source.items], ["version-control-pull-request-3"])

        by_type = await self.repo.query(DataQuery(contentTypes=["issue"]))
        self.assertEqual(by_type.totalCount, 2)

        recent = await self.repo.query(
            DataQuery(timeRange=TimeRange(start="2024-04-01T00:00:00.000Z", field="updatedAt"))
        )
        self.assertEqual([i.id for i in recent.items], ["issue-tracker-issue-2"])

    async def test_time_range_bounds_are_normalized_before_comparison(self) -> None:
        await self.repo.upsert_batch(
            [
                _content(1, updatedAt="2024-01-31T12:00:00.000Z"),
                _content(2, updatedAt="2024-02-01T00:00:00.000Z"),
            ]
        )
        january = await self.repo.query(
            DataQuery(timeRange=TimeRange(start="2024-01-01", end="2024-01-31", field="updatedAt"))
        )
        self.assertEqual([i.id for i in january.items], ["issue-tracker-issue-1"])

        # 14:00+02:00 is 12:00Z, so the bound includes the midday update.
        offset = await self.repo.query(
            DataQuery(timeRange=TimeRange(end="2024-01-31T14:00:00+02:00", field="updatedAt"))
        )
        self.assertEqual([i.id for i in offset.items], ["issue-tracker-issue-1"])

    async def test_text_search_treats_wildcards_as_literal_data(self) -> None:
        await self.repo.upsert_batch(
            [
                _content(1, title="Raise limit to 100%", searchableText="raise limit to 100%"),
                _content(2, title="Plain title", searchableText="plain title"),
                _content(3, title="snake_case name", searchableText="snake_case name"),
                _content(4, title="snakeXcase name", searchableText="snakexcase name"),
            ]
        )
        percent = await self.repo.query(DataQuery(textSearch="%"))
        self.assertEqual([i.id for i in percent.items], ["issue-tracker-issue-1"])

        underscore = await self.repo.query(DataQuery(textSearch="snake_case"))
        self.assertEqual([i.id for i in underscore.items], ["issue-tracker-issue-3"])

        injection = await self.repo.query(DataQuery(textSearch="' OR 1=1 --"))
        self.assertEqual(injection.totalCount, 0)

        mixed_case = await self.repo.query(DataQuery(textSearch="PLAIN"))
        self.assertEqual(mixed_case.totalCount, 1)

    async def test_structured_filters(self) -> None:
        await self.repo.upsert_batch(
            [
                _content(
                    1,
                    structuredData=StructuredData(
                        status="Done",
                        assignees=[Person(name="Alice")],
                        labels=[Label(name="Bug")],
                        project=Reference(id="p-1", name="Web"),
                        cycle=Reference(id="c-1", name="Cycle 1"),
                    ),
                ),
                _content(2, structuredData=StructuredData(status="Todo", assignees=[Person(name="Bob")])),
                _content(3),
            ]
        )

        async def ids(filters: DataQueryFilters) -> list[str]:
            result = await self.repo.query(DataQuery(filters=filters))
            return [item.id for item in result.items]

        self.assertEqual(await ids(DataQueryFilters(status=["Done"])), ["issue-tracker-issue-1"])
        self.assertEqual(await ids(DataQueryFilters(assignees=["Bob"])), ["issue-tracker-issue-2"])
        self.assertEqual(await ids(DataQueryFilters(labels=["Bug"])), ["issue-tracker-issue-1"])
        self.assertEqual(await ids(DataQueryFilters(projects=["Web"])), ["issue-tracker-issue-1"])
        self.assertEqual(await ids(DataQueryFilters(cycles=["c-1"])), ["issue-tracker-issue-1"])

    async def test_failed_batch_leaves_store_untouched(self) -> None:
        await self.repo.upsert(_content(1))
        original_write = self.repo._write
        calls = 0

        async def flaky_write(content):
            nonlocal calls
            calls += 1
            if calls == 3:
                raise RuntimeError("disk full")
            await original_write(content)

        with patch.object(self.repo, "_write", side_effect=flaky_write):
            with self.assertRaises(RuntimeError):
                await self.repo.upsert_batch([_content(1, title="Changed"), _content(2), _content(3)])

        self.assertEqual(await self.repo.count(), 1)
        stored = await self.repo.get_by_id("issue-tracker-issue-1")
        self.assertEqual(stored.title, "Issue 01")


class SyncHistoryRepositoryTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.db = await aiosqlite.connect(":memory:")
        self.db.row_factory = aiosqlite.Row
        await run_migrations(self.db)
        self.repo = SqliteSyncHistoryRepository(self.db)

    async def asyncTearDown(self) -> None:
        await self.db.close()

    async def test_last_successful_sync_skips_failures(self) -> None:
        await self.repo.record(SyncRecord(source="issue-tracker", syncTime="2024-01-01T00:00:00.000Z", success=True))
        await self.repo.record(
            SyncRecord(source="issue-tracker", syncTime="2024-01-02T00:00:00.000Z", success=False, errors=["boom"])
        )
        await self.repo.record(SyncRecord(source="document-store", syncTime="2024-01-03T00:00:00.000Z", success=True))

        last = await self.repo.get_last_successful_sync("issue-tracker")
        self.assertEqual(last.syncTime, "2024-01-01T00:00:00.000Z")
        self.assertIsNone(await self.repo.get_last_successful_sync("version-control"))

        history = await self.repo.list_recent("issue-tracker")
        self.assertEqual([r.success for r in history], [False, True])
        self.assertEqual(history[0].errors, ["boom"])

class FactoryTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.db = await aiosqlite.connect(":memory:")
        self.db.row_factory = aiosqlite.Row

    async def asyncTearDown(self) -> None:
        await self.db.close()

    async def test_sqlite_connection_gets_schema_and_sqlite_repositories(self) -> None:
        await factory.run_migrations(self.db)
        await factory.run_migrations(self.db)

        async with self.db.execute("SELECT COUNT(*) FROM schema_version") as cur:
            self.assertEqual((await cur.fetchone())[0], 1)
        repo = factory.get_content_repository(self.db)
        self.assertIsInstance(repo, SqliteContentRepository)
        self.assertIsInstance(factory.get_sync_history_repository(self.db), SqliteSyncHistoryRepository)
        await repo.upsert(_content(1))
        self.assertEqual(await repo.count(), 1)



if __name__ == "__main__":
    unittest.main()
