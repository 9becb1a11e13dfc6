import unittest

import aiosqlite

from workstream.aggregation import (
    CycleReviewService,
    build_cycle_review,
    cycle_duration_weeks,
    points,
    round_half_up,
)
from workstream.cache import TTLCache
from workstream.clients.base import Attachment
from workstream.clients.inmemory import InMemoryIssueTrackerClient, InMemoryVersionControlClient
from workstream.correlation import CorrelationEngine
from workstream.db.repositories.content import SqliteContentRepository
from workstream.db.sqlite_migrations import run_migrations
from workstream.errors import ConfigurationError, NotFoundError
from workstream.models import CorrelatedPullRequest, CycleInfo, Person, Reference, TrackerIssue
from workstream.parsers import NormalizationContext, normalize_cycle, normalize_issue

CYCLE = CycleInfo(id="c-1", name="Cycle 1", startsAt="2024-01-01T00:00:00.000Z", endsAt="2024-01-15T00:00:00.000Z")


def _issue(issue_id: str, estimate=None, assignee: str | None = None, project: str | None = None, prs=()):
    return TrackerIssue(
        id=issue_id,
        identifier=f"ENG-{issue_id}",
        title=f"Issue {issue_id}",
        estimate=estimate,
        assignee=Person(id=f"u-{assignee}", name=assignee) if assignee else None,
        project=Reference(id=f"p-{project}", name=project) if project else None,
        stateType="completed",
        completedAt="2024-01-10T00:00:00.000Z",
        linkedPRs=list(prs),
    )


def _pr(number: int, additions: int = 0, deletions: int = 0, files: int = 0) -> CorrelatedPullRequest:
    return CorrelatedPullRequest(
        id=f"acme/web#{number}",
        number=number,
        url=f"https://github.com/acme/web/pull/{number}",
        confidence=1.0,
        additions=additions,
        deletions=deletions,
        filesChanged=files,
    )


class BuildCycleReviewTests(unittest.TestCase):
    def test_groups_partition_completed_issues(self) -> None:
        issues = [
            _issue("1", 3, "Alice", "Web"),
            _issue("2", 5, "Bob", "Web"),
            _issue("3", 2, None, None),
            _issue("4", None, "Alice", "API"),
        ]
        report = build_cycle_review(CYCLE, issues)

        self.assertEqual(report.stats.totalIssues, 4)
        self.assertEqual(report.stats.totalPoints, 10)
        self.assertEqual(sorted(report.issuesByProject), ["API", "No Project", "Web"])
        self.assertEqual(sorted(report.issuesByEngineer), ["Alice", "Bob", "Unassigned"])
        self.assertEqual(sum(g.totalPoints for g in report.issuesByProject.values()), report.stats.totalPoints)
        self.assertEqual(sum(g.totalPoints for g in report.issuesByEngineer.values()), report.stats.totalPoints)
        self.assertEqual(sum(g.issueCount for g in report.issuesByEngineer.values()), 4)
        self.assertEqual(report.issuesByProject["Web"].issueCount, 2)
        self.assertEqual(report.stats.uniqueContributors, 2)

    def test_velocity_uses_at_least_one_week(self) -> None:
        short = CycleInfo(id="c-2", startsAt="2024-01-01T00:00:00.000Z", endsAt="2024-01-04T00:00:00.000Z")
        report = build_cycle_review(short, [_issue("1", 7, "Alice")])
        self.assertEqual(report.stats.velocity, 7.0)

    def test_velocity_over_two_weeks(self) -> None:
        report = build_cycle_review(CYCLE, [_issue("1", 5, "Alice")])
        self.assertEqual(cycle_duration_weeks(CYCLE), 2)
        self.assertEqual(report.stats.velocity, 2.5)

    def test_missing_or_invalid_estimates_count_as_zero(self) -> None:
        self.assertEqual(points(None), 0)
        self.assertEqual(points(0), 0)
        self.assertEqual(points(-2), 0)
        self.assertEqual(points(float("nan")), 0)
        self.assertEqual(points(2.5), 2.5)
        report = build_cycle_review(CYCLE, [_issue("1", None), _issue("2", 0)])
        self.assertEqual(report.stats.totalPoints, 0)

    def test_empty_cycle_produces_zero_stats(self) -> None:
        report = build_cycle_review(CYCLE, [])
        self.assertEqual(report.stats.totalIssues, 0)
        self.assertEqual(report.stats.velocity, 0)
        self.assertEqual(report.issuesByProject, {})
        self.assertEqual(report.pullRequests, [])

    def test_shared_pull_requests_are_counted_once(self) -> None:
        shared = _pr(1, additions=10, deletions=4, files=2)
        report = build_cycle_review(
            CYCLE,
            [_issue("1", 1, "Alice", prs=[shared]), _issue("2", 1, "Bob", prs=[shared, _pr(2, 5, 5, 1)])],
        )
        self.assertEqual(report.stats.totalPRs, 2)
        self.assertEqual(report.stats.totalAdditions, 15)
        self.assertEqual(report.stats.totalDeletions, 9)
        self.assertEqual(report.stats.totalFilesChanged, 3)

    def test_round_half_up(self) -> None:
        self.assertEqual(round_half_up(0.25), 0.3)
        self.assertEqual(round_half_up(2.35), 2.4)
        self.assertEqual(round_half_up(1.0), 1.0)


def _raw_issue(issue_id: str, completed: bool, estimate: int = 2) -> dict:
    return {
        "id": issue_id,
        "identifier": f"ENG-{issue_id}",
        "title": f"Issue {issue_id}",
        "estimate": estimate,
        "assignee": {"id": "u-1", "name": "Alice"},
        "project": {"id": "p-1", "name": "Web"},
        "state": {"name": "Done" if completed else "In Progress", "type": "completed" if completed else "started"},
        "completedAt": "2024-01-10T00:00:00.000Z" if completed else None,
        "cycle": {"id": "c-1", "name": "Cycle 1"},
        "createdAt": "2024-01-02T00:00:00.000Z",
        "updatedAt": "2024-01-10T00:00:00.000Z",
    }


_RAW_CYCLE = {
    "id": "c-1",
    "name": "Cycle 1",
    "startsAt": "2024-01-01T00:00:00.000Z",
    "endsAt": "2024-01-15T00:00:00.000Z",
}


class CycleReviewServiceTests(unittest.IsolatedAsyncioTestCase):
    async def test_report_from_tracker_with_correlated_prs(self) -> None:
        tracker = InMemoryIssueTrackerClient(
            cycles=[_RAW_CYCLE],
            issues=[_raw_issue("1", True, 3), _raw_issue("2", False, 5)],
            attachments={
                "1": [Attachment(id="a-1", url="https://github.com/acme/web/pull/7", title="Fix", createdAt="2024-01-09T00:00:00.000Z")]
            },
        )
        engine = CorrelationEngine(tracker, InMemoryVersionControlClient(), repo_allow_list=[], cache=TTLCache(300), timeout=5)
        service = CycleReviewService(issue_tracker=tracker, correlation_engine=engine, timeout=5)

        report = await service.get_cycle_review("c-1")

        self.assertEqual(report.cycle.name, "Cycle 1")
        self.assertEqual(report.stats.totalIssues, 1)
        self.assertEqual(report.stats.totalPoints, 3)
        self.assertEqual(len(report.issues), 2)
        self.assertEqual([pr.id for pr in report.completedIssues[0].linkedPRs], ["acme/web#7"])
        self.assertEqual(report.stats.totalPRs, 1)
        self.assertEqual(tracker.call_count("get_issues_with_attachments"), 1)

    async def test_unknown_cycle_raises_not_found(self) -> None:
        service = CycleReviewService(issue_tracker=InMemoryIssueTrackerClient(), timeout=5)
        with self.assertRaises(NotFoundError):
            await service.get_cycle_review("missing")

    async def test_without_tracker_or_store_is_a_configuration_error(self) -> None:
        service = CycleReviewService(issue_tracker=InMemoryIssueTrackerClient(configured=False))
        with self.assertRaises(ConfigurationError):
            await service.get_cycle_review("c-1")

    async def test_report_from_store_when_tracker_unconfigured(self) -> None:
        db = await aiosqlite.connect(":memory:")
        db.row_factory = aiosqlite.Row
        try:
            await run_migrations(db)
            repo = SqliteContentRepository(db)
            context = NormalizationContext(extracted_at="2024-01-20T00:00:00.000Z")
            await repo.upsert_batch(
                [
                    normalize_cycle(_RAW_CYCLE, context),
                    normalize_issue(_raw_issue("1", True, 3), context),
                    normalize_issue(_raw_issue("2", True, 2), context),
                    normalize_issue(_raw_issue("3", False, 8), context),
                ]
            )
            service = CycleReviewService(
                issue_tracker=InMemoryIssueTrackerClient(configured=False), content_repo=repo
            )

            report = await service.get_cycle_review("c-1")

            self.assertEqual(report.stats.totalIssues, 2)
            self.assertEqual(report.stats.totalPoints, 5)
            self.assertEqual(report.stats.velocity, 2.5)
            self.assertEqual([i.identifier for i in report.completedIssues], ["ENG-1", "ENG-2"])
            self.assertEqual(report.completedIssues[0].title, "Issue 1")
            self.assertEqual(list(report.issuesByEngineer), ["Alice"])
        finally:
            await db.close()


if __name__ == "__main__":
    unittest.main()
