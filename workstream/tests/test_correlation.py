import unittest

import aiosqlite

from workstream.cache import TTLCache
from workstream.clients.base import Attachment, PullRequestCandidate, PullRequestDetail
from workstream.clients.inmemory import InMemoryIssueTrackerClient, InMemoryVersionControlClient
from workstream.correlation import (
    CorrelationEngine,
    dedupe_pull_requests,
    parse_pr_url,
    score_candidate,
)
from workstream.db.repositories.content import SqliteContentRepository
from workstream.db.sqlite_migrations import run_migrations
from workstream.errors import TransportError
from workstream.models import CorrelatedPullRequest, IssueRef, Person, StructuredData, UnifiedContent


def _candidate(number: int, title: str = "", body: str | None = None, branch: str | None = None, repo: str = "acme/web"):
    return PullRequestCandidate(
        number=number,
        title=title,
        url=f"https://github.com/{repo}/pull/{number}",
        body=body,
        headRefName=branch,
        author="dev",
    )


def _attachment(number: int, repo: str = "acme/web") -> Attachment:
    return Attachment(
        id=f"att-{number}",
        title=f"PR {number}",
        url=f"https://github.com/{repo}/pull/{number}",
        createdAt="2024-01-10T00:00:00.000Z",
        creator=Person(name="Alice"),
    )


def _pr(number: int, confidence: float, **extra) -> CorrelatedPullRequest:
    return CorrelatedPullRequest(
        id=f"acme/web#{number}",
        number=number,
        url=f"https://github.com/acme/web/pull/{number}",
        confidence=confidence,
        **extra,
    )


class ScoringTests(unittest.TestCase):
    def test_base_score_for_bare_hit(self) -> None:
        self.assertEqual(score_candidate(_candidate(1, title="unrelated"), "ENG-1"), 0.5)

    def test_title_and_closing_keyword(self) -> None:
        candidate = _candidate(1, title="ENG-1 login", body="This fixes ENG-1")
        self.assertEqual(score_candidate(candidate, "ENG-1"), 0.95)

    def test_body_mention_without_keyword(self) -> None:
        self.assertEqual(score_candidate(_candidate(1, body="see eng-1 for context"), "ENG-1"), 0.6)

    def test_title_match_is_case_sensitive(self) -> None:
        self.assertEqual(score_candidate(_candidate(1, title="eng-1 login"), "ENG-1"), 0.5)

    def test_branch_match_is_case_insensitive(self) -> None:
        self.assertEqual(score_candidate(_candidate(1, branch="feature/eng-1-login"), "ENG-1"), 0.6)

    def test_all_signals_are_capped(self) -> None:
        candidate = _candidate(1, title="ENG-1", body="Closes ENG-1", branch="eng-1")
        self.assertEqual(score_candidate(candidate, "ENG-1"), 0.95)

    def test_parse_pr_url(self) -> None:
        self.assertEqual(parse_pr_url("https://github.com/acme/web/pull/42"), ("acme", "web", 42))
        self.assertIsNone(parse_pr_url("https://github.com/acme/web/issues/42"))
        self.assertIsNone(parse_pr_url(None))

    def test_dedupe_keeps_most_confident_entry(self) -> None:
        result = dedupe_pull_requests([_pr(1, 0.6), _pr(2, 0.7), _pr(1, 0.9)])
        self.assertEqual([(pr.number, pr.confidence) for pr in result], [(1, 0.9), (2, 0.7)])


class CorrelationEngineTests(unittest.IsolatedAsyncioTestCase):
    def _engine(self, tracker, vcs, **kwargs) -> CorrelationEngine:
        kwargs.setdefault("repo_allow_list", [])
        return CorrelationEngine(tracker, vcs, cache=TTLCache(300), timeout=5, concurrency=2, **kwargs)

    async def test_attachment_links_take_precedence_over_search(self) -> None:
        tracker = InMemoryIssueTrackerClient(attachments={"i-1": [_attachment(7)]})
        vcs = InMemoryVersionControlClient(candidates=[_candidate(8, title="ENG-1 other")])
        engine = self._engine(tracker, vcs)

        prs = await engine.get_linked_prs(IssueRef(id="i-1", identifier="ENG-1"))

        self.assertEqual([pr.id for pr in prs], ["acme/web#7"])
        self.assertEqual(prs[0].confidence, 1.0)
        self.assertEqual(prs[0].origin, "attachment")
        self.assertEqual(prs[0].author, "Alice")
        self.assertEqual(prs[0].mergedAt, "2024-01-10T00:00:00.000Z")
        self.assertEqual(vcs.call_count("search_pull_requests_for_issue"), 0)

    async def test_search_fallback_scores_below_attachment_confidence(self) -> None:
        tracker = InMemoryIssueTrackerClient()
        vcs = InMemoryVersionControlClient(
            candidates=[
                _candidate(3, title="ENG-2 checkout", body="Resolves ENG-2"),
                _candidate(4, title="misc", branch="eng-2-followup"),
                _candidate(5, title="unrelated"),
            ]
        )
        prs = await self._engine(tracker, vcs).get_linked_prs(IssueRef(id="i-2", identifier="ENG-2"))

        self.assertEqual([(pr.number, pr.confidence) for pr in prs], [(3, 0.95), (4, 0.6)])
        self.assertTrue(all(pr.origin == "search" for pr in prs))
        self.assertTrue(all(pr.confidence <= 0.95 for pr in prs))

    async def test_results_are_cached_per_issue(self) -> None:
        tracker = InMemoryIssueTrackerClient(attachments={"i-1": [_attachment(7)]})
        engine = self._engine(tracker, InMemoryVersionControlClient())
        ref = IssueRef(id="i-1", identifier="ENG-1")
        await engine.get_linked_prs(ref)
        await engine.get_linked_prs(ref)
        self.assertEqual(tracker.call_count("get_issue_attachments"), 1)

    async def test_allow_list_filters_attachments_and_search_hits(self) -> None:
        tracker = InMemoryIssueTrackerClient(attachments={"i-1": [_attachment(7, repo="other/lib")]})
        vcs = InMemoryVersionControlClient(
            candidates=[_candidate(9, title="ENG-1", repo="acme/web"), _candidate(10, title="ENG-1", repo="other/lib")]
        )
        engine = self._engine(tracker, vcs, repo_allow_list=["acme/web"])

        prs = await engine.get_linked_prs(IssueRef(id="i-1", identifier="ENG-1"))

        self.assertEqual([pr.id for pr in prs], ["acme/web#9"])

    async def test_unconfigured_version_control_yields_no_search_results(self) -> None:
        engine = self._engine(InMemoryIssueTrackerClient(), InMemoryVersionControlClient(configured=False))
        self.assertEqual(await engine.get_linked_prs(IssueRef(id="i-1", identifier="ENG-1")), [])

    async def test_batch_uses_one_attachment_call_and_searches_the_rest(self) -> None:
        tracker = InMemoryIssueTrackerClient(attachments={"i-1": [_attachment(7)]})
        vcs = InMemoryVersionControlClient(candidates=[_candidate(8, title="ENG-2 thing")])
        engine = self._engine(tracker, vcs)

        linked = await engine.get_linked_prs_for_issues(
            [IssueRef(id="i-1", identifier="ENG-1"), IssueRef(id="i-2", identifier="ENG-2"), IssueRef(id="i-3", identifier="ENG-3")]
        )

        self.assertEqual(set(linked), {"i-1", "i-2", "i-3"})
        self.assertEqual([pr.number for pr in linked["i-1"]], [7])
        self.assertEqual([pr.number for pr in linked["i-2"]], [8])
        self.assertEqual(linked["i-3"], [])
        self.assertEqual(tracker.call_count("get_issues_with_attachments"), 1)
        self.assertEqual(tracker.call_count("get_issue_attachments"), 0)
        self.assertEqual(vcs.call_count("search_pull_requests_for_issue"), 2)

    async def test_batch_attachment_failure_falls_back_to_search_for_all(self) -> None:
        tracker = InMemoryIssueTrackerClient(
            attachments={"i-1": [_attachment(7)]},
            failures={"get_issues_with_attachments": TransportError("upstream 502")},
        )
        vcs = InMemoryVersionControlClient(candidates=[_candidate(8, title="ENG-1 thing")])
        linked = await self._engine(tracker, vcs).get_linked_prs_for_issues([IssueRef(id="i-1", identifier="ENG-1")])

        self.assertEqual([(pr.number, pr.origin) for pr in linked["i-1"]], [(8, "search")])

    async def test_failed_search_leaves_empty_list_for_that_issue(self) -> None:
        vcs = InMemoryVersionControlClient(failures={"search_pull_requests_for_issue": TransportError("rate limited")})
        linked = await self._engine(InMemoryIssueTrackerClient(), vcs).get_linked_prs_for_issues(
            [IssueRef(id="i-1", identifier="ENG-1")]
        )
        self.assertEqual(linked, {"i-1": []})

    async def test_enrichment_fills_missing_stats_only(self) -> None:
        vcs = InMemoryVersionControlClient(
            details={
                ("acme/web", 1): PullRequestDetail(number=1, repository="acme/web", additions=10, deletions=2, filesChanged=3, mergedAt="2024-01-05T00:00:00.000Z"),
                ("acme/web", 2): PullRequestDetail(number=2, repository="acme/web", additions=99, deletions=99),
            }
        )
        engine = self._engine(InMemoryIssueTrackerClient(), vcs)

        enriched = await engine.enrich_pull_requests([_pr(1, 1.0), _pr(2, 1.0, additions=4, deletions=1)])

        self.assertEqual((enriched[0].additions, enriched[0].deletions, enriched[0].filesChanged), (10, 2, 3))
        self.assertEqual(enriched[0].mergedAt, "2024-01-05T00:00:00.000Z")
        self.assertEqual((enriched[1].additions, enriched[1].deletions), (4, 1))
        self.assertEqual(vcs.call_count("get_pull_request_details"), 1)

    async def test_enrichment_failure_keeps_original_pr(self) -> None:
        vcs = InMemoryVersionControlClient(failures={"get_pull_request_details": TransportError("timeout")})
        engine = self._engine(InMemoryIssueTrackerClient(), vcs)
        original = _pr(1, 0.8)
        self.assertEqual(await engine.enrich_pull_requests([original]), [original])


class AttachToIssueTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.db = await aiosqlite.connect(":memory:")
        self.db.row_factory = aiosqlite.Row
        await run_migrations(self.db)
        self.repo = SqliteContentRepository(self.db)

    async def asyncTearDown(self) -> None:
        await self.db.close()

    async def test_linked_prs_are_stored_on_the_issue(self) -> None:
        issue = UnifiedContent(
            id="issue-tracker-issue-i-1",
            source="issue-tracker",
            contentType="issue",
            title="ENG-1: Fix login",
            createdAt="2024-01-01T00:00:00.000Z",
            updatedAt="2024-01-01T00:00:00.000Z",
            extractedAt="2024-01-01T00:00:00.000Z",
            structuredData=StructuredData(status="Done"),
        )
        await self.repo.upsert(issue)
        engine = CorrelationEngine(
            InMemoryIssueTrackerClient(), InMemoryVersionControlClient(), content_repo=self.repo, cache=TTLCache(300)
        )

        updated = await engine.attach_to_issue(issue.id, [_pr(7, 1.0)])
        stored = await self.repo.get_by_id(issue.id)

        self.assertEqual(updated, stored)
        self.assertEqual([pr.id for pr in stored.structuredData.linkedPRs], ["acme/web#7"])
        self.assertEqual(stored.structuredData.status, "Done")
        self.assertIsNone(await engine.attach_to_issue("issue-tracker-issue-missing", [_pr(7, 1.0)]))


if __name__ == "__main__":
    unittest.main()
