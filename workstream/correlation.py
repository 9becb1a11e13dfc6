"""Link pull requests to issue-tracker issues.

Explicit attachment links on the issue are authoritative (confidence 1.0). Only
when an issue has none does the engine fall back to a heuristic search of the
version-control collaborator, scoring each candidate with independent additive
signals capped at 0.95.
"""
from __future__ import annotations

import asyncio
import logging
import re
from typing import Any, Callable, Iterable, Optional

from workstream import config
from workstream.cache import TTLCache
from workstream.clients.base import (
    Attachment,
    IssueTrackerClient,
    PullRequestCandidate,
    VersionControlClient,
    call_external,
)
from workstream.models import CorrelatedPullRequest, IssueRef, StructuredData, UnifiedContent

logger = logging.getLogger("workstream.correlation")

PR_URL_RE = re.compile(r"github\.com/([^/]+)/([^/]+)/pull/(\d+)")

ATTACHMENT_CONFIDENCE = 1.0
BASE_CONFIDENCE = 0.5
SEARCH_CONFIDENCE_CAP = 0.95
_CLOSING_VERBS = ("fixes", "closes", "resolves")

Signal = Callable[[PullRequestCandidate, str], float]


def parse_pr_url(url: str | None) -> tuple[str, str, int] | None:
    """Return ``(owner, repo, number)`` for a pull-request URL, else None."""
    match = PR_URL_RE.search(url or "")
    if not match:
        return None
    owner, repo, number = match.groups()
    return owner, repo, int(number)


# ── Scoring ───────────────────────────────────────────────────────

def title_signal(candidate: PullRequestCandidate, identifier: str) -> float:
    return 0.3 if identifier and identifier in (candidate.title or "") else 0.0


def body_signal(candidate: PullRequestCandidate, identifier: str) -> float:
    body = (candidate.body or "").lower()
    needle = identifier.lower()
    if not body or not needle:
        return 0.0
    if any(f"{verb} {needle}" in body for verb in _CLOSING_VERBS):
        return 0.2
    if needle in body:
        return 0.1
    return 0.0


def branch_signal(candidate: PullRequestCandidate, identifier: str) -> float:
    branch = (candidate.headRefName or "").lower()
    return 0.1 if identifier and identifier.lower() in branch else 0.0


DEFAULT_SIGNALS: tuple[Signal, ...] = (title_signal, body_signal, branch_signal)


def score_candidate(
    candidate: PullRequestCandidate,
    identifier: str,
    signals: Iterable[Signal] = DEFAULT_SIGNALS,
) -> float:
    """Confidence that a search hit belongs to ``identifier``; never above 0.95."""
    score = BASE_CONFIDENCE + sum(signal(candidate, identifier) for signal in signals)
    return round(min(SEARCH_CONFIDENCE_CAP, score), 3)


def dedupe_pull_requests(prs: Iterable[CorrelatedPullRequest]) -> list[CorrelatedPullRequest]:
    """Keep one entry per canonical id (the most confident), most confident first."""
    best: dict[str, CorrelatedPullRequest] = {}
    for pr in prs:
        existing = best.get(pr.id)
        if existing is None or pr.confidence > existing.confidence:
            best[pr.id] = pr
    return sorted(best.values(), key=lambda pr: pr.confidence, reverse=True)


# ── Engine ────────────────────────────────────────────────────────

class CorrelationEngine:
    def __init__(
        self,
        issue_tracker: IssueTrackerClient,
        version_control: VersionControlClient,
        *,
        repo_allow_list: list[str] | None = None,
        cache: TTLCache | None = None,
        content_repo: Any = None,
        timeout: float | None = None,
        concurrency: int | None = None,
        signals: Iterable[Signal] = DEFAULT_SIGNALS,
    ):
        self.issue_tracker = issue_tracker
        self.version_control = version_control
        self.repo_allow_list = list(repo_allow_list if repo_allow_list is not None else config.GITHUB_REPOS)
        self.cache = cache if cache is not None else TTLCache(config.CACHE_TTL_SECONDS)
        self.content_repo = content_repo
        self.timeout = timeout if timeout is not None else config.EXTERNAL_TIMEOUT_SECONDS
        self.concurrency = max(1, concurrency if concurrency is not None else config.CORRELATION_CONCURRENCY)
        self.signals = tuple(signals)

    def _allowed(self, owner: str, repo: str) -> bool:
        return not self.repo_allow_list or f"{owner}/{repo}" in self.repo_allow_list

    def prs_from_attachments(
        self, attachments: Iterable[Attachment], identifier: str
    ) -> list[CorrelatedPullRequest]:
        prs = []
        for attachment in attachments:
            parsed = parse_pr_url(attachment.url)
            if parsed is None or not self._allowed(parsed[0], parsed[1]):
                continue
            owner, repo, number = parsed
            prs.append(
                CorrelatedPullRequest(
                    id=f"{owner}/{repo}#{number}",
                    number=number,
                    title=attachment.title,
                    url=attachment.url,
                    author=(attachment.creator.name if attachment.creator and attachment.creator.name else "Unknown"),
                    mergedAt=attachment.createdAt,
                    linkedIssues=[identifier],
                    confidence=ATTACHMENT_CONFIDENCE,
                    origin="attachment",
                )
            )
        return dedupe_pull_requests(prs)

    async def search(self, identifier: str) -> list[CorrelatedPullRequest]:
        """Heuristic fallback search for one issue identifier."""
        if not self.version_control.is_configured():
            logger.warning("Version-control client not configured, skipping PR search for %s", identifier)
            return []

        candidates = await call_external(
            self.version_control.search_pull_requests_for_issue(identifier, self.repo_allow_list),
            timeout=self.timeout,
            operation=f"PR search for {identifier}",
        )
        prs = []
        for candidate in candidates:
            parsed = parse_pr_url(candidate.url)
            if parsed is None or not self._allowed(parsed[0], parsed[1]):
                continue
            owner, repo, _ = parsed
            prs.append(
                CorrelatedPullRequest(
                    id=f"{owner}/{repo}#{candidate.number}",
                    number=candidate.number,
                    title=candidate.title,
                    url=candidate.url,
                    author=candidate.author or "Unknown",
                    mergedAt=candidate.mergedAt,
                    additions=candidate.additions,
                    deletions=candidate.deletions,
                    filesChanged=candidate.filesChanged,
                    linkedIssues=[identifier],
                    confidence=score_candidate(candidate, identifier, self.signals),
                    origin="search",
                )
            )
        return dedupe_pull_requests(prs)

    async def _search_isolated(self, issue: IssueRef, semaphore: asyncio.Semaphore) -> list[CorrelatedPullRequest]:
        async with semaphore:
            try:
                return await self.search(issue.identifier)
            except Exception as exc:
                logger.warning("PR search failed for %s: %s", issue.identifier, exc)
                return []

    async def get_linked_prs(self, issue: IssueRef) -> list[CorrelatedPullRequest]:
        """Attachment links first; heuristic search only when there are none."""
        cached: Optional[list[CorrelatedPullRequest]] = self.cache.get(issue.id)
        if cached is not None:
            return list(cached)

        attachments = await call_external(
            self.issue_tracker.get_issue_attachments(issue.id),
            timeout=self.timeout,
            operation=f"attachments for {issue.identifier}",
        )
        prs = self.prs_from_attachments(attachments, issue.identifier)
        if not prs:
            prs = await self.search(issue.identifier)
        self.cache.set(issue.id, prs)
        return list(prs)

    async def get_linked_prs_for_issues(self, issues: list[IssueRef]) -> dict[str, list[CorrelatedPullRequest]]:
        """Batch variant: one attachment round trip, then bounded fallback searches.

        A failure for one issue leaves that issue with an empty list; every
        requested issue id is present in the result.
        """
        result: dict[str, list[CorrelatedPullRequest]] = {}
        pending: list[IssueRef] = []
        for issue in issues:
            cached = self.cache.get(issue.id)
            if cached is not None:
                result[issue.id] = list(cached)
            else:
                pending.append(issue)
        if not pending:
            return result

        try:
            attachment_map = await call_external(
                self.issue_tracker.get_issues_with_attachments([i.id for i in pending]),
                timeout=self.timeout,
                operation="batch attachment lookup",
            )
        except Exception as exc:
            logger.warning("Batch attachment lookup failed, falling back to search for all issues: %s", exc)
            attachment_map = {}

        unresolved: list[IssueRef] = []
        for issue in pending:
            prs = self.prs_from_attachments(attachment_map.get(issue.id, []), issue.identifier)
            if prs:
                result[issue.id] = prs
                self.cache.set(issue.id, prs)
            else:
                unresolved.append(issue)

        if unresolved:
            semaphore = asyncio.Semaphore(self.concurrency)
            searched = await asyncio.gather(*(self._search_isolated(i, semaphore) for i in unresolved))
            for issue, prs in zip(unresolved, searched):
                result[issue.id] = prs
                self.cache.set(issue.id, prs)

        logger.info(
            "Correlated %d issues (%d via attachments, %d via search)",
            len(issues),
            len(pending) - len(unresolved),
            len(unresolved),
        )
        return result

    async def _enrich_one(self, pr: CorrelatedPullRequest, semaphore: asyncio.Semaphore) -> CorrelatedPullRequest:
        if pr.additions != 0 or pr.deletions != 0:
            return pr
        parsed = parse_pr_url(pr.url)
        if parsed is None:
            return pr
        owner, repo, number = parsed
        async with semaphore:
            try:
                detail = await call_external(
                    self.version_control.get_pull_request_details(number, f"{owner}/{repo}"),
                    timeout=self.timeout,
                    operation=f"details for {pr.id}",
                )
            except Exception as exc:
                logger.warning("Error enriching PR data for %s: %s", pr.id, exc)
                return pr
        if detail is None:
            return pr
        return pr.model_copy(
            update={
                "additions": detail.additions or pr.additions,
                "deletions": detail.deletions or pr.deletions,
                "filesChanged": detail.filesChanged or pr.filesChanged,
                "mergedAt": pr.mergedAt or detail.mergedAt,
            }
        )

    async def enrich_pull_requests(self, prs: list[CorrelatedPullRequest]) -> list[CorrelatedPullRequest]:
        """Fill diff stats for PRs that have none; PRs with stats are never re-fetched."""
        if not prs or not self.version_control.is_configured():
            return list(prs)
        semaphore = asyncio.Semaphore(self.concurrency)
        return list(await asyncio.gather(*(self._enrich_one(pr, semaphore) for pr in prs)))

    async def attach_to_issue(
        self, issue_content_id: str, prs: list[CorrelatedPullRequest]
    ) -> UnifiedContent | None:
        """Store ``prs`` as the issue's ``linkedPRs`` facet; None when the issue is not stored."""
        if self.content_repo is None:
            return None
        content = await self.content_repo.get_by_id(issue_content_id)
        if content is None:
            return None
        facets = content.structuredData or StructuredData()
        updated = content.model_copy(
            update={"structuredData": facets.model_copy(update={"linkedPRs": list(prs)})}
        )
        await self.content_repo.upsert(updated)
        return updated
