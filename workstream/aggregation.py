"""Cycle review aggregation.

``build_cycle_review`` is pure: it turns a cycle's completed issues (with their
correlated pull requests already attached) into a report whose per-project and
per-engineer groups each partition the completed set, so group point totals
always sum to ``stats.totalPoints``.
"""
from __future__ import annotations

import logging
import math
from typing import Any, Iterable

from workstream import config
from workstream.clients.base import IssueTrackerClient, call_external
from workstream.date_utils import parse_datetime
from workstream.errors import ConfigurationError, NotFoundError
from workstream.models import (
    CorrelatedPullRequest,
    CycleInfo,
    CycleReviewReport,
    CycleStats,
    DataQuery,
    DataQueryFilters,
    IssueGroup,
    IssueRef,
    Person,
    ReviewIssue,
    TrackerIssue,
    UnifiedContent,
    content_id,
)

logger = logging.getLogger("workstream.aggregation")

NO_PROJECT = "No Project"
UNASSIGNED = "Unassigned"
_WEEK_SECONDS = 7 * 24 * 60 * 60


def points(estimate: float | None) -> float:
    """Story points an estimate contributes; missing, NaN, or non-positive is 0."""
    if estimate is None or isinstance(estimate, bool):
        return 0
    try:
        value = float(estimate)
    except (TypeError, ValueError):
        return 0
    if math.isnan(value) or value <= 0:
        return 0
    return value


def cycle_duration_weeks(cycle: CycleInfo) -> float:
    start = parse_datetime(cycle.startsAt)
    end = parse_datetime(cycle.endsAt)
    if start is None or end is None:
        return 1
    return max(1, (end - start).total_seconds() / _WEEK_SECONDS)


def round_half_up(value: float, digits: int = 1) -> float:
    factor = 10 ** digits
    return math.floor(value * factor + 0.5) / factor


def to_review_issue(issue: TrackerIssue) -> ReviewIssue:
    return ReviewIssue(
        id=issue.id,
        identifier=issue.identifier,
        title=issue.title,
        description=issue.description,
        estimate=points(issue.estimate),
        assignee=issue.assignee,
        project=issue.project,
        labels=issue.labels,
        completedAt=issue.completedAt,
        url=issue.url,
        linkedPRs=issue.linkedPRs,
    )


def _add_to_group(groups: dict[str, IssueGroup], key: str, issue: ReviewIssue, **refs: Any) -> None:
    group = groups.get(key)
    if group is None:
        group = IssueGroup(key=key, **refs)
        groups[key] = group
    group.items.append(issue)
    group.issueCount += 1
    group.totalPoints += issue.estimate


def _pr_key(pr: CorrelatedPullRequest) -> str:
    return pr.id or pr.url


def build_cycle_review(
    cycle: CycleInfo,
    completed_issues: Iterable[TrackerIssue],
    all_issues: Iterable[TrackerIssue] | None = None,
) -> CycleReviewReport:
    completed = [to_review_issue(issue) for issue in completed_issues]

    total_points = sum(issue.estimate for issue in completed)
    contributors = {
        issue.assignee.id or issue.assignee.name
        for issue in completed
        if issue.assignee is not None
    }

    by_project: dict[str, IssueGroup] = {}
    by_engineer: dict[str, IssueGroup] = {}
    pull_requests: dict[str, CorrelatedPullRequest] = {}
    for issue in completed:
        project_name = issue.project.name if issue.project and issue.project.name else NO_PROJECT
        engineer_name = issue.assignee.name if issue.assignee and issue.assignee.name else UNASSIGNED
        _add_to_group(by_project, project_name, issue, project=issue.project)
        _add_to_group(by_engineer, engineer_name, issue, assignee=issue.assignee)
        for pr in issue.linkedPRs:
            pull_requests.setdefault(_pr_key(pr), pr)

    prs = list(pull_requests.values())
    stats = CycleStats(
        totalIssues=len(completed),
        totalPoints=total_points,
        totalPRs=len(prs),
        uniqueContributors=len(contributors),
        velocity=round_half_up(total_points / cycle_duration_weeks(cycle), 1),
        totalAdditions=sum(pr.additions for pr in prs),
        totalDeletions=sum(pr.deletions for pr in prs),
        totalFilesChanged=sum(pr.filesChanged for pr in prs),
    )
    return CycleReviewReport(
        cycle=cycle,
        stats=stats,
        issuesByProject=by_project,
        issuesByEngineer=by_engineer,
        completedIssues=completed,
        issues=[to_review_issue(issue) for issue in all_issues] if all_issues is not None else list(completed),
        pullRequests=prs,
    )


# ── Loading ───────────────────────────────────────────────────────

def _strip_prefix(value: str, prefix: str) -> str:
    return value[len(prefix):] if value.startswith(prefix) else value


def issue_from_content(content: UnifiedContent) -> TrackerIssue:
    """Rebuild the aggregation view of an issue from its stored record."""
    facets = content.structuredData
    identifier = str(content.sourceMetadata.get("identifier") or "")
    assignees: list[Person] = facets.assignees if facets else []
    return TrackerIssue(
        id=_strip_prefix(content.id, "issue-tracker-issue-"),
        identifier=identifier,
        title=_strip_prefix(content.title, f"{identifier}: ") if identifier else content.title,
        description=content.description,
        estimate=facets.estimate if facets else None,
        assignee=assignees[0] if assignees else None,
        project=facets.project if facets else None,
        labels=facets.labels if facets else [],
        stateType=facets.state if facets else None,
        completedAt=facets.completedAt if facets else None,
        url=content.url,
        linkedPRs=facets.linkedPRs if facets else [],
    )


class CycleReviewService:
    """Loads a cycle and its issues, correlates PRs, and builds the report.

    Issues come from the issue-tracker collaborator when it is configured and
    from the content store otherwise. A lookup failure aborts the report.
    """

    def __init__(
        self,
        *,
        issue_tracker: IssueTrackerClient | None = None,
        correlation_engine: Any = None,
        content_repo: Any = None,
        timeout: float | None = None,
    ):
        self.issue_tracker = issue_tracker
        self.correlation_engine = correlation_engine
        self.content_repo = content_repo
        self.timeout = timeout if timeout is not None else config.EXTERNAL_TIMEOUT_SECONDS

    async def _load_from_tracker(self, cycle_id: str) -> tuple[CycleInfo, list[TrackerIssue]]:
        cycle = await call_external(
            self.issue_tracker.get_cycle(cycle_id), timeout=self.timeout, operation=f"cycle {cycle_id}"
        )
        issues = await call_external(
            self.issue_tracker.get_issues_in_cycle(cycle_id),
            timeout=self.timeout,
            operation=f"issues in cycle {cycle_id}",
        )
        return cycle, list(issues)

    async def _load_from_store(self, cycle_id: str) -> tuple[CycleInfo, list[TrackerIssue]]:
        stored = await self.content_repo.get_by_id(content_id("issue-tracker", "cycle", cycle_id))
        if stored is None:
            raise NotFoundError(f"Cycle not found: {cycle_id}")
        facets = stored.structuredData
        cycle = CycleInfo(
            id=cycle_id,
            name=stored.title,
            startsAt=(facets.startDate if facets else None) or stored.createdAt,
            endsAt=(facets.endDate if facets else None) or stored.createdAt,
        )
        result = await self.content_repo.query(
            DataQuery(
                sources=["issue-tracker"],
                contentTypes=["issue"],
                filters=DataQueryFilters(cycles=[cycle_id]),
                sortBy="createdAt",
                sortOrder="asc",
            )
        )
        return cycle, [issue_from_content(item) for item in result.items]

    async def _correlate(self, issues: list[TrackerIssue]) -> list[TrackerIssue]:
        refs = [IssueRef(id=i.id, identifier=i.identifier) for i in issues if i.identifier]
        if self.correlation_engine is None or not refs:
            return issues

        linked = await self.correlation_engine.get_linked_prs_for_issues(refs)
        unique: dict[str, CorrelatedPullRequest] = {}
        for prs in linked.values():
            for pr in prs:
                unique.setdefault(pr.id, pr)
        enriched = {pr.id: pr for pr in await self.correlation_engine.enrich_pull_requests(list(unique.values()))}

        correlated = []
        for issue in issues:
            if issue.id in linked:
                prs = [enriched.get(pr.id, pr) for pr in linked[issue.id]]
                issue = issue.model_copy(update={"linkedPRs": prs})
            correlated.append(issue)
        return correlated

    async def get_cycle_review(self, cycle_id: str) -> CycleReviewReport:
        if self.issue_tracker is not None and self.issue_tracker.is_configured():
            cycle, issues = await self._load_from_tracker(cycle_id)
        elif self.content_repo is not None:
            cycle, issues = await self._load_from_store(cycle_id)
        else:
            raise ConfigurationError("Issue tracker API key is not configured")

        completed = await self._correlate([issue for issue in issues if issue.is_completed])
        report = build_cycle_review(cycle, completed, all_issues=issues)
        logger.info(
            "Cycle review %s: %d completed issues, %s points, %d PRs",
            cycle_id,
            report.stats.totalIssues,
            report.stats.totalPoints,
            report.stats.totalPRs,
        )
        return report
