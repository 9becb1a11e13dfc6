"""Fixture-driven collaborator implementations.

Used by the test suite and for running the API locally without credentials.
Every call is appended to ``calls`` so callers can assert on traffic, and
``failures`` maps a method name to an exception raised on every call to it.
"""
from __future__ import annotations

import re
from typing import Any, Iterable

from workstream.clients.base import Attachment, PullRequestCandidate, PullRequestDetail
from workstream.date_utils import normalize_timestamp
from workstream.errors import NotFoundError
from workstream.models import CycleInfo, TrackerIssue
from workstream.parsers import to_cycle_info, to_tracker_issue


class _Recorder:
    def __init__(self, failures: dict[str, Exception] | None = None):
        self.calls: list[tuple[str, Any]] = []
        self.failures = dict(failures or {})

    def _record(self, method: str, arg: Any = None) -> None:
        self.calls.append((method, arg))
        failure = self.failures.get(method)
        if failure is not None:
            raise failure

    def call_count(self, method: str) -> int:
        return sum(1 for name, _ in self.calls if name == method)


def _updated_since(records: Iterable[dict[str, Any]], since: str | None, key: str) -> list[dict[str, Any]]:
    if not since:
        return list(records)
    watermark = normalize_timestamp(since)
    return [r for r in records if normalize_timestamp(r.get(key)) > watermark]


class InMemoryIssueTrackerClient(_Recorder):
    def __init__(
        self,
        *,
        teams: list[dict[str, Any]] | None = None,
        projects: list[dict[str, Any]] | None = None,
        cycles: list[dict[str, Any]] | None = None,
        issues: list[dict[str, Any]] | None = None,
        attachments: dict[str, list[Attachment]] | None = None,
        configured: bool = True,
        failures: dict[str, Exception] | None = None,
    ):
        super().__init__(failures)
        self.teams = list(teams or [])
        self.projects = list(projects or [])
        self.cycles = list(cycles or [])
        self.issues = list(issues or [])
        self.attachments = dict(attachments or {})
        self.configured = configured

    def is_configured(self) -> bool:
        return self.configured

    async def get_teams(self) -> list[dict[str, Any]]:
        self._record("get_teams")
        return list(self.teams)

    async def get_projects(self) -> list[dict[str, Any]]:
        self._record("get_projects")
        return list(self.projects)

    async def get_cycles(self) -> list[dict[str, Any]]:
        self._record("get_cycles")
        return list(self.cycles)

    async def get_issues(self, updated_since: str | None = None) -> list[dict[str, Any]]:
        self._record("get_issues", updated_since)
        return _updated_since(self.issues, updated_since, "updatedAt")

    async def get_cycle(self, cycle_id: str) -> CycleInfo:
        self._record("get_cycle", cycle_id)
        for cycle in self.cycles:
            if str(cycle.get("id")) == cycle_id:
                return to_cycle_info(cycle)
        raise NotFoundError(f"Cycle not found: {cycle_id}")

    async def get_issues_in_cycle(self, cycle_id: str) -> list[TrackerIssue]:
        self._record("get_issues_in_cycle", cycle_id)
        matching = [
            issue for issue in self.issues
            if isinstance(issue.get("cycle"), dict) and str(issue["cycle"].get("id")) == cycle_id
        ]
        return [to_tracker_issue(issue) for issue in matching]

    async def get_issue_attachments(self, issue_id: str) -> list[Attachment]:
        self._record("get_issue_attachments", issue_id)
        return list(self.attachments.get(issue_id, []))

    async def get_issues_with_attachments(self, issue_ids: list[str]) -> dict[str, list[Attachment]]:
        self._record("get_issues_with_attachments", list(issue_ids))
        return {issue_id: list(self.attachments.get(issue_id, [])) for issue_id in issue_ids}


class InMemoryVersionControlClient(_Recorder):
    def __init__(
        self,
        *,
        repositories: list[dict[str, Any]] | None = None,
        pull_requests: dict[str, list[dict[str, Any]]] | None = None,
        commits: dict[str, list[dict[str, Any]]] | None = None,
        candidates: list[PullRequestCandidate] | None = None,
        details: dict[tuple[str, int], PullRequestDetail] | None = None,
        configured: bool = True,
        failures: dict[str, Exception] | None = None,
    ):
        super().__init__(failures)
        self.repositories = list(repositories or [])
        self.pull_requests = dict(pull_requests or {})
        self.commits = dict(commits or {})
        self.candidates = list(candidates or [])
        self.details = dict(details or {})
        self.configured = configured

    def is_configured(self) -> bool:
        return self.configured

    async def list_repositories(self) -> list[dict[str, Any]]:
        self._record("list_repositories")
        if not self.configured:
            return []
        return list(self.repositories)

    async def list_pull_requests(self, repo: str, updated_since: str | None = None) -> list[dict[str, Any]]:
        self._record("list_pull_requests", repo)
        if not self.configured:
            return []
        return _updated_since(self.pull_requests.get(repo, []), updated_since, "updated_at")

    async def list_commits(self, repo: str, since: str | None = None) -> list[dict[str, Any]]:
        self._record("list_commits", repo)
        if not self.configured:
            return []
        commits = self.commits.get(repo, [])
        if not since:
            return list(commits)
        watermark = normalize_timestamp(since)
        return [
            c for c in commits
            if normalize_timestamp(((c.get("commit") or {}).get("author") or {}).get("date")) > watermark
        ]

    async def search_pull_requests_for_issue(
        self, identifier: str, repo_allow_list: list[str]
    ) -> list[PullRequestCandidate]:
        """Return candidates whose title, body, or branch mention ``identifier``."""
        self._record("search_pull_requests_for_issue", identifier)
        if not self.configured or not identifier:
            return []
        pattern = re.compile(re.escape(identifier), re.IGNORECASE)
        hits = []
        for candidate in self.candidates:
            haystacks = (candidate.title, candidate.body or "", candidate.headRefName or "")
            if any(pattern.search(h) for h in haystacks):
                hits.append(candidate)
        return hits

    async def get_pull_request_details(self, number: int, repo: str) -> PullRequestDetail | None:
        self._record("get_pull_request_details", (repo, number))
        if not self.configured:
            return None
        return self.details.get((repo, number))
