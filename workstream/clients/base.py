"""Contracts for the external collaborators the engine talks to.

The raw HTTP clients live outside this package; anything satisfying these
protocols can be handed to the extractors and the correlation engine.
"""
from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Optional, Protocol, TypeVar, runtime_checkable

from pydantic import BaseModel, Field

from workstream.errors import TransportError
from workstream.models import CycleInfo, Person, TrackerIssue

T = TypeVar("T")


class Attachment(BaseModel):
    id: str
    title: str = ""
    url: str
    createdAt: Optional[str] = None
    creator: Optional[Person] = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class PullRequestCandidate(BaseModel):
    """Search hit returned by the version-control collaborator."""

    number: int
    title: str = ""
    url: str
    body: Optional[str] = None
    headRefName: Optional[str] = None
    author: Optional[str] = None
    mergedAt: Optional[str] = None
    additions: int = 0
    deletions: int = 0
    filesChanged: int = 0


class PullRequestDetail(BaseModel):
    number: int
    repository: str
    title: str = ""
    mergedAt: Optional[str] = None
    additions: int = 0
    deletions: int = 0
    filesChanged: int = 0


@runtime_checkable
class IssueTrackerClient(Protocol):
    def is_configured(self) -> bool: ...

    async def get_teams(self) -> list[dict[str, Any]]: ...

    async def get_projects(self) -> list[dict[str, Any]]: ...

    async def get_cycles(self) -> list[dict[str, Any]]: ...

    async def get_issues(self, updated_since: str | None = None) -> list[dict[str, Any]]: ...

    async def get_cycle(self, cycle_id: str) -> CycleInfo:
        """Raises NotFoundError for unknown ids, TransportError on upstream failure."""
        ...

    async def get_issues_in_cycle(self, cycle_id: str) -> list[TrackerIssue]: ...

    async def get_issue_attachments(self, issue_id: str) -> list[Attachment]: ...

    async def get_issues_with_attachments(self, issue_ids: list[str]) -> dict[str, list[Attachment]]: ...


@runtime_checkable
class VersionControlClient(Protocol):
    """Unconfigured clients return empty results rather than raising."""

    def is_configured(self) -> bool: ...

    async def list_repositories(self) -> list[dict[str, Any]]: ...

    async def list_pull_requests(self, repo: str, updated_since: str | None = None) -> list[dict[str, Any]]: ...

    async def list_commits(self, repo: str, since: str | None = None) -> list[dict[str, Any]]: ...

    async def search_pull_requests_for_issue(
        self, identifier: str, repo_allow_list: list[str]
    ) -> list[PullRequestCandidate]: ...

    async def get_pull_request_details(self, number: int, repo: str) -> PullRequestDetail | None: ...


async def call_external(awaitable: Awaitable[T], *, timeout: float, operation: str) -> T:
    """Await a collaborator call, turning a timeout into a TransportError."""
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except asyncio.TimeoutError as exc:
        raise TransportError(f"{operation} timed out after {timeout:g}s") from exc
