"""Pydantic models for unified content, sync records, correlation, and reports."""
from __future__ import annotations

from typing import Any, Generic, Literal, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field

T = TypeVar("T")

DataSource = Literal["issue-tracker", "version-control", "document-store"]
ContentType = Literal[
    "issue",
    "project",
    "cycle",
    "team",
    "pull-request",
    "repository",
    "commit",
    "document",
    "page",
    "table",
]
RelationshipType = Literal["parent-child", "related"]

DATA_SOURCES: tuple[str, ...] = ("issue-tracker", "version-control", "document-store")


def content_id(source: str, content_type: str, source_id: str | int) -> str:
    """Build the stable ``{source}-{contentType}-{sourceId}`` identifier."""
    return f"{source}-{content_type}-{source_id}"


# ── Unified content ────────────────────────────────────────────────

class Person(BaseModel):
    id: Optional[str] = None
    name: str = ""
    email: Optional[str] = None


class Label(BaseModel):
    name: str
    color: Optional[str] = None


class Reference(BaseModel):
    id: Optional[str] = None
    name: str = ""
    key: Optional[str] = None
    color: Optional[str] = None


class StructuredData(BaseModel):
    """Typed facets; source-specific extensions ride along as extra keys."""

    model_config = ConfigDict(extra="allow")

    status: Optional[str] = None
    state: Optional[str] = None
    priority: Optional[int | float | str] = None
    estimate: Optional[float] = None
    assignees: list[Person] = Field(default_factory=list)
    labels: list[Label] = Field(default_factory=list)
    project: Optional[Reference] = None
    team: Optional[Reference] = None
    cycle: Optional[Reference] = None
    startDate: Optional[str] = None
    endDate: Optional[str] = None
    dueDate: Optional[str] = None
    completedAt: Optional[str] = None
    linkedPRs: list[CorrelatedPullRequest] = Field(default_factory=list)


class UnifiedContent(BaseModel):
    id: str
    source: DataSource
    contentType: ContentType
    title: str
    description: Optional[str] = None
    url: Optional[str] = None
    createdAt: str
    updatedAt: str
    extractedAt: str
    parentId: Optional[str] = None
    childIds: list[str] = Field(default_factory=list)
    relatedIds: list[str] = Field(default_factory=list)
    sourceMetadata: dict[str, Any] = Field(default_factory=dict)
    content: str = ""
    searchableText: str = ""
    keywords: list[str] = Field(default_factory=list)
    structuredData: Optional[StructuredData] = None


class ContentRelationship(BaseModel):
    parentId: str
    childId: str
    relationshipType: RelationshipType
    createdAt: str = ""


# ── Sync history ───────────────────────────────────────────────────

class SyncRecord(BaseModel):
    source: str
    syncTime: str
    itemsProcessed: int = 0
    itemsAdded: int = 0
    itemsUpdated: int = 0
    success: bool = False
    errors: list[str] = Field(default_factory=list)
    mode: Literal["full", "incremental", "none"] = "none"


# ── Queries ────────────────────────────────────────────────────────

class TimeRange(BaseModel):
    start: Optional[str] = None
    end: Optional[str] = None
    field: Literal["createdAt", "updatedAt", "extractedAt"] = "createdAt"


class DataQueryFilters(BaseModel):
    status: list[str] = Field(default_factory=list)
    assignees: list[str] = Field(default_factory=list)
    labels: list[str] = Field(default_factory=list)
    projects: list[str] = Field(default_factory=list)
    cycles: list[str] = Field(default_factory=list)


class DataQuery(BaseModel):
    sources: list[DataSource] = Field(default_factory=list)
    contentTypes: list[ContentType] = Field(default_factory=list)
    timeRange: Optional[TimeRange] = None
    textSearch: Optional[str] = None
    filters: DataQueryFilters = Field(default_factory=DataQueryFilters)
    sortBy: Literal["createdAt", "updatedAt", "title"] = "updatedAt"
    sortOrder: Literal["asc", "desc"] = "desc"
    limit: Optional[int] = Field(default=None, ge=1)
    offset: int = Field(default=0, ge=0)


class DataQueryResult(BaseModel):
    items: list[UnifiedContent] = Field(default_factory=list)
    totalCount: int = 0
    hasMore: bool = False


# ── Correlation ────────────────────────────────────────────────────

class CorrelatedPullRequest(BaseModel):
    id: str  # org/repo#number
    number: int
    title: str = ""
    url: str
    author: str = "Unknown"
    mergedAt: Optional[str] = None
    additions: int = 0
    deletions: int = 0
    filesChanged: int = 0
    linkedIssues: list[str] = Field(default_factory=list)
    confidence: float = Field(ge=0.0, le=1.0)
    origin: Literal["attachment", "search"] = "search"


class IssueRef(BaseModel):
    id: str
    identifier: str


# ── Cycle review ───────────────────────────────────────────────────

class CycleInfo(BaseModel):
    id: str
    name: str = ""
    startsAt: str
    endsAt: str


class TrackerIssue(BaseModel):
    """Issue-tracker issue as handed to the aggregator."""

    model_config = ConfigDict(extra="ignore")

    id: str
    identifier: str = ""
    title: str = ""
    description: Optional[str] = None
    estimate: Optional[float] = None
    assignee: Optional[Person] = None
    project: Optional[Reference] = None
    labels: list[Label] = Field(default_factory=list)
    stateType: Optional[str] = None
    completedAt: Optional[str] = None
    url: Optional[str] = None
    cycle: Optional[CycleInfo] = None
    linkedPRs: list[CorrelatedPullRequest] = Field(default_factory=list)

    @property
    def is_completed(self) -> bool:
        return bool(self.completedAt) or (self.stateType or "").lower() == "completed"


class ReviewIssue(BaseModel):
    id: str
    identifier: str = ""
    title: str = ""
    description: Optional[str] = None
    estimate: float = 0
    assignee: Optional[Person] = None
    project: Optional[Reference] = None
    labels: list[Label] = Field(default_factory=list)
    completedAt: Optional[str] = None
    url: Optional[str] = None
    linkedPRs: list[CorrelatedPullRequest] = Field(default_factory=list)


class IssueGroup(BaseModel):
    key: str
    items: list[ReviewIssue] = Field(default_factory=list)
    totalPoints: float = 0
    issueCount: int = 0
    project: Optional[Reference] = None
    assignee: Optional[Person] = None


class CycleStats(BaseModel):
    totalIssues: int = 0
    totalPoints: float = 0
    totalPRs: int = 0
    uniqueContributors: int = 0
    velocity: float = 0
    totalAdditions: int = 0
    totalDeletions: int = 0
    totalFilesChanged: int = 0


class CycleReviewReport(BaseModel):
    cycle: CycleInfo
    stats: CycleStats = Field(default_factory=CycleStats)
    issuesByProject: dict[str, IssueGroup] = Field(default_factory=dict)
    issuesByEngineer: dict[str, IssueGroup] = Field(default_factory=dict)
    issues: list[ReviewIssue] = Field(default_factory=list)
    completedIssues: list[ReviewIssue] = Field(default_factory=list)
    pullRequests: list[CorrelatedPullRequest] = Field(default_factory=list)


# ── Newsletter ─────────────────────────────────────────────────────

NewsletterGroupBy = Literal["source", "contentType", "assignee", "project", "cycle"]


class NewsletterOptions(BaseModel):
    timeRange: TimeRange
    sources: list[DataSource] = Field(default_factory=list)
    groupBy: NewsletterGroupBy = "source"
    includeMetrics: bool = True
    format: Literal["markdown", "text"] = "markdown"


class NewsletterSection(BaseModel):
    title: str
    items: list[UnifiedContent] = Field(default_factory=list)
    metrics: dict[str, int] = Field(default_factory=dict)


class Newsletter(BaseModel):
    title: str
    timeRange: TimeRange
    sections: list[NewsletterSection] = Field(default_factory=list)
    overallMetrics: dict[str, Any] = Field(default_factory=dict)
    generatedAt: str
    rendered: str = ""


# ── Boundary results ───────────────────────────────────────────────

class ServiceError(BaseModel):
    error: str
    message: str


class ServiceResult(BaseModel, Generic[T]):
    ok: bool
    data: Optional[T] = None
    error: Optional[ServiceError] = None


StructuredData.model_rebuild()
UnifiedContent.model_rebuild()
