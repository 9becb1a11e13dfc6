"""Boundary service consumed by the HTTP layer.

Every operation returns a ``ServiceResult``: expected failures (missing
configuration, unknown ids, upstream errors) become a structured error payload
instead of an exception.
"""
from __future__ import annotations

import logging
from typing import Any, Awaitable, Optional, TypeVar

from workstream import config
from workstream.aggregation import CycleReviewService
from workstream.cache import TTLCache
from workstream.correlation import CorrelationEngine
from workstream.db.factory import get_content_repository
from workstream.db.sync_engine import SyncEngine
from workstream.errors import ConfigurationError, NotFoundError, WorkstreamError
from workstream.extractors import DocumentStoreExtractor, IssueTrackerExtractor, VersionControlExtractor
from workstream.models import (
    CorrelatedPullRequest,
    CycleReviewReport,
    DataQuery,
    DataQueryResult,
    IssueRef,
    Newsletter,
    NewsletterOptions,
    ServiceError,
    ServiceResult,
    SyncRecord,
    UnifiedContent,
    content_id,
)
from workstream.newsletter import generate_newsletter

logger = logging.getLogger("workstream.api")

T = TypeVar("T")


class DataService:
    def __init__(
        self,
        *,
        content_repo: Any,
        sync_engine: SyncEngine,
        correlation_engine: Optional[CorrelationEngine] = None,
        cycle_review_service: Optional[CycleReviewService] = None,
    ):
        self.content_repo = content_repo
        self.sync_engine = sync_engine
        self.correlation_engine = correlation_engine
        self.cycle_review_service = cycle_review_service

    async def _guard(self, operation: str, awaitable: Awaitable[T]) -> ServiceResult:
        try:
            return ServiceResult(ok=True, data=await awaitable)
        except WorkstreamError as exc:
            logger.warning("%s failed: %s (%s)", operation, exc.message, exc.code)
            return ServiceResult(ok=False, error=ServiceError(**exc.to_payload()))

    # ── Sync ───────────────────────────────────────────────────────

    async def sync(self, source: str | None = None, *, force_full: bool = False) -> ServiceResult:
        async def _run() -> list[SyncRecord]:
            if source:
                return [await self.sync_engine.sync_source(source, force_full=force_full)]
            return await self.sync_engine.sync_all(force_full=force_full)

        return await self._guard("sync", _run())

    async def get_sync_history(self, source: str | None = None, limit: int = 50) -> ServiceResult:
        return await self._guard("sync history", self.sync_engine.get_sync_history(source, limit))

    # ── Content ────────────────────────────────────────────────────

    async def query(self, query: DataQuery) -> ServiceResult:
        async def _run() -> DataQueryResult:
            return await self.content_repo.query(query)

        return await self._guard("query", _run())

    async def get_content(self, item_id: str) -> ServiceResult:
        async def _run() -> UnifiedContent:
            content = await self.content_repo.get_by_id(item_id)
            if content is None:
                raise NotFoundError(f"Content not found: {item_id}")
            return content

        return await self._guard("get content", _run())

    async def get_relationships(self, item_id: str) -> ServiceResult:
        return await self._guard("relationships", self.content_repo.get_relationships(item_id))

    # ── Reports ────────────────────────────────────────────────────

    async def get_cycle_review(self, cycle_id: str) -> ServiceResult:
        async def _run() -> CycleReviewReport:
            if self.cycle_review_service is None:
                raise ConfigurationError("Cycle review is not configured")
            return await self.cycle_review_service.get_cycle_review(cycle_id)

        return await self._guard("cycle review", _run())

    async def generate_newsletter(self, options: NewsletterOptions) -> ServiceResult:
        async def _run() -> Newsletter:
            return await generate_newsletter(self.content_repo, options)

        return await self._guard("newsletter", _run())

    # ── Correlation ────────────────────────────────────────────────

    def _require_correlation(self) -> CorrelationEngine:
        if self.correlation_engine is None:
            raise ConfigurationError("Pull request correlation is not configured")
        return self.correlation_engine

    async def _resolve_issue(
        self, issue_id: str, identifier: str | None
    ) -> tuple[IssueRef | None, UnifiedContent | None]:
        stored = await self.content_repo.get_by_id(content_id("issue-tracker", "issue", issue_id))
        if stored is not None:
            identifier = identifier or str(stored.sourceMetadata.get("identifier") or "")
        if not identifier:
            return None, stored
        return IssueRef(id=issue_id, identifier=identifier), stored

    async def get_linked_prs(self, issue_id: str, identifier: str | None = None) -> ServiceResult:
        """Correlate, enrich, and cache the PRs on the stored issue.

        An issue that cannot be resolved, or that the tracker does not know,
        has no linked PRs.
        """

        async def _run() -> list[CorrelatedPullRequest]:
            engine = self._require_correlation()
            ref, stored = await self._resolve_issue(issue_id, identifier)
            if ref is None:
                logger.info("No identifier known for issue %s, returning no linked PRs", issue_id)
                return []
            try:
                linked = await engine.get_linked_prs(ref)
            except NotFoundError as exc:
                logger.info("Issue %s unknown upstream: %s", issue_id, exc.message)
                return []
            prs = await engine.enrich_pull_requests(linked)
            if stored is not None:
                await engine.attach_to_issue(stored.id, prs)
            return prs

        return await self._guard("linked PRs", _run())

    async def get_linked_prs_for_issues(self, issues: list[IssueRef]) -> ServiceResult:
        async def _run() -> dict[str, list[CorrelatedPullRequest]]:
            engine = self._require_correlation()
            linked = await engine.get_linked_prs_for_issues(issues)
            return {issue_id: await engine.enrich_pull_requests(prs) for issue_id, prs in linked.items()}

        return await self._guard("linked PRs batch", _run())


def build_data_service(
    db: Any,
    *,
    issue_tracker: Any = None,
    version_control: Any = None,
    documents_dir: Any = None,
) -> DataService:
    """Wire the engines for one database handle and whichever collaborators are available."""
    content_repo = get_content_repository(db)
    sync_engine = SyncEngine(db, cache=TTLCache(config.CACHE_TTL_SECONDS))
    if issue_tracker is not None:
        sync_engine.register_extractor(IssueTrackerExtractor(issue_tracker))
    if version_control is not None:
        sync_engine.register_extractor(VersionControlExtractor(version_control))
    sync_engine.register_extractor(DocumentStoreExtractor(documents_dir))

    correlation_engine = None
    if issue_tracker is not None and version_control is not None:
        correlation_engine = CorrelationEngine(
            issue_tracker,
            version_control,
            cache=TTLCache(config.CACHE_TTL_SECONDS),
            content_repo=content_repo,
        )

    return DataService(
        content_repo=content_repo,
        sync_engine=sync_engine,
        correlation_engine=correlation_engine,
        cycle_review_service=CycleReviewService(
            issue_tracker=issue_tracker,
            correlation_engine=correlation_engine,
            content_repo=content_repo,
        ),
    )
