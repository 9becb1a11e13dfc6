"""Issue-tracker extractor: teams, projects, cycles, then issues."""
from __future__ import annotations

import logging

from workstream import config
from workstream.clients.base import IssueTrackerClient, call_external
from workstream.date_utils import utc_now_iso
from workstream.errors import ConfigurationError
from workstream.extractors.base import ExtractionResult, normalize_all
from workstream.parsers.common import NormalizationContext
from workstream.parsers.issue_tracker import (
    normalize_cycle,
    normalize_issue,
    normalize_project,
    normalize_team,
)

logger = logging.getLogger("workstream.sync")


class IssueTrackerExtractor:
    source = "issue-tracker"
    supports_incremental = True

    def __init__(self, client: IssueTrackerClient, timeout: float | None = None):
        self.client = client
        self.timeout = timeout if timeout is not None else config.EXTERNAL_TIMEOUT_SECONDS

    async def validate_connection(self) -> bool:
        return self.client.is_configured()

    async def _fetch(self, method: str, *args):
        return await call_external(
            getattr(self.client, method)(*args),
            timeout=self.timeout,
            operation=f"issue-tracker {method}",
        )

    async def _run(self, since: str | None) -> ExtractionResult:
        if not self.client.is_configured():
            raise ConfigurationError("Issue tracker API key is not configured")

        context = NormalizationContext(extracted_at=utc_now_iso())
        result = ExtractionResult(mode="incremental" if since else "full")
        # Teams, projects and cycles are small and referenced by issues, so they are always refreshed.
        result.extend(normalize_all(await self._fetch("get_teams"), normalize_team, context, "team"))
        result.extend(normalize_all(await self._fetch("get_projects"), normalize_project, context, "project"))
        result.extend(normalize_all(await self._fetch("get_cycles"), normalize_cycle, context, "cycle"))
        result.extend(normalize_all(await self._fetch("get_issues", since), normalize_issue, context, "issue"))
        logger.debug("Issue tracker extraction produced %d items", len(result.items))
        return result

    async def extract(self) -> ExtractionResult:
        return await self._run(None)

    async def incremental_sync(self, since: str) -> ExtractionResult:
        return await self._run(since)
