"""Version-control extractor: repositories, pull requests, and commits."""
from __future__ import annotations

import logging
from typing import Any

from workstream import config
from workstream.clients.base import VersionControlClient, call_external
from workstream.date_utils import utc_now_iso
from workstream.errors import ConfigurationError
from workstream.extractors.base import ExtractionResult, normalize_all
from workstream.parsers.common import NormalizationContext
from workstream.parsers.version_control import (
    normalize_commit,
    normalize_pull_request,
    normalize_repository,
)

logger = logging.getLogger("workstream.sync")


class VersionControlExtractor:
    source = "version-control"
    supports_incremental = True

    def __init__(
        self,
        client: VersionControlClient,
        repo_allow_list: list[str] | None = None,
        timeout: float | None = None,
    ):
        self.client = client
        self.repo_allow_list = list(repo_allow_list if repo_allow_list is not None else config.GITHUB_REPOS)
        self.timeout = timeout if timeout is not None else config.EXTERNAL_TIMEOUT_SECONDS

    async def validate_connection(self) -> bool:
        return self.client.is_configured()

    async def _fetch(self, method: str, *args):
        return await call_external(
            getattr(self.client, method)(*args),
            timeout=self.timeout,
            operation=f"version-control {method}",
        )

    def _selected(self, repositories: list[dict[str, Any]]) -> list[dict[str, Any]]:
        if not self.repo_allow_list:
            return repositories
        allowed = set(self.repo_allow_list)
        return [r for r in repositories if (r.get("full_name") or "") in allowed]

    async def _run(self, since: str | None) -> ExtractionResult:
        if not self.client.is_configured():
            raise ConfigurationError("Version-control token is not configured")

        extracted_at = utc_now_iso()
        result = ExtractionResult(mode="incremental" if since else "full")
        repositories = self._selected(await self._fetch("list_repositories"))
        result.extend(
            normalize_all(repositories, normalize_repository, NormalizationContext(extracted_at), "repository")
        )

        for repo in repositories:
            full_name = str(repo.get("full_name") or "")
            owner, _, name = full_name.partition("/")
            if not name:
                continue
            context = NormalizationContext(extracted_at=extracted_at, owner=owner, repository=name)
            pulls = [
                {**pr, "repository_id": pr.get("repository_id", repo.get("id"))}
                for pr in await self._fetch("list_pull_requests", full_name, since)
            ]
            commits = [
                {**c, "repository_id": c.get("repository_id", repo.get("id"))}
                for c in await self._fetch("list_commits", full_name, since)
            ]
            result.extend(normalize_all(pulls, normalize_pull_request, context, "pull request"))
            result.extend(normalize_all(commits, normalize_commit, context, "commit"))

        logger.debug("Version-control extraction produced %d items", len(result.items))
        return result

    async def extract(self) -> ExtractionResult:
        return await self._run(None)

    async def incremental_sync(self, since: str) -> ExtractionResult:
        return await self._run(since)
