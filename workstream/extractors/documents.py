"""Document-store extractor over a directory of markdown page exports."""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from pathlib import Path

from workstream import config
from workstream.date_utils import parse_datetime, utc_now_iso
from workstream.errors import ConfigurationError, ValidationError
from workstream.extractors.base import ExtractionResult
from workstream.parsers.common import NormalizationContext
from workstream.parsers.documents import parse_document_file

logger = logging.getLogger("workstream.sync")


class DocumentStoreExtractor:
    source = "document-store"
    supports_incremental = True

    def __init__(self, directory: Path | None = None):
        self.directory = Path(directory) if directory is not None else config.DOCUMENTS_DIR

    async def validate_connection(self) -> bool:
        return self.directory.is_dir()

    def _scan(self, since: datetime | None) -> ExtractionResult:
        if not self.directory.is_dir():
            raise ConfigurationError(f"Documents directory not found: {self.directory}")

        context = NormalizationContext(extracted_at=utc_now_iso())
        result = ExtractionResult(mode="incremental" if since else "full")
        for path in sorted(self.directory.rglob("*.md")):
            if since is not None:
                modified = datetime.fromtimestamp(path.stat().st_mtime, tz=timezone.utc)
                if modified <= since:
                    continue
            try:
                result.items.append(parse_document_file(path, context))
            except ValidationError as exc:
                logger.warning("Skipping document %s: %s", path, exc.message)
                result.errors.append(f"document: {exc.message}")
            except (OSError, UnicodeDecodeError) as exc:
                logger.warning("Failed to read document %s: %s", path, exc)
                result.errors.append(f"document: {path.name}: {exc}")
        return result

    async def extract(self) -> ExtractionResult:
        return await asyncio.to_thread(self._scan, None)

    async def incremental_sync(self, since: str) -> ExtractionResult:
        return await asyncio.to_thread(self._scan, parse_datetime(since))
