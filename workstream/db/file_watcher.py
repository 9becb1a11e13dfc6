"""Document export watcher.

Re-syncs the document-store source when markdown exports under the documents
directory change. watchfiles filters and debounces the raw events; each batch
it yields triggers at most one sync.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Optional

from watchfiles import Change, awatch

from workstream.models import SyncRecord

logger = logging.getLogger("workstream.watcher")

DOCUMENT_SOURCE = "document-store"
DOCUMENT_SUFFIX = ".md"


def markdown_only(change: Change, path: str) -> bool:
    return path.endswith(DOCUMENT_SUFFIX)


@dataclass
class DocumentChanges:
    """One debounced batch of export changes, grouped by kind."""

    changed: list[Path] = field(default_factory=list)
    deleted: list[Path] = field(default_factory=list)

    def __bool__(self) -> bool:
        return bool(self.changed or self.deleted)

    def __len__(self) -> int:
        return len(self.changed) + len(self.deleted)


def classify_changes(changes: Iterable[tuple[Change, str]]) -> DocumentChanges:
    """Group raw watchfiles events; non-markdown paths are dropped.

    Deleted exports are reported but the store keeps their records, so a
    deletion only triggers a re-sync.
    """
    batch = DocumentChanges()
    for change_type, raw_path in changes:
        if not markdown_only(change_type, raw_path):
            continue
        path = Path(raw_path)
        if change_type == Change.deleted:
            batch.deleted.append(path)
        else:
            batch.changed.append(path)
    batch.changed.sort()
    batch.deleted.sort()
    return batch


class FileWatcher:
    def __init__(self, debounce_ms: int = 1600):
        self.debounce_ms = debounce_ms
        self.last_record: Optional[SyncRecord] = None
        self._task: Optional[asyncio.Task] = None
        self._stop = asyncio.Event()

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self, sync_engine, documents_dir: Path) -> None:
        if self.is_running:
            logger.warning("File watcher already running")
            return
        if not documents_dir.is_dir():
            logger.warning("Documents directory %s does not exist, watcher not started", documents_dir)
            return

        self._stop = asyncio.Event()
        self._task = asyncio.create_task(self._watch_loop(sync_engine, documents_dir))
        logger.info("File watcher started for %s", documents_dir)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._stop.set()
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("File watcher stopped")

    async def handle_changes(self, sync_engine, changes: Iterable[tuple[Change, str]]) -> Optional[SyncRecord]:
        """Sync once for a batch of raw events; None when nothing relevant changed."""
        batch = classify_changes(changes)
        if not batch:
            return None
        logger.info(
            "Detected %d document changes (%d deleted), syncing %s",
            len(batch),
            len(batch.deleted),
            DOCUMENT_SOURCE,
        )
        record = await sync_engine.sync_source(DOCUMENT_SOURCE, trigger="watcher")
        if not record.success:
            logger.error("Watcher-triggered sync failed: %s", "; ".join(record.errors))
        self.last_record = record
        return record

    async def _watch_loop(self, sync_engine, documents_dir: Path) -> None:
        try:
            async for changes in awatch(
                documents_dir,
                watch_filter=markdown_only,
                debounce=self.debounce_ms,
                stop_event=self._stop,
            ):
                await self.handle_changes(sync_engine, changes)
        except Exception:
            logger.exception("File watcher stopped unexpectedly for %s", documents_dir)


file_watcher = FileWatcher()
