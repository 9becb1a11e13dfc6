"""Source → unified store synchronization.

Drives the registered extractors, picks full or incremental extraction from the
last successful sync watermark, classifies records as added or updated, and
writes each source's records in one batch. Every attempt leaves a SyncRecord.
"""
from __future__ import annotations

import asyncio
import copy
import logging
import time
import uuid
from collections import OrderedDict
from typing import Any

from workstream import config
from workstream.cache import TTLCache
from workstream.date_utils import utc_now_iso
from workstream.db.factory import get_content_repository, get_sync_history_repository
from workstream.errors import WorkstreamError
from workstream.extractors.base import ExtractionResult, Extractor
from workstream.models import SyncRecord

logger = logging.getLogger("workstream.sync")

SOURCE_IDLE = "idle"
SOURCE_RUNNING = "running"
SOURCE_SUCCEEDED = "succeeded"
SOURCE_FAILED = "failed"


def _error_text(exc: BaseException) -> str:
    if isinstance(exc, WorkstreamError):
        return exc.message
    return str(exc) or type(exc).__name__


class OperationLog:
    """Bounded, newest-first history of sync operations for the API.

    Snapshots handed out are deep copies; only the log mutates its entries.
    """

    def __init__(self, max_entries: int = 40):
        self.max_entries = max_entries
        self._lock = asyncio.Lock()
        self._entries: "OrderedDict[str, dict[str, Any]]" = OrderedDict()
        self._started: dict[str, float] = {}

    async def start(self, kind: str, source: str, trigger: str) -> str:
        op_id = f"OP-{uuid.uuid4()}"
        now = utc_now_iso()
        async with self._lock:
            self._entries[op_id] = {
                "id": op_id,
                "kind": kind,
                "source": source,
                "trigger": trigger,
                "status": "running",
                "phase": "queued",
                "startedAt": now,
                "updatedAt": now,
                "finishedAt": "",
                "durationMs": 0,
                "stats": {},
                "error": "",
            }
            self._entries.move_to_end(op_id, last=False)
            self._started[op_id] = time.monotonic()
            while len(self._entries) > self.max_entries:
                stale_id, _ = self._entries.popitem(last=True)
                self._started.pop(stale_id, None)
        logger.info("Operation started [%s] %s (source=%s trigger=%s)", op_id, kind, source, trigger)
        return op_id

    async def phase(self, op_id: str, phase: str, **stats: Any) -> None:
        async with self._lock:
            entry = self._entries.get(op_id)
            if entry is None:
                return
            entry["phase"] = phase
            entry["updatedAt"] = utc_now_iso()
            entry["stats"].update(stats)
        logger.debug("Operation [%s] entered %s", op_id, phase)

    async def finish(self, op_id: str, record: SyncRecord) -> None:
        status = "completed" if record.success else "failed"
        now = utc_now_iso()
        async with self._lock:
            entry = self._entries.get(op_id)
            if entry is None:
                return
            started = self._started.pop(op_id, time.monotonic())
            entry.update(
                status=status,
                phase="done",
                updatedAt=now,
                finishedAt=now,
                durationMs=max(0, int((time.monotonic() - started) * 1000)),
                error="" if record.success else "; ".join(record.errors),
            )
            entry["stats"].update(
                itemsProcessed=record.itemsProcessed,
                itemsAdded=record.itemsAdded,
                itemsUpdated=record.itemsUpdated,
                mode=record.mode,
            )
        if record.success:
            logger.info("Operation finished [%s] status=%s", op_id, status)
        else:
            logger.error("Operation failed [%s]: %s", op_id, "; ".join(record.errors))

    async def recent(self, limit: int = 20) -> list[dict[str, Any]]:
        async with self._lock:
            entries = list(self._entries.values())[: max(1, limit)]
            return copy.deepcopy(entries)

    async def get(self, op_id: str) -> dict[str, Any] | None:
        async with self._lock:
            entry = self._entries.get(op_id)
            return copy.deepcopy(entry) if entry else None


class SyncEngine:
    """Per-source extraction and reconciliation into the content store.

    Source states move ``idle -> running -> succeeded|failed``; a finished source
    is eligible to run again, so the terminal states double as ``idle``.
    """

    def __init__(
        self,
        db: Any,
        cache: TTLCache | None = None,
        concurrency: int | None = None,
    ):
        self.db = db
        self.content_repo = get_content_repository(db)
        self.history_repo = get_sync_history_repository(db)
        self.cache = cache if cache is not None else TTLCache(config.CACHE_TTL_SECONDS)
        self.concurrency = max(1, concurrency if concurrency is not None else config.SYNC_CONCURRENCY)
        self.operations = OperationLog()
        self._extractors: dict[str, Extractor] = {}
        self._states: dict[str, str] = {}
        self._state_lock = asyncio.Lock()

    def register_extractor(self, extractor: Extractor) -> None:
        self._extractors[extractor.source] = extractor
        self._states.setdefault(extractor.source, SOURCE_IDLE)
        logger.info("Registered extractor for %s", extractor.source)

    @property
    def registered_sources(self) -> list[str]:
        return list(self._extractors)

    async def get_source_states(self) -> dict[str, str]:
        async with self._state_lock:
            return dict(self._states)

    async def _claim(self, source: str) -> bool:
        async with self._state_lock:
            if self._states.get(source) == SOURCE_RUNNING:
                return False
            self._states[source] = SOURCE_RUNNING
            return True

    async def _release(self, source: str, success: bool) -> None:
        async with self._state_lock:
            self._states[source] = SOURCE_SUCCEEDED if success else SOURCE_FAILED

    async def list_operations(self, limit: int = 20) -> list[dict[str, Any]]:
        return await self.operations.recent(limit)

    async def get_operation(self, operation_id: str) -> dict[str, Any] | None:
        return await self.operations.get(operation_id)

    # ── Sync ───────────────────────────────────────────────────────

    async def _extract(
        self, source: str, extractor: Extractor, force_full: bool, sync_time: str
    ) -> tuple[ExtractionResult, str]:
        """Return the extraction together with the time its attempt started.

        A reused extraction keeps the start time of the attempt that produced
        it, so the watermark never moves past upstream edits made since.
        """
        if force_full:
            self.cache.invalidate(source)
        cached = self.cache.get(source)
        if cached is not None:
            # A previous attempt extracted but failed to store; reuse it.
            extracted_at, result = cached
            logger.info(
                "Reusing cached extraction for %s (%d items, started %s)", source, len(result.items), extracted_at
            )
            return result, extracted_at

        last = None if force_full else await self.history_repo.get_last_successful_sync(source)
        if last is not None and extractor.supports_incremental:
            logger.info("Incremental sync for %s since %s", source, last.syncTime)
            result = await extractor.incremental_sync(last.syncTime)
        else:
            logger.info("Full sync for %s", source)
            result = await extractor.extract()
        self.cache.set(source, (sync_time, result))
        return result, sync_time

    async def _classify(self, result: ExtractionResult) -> tuple[int, int]:
        """Count added vs updated against what is stored before the write."""
        existing = await self.content_repo.get_existing_ids(item.id for item in result.items)
        added = updated = 0
        seen: set[str] = set()
        for item in result.items:
            if item.id in existing or item.id in seen:
                updated += 1
            else:
                added += 1
            seen.add(item.id)
        return added, updated

    async def sync_source(self, source: str, *, force_full: bool = False, trigger: str = "api") -> SyncRecord:
        """Sync one source; never raises for extraction or store failures."""
        sync_time = utc_now_iso()
        extractor = self._extractors.get(source)
        if extractor is None:
            logger.warning("No extractor registered for source: %s", source)
            return SyncRecord(
                source=source,
                syncTime=sync_time,
                success=False,
                errors=[f"No extractor registered for source: {source}"],
            )

        if not await self._claim(source):
            logger.warning("Sync for %s requested while already running", source)
            return SyncRecord(source=source, syncTime=sync_time, success=False, errors=["sync already running"])

        op_id = await self.operations.start("source_sync", source, trigger)
        record = SyncRecord(source=source, syncTime=sync_time)
        try:
            await self.operations.phase(op_id, "extracting")
            result, record.syncTime = await self._extract(source, extractor, force_full, sync_time)
            record.mode = result.mode
            record.errors = list(result.errors)
            record.itemsProcessed = len(result.items)

            await self.operations.phase(op_id, "storing", itemsProcessed=record.itemsProcessed)
            record.itemsAdded, record.itemsUpdated = await self._classify(result)
            await self.content_repo.upsert_batch(result.items)
            record.success = True
            self.cache.invalidate(source)
        except Exception as exc:
            logger.error("Sync failed for %s: %s", source, exc)
            record.success = False
            record.itemsAdded = record.itemsUpdated = 0
            record.errors.append(_error_text(exc))

        try:
            await self.history_repo.record(record)
        except Exception as exc:
            logger.exception("Failed to record sync history for %s", source)
            record.success = False
            record.errors.append(f"failed to record sync history: {_error_text(exc)}")

        await self._release(source, record.success)
        await self.operations.finish(op_id, record)
        return record

    async def sync_all(self, *, force_full: bool = False, trigger: str = "api") -> list[SyncRecord]:
        """Sync every registered source, one record per source in registration order."""
        semaphore = asyncio.Semaphore(self.concurrency)

        async def _run(source: str) -> SyncRecord:
            async with semaphore:
                return await self.sync_source(source, force_full=force_full, trigger=trigger)

        return list(await asyncio.gather(*(_run(source) for source in self.registered_sources)))

    async def get_sync_history(self, source: str | None = None, limit: int = 50) -> list[SyncRecord]:
        return await self.history_repo.list_recent(source, limit)
