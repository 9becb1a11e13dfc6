"""Extractor contract and the shared per-record normalization loop."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Literal, Protocol, runtime_checkable

from workstream.errors import ValidationError
from workstream.models import UnifiedContent
from workstream.parsers.common import NormalizationContext

logger = logging.getLogger("workstream.sync")


@dataclass
class ExtractionResult:
    items: list[UnifiedContent] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    mode: Literal["full", "incremental"] = "full"

    def extend(self, other: "ExtractionResult") -> None:
        self.items.extend(other.items)
        self.errors.extend(other.errors)


@runtime_checkable
class Extractor(Protocol):
    source: str
    supports_incremental: bool

    async def extract(self) -> ExtractionResult: ...

    async def incremental_sync(self, since: str) -> ExtractionResult: ...

    async def validate_connection(self) -> bool: ...


def normalize_all(
    records: Iterable[Any],
    normalizer: Callable[[Any, NormalizationContext], UnifiedContent],
    context: NormalizationContext,
    kind: str,
) -> ExtractionResult:
    """Normalize each record independently; a malformed record is reported, not fatal."""
    result = ExtractionResult()
    for record in records:
        try:
            result.items.append(normalizer(record, context))
        except ValidationError as exc:
            logger.warning("Skipping invalid %s record: %s", kind, exc.message)
            result.errors.append(f"{kind}: {exc.message}")
    return result
