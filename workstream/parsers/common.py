"""Helpers shared by the per-source normalizers."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from workstream.errors import ValidationError


@dataclass(frozen=True)
class NormalizationContext:
    """Inputs that are not part of the source record itself.

    ``extracted_at`` is supplied by the caller so that normalizing the same
    record twice yields identical output.
    """

    extracted_at: str
    owner: str = ""
    repository: str = ""


def text(value: Any) -> str:
    """Render a possibly-missing scalar as text; missing values become ''."""
    if value is None:
        return ""
    return str(value)


def require_id(record: dict[str, Any], key: str = "id", kind: str = "record") -> str:
    if not isinstance(record, dict):
        raise ValidationError(f"{kind} must be a mapping")
    raw = record.get(key)
    if raw is None or str(raw).strip() == "":
        raise ValidationError(f"{kind} is missing required source id '{key}'")
    return str(raw).strip()


def nodes(value: Any) -> list[dict[str, Any]]:
    """Accept either a plain list or a GraphQL ``{"nodes": [...]}`` connection."""
    if isinstance(value, dict):
        value = value.get("nodes")
    if not isinstance(value, list):
        return []
    return [entry for entry in value if isinstance(entry, dict)]


def searchable(*parts: Any) -> str:
    return " ".join(text(part) for part in parts).lower()


def keywords(*values: Any) -> list[str]:
    return [text(value) for value in values if text(value)]


def to_optional_float(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None
