"""Shared timestamp normalization helpers."""
from __future__ import annotations

import re
from datetime import date, datetime, timedelta, timezone
from typing import Any

_DATE_ONLY_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def utc_now_iso() -> str:
    return format_datetime_utc(datetime.now(timezone.utc))


def format_datetime_utc(value: datetime) -> str:
    dt = value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    dt = dt.astimezone(timezone.utc)
    return dt.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_datetime(value: Any) -> datetime | None:
    """Parse mixed timestamp inputs into an aware UTC datetime."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
    token = str(value).strip()
    if not token:
        return None
    if _DATE_ONLY_RE.match(token):
        try:
            parsed = date.fromisoformat(token)
        except ValueError:
            return None
        return datetime(parsed.year, parsed.month, parsed.day, tzinfo=timezone.utc)
    try:
        parsed_dt = datetime.fromisoformat(token.replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed_dt if parsed_dt.tzinfo else parsed_dt.replace(tzinfo=timezone.utc)


def normalize_timestamp(value: Any, default: str = "") -> str:
    """Convert a source timestamp into a comparable UTC ISO string.

    Stored timestamps must sort lexicographically, so every origin format is
    rewritten to the same millisecond ``Z`` form. Unparseable input yields
    ``default``.
    """
    parsed = parse_datetime(value)
    if parsed is None:
        return default
    return format_datetime_utc(parsed)


def normalize_range_bounds(start: Any, end: Any) -> tuple[str, str]:
    """Normalize inclusive query bounds to the stored timestamp form.

    A date-only ``end`` covers that whole day. Bounds that do not parse are
    returned unchanged.
    """
    start_bound = normalize_timestamp(start, default=str(start or ""))
    end_bound = normalize_timestamp(end, default=str(end or ""))
    if end is not None and _DATE_ONLY_RE.match(str(end).strip()):
        parsed = parse_datetime(end)
        if parsed is not None:
            end_bound = format_datetime_utc(parsed + timedelta(days=1, milliseconds=-1))
    return start_bound, end_bound
