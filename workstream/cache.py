"""Explicit time-bounded cache passed into the sync and correlation engines."""
from __future__ import annotations

import time
from typing import Any, Callable, Hashable


class TTLCache:
    """In-memory key/value cache whose entries expire after ``ttl_seconds``.

    Expired entries behave exactly like missing ones. ``clock`` is injectable so
    staleness can be tested without sleeping.
    """

    def __init__(self, ttl_seconds: float, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = float(ttl_seconds)
        self._clock = clock
        self._entries: dict[Hashable, tuple[float, Any]] = {}

    def is_stale(self, key: Hashable) -> bool:
        entry = self._entries.get(key)
        if entry is None:
            return True
        stored_at, _ = entry
        return (self._clock() - stored_at) > self.ttl_seconds

    def get(self, key: Hashable, default: Any = None) -> Any:
        if self.is_stale(key):
            self._entries.pop(key, None)
            return default
        return self._entries[key][1]

    def set(self, key: Hashable, value: Any) -> None:
        self.prune()
        self._entries[key] = (self._clock(), value)

    def prune(self) -> int:
        """Drop every expired entry; returns how many were removed."""
        stale = [key for key in self._entries if self.is_stale(key)]
        for key in stale:
            del self._entries[key]
        return len(stale)

    def invalidate(self, key: Hashable | None = None) -> None:
        """Drop one entry, or every entry when ``key`` is None."""
        if key is None:
            self._entries.clear()
        else:
            self._entries.pop(key, None)

    def __len__(self) -> int:
        return sum(1 for key in list(self._entries) if not self.is_stale(key))
