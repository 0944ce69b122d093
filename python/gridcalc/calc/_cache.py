"""Bounded result cache for top-level formula evaluations."""

from __future__ import annotations

import math
from collections.abc import Hashable
from typing import Any

# Returned by ResultCache.get on a miss; None and errors are legitimate results.
MISSING: Any = object()

CacheKey = tuple[int, str, str, str]  # (version, sheet, owner label, source)


class ResultCache:
    """Insertion-ordered memo with batch FIFO eviction.

    When an insert finds the cache full, the oldest ``capacity *
    evict_fraction`` entries (at least one) are dropped in one pass.
    """

    __slots__ = ("capacity", "evict_fraction", "_entries", "hits", "misses")

    def __init__(self, capacity: int = 1000, evict_fraction: float = 0.3) -> None:
        if capacity < 1:
            raise ValueError(f"Cache capacity must be at least 1, got {capacity}")
        if not 0 < evict_fraction <= 1:
            raise ValueError(f"evict_fraction must be in (0, 1], got {evict_fraction}")
        self.capacity = capacity
        self.evict_fraction = evict_fraction
        self._entries: dict[Hashable, Any] = {}
        self.hits = 0
        self.misses = 0

    def get(self, key: Hashable) -> Any:
        value = self._entries.get(key, MISSING)
        if value is MISSING:
            self.misses += 1
        else:
            self.hits += 1
        return value

    def put(self, key: Hashable, value: Any) -> None:
        if key not in self._entries and len(self._entries) >= self.capacity:
            self._evict()
        self._entries[key] = value

    def _evict(self) -> None:
        count = max(1, math.floor(self.capacity * self.evict_fraction))
        for key in list(self._entries)[:count]:
            del self._entries[key]

    def clear(self) -> None:
        self._entries.clear()

    def __contains__(self, key: Hashable) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def stats(self) -> dict[str, float]:
        total = self.hits + self.misses
        return {
            "size": len(self._entries),
            "hits": self.hits,
            "misses": self.misses,
            "hit_rate": self.hits / total if total else 0.0,
        }
