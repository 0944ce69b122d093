"""Tests for the bounded formula result cache."""

from __future__ import annotations

import pytest

from gridcalc.calc import FormulaError, ResultCache
from gridcalc.calc._cache import MISSING


class TestResultCache:
    def test_get_put(self) -> None:
        cache = ResultCache(capacity=4)
        assert cache.get("a") is MISSING
        cache.put("a", 1)
        assert cache.get("a") == 1
        assert "a" in cache

    def test_none_and_errors_are_values(self) -> None:
        cache = ResultCache()
        cache.put("none", None)
        cache.put("err", FormulaError.NA)
        assert cache.get("none") is None
        assert cache.get("err") is FormulaError.NA

    def test_batch_eviction_drops_oldest(self) -> None:
        cache = ResultCache(capacity=10, evict_fraction=0.3)
        for i in range(10):
            cache.put(i, i)
        cache.put(10, 10)
        assert len(cache) == 8
        assert all(i not in cache for i in range(3))
        assert all(i in cache for i in range(3, 11))

    def test_evicts_at_least_one(self) -> None:
        cache = ResultCache(capacity=2, evict_fraction=0.1)
        cache.put("a", 1)
        cache.put("b", 2)
        cache.put("c", 3)
        assert "a" not in cache
        assert len(cache) == 2

    def test_overwrite_does_not_evict(self) -> None:
        cache = ResultCache(capacity=2)
        cache.put("a", 1)
        cache.put("b", 2)
        cache.put("a", 3)
        assert len(cache) == 2
        assert cache.get("a") == 3

    def test_stats(self) -> None:
        cache = ResultCache()
        cache.get("x")
        cache.put("x", 1)
        cache.get("x")
        assert cache.stats() == {"size": 1, "hits": 1, "misses": 1, "hit_rate": 0.5}

    def test_clear_keeps_counters(self) -> None:
        cache = ResultCache()
        cache.put("x", 1)
        cache.get("x")
        cache.clear()
        assert len(cache) == 0
        assert cache.hits == 1

    @pytest.mark.parametrize(("capacity", "fraction"), [(0, 0.3), (10, 0), (10, 1.5)])
    def test_validation(self, capacity: int, fraction: float) -> None:
        with pytest.raises(ValueError):
            ResultCache(capacity, fraction)
