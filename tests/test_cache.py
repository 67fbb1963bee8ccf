"""Unit tests for the TTL ResponseCache."""
from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from src.cache import CACHE_MISS, ResponseCache, make_cache_key


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def cache(clock) -> ResponseCache:
    return ResponseCache(default_ttl=300, clock=clock)


class TestGetSet:
    def test_miss_then_hit(self, cache):
        assert cache.get("k") is CACHE_MISS

        cache.set("k", {"value": 1})

        assert cache.get("k") == {"value": 1}
        assert cache.hits == 1
        assert cache.misses == 1

    def test_falsy_values_are_cached(self, cache):
        cache.set("empty", [])

        assert cache.get("empty") == []
        assert "empty" in cache

    def test_membership_check_has_no_side_effects(self, cache, clock):
        cache.set("k", "v", ttl=10)

        assert "k" in cache
        assert "missing" not in cache
        clock.advance(11)
        assert "k" not in cache

        assert (cache.hits, cache.misses) == (0, 0)
        assert len(cache) == 1

    def test_entry_expires_after_ttl(self, cache, clock):
        cache.set("k", "v")

        clock.advance(300)
        assert cache.get("k") == "v"

        clock.advance(0.001)
        assert cache.get("k") is CACHE_MISS
        assert len(cache) == 0

    def test_access_does_not_extend_lifetime(self, cache, clock):
        cache.set("k", "v")
        clock.advance(200)
        cache.get("k")
        clock.advance(101)

        assert cache.get("k") is CACHE_MISS

    def test_per_entry_ttl(self, cache, clock):
        cache.set("short", "v", ttl=10)
        clock.advance(11)

        assert cache.get("short") is CACHE_MISS

    @pytest.mark.parametrize("ttl", [0, -5])
    def test_non_positive_ttl_rejected(self, cache, ttl):
        with pytest.raises(ValueError):
            cache.set("k", "v", ttl=ttl)

    def test_non_positive_default_ttl_rejected(self):
        with pytest.raises(ValueError):
            ResponseCache(default_ttl=0)


class TestInvalidate:
    def test_pattern_removes_matching_keys_only(self, cache):
        cache.set(make_cache_key("/analytics/summary", {}, ["responses", "emails"]), 1)
        cache.set(make_cache_key("/analytics/responses", {}, ["responses", "emails"]), 2)
        cache.set(make_cache_key("/analytics/emails", {}, ["emails"]), 3)
        cache.set("unrelated", 4)

        removed = cache.invalidate("responses")

        assert removed == 2
        assert len(cache) == 2
        assert cache.get("unrelated") == 4

    def test_no_pattern_clears_everything(self, cache):
        cache.set("a", 1)
        cache.set("b", 2)

        assert cache.invalidate() == 2
        assert len(cache) == 0

    def test_invalidating_nothing_returns_zero(self, cache):
        assert cache.invalidate("responses") == 0


class TestSweep:
    def test_sweep_removes_only_expired(self, cache, clock):
        cache.set("old", 1, ttl=10)
        cache.set("fresh", 2)
        clock.advance(20)

        assert cache.sweep() == 1
        assert len(cache) == 1
        assert cache.get("fresh") == 2

    def test_start_sweeper_registers_periodic_task_once(self, cache):
        scheduler = MagicMock()
        scheduler.every.return_value = 7

        assert cache.start_sweeper(scheduler, interval=60) == 7
        assert cache.start_sweeper(scheduler, interval=60) == 7

        scheduler.every.assert_called_once_with(60, cache._safe_sweep)

    def test_stop_sweeper_cancels_task(self, cache):
        scheduler = MagicMock()
        scheduler.every.return_value = 3
        cache.start_sweeper(scheduler)

        cache.stop_sweeper()
        cache.stop_sweeper()

        scheduler.cancel.assert_called_once_with(3)


class TestCacheKey:
    def test_param_order_and_blanks_do_not_matter(self):
        first = make_cache_key("/p", {"a": "1", "b": ""})
        second = make_cache_key("/p", {"b": None, "a": "1"})

        assert first == second

    def test_different_params_differ(self):
        assert make_cache_key("/p", {"a": "1"}) != make_cache_key("/p", {"a": "2"})

    def test_streams_are_embedded_and_sorted(self):
        key = make_cache_key("/p", {}, ["responses", "emails"])

        assert key == "/p|emails,responses|{}"
