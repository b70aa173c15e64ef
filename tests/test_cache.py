"""Tests for the query result cache."""

import asyncio
import contextlib
import datetime
import threading
from decimal import Decimal

import pytest

from mcp_mysql.cache import QueryCache, cache_key, sweep_loop


class TestKeys:

    def test_same_input_same_key(self):
        assert cache_key("SELECT 1", [1, "a"]) == cache_key("SELECT 1", [1, "a"])

    def test_outer_whitespace_is_normalized(self):
        assert cache_key("  SELECT 1 ") == cache_key("SELECT 1")

    def test_missing_and_empty_params_match(self):
        assert cache_key("SELECT 1") == cache_key("SELECT 1", [])

    @pytest.mark.parametrize(
        "other",
        [
            ("SELECT 2", [1, 2]),
            ("SELECT 1", [2, 1]),
            ("SELECT 1", [1]),
            ("SELECT 1", ["1", 2]),
        ],
    )
    def test_differences_change_the_key(self, other):
        assert cache_key("SELECT 1", [1, 2]) != cache_key(*other)

    @pytest.mark.parametrize(
        "value,text",
        [
            (Decimal("1"), "1"),
            (datetime.datetime(2024, 1, 1), "2024-01-01 00:00:00"),
            (datetime.date(2024, 1, 1), "2024-01-01"),
        ],
    )
    def test_typed_values_differ_from_their_text(self, value, text):
        assert cache_key("SELECT 1", [value]) != cache_key("SELECT 1", [text])

    def test_typed_values_are_stable(self):
        assert cache_key("SELECT 1", [Decimal("2.50")]) == cache_key("SELECT 1", [Decimal("2.50")])

    def test_typed_values_still_match_patterns(self, cache):
        cache.set("SELECT * FROM t WHERE d = %s", [1], [datetime.date(2024, 5, 6)])
        assert cache.invalidate("2024-05-06") == 1


class TestGetSet:

    def test_round_trip(self, cache):
        cache.set("SELECT * FROM t", [{"id": 1}], [5])
        assert cache.get("SELECT * FROM t", [5]) == [{"id": 1}]

    def test_different_params_or_query_miss(self, cache):
        cache.set("SELECT * FROM t", [{"id": 1}], [5])
        assert cache.get("SELECT * FROM t", [6]) is None
        assert cache.get("SELECT * FROM u", [5]) is None

    def test_empty_result_is_a_hit(self, cache):
        cache.set("SELECT * FROM empty", [])
        assert cache.get("SELECT * FROM empty") == []

    def test_returned_value_is_a_copy(self, cache):
        """Callers cannot corrupt the shared cached value."""
        rows = [{"id": 1}]
        cache.set("SELECT 1", rows)
        rows[0]["id"] = 99
        first = cache.get("SELECT 1")
        first[0]["id"] = 42
        assert cache.get("SELECT 1") == [{"id": 1}]

    def test_overwrite_keeps_single_entry(self, cache):
        cache.set("SELECT 1", ["a"])
        cache.set("SELECT 1", ["b"])
        assert len(cache) == 1
        assert cache.get("SELECT 1") == ["b"]

    def test_stats_count_hits_and_misses(self, cache):
        cache.set("SELECT 1", [1])
        cache.get("SELECT 1")
        cache.get("SELECT 2")
        stats = cache.stats()
        assert (stats.size, stats.hits, stats.misses) == (1, 1, 1)
        assert stats.hit_rate == 0.5

    def test_rejects_zero_capacity(self):
        with pytest.raises(ValueError):
            QueryCache(max_size=0)


class TestExpiry:

    def test_hit_before_ttl_miss_after(self, cache, clock):
        cache.set("SELECT 1", [1], ttl=10.0)
        clock.advance(9.999)
        assert cache.get("SELECT 1") == [1]
        clock.advance(0.002)
        assert cache.get("SELECT 1") is None
        assert len(cache) == 0

    def test_default_ttl(self, cache, clock):
        cache.set("SELECT 1", [1])
        clock.advance(60.0)
        assert cache.get("SELECT 1") == [1]
        clock.advance(0.5)
        assert cache.get("SELECT 1") is None

    def test_sweep_drops_only_expired(self, cache, clock):
        cache.set("SELECT 1", [1], ttl=5.0)
        cache.set("SELECT 2", [2], ttl=50.0)
        clock.advance(10)
        assert cache.sweep() == 1
        assert len(cache) == 1
        assert cache.get("SELECT 2") == [2]

    @pytest.mark.asyncio
    async def test_sweep_loop_runs_periodically(self, cache, clock):
        cache.set("SELECT 1", [1], ttl=1.0)
        clock.advance(5)
        task = asyncio.create_task(sweep_loop(cache, interval=0.01))
        try:
            for _ in range(100):
                if len(cache) == 0:
                    break
                await asyncio.sleep(0.01)
        finally:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        assert len(cache) == 0


class TestCapacity:

    def test_overflow_evicts_oldest(self, clock):
        cache = QueryCache(max_size=3, clock=clock)
        for i in range(4):
            cache.set(f"SELECT {i}", [i])
            clock.advance(1)
        assert len(cache) == 3
        assert cache.get("SELECT 0") is None
        for i in (1, 2, 3):
            assert cache.get(f"SELECT {i}") == [i]
        assert cache.stats().evictions == 1

    def test_reads_do_not_refresh_age(self, clock):
        cache = QueryCache(max_size=2, clock=clock)
        cache.set("SELECT 0", [0])
        clock.advance(1)
        cache.set("SELECT 1", [1])
        clock.advance(1)
        cache.get("SELECT 0")
        cache.set("SELECT 2", [2])
        assert cache.get("SELECT 0") is None
        assert cache.get("SELECT 1") == [1]

    def test_overwrite_at_capacity_does_not_evict(self, clock):
        cache = QueryCache(max_size=2, clock=clock)
        cache.set("SELECT 0", [0])
        cache.set("SELECT 1", [1])
        cache.set("SELECT 0", ["new"])
        assert len(cache) == 2
        assert cache.get("SELECT 1") == [1]

    def test_ties_evict_exactly_one(self, clock):
        cache = QueryCache(max_size=2, clock=clock)
        cache.set("SELECT 0", [0])
        cache.set("SELECT 1", [1])
        cache.set("SELECT 2", [2])
        assert len(cache) == 2
        assert cache.get("SELECT 0") is None


class TestInvalidation:

    def test_full(self, cache):
        cache.set("SELECT 1", [1])
        cache.set("SELECT 2", [2])
        assert cache.invalidate() == 2
        assert len(cache) == 0

    def test_pattern_is_case_sensitive_substring(self, cache):
        cache.set("SELECT * FROM orders", [1])
        cache.set("SELECT * FROM ORDERS_archive", [2])
        assert cache.invalidate("orders") == 1
        assert cache.get("SELECT * FROM orders") is None
        assert cache.get("SELECT * FROM ORDERS_archive") == [2]

    def test_pattern_matches_parameters(self, cache):
        cache.set("SELECT * FROM t WHERE name = %s", [1], ["needle"])
        assert cache.invalidate("needle") == 1

    def test_table(self, cache):
        cache.set("SELECT * FROM users", [1])
        cache.set("SELECT * FROM products", [2])
        cache.invalidate_table("users")
        assert cache.get("SELECT * FROM users") is None
        assert cache.get("SELECT * FROM products") == [2]

    def test_table_ignores_case(self, cache):
        cache.set("SELECT * FROM `Users`", [1])
        assert cache.invalidate_table("USERS") == 1

    def test_table_over_invalidates_substrings(self, cache):
        """Substring matching also drops queries on tables that merely contain the name."""
        cache.set("SELECT * FROM power_users", [1])
        assert cache.invalidate_table("users") == 1


class TestConcurrency:

    def test_parallel_writers_respect_capacity(self):
        cache = QueryCache(max_size=50)

        def worker(n):
            for i in range(300):
                cache.set(f"SELECT {n}-{i}", [i])
                cache.get(f"SELECT {n}-{i // 2}")
                if i % 50 == 0:
                    cache.invalidate(f"{n}-1")
                    cache.sweep()

        threads = [threading.Thread(target=worker, args=(n,)) for n in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(cache) <= 50
        assert cache.stats().size == len(cache)
