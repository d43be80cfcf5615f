"""
Tests for CacheOrchestrator: tier routing, promotion, invalidation,
freshness predicates and get_or_fetch with stale-while-revalidate.
"""
import threading
import time

import pytest

from teampulse.cache import (
    CacheOptions,
    CacheOrchestrator,
    MemoryTier,
    PersistentTier,
    RequestCoalescer,
    create_cache_key,
)


class Boom(Exception):
    pass


def failing_fetch():
    raise Boom("upstream down")


def wait_until(predicate, timeout=5.0):
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("condition not met in time")
        time.sleep(0.005)


def test_create_cache_key_skips_empty_parts():
    assert create_cache_key("api", "GET", "/tasks", "") == "api:GET:/tasks"
    assert create_cache_key("search", None, "q") == "search:q"


# =============================================================================
# Routing and promotion
# =============================================================================

class TestRouting:

    def test_set_routes_by_persistent_flag(self, cache):
        cache.set("volatile", 1)
        cache.set("durable", 2, persistent=True)

        assert cache.memory.keys() == ["volatile"]
        assert cache.persistent.keys() == ["durable"]

    def test_options_object_and_overrides_combine(self, cache):
        opts = CacheOptions(ttl=50, tags=("tasks",))
        cache.set("k", 1, opts, priority=3)

        entry = cache.memory.peek("k")
        assert entry.ttl == 50
        assert entry.tags == ("tasks",)
        assert entry.priority == 3

    def test_get_misses_both_tiers(self, cache):
        assert cache.get("nope") is None

    def test_get_persistent_only(self, cache):
        cache.set("k", "mem")
        assert cache.get("k", persistent=True) is None

    def test_no_fallback_skips_persistent(self, cache):
        cache.set("k", "disk", persistent=True)
        assert cache.get("k", fallback_to_persistent=False) is None
        assert cache.get("k") == "disk"

    def test_delete_removes_from_both_tiers(self, cache):
        cache.set("k", 1)
        cache.set("k", 2, persistent=True)
        assert cache.delete("k") is True
        assert "k" not in cache.memory
        assert "k" not in cache.persistent


class TestPromotion:

    def test_persistent_hit_is_promoted_with_metadata(self, cache, clock):
        cache.set("k", "v", persistent=True, ttl=3600, tags=("projects",), priority=2)
        clock.advance(100)

        assert cache.get("k") == "v"

        promoted = cache.memory.peek("k")
        assert promoted is not None
        assert promoted.tags == ("projects",)
        assert promoted.priority == 2
        assert promoted.created_at == clock.now - 100
        # promotion_ttl is 60 in the fixture
        assert promoted.remaining_ttl(clock.now) == pytest.approx(60)

    def test_promoted_copy_never_outlives_persistent_entry(self, cache, clock):
        cache.set("k", "v", persistent=True, ttl=50)
        clock.advance(20)
        cache.get("k")

        assert cache.memory.peek("k").remaining_ttl(clock.now) == pytest.approx(30)
        clock.advance(31)
        assert cache.get("k") is None

    def test_promotion_is_counted(self, cache):
        cache.set("k", "v", persistent=True)
        cache.get("k")
        cache.get("k")  # second read is a memory hit
        assert cache.get_stats()["requests"]["promotions"] == 1

    def test_promoted_copy_is_as_fresh_as_persistent_entry(self, cache, clock):
        calls = []

        def fetch():
            calls.append(1)
            return "new"

        cache.set("k", "v", persistent=True, ttl=3600)
        clock.advance(100)
        assert cache.get_or_fetch("k", fetch) == "v"

        clock.advance(30)
        assert cache.memory.peek("k").origin_ttl == 3600
        assert not cache.is_stale("k")
        assert cache.get_or_fetch("k", fetch) == "v"
        assert calls == []

    def test_invalidation_between_read_and_promotion_wins(self, cache, monkeypatch):
        cache.set("k", "old", persistent=True, tags=("tasks",))
        read = cache.persistent.get_entry

        def read_then_invalidate(key):
            entry = read(key)
            cache.clear_by_tags(("tasks",))
            return entry

        monkeypatch.setattr(cache.persistent, "get_entry", read_then_invalidate)
        cache.get("k")

        assert "k" not in cache.memory
        assert cache.get("k") is None
        assert cache.get_stats()["requests"]["promotions"] == 0

    def test_entry_replaced_after_read_is_not_promoted(self, cache, monkeypatch):
        cache.set("k", "old", persistent=True)
        read = cache.persistent.get_entry

        def read_then_replace(key):
            entry = read(key)
            cache.set("k", "new", persistent=True)
            return entry

        monkeypatch.setattr(cache.persistent, "get_entry", read_then_replace)
        cache.get("k")
        monkeypatch.undo()

        assert "k" not in cache.memory
        assert cache.get("k") == "new"


# =============================================================================
# Invalidation and sweep
# =============================================================================

class TestInvalidation:

    def test_clear_by_tags_spans_both_tiers(self, cache):
        cache.set("tasks-mem", [], tags=("tasks",))
        cache.set("tasks-disk", [], persistent=True, tags=("tasks", "dashboard"))
        cache.set("team", [], persistent=True, tags=("team",))

        assert cache.clear_by_tags(["tasks"]) == 2
        assert cache.get("tasks-mem") is None
        assert cache.get("tasks-disk") is None
        assert cache.get("team") == []

    def test_clear_by_tags_accepts_generator(self, cache):
        cache.set("a", 1, tags=("x",))
        cache.set("b", 2, persistent=True, tags=("x",))
        assert cache.clear_by_tags(t for t in ["x"]) == 2

    def test_clear_empties_everything(self, cache):
        cache.set("a", 1)
        cache.set("b", 2, persistent=True)
        assert cache.clear() == 2
        assert len(cache.memory) == 0 and len(cache.persistent) == 0

    def test_sweep_covers_both_tiers(self, cache, clock):
        cache.set("a", 1, ttl=10)
        cache.set("b", 2, ttl=10, persistent=True)
        cache.set("c", 3, ttl=1000)
        clock.advance(11)
        assert cache.sweep() == 2
        assert cache.sweep() == 0


# =============================================================================
# Freshness predicates
# =============================================================================

class TestFreshness:

    def test_missing_entry_is_stale_and_expired(self, cache):
        assert cache.is_stale("nope") is True
        assert cache.is_expired("nope") is True

    def test_stale_after_default_ratio_of_ttl(self, cache, clock):
        cache.set("k", 1, ttl=100)
        clock.advance(80)
        assert cache.is_stale("k") is False
        clock.advance(1)
        assert cache.is_stale("k") is True
        assert cache.is_expired("k") is False

    def test_explicit_threshold_wins(self, cache, clock):
        cache.set("k", 1, ttl=100)
        clock.advance(30)
        assert cache.is_stale("k", stale_threshold=20) is True

    def test_predicates_do_not_record_access(self, cache):
        cache.set("k", 1)
        cache.is_stale("k")
        cache.is_expired("k")
        assert cache.memory.peek("k").access_count == 0

    def test_predicates_see_persistent_entries(self, cache, clock):
        cache.set("k", 1, ttl=100, persistent=True)
        assert cache.is_expired("k") is False
        assert cache.is_expired("k", fallback_to_persistent=False) is True


# =============================================================================
# get_or_fetch
# =============================================================================

class TestGetOrFetch:

    def test_fresh_hit_does_not_fetch(self, cache):
        cache.set("k", "cached", ttl=100)
        calls = []
        result = cache.get_or_fetch("k", lambda: calls.append(1) or "new")
        assert result == "cached"
        assert calls == []

    def test_miss_fetches_and_caches(self, cache):
        assert cache.get_or_fetch("k", lambda: "new", ttl=100, tags=("api",)) == "new"
        entry = cache.memory.peek("k")
        assert entry.data == "new"
        assert entry.tags == ("api",)

    def test_miss_with_persistent_option_writes_persistent(self, cache):
        cache.get_or_fetch("k", lambda: "new", persistent=True)
        assert cache.persistent.keys() == ["k"]

    def test_stale_hit_returns_without_blocking_on_fetch(self, cache, clock):
        cache.set("k", "old", ttl=100)
        clock.advance(90)
        gate = threading.Event()

        def slow_fetch():
            gate.wait(5)
            return "new"

        result = cache.get_or_fetch(
            "k", slow_fetch, ttl=100, stale_while_revalidate=True, background_refresh=True,
        )
        assert result == "old"
        assert not gate.is_set()

        gate.set()
        assert cache.wait_for_background(5)
        assert cache.get("k") == "new"
        assert cache.get_stats()["requests"]["revalidations"] == 1

    def test_stale_hit_without_background_refresh_never_fetches(self, cache, clock):
        cache.set("k", "old", ttl=100)
        clock.advance(90)
        calls = []
        result = cache.get_or_fetch(
            "k", lambda: calls.append(1), ttl=100, stale_while_revalidate=True,
        )
        assert result == "old"
        assert cache.wait_for_background(1)
        assert calls == []

    def test_only_one_refresh_per_key_in_flight(self, cache, clock):
        cache.set("k", "old", ttl=100)
        clock.advance(90)
        gate = threading.Event()
        calls = []

        def slow_fetch():
            calls.append(1)
            gate.wait(5)
            return "new"

        opts = CacheOptions(ttl=100, stale_while_revalidate=True, background_refresh=True)
        cache.get_or_fetch("k", slow_fetch, opts)
        cache.get_or_fetch("k", slow_fetch, opts)
        assert cache.get_stats()["revalidating_count"] == 1

        gate.set()
        assert cache.wait_for_background(5)
        assert calls == [1]

    def test_background_refresh_failure_is_swallowed(self, cache, clock):
        cache.set("k", "old", ttl=100)
        clock.advance(90)

        result = cache.get_or_fetch(
            "k", failing_fetch, ttl=100, stale_while_revalidate=True, background_refresh=True,
        )
        assert result == "old"
        assert cache.wait_for_background(5)
        assert cache.get("k") == "old"
        assert cache.get_stats()["requests"]["revalidation_failures"] == 1

    def test_stale_without_swr_refetches_synchronously(self, cache, clock):
        cache.set("k", "old", ttl=100)
        clock.advance(90)
        assert cache.get_or_fetch("k", lambda: "new", ttl=100) == "new"

    def test_failed_refetch_falls_back_to_stale_value(self, cache, clock):
        cache.set("k", "old", ttl=100)
        clock.advance(90)
        assert cache.get_or_fetch("k", failing_fetch, ttl=100) == "old"
        assert cache.get_stats()["requests"]["fallbacks"] == 1

    def test_failed_fetch_falls_back_to_persistent_value(self, cache):
        cache.set("k", "disk", persistent=True, ttl=1000)
        result = cache.get_or_fetch("k", failing_fetch, fallback_to_persistent=False)
        assert result == "disk"

    def test_failed_fetch_without_fallback_raises(self, cache):
        with pytest.raises(Boom):
            cache.get_or_fetch("k", failing_fetch)
        assert cache.get("k") is None

    def test_refresh_after_close_is_not_scheduled(self, memory_tier, persistent_tier, clock):
        orchestrator = CacheOrchestrator(memory_tier, persistent_tier, clock=clock, sweep_interval=0)
        orchestrator.close()
        assert orchestrator.refresh_in_background("k", lambda: 1) is None
        assert orchestrator.get_stats()["revalidating_count"] == 0


# =============================================================================
# Coalescing
# =============================================================================

class TestCoalescing:

    def test_concurrent_callers_share_one_fetch(self):
        coalescer = RequestCoalescer()
        gate = threading.Event()
        calls = []
        results = []

        def fetch():
            calls.append(1)
            gate.wait(5)
            return "shared"

        def caller():
            results.append(coalescer.get_or_fetch("k", fetch))

        first = threading.Thread(target=caller)
        first.start()
        wait_until(lambda: coalescer.active_requests == 1)
        second = threading.Thread(target=caller)
        second.start()
        wait_until(lambda: coalescer.get_stats()["joined"] == 1)

        gate.set()
        first.join(5)
        second.join(5)

        assert calls == [1]
        assert results == ["shared", "shared"]
        assert coalescer.active_requests == 0

    def test_errors_reach_every_waiter(self):
        coalescer = RequestCoalescer()
        gate = threading.Event()
        errors = []

        def fetch():
            gate.wait(5)
            raise Boom("nope")

        def caller():
            try:
                coalescer.get_or_fetch("k", fetch)
            except Boom as e:
                errors.append(e)

        threads = [threading.Thread(target=caller)]
        threads[0].start()
        wait_until(lambda: coalescer.active_requests == 1)
        threads.append(threading.Thread(target=caller))
        threads[1].start()
        wait_until(lambda: coalescer.get_stats()["joined"] == 1)

        gate.set()
        for t in threads:
            t.join(5)
        assert len(errors) == 2


# =============================================================================
# Stats and lifecycle
# =============================================================================

class TestStatsAndLifecycle:

    def test_stats_shape_and_hit_rate(self, cache):
        cache.get_or_fetch("k", lambda: 1, ttl=100)
        cache.get_or_fetch("k", lambda: 2, ttl=100)

        stats = cache.get_stats()
        assert stats["requests"]["misses"] == 1
        assert stats["requests"]["hits_fresh"] == 1
        assert stats["requests"]["hit_rate_percent"] == 50.0
        assert stats["memory"]["entries"] == 1
        assert "namespace" in stats["persistent"]
        assert stats["coalescer"]["active_requests"] == 0

    def test_sweeper_runs_until_close(self, store):
        memory = MemoryTier(max_size=10_000, default_ttl=300)
        persistent = PersistentTier(store, max_size=10_000, default_ttl=300)

        with CacheOrchestrator(memory, persistent, sweep_interval=0.01) as orchestrator:
            wait_until(lambda: orchestrator.sweeper.runs >= 1)
            assert orchestrator.sweeper.is_running

        assert not orchestrator.sweeper.is_running

    def test_zero_interval_disables_sweeper(self, cache):
        assert not cache.sweeper.is_running
