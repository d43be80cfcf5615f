"""
Tests for persistent-tier durability: reload, versioned fail-closed loading,
and recovery from a full backing store.
"""
import json

from teampulse.cache import PersistentTier, SCHEMA_VERSION
from teampulse.errors import StorageError
from teampulse.storage import InMemoryKeyValueStore, SqliteKeyValueStore


NAMESPACE = "teampulse_cache"


def make_tier(store, clock, **kwargs):
    kwargs.setdefault("max_size", 1_000_000)
    kwargs.setdefault("default_ttl", 3600)
    return PersistentTier(store, clock=clock, **kwargs)


def stored_payload(store):
    return json.loads(store.get(NAMESPACE))


# =============================================================================
# Round trips
# =============================================================================

def test_every_mutation_is_written_to_the_store(store, clock):
    tier = make_tier(store, clock)
    tier.set("members", [{"id": 1}], tags=["team"], priority=2)

    payload = stored_payload(store)
    assert payload["version"] == SCHEMA_VERSION
    assert payload["entries"]["members"]["data"] == [{"id": 1}]
    assert payload["entries"]["members"]["tags"] == ["team"]

    tier.delete("members")
    assert stored_payload(store)["entries"] == {}


def test_entries_survive_restart(store, clock):
    tier = make_tier(store, clock)
    tier.set("projects", ["p1"], ttl=600, tags=["projects"])
    tier.set("trends", {"x": 1}, ttl=600)

    clock.advance(100)
    reloaded = make_tier(store, clock)

    assert sorted(reloaded.keys()) == ["projects", "trends"]
    assert reloaded.get("projects") == ["p1"]
    assert reloaded.current_size == tier.current_size
    assert reloaded.peek("projects").tags == ("projects",)


def test_reinitializing_does_not_double_count_size(store, clock):
    tier = make_tier(store, clock)
    tier.set("projects", ["p1"], ttl=600)
    tier.set("trends", {"x": 1}, ttl=600)
    size = tier.current_size

    assert tier.initialize() == 2
    assert len(tier) == 2
    assert tier.current_size == size
    assert tier.stats().size == size


def test_expired_entries_are_dropped_on_load(store, clock):
    tier = make_tier(store, clock)
    tier.set("short", 1, ttl=10)
    tier.set("long", 2, ttl=1000)

    clock.advance(60)
    reloaded = make_tier(store, clock)

    assert reloaded.keys() == ["long"]
    assert list(stored_payload(store)["entries"]) == ["long"]


def test_sqlite_store_round_trip(tmp_path, clock):
    store = SqliteKeyValueStore(tmp_path / "cache.db")
    tier = make_tier(store, clock)
    tier.set("members", [{"id": 7}])

    reloaded = make_tier(SqliteKeyValueStore(tmp_path / "cache.db"), clock)
    assert reloaded.get("members") == [{"id": 7}]


# =============================================================================
# Fail-closed loading
# =============================================================================

def test_corrupt_payload_starts_empty_and_is_discarded(store, clock):
    store.set(NAMESPACE, "{not json")
    tier = make_tier(store, clock)
    assert len(tier) == 0
    assert store.get(NAMESPACE) is None


def test_schema_version_mismatch_starts_empty(store, clock):
    store.set(NAMESPACE, json.dumps({"version": 99, "entries": {"k": {"data": 1}}}))
    tier = make_tier(store, clock)
    assert len(tier) == 0
    assert store.get(NAMESPACE) is None


def test_unversioned_legacy_layout_starts_empty(store, clock):
    legacy = {"k": {"data": 1, "timestamp": 1, "ttl": 100}}
    store.set(NAMESPACE, json.dumps(legacy))
    assert len(make_tier(store, clock)) == 0


def test_malformed_entry_is_skipped(store, clock):
    payload = {
        "version": SCHEMA_VERSION,
        "entries": {
            "good": {"data": 1, "createdAt": clock.now, "ttl": 100, "tags": []},
            "bad": {"data": 2, "createdAt": "yesterday", "ttl": 100},
            "worse": "nope",
        },
    }
    store.set(NAMESPACE, json.dumps(payload))
    tier = make_tier(store, clock)
    assert tier.keys() == ["good"]


def test_unreadable_store_starts_empty(clock):
    class BrokenStore(InMemoryKeyValueStore):
        def get(self, key):
            raise StorageError("disk gone")

    assert len(make_tier(BrokenStore(), clock)) == 0


# =============================================================================
# Quota recovery
# =============================================================================

def test_quota_failure_evicts_and_retries(clock):
    store = InMemoryKeyValueStore(capacity_bytes=2_000)
    tier = make_tier(store, clock, quota_eviction_ratio=0.5)

    for i in range(20):
        tier.set(f"item-{i}", "x" * 50)

    # The tier shrank to fit; whatever it holds is what the store holds
    persisted = stored_payload(store)["entries"]
    assert set(persisted) == set(tier.keys())
    assert len(tier) < 20
    assert tier.stats().extra["quota_evictions"] > 0


def test_second_quota_failure_is_swallowed(clock):
    class AlwaysFull(InMemoryKeyValueStore):
        def set(self, key, value):
            raise StorageError("quota exceeded")

    tier = make_tier(AlwaysFull(), clock)
    assert tier.set("k", "v") is True  # no exception reaches the caller
    assert tier.stats().extra["save_failures"] == 2


def test_unserializable_data_does_not_raise(store, clock):
    tier = make_tier(store, clock)
    tier.set("ok", 1)
    assert tier.set("bad", {1, 2}) is False
    assert tier.get("ok") == 1
    assert list(stored_payload(store)["entries"]) == ["ok"]
