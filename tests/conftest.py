"""
Shared fixtures: controllable clock, in-memory store, cache wiring.
"""
import pytest

from teampulse.cache import CacheOrchestrator, MemoryTier, PersistentTier
from teampulse.network import NetworkMonitor
from teampulse.storage import InMemoryKeyValueStore


class FakeClock:
    """Manually advanced clock (epoch seconds)."""

    def __init__(self, start: float = 1_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return InMemoryKeyValueStore()


@pytest.fixture
def monitor():
    return NetworkMonitor(online=True)


@pytest.fixture
def memory_tier(clock):
    return MemoryTier(max_size=1_000_000, default_ttl=300, clock=clock)


@pytest.fixture
def persistent_tier(store, clock):
    return PersistentTier(store, max_size=1_000_000, default_ttl=3600, clock=clock)


@pytest.fixture
def cache(memory_tier, persistent_tier, clock):
    orchestrator = CacheOrchestrator(
        memory_tier,
        persistent_tier,
        clock=clock,
        promotion_ttl=60,
        sweep_interval=0,
    )
    yield orchestrator
    orchestrator.close()


class RecordingTransport:
    """Transport double: scripted responses per (method, url), records calls."""

    def __init__(self):
        self.calls = []
        self.responses = {}
        self.failures = {}

    def respond(self, method, url, payload):
        self.responses[(method, url)] = payload

    def fail(self, method, url, error):
        self.failures[(method, url)] = error

    def __call__(self, method, url, data=None, headers=None):
        self.calls.append((method, url, data))
        key = (method, url)
        if key in self.failures:
            raise self.failures[key]
        return self.responses.get(key, {"ok": True})


@pytest.fixture
def transport():
    return RecordingTransport()
