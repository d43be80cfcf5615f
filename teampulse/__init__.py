"""
TeamPulse resilient data-access layer.

Two-tier cache with stale-while-revalidate, an offline request queue and
pending-change sync for the team dashboard.
"""
from .cache import CacheOptions, CacheOrchestrator, MemoryTier, PersistentTier
from .errors import (
    OfflineDataUnavailable,
    StorageError,
    StorageQuotaExceeded,
    TeamPulseError,
    TransportError,
)
from .fetcher import OfflineAwareFetcher, RequestOptions
from .network import NetworkMonitor
from .offline import OfflineQueue, OfflineSyncCoordinator
from .storage import InMemoryKeyValueStore, KeyValueStore, SqliteKeyValueStore

__all__ = [
    "CacheOptions",
    "CacheOrchestrator",
    "MemoryTier",
    "PersistentTier",
    "OfflineDataUnavailable",
    "StorageError",
    "StorageQuotaExceeded",
    "TeamPulseError",
    "TransportError",
    "OfflineAwareFetcher",
    "RequestOptions",
    "NetworkMonitor",
    "OfflineQueue",
    "OfflineSyncCoordinator",
    "InMemoryKeyValueStore",
    "KeyValueStore",
    "SqliteKeyValueStore",
]
