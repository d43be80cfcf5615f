"""
Offline support: durable request queue and pending-change sync.
"""
from .models import (
    DrainReport,
    ItemResult,
    OfflineQueueItem,
    PendingChange,
    SyncResult,
)
from .queue import OfflineQueue
from .sync import OfflineSyncCoordinator

__all__ = [
    "DrainReport",
    "ItemResult",
    "OfflineQueueItem",
    "PendingChange",
    "SyncResult",
    "OfflineQueue",
    "OfflineSyncCoordinator",
]
