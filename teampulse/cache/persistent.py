"""
Persistent cache tier backed by a KeyValueStore.

The whole tier is written as one versioned JSON record under a namespaced
key after every mutation, so it survives process restarts.
"""
import json
import logging
import math
import time
from typing import Any, Dict, Optional

from ..errors import StorageError
from ..storage import KeyValueStore
from .core import CacheEntry, TierStats, estimate_size
from .tiers import BaseTier, Clock, SizeFn

logger = logging.getLogger("cache.persistent")

SCHEMA_VERSION = 1
DEFAULT_NAMESPACE = "teampulse_cache"

# Minimum age used in the access-frequency score, avoids dividing by zero
# for entries written in the same clock tick.
_MIN_SCORE_AGE = 1e-3


class PersistentTier(BaseTier):
    """
    Durable tier with the same TTL/eviction contract as the memory tier.

    Eviction order: lowest priority first, then lowest access frequency
    (access_count / age). When the backing store refuses a write, the
    lowest-scoring share of entries is dropped and the write retried once;
    a second failure is logged and swallowed.
    """

    name = "persistent"

    def __init__(
        self,
        store: KeyValueStore,
        max_size: int,
        default_ttl: float,
        namespace: str = DEFAULT_NAMESPACE,
        quota_eviction_ratio: float = 0.5,
        clock: Clock = time.time,
        size_fn: SizeFn = estimate_size,
    ):
        super().__init__(max_size, default_ttl, clock=clock, size_fn=size_fn)
        self._store = store
        self.namespace = namespace
        self.quota_eviction_ratio = quota_eviction_ratio
        self._loading = False
        self._stats = {"saves": 0, "save_failures": 0, "quota_evictions": 0}
        self.initialize()

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    def initialize(self) -> int:
        """
        Load entries from the backing store.

        A record that cannot be decoded or carries another schema version is
        discarded and the tier starts empty. Malformed or expired entries are
        skipped individually.

        Returns:
            Number of entries loaded
        """
        try:
            raw = self._store.get(self.namespace)
        except StorageError as e:
            logger.warning(f"Failed to read persistent cache '{self.namespace}': {e}")
            return 0
        if raw is None:
            return 0

        entries = self._decode(raw)
        if entries is None:
            self._discard_record()
            return 0

        now = self._clock()
        loaded = 0
        skipped = 0
        with self._lock:
            self._loading = True
            try:
                for key, raw_entry in entries.items():
                    try:
                        entry = CacheEntry.from_dict(key, raw_entry)
                    except ValueError as e:
                        logger.warning(f"Skipping malformed persisted entry: {e}")
                        skipped += 1
                        continue
                    if entry.is_expired(now):
                        skipped += 1
                        continue
                    size = self._size_fn(entry)
                    if size > self.max_size:
                        skipped += 1
                        continue
                    self._remove(key)
                    self._entries[key] = entry
                    self._sizes[key] = size
                    self._current_size += size
                    loaded += 1

                overflow = self._current_size - self.max_size
                if overflow > 0:
                    self._evict_locked(overflow)
            finally:
                self._loading = False

            if skipped or overflow > 0:
                self._save()

        logger.info(
            f"Loaded {loaded} persistent cache entries from '{self.namespace}'"
            + (f" ({skipped} skipped)" if skipped else "")
        )
        return loaded

    def _decode(self, raw: str) -> Optional[Dict[str, Any]]:
        try:
            payload = json.loads(raw)
        except ValueError as e:
            logger.warning(f"Corrupt persistent cache '{self.namespace}': {e}")
            return None
        if not isinstance(payload, dict):
            logger.warning(f"Unexpected persistent cache layout in '{self.namespace}'")
            return None
        version = payload.get("version")
        if version != SCHEMA_VERSION:
            logger.warning(
                f"Persistent cache '{self.namespace}' has schema version {version!r}, "
                f"expected {SCHEMA_VERSION}; starting empty"
            )
            return None
        entries = payload.get("entries")
        if not isinstance(entries, dict):
            logger.warning(f"Persistent cache '{self.namespace}' has no entry map")
            return None
        return entries

    def _discard_record(self) -> None:
        try:
            self._store.remove(self.namespace)
        except StorageError as e:
            logger.warning(f"Failed to discard persistent cache record: {e}")

    def set(self, key: str, data: Any, **kwargs: Any) -> bool:
        """Like BaseTier.set, but refuses data that cannot be stored as JSON."""
        try:
            json.dumps(data)
        except (TypeError, ValueError) as e:
            logger.warning(f"Not persisting '{key}': value is not JSON-serializable ({e})")
            return False
        return super().set(key, data, **kwargs)

    # ------------------------------------------------------------------
    # Saving
    # ------------------------------------------------------------------

    def _on_change(self) -> None:
        if not self._loading:
            self._save()

    def _serialize(self) -> str:
        return json.dumps(
            {
                "version": SCHEMA_VERSION,
                "entries": {k: e.to_dict() for k, e in self._entries.items()},
            },
            separators=(",", ":"),
        )

    def _write(self) -> None:
        self._store.set(self.namespace, self._serialize())
        self._stats["saves"] += 1

    def _save(self) -> None:
        """Write the tier to the store, shrinking it once if the store refuses."""
        try:
            self._write()
            return
        except (StorageError, TypeError, ValueError) as e:
            self._stats["save_failures"] += 1
            logger.warning(f"Failed to save persistent cache: {e}")

        dropped = self._drop_lowest_scoring(self.quota_eviction_ratio)
        logger.warning(f"Dropped {dropped} persistent entries, retrying save")
        try:
            self._write()
        except (StorageError, TypeError, ValueError) as e:
            self._stats["save_failures"] += 1
            logger.error(f"Failed to save persistent cache after cleanup: {e}")

    def _drop_lowest_scoring(self, ratio: float) -> int:
        if not self._entries:
            return 0
        count = max(1, math.floor(len(self._entries) * ratio))
        for key in self._eviction_order()[:count]:
            self._remove(key)
        self._stats["quota_evictions"] += count
        return count

    # ------------------------------------------------------------------
    # Eviction / stats
    # ------------------------------------------------------------------

    def _eviction_score(self, entry: CacheEntry, now: float):
        age = max(entry.age(now), _MIN_SCORE_AGE)
        return (entry.priority, entry.access_count / age)

    def stats(self) -> TierStats:
        base = super().stats()
        base.extra = {"namespace": self.namespace, **self._stats}
        return base
