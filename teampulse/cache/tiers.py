"""
Cache tiers: a common size-bounded TTL store and the volatile memory tier.
"""
import logging
import threading
import time
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

from .core import (
    DEFAULT_PRIORITY,
    CacheEntry,
    TierStats,
    estimate_size,
    normalize_tags,
)

logger = logging.getLogger("cache.tiers")

Clock = Callable[[], float]
SizeFn = Callable[[CacheEntry], int]


class BaseTier:
    """
    Key -> CacheEntry store with TTL expiry and eviction under a byte budget.

    Subclasses define the eviction order via `_eviction_score` and may hook
    `_on_change` to persist mutations. All state is guarded by one re-entrant
    lock, so reads, writes and sweeps may come from different threads.
    """

    name = "tier"

    def __init__(
        self,
        max_size: int,
        default_ttl: float,
        clock: Clock = time.time,
        size_fn: SizeFn = estimate_size,
    ):
        """
        Args:
            max_size: Byte budget; current_size never exceeds it
            default_ttl: TTL in seconds used when set() gets none
            clock: Returns "now" in epoch seconds
            size_fn: Size estimator for entries
        """
        self.max_size = max_size
        self.default_ttl = default_ttl
        self._clock = clock
        self._size_fn = size_fn
        self._entries: Dict[str, CacheEntry] = {}
        self._sizes: Dict[str, int] = {}
        self._current_size = 0
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def current_size(self) -> int:
        return self._current_size

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return self.peek(key) is not None

    def keys(self) -> List[str]:
        with self._lock:
            return list(self._entries)

    def set(
        self,
        key: str,
        data: Any,
        ttl: Optional[float] = None,
        tags: Union[None, str, Iterable[str]] = None,
        priority: int = DEFAULT_PRIORITY,
        created_at: Optional[float] = None,
        origin_ttl: Optional[float] = None,
    ) -> bool:
        """
        Store `data` under `key`, evicting other entries if the budget requires.

        Returns:
            False if the entry alone is larger than the tier, True otherwise
        """
        now = self._clock()
        entry = CacheEntry(
            key=key,
            data=data,
            created_at=now if created_at is None else created_at,
            ttl=float(self.default_ttl if ttl is None else ttl),
            tags=normalize_tags(tags),
            priority=priority,
            last_accessed_at=now,
            origin_ttl=origin_ttl,
        )
        size = self._size_fn(entry)

        with self._lock:
            if size > self.max_size:
                logger.warning(
                    f"{self.name}: entry '{key}' ({size} bytes) exceeds "
                    f"max size {self.max_size}, not cached"
                )
                if self._remove(key):
                    self._on_change()
                return False

            self._remove(key)
            overflow = self._current_size + size - self.max_size
            if overflow > 0:
                self._evict_locked(overflow)

            self._entries[key] = entry
            self._sizes[key] = size
            self._current_size += size
            self._on_change()
        return True

    def get_entry(self, key: str) -> Optional[CacheEntry]:
        """
        Return the live entry for `key`, recording the access.

        Expired entries are deleted and reported as a miss.
        """
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            now = self._clock()
            if entry.is_expired(now):
                logger.debug(f"{self.name}: expired on read: {key}")
                self._remove(key)
                self._on_change()
                return None
            entry.touch(now)
            return entry

    def get(self, key: str) -> Optional[Any]:
        """Return the cached data, or None on a miss."""
        entry = self.get_entry(key)
        return entry.data if entry is not None else None

    def peek(self, key: str) -> Optional[CacheEntry]:
        """Return the entry if present and unexpired, without bookkeeping."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None or entry.is_expired(self._clock()):
                return None
            return entry

    def holds(self, key: str, entry: CacheEntry) -> bool:
        """True if `entry` itself is still the one stored under `key`."""
        with self._lock:
            return self._entries.get(key) is entry

    def delete(self, key: str) -> bool:
        with self._lock:
            removed = self._remove(key)
            if removed:
                self._on_change()
            return removed

    def evict(self, required_bytes: int) -> int:
        """
        Free at least `required_bytes`, lowest eviction score first.

        Returns:
            Bytes actually freed (less than required if entries ran out)
        """
        with self._lock:
            freed = self._evict_locked(required_bytes)
            if freed:
                self._on_change()
            return freed

    def sweep(self) -> int:
        """Delete every expired entry. Returns the number removed."""
        with self._lock:
            now = self._clock()
            expired = [k for k, e in self._entries.items() if e.is_expired(now)]
            for key in expired:
                self._remove(key)
            if expired:
                logger.debug(f"{self.name}: swept {len(expired)} expired entries")
                self._on_change()
            return len(expired)

    def clear_by_tags(self, tags: Union[str, Iterable[str]]) -> int:
        """Delete every entry carrying any of `tags`. Returns the number removed."""
        wanted = set(normalize_tags(tags))
        if not wanted:
            return 0
        with self._lock:
            matched = [k for k, e in self._entries.items() if e.has_any_tag(wanted)]
            for key in matched:
                self._remove(key)
            if matched:
                logger.info(
                    f"{self.name}: invalidated {len(matched)} entries tagged {sorted(wanted)}"
                )
                self._on_change()
            return len(matched)

    def clear(self) -> int:
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
            self._sizes.clear()
            self._current_size = 0
            self._on_change()
            return count

    def stats(self) -> TierStats:
        with self._lock:
            return TierStats(
                size=self._current_size,
                entries=len(self._entries),
                max_size=self.max_size,
            )

    # ------------------------------------------------------------------
    # Internals (caller holds the lock)
    # ------------------------------------------------------------------

    def _eviction_score(self, entry: CacheEntry, now: float):
        raise NotImplementedError

    def _eviction_order(self) -> List[str]:
        now = self._clock()
        return sorted(
            self._entries,
            key=lambda k: self._eviction_score(self._entries[k], now),
        )

    def _evict_locked(self, required_bytes: int) -> int:
        freed = 0
        evicted = []
        for key in self._eviction_order():
            if freed >= required_bytes:
                break
            freed += self._sizes.get(key, 0)
            self._remove(key)
            evicted.append(key)
        if evicted:
            logger.info(f"{self.name}: evicted {len(evicted)} entries ({freed} bytes)")
        return freed

    def _remove(self, key: str) -> bool:
        if key not in self._entries:
            return False
        del self._entries[key]
        self._current_size -= self._sizes.pop(key, 0)
        return True

    def _on_change(self) -> None:
        """Hook called after any mutation, with the lock held."""


class MemoryTier(BaseTier):
    """
    Volatile tier. Evicts lowest priority first, least recently read among equals.
    """

    name = "memory"

    def _eviction_score(self, entry: CacheEntry, now: float):
        return (entry.priority, entry.last_accessed_at)
