"""
Two-tier cache orchestration with stale-while-revalidate.
"""
import logging
import threading
import time
from concurrent.futures import Executor, Future, ThreadPoolExecutor, wait
from typing import Any, Callable, Dict, Iterable, Optional, Set, Union

from .coalescer import RequestCoalescer
from .core import CacheEntry, CacheOptions, DEFAULT_STALE_RATIO
from .persistent import PersistentTier
from .sweeper import PeriodicSweeper
from .tiers import BaseTier, Clock, MemoryTier

logger = logging.getLogger("cache.manager")


def create_cache_key(*parts: Any) -> str:
    """Join the truthy parts of a key with ':'."""
    return ":".join(str(p) for p in parts if p)


class CacheOrchestrator:
    """
    Unifies the memory and persistent tiers behind one API:
    - Read-through: memory first, then persistent, promoting hits to memory
    - Write routing by `CacheOptions.persistent`
    - Tag invalidation across both tiers
    - get_or_fetch with stale-while-revalidate and stale fallback on failure
    - A periodic sweep of expired entries for the orchestrator's lifetime
    """

    def __init__(
        self,
        memory: MemoryTier,
        persistent: PersistentTier,
        clock: Clock = time.time,
        executor: Optional[Executor] = None,
        max_background_workers: int = 4,
        promotion_ttl: float = 300,
        stale_ratio: float = DEFAULT_STALE_RATIO,
        sweep_interval: float = 600,
        coalescer: Optional[RequestCoalescer] = None,
    ):
        """
        Args:
            memory: Volatile tier
            persistent: Durable tier
            clock: Returns "now" in epoch seconds
            executor: Runs background refreshes; owned (and shut down) if not given
            max_background_workers: Pool size when the executor is owned
            promotion_ttl: Max seconds a promoted copy lives in memory
            stale_ratio: Default share of the TTL after which entries are stale
            sweep_interval: Seconds between sweeps; <= 0 disables the sweeper
            coalescer: Shares concurrent fetches for the same key
        """
        self.memory = memory
        self.persistent = persistent
        self._clock = clock
        self.promotion_ttl = promotion_ttl
        self.default_options = CacheOptions(stale_ratio=stale_ratio)
        self._coalescer = coalescer or RequestCoalescer()
        # Serializes writes and invalidations against promotion
        self._write_lock = threading.RLock()

        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(
            max_workers=max_background_workers,
            thread_name_prefix="cache-revalidate",
        )
        self._revalidating: Set[str] = set()
        self._revalidating_lock = threading.Lock()
        self._background: Set[Future] = set()

        self._stats = {
            "hits_fresh": 0,
            "hits_stale": 0,
            "misses": 0,
            "revalidations": 0,
            "revalidation_failures": 0,
            "fallbacks": 0,
            "promotions": 0,
        }
        self._stats_lock = threading.Lock()

        self._sweeper = PeriodicSweeper(sweep_interval, self.sweep)
        self._sweeper.start()
        self._closed = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def close(self) -> None:
        """Stop the sweep task and background refresh pool."""
        if self._closed:
            return
        self._closed = True
        self._sweeper.stop()
        if self._owns_executor:
            self._executor.shutdown(wait=True)
        logger.debug("Cache orchestrator closed")

    def __enter__(self) -> "CacheOrchestrator":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    @property
    def sweeper(self) -> PeriodicSweeper:
        return self._sweeper

    # ------------------------------------------------------------------
    # Basic read/write
    # ------------------------------------------------------------------

    def _resolve(self, options: Optional[CacheOptions], overrides: Dict[str, Any]) -> CacheOptions:
        options = options or self.default_options
        return options.with_overrides(**overrides) if overrides else options

    def _tier(self, persistent: bool) -> BaseTier:
        return self.persistent if persistent else self.memory

    def get(
        self,
        key: str,
        persistent: bool = False,
        fallback_to_persistent: bool = True,
    ) -> Optional[Any]:
        """
        Read a value; None means both tiers missed.

        Args:
            key: Cache key
            persistent: Read only the persistent tier
            fallback_to_persistent: On a memory miss, read (and promote) from persistent
        """
        entry = self.lookup(key, persistent, fallback_to_persistent)
        return entry.data if entry is not None else None

    def lookup(
        self,
        key: str,
        persistent: bool = False,
        fallback_to_persistent: bool = True,
    ) -> Optional[CacheEntry]:
        """Like get(), but returns the entry so a cached None is not a miss."""
        if persistent:
            return self.persistent.get_entry(key)
        entry = self.memory.get_entry(key)
        if entry is None and fallback_to_persistent:
            entry = self.persistent.get_entry(key)
            if entry is not None:
                self._promote(entry)
        return entry

    def _promote(self, entry: CacheEntry) -> None:
        """
        Copy a persistent hit into memory.

        The copy keeps the original write time, tags and priority, and
        expires after at most `promotion_ttl` more seconds, never later
        than the persistent entry itself.

        Staleness is still measured against the persistent entry's TTL.
        Nothing is copied if the entry was replaced or invalidated after
        it was read.
        """
        now = self._clock()
        extra = min(self.promotion_ttl, entry.remaining_ttl(now))
        if extra <= 0:
            return
        with self._write_lock:
            if not self.persistent.holds(entry.key, entry):
                logger.debug(f"Not promoting {entry.key}: changed since read")
                return
            self.memory.set(
                entry.key,
                entry.data,
                ttl=entry.age(now) + extra,
                tags=entry.tags,
                priority=entry.priority,
                created_at=entry.created_at,
                origin_ttl=entry.freshness_ttl,
            )
        self._bump("promotions")
        logger.debug(f"Promoted {entry.key} to memory for {extra:.0f}s")

    def set(self, key: str, data: Any, options: Optional[CacheOptions] = None, **overrides: Any) -> bool:
        """
        Write to the memory tier, or the persistent tier when `persistent` is set.

        Options may be given as a CacheOptions, keyword overrides, or both.
        """
        opts = self._resolve(options, overrides)
        with self._write_lock:
            return self._tier(opts.persistent).set(
                key,
                data,
                ttl=opts.ttl,
                tags=opts.tags,
                priority=opts.priority,
            )

    def delete(self, key: str) -> bool:
        """Remove `key` from both tiers."""
        with self._write_lock:
            removed_memory = self.memory.delete(key)
            removed_persistent = self.persistent.delete(key)
        return removed_memory or removed_persistent

    def clear_by_tags(self, tags: Union[str, Iterable[str]]) -> int:
        """Remove every entry in either tier carrying any of `tags`."""
        if not isinstance(tags, str):
            tags = tuple(tags)
        with self._write_lock:
            return self.memory.clear_by_tags(tags) + self.persistent.clear_by_tags(tags)

    def clear(self) -> int:
        with self._write_lock:
            count = self.memory.clear() + self.persistent.clear()
        logger.info(f"Cleared {count} cache entries")
        return count

    def sweep(self) -> int:
        """Remove expired entries from both tiers."""
        return self.memory.sweep() + self.persistent.sweep()

    # ------------------------------------------------------------------
    # Freshness predicates
    # ------------------------------------------------------------------

    def _peek(self, key: str, opts: CacheOptions) -> Optional[CacheEntry]:
        if opts.persistent:
            return self.persistent.peek(key)
        entry = self.memory.peek(key)
        if entry is None and opts.fallback_to_persistent:
            entry = self.persistent.peek(key)
        return entry

    def is_stale(self, key: str, options: Optional[CacheOptions] = None, **overrides: Any) -> bool:
        """True if the entry is missing, expired, or older than the stale threshold."""
        opts = self._resolve(options, overrides)
        entry = self._peek(key, opts)
        if entry is None:
            return True
        return entry.is_stale(self._clock(), opts.threshold_for(entry))

    def is_expired(self, key: str, options: Optional[CacheOptions] = None, **overrides: Any) -> bool:
        """True if no unexpired entry exists for `key`."""
        return self._peek(key, self._resolve(options, overrides)) is None

    # ------------------------------------------------------------------
    # get_or_fetch
    # ------------------------------------------------------------------

    def get_or_fetch(
        self,
        key: str,
        fetch_fn: Callable[[], Any],
        options: Optional[CacheOptions] = None,
        **overrides: Any,
    ) -> Any:
        """
        Return cached data, fetching only when nothing usable is cached.

        1. Fresh entry: returned, fetch_fn not called.
        2. Stale entry with stale_while_revalidate: returned immediately; with
           background_refresh, fetch_fn runs on the background executor.
        3. Otherwise fetch_fn runs in the caller's thread (coalesced per key).
           On failure the stale entry, or any unexpired persistent entry, is
           returned instead; with neither, the error propagates.
        """
        opts = self._resolve(options, overrides)
        entry = self.lookup(key, opts.persistent, opts.fallback_to_persistent)

        if entry is not None:
            now = self._clock()
            if not entry.is_stale(now, opts.threshold_for(entry)):
                logger.debug(f"CACHE HIT (fresh): {key} [age={entry.age(now):.1f}s]")
                self._bump("hits_fresh")
                return entry.data

            if opts.stale_while_revalidate:
                logger.info(f"CACHE HIT (stale): {key} [age={entry.age(now):.1f}s]")
                self._bump("hits_stale")
                if opts.background_refresh:
                    self.refresh_in_background(key, fetch_fn, opts)
                return entry.data

            logger.info(f"CACHE STALE (refetching): {key} [age={entry.age(now):.1f}s]")
        else:
            logger.info(f"CACHE MISS: {key}")

        self._bump("misses")
        try:
            data = self._coalescer.get_or_fetch(key, fetch_fn)
        except Exception as e:
            fallback = entry or self.persistent.get_entry(key)
            if fallback is None:
                raise
            logger.warning(f"Fetch failed for {key}, returning stale data: {e}")
            self._bump("fallbacks")
            return fallback.data

        self.set(key, data, opts)
        return data

    def refresh_in_background(
        self,
        key: str,
        fetch_fn: Callable[[], Any],
        options: Optional[CacheOptions] = None,
    ) -> Optional[Future]:
        """
        Re-fetch `key` on the background executor without blocking.

        At most one refresh per key is in flight. Failures are logged and
        never reach the caller.

        Returns:
            The scheduled Future, or None if a refresh was already running
        """
        opts = options or self.default_options
        with self._revalidating_lock:
            if key in self._revalidating:
                logger.debug(f"Already revalidating: {key}")
                return None
            self._revalidating.add(key)

        def do_revalidate():
            try:
                data = fetch_fn()
                self.set(key, data, opts)
                self._bump("revalidations")
                logger.debug(f"Background revalidation complete: {key}")
            except Exception as e:
                self._bump("revalidation_failures")
                logger.warning(f"Background refresh failed for {key}: {e}")
            finally:
                with self._revalidating_lock:
                    self._revalidating.discard(key)

        try:
            future = self._executor.submit(do_revalidate)
        except RuntimeError as e:
            # Executor already shut down
            with self._revalidating_lock:
                self._revalidating.discard(key)
            logger.warning(f"Background refresh for {key} not scheduled: {e}")
            return None

        with self._revalidating_lock:
            self._background.add(future)
        future.add_done_callback(self._forget_background)
        return future

    def _forget_background(self, future: Future) -> None:
        with self._revalidating_lock:
            self._background.discard(future)

    def wait_for_background(self, timeout: Optional[float] = None) -> bool:
        """Block until scheduled refreshes finish. Returns False on timeout."""
        with self._revalidating_lock:
            pending = list(self._background)
        if not pending:
            return True
        _, not_done = wait(pending, timeout=timeout)
        return not not_done

    # ------------------------------------------------------------------
    # Stats
    # ------------------------------------------------------------------

    def _bump(self, counter: str) -> None:
        with self._stats_lock:
            self._stats[counter] += 1

    def get_stats(self) -> Dict[str, Any]:
        """Per-tier size/utilization plus request counters."""
        with self._stats_lock:
            counters = dict(self._stats)
        hits = counters["hits_fresh"] + counters["hits_stale"]
        total = hits + counters["misses"]
        hit_rate = (hits / total * 100) if total > 0 else 0

        with self._revalidating_lock:
            revalidating = len(self._revalidating)

        return {
            "memory": self.memory.stats().to_dict(),
            "persistent": self.persistent.stats().to_dict(),
            "requests": {
                **counters,
                "hit_rate_percent": round(hit_rate, 1),
            },
            "coalescer": self._coalescer.get_stats(),
            "revalidating_count": revalidating,
        }
