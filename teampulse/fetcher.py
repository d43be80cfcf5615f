"""
Offline-aware request layer over the two-tier cache.
"""
import json
import logging
from concurrent.futures import Executor
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional, Tuple

from .cache import CacheOptions, CacheOrchestrator, create_cache_key
from .cache.core import normalize_tags
from .errors import OfflineDataUnavailable
from .network import NetworkMonitor
from .offline.models import OfflineQueueItem
from .offline.queue import DEFAULT_QUEUE_KEY, OfflineQueue
from .storage import KeyValueStore

logger = logging.getLogger("fetcher")

Transport = Callable[[str, str, Any, Optional[Dict[str, str]]], Any]

ONLINE = "online"
OFFLINE = "offline"


@dataclass(frozen=True)
class RequestOptions:
    """Per-request caching and invalidation settings."""
    cache: bool = True
    ttl: float = 5 * 60
    persistent: bool = False
    stale_while_revalidate: bool = False
    tags: Tuple[str, ...] = ()
    priority: int = 1
    headers: Dict[str, str] = field(default_factory=dict)
    invalidate_tags: Tuple[str, ...] = ()

    def __post_init__(self):
        object.__setattr__(self, "tags", normalize_tags(self.tags))
        object.__setattr__(self, "invalidate_tags", normalize_tags(self.invalidate_tags))


class OfflineAwareFetcher:
    """
    Issues API requests through the cache, tracking connectivity.

    Online:
        GET requests go through get_or_fetch (fresh hits skip the network,
        stale hits may be revalidated in the background, failures fall back
        to cached data). Other methods are sent directly and invalidate
        their `invalidate_tags` on success.
    Offline:
        GET requests return any cached value or raise OfflineDataUnavailable.
        Other methods are queued and replayed when connectivity returns.
    """

    def __init__(
        self,
        cache: CacheOrchestrator,
        transport: Transport,
        monitor: NetworkMonitor,
        store: KeyValueStore,
        base_url: str = "",
        queue_key: str = DEFAULT_QUEUE_KEY,
        executor: Optional[Executor] = None,
    ):
        self.cache = cache
        self.base_url = base_url.rstrip("/")
        self._transport = transport
        self._monitor = monitor
        self._state = ONLINE if monitor.is_online else OFFLINE
        self._unsubscribe = monitor.subscribe(self._on_connectivity_change)
        self.queue = OfflineQueue(
            store,
            monitor,
            sender=self.replay,
            key=queue_key,
            executor=executor,
        )

    @property
    def state(self) -> str:
        return self._state

    @property
    def is_online(self) -> bool:
        return self._state == ONLINE

    def _on_connectivity_change(self, online: bool) -> None:
        self._state = ONLINE if online else OFFLINE
        logger.debug(f"Fetcher state -> {self._state}")

    @staticmethod
    def cache_key(method: str, endpoint: str, data: Any = None) -> str:
        body = json.dumps(data, sort_keys=True, default=str) if data is not None else None
        return create_cache_key("api", method.upper(), endpoint, body)

    def request(
        self,
        endpoint: str,
        method: str = "GET",
        data: Any = None,
        options: Optional[RequestOptions] = None,
    ) -> Any:
        """
        Perform a request with caching and offline handling.

        Returns:
            The response payload; for writes queued while offline,
            {"queued": True, "id": <queue item id>}

        Raises:
            OfflineDataUnavailable: Offline GET with nothing cached
            TransportError: Online failure with no cached fallback
        """
        method = method.upper()
        opts = options or RequestOptions()
        key = self.cache_key(method, endpoint, data)
        is_read = method == "GET"

        if not self.is_online:
            if is_read:
                return self._read_offline(key, endpoint)
            return self._enqueue(endpoint, method, data, opts)

        if is_read and opts.cache:
            return self.cache.get_or_fetch(
                key,
                lambda: self._send(method, endpoint, data, opts.headers),
                self._cache_options(opts),
            )

        result = self._send(method, endpoint, data, opts.headers)
        if not is_read and opts.invalidate_tags:
            self.cache.clear_by_tags(opts.invalidate_tags)
        return result

    def _cache_options(self, opts: RequestOptions) -> CacheOptions:
        return self.cache.default_options.with_overrides(
            ttl=opts.ttl,
            tags=("api",) + opts.tags,
            priority=opts.priority,
            persistent=opts.persistent,
            stale_while_revalidate=opts.stale_while_revalidate,
            background_refresh=opts.stale_while_revalidate,
        )

    def _read_offline(self, key: str, endpoint: str) -> Any:
        entry = self.cache.lookup(key)
        if entry is None:
            logger.warning(f"Offline with no cached data for {endpoint}")
            raise OfflineDataUnavailable(endpoint)
        logger.info(f"Offline, serving cached data for {endpoint}")
        return entry.data

    def _enqueue(self, endpoint: str, method: str, data: Any, opts: RequestOptions) -> Dict[str, Any]:
        item = self.queue.enqueue(
            endpoint,
            method=method,
            data=data,
            headers=opts.headers,
            invalidate_tags=opts.invalidate_tags,
        )
        return {"queued": True, "id": item.id}

    def _send(self, method: str, endpoint: str, data: Any, headers: Optional[Dict[str, str]]) -> Any:
        return self._transport(method, f"{self.base_url}{endpoint}", data, headers or None)

    def replay(self, item: OfflineQueueItem) -> Any:
        """Send a queued request, bypassing the cache."""
        result = self._send(item.method, item.endpoint, item.data, item.headers)
        if item.invalidate_tags:
            self.cache.clear_by_tags(item.invalidate_tags)
        return result

    def close(self) -> None:
        """Unsubscribe from connectivity events and stop the queue."""
        self._unsubscribe()
        self.queue.close()
