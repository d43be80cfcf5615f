"""
Request coalescing for cache misses.

When several threads miss on the same key at once, only the first one runs
the fetch function; the rest wait for and share its outcome.
"""
import logging
import threading
from concurrent.futures import Future
from typing import Any, Callable, Dict, Optional

logger = logging.getLogger("cache.coalescer")


class RequestCoalescer:
    """
    Shares one in-flight fetch per key among concurrent callers.

    Errors raised by the fetch are re-raised in every waiting caller.
    """

    def __init__(self, timeout: Optional[float] = None):
        """
        Args:
            timeout: Max seconds a joining caller waits; None waits indefinitely
        """
        self._in_flight: Dict[str, Future] = {}
        self._lock = threading.Lock()
        self._timeout = timeout
        self._joined = 0

    def get_or_fetch(self, key: str, fetch_fn: Callable[[], Any]) -> Any:
        """
        Run `fetch_fn` for `key`, or join the call already in flight.

        Raises:
            concurrent.futures.TimeoutError: If a joined fetch outlasts the timeout
            Exception: Whatever `fetch_fn` raised
        """
        with self._lock:
            future = self._in_flight.get(key)
            initiator = future is None
            if initiator:
                future = Future()
                self._in_flight[key] = future
            else:
                self._joined += 1

        if not initiator:
            logger.debug(f"Joining in-flight fetch for {key}")
            return future.result(timeout=self._timeout)

        try:
            result = fetch_fn()
        except Exception as e:
            future.set_exception(e)
            raise
        else:
            future.set_result(result)
            return result
        finally:
            with self._lock:
                self._in_flight.pop(key, None)

    @property
    def active_requests(self) -> int:
        with self._lock:
            return len(self._in_flight)

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "active_requests": len(self._in_flight),
                "active_keys": list(self._in_flight),
                "joined": self._joined,
            }
