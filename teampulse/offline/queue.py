"""
Durable queue of mutating requests issued while offline.
"""
import logging
import threading
from concurrent.futures import Executor, Future, ThreadPoolExecutor, wait
from typing import Any, Callable, Dict, Iterable, List, Optional, Set

from ..network import NetworkMonitor
from ..storage import KeyValueStore
from .models import DrainReport, ItemResult, OfflineQueueItem
from .persistence import RecordList

logger = logging.getLogger("offline.queue")

DEFAULT_QUEUE_KEY = "teampulse_offline_queue"

Sender = Callable[[OfflineQueueItem], Any]


class OfflineQueue:
    """
    FIFO of requests that could not be sent, replayed when connectivity returns.

    - enqueue() appends and persists immediately
    - drain() replays items in submission order; each item succeeds or fails
      on its own, failures stay queued for the next drain
    - only one drain runs at a time; the guard flag is checked and set
      under a lock
    - the offline -> online transition schedules a drain on the executor
    """

    def __init__(
        self,
        store: KeyValueStore,
        monitor: NetworkMonitor,
        sender: Optional[Sender] = None,
        key: str = DEFAULT_QUEUE_KEY,
        executor: Optional[Executor] = None,
    ):
        """
        Args:
            store: Backing store for the queue record
            monitor: Connectivity signal; drains are skipped while offline
            sender: Replays one item, raising on failure
            key: Namespaced store key for this queue
            executor: Runs automatic drains; a single worker is owned if not given
        """
        self._records = RecordList(store, key, OfflineQueueItem)
        self._items: List[OfflineQueueItem] = self._records.load()
        self._items_lock = threading.Lock()

        self._draining = False
        self._drain_guard = threading.Lock()

        self._sender = sender
        self._monitor = monitor
        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(
            max_workers=1,
            thread_name_prefix="offline-drain",
        )
        self._background: Set[Future] = set()
        self._unsubscribe = monitor.subscribe(self._on_connectivity_change)

        if self._items:
            logger.info(f"Restored {len(self._items)} queued offline requests")

    # ------------------------------------------------------------------
    # Queue contents
    # ------------------------------------------------------------------

    def set_sender(self, sender: Sender) -> None:
        self._sender = sender

    @property
    def queue_length(self) -> int:
        with self._items_lock:
            return len(self._items)

    @property
    def items(self) -> List[OfflineQueueItem]:
        with self._items_lock:
            return [item.model_copy() for item in self._items]

    @property
    def is_draining(self) -> bool:
        return self._draining

    def enqueue(
        self,
        endpoint: str,
        method: str = "POST",
        data: Any = None,
        headers: Optional[Dict[str, str]] = None,
        invalidate_tags: Iterable[str] = (),
    ) -> OfflineQueueItem:
        """Append a request and persist the queue."""
        item = OfflineQueueItem(
            endpoint=endpoint,
            method=method.upper(),
            data=data,
            headers=dict(headers or {}),
            invalidate_tags=list(invalidate_tags),
        )
        with self._items_lock:
            self._items.append(item)
            self._records.save(self._items)
            length = len(self._items)
        logger.info(f"Queued {item.method} {endpoint} for later ({length} pending)")
        return item

    def remove(self, item_id: str) -> bool:
        with self._items_lock:
            before = len(self._items)
            self._items = [i for i in self._items if i.id != item_id]
            removed = len(self._items) != before
            if removed:
                self._records.save(self._items)
        return removed

    def clear(self) -> int:
        with self._items_lock:
            count = len(self._items)
            self._items = []
            self._records.save(self._items)
        return count

    # ------------------------------------------------------------------
    # Draining
    # ------------------------------------------------------------------

    def drain(self) -> Optional[DrainReport]:
        """
        Replay every queued request once, in order.

        Returns:
            DrainReport with per-item outcomes, or None if skipped because
            offline, no sender is set, or another drain is running
        """
        if not self._monitor.is_online:
            logger.debug("Offline, skipping queue drain")
            return None
        if self._sender is None:
            logger.warning("No sender configured, skipping queue drain")
            return None

        with self._drain_guard:
            if self._draining:
                logger.debug("Drain already in progress")
                return None
            self._draining = True

        try:
            return self._drain_locked()
        finally:
            with self._drain_guard:
                self._draining = False

    def _drain_locked(self) -> DrainReport:
        with self._items_lock:
            snapshot = list(self._items)

        report = DrainReport()
        if snapshot:
            logger.info(f"Processing {len(snapshot)} queued requests")

        for item in snapshot:
            try:
                self._sender(item)
            except Exception as e:
                with self._items_lock:
                    item.attempts += 1
                    item.last_error = str(e)
                    self._records.save(self._items)
                report.results.append(ItemResult(id=item.id, success=False, error=str(e)))
                logger.error(f"Failed to process queued request {item.id}: {e}")
                continue

            with self._items_lock:
                self._items = [i for i in self._items if i.id != item.id]
                self._records.save(self._items)
            report.results.append(ItemResult(id=item.id, success=True))

        report.remaining = self.queue_length
        if report.succeeded:
            logger.info(f"{report.succeeded} requests processed successfully")
        if report.failed:
            logger.warning(f"{report.failed} requests failed")
        return report

    def schedule_drain(self) -> Optional[Future]:
        """Run drain() on the executor without blocking the caller."""
        try:
            future = self._executor.submit(self._background_drain)
        except RuntimeError as e:
            logger.warning(f"Queue drain not scheduled: {e}")
            return None
        with self._items_lock:
            self._background.add(future)
        future.add_done_callback(self._forget_background)
        return future

    def _background_drain(self) -> Optional[DrainReport]:
        try:
            return self.drain()
        except Exception as e:
            logger.error(f"Background queue drain failed: {e}")
            return None

    def _forget_background(self, future: Future) -> None:
        with self._items_lock:
            self._background.discard(future)

    def _on_connectivity_change(self, online: bool) -> None:
        if online and self.queue_length > 0:
            self.schedule_drain()

    def wait_for_background(self, timeout: Optional[float] = None) -> bool:
        """Block until scheduled drains finish. Returns False on timeout."""
        with self._items_lock:
            pending = list(self._background)
        if not pending:
            return True
        _, not_done = wait(pending, timeout=timeout)
        return not not_done

    def close(self) -> None:
        """Unsubscribe from the connectivity signal and stop the executor."""
        self._unsubscribe()
        if self._owns_executor:
            self._executor.shutdown(wait=True)
