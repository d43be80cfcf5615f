"""
Pending-change reconciliation with the server.
"""
import logging
import threading
import time
from concurrent.futures import Executor, Future, ThreadPoolExecutor, wait
from datetime import datetime, timezone
from typing import Any, Callable, List, Optional, Set

from ..network import NetworkMonitor
from ..storage import KeyValueStore
from .models import PendingChange, SyncResult
from .persistence import RecordList, load_value, save_value

logger = logging.getLogger("offline.sync")

SyncFunction = Callable[[List[PendingChange]], Any]


class OfflineSyncCoordinator:
    """
    Accumulates local changes for one sync key and hands them to a sync
    function as a batch.

    The batch is cleared and the last-sync time recorded only when the sync
    function succeeds. A sync runs automatically when connectivity returns
    and when the first change is added while online. Changes left over
    after a sync, or a sync refused because another was running, trigger
    a follow-up sync.
    """

    def __init__(
        self,
        sync_key: str,
        sync_function: SyncFunction,
        store: KeyValueStore,
        monitor: NetworkMonitor,
        executor: Optional[Executor] = None,
        auto_sync: bool = True,
    ):
        self.sync_key = sync_key
        self._sync_function = sync_function
        self._store = store
        self._monitor = monitor
        self._auto_sync = auto_sync

        self._records = RecordList(store, f"teampulse_pending_{sync_key}", PendingChange)
        self._last_sync_key = f"teampulse_last_sync_{sync_key}"
        self._pending: List[PendingChange] = self._records.load()
        self._last_sync: Optional[str] = load_value(store, self._last_sync_key)
        self._pending_lock = threading.Lock()

        self._is_syncing = False
        self._resync_requested = False
        self._sync_guard = threading.Lock()

        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(
            max_workers=1,
            thread_name_prefix=f"offline-sync-{sync_key}",
        )
        self._background: Set[Future] = set()
        self._unsubscribe = monitor.subscribe(self._on_connectivity_change)

    @property
    def pending_changes(self) -> List[PendingChange]:
        with self._pending_lock:
            return [change.model_copy() for change in self._pending]

    @property
    def has_pending_changes(self) -> bool:
        with self._pending_lock:
            return bool(self._pending)

    @property
    def last_sync_timestamp(self) -> Optional[str]:
        return self._last_sync

    @property
    def is_syncing(self) -> bool:
        return self._is_syncing

    def add_pending_change(self, payload: Any) -> str:
        """Record a change; returns its id."""
        change = PendingChange(payload=payload)
        with self._pending_lock:
            was_empty = not self._pending
            self._pending.append(change)
            self._records.save(self._pending)

        logger.debug(f"[{self.sync_key}] pending change {change.id}")
        if self._auto_sync and was_empty and self._monitor.is_online:
            self.schedule_sync()
        return change.id

    def sync(self, force: bool = False) -> bool:
        """
        Send the pending changes to the sync function.

        Returns:
            True on success or when there was nothing to send; False when
            offline, already syncing, or the sync function failed
        """
        if not self._monitor.is_online:
            return False

        with self._sync_guard:
            if self._is_syncing:
                self._resync_requested = True
                return False
            with self._pending_lock:
                batch = list(self._pending)
            if not force and not batch:
                return True
            self._is_syncing = True

        succeeded = False
        try:
            try:
                result = SyncResult.coerce(self._sync_function(batch))
            except Exception as e:
                logger.error(f"[{self.sync_key}] Sync failed: {e}")
                return False

            if not result.success:
                logger.warning(f"[{self.sync_key}] Sync failed: {result.error or 'unknown error'}")
                return False

            sent = {change.id for change in batch}
            with self._pending_lock:
                self._pending = [c for c in self._pending if c.id not in sent]
                self._records.save(self._pending)
            self._last_sync = datetime.now(timezone.utc).isoformat()
            save_value(self._store, self._last_sync_key, self._last_sync)
            logger.info(f"[{self.sync_key}] Data synced successfully ({len(batch)} changes)")
            succeeded = True
            return True
        finally:
            with self._sync_guard:
                self._is_syncing = False
                resync = self._resync_requested
                self._resync_requested = False
            if (succeeded or resync) and self._should_auto_sync():
                self.schedule_sync()

    def schedule_sync(self, force: bool = False) -> Optional[Future]:
        """Run sync() on the executor without blocking the caller."""
        try:
            future = self._executor.submit(self._background_sync, force)
        except RuntimeError as e:
            logger.warning(f"[{self.sync_key}] Sync not scheduled: {e}")
            return None
        with self._pending_lock:
            self._background.add(future)
        future.add_done_callback(self._forget_background)
        return future

    def _background_sync(self, force: bool) -> bool:
        try:
            return self.sync(force)
        except Exception as e:
            logger.error(f"[{self.sync_key}] Background sync failed: {e}")
            return False

    def _forget_background(self, future: Future) -> None:
        with self._pending_lock:
            self._background.discard(future)

    def _should_auto_sync(self) -> bool:
        return self._auto_sync and self._monitor.is_online and self.has_pending_changes

    def _on_connectivity_change(self, online: bool) -> None:
        if online and self._should_auto_sync():
            self.schedule_sync()

    def wait_for_background(self, timeout: Optional[float] = None) -> bool:
        """
        Block until scheduled syncs, including follow-ups they schedule,
        finish. Returns False on timeout.
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        while True:
            with self._pending_lock:
                pending = list(self._background)
            if not pending:
                return True
            remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
            _, not_done = wait(pending, timeout=remaining)
            if not_done:
                return False

    def close(self) -> None:
        self._unsubscribe()
        if self._owns_executor:
            self._executor.shutdown(wait=True)
