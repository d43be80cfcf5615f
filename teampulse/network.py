"""
Connectivity signal.

Something outside the data layer (a browser bridge, a health probe, an
operator endpoint) reports "became online" / "became offline"; the fetcher,
offline queue and sync coordinators subscribe to the transitions.
"""
import logging
import threading
from typing import Callable, List

logger = logging.getLogger("network")

Listener = Callable[[bool], None]


class NetworkMonitor:
    """
    Holds the current connectivity state and notifies listeners on transitions.

    Listeners are called with the new state (True = online) outside the
    monitor's lock. A listener that raises is logged and does not prevent
    delivery to the others.
    """

    def __init__(self, online: bool = True):
        self._online = online
        self._listeners: List[Listener] = []
        self._lock = threading.Lock()

    @property
    def is_online(self) -> bool:
        return self._online

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """
        Register `listener`.

        Returns:
            A function that unsubscribes it (safe to call more than once)
        """
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    @property
    def listener_count(self) -> int:
        with self._lock:
            return len(self._listeners)

    def set_online(self, online: bool) -> bool:
        """
        Record a connectivity event.

        Returns:
            True if the state changed and listeners were notified
        """
        with self._lock:
            if self._online == online:
                return False
            self._online = online
            listeners = list(self._listeners)

        logger.info(f"Network became {'online' if online else 'offline'}")
        for listener in listeners:
            try:
                listener(online)
            except Exception as e:
                logger.error(f"Connectivity listener failed: {e}")
        return True

    def mark_online(self) -> bool:
        return self.set_online(True)

    def mark_offline(self) -> bool:
        return self.set_online(False)
