"""
Recurring background sweep owned by the cache service lifecycle.
"""
import logging
import threading
from typing import Callable, Optional

logger = logging.getLogger("cache.sweeper")


class PeriodicSweeper:
    """
    Calls `sweep_fn` every `interval` seconds on a daemon thread until stopped.

    Usage:
        sweeper = PeriodicSweeper(600, cache.sweep)
        sweeper.start()
        ...
        sweeper.stop()
    """

    def __init__(self, interval: float, sweep_fn: Callable[[], int]):
        self.interval = interval
        self._sweep_fn = sweep_fn
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self.runs = 0

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.interval <= 0:
            logger.info("Periodic sweep disabled (interval <= 0)")
            return
        if self.is_running:
            return
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._run,
            name="cache-sweeper",
            daemon=True,
        )
        self._thread.start()
        logger.debug(f"Periodic sweep started every {self.interval}s")

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None

    def _run(self) -> None:
        # wait() returns True once stop() is called
        while not self._stop.wait(self.interval):
            try:
                removed = self._sweep_fn()
                self.runs += 1
                if removed:
                    logger.info(f"Periodic sweep removed {removed} expired entries")
            except Exception as e:
                logger.error(f"Periodic sweep failed: {e}")
