"""
Periodic worker threads for the orchestrator cycles.
"""

import logging
import threading
import time
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class PeriodicWorker:
    """
    Daemon thread calling a function at a fixed interval.

    Usage:
        worker = PeriodicWorker("broadcast", 0.1, orchestrator.broadcast)
        worker.start()
        ...
        worker.stop()

    Notes:
        - Exceptions from the function are logged and the loop continues
        - Interval is measured start-to-start; an overrun skips the wait
    """

    def __init__(self, name: str, interval_s: float, func: Callable[[], object]):
        if interval_s <= 0:
            raise ValueError(f"Interval must be positive: {interval_s}")
        self.name = name
        self.interval_s = interval_s
        self.func = func
        self.runs = 0
        self.failures = 0

        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self):
        if self.is_running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._loop, name=self.name, daemon=True)
        self._thread.start()
        logger.debug("Worker %s started (interval %.3fs)", self.name, self.interval_s)

    def stop(self, timeout: float = 3.0):
        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout=timeout)
            self._thread = None
        logger.debug("Worker %s stopped after %d runs", self.name, self.runs)

    def _loop(self):
        while not self._stop_event.is_set():
            started = time.monotonic()
            try:
                self.func()
            except Exception:
                self.failures += 1
                logger.exception("Worker %s iteration failed", self.name)
            self.runs += 1

            remaining = self.interval_s - (time.monotonic() - started)
            if remaining > 0:
                self._stop_event.wait(remaining)
