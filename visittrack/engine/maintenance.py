"""
Maintenance Scheduler - runs TieredStore.perform_maintenance in the background.

One pass after `initial_delay` seconds, then one every `interval` seconds,
until stop() is called. A failing pass is logged and the schedule carries on.
"""

import logging
import threading
from typing import Optional

logger = logging.getLogger(__name__)


class MaintenanceScheduler:

    def __init__(self, store, initial_delay: float = 300.0, interval: float = 3600.0):
        self.store = store
        self.initial_delay = initial_delay
        self.interval = interval
        self.passes = 0
        self.failures = 0
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            logger.warning("Maintenance scheduler already running")
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name="visittrack-maintenance", daemon=True)
        self._thread.start()
        logger.info(f"Maintenance scheduled: first pass in {self.initial_delay}s, then every {self.interval}s")

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        logger.info("Maintenance scheduler stopped")

    def run_once(self) -> Optional[dict]:
        """One maintenance pass. Errors are logged, never raised."""
        try:
            result = self.store.perform_maintenance()
            self.passes += 1
            return result
        except Exception as e:
            self.failures += 1
            logger.error(f"Maintenance pass failed: {e}", exc_info=True)
            return None

    def _run(self) -> None:
        # Event.wait returns True once stop() is called
        if self._stop_event.wait(self.initial_delay):
            return
        while True:
            self.run_once()
            if self._stop_event.wait(self.interval):
                return
