"""Background polling loop with a cooperative stop flag."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable

logger = logging.getLogger(__name__)


class PollingLoop:
    """Runs an action every interval on a dedicated daemon thread.

    The loop waits first, then acts; an exception raised by the action is
    logged and the loop carries on with the next cycle. stop() only sets a flag,
    so an action in flight is allowed to finish.
    """

    def __init__(self, name: str, interval_seconds: float, action: Callable[[], object]) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self._name = name
        self._interval = interval_seconds
        self._action = action
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._cycles = 0

    @property
    def interval(self) -> float:
        return self._interval

    @property
    def cycles(self) -> int:
        """Number of completed cycles, failed ones included."""
        return self._cycles

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.is_running:
            logger.warning("Polling loop %s already running", self._name)
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name=self._name, daemon=True)
        self._thread.start()
        logger.info("Polling loop %s started (interval=%.3fs)", self._name, self._interval)

    def stop(self, timeout: float | None = None) -> None:
        """Ask the loop to exit and wait up to timeout seconds for it."""
        self._stop_event.set()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)
        self._thread = None
        logger.info("Polling loop %s stopped", self._name)

    def _run(self) -> None:
        while not self._stop_event.wait(self._interval):
            try:
                self._action()
            except Exception:
                logger.exception("Polling cycle of %s failed", self._name)
            finally:
                self._cycles += 1
