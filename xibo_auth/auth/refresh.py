"""Background credential refresh.

A daemon thread renews credentials at 75% of their validity window. The
schedule is recomputed after every run so a refreshed token with a different
lifetime is picked up. Failures are handed to a callback and never escape
the thread.
"""

import logging
import threading
from datetime import timedelta
from typing import Callable

logger = logging.getLogger(__name__)

# Refresh once this fraction of the validity window has elapsed
REFRESH_FRACTION = 0.75

# Never wake more often than this (seconds)
MIN_INTERVAL = 30.0


def refresh_interval(validity: timedelta | float, fraction: float = REFRESH_FRACTION) -> float:
    """Seconds to wait before refreshing a credential valid for ``validity``."""
    seconds = validity.total_seconds() if isinstance(validity, timedelta) else float(validity)
    return max(seconds * fraction, MIN_INTERVAL)


class RefreshTask:
    """Periodically run a refresh callable on a background thread.

    Usage:
        task = RefreshTask(orchestrator.refresh_now, orchestrator.refresh_interval)
        task.start()
        ...
        task.stop()

    Attributes:
        refresh: Callable returning True on success; may raise
        interval: Callable returning the seconds until the next run
        on_failure: Called with the exception (or None) when a run fails
    """

    def __init__(
        self,
        refresh: Callable[[], bool],
        interval: Callable[[], float],
        on_failure: Callable[[Exception | None], None] | None = None,
        name: str = "xibo-auth-refresh",
    ):
        self.refresh = refresh
        self.interval = interval
        self.on_failure = on_failure
        self.name = name
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def run_once(self) -> bool:
        """Run one refresh, absorbing any failure.

        Returns:
            True if the refresh succeeded
        """
        error: Exception | None = None
        try:
            ok = bool(self.refresh())
        except Exception as e:
            logger.warning(f"Background refresh raised: {e}")
            ok = False
            error = e

        if ok:
            logger.debug("Background refresh succeeded")
            return True

        if self.on_failure is not None:
            try:
                self.on_failure(error)
            except Exception as e:
                logger.warning(f"Refresh failure handler raised: {e}")
        return False

    def _run(self) -> None:
        while True:
            try:
                delay = self.interval()
            except Exception as e:
                logger.warning(f"Could not compute refresh interval: {e}")
                delay = MIN_INTERVAL

            logger.debug(f"Next background refresh in {delay:.0f}s")
            if self._stop_event.wait(delay):
                break
            self.run_once()

    def start(self) -> None:
        """Start the background thread (no-op if already running)."""
        if self.is_running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name=self.name, daemon=True)
        self._thread.start()
        logger.debug("Background refresh started")

    def stop(self, timeout: float | None = 5.0) -> None:
        """Signal the thread to stop and wait for it."""
        self._stop_event.set()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)
        self._thread = None
        logger.debug("Background refresh stopped")
