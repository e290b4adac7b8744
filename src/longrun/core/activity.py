"""Last-activity timestamp shared by the drain loop and the watchdog."""

from __future__ import annotations

import threading
import time
from collections.abc import Callable


class ActivityTracker:
    """Records when output was last observed.

    The drain loop is the only writer and the watchdog the only reader. The
    timestamp is a single float, so a plain lock around each access is all the
    coordination needed.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._last_activity = clock()

    def record_activity(self) -> None:
        """Mark that output was observed just now."""
        now = self._clock()
        with self._lock:
            self._last_activity = now

    @property
    def last_activity(self) -> float:
        with self._lock:
            return self._last_activity

    def idle_duration(self, now: float | None = None) -> float:
        """Seconds since the last recorded activity."""
        if now is None:
            now = self._clock()
        return max(0.0, now - self.last_activity)
