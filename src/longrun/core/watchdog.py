"""Dual watchdog: wall-clock and idle budgets for one supervised session."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from enum import Enum

from longrun.core.activity import ActivityTracker
from longrun.core.process import ProcessHandle
from longrun.types.config import SessionBudgets
from longrun.types.session import FailureCause

logger = logging.getLogger(__name__)


class WatchdogPhase(Enum):
    IDLE = "idle"
    RUNNING = "running"
    EXPIRED = "expired"
    STOPPED = "stopped"


class DualWatchdog:
    """Background task that kills the process tree when a budget runs out.

    Every ``poll_interval`` seconds it checks, in order: whether the process
    already exited (stop quietly), the total elapsed time against
    ``session_timeout`` and the time since the last output against
    ``idle_timeout``. The first budget to expire triggers a two-phase
    termination of the whole process group. Worst-case overshoot is one
    poll interval.
    """

    def __init__(
        self,
        tracker: ActivityTracker,
        budgets: SessionBudgets,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._tracker = tracker
        self._budgets = budgets
        self._clock = clock
        self._phase = WatchdogPhase.IDLE
        self._expiry: FailureCause | None = None
        self._start_time: float | None = None
        self._task: asyncio.Task[None] | None = None

    @property
    def phase(self) -> WatchdogPhase:
        return self._phase

    @property
    def expiry(self) -> FailureCause | None:
        """Which budget fired, or None if the watchdog never killed anything."""
        return self._expiry

    @property
    def start_time(self) -> float | None:
        return self._start_time

    def start(self, handle: ProcessHandle) -> None:
        """Begin polling *handle* in a background task."""
        if self._phase is not WatchdogPhase.IDLE:
            raise RuntimeError(f"watchdog already {self._phase.value}")
        b = self._budgets
        if b.poll_interval >= min(b.session_timeout, b.idle_timeout):
            logger.warning(
                "poll interval %.1fs is not shorter than the budgets "
                "(session %.1fs, idle %.1fs); expiry may overshoot",
                b.poll_interval, b.session_timeout, b.idle_timeout,
            )
        self._start_time = self._clock()
        self._phase = WatchdogPhase.RUNNING
        self._task = asyncio.create_task(self._run(handle), name="longrun-watchdog")

    def check(self, now: float | None = None) -> FailureCause | None:
        """Return the budget that has expired at *now*, if any."""
        if self._start_time is None:
            return None
        if now is None:
            now = self._clock()
        if now - self._start_time > self._budgets.session_timeout:
            return FailureCause.WALL_CLOCK
        if self._tracker.idle_duration(now) > self._budgets.idle_timeout:
            return FailureCause.IDLE
        return None

    async def stop(self) -> None:
        """Cancel and join the polling task. Idempotent."""
        task, self._task = self._task, None
        if task is not None:
            if not task.done():
                task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception as exc:
                logger.debug("watchdog task failed: %s: %s", type(exc).__name__, exc)
        if self._phase in (WatchdogPhase.IDLE, WatchdogPhase.RUNNING):
            self._phase = WatchdogPhase.STOPPED

    async def _run(self, handle: ProcessHandle) -> None:
        while True:
            await asyncio.sleep(self._budgets.poll_interval)
            if handle.exited:
                self._phase = WatchdogPhase.STOPPED
                return

            now = self._clock()
            cause = self.check(now)
            if cause is None:
                continue

            if cause is FailureCause.WALL_CLOCK:
                logger.warning(
                    "session exceeded %.0fs wall-clock limit, killing pgid=%s",
                    self._budgets.session_timeout, handle.pgid,
                )
            else:
                logger.warning(
                    "no output for %.0fs (limit: %.0fs), killing pgid=%s",
                    self._tracker.idle_duration(now), self._budgets.idle_timeout,
                    handle.pgid,
                )
            self._expiry = cause
            self._phase = WatchdogPhase.EXPIRED
            await handle.terminate_tree(self._budgets.grace_period)
            return
