"""Process supervisor: lifecycle of exactly one subprocess per session."""

from __future__ import annotations

import asyncio
import logging
import signal
from collections.abc import Callable, Mapping, Sequence

from longrun.core.activity import ActivityTracker
from longrun.core.decoder import decode_line
from longrun.core.event_log import EventLog
from longrun.core.process import ProcessHandle, spawn
from longrun.core.watchdog import DualWatchdog
from longrun.types.config import SessionBudgets
from longrun.types.events import AssistantMessage, Event, TerminalResult
from longrun.types.session import FailureCause, Session, SessionStatus

logger = logging.getLogger(__name__)

EventCallback = Callable[[Event], None]

# Exit statuses our own termination signals produce.
_KILLED_BY_US = frozenset(
    -int(sig) for sig in (signal.SIGTERM, getattr(signal, "SIGKILL", signal.SIGTERM))
)

# Output may keep flowing after exit when a descendant inherited the pipe.
POST_EXIT_DRAIN_SEC = 2.0


def _killed_by_watchdog(returncode: int | None, terminal: TerminalResult | None) -> bool:
    if returncode == 0:
        return False
    if returncode in _KILLED_BY_US:
        return True
    # Exit codes of a killed tree are platform-specific (taskkill exits 1), but
    # a process that ended on its own has already reported its result.
    return terminal is None


def classify(
    *,
    returncode: int | None,
    terminal: TerminalResult | None,
    expiry: FailureCause | None = None,
    cancelled: bool = False,
    spawn_failed: bool = False,
    internal_error: bool = False,
) -> tuple[SessionStatus, FailureCause | None]:
    """Map how a session ended onto a status and cause.

    A watchdog kill only counts when the process was ended by our signal:
    if it finished naturally at the moment its budget ran out, its natural
    result (success or failure) stands.
    """
    if spawn_failed:
        return SessionStatus.FAILURE, FailureCause.SPAWN_ERROR
    if cancelled:
        return SessionStatus.KILLED, FailureCause.CANCELLED
    if internal_error:
        return SessionStatus.FAILURE, FailureCause.INTERNAL_ERROR
    if expiry is not None and _killed_by_watchdog(returncode, terminal):
        return SessionStatus.KILLED, expiry
    if terminal is not None and terminal.is_error:
        return SessionStatus.FAILURE, FailureCause.SUBPROCESS_ERROR
    if returncode is None or returncode < 0:
        return SessionStatus.FAILURE, FailureCause.ABNORMAL_SIGNAL
    if returncode > 0:
        return SessionStatus.FAILURE, FailureCause.NON_ZERO_EXIT
    if terminal is None:
        return SessionStatus.FAILURE, FailureCause.NO_RESULT
    return SessionStatus.SUCCESS, None


class ProcessSupervisor:
    """Spawns the subprocess, drains its output and always tears it down.

    Output lines flow through the activity tracker, then the decoder; decoded
    events are appended to the event log in arrival order. On every exit path
    (normal exit, watchdog kill, cancellation) :meth:`cleanup` stops the
    watchdog, terminates the whole process group, reaps the child and closes
    the log.
    """

    def __init__(
        self,
        session: Session,
        command: Sequence[str],
        budgets: SessionBudgets,
        event_log: EventLog,
        *,
        env: Mapping[str, str] | None = None,
        on_event: EventCallback | None = None,
    ) -> None:
        self._session = session
        self._command = list(command)
        self._budgets = budgets
        self._event_log = event_log
        self._env = env
        self._on_event = on_event
        self._tracker = ActivityTracker()
        self._watchdog = DualWatchdog(self._tracker, budgets)
        self._handle: ProcessHandle | None = None
        self._terminal: TerminalResult | None = None
        self._assistant_tokens = [0, 0]
        self._cancelled = False
        self._spawn_failed = False
        self._internal_error = False
        self._cleaned_up = False
        self._post_exit_drain = max(POST_EXIT_DRAIN_SEC, budgets.drain_interval)

    @property
    def session(self) -> Session:
        return self._session

    @property
    def watchdog(self) -> DualWatchdog:
        return self._watchdog

    @property
    def tracker(self) -> ActivityTracker:
        return self._tracker

    @property
    def handle(self) -> ProcessHandle | None:
        return self._handle

    @property
    def cleaned_up(self) -> bool:
        return self._cleaned_up

    async def run(self) -> Session:
        """Supervise the subprocess until it exits or is killed.

        Cancellation is recorded and re-raised after cleanup has finished.
        """
        try:
            try:
                self._session.working_dir.mkdir(parents=True, exist_ok=True)
                self._event_log.open()
            except OSError as exc:
                logger.error("cannot open event log %s: %s", self._event_log.path, exc)
                self._internal_error = True
                return self._session
            try:
                self._handle = await spawn(
                    self._command, cwd=self._session.working_dir, env=self._env,
                )
            except (OSError, ValueError) as exc:
                logger.error("failed to start %s: %s", self._command[0], exc)
                self._spawn_failed = True
                return self._session
            self._watchdog.start(self._handle)
            await self._drain(self._handle)
            # wait() also waits for the pipe to close, which a surviving
            # grandchild can hold open; only needed when EOF came first.
            if not self._handle.exited:
                await self._handle.wait()
        except asyncio.CancelledError:
            self._cancelled = True
            logger.warning("session cancelled, cleaning up")
            raise
        finally:
            await self.cleanup()
            self._finish()
        return self._session

    async def cleanup(self) -> None:
        """Stop the watchdog, kill the process group, reap, close the log.

        Idempotent; repeated calls re-signal an already empty group, which is
        a no-op.
        """
        await self._watchdog.stop()
        if self._handle is not None:
            await self._handle.terminate_tree(self._budgets.grace_period)
            await self._handle.reap()
        try:
            self._event_log.close()
        except OSError as exc:
            logger.error("failed to close event log %s: %s", self._event_log.path, exc)
            self._internal_error = True
        self._cleaned_up = True

    async def _drain(self, handle: ProcessHandle) -> None:
        """Read output until EOF, or until the process has exited and a
        whole drain interval passed without new output.

        Once the process has exited, draining stops after the post-exit
        window even if descendants keep writing; cleanup then kills them.
        """
        stream = handle.stdout
        loop = asyncio.get_running_loop()
        exited_at: float | None = None
        while True:
            if handle.exited:
                if exited_at is None:
                    exited_at = loop.time()
                elif loop.time() - exited_at > self._post_exit_drain:
                    logger.warning(
                        "output still arriving %.1fs after pid %d exited; "
                        "a descendant holds the pipe, stopping",
                        self._post_exit_drain, handle.pid,
                    )
                    return
            try:
                raw = await asyncio.wait_for(
                    stream.readline(), timeout=self._budgets.drain_interval,
                )
            except TimeoutError:
                if handle.exited:
                    return
                continue
            except ValueError:
                # Line longer than the stream limit; it has been discarded.
                self._tracker.record_activity()
                continue
            if not raw:
                return
            self._tracker.record_activity()
            self._handle_line(raw.decode("utf-8", errors="replace"))

    def _handle_line(self, line: str) -> None:
        line = line.strip()
        if not line:
            return
        event = decode_line(line)
        if event is None:
            return
        self._record(event)
        self._session.event_count += 1
        match event:
            case AssistantMessage():
                self._assistant_tokens[0] += event.input_tokens
                self._assistant_tokens[1] += event.output_tokens
            case TerminalResult():
                self._terminal = event
        if self._on_event is not None:
            try:
                self._on_event(event)
            except Exception as exc:
                # Callback errors never end the session.
                logger.warning("event callback failed: %s: %s", type(exc).__name__, exc)

    def _record(self, event: Event) -> None:
        """Append to the event log; after a write error, keep draining without it."""
        if self._internal_error:
            return
        try:
            self._event_log.append(event)
        except OSError as exc:
            logger.error("event log write failed, no longer logging: %s", exc)
            self._internal_error = True

    def _finish(self) -> None:
        session = self._session
        session.exit_code = self._handle.returncode if self._handle else None
        if self._terminal is not None:
            session.input_tokens = self._terminal.input_tokens
            session.output_tokens = self._terminal.output_tokens
        else:
            session.input_tokens, session.output_tokens = self._assistant_tokens
        session.status, session.cause = classify(
            returncode=session.exit_code,
            terminal=self._terminal,
            expiry=self._watchdog.expiry,
            cancelled=self._cancelled,
            spawn_failed=self._spawn_failed,
            internal_error=self._internal_error,
        )
        logger.info(
            "session finished: %s%s (exit=%s, in=%d, out=%d, events=%d)",
            session.status.value,
            f" ({session.cause.value})" if session.cause else "",
            session.exit_code, session.input_tokens, session.output_tokens,
            session.event_count,
        )
