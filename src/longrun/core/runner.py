"""Session runner: one synchronous, fully supervised ``claude`` invocation."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import shutil
import signal
from collections.abc import Callable, Mapping, Sequence
from pathlib import Path

from longrun.core.event_log import EventLog
from longrun.core.supervisor import EventCallback, ProcessSupervisor
from longrun.types.config import DEFAULT_MODEL, SessionBudgets
from longrun.types.session import Session, SessionOutcome

logger = logging.getLogger(__name__)

# Set inside an agent session; its presence blocks nested claude invocations.
_NESTING_GUARD_VARS = ("CLAUDECODE",)


class ClaudeNotFoundError(RuntimeError):
    """Raised when the claude CLI executable cannot be located."""


def resolve_executable(explicit: str | Path | None = None) -> str:
    """Locate the claude CLI, preferring an explicit path."""
    if explicit is not None:
        candidate = Path(explicit)
        if candidate.is_file():
            return str(candidate)
        found = shutil.which(str(explicit))
        if found is None:
            raise ClaudeNotFoundError(f"claude executable not found at {explicit}")
        return found

    binary = shutil.which("claude")
    if binary is None:
        raise ClaudeNotFoundError(
            "claude CLI not found on PATH; install it first: "
            "https://docs.anthropic.com/en/docs/claude-code"
        )
    return binary


def build_command(
    executable: str,
    task: str,
    *,
    model: str = DEFAULT_MODEL,
    extra_args: Sequence[str] = (),
) -> list[str]:
    """Command line for one non-interactive, stream-json session."""
    return [
        executable,
        "-p", task,
        "--model", model,
        "--verbose",
        "--output-format", "stream-json",
        "--dangerously-skip-permissions",
        *extra_args,
    ]


def session_environment(base: Mapping[str, str] | None = None) -> dict[str, str]:
    """Environment for the subprocess: the caller's, minus the nesting guard."""
    env = dict(os.environ if base is None else base)
    for key in _NESTING_GUARD_VARS:
        env.pop(key, None)
    return env


def _install_sigterm_handler(task: asyncio.Task | None) -> Callable[[], None]:
    """Route SIGTERM to *task*.cancel() while a session runs.

    Returns a function restoring the previous state. Does nothing on
    platforms or threads where asyncio cannot install signal handlers, or
    when the application already handles SIGTERM itself.
    """
    if task is None or signal.getsignal(signal.SIGTERM) is not signal.SIG_DFL:
        return lambda: None
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGTERM, task.cancel)
    except (NotImplementedError, RuntimeError, ValueError):
        return lambda: None

    def restore() -> None:
        with contextlib.suppress(NotImplementedError, RuntimeError, ValueError):
            loop.remove_signal_handler(signal.SIGTERM)

    return restore


async def run_session_async(
    task: str,
    working_dir: str | Path,
    budgets: SessionBudgets | None = None,
    *,
    model: str = DEFAULT_MODEL,
    extra_args: Sequence[str] = (),
    executable: str | Path | None = None,
    on_event: EventCallback | None = None,
) -> SessionOutcome:
    """Async form of :func:`run_session`.

    Cancellation of the calling task is absorbed: the subprocess tree is torn
    down and a ``killed (cancelled)`` outcome is returned. Other failures
    inside the session are reported through the outcome as well.
    """
    budgets = budgets or SessionBudgets()
    working = Path(working_dir).resolve()
    command = build_command(
        resolve_executable(executable), task, model=model, extra_args=extra_args,
    )

    session = Session(working_dir=working, task=task)
    event_log = EventLog(working)
    supervisor = ProcessSupervisor(
        session, command, budgets, event_log,
        env=session_environment(),
        on_event=on_event,
    )

    current = asyncio.current_task()
    restore = _install_sigterm_handler(current)
    try:
        await supervisor.run()
    except asyncio.CancelledError:
        if current is not None:
            current.uncancel()
    finally:
        restore()

    assert session.status is not None
    return SessionOutcome(
        status=session.status,
        cause=session.cause,
        tokens_in=session.input_tokens,
        tokens_out=session.output_tokens,
        event_log_path=event_log.path,
        exit_code=session.exit_code,
        duration=session.duration,
        event_count=session.event_count,
    )


def run_session(
    task: str,
    working_dir: str | Path,
    budgets: SessionBudgets | None = None,
    *,
    model: str = DEFAULT_MODEL,
    extra_args: Sequence[str] = (),
    executable: str | Path | None = None,
    on_event: EventCallback | None = None,
) -> SessionOutcome:
    """Run one supervised claude session and block until it is fully torn down.

    Precondition: no other session is running against *working_dir*; the
    event log there is truncated at start.
    """
    return asyncio.run(run_session_async(
        task,
        working_dir,
        budgets,
        model=model,
        extra_args=extra_args,
        executable=executable,
        on_event=on_event,
    ))
