"""Subprocess spawning in an isolated process group, and tree termination."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import signal
import subprocess
import sys
from collections.abc import Mapping, Sequence
from pathlib import Path

logger = logging.getLogger(__name__)

# Stream-json lines can carry whole file contents; asyncio's default is 64 KiB.
STREAM_LIMIT = 8 * 1024 * 1024

_IS_WINDOWS = sys.platform == "win32"
_GROUP_POLL_SEC = 0.05
_REAP_TIMEOUT_SEC = 5.0


class ProcessHandle:
    """A running subprocess together with its process group.

    Only the supervisor holds a handle; it is used for reading output,
    checking liveness and delivering signals to the whole tree.
    """

    def __init__(self, process: asyncio.subprocess.Process, pgid: int | None) -> None:
        self._process = process
        self._pgid = pgid
        self._terminations = 0

    @property
    def pid(self) -> int:
        return self._process.pid

    @property
    def pgid(self) -> int | None:
        return self._pgid

    @property
    def stdout(self) -> asyncio.StreamReader:
        assert self._process.stdout is not None
        return self._process.stdout

    @property
    def returncode(self) -> int | None:
        return self._process.returncode

    @property
    def exited(self) -> bool:
        return self._process.returncode is not None

    @property
    def terminations(self) -> int:
        """How many times :meth:`terminate_tree` has run."""
        return self._terminations

    async def wait(self) -> int:
        return await self._process.wait()

    async def terminate_tree(self, grace_period: float = 1.0) -> None:
        """Gracefully, then forcefully, terminate the subprocess and descendants.

        Safe to call any number of times and after the tree is already gone.
        """
        self._terminations += 1
        if _IS_WINDOWS:
            await self._terminate_windows(grace_period)
        elif self._pgid is not None:
            await self._terminate_group(self._pgid, grace_period)
        else:
            await self._terminate_single(grace_period)

    async def reap(self, timeout: float = _REAP_TIMEOUT_SEC) -> int | None:
        """Collect the exit status; gives up after *timeout* seconds."""
        try:
            return await asyncio.wait_for(self._process.wait(), timeout=timeout)
        except TimeoutError:
            logger.debug("pid %d not reaped within %.1fs", self.pid, timeout)
            return self._process.returncode

    # -- POSIX --------------------------------------------------------------

    async def _terminate_group(self, pgid: int, grace_period: float) -> None:
        if not _signal_group(pgid, signal.SIGTERM):
            return
        loop = asyncio.get_running_loop()
        deadline = loop.time() + grace_period
        while loop.time() < deadline:
            if not _group_alive(pgid):
                return
            await asyncio.sleep(_GROUP_POLL_SEC)
        _signal_group(pgid, signal.SIGKILL)

    async def _terminate_single(self, grace_period: float) -> None:
        if self.exited:
            return
        with contextlib.suppress(ProcessLookupError):
            self._process.terminate()
        try:
            await asyncio.wait_for(self._process.wait(), timeout=grace_period)
        except TimeoutError:
            with contextlib.suppress(ProcessLookupError):
                self._process.kill()

    # -- Windows ------------------------------------------------------------

    async def _terminate_windows(self, grace_period: float) -> None:
        if self.exited:
            return
        with contextlib.suppress(OSError):
            os.kill(self.pid, signal.CTRL_BREAK_EVENT)  # type: ignore[attr-defined]
        try:
            await asyncio.wait_for(self._process.wait(), timeout=grace_period)
            return
        except TimeoutError:
            pass
        try:
            killer = await asyncio.create_subprocess_exec(
                "taskkill", "/T", "/F", "/PID", str(self.pid),
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.DEVNULL,
            )
            await killer.wait()
        except OSError as exc:
            logger.debug("taskkill failed for pid %d: %s", self.pid, exc)


def _signal_group(pgid: int, sig: signal.Signals) -> bool:
    """Send *sig* to every process in the group. False if the group is gone."""
    try:
        os.killpg(pgid, sig)
    except ProcessLookupError:
        return False
    except PermissionError as exc:
        logger.debug("killpg(%d, %s) refused: %s", pgid, sig.name, exc)
        return False
    logger.debug("sent %s to process group %d", sig.name, pgid)
    return True


def _group_alive(pgid: int) -> bool:
    try:
        os.killpg(pgid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True


async def spawn(
    command: Sequence[str],
    *,
    cwd: str | Path,
    env: Mapping[str, str] | None = None,
) -> ProcessHandle:
    """Start *command* as the leader of a new process group.

    stdout and stderr share one pipe; stdin is closed.
    """
    kwargs: dict[str, object] = {}
    if _IS_WINDOWS:
        kwargs["creationflags"] = subprocess.CREATE_NEW_PROCESS_GROUP  # type: ignore[attr-defined]
    else:
        kwargs["start_new_session"] = True

    process = await asyncio.create_subprocess_exec(
        *command,
        stdin=asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.STDOUT,
        cwd=str(cwd),
        env=dict(env) if env is not None else None,
        limit=STREAM_LIMIT,
        **kwargs,
    )
    # With start_new_session the child is the leader, so its pgid is its pid.
    pgid = None if _IS_WINDOWS else process.pid
    logger.info("spawned pid=%d pgid=%s in %s", process.pid, pgid, cwd)
    return ProcessHandle(process, pgid)
