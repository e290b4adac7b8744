"""Multi-session orchestration: one initializer session, then coding sessions."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any, Protocol

from longrun.core import prompts
from longrun.core.features import (
    FEATURES_FILE,
    FeatureProgress,
    check_features_progress,
    progress_bar,
    validate_artifacts,
)
from longrun.core.history import HistoryLog
from longrun.core.runner import build_command, run_session_async
from longrun.types.config import HarnessConfig
from longrun.types.events import Event
from longrun.types.session import FailureCause, SessionOutcome

logger = logging.getLogger(__name__)

MAX_CONSECUTIVE_FAILURES = 5
BACKOFF_BASE_SEC = 30
BACKOFF_CAP_SEC = 300
# A failure this quick usually means rate limiting or an API error.
QUICK_FAILURE_SEC = 10

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_INTERRUPTED = 130

SessionRunner = Callable[..., Awaitable[SessionOutcome]]


class Reporter(Protocol):
    def print_event(self, event: Event) -> None: ...
    def header(self, title: str) -> None: ...
    def line(self, text: str = "") -> None: ...
    def info(self, text: str) -> None: ...
    def success(self, text: str) -> None: ...
    def warn(self, text: str) -> None: ...
    def error(self, text: str) -> None: ...


def backoff_delay(consecutive_failures: int) -> int:
    return min(BACKOFF_BASE_SEC * consecutive_failures, BACKOFF_CAP_SEC)


class Orchestrator:
    """Drives a project from goal to passing features across many sessions.

    Each session is a fresh subprocess with no memory of earlier ones; all
    continuity lives in the project directory (features.json, the progress
    notes and git history).
    """

    def __init__(
        self,
        config: HarnessConfig,
        reporter: Reporter,
        *,
        runner: SessionRunner = run_session_async,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._config = config
        self._reporter = reporter
        self._runner = runner
        self._sleep = sleep
        self._project_dir = Path(config.project_dir).resolve()
        self._features_path = self._project_dir / FEATURES_FILE
        self._history = HistoryLog(self._project_dir)
        self._sessions_run = 0

    @property
    def project_dir(self) -> Path:
        return self._project_dir

    @property
    def sessions_run(self) -> int:
        """Coding sessions started (the initializer is not counted)."""
        return self._sessions_run

    def progress(self) -> FeatureProgress:
        return check_features_progress(self._features_path)

    async def run(self) -> int:
        """Run the whole harness and return a process exit code."""
        if self._config.dry_run:
            self.print_plan()
            return EXIT_OK

        self._project_dir.mkdir(parents=True, exist_ok=True)
        self._print_banner()
        self._history.start(self._config.goal, self._config.model)

        try:
            if self._config.skip_init:
                code = self._resume()
            else:
                code = await self._initialize()
            if code is not None:
                return code
            interrupted = await self._coding_loop()
        except asyncio.CancelledError:
            task = asyncio.current_task()
            if task is not None:
                task.uncancel()
            interrupted = True

        return self._summarize(interrupted)

    # -- Phases -------------------------------------------------------------

    async def _initialize(self) -> int | None:
        r = self._reporter
        r.header("Phase 1: Initializer Session")
        if not validate_artifacts(self._project_dir):
            r.warn(f"Artifacts already exist in {self._project_dir}")
            r.warn("Use --skip-init to resume, or remove the directory to start fresh.")
            return EXIT_FAILED

        r.info("Starting initializer session...")
        outcome = await self._run_one(prompts.INITIALIZER)
        if outcome.cause is FailureCause.CANCELLED:
            r.warn("Initializer interrupted.")
            return EXIT_INTERRUPTED
        if not outcome.ok:
            r.error(f"Initializer session failed: {outcome.describe()}")
            self._history.record_session(0, outcome.describe(), outcome.duration, FeatureProgress())
            return EXIT_FAILED

        missing = validate_artifacts(self._project_dir)
        if missing:
            r.error("Initializer session completed but artifacts are missing: " + ", ".join(missing))
            return EXIT_FAILED

        progress = self.progress()
        r.success(
            f"Initializer complete. Features: {progress.passed}/{progress.total} "
            f"{progress_bar(progress.passed, progress.total)}"
        )
        self._history.record_session(0, outcome.describe(), outcome.duration, progress)
        return None

    def _resume(self) -> int | None:
        r = self._reporter
        r.info("Skipping initializer (--skip-init)")
        missing = validate_artifacts(self._project_dir)
        if missing:
            r.error(
                f"Cannot skip init: artifacts are missing in {self._project_dir}: "
                + ", ".join(missing)
            )
            return EXIT_FAILED
        progress = self.progress()
        r.info(f"Resuming with {progress.passed}/{progress.total} features passing")
        return None

    async def _coding_loop(self) -> bool:
        """Run coding sessions; True if the loop was interrupted."""
        r = self._reporter
        r.header("Phase 2: Coding Sessions")
        failures = 0
        max_sessions = self._config.max_sessions

        for number in range(1, max_sessions + 1):
            progress = self.progress()
            if progress.complete:
                r.header("ALL FEATURES PASSING!")
                r.success(
                    f"All {progress.total} features are passing after "
                    f"{self._sessions_run} coding sessions."
                )
                self._history.mark_completed()
                return False

            r.header(f"Coding Session {number} / {max_sessions}")
            r.line(
                f"Progress: {progress_bar(progress.passed, progress.total)}  "
                f"({progress.remaining} remaining)"
            )
            r.line()

            self._sessions_run = number
            outcome = await self._run_one(prompts.CODING)
            progress = self.progress()
            self._history.record_session(number, outcome.describe(), outcome.duration, progress)

            if outcome.cause is FailureCause.CANCELLED:
                r.warn(f"Session {number} interrupted.")
                return True

            if outcome.ok:
                failures = 0
            else:
                failures += 1
                r.warn(
                    f"Session {number} ended {outcome.describe()} "
                    f"(duration: {outcome.duration:.0f}s)"
                )
                if failures >= MAX_CONSECUTIVE_FAILURES:
                    r.error(
                        f"{MAX_CONSECUTIVE_FAILURES} consecutive failures. "
                        "Stopping to avoid wasting sessions."
                    )
                    r.error("Check API rate limits or errors, then resume with --skip-init.")
                    return False
                if outcome.duration < QUICK_FAILURE_SEC:
                    delay = backoff_delay(failures)
                    r.warn(
                        f"Session failed in <{QUICK_FAILURE_SEC}s, likely rate limited. "
                        f"Waiting {delay}s before retry..."
                    )
                    await self._sleep(delay)

            logger.info(
                "session %d: %s in %.0fs, features %d/%d",
                number, outcome.describe(), outcome.duration,
                progress.passed, progress.total,
            )
            r.info(
                f"Session {number} complete in {outcome.duration:.0f}s. "
                f"Features: {progress.passed}/{progress.total} "
                f"{progress_bar(progress.passed, progress.total)}"
            )

        if self.progress().complete:
            self._history.mark_completed()
        return False

    async def _run_one(self, prompt_name: str) -> SessionOutcome:
        cfg = self._config
        task = prompts.render_prompt(prompt_name, cfg.goal, self._project_dir)
        return await self._runner(
            task,
            self._project_dir,
            cfg.budgets,
            model=cfg.model,
            extra_args=cfg.extra_args,
            executable=cfg.executable,
            on_event=self._reporter.print_event,
        )

    # -- Reporting ----------------------------------------------------------

    def _print_banner(self) -> None:
        r = self._reporter
        cfg = self._config
        r.header("Long-Running Agent Harness")
        r.line(f"Goal:         {cfg.goal}")
        r.line(f"Project dir:  {self._project_dir}")
        r.line(f"Max sessions: {cfg.max_sessions}")
        r.line(f"Model:        {cfg.model}")
        r.line()

    def _summarize(self, interrupted: bool) -> int:
        r = self._reporter
        progress = self.progress()
        r.header("Final Summary")
        r.line(
            f"Features passing: {progress.passed} / {progress.total}  "
            f"{progress_bar(progress.passed, progress.total)}"
        )
        r.line(f"Sessions used:    {self._sessions_run}")
        r.line(f"Harness log:      {self._history.path}")
        r.line(f"Project dir:      {self._project_dir}")

        if interrupted:
            r.warn("Interrupted. Resume with --skip-init.")
            return EXIT_INTERRUPTED
        if progress.complete:
            r.success("Project complete!")
            return EXIT_OK
        r.warn(f"Project incomplete. {progress.remaining} features remaining.")
        r.warn(f'Re-run with: longrun run --skip-init -d "{self._project_dir}" "{self._config.goal}"')
        return EXIT_FAILED

    def print_plan(self) -> None:
        """Describe what a real run would do, without touching the project."""
        r = self._reporter
        cfg = self._config
        r.header("DRY RUN")
        r.line(f"Goal:           {cfg.goal}")
        r.line(f"Project dir:    {self._project_dir}")
        r.line(f"Max sessions:   {cfg.max_sessions}")
        r.line(f"Model:          {cfg.model}")
        r.line(f"MCP config:     {cfg.mcp_config or 'none'}")
        r.line(f"Skip init:      {cfg.skip_init}")
        b = cfg.budgets
        r.line(
            f"Budgets:        session {b.session_timeout:g}s, idle {b.idle_timeout:g}s, "
            f"poll {b.poll_interval:g}s"
        )
        r.line()
        if not cfg.skip_init:
            r.line("Step 1: Would run initializer session")
            r.line(f"  Prompt: {prompts.INITIALIZER}")
            r.line("  Creates: init.sh, features.json, claude-progress.txt, .git/")
            r.line()
        r.line(f"Step 2: Would loop up to {cfg.max_sessions} coding sessions")
        r.line(f"  Prompt: {prompts.CODING}")
        r.line("  Each session: pick 1 feature, implement, test, update artifacts, commit")
        r.line()
        command = build_command(cfg.executable or "claude", "<prompt>", model=cfg.model,
                                extra_args=cfg.extra_args)
        r.line("Claude command that would be used:")
        r.line("  " + " ".join(command))
