"""End-to-end tests for longrun.core.runner against fake claude scripts."""

from __future__ import annotations

import asyncio
import sys
import time

import pytest

from longrun.core.event_log import read_events
from longrun.core.runner import (
    ClaudeNotFoundError,
    build_command,
    resolve_executable,
    run_session,
    run_session_async,
    session_environment,
)
from longrun.types.config import SessionBudgets
from longrun.types.events import AssistantMessage, TerminalResult, ToolResult
from longrun.types.session import FailureCause, SessionStatus
from tests.conftest import (
    assistant_line,
    pid_alive,
    result_line,
    script_printing,
    tool_result_line,
)

posix_only = pytest.mark.skipif(sys.platform == "win32", reason="POSIX shell scripts")


class TestCommand:
    def test_build_command(self):
        cmd = build_command("/usr/bin/claude", "do it", model="opus",
                            extra_args=("--mcp-config", "mcp.json"))
        assert cmd == [
            "/usr/bin/claude", "-p", "do it", "--model", "opus", "--verbose",
            "--output-format", "stream-json", "--dangerously-skip-permissions",
            "--mcp-config", "mcp.json",
        ]

    def test_default_model(self):
        assert build_command("claude", "t")[4] == "sonnet"

    def test_nesting_guard_removed(self):
        env = session_environment({"CLAUDECODE": "1", "PATH": "/bin"})
        assert env == {"PATH": "/bin"}

    def test_environment_copied(self, monkeypatch):
        monkeypatch.setenv("LONGRUN_MARKER", "x")
        monkeypatch.setenv("CLAUDECODE", "1")
        env = session_environment()
        assert env["LONGRUN_MARKER"] == "x"
        assert "CLAUDECODE" not in env


class TestResolveExecutable:
    def test_explicit_file(self, fake_claude):
        path = fake_claude("exit 0\n")
        assert resolve_executable(path) == str(path)

    def test_missing_explicit(self, tmp_path):
        with pytest.raises(ClaudeNotFoundError):
            resolve_executable(tmp_path / "nope")

    def test_not_on_path(self, tmp_path, monkeypatch):
        monkeypatch.setenv("PATH", str(tmp_path))
        with pytest.raises(ClaudeNotFoundError, match="not found"):
            resolve_executable()

    def test_found_on_path(self, tmp_path, monkeypatch):
        binary = tmp_path / "claude"
        binary.write_text("#!/bin/sh\n")
        binary.chmod(0o755)
        monkeypatch.setenv("PATH", str(tmp_path))
        assert resolve_executable() == str(binary)


@posix_only
class TestRunSession:
    @pytest.mark.asyncio
    async def test_success(self, workdir, fake_claude, fast_budgets):
        script = fake_claude(script_printing([
            assistant_line("hello"),
            result_line(input_tokens=10, output_tokens=2),
        ]))
        outcome = await run_session_async("say hello", workdir, fast_budgets, executable=script)

        assert outcome.status is SessionStatus.SUCCESS
        assert outcome.cause is None
        assert (outcome.tokens_in, outcome.tokens_out) == (10, 2)
        assert outcome.exit_code == 0
        assert outcome.event_log_path == workdir / ".longrun-live.jsonl"
        assert read_events(outcome.event_log_path) == [
            AssistantMessage(text="hello"),
            TerminalResult(input_tokens=10, output_tokens=2),
        ]

    @pytest.mark.asyncio
    async def test_subprocess_error(self, workdir, fake_claude, fast_budgets):
        script = fake_claude(script_printing([result_line(is_error=True)]))
        outcome = await run_session_async("t", workdir, fast_budgets, executable=script)
        assert outcome.status is SessionStatus.FAILURE
        assert outcome.cause is FailureCause.SUBPROCESS_ERROR

    @pytest.mark.asyncio
    async def test_non_zero_exit(self, workdir, fake_claude, fast_budgets):
        script = fake_claude(script_printing([result_line()], after="exit 3"))
        outcome = await run_session_async("t", workdir, fast_budgets, executable=script)
        assert outcome.cause is FailureCause.NON_ZERO_EXIT
        assert outcome.exit_code == 3

    @pytest.mark.asyncio
    async def test_no_result(self, workdir, fake_claude, fast_budgets):
        script = fake_claude(script_printing([assistant_line("bye", output_tokens=4)]))
        outcome = await run_session_async("t", workdir, fast_budgets, executable=script)
        assert outcome.cause is FailureCause.NO_RESULT
        assert outcome.tokens_out == 4

    @pytest.mark.asyncio
    async def test_abnormal_signal(self, workdir, fake_claude, fast_budgets):
        outcome = await run_session_async("t", workdir, fast_budgets,
                                          executable=fake_claude("kill -SEGV $$\n"))
        assert outcome.cause is FailureCause.ABNORMAL_SIGNAL

    @pytest.mark.asyncio
    async def test_idle_kill(self, workdir, fake_claude):
        budgets = SessionBudgets(session_timeout=30, idle_timeout=0.5, poll_interval=0.1,
                                 drain_interval=0.05, grace_period=0.2)
        script = fake_claude(
            "echo '{\"type\": \"system\"}'\necho $$ > pid\nsleep 30\n"
        )
        started = time.monotonic()
        outcome = await run_session_async("t", workdir, budgets, executable=script)

        assert outcome.status is SessionStatus.KILLED
        assert outcome.cause is FailureCause.IDLE
        assert time.monotonic() - started < 5
        assert not pid_alive(int((workdir / "pid").read_text()))

    @pytest.mark.asyncio
    async def test_wall_clock_kill_despite_output(self, workdir, fake_claude):
        budgets = SessionBudgets(session_timeout=1.0, idle_timeout=30, poll_interval=0.1,
                                 drain_interval=0.05, grace_period=0.2)
        script = fake_claude(
            "while true; do echo '{\"type\": \"system\"}'; sleep 0.05; done\n"
        )
        started = time.monotonic()
        outcome = await run_session_async("t", workdir, budgets, executable=script)

        assert outcome.status is SessionStatus.KILLED
        assert outcome.cause is FailureCause.WALL_CLOCK
        assert time.monotonic() - started < 5
        assert outcome.event_count > 0

    @pytest.mark.asyncio
    async def test_sigterm_ignoring_child_is_killed(self, workdir, fake_claude):
        budgets = SessionBudgets(session_timeout=30, idle_timeout=0.3, poll_interval=0.1,
                                 drain_interval=0.05, grace_period=0.3)
        script = fake_claude("trap '' TERM\nwhile true; do sleep 0.1; done\n")
        outcome = await run_session_async("t", workdir, budgets, executable=script)
        assert outcome.cause is FailureCause.IDLE
        assert outcome.exit_code == -9

    @pytest.mark.asyncio
    async def test_background_grandchild_does_not_hang(self, workdir, fake_claude, fast_budgets):
        # The grandchild keeps stdout open after the main process exits.
        script = fake_claude(
            "sleep 30 &\n" + script_printing([result_line(input_tokens=1, output_tokens=1)])
        )
        started = time.monotonic()
        outcome = await run_session_async("t", workdir, fast_budgets, executable=script)
        assert outcome.status is SessionStatus.SUCCESS
        assert time.monotonic() - started < 5

    @pytest.mark.asyncio
    async def test_chatty_grandchild_is_bounded_and_killed(self, workdir, fake_claude,
                                                           fast_budgets):
        # A leftover background job keeps writing to the inherited stdout.
        script = fake_claude(script_printing(
            [result_line(input_tokens=1, output_tokens=1)],
            after="(while true; do echo tick; echo t >> ticks; sleep 0.01; done) &\nexit 0",
        ))
        outcome = await asyncio.wait_for(
            run_session_async("t", workdir, fast_budgets, executable=script), timeout=10,
        )
        assert outcome.status is SessionStatus.SUCCESS
        assert outcome.duration < 6

        ticks = workdir / "ticks"
        await asyncio.sleep(0.2)
        size = ticks.stat().st_size
        await asyncio.sleep(0.3)
        assert ticks.stat().st_size == size

    @pytest.mark.asyncio
    async def test_unwritable_event_log_is_an_outcome(self, workdir, fake_claude, fast_budgets):
        (workdir / ".longrun-live.jsonl").mkdir()
        script = fake_claude(script_printing([result_line()]))
        outcome = await run_session_async("t", workdir, fast_budgets, executable=script)
        assert outcome.status is SessionStatus.FAILURE
        assert outcome.cause is FailureCause.INTERNAL_ERROR
        assert outcome.exit_code is None

    @pytest.mark.asyncio
    async def test_failing_callback_does_not_end_session(self, workdir, fake_claude,
                                                         fast_budgets, caplog):
        script = fake_claude(script_printing([assistant_line("hi"), result_line()]))

        def broken_printer(event):
            raise RuntimeError("printer broke")

        with caplog.at_level("WARNING", logger="longrun.core.supervisor"):
            outcome = await run_session_async("t", workdir, fast_budgets, executable=script,
                                              on_event=broken_printer)
        assert outcome.status is SessionStatus.SUCCESS
        assert outcome.event_count == 2
        assert "printer broke" in caplog.text

    @pytest.mark.asyncio
    async def test_tool_events_reach_callback(self, workdir, fake_claude, fast_budgets):
        script = fake_claude(script_printing([
            assistant_line(tools=[{"name": "Bash", "input": {"command": "make"}}]),
            tool_result_line("make: *** failed", is_error=True),
            result_line(),
        ]))
        seen = []
        await run_session_async("t", workdir, fast_budgets, executable=script,
                                on_event=seen.append)
        assert isinstance(seen[1], ToolResult) and seen[1].is_error
        assert seen[0].tool_invocations[0].summary == "Bash: make"

    @pytest.mark.asyncio
    async def test_caller_cancellation(self, workdir, fake_claude, fast_budgets):
        script = fake_claude("echo $$ > pid\nsleep 30\n")
        task = asyncio.create_task(
            run_session_async("t", workdir, fast_budgets, executable=script)
        )
        for _ in range(50):
            if (workdir / "pid").exists():
                break
            await asyncio.sleep(0.05)
        task.cancel()
        outcome = await task

        assert outcome.status is SessionStatus.KILLED
        assert outcome.cause is FailureCause.CANCELLED
        assert not pid_alive(int((workdir / "pid").read_text()))

    @pytest.mark.asyncio
    async def test_working_dir_created(self, tmp_path, fake_claude, fast_budgets):
        target = tmp_path / "new" / "dir"
        script = fake_claude(script_printing([result_line()]))
        outcome = await run_session_async("t", target, fast_budgets, executable=script)
        assert outcome.ok
        assert target.is_dir()

    @pytest.mark.asyncio
    async def test_event_log_truncated_per_session(self, workdir, fake_claude, fast_budgets):
        first = fake_claude(script_printing([assistant_line("one"), result_line()]))
        second = fake_claude(script_printing([result_line()]))
        await run_session_async("t", workdir, fast_budgets, executable=first)
        outcome = await run_session_async("t", workdir, fast_budgets, executable=second)
        assert read_events(outcome.event_log_path) == [TerminalResult()]


@posix_only
def test_run_session_sync(workdir, fake_claude, fast_budgets):
    script = fake_claude(script_printing([result_line(input_tokens=3, output_tokens=4)]))
    outcome = run_session("t", workdir, fast_budgets, executable=script)
    assert outcome.ok
    assert outcome.describe() == "success"
    assert outcome.duration >= 0
