"""CLI entry point for longrun."""

from __future__ import annotations

import asyncio
import logging
import sys
from collections.abc import Callable
from pathlib import Path
from typing import Any

import click

from longrun import __version__
from longrun.cli.output import PlainPrinter

EXIT_INTERRUPTED = 130


class LongrunGroup(click.Group):
    """Custom group that treats a leading non-subcommand argument as ``run``.

    ``longrun "Build a todo app" -d ./todo`` is shorthand for
    ``longrun run "Build a todo app" -d ./todo``.
    """

    _GROUP_OPTS = {"--help", "-h", "--version"}

    def parse_args(self, ctx: click.Context, args: list[str]) -> list[str]:
        if args and args[0] not in self.commands and args[0] not in self._GROUP_OPTS:
            args = ["run", *args]
        return super().parse_args(ctx, args)


def configure_logging(verbose: bool = False) -> None:
    """Configure root logging once for the whole process."""
    from longrun.core.config import load_log_level

    logging.basicConfig(
        level=logging.DEBUG if verbose else load_log_level(),
        format="[%(asctime)s] [%(levelname)s] %(name)s: %(message)s",
        stream=sys.stderr,
    )


def budget_options(fn: Callable[..., Any]) -> Callable[..., Any]:
    """Shared --session-timeout / --idle-timeout / --poll-interval options."""
    fn = click.option(
        "--poll-interval", type=float, default=None,
        help="Seconds between watchdog checks (default: 15)",
    )(fn)
    fn = click.option(
        "--idle-timeout", type=float, default=None,
        help="Kill a session after this many seconds without output (default: 3600)",
    )(fn)
    fn = click.option(
        "--session-timeout", type=float, default=None,
        help="Kill a session after this many seconds in total (default: 3600)",
    )(fn)
    fn = click.option(
        "--claude", "executable", default=None, envvar="LONGRUN_CLAUDE",
        help="Path to the claude executable (default: found on PATH)",
    )(fn)
    return fn


def _resolve_budgets(project_dir: str | Path | None, **overrides: float | None) -> Any:
    from longrun.core.config import resolve_budgets

    try:
        return resolve_budgets(overrides, cwd=project_dir)
    except ValueError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(2)


def _resolve_executable(explicit: str | None) -> str:
    from longrun.core.runner import ClaudeNotFoundError, resolve_executable

    try:
        return resolve_executable(explicit)
    except ClaudeNotFoundError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)


def _make_printer(rich: bool | None) -> Any:
    # Determine rich mode: explicit flag > TTY auto-detection
    use_rich = rich if rich is not None else sys.stdout.isatty()
    if use_rich:
        from longrun.ui.terminal import RichPrinter

        return RichPrinter()
    return PlainPrinter()


@click.group(cls=LongrunGroup)
@click.version_option(__version__, prog_name="longrun")
def cli() -> None:
    """longrun -- drive claude across many supervised sessions.

    \b
    Usage:
      longrun "Build a REST API for a todo app"
      longrun run -d ./my-app -m 30 "Build a markdown-to-HTML converter"
      longrun run --skip-init -d ./my-app "Continue building the app"
      longrun session "Fix the failing test" -d ./my-app
      longrun monitor ./my-app
      longrun config
    """


@cli.command("run")
@click.argument("goal")
@click.option("--dir", "-d", "project_dir", default="./project", show_default=True,
              help="Working directory for the project")
@click.option("--max-sessions", "-m", type=click.IntRange(min=1), default=None,
              help="Maximum number of coding sessions (default: 50)")
@click.option("--model", "-M", default=None, help="Claude model to use (default: sonnet)")
@click.option("--mcp-config", type=click.Path(dir_okay=False), default=None,
              help="MCP config file to pass to claude")
@click.option("--skip-init", is_flag=True, help="Skip initializer, resume from existing artifacts")
@click.option("--dry-run", is_flag=True, help="Show what would be executed without running")
@budget_options
@click.option("--rich/--no-rich", default=None, help="Rich terminal output (default: auto)")
@click.option("--verbose", "-v", is_flag=True, help="Verbose logging")
def run_cmd(
    goal: str,
    project_dir: str,
    max_sessions: int | None,
    model: str | None,
    mcp_config: str | None,
    skip_init: bool,
    dry_run: bool,
    executable: str | None,
    session_timeout: float | None,
    idle_timeout: float | None,
    poll_interval: float | None,
    rich: bool | None,
    verbose: bool,
) -> None:
    """Build GOAL incrementally: one initializer, then coding sessions."""
    from longrun.core.config import resolve_max_sessions, resolve_model
    from longrun.core.orchestrator import Orchestrator
    from longrun.types.config import HarnessConfig

    configure_logging(verbose)
    if not goal.strip():
        click.echo("Error: empty goal", err=True)
        sys.exit(1)

    budgets = _resolve_budgets(
        project_dir,
        session_timeout=session_timeout,
        idle_timeout=idle_timeout,
        poll_interval=poll_interval,
    )
    config = HarnessConfig(
        goal=goal,
        project_dir=Path(project_dir).resolve(),
        max_sessions=resolve_max_sessions(max_sessions, project_dir),
        model=resolve_model(model, project_dir),
        mcp_config=mcp_config,
        skip_init=skip_init,
        dry_run=dry_run,
        executable=executable if dry_run else _resolve_executable(executable),
        budgets=budgets,
    )

    orchestrator = Orchestrator(config, _make_printer(rich))
    try:
        code = asyncio.run(orchestrator.run())
    except KeyboardInterrupt:
        click.echo("\nInterrupted.", err=True)
        code = EXIT_INTERRUPTED
    sys.exit(code)


@cli.command("session")
@click.argument("task")
@click.option("--dir", "-d", "working_dir", default=".", show_default=True,
              help="Working directory for the session")
@click.option("--model", "-M", default=None, help="Claude model to use (default: sonnet)")
@budget_options
@click.option("--rich/--no-rich", default=None, help="Rich terminal output (default: auto)")
@click.option("--verbose", "-v", is_flag=True, help="Verbose logging")
def session_cmd(
    task: str,
    working_dir: str,
    model: str | None,
    executable: str | None,
    session_timeout: float | None,
    idle_timeout: float | None,
    poll_interval: float | None,
    rich: bool | None,
    verbose: bool,
) -> None:
    """Run TASK as a single supervised session."""
    from longrun.core.config import resolve_model
    from longrun.core.runner import run_session
    from longrun.types.session import FailureCause

    configure_logging(verbose)
    budgets = _resolve_budgets(
        working_dir,
        session_timeout=session_timeout,
        idle_timeout=idle_timeout,
        poll_interval=poll_interval,
    )
    printer = _make_printer(rich)
    try:
        outcome = run_session(
            task,
            working_dir,
            budgets,
            model=resolve_model(model, working_dir),
            executable=_resolve_executable(executable),
            on_event=printer.print_event,
        )
    except KeyboardInterrupt:
        click.echo("\nInterrupted.", err=True)
        sys.exit(EXIT_INTERRUPTED)

    click.echo(f"Status: {outcome.describe()}")
    click.echo(f"Tokens: {outcome.tokens_in:,} in / {outcome.tokens_out:,} out")
    click.echo(f"Duration: {outcome.duration:.1f}s")
    click.echo(f"Event log: {outcome.event_log_path}")
    if outcome.cause is FailureCause.CANCELLED:
        sys.exit(EXIT_INTERRUPTED)
    sys.exit(0 if outcome.ok else 1)


@cli.command("monitor")
@click.argument("project_dir", default="./project",
                type=click.Path(exists=True, file_okay=False))
@click.option("--refresh", type=click.FloatRange(min=0.5), default=10.0, show_default=True,
              help="Seconds between refreshes")
@click.option("--once", is_flag=True, help="Render the dashboard once and exit")
def monitor_cmd(project_dir: str, refresh: float, once: bool) -> None:
    """Live dashboard for a harness working in PROJECT_DIR."""
    from longrun.ui.monitor import run_monitor

    run_monitor(project_dir, refresh=refresh, once=once)


@cli.command("config")
@click.option("--dir", "-d", "project_dir", default=None,
              help="Project directory to search for .longrun/config.toml")
def config_cmd(project_dir: str | None) -> None:
    """Show the effective configuration."""
    from longrun.core.config import (
        find_config_file,
        load_env_config,
        resolve_max_sessions,
        resolve_model,
    )

    budgets = _resolve_budgets(project_dir)
    click.echo("Supervisor:")
    click.echo(f"  session_timeout: {budgets.session_timeout:g}s")
    click.echo(f"  idle_timeout: {budgets.idle_timeout:g}s")
    click.echo(f"  poll_interval: {budgets.poll_interval:g}s")
    click.echo(f"  drain_interval: {budgets.drain_interval:g}s")
    click.echo(f"  grace_period: {budgets.grace_period:g}s")

    click.echo("\nHarness:")
    click.echo(f"  model: {resolve_model(None, project_dir)}")
    click.echo(f"  max_sessions: {resolve_max_sessions(None, project_dir)}")

    click.echo("\nEnvironment:")
    env = load_env_config()
    if env:
        for k, v in sorted(env.items()):
            click.echo(f"  {k}: {v}")
    else:
        click.echo("  (no environment variables set)")

    path = find_config_file(project_dir)
    click.echo(f"\nTOML config: {path if path else '(no config.toml found)'}")


def main() -> None:
    """Entry point."""
    cli()


if __name__ == "__main__":
    main()
