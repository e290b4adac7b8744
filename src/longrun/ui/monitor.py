"""Read-only terminal dashboard for a running (or finished) harness."""

from __future__ import annotations

import subprocess
import time
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any

from rich.console import Console, Group, RenderableType
from rich.live import Live
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from longrun.core.event_log import event_log_path, iter_records, read_state, state_file_path
from longrun.core.features import (
    FEATURES_FILE,
    FeatureProgress,
    category_progress,
    check_features_progress,
    describe_feature,
    next_feature,
)
from longrun.core.history import History, read_history
from longrun.ui.terminal import (
    STYLE_ERROR_BODY,
    STYLE_OK,
    STYLE_RULE,
    STYLE_THINK_BODY,
    STYLE_TOOL_DETAIL,
    STYLE_TOOL_NAME,
    STYLE_WARN,
)

ACTIVE_SEC = 30
QUIET_SEC = 300
STATE_FRESH_SEC = 120
MAX_ACTIONS = 14
MAX_HISTORY = 8
_GIT_TIMEOUT_SEC = 5


@dataclass(slots=True)
class GitInfo:
    commits: int = 0
    last_message: str = ""
    dirty_files: int = 0


@dataclass(slots=True)
class Snapshot:
    """Everything the dashboard shows, gathered in one pass over the files."""

    project_dir: Path
    taken_at: float
    log_age: float | None = None
    state_age: float | None = None
    state: dict[str, Any] = field(default_factory=dict)
    records: list[dict[str, Any]] = field(default_factory=list)
    progress: FeatureProgress = field(default_factory=FeatureProgress)
    categories: dict[str, FeatureProgress] = field(default_factory=dict)
    target: str = ""
    history: History = field(default_factory=History)
    git: GitInfo = field(default_factory=GitInfo)

    @property
    def activity(self) -> str:
        """complete / active / quiet / stale / idle."""
        if self.history.completed:
            return "complete"
        if self.log_age is None:
            return "idle"
        if self.log_age < ACTIVE_SEC:
            return "active"
        if self.log_age < QUIET_SEC:
            return "quiet"
        return "stale"

    @property
    def tokens(self) -> tuple[int, int]:
        """Session totals: the terminal result if present, else assistant sums."""
        for record in reversed(self.records):
            if record.get("type") == "result":
                return _int(record.get("input_tokens")), _int(record.get("output_tokens"))
        tokens_in = tokens_out = 0
        for record in self.records:
            if record.get("type") == "assistant":
                tokens_in += _int(record.get("input_tokens"))
                tokens_out += _int(record.get("output_tokens"))
        return tokens_in, tokens_out

    @property
    def elapsed(self) -> float | None:
        """Seconds from the first record to now (or to the last record when stale)."""
        if not self.records:
            return None
        first = _parse_ts(self.records[0].get("ts"))
        if first is None:
            return None
        end = datetime.now()
        if self.activity in ("stale", "complete"):
            end = _parse_ts(self.records[-1].get("ts")) or end
        return max((end - first).total_seconds(), 0.0)

    @property
    def tokens_per_minute(self) -> int:
        elapsed = self.elapsed
        if not elapsed:
            return 0
        return int(sum(self.tokens) * 60 / elapsed)


def _int(value: Any) -> int:
    return value if isinstance(value, int) and not isinstance(value, bool) and value > 0 else 0


def _parse_ts(value: Any) -> datetime | None:
    if not isinstance(value, str):
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        return None


def _file_age(path: Path, now: float) -> float | None:
    try:
        return max(now - path.stat().st_mtime, 0.0)
    except OSError:
        return None


def _git(project_dir: Path, *args: str) -> str | None:
    try:
        proc = subprocess.run(
            ["git", "-C", str(project_dir), *args],
            capture_output=True, text=True, timeout=_GIT_TIMEOUT_SEC, check=False,
        )
    except (OSError, subprocess.SubprocessError):
        return None
    return proc.stdout.strip() if proc.returncode == 0 else None


def read_git_info(project_dir: Path) -> GitInfo:
    if not (project_dir / ".git").exists():
        return GitInfo()
    count = _git(project_dir, "rev-list", "--count", "HEAD")
    status = _git(project_dir, "status", "--porcelain") or ""
    return GitInfo(
        commits=int(count) if count and count.isdigit() else 0,
        last_message=_git(project_dir, "log", "--format=%s", "-1") or "",
        dirty_files=len([ln for ln in status.splitlines() if ln.strip()]),
    )


def build_snapshot(project_dir: str | Path, now: float | None = None) -> Snapshot:
    """Collect dashboard data. Never writes anything in *project_dir*."""
    root = Path(project_dir)
    now = time.time() if now is None else now
    snap = Snapshot(project_dir=root, taken_at=now)

    log_path = event_log_path(root)
    snap.records = list(iter_records(log_path))
    if snap.records:
        snap.log_age = _file_age(log_path, now)

    snap.state_age = _file_age(state_file_path(root), now)
    if snap.state_age is not None and snap.state_age < STATE_FRESH_SEC:
        snap.state = read_state(root)

    features = root / FEATURES_FILE
    snap.progress = check_features_progress(features)
    snap.categories = category_progress(features)
    if (target := next_feature(features)) is not None:
        snap.target = describe_feature(target)

    snap.history = read_history(root)
    snap.git = read_git_info(root)
    return snap


# ── Rendering ────────────────────────────────────────────────────────────────

_ACTIVITY_STYLES = {
    "complete": ("✓ COMPLETE", STYLE_OK),
    "active": ("● ACTIVE", STYLE_OK),
    "quiet": ("◐ QUIET", STYLE_WARN),
    "stale": ("✗ STALE", STYLE_ERROR_BODY),
    "idle": ("○ IDLE", STYLE_TOOL_DETAIL),
}


def format_duration(seconds: float) -> str:
    s = int(seconds)
    if s < 60:
        return f"{s}s"
    if s < 3600:
        return f"{s // 60}m{s % 60}s"
    return f"{s // 3600}h{s % 3600 // 60}m"


def format_tokens(count: int) -> str:
    if count >= 1_000_000:
        return f"{count / 1_000_000:.1f}M"
    if count >= 1_000:
        return f"{count / 1_000:.1f}K"
    return str(count)


def _bar(passed: int, total: int, width: int = 30) -> Text:
    if total <= 0:
        return Text("·" * width, style="dim")
    filled = passed * width // total
    bar = Text("█" * filled, style=STYLE_OK)
    bar.append("·" * (width - filled), style="dim")
    return bar


def format_action(record: dict[str, Any]) -> Text | None:
    """One dashboard line for an event record, or None if it is not shown."""
    ts = str(record.get("ts", ""))[-8:]
    line = Text(f"{ts} ", style="dim")
    kind = record.get("type")
    if kind == "assistant":
        if thinking := record.get("thinking"):
            line.append(f"🧠 {str(thinking)[:80]}", style=STYLE_THINK_BODY)
        elif detail := record.get("detail") or record.get("tools"):
            line.append(f"⚡ {str(detail)[:75]}", style=STYLE_TOOL_NAME)
        elif text := record.get("text"):
            line.append(f"💬 {str(text)[:70]}")
        else:
            return None
    elif kind == "tool_result":
        result = str(record.get("result", ""))[:60]
        if record.get("error") in (True, "true"):
            line.append(f"✗ {result}", style=STYLE_ERROR_BODY)
        else:
            line.append(f"→ {result}", style="dim")
    elif kind == "result":
        counts = f"(in:{_int(record.get('input_tokens'))} out:{_int(record.get('output_tokens'))})"
        if record.get("is_error") is True:
            line.append(f"✗ Error {counts}", style=STYLE_ERROR_BODY)
        else:
            line.append(f"✓ Done {counts}", style=STYLE_OK)
    else:
        return None
    return line


def _status_section(snap: Snapshot) -> RenderableType:
    label, style = _ACTIVITY_STYLES[snap.activity]
    line = Text(f"  {label}", style=style)
    if snap.log_age is not None:
        line.append(f"  last event {format_duration(snap.log_age)} ago", style="dim")
    rows: list[RenderableType] = [line]

    st = snap.state
    if st:
        if thinking := st.get("thinking"):
            rows.append(Text(f"    🧠 {str(thinking)[:75]}", style=STYLE_THINK_BODY))
        if tool := st.get("tool"):
            now_line = Text(f"    ⚡ {tool} ", style=STYLE_TOOL_NAME)
            now_line.append(str(st.get("detail", ""))[:55], style=STYLE_TOOL_DETAIL)
            rows.append(now_line)
        if result := st.get("result"):
            err = st.get("error") in (True, "true")
            rows.append(Text(
                f"    {'✗' if err else '→'} {str(result)[:70]}",
                style=STYLE_ERROR_BODY if err else STYLE_OK,
            ))
    if snap.target:
        rows.append(Text.assemble(("  Target  ", "bold"), (snap.target[:62], STYLE_WARN)))
    return Group(*rows)


def _tokens_section(snap: Snapshot) -> RenderableType:
    tbl = Table.grid(padding=(0, 2))
    if not snap.records:
        tbl.add_row("Session", Text("no data", style="dim"))
    else:
        tokens_in, tokens_out = snap.tokens
        tbl.add_row(
            "Session",
            f"↓{format_tokens(tokens_in)} in  ↑{format_tokens(tokens_out)} out  "
            f"Σ{format_tokens(tokens_in + tokens_out)}",
        )
        elapsed = snap.elapsed
        tbl.add_row(
            "Rate",
            f"{format_tokens(snap.tokens_per_minute)}/min  {len(snap.records)} events"
            + (f"  {format_duration(elapsed)} elapsed" if elapsed is not None else ""),
        )
    if snap.history.entries:
        tbl.add_row(
            "Total",
            f"{len(snap.history.entries)} sessions  "
            f"{format_duration(snap.history.total_duration)}",
        )
    return tbl


def _features_section(snap: Snapshot) -> RenderableType:
    p = snap.progress
    if p.total == 0:
        return Text("features.json: no data", style="dim")
    head = _bar(p.passed, p.total, 35)
    head.append(f"  {p.passed}/{p.total}  {p.percent}%")
    tbl = Table.grid(padding=(0, 2))
    for name, cat in snap.categories.items():
        icon = "✓" if cat.complete else ("◐" if cat.passed else "○")
        tbl.add_row(f"{icon} {name}", f"{cat.passed}/{cat.total}")
    return Group(head, tbl)


def _git_section(snap: Snapshot) -> RenderableType:
    g = snap.git
    line = Text.assemble(
        ("commits:", "dim"), (str(g.commits), "bold"),
        ("  uncommitted:", "dim"), (str(g.dirty_files), STYLE_WARN),
    )
    return Group(line, Text(f"last: {(g.last_message or '-')[:58]}", style="dim"))


def _actions_section(snap: Snapshot) -> RenderableType:
    lines = [t for t in (format_action(r) for r in snap.records) if t is not None]
    if not lines:
        return Text("no data", style="dim")
    return Group(*lines[-MAX_ACTIONS:])


def _history_section(snap: Snapshot) -> RenderableType:
    entries = snap.history.entries[-MAX_HISTORY:]
    if not entries:
        return Text("no data", style="dim")
    tbl = Table.grid(padding=(0, 2))
    for e in entries:
        if e.total and e.passed >= e.total:
            icon = Text("✓", style=STYLE_OK)
        elif e.passed:
            icon = Text("◐", style=STYLE_WARN)
        else:
            icon = Text("○", style=STYLE_ERROR_BODY)
        tbl.add_row(
            icon, f"S{e.session}", format_duration(e.duration), f"{e.passed}/{e.total}",
            Text(e.status, style="dim"),
        )
    return tbl


def render_dashboard(snap: Snapshot) -> RenderableType:
    """Turn a snapshot into a single rich renderable."""

    def section(title: str, body: RenderableType) -> Panel:
        return Panel(body, title=title, title_align="left", border_style=STYLE_RULE)

    clock = datetime.fromtimestamp(snap.taken_at).strftime("%H:%M:%S")
    footer = Text.assemble(
        ("model:", "dim"), (snap.history.model or "?", STYLE_TOOL_NAME),
        ("  dir:", "dim"), (str(snap.project_dir), "dim"),
    )
    return Group(
        Panel(
            _status_section(snap),
            title=f"longrun monitor  {clock}",
            title_align="left",
            border_style=STYLE_TOOL_NAME,
        ),
        section("Tokens", _tokens_section(snap)),
        section("Features", _features_section(snap)),
        section("Git", _git_section(snap)),
        section("Actions", _actions_section(snap)),
        section("History", _history_section(snap)),
        footer,
    )


def run_monitor(
    project_dir: str | Path,
    *,
    refresh: float = 10.0,
    once: bool = False,
    console: Console | None = None,
) -> None:
    """Show the dashboard, refreshing every *refresh* seconds until Ctrl-C."""
    console = console or Console()
    if once:
        console.print(render_dashboard(build_snapshot(project_dir)))
        return
    with Live(
        render_dashboard(build_snapshot(project_dir)),
        console=console,
        screen=False,
        auto_refresh=False,
    ) as live:
        try:
            while True:
                time.sleep(refresh)
                live.update(render_dashboard(build_snapshot(project_dir)), refresh=True)
        except KeyboardInterrupt:
            pass
