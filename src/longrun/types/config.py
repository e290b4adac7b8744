"""Configuration types for longrun."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

DEFAULT_SESSION_TIMEOUT = 3600.0
DEFAULT_IDLE_TIMEOUT = 3600.0
DEFAULT_POLL_INTERVAL = 15.0
DEFAULT_DRAIN_INTERVAL = 0.3
DEFAULT_GRACE_PERIOD = 1.0
DEFAULT_MODEL = "sonnet"
DEFAULT_MAX_SESSIONS = 50


@dataclass(frozen=True, slots=True)
class SessionBudgets:
    """Time budgets enforced on a single supervised session (seconds)."""

    session_timeout: float = DEFAULT_SESSION_TIMEOUT  # wall-clock limit
    idle_timeout: float = DEFAULT_IDLE_TIMEOUT  # limit on silence
    poll_interval: float = DEFAULT_POLL_INTERVAL  # watchdog cadence
    drain_interval: float = DEFAULT_DRAIN_INTERVAL  # wait per empty read
    grace_period: float = DEFAULT_GRACE_PERIOD  # SIGTERM -> SIGKILL delay

    def __post_init__(self) -> None:
        for name in (
            "session_timeout", "idle_timeout", "poll_interval", "drain_interval",
        ):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be > 0, got {getattr(self, name)}")
        if self.grace_period < 0:
            raise ValueError(f"grace_period must be >= 0, got {self.grace_period}")


@dataclass(slots=True)
class HarnessConfig:
    """Configuration for a full multi-session harness run."""

    goal: str
    project_dir: Path
    max_sessions: int = DEFAULT_MAX_SESSIONS
    model: str = DEFAULT_MODEL
    mcp_config: str | None = None
    skip_init: bool = False
    dry_run: bool = False
    executable: str | None = None
    budgets: SessionBudgets = field(default_factory=SessionBudgets)

    @property
    def extra_args(self) -> tuple[str, ...]:
        if self.mcp_config:
            return ("--mcp-config", self.mcp_config)
        return ()
