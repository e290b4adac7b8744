"""Configuration loading (TOML, env vars, .env)."""

from __future__ import annotations

import dataclasses
import logging
import os
import tomllib
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

from longrun.types.config import DEFAULT_MAX_SESSIONS, DEFAULT_MODEL, SessionBudgets

logger = logging.getLogger(__name__)

# Load .env from current directory (and parents), won't override existing env vars
load_dotenv()

BUDGET_FIELDS = (
    "session_timeout", "idle_timeout", "poll_interval", "drain_interval", "grace_period",
)

# First variable found wins.
_ENV_BUDGETS: dict[str, tuple[str, ...]] = {
    "session_timeout": ("LONGRUN_SESSION_TIMEOUT", "SESSION_TIMEOUT"),
    "idle_timeout": ("LONGRUN_IDLE_TIMEOUT", "IDLE_TIMEOUT"),
    "poll_interval": ("LONGRUN_POLL_INTERVAL",),
}

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def _parse_seconds(raw: Any, source: str) -> float | None:
    if isinstance(raw, bool):
        logger.warning("ignoring %s=%r: expected a number of seconds", source, raw)
        return None
    try:
        value = float(raw)
    except (TypeError, ValueError):
        logger.warning("ignoring %s=%r: expected a number of seconds", source, raw)
        return None
    if value != value or value in (float("inf"), float("-inf")):
        logger.warning("ignoring %s=%r: not a finite number", source, raw)
        return None
    return value


def load_env_config(environ: Mapping[str, str] | None = None) -> dict[str, Any]:
    """Load configuration from environment variables."""
    env = os.environ if environ is None else environ
    config: dict[str, Any] = {}

    for field, names in _ENV_BUDGETS.items():
        for name in names:
            raw = env.get(name)
            if raw is None or not raw.strip():
                continue
            value = _parse_seconds(raw, name)
            if value is not None:
                config[field] = value
            break

    if model := env.get("LONGRUN_MODEL"):
        config["model"] = model
    if level := env.get("LONGRUN_LOG_LEVEL"):
        config["log_level"] = level

    return config


def find_config_file(cwd: str | Path | None = None) -> Path | None:
    """Locate .longrun/config.toml in *cwd*, the current directory, or ~/.longrun/."""
    candidates = []
    if cwd:
        candidates.append(Path(cwd) / ".longrun" / "config.toml")
    candidates.append(Path.cwd() / ".longrun" / "config.toml")
    candidates.append(Path.home() / ".longrun" / "config.toml")

    for path in candidates:
        if path.is_file():
            return path
    return None


def load_toml_config(cwd: str | Path | None = None) -> dict[str, Any]:
    """Load configuration from .longrun/config.toml if it exists."""
    path = find_config_file(cwd)
    if path is None:
        return {}
    try:
        with open(path, "rb") as f:
            return tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError) as exc:
        logger.warning("ignoring unreadable config file %s: %s", path, exc)
        return {}


def load_supervisor_config(cwd: str | Path | None = None) -> dict[str, Any]:
    """Load [supervisor] section from config."""
    section = load_toml_config(cwd).get("supervisor", {})
    return section if isinstance(section, dict) else {}


def load_harness_config(cwd: str | Path | None = None) -> dict[str, Any]:
    """Load [harness] section from config."""
    section = load_toml_config(cwd).get("harness", {})
    return section if isinstance(section, dict) else {}


def resolve_budgets(
    overrides: Mapping[str, float | None] | None = None,
    cwd: str | Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> SessionBudgets:
    """Merge budgets: explicit overrides, then env vars, then TOML, then defaults.

    Values that do not parse are skipped with a warning. A merged set that is
    still invalid (e.g. a non-positive timeout) raises ``ValueError``.
    """
    values: dict[str, float] = {}

    for key, raw in load_supervisor_config(cwd).items():
        if key not in BUDGET_FIELDS:
            logger.warning("ignoring unknown [supervisor] key %r", key)
            continue
        value = _parse_seconds(raw, f"supervisor.{key}")
        if value is not None:
            values[key] = value

    env_config = load_env_config(environ)
    values.update({k: v for k, v in env_config.items() if k in BUDGET_FIELDS})

    for key, value in (overrides or {}).items():
        if value is not None:
            values[key] = float(value)

    return dataclasses.replace(SessionBudgets(), **values)


def resolve_model(
    explicit: str | None = None,
    cwd: str | Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> str:
    """Resolve the model alias from an explicit value, environment, or config file."""
    if explicit:
        return explicit
    if model := load_env_config(environ).get("model"):
        return model
    model = load_harness_config(cwd).get("model")
    if isinstance(model, str) and model:
        return model
    return DEFAULT_MODEL


def resolve_max_sessions(explicit: int | None = None, cwd: str | Path | None = None) -> int:
    if explicit is not None:
        return explicit
    raw = load_harness_config(cwd).get("max_sessions")
    if isinstance(raw, int) and not isinstance(raw, bool) and raw > 0:
        return raw
    if raw is not None:
        logger.warning("ignoring harness.max_sessions=%r: expected a positive integer", raw)
    return DEFAULT_MAX_SESSIONS


def load_log_level(environ: Mapping[str, str] | None = None) -> int:
    """Logging level from LONGRUN_LOG_LEVEL; WARNING when unset or unknown."""
    name = str(load_env_config(environ).get("log_level", "WARNING")).upper()
    if name not in _LOG_LEVELS:
        logger.warning("ignoring LONGRUN_LOG_LEVEL=%r", name)
        name = "WARNING"
    return getattr(logging, name)
