"""Harness log: a plain-text record of every session in a project."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path

from longrun.core.features import FeatureProgress

logger = logging.getLogger(__name__)

HISTORY_FILE = "longrun-log.txt"
COMPLETED_MARKER = "completed"

_SESSION_RE = re.compile(r"^--- Session (\d+) \[([^\]]*)\] ---$")
_FEATURES_RE = re.compile(r"^(\d+)/(\d+)")


def history_path(project_dir: str | Path) -> Path:
    return Path(project_dir) / HISTORY_FILE


def _utc_now() -> str:
    return datetime.now(UTC).strftime("%Y-%m-%dT%H:%M:%SZ")


@dataclass(slots=True)
class HistoryEntry:
    session: int
    timestamp: str = ""
    status: str = ""
    duration: int = 0
    passed: int = 0
    total: int = 0

    @property
    def ok(self) -> bool:
        return self.status == "success"


@dataclass(slots=True)
class History:
    goal: str = ""
    started: str = ""
    model: str = ""
    entries: list[HistoryEntry] = field(default_factory=list)
    completed: bool = False

    @property
    def total_duration(self) -> int:
        return sum(e.duration for e in self.entries)


class HistoryLog:
    """Writer for the harness log of one project directory."""

    def __init__(self, project_dir: str | Path) -> None:
        self._path = history_path(project_dir)

    @property
    def path(self) -> Path:
        return self._path

    def start(self, goal: str, model: str) -> None:
        """Begin a fresh log (overwrites any previous run's log)."""
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._path.write_text(
            "=== Longrun Log ===\n"
            f"Goal: {goal}\n"
            f"Started: {_utc_now()}\n"
            f"Model: {model}\n",
            encoding="utf-8",
        )

    def record_session(
        self,
        number: int,
        status: str,
        duration: float,
        progress: FeatureProgress,
    ) -> None:
        self._append(
            f"\n--- Session {number} [{_utc_now()}] ---\n"
            f"Status: {status}\n"
            f"Duration: {int(duration)}s\n"
            f"Features: {progress.passed}/{progress.total} passing\n"
        )

    def mark_completed(self) -> None:
        self._append(f"{COMPLETED_MARKER}\n")

    def _append(self, text: str) -> None:
        with open(self._path, "a", encoding="utf-8") as f:
            f.write(text)


def read_history(project_dir: str | Path) -> History:
    """Parse the harness log; an empty History if it does not exist."""
    history = History()
    try:
        lines = history_path(project_dir).read_text(encoding="utf-8").splitlines()
    except FileNotFoundError:
        return history
    except OSError as exc:
        logger.debug("could not read harness log: %s", exc)
        return history

    current: HistoryEntry | None = None
    for line in lines:
        line = line.rstrip()
        if match := _SESSION_RE.match(line):
            current = HistoryEntry(session=int(match.group(1)), timestamp=match.group(2))
            history.entries.append(current)
            continue
        if line == COMPLETED_MARKER:
            history.completed = True
            continue
        key, sep, value = line.partition(": ")
        if not sep:
            continue
        if current is None:
            match key:
                case "Goal":
                    history.goal = value
                case "Started":
                    history.started = value
                case "Model":
                    history.model = value
            continue
        match key:
            case "Status":
                current.status = value
            case "Duration":
                digits = value.rstrip("s")
                current.duration = int(digits) if digits.isdigit() else 0
            case "Features":
                if m := _FEATURES_RE.match(value):
                    current.passed, current.total = int(m.group(1)), int(m.group(2))
    return history
