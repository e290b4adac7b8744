"""features.json progress tracking and project artifact validation."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

FEATURES_FILE = "features.json"
PROGRESS_FILE = "claude-progress.txt"
INIT_SCRIPT = "init.sh"

REQUIRED_FILES = (INIT_SCRIPT, FEATURES_FILE, PROGRESS_FILE)

_UNSET_PRIORITY = 999


@dataclass(frozen=True, slots=True)
class FeatureProgress:
    passed: int = 0
    total: int = 0

    @property
    def remaining(self) -> int:
        return self.total - self.passed

    @property
    def complete(self) -> bool:
        return self.total > 0 and self.passed >= self.total

    @property
    def percent(self) -> int:
        return self.passed * 100 // self.total if self.total else 0


def load_features(path: str | Path) -> list[dict[str, Any]]:
    """Return the feature entries of a features.json; [] when absent or invalid."""
    try:
        data = json.loads(Path(path).read_text(encoding="utf-8"))
    except FileNotFoundError:
        return []
    except (OSError, ValueError) as exc:
        logger.debug("could not read %s: %s", path, exc)
        return []
    features = data.get("features") if isinstance(data, dict) else None
    if not isinstance(features, list):
        return []
    return [f for f in features if isinstance(f, dict)]


def check_features_progress(path: str | Path) -> FeatureProgress:
    features = load_features(path)
    passed = sum(1 for f in features if f.get("passes") is True)
    return FeatureProgress(passed=passed, total=len(features))


def _sort_key(feature: dict[str, Any]) -> tuple[Any, str]:
    priority = feature.get("priority")
    if isinstance(priority, bool) or not isinstance(priority, (int, float)):
        priority = _UNSET_PRIORITY
    return priority, str(feature.get("id", ""))


def next_feature(path: str | Path) -> dict[str, Any] | None:
    """The failing feature with the lowest (priority, id), if any."""
    failing = [f for f in load_features(path) if f.get("passes") is not True]
    if not failing:
        return None
    return min(failing, key=_sort_key)


def describe_feature(feature: dict[str, Any]) -> str:
    """One-line label, e.g. ``F003: User can log in``."""
    label = feature.get("description") or feature.get("name") or "unknown"
    return f"{feature.get('id', '?')}: {label}"


def category_progress(path: str | Path) -> dict[str, FeatureProgress]:
    """Passed/total per category, sorted by category name."""
    counts: dict[str, list[int]] = {}
    for feature in load_features(path):
        bucket = counts.setdefault(str(feature.get("category") or "uncategorized"), [0, 0])
        bucket[1] += 1
        if feature.get("passes") is True:
            bucket[0] += 1
    return {
        name: FeatureProgress(passed=p, total=t)
        for name, (p, t) in sorted(counts.items())
    }


def validate_artifacts(project_dir: str | Path) -> list[str]:
    """Names of the initializer artifacts missing from *project_dir*."""
    root = Path(project_dir)
    missing = [name for name in REQUIRED_FILES if not (root / name).is_file()]
    if not (root / ".git").is_dir():
        missing.append(".git/")
    for name in missing:
        logger.debug("missing artifact: %s", name)
    return missing


def progress_bar(current: int, total: int, width: int = 40) -> str:
    """Render ``[####----] current/total``."""
    if total <= 0:
        return f"[{'-' * width}]  0/0"
    filled = max(0, min(width, current * width // total))
    return f"[{'#' * filled}{'-' * (width - filled)}] {current}/{total}"
