"""Test fixtures: fake claude executables and sub-second budgets."""

from __future__ import annotations

import json
import os
import stat
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest

from longrun.types.config import SessionBudgets


def assistant_line(
    text: str = "",
    *,
    tools: list[dict[str, Any]] | None = None,
    thinking: str = "",
    input_tokens: int = 0,
    output_tokens: int = 0,
) -> str:
    """A stream-json assistant record.

    Each tool: {"name": "Bash", "input": {"command": "ls"}}
    """
    content: list[dict[str, Any]] = []
    if thinking:
        content.append({"type": "thinking", "thinking": thinking})
    if text:
        content.append({"type": "text", "text": text})
    for i, tool in enumerate(tools or []):
        content.append({
            "type": "tool_use", "id": f"tu{i}", "name": tool["name"],
            "input": tool.get("input", {}),
        })
    return json.dumps({
        "type": "assistant",
        "message": {
            "content": content,
            "usage": {"input_tokens": input_tokens, "output_tokens": output_tokens},
        },
    })


def tool_result_line(content: Any, *, is_error: bool = False) -> str:
    return json.dumps({
        "type": "user",
        "message": {"content": [
            {"type": "tool_result", "tool_use_id": "tu0", "content": content,
             "is_error": is_error},
        ]},
    })


def result_line(*, is_error: bool = False, input_tokens: int = 0, output_tokens: int = 0) -> str:
    return json.dumps({
        "type": "result",
        "is_error": is_error,
        "usage": {"input_tokens": input_tokens, "output_tokens": output_tokens},
    })


def script_printing(lines: list[str], *, after: str = "exit 0") -> str:
    """Shell body that prints *lines* verbatim, then runs *after*."""
    return "cat <<'__STREAM__'\n" + "\n".join(lines) + "\n__STREAM__\n" + after + "\n"


FakeClaude = Callable[[str], Path]


@pytest.fixture
def fake_claude(tmp_path: Path) -> FakeClaude:
    """Factory writing an executable ``claude`` stand-in with the given sh body.

    The script ignores its arguments (-p, --model, ...).
    """
    counter = {"n": 0}

    def make(body: str) -> Path:
        counter["n"] += 1
        path = tmp_path / "bin" / f"claude-{counter['n']}"
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text("#!/bin/sh\n" + body)
        path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        return path

    return make


@pytest.fixture
def fast_budgets() -> SessionBudgets:
    return SessionBudgets(
        session_timeout=10.0,
        idle_timeout=10.0,
        poll_interval=0.1,
        drain_interval=0.05,
        grace_period=0.3,
    )


@pytest.fixture
def workdir(tmp_path: Path) -> Path:
    path = tmp_path / "work"
    path.mkdir()
    return path


@pytest.fixture
def project(tmp_path: Path) -> Path:
    """A project directory holding every initializer artifact."""
    path = tmp_path / "project"
    path.mkdir()
    (path / "init.sh").write_text("#!/bin/sh\n")
    (path / "claude-progress.txt").write_text("notes\n")
    (path / ".git").mkdir()
    write_features(path, [False, False])
    return path


def write_features(project_dir: Path, passes: list[bool], categories: list[str] | None = None) -> None:
    features = []
    for i, passed in enumerate(passes, start=1):
        features.append({
            "id": f"F{i:03d}",
            "category": (categories or ["core"] * len(passes))[i - 1],
            "priority": i,
            "description": f"Feature {i}",
            "passes": passed,
        })
    (project_dir / "features.json").write_text(json.dumps({"features": features}))


def pid_alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True
