"""Prompt templates shipped with the package."""

from __future__ import annotations

from importlib import resources
from pathlib import Path

INITIALIZER = "initializer"
CODING = "coding"

_PLACEHOLDERS = ("{{GOAL}}", "{{PROJECT_DIR}}")


class PromptNotFoundError(LookupError):
    """Raised for an unknown prompt template name."""


def prompt_names() -> list[str]:
    root = resources.files("longrun") / "prompts"
    return sorted(
        entry.name.removesuffix(".md")
        for entry in root.iterdir()
        if entry.name.endswith(".md")
    )


def load_template(name: str) -> str:
    resource = resources.files("longrun") / "prompts" / f"{name}.md"
    if not resource.is_file():
        raise PromptNotFoundError(f"no prompt template named {name!r}")
    return resource.read_text(encoding="utf-8")


def render_prompt(name: str, goal: str, project_dir: str | Path) -> str:
    """Load a template and fill in the goal and project directory."""
    goal_ph, dir_ph = _PLACEHOLDERS
    return (
        load_template(name)
        .replace(goal_ph, goal)
        .replace(dir_ph, str(project_dir))
    )
