"""Rich-powered terminal output."""

from __future__ import annotations

from rich.console import Console
from rich.rule import Rule
from rich.text import Text

from longrun.cli.output import (
    ERROR_MESSAGE,
    ERROR_PREVIEW,
    SUCCESS_MESSAGE,
    TEXT_PREVIEW,
    THINK_PREVIEW,
)
from longrun.types.events import (
    AssistantMessage,
    Event,
    OtherEvent,
    TerminalResult,
    ToolInvocation,
    ToolResult,
)

# ── Palette ──────────────────────────────────────────────────────────────────
# A cohesive set of styles used across all output.  Tweak these to re-skin
# the entire terminal experience in one place.

TOOL_ICONS: dict[str, str] = {
    "Bash": "█",       # shell commands
    "Read": "▸",       # file access
    "Write": "▸",
    "Edit": "▸",
    "Glob": "○",       # search
    "Grep": "○",
    "Task": "◆",       # sub-agent, web
    "WebFetch": "◆",
}
DEFAULT_ICON = "▸"

STYLE_TOOL_NAME = "bold #a78bfa"      # violet, primary accent
STYLE_TOOL_DETAIL = "#7c7c8a"         # muted grey
STYLE_TOOL_BASH_CMD = "bold #e2e8f0"  # bright white for shell commands
STYLE_THINK_LABEL = "bold #94a3b8"    # slate
STYLE_THINK_BODY = "dim italic #94a3b8"
STYLE_TEXT_LABEL = "bold #60a5fa"     # blue
STYLE_ERROR_LABEL = "bold #f87171"    # red
STYLE_ERROR_BODY = "#f87171"
STYLE_OK = "bold #34d399"             # green
STYLE_WARN = "bold #fbbf24"           # amber
STYLE_INFO = "bold #60a5fa"
STYLE_HEADER = "bold #e2e8f0"
STYLE_RULE = "#3f3f50"


class RichPrinter:
    """Rich-based printer for session events and harness progress.

    Drop-in replacement for :class:`longrun.cli.output.PlainPrinter`.
    """

    def __init__(self, console: Console | None = None) -> None:
        self._console = console or Console(highlight=False)

    @property
    def console(self) -> Console:
        return self._console

    def print_event(self, event: Event) -> None:
        """Print a decoded event with Rich formatting."""
        match event:
            case AssistantMessage(thinking=thinking, text=text, tool_invocations=invs):
                if thinking:
                    line = Text("[Think] ", style=STYLE_THINK_LABEL)
                    line.append(thinking[:THINK_PREVIEW], style=STYLE_THINK_BODY)
                    self._console.print(line)
                if text:
                    line = Text("[Claude] ", style=STYLE_TEXT_LABEL)
                    line.append(text[:TEXT_PREVIEW])
                    self._console.print(line)
                for inv in invs:
                    self._print_tool(inv)

            case ToolResult(content=content, is_error=True):
                line = Text("    ✗ [Error] ", style=STYLE_ERROR_LABEL)
                line.append(content[:ERROR_PREVIEW], style=STYLE_ERROR_BODY)
                self._console.print(line)

            case TerminalResult(is_error=is_error):
                if is_error:
                    self.error(ERROR_MESSAGE)
                else:
                    self.info(SUCCESS_MESSAGE)

            case ToolResult() | OtherEvent():
                pass  # Quiet on success and bookkeeping events

    def _print_tool(self, inv: ToolInvocation) -> None:
        """Print a tool invocation with icon, styled name, and detail."""
        icon = TOOL_ICONS.get(inv.name, DEFAULT_ICON)
        line = Text()
        line.append(f"  {icon} ", style=STYLE_TOOL_NAME)
        line.append("[Tool] ", style=STYLE_TOOL_NAME)
        prefix = f"{inv.name}: "
        if inv.summary.startswith(prefix):
            line.append(inv.name, style=STYLE_TOOL_NAME)
            line.append("  ")
            detail_style = STYLE_TOOL_BASH_CMD if inv.name == "Bash" else STYLE_TOOL_DETAIL
            line.append(inv.summary[len(prefix):], style=detail_style)
        else:
            line.append(inv.summary or inv.name, style=STYLE_TOOL_NAME)
        self._console.print(line)

    # ── Harness progress ─────────────────────────────────────────────────────

    def header(self, title: str) -> None:
        self._console.print()
        self._console.print(Rule(Text(title, style=STYLE_HEADER), style=STYLE_RULE))
        self._console.print()

    def line(self, text: str = "") -> None:
        self._console.print(Text(text))

    def info(self, text: str) -> None:
        self._console.print(Text.assemble(("[INFO] ", STYLE_INFO), text))

    def success(self, text: str) -> None:
        self._console.print(Text.assemble(("[OK] ", STYLE_OK), text))

    def warn(self, text: str) -> None:
        self._console.print(Text.assemble(("[WARN] ", STYLE_WARN), text))

    def error(self, text: str) -> None:
        self._console.print(Text.assemble(("[ERROR] ", STYLE_ERROR_LABEL), (text, STYLE_ERROR_BODY)))
