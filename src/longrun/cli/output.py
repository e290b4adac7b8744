"""Basic text output for non-TTY mode."""

from __future__ import annotations

import sys
from typing import TextIO

from longrun.types.events import AssistantMessage, Event, OtherEvent, TerminalResult, ToolResult

THINK_PREVIEW = 120
TEXT_PREVIEW = 200
ERROR_PREVIEW = 100

SUCCESS_MESSAGE = "Session completed successfully."
ERROR_MESSAGE = "Session ended with error"


def print_event(event: Event, file: TextIO | None = None) -> None:
    """Print a decoded event as a short console annotation."""
    out = file or sys.stdout
    match event:
        case AssistantMessage(thinking=thinking, text=text, tool_invocations=invs):
            if thinking:
                print(f"[Think] {thinking[:THINK_PREVIEW]}", file=out)
            if text:
                print(f"[Claude] {text[:TEXT_PREVIEW]}", file=out)
            if invs:
                detail = " | ".join(inv.summary for inv in invs)
                print(f"[Tool] {detail or event.tool_names}", file=out)
        case ToolResult(content=content, is_error=True):
            print(f"[Error] {content[:ERROR_PREVIEW]}", file=out)
        case ToolResult():
            pass  # Successful results are not echoed
        case TerminalResult(is_error=True):
            print(f"[ERROR] {ERROR_MESSAGE}", file=sys.stderr if file is None else out)
        case TerminalResult():
            print(f"[INFO] {SUCCESS_MESSAGE}", file=out)
        case OtherEvent():
            pass


class PlainPrinter:
    """Uncoloured printer for pipes, CI logs and ``--no-rich``."""

    def __init__(self, file: TextIO | None = None) -> None:
        self._file = file

    @property
    def _out(self) -> TextIO:
        return self._file or sys.stdout

    def print_event(self, event: Event) -> None:
        print_event(event, self._file)

    def header(self, title: str) -> None:
        rule = "=" * 60
        print(f"\n{rule}\n  {title}\n{rule}\n", file=self._out)

    def line(self, text: str = "") -> None:
        print(text, file=self._out)

    def info(self, text: str) -> None:
        print(f"[INFO] {text}", file=self._out)

    def success(self, text: str) -> None:
        print(f"[OK] {text}", file=self._out)

    def warn(self, text: str) -> None:
        print(f"[WARN] {text}", file=self._out)

    def error(self, text: str) -> None:
        print(f"[ERROR] {text}", file=self._file or sys.stderr)
