"""Decoder for the subprocess's stream-json output, one line at a time."""

from __future__ import annotations

import json
from collections.abc import Callable
from enum import Enum
from typing import Any

from longrun.types.events import (
    AssistantMessage,
    Event,
    OtherEvent,
    TerminalResult,
    ToolInvocation,
    ToolResult,
)

MAX_TEXT_CHARS = 150
MAX_THINKING_CHARS = 500
MAX_DETAIL_CHARS = 250
MAX_COMMAND_CHARS = 120
MAX_RESULT_CHARS = 300

# Cheap substring test run before json.loads; every record carries a "type" key.
_KIND_MARKER = '"type"'


class ToolKind(Enum):
    """Tool kinds with a dedicated summary format."""

    BASH = "Bash"
    READ = "Read"
    EDIT = "Edit"
    WRITE = "Write"
    GREP = "Grep"
    GLOB = "Glob"
    TASK = "Task"
    WEB_FETCH = "WebFetch"
    OTHER = ""

    @classmethod
    def from_name(cls, name: str) -> ToolKind:
        try:
            return cls(name)
        except ValueError:
            return cls.OTHER


def _arg(args: dict[str, Any], key: str, default: str = "") -> str:
    value = args.get(key)
    return value if isinstance(value, str) else default


_FORMATTERS: dict[ToolKind, Callable[[dict[str, Any]], str]] = {
    ToolKind.BASH: lambda a: _arg(a, "command")[:MAX_COMMAND_CHARS],
    ToolKind.READ: lambda a: _arg(a, "file_path"),
    ToolKind.EDIT: lambda a: _arg(a, "file_path"),
    ToolKind.WRITE: lambda a: _arg(a, "file_path"),
    ToolKind.GREP: lambda a: f"{_arg(a, 'pattern')} in {_arg(a, 'path') or '.'}",
    ToolKind.GLOB: lambda a: _arg(a, "pattern"),
    ToolKind.TASK: lambda a: _arg(a, "description"),
    ToolKind.WEB_FETCH: lambda a: _arg(a, "url"),
}


def summarize_tool(name: str, args: dict[str, Any]) -> str:
    """Render a tool call as ``Kind: most relevant argument``.

    Unknown kinds fall back to the bare tool name.
    """
    formatter = _FORMATTERS.get(ToolKind.from_name(name))
    if formatter is None:
        return name[:MAX_DETAIL_CHARS]
    return f"{name}: {formatter(args)}"[:MAX_DETAIL_CHARS]


def decode_line(line: str) -> Event | None:
    """Decode one output line into an Event, or None when it is not a record.

    Never raises: partial and malformed lines are a normal part of a
    streaming run and are dropped.
    """
    if _KIND_MARKER not in line:
        return None
    try:
        data = json.loads(line)
    except (ValueError, RecursionError):
        return None
    if not isinstance(data, dict):
        return None
    kind = data.get("type")
    if not isinstance(kind, str) or not kind:
        return None

    match kind:
        case "assistant":
            return _decode_assistant(data)
        case "user":
            return _decode_user(data)
        case "result":
            return _decode_result(data)
        case _:
            return OtherEvent(raw_type=kind)


def _decode_assistant(data: dict[str, Any]) -> AssistantMessage:
    message = _as_dict(data.get("message"))
    usage = _as_dict(message.get("usage"))

    texts: list[str] = []
    thoughts: list[str] = []
    invocations: list[ToolInvocation] = []
    for block in _content_blocks(message):
        block_type = block.get("type")
        if block_type == "text":
            texts.append(_as_str(block.get("text")))
        elif block_type == "thinking":
            thoughts.append(_as_str(block.get("thinking")))
        elif block_type == "tool_use":
            name = _as_str(block.get("name"))[:MAX_DETAIL_CHARS] or "unknown"
            args = _as_dict(block.get("input"))
            invocations.append(ToolInvocation(name=name, summary=summarize_tool(name, args)))

    return AssistantMessage(
        text=" ".join(texts)[:MAX_TEXT_CHARS],
        tool_invocations=tuple(invocations),
        thinking=" ".join(thoughts)[:MAX_THINKING_CHARS],
        input_tokens=_as_count(usage.get("input_tokens")),
        output_tokens=_as_count(usage.get("output_tokens")),
    )


def _decode_user(data: dict[str, Any]) -> Event:
    message = _as_dict(data.get("message"))
    results = [b for b in _content_blocks(message) if b.get("type") == "tool_result"]
    if not results:
        return OtherEvent(raw_type="user")

    contents = [_result_text(b.get("content"))[:MAX_RESULT_CHARS] for b in results]
    return ToolResult(
        content="\n".join(contents)[:MAX_RESULT_CHARS],
        is_error=any(b.get("is_error") is True for b in results),
    )


def _decode_result(data: dict[str, Any]) -> TerminalResult:
    usage = _as_dict(data.get("usage"))
    return TerminalResult(
        is_error=data.get("is_error") is True,
        input_tokens=_as_count(usage.get("input_tokens")),
        output_tokens=_as_count(usage.get("output_tokens")),
    )


# -- Shape helpers -----------------------------------------------------------


def _as_dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _as_str(value: Any) -> str:
    return value if isinstance(value, str) else ""


def _as_count(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        return 0
    return value


def _content_blocks(message: dict[str, Any]) -> list[dict[str, Any]]:
    content = message.get("content")
    if not isinstance(content, list):
        return []
    return [block for block in content if isinstance(block, dict)]


def _result_text(content: Any) -> str:
    """Flatten tool_result content, which is a string or a list of blocks."""
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for block in content:
            if isinstance(block, dict) and isinstance(block.get("text"), str):
                parts.append(block["text"])
            else:
                parts.append(json.dumps(block, default=str))
        return "\n".join(parts)
    return json.dumps(content, default=str)
