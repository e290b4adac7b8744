"""Durable JSONL event log and current-activity snapshot for dashboards."""

from __future__ import annotations

import json
import logging
import os
from collections.abc import Iterator
from datetime import datetime
from pathlib import Path
from typing import IO, Any

from longrun.core.decoder import MAX_DETAIL_CHARS
from longrun.types.events import (
    AssistantMessage,
    Event,
    OtherEvent,
    TerminalResult,
    ToolInvocation,
    ToolResult,
)

logger = logging.getLogger(__name__)

EVENT_LOG_NAME = ".longrun-live.jsonl"
STATE_FILE_NAME = ".longrun-state.json"

_DETAIL_SEPARATOR = " | "
_STATE_DETAIL_CHARS = 200


def event_log_path(project_dir: str | Path) -> Path:
    return Path(project_dir) / EVENT_LOG_NAME


def state_file_path(project_dir: str | Path) -> Path:
    return Path(project_dir) / STATE_FILE_NAME


def _timestamp() -> str:
    return datetime.now().isoformat(timespec="seconds")


def _count(value: Any) -> int:
    try:
        return max(0, int(value or 0))
    except (TypeError, ValueError):
        return 0


def event_to_record(event: Event, ts: str) -> dict[str, Any]:
    """Flatten an event into the on-disk record shape."""
    match event:
        case AssistantMessage():
            return {
                "ts": ts,
                "type": "assistant",
                "text": event.text,
                "tools": event.tool_names,
                "detail": _DETAIL_SEPARATOR.join(
                    inv.summary for inv in event.tool_invocations
                )[:MAX_DETAIL_CHARS],
                "thinking": event.thinking,
                "input_tokens": event.input_tokens,
                "output_tokens": event.output_tokens,
            }
        case ToolResult():
            return {
                "ts": ts,
                "type": "tool_result",
                "result": event.content,
                "error": event.is_error,
            }
        case TerminalResult():
            return {
                "ts": ts,
                "type": "result",
                "is_error": event.is_error,
                "input_tokens": event.input_tokens,
                "output_tokens": event.output_tokens,
            }
        case OtherEvent():
            return {"ts": ts, "type": event.raw_type}
    raise TypeError(f"not an event: {event!r}")


def record_to_event(record: dict[str, Any]) -> Event:
    """Rebuild an event from a record written by :func:`event_to_record`.

    Tool invocations come back with the joined summaries split per tool.
    """
    kind = record.get("type", "")
    if kind == "assistant":
        names = [n for n in str(record.get("tools", "")).split(",") if n]
        details = [d for d in str(record.get("detail", "")).split(_DETAIL_SEPARATOR) if d]
        invocations = tuple(
            ToolInvocation(name=name, summary=details[i] if i < len(details) else name)
            for i, name in enumerate(names)
        )
        return AssistantMessage(
            text=str(record.get("text", "")),
            tool_invocations=invocations,
            thinking=str(record.get("thinking", "")),
            input_tokens=_count(record.get("input_tokens")),
            output_tokens=_count(record.get("output_tokens")),
        )
    if kind == "tool_result":
        return ToolResult(
            content=str(record.get("result", "")),
            is_error=record.get("error") in (True, "true"),
        )
    if kind == "result":
        return TerminalResult(
            is_error=record.get("is_error") is True,
            input_tokens=_count(record.get("input_tokens")),
            output_tokens=_count(record.get("output_tokens")),
        )
    return OtherEvent(raw_type=str(kind))


class EventLog:
    """Append-only JSONL log of decoded events for one session.

    The file is truncated when opened, then only ever appended to, one whole
    line per event, so a concurrent reader sees either a complete record or an
    incomplete trailing line it should ignore. A state snapshot summarising
    the latest activity is rewritten atomically next to it.
    """

    def __init__(self, project_dir: str | Path, *, write_state: bool = True) -> None:
        self._path = event_log_path(project_dir)
        self._state_path = state_file_path(project_dir) if write_state else None
        self._state: dict[str, Any] = {
            "thinking": "", "tool": "", "detail": "", "result": "", "error": False,
        }
        self._count = 0
        self._handle: IO[str] | None = None

    # -- Context manager support ------------------------------------------

    def __enter__(self) -> EventLog:
        self.open()
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def open(self) -> None:
        """Truncate the log (and reset the snapshot) for a new session."""
        if self._handle is not None:
            return
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._handle = open(self._path, "w", encoding="utf-8")  # noqa: SIM115
        self._write_state()

    def close(self) -> None:
        """Flush and close the file handle. Safe to call repeatedly."""
        if self._handle is not None:
            self._handle.flush()
            self._handle.close()
            self._handle = None

    @property
    def path(self) -> Path:
        return self._path

    @property
    def count(self) -> int:
        return self._count

    @property
    def closed(self) -> bool:
        return self._handle is None

    def append(self, event: Event) -> dict[str, Any]:
        """Write one event as a single line and return the record."""
        if self._handle is None:
            raise RuntimeError("event log is not open")
        record = event_to_record(event, _timestamp())
        self._handle.write(json.dumps(record, ensure_ascii=False) + "\n")
        self._handle.flush()
        self._count += 1
        self._update_state(event)
        return record

    # -- State snapshot ---------------------------------------------------

    def _update_state(self, event: Event) -> None:
        if self._state_path is None:
            return
        match event:
            case AssistantMessage():
                if event.thinking:
                    self._state["thinking"] = event.thinking
                if event.tool_invocations:
                    self._state["tool"] = event.tool_names
                    self._state["detail"] = _DETAIL_SEPARATOR.join(
                        inv.summary for inv in event.tool_invocations
                    )[:_STATE_DETAIL_CHARS]
            case ToolResult():
                self._state["result"] = event.content
                self._state["error"] = event.is_error
            case _:
                return
        self._write_state()

    def _write_state(self) -> None:
        if self._state_path is None:
            return
        tmp = self._state_path.with_name(self._state_path.name + ".tmp")
        try:
            tmp.write_text(
                json.dumps({**self._state, "updated_at": _timestamp()}), encoding="utf-8",
            )
            os.replace(tmp, self._state_path)
        except OSError as exc:
            logger.debug("could not write state snapshot %s: %s", self._state_path, exc)


def iter_records(path: str | Path) -> Iterator[dict[str, Any]]:
    """Yield complete records from an event log.

    A missing file yields nothing. Blank lines, malformed lines and a trailing
    line still being written are skipped.
    """
    try:
        with open(path, encoding="utf-8", errors="replace") as f:
            for line in f:
                if not line.endswith("\n"):
                    break  # mid-append
                line = line.strip()
                if not line:
                    continue
                try:
                    record = json.loads(line)
                except ValueError:
                    continue
                if isinstance(record, dict):
                    yield record
    except FileNotFoundError:
        return


def read_events(path: str | Path) -> list[Event]:
    """Load every complete record of an event log as events."""
    return [record_to_event(r) for r in iter_records(path)]


def read_state(project_dir: str | Path) -> dict[str, Any]:
    """Load the activity snapshot; {} when absent or unreadable."""
    try:
        data = json.loads(state_file_path(project_dir).read_text(encoding="utf-8"))
    except (OSError, ValueError):
        return {}
    return data if isinstance(data, dict) else {}
