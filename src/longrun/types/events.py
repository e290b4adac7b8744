"""Decoded stream events emitted by a supervised session."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class ToolInvocation:
    """A tool call requested by the model, rendered as a one-line summary."""

    name: str
    summary: str


@dataclass(frozen=True, slots=True)
class AssistantMessage:
    """Model output: text, thinking and tool invocations of one message."""

    text: str = ""
    tool_invocations: tuple[ToolInvocation, ...] = ()
    thinking: str = ""
    input_tokens: int = 0
    output_tokens: int = 0

    @property
    def tool_names(self) -> str:
        return ",".join(inv.name for inv in self.tool_invocations)


@dataclass(frozen=True, slots=True)
class ToolResult:
    """Result of a tool call, as echoed back by the subprocess."""

    content: str
    is_error: bool = False


@dataclass(frozen=True, slots=True)
class TerminalResult:
    """Final record of a run, carrying cumulative token usage."""

    is_error: bool = False
    input_tokens: int = 0
    output_tokens: int = 0


@dataclass(frozen=True, slots=True)
class OtherEvent:
    """Well-formed record of a kind we do not interpret (system, etc.)."""

    raw_type: str


Event = AssistantMessage | ToolResult | TerminalResult | OtherEvent
