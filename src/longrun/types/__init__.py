"""Public types for longrun."""

from longrun.types.config import HarnessConfig, SessionBudgets
from longrun.types.events import (
    AssistantMessage,
    Event,
    OtherEvent,
    TerminalResult,
    ToolInvocation,
    ToolResult,
)
from longrun.types.session import FailureCause, Session, SessionOutcome, SessionStatus

__all__ = [
    "AssistantMessage",
    "Event",
    "FailureCause",
    "HarnessConfig",
    "OtherEvent",
    "Session",
    "SessionBudgets",
    "SessionOutcome",
    "SessionStatus",
    "TerminalResult",
    "ToolInvocation",
    "ToolResult",
]
