"""longrun - supervised long-running claude sessions.

Usage:
    import longrun

    outcome = longrun.run_session("Fix the failing test", "./my-app")
    match outcome.status:
        case longrun.SessionStatus.SUCCESS:
            print(f"Done: {outcome.tokens_out} tokens out")
        case longrun.SessionStatus.KILLED:
            print(f"Killed: {outcome.cause.value}")
"""

from longrun.core.runner import ClaudeNotFoundError, run_session, run_session_async
from longrun.types.config import HarnessConfig, SessionBudgets
from longrun.types.events import (
    AssistantMessage,
    Event,
    OtherEvent,
    TerminalResult,
    ToolInvocation,
    ToolResult,
)
from longrun.types.session import FailureCause, SessionOutcome, SessionStatus

__version__ = "0.1.0"

__all__ = [
    # Core API
    "run_session",
    "run_session_async",
    "ClaudeNotFoundError",
    # Event types
    "AssistantMessage",
    "Event",
    "OtherEvent",
    "TerminalResult",
    "ToolInvocation",
    "ToolResult",
    # Configuration
    "HarnessConfig",
    "SessionBudgets",
    # Outcomes
    "FailureCause",
    "SessionOutcome",
    "SessionStatus",
]
