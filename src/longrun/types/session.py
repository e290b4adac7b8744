"""Session state and outcome types."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path


class SessionStatus(Enum):
    """Terminal status of a supervised session."""

    SUCCESS = "success"
    FAILURE = "failure"
    KILLED = "killed"


class FailureCause(Enum):
    """Why a session did not succeed."""

    WALL_CLOCK = "wall_clock"  # session budget exceeded
    IDLE = "idle"  # no output for the idle budget
    CANCELLED = "cancelled"  # interrupted by the caller
    SUBPROCESS_ERROR = "subprocess_error"  # terminal result flagged as error
    NON_ZERO_EXIT = "non_zero_exit"
    ABNORMAL_SIGNAL = "abnormal_signal"  # killed by a signal we did not send
    NO_RESULT = "no_result"  # exit 0 but no terminal result seen
    SPAWN_ERROR = "spawn_error"
    INTERNAL_ERROR = "internal_error"  # event log or working dir unusable


@dataclass(slots=True)
class Session:
    """Mutable record of one supervised subprocess run.

    Created by the session runner and mutated only by the process supervisor.
    """

    working_dir: Path
    task: str
    started_at: datetime = field(default_factory=datetime.now)
    started_monotonic: float = field(default_factory=time.monotonic)
    status: SessionStatus | None = None
    cause: FailureCause | None = None
    exit_code: int | None = None
    input_tokens: int = 0
    output_tokens: int = 0
    event_count: int = 0

    @property
    def duration(self) -> float:
        return time.monotonic() - self.started_monotonic


@dataclass(frozen=True, slots=True)
class SessionOutcome:
    """What the session runner hands back to its caller."""

    status: SessionStatus
    cause: FailureCause | None
    tokens_in: int
    tokens_out: int
    event_log_path: Path
    exit_code: int | None = None
    duration: float = 0.0
    event_count: int = 0

    @property
    def ok(self) -> bool:
        return self.status is SessionStatus.SUCCESS

    def describe(self) -> str:
        """Short human-readable form, e.g. ``killed (idle)``."""
        if self.cause is None:
            return self.status.value
        return f"{self.status.value} ({self.cause.value})"
