"""Run records and outcomes for worker invocations."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any


def _utcnow() -> datetime:
    return datetime.now(UTC)


def new_run_id() -> str:
    return uuid.uuid4().hex[:12]


class RunOutcome(str, Enum):
    """Terminal outcome of one worker invocation."""

    SUCCESS = "SUCCESS"
    NON_ZERO_EXIT = "NON_ZERO_EXIT"
    TIMED_OUT = "TIMED_OUT"
    LAUNCH_FAILED = "LAUNCH_FAILED"

    @property
    def is_failure(self) -> bool:
        return self is not RunOutcome.SUCCESS


@dataclass
class RunRecord:
    """One worker invocation, from launch to terminal outcome.

    Mutated only by the invocation that owns it. ``finished_at``,
    ``outcome`` and ``exit_status`` stay ``None`` until the run is
    terminal.
    """

    run_id: str = field(default_factory=new_run_id)
    tick: int = 0
    command: list[str] = field(default_factory=list)
    started_at: datetime = field(default_factory=_utcnow)
    finished_at: datetime | None = None
    exit_status: int | None = None
    outcome: RunOutcome | None = None
    pid: int | None = None
    error: str | None = None
    stdout_tail: str = ""
    stderr_tail: str = ""
    interrupted_by_shutdown: bool = False

    @property
    def duration_seconds(self) -> float | None:
        if self.finished_at is None:
            return None
        return (self.finished_at - self.started_at).total_seconds()

    def finish(
        self,
        outcome: RunOutcome,
        *,
        exit_status: int | None = None,
        error: str | None = None,
    ) -> RunRecord:
        """Mark the record terminal. Returns self for chaining."""
        self.outcome = outcome
        self.exit_status = exit_status
        if error is not None:
            self.error = error
        self.finished_at = _utcnow()
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-serializable dictionary."""
        return {
            "run_id": self.run_id,
            "tick": self.tick,
            "command": list(self.command),
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "duration_seconds": self.duration_seconds,
            "exit_status": self.exit_status,
            "outcome": self.outcome.value if self.outcome else None,
            "pid": self.pid,
            "error": self.error,
            "stdout_tail": self.stdout_tail,
            "stderr_tail": self.stderr_tail,
            "interrupted_by_shutdown": self.interrupted_by_shutdown,
        }
