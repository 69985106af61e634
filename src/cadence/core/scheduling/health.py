"""Supervisor health state and readiness evaluation.

This module holds the only state shared between the scheduler loop and
the HTTP handlers.

┌──────────────────────────────────────────────────────────────────────────────┐
│  SUPERVISOR HEALTH                                                            │
│                                                                               │
│   SchedulerLoop (single writer)          Health handlers (many readers)      │
│        │                                        │                             │
│        │ record_start / record_run / skip       │ snapshot() / history()      │
│        ▼                                        ▼                             │
│   ┌─────────────────────────────────────────────────────────────────┐        │
│   │ HealthState                                                     │        │
│   │   _lock ── guards the swap only                                 │        │
│   │   _snapshot: HealthSnapshot (frozen, replaced wholesale)        │        │
│   │   _history:  deque[RunRecord] (maxlen = history_size)           │        │
│   └─────────────────────────────────────────────────────────────────┘        │
│                                                                               │
│  Readiness:                                                                   │
│   consecutive_failures == 0                 → healthy                         │
│   0 < consecutive_failures < threshold      → degraded (still ready)          │
│   consecutive_failures >= threshold         → unhealthy (503)                 │
│   scheduler not running                     → unhealthy (503)                 │
└──────────────────────────────────────────────────────────────────────────────┘
"""

from __future__ import annotations

import threading
from collections import deque
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from typing import Any, Literal

from cadence.execution.models import RunOutcome, RunRecord

HealthStatus = Literal["healthy", "degraded", "unhealthy"]


@dataclass(frozen=True)
class HealthSnapshot:
    """Point-in-time view of supervisor health. Never mutated."""

    last_outcome: RunOutcome | None = None
    last_finished_at: datetime | None = None
    consecutive_failures: int = 0
    total_runs: int = 0
    total_failures: int = 0
    total_skips: int = 0
    last_skip_at: datetime | None = None
    current_run_id: str | None = None
    current_run_started_at: datetime | None = None

    @property
    def run_active(self) -> bool:
        return self.current_run_id is not None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "last_outcome": self.last_outcome.value if self.last_outcome else None,
            "last_finished_at": self.last_finished_at.isoformat() if self.last_finished_at else None,
            "consecutive_failures": self.consecutive_failures,
            "total_runs": self.total_runs,
            "total_failures": self.total_failures,
            "total_skips": self.total_skips,
            "last_skip_at": self.last_skip_at.isoformat() if self.last_skip_at else None,
            "run_active": self.run_active,
            "current_run_id": self.current_run_id,
            "current_run_started_at": (
                self.current_run_started_at.isoformat() if self.current_run_started_at else None
            ),
        }


@dataclass(frozen=True)
class Readiness:
    """Readiness verdict derived from a snapshot."""

    status: HealthStatus
    reason: str | None = None
    details: dict[str, Any] = field(default_factory=dict)

    @property
    def ready(self) -> bool:
        return self.status != "unhealthy"


class HealthState:
    """Process-wide supervisor health (SupervisorHealth).

    Written only by the scheduler loop; read by any number of request
    handlers. Each write builds a new frozen :class:`HealthSnapshot` and
    swaps it in under a lock, so readers always see a complete record.

    Example:
        >>> state = HealthState(history_size=10)
        >>> state.record_run(record)
        >>> state.snapshot().consecutive_failures
        0
    """

    def __init__(self, history_size: int = 50) -> None:
        self._lock = threading.Lock()
        self._snapshot = HealthSnapshot()
        self._history: deque[RunRecord] = deque(maxlen=history_size)
        self._current: RunRecord | None = None

    # ── Writer side (scheduler loop) ─────────────────────────────────

    def record_start(self, record: RunRecord) -> None:
        """Mark ``record`` as the in-flight run."""
        with self._lock:
            self._current = record
            self._snapshot = replace(
                self._snapshot,
                current_run_id=record.run_id,
                current_run_started_at=record.started_at,
            )

    def record_run(self, record: RunRecord) -> HealthSnapshot:
        """Apply a terminal record and append it to the history.

        Raises:
            ValueError: If the record has no outcome yet.
        """
        if record.outcome is None:
            raise ValueError(f"run {record.run_id} is not terminal")

        with self._lock:
            prev = self._snapshot
            failed = record.outcome.is_failure
            self._snapshot = replace(
                prev,
                last_outcome=record.outcome,
                last_finished_at=record.finished_at,
                consecutive_failures=prev.consecutive_failures + 1 if failed else 0,
                total_runs=prev.total_runs + 1,
                total_failures=prev.total_failures + (1 if failed else 0),
                current_run_id=None,
                current_run_started_at=None,
            )
            self._history.append(record)
            self._current = None
            return self._snapshot

    def record_skip(self) -> HealthSnapshot:
        """Count a tick skipped because a run was still active."""
        with self._lock:
            self._snapshot = replace(
                self._snapshot,
                total_skips=self._snapshot.total_skips + 1,
                last_skip_at=datetime.now(UTC),
            )
            return self._snapshot

    # ── Reader side (health handlers) ────────────────────────────────

    def snapshot(self) -> HealthSnapshot:
        """Return the current snapshot."""
        with self._lock:
            return self._snapshot

    def history(self) -> list[RunRecord]:
        """Terminal runs, newest first."""
        with self._lock:
            return list(reversed(self._history))

    def current(self) -> RunRecord | None:
        """The in-flight run, if any."""
        with self._lock:
            return self._current


def evaluate_readiness(
    snapshot: HealthSnapshot,
    failure_threshold: int,
    scheduler_running: bool = True,
) -> Readiness:
    """Derive readiness from a snapshot.

    Args:
        snapshot: Health snapshot to evaluate
        failure_threshold: Consecutive failures at which the supervisor
            reports unhealthy
        scheduler_running: Whether the scheduler loop is still alive
    """
    details = {
        "consecutive_failures": snapshot.consecutive_failures,
        "failure_threshold": failure_threshold,
        "last_outcome": snapshot.last_outcome.value if snapshot.last_outcome else None,
    }

    if not scheduler_running:
        return Readiness("unhealthy", "scheduler loop is not running", details)

    failures = snapshot.consecutive_failures
    if failures >= failure_threshold:
        return Readiness(
            "unhealthy",
            f"{failures} consecutive failed runs (threshold {failure_threshold}), "
            f"last outcome {details['last_outcome']}",
            details,
        )
    if failures > 0:
        return Readiness(
            "degraded",
            f"{failures} consecutive failed runs (threshold {failure_threshold})",
            details,
        )
    return Readiness("healthy", None, details)


def check_tick_interval_stability(
    tick_times: list[datetime],
    expected_interval: float = 300.0,
    tolerance: float = 0.5,
) -> dict[str, Any]:
    """Analyze spacing between run start times.

    Args:
        tick_times: Run start timestamps, oldest first
        expected_interval: Configured interval in seconds
        tolerance: Acceptable deviation as fraction (0.5 = 50%)

    Returns:
        Analysis result with jitter and stability metrics
    """
    if len(tick_times) < 2:
        return {
            "stable": True,
            "samples": len(tick_times),
            "message": "Insufficient data",
        }

    intervals = []
    for i in range(1, len(tick_times)):
        delta = (tick_times[i] - tick_times[i - 1]).total_seconds()
        intervals.append(delta)

    avg = sum(intervals) / len(intervals)
    variance = sum((x - avg) ** 2 for x in intervals) / len(intervals)
    std_dev = variance ** 0.5

    jitter_pct = (std_dev / expected_interval) * 100

    # skipped ticks make gaps that are whole multiples of the interval
    def _deviation(delta: float) -> float:
        multiple = max(1, round(delta / expected_interval))
        return abs(delta - multiple * expected_interval)

    max_deviation = max(_deviation(x) for x in intervals)
    stable = max_deviation <= expected_interval * tolerance

    return {
        "stable": stable,
        "samples": len(intervals),
        "avg_interval": avg,
        "expected_interval": expected_interval,
        "std_dev": std_dev,
        "jitter_pct": jitter_pct,
        "max_deviation": max_deviation,
        "min_interval": min(intervals),
        "max_interval": max(intervals),
    }
