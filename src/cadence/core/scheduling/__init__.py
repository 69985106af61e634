"""Scheduling package for cadence.

Manifesto:
    A fixed-rate loop has to do more than ``sleep(interval)``. Ticks are
    anchored to the start time so slow runs never drift the cadence, a run
    that is still going when the next tick lands is skipped rather than
    doubled up, and every outcome is folded into a health snapshot that
    the probes can read without waiting on anything.

┌──────────────────────────────────────────────────────────────────────────────┐
│  CADENCE SCHEDULER                                                            │
│                                                                               │
│   FixedRateTicker ──tick──► SchedulerLoop ──run──► WorkerInvocation          │
│                                   │                                           │
│                                   ▼                                           │
│                             HealthState ◄── /health/ready, /runs             │
└──────────────────────────────────────────────────────────────────────────────┘
"""

from cadence.core.scheduling.health import (
    HealthSnapshot,
    HealthState,
    HealthStatus,
    Readiness,
    check_tick_interval_stability,
    evaluate_readiness,
)
from cadence.core.scheduling.service import SchedulerLoop, SchedulerStats
from cadence.core.scheduling.ticker import FixedRateTicker, TickerHealth

__all__ = [
    "FixedRateTicker",
    "HealthSnapshot",
    "HealthState",
    "HealthStatus",
    "Readiness",
    "SchedulerLoop",
    "SchedulerStats",
    "TickerHealth",
    "check_tick_interval_stability",
    "evaluate_readiness",
]
