"""Fixed-rate asyncio ticker.

┌──────────────────────────────────────────────────────────────────────────────┐
│  FIXED-RATE TICKER                                                            │
│                                                                               │
│   start = loop.time()                                                         │
│                                                                               │
│   n = 1, 2, 3 ...                                                             │
│     deadline = start + n * interval                                           │
│     race( stop_event.wait(), sleep until deadline )                           │
│        │                          │                                           │
│        ▼                          ▼                                           │
│      return                     yield n                                       │
│                                                                               │
│   0s        I         2I        3I        4I                                  │
│   │─────────┼─────────┼─────────┼─────────┼──►                                │
│   start     tick 1    tick 2    tick 3    tick 4                              │
│                                                                               │
│  Key Design Decisions:                                                        │
│  1. Deadlines come from the start time, so slow consumers never drift        │
│  2. Stop wins immediately: the wait is a race, not a sleep                   │
│  3. Boundaries missed by a starved loop are counted, never replayed          │
│  4. Tick counting for observable scheduling health                            │
└──────────────────────────────────────────────────────────────────────────────┘
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from cadence.core.errors import SchedulerError
from cadence.core.logging import get_logger

logger = get_logger(__name__)


@dataclass
class TickerHealth:
    """Structured ticker health response."""

    healthy: bool
    tick_count: int = 0
    missed_ticks: int = 0
    last_tick: datetime | None = None
    drift_ms: float | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "healthy": self.healthy,
            "tick_count": self.tick_count,
            "missed_ticks": self.missed_ticks,
            "last_tick": self.last_tick.isoformat() if self.last_tick else None,
            "drift_ms": self.drift_ms,
            **self.extra,
        }


class FixedRateTicker:
    """Yields tick numbers at ``start + n * interval`` until stopped.

    Example:
        >>> ticker = FixedRateTicker(interval_seconds=300)
        >>> async for tick in ticker.ticks(stop_event):
        ...     launch_run(tick)
    """

    def __init__(self, interval_seconds: float, fire_immediately: bool = False) -> None:
        if interval_seconds <= 0:
            raise SchedulerError(f"Ticker interval must be positive, got {interval_seconds}")
        self._interval = interval_seconds
        self._fire_immediately = fire_immediately
        self._tick_count = 0
        self._missed = 0
        self._last_tick: datetime | None = None
        self._last_drift: float | None = None
        self._running = False

    @property
    def interval_seconds(self) -> float:
        return self._interval

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def tick_count(self) -> int:
        """Get number of ticks fired."""
        return self._tick_count

    @property
    def missed_ticks(self) -> int:
        """Boundaries passed while the event loop was starved."""
        return self._missed

    @property
    def last_tick(self) -> datetime | None:
        return self._last_tick

    async def ticks(self, stop_event: asyncio.Event) -> AsyncIterator[int]:
        """Async-iterate tick numbers until ``stop_event`` is set."""
        loop = asyncio.get_running_loop()
        start = loop.time()
        n = 0
        self._running = True
        logger.info("ticker.started", interval_seconds=self._interval)
        try:
            if self._fire_immediately and not stop_event.is_set():
                self._mark(0.0)
                yield 0

            while not stop_event.is_set():
                n += 1
                deadline = start + n * self._interval
                now = loop.time()
                if now - deadline >= self._interval:
                    # starved past whole boundaries; jump to the latest one
                    behind = int((now - deadline) // self._interval)
                    self._missed += behind
                    n += behind
                    deadline = start + n * self._interval
                    logger.warning("ticker.missed", missed=behind)

                if await _wait_stop(stop_event, deadline - loop.time()):
                    return

                self._mark(loop.time() - deadline)
                yield n
        finally:
            self._running = False
            logger.info("ticker.stopped", tick_count=self._tick_count, missed_ticks=self._missed)

    def health(self) -> TickerHealth:
        """Return structured health status."""
        return TickerHealth(
            healthy=self._running,
            tick_count=self._tick_count,
            missed_ticks=self._missed,
            last_tick=self._last_tick,
            drift_ms=self._last_drift * 1000 if self._last_drift is not None else None,
            extra={"interval_seconds": self._interval},
        )

    def _mark(self, drift: float) -> None:
        self._tick_count += 1
        self._last_tick = datetime.now(UTC)
        self._last_drift = drift


async def _wait_stop(stop_event: asyncio.Event, timeout: float) -> bool:
    """Wait up to ``timeout`` seconds; True if the stop event fired."""
    if stop_event.is_set():
        return True
    if timeout <= 0:
        return False
    try:
        await asyncio.wait_for(stop_event.wait(), timeout=timeout)
    except TimeoutError:
        return False
    return True
