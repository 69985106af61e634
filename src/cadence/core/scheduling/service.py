"""Scheduler loop — fires one worker run per tick, never two at once.

┌──────────────────────────────────────────────────────────────────────────────┐
│  SCHEDULER LOOP                                                               │
│                                                                               │
│   async for tick in ticker.ticks(stop_event):                                │
│       │                                                                       │
│       ├── run slot busy? ──► tick.skipped (log, metric, HealthState)         │
│       │                                                                       │
│       └── slot free ──► create_task(_run_once(tick))                         │
│                            │                                                  │
│                            ├── HealthState.record_start                       │
│                            ├── await WorkerInvocation.run(tick)               │
│                            └── HealthState.record_run + metrics               │
│                                                                               │
│   stop_event set ──► ticker returns ──► drain(grace)                          │
│                                           ├── worker.terminate(grace)         │
│                                           └── await run task (bounded)        │
│                                                                               │
│  Single-slot guard: the active run task IS the slot. A tick that finds it    │
│  busy is skipped, not queued, and skips never count as failures.             │
└──────────────────────────────────────────────────────────────────────────────┘
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any

from cadence.core.logging import get_logger
from cadence.core.scheduling.health import HealthState
from cadence.core.scheduling.ticker import FixedRateTicker
from cadence.core.settings import ScheduleConfig
from cadence.execution.models import RunOutcome, RunRecord
from cadence.execution.worker import WorkerInvocation
from cadence.observability.metrics import SupervisorMetrics

logger = get_logger(__name__)

# Seconds past the shutdown grace to wait for a killed run to record its outcome.
_RECORD_TIMEOUT = 2.0


@dataclass
class SchedulerStats:
    """Counters kept by the loop itself."""

    ticks: int = 0
    runs_started: int = 0
    runs_finished: int = 0
    skipped: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "ticks": self.ticks,
            "runs_started": self.runs_started,
            "runs_finished": self.runs_finished,
            "skipped": self.skipped,
        }


class SchedulerLoop:
    """Drives worker runs on a fixed cadence.

    Args:
        config: Supervisor configuration.
        state: Shared health state; this loop is its only writer.
        metrics: Metrics sink.
        worker: Invocation to use (defaults to one built from ``config``).
    """

    def __init__(
        self,
        config: ScheduleConfig,
        state: HealthState,
        metrics: SupervisorMetrics | None = None,
        worker: WorkerInvocation | None = None,
    ) -> None:
        self._config = config
        self._state = state
        self._metrics = metrics or SupervisorMetrics()
        self._worker = worker or WorkerInvocation(config)
        self._ticker = FixedRateTicker(config.interval_seconds, fire_immediately=config.run_on_start)
        self._active: asyncio.Task[RunRecord] | None = None
        self._stats = SchedulerStats()
        self._running = False

    @property
    def state(self) -> HealthState:
        return self._state

    @property
    def metrics(self) -> SupervisorMetrics:
        return self._metrics

    @property
    def ticker(self) -> FixedRateTicker:
        return self._ticker

    @property
    def stats(self) -> SchedulerStats:
        return self._stats

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def run_active(self) -> bool:
        return self._active is not None and not self._active.done()

    @property
    def current(self) -> RunRecord | None:
        """The in-flight run record, if any."""
        return self._worker.current

    async def run(self, stop_event: asyncio.Event) -> None:
        """Tick until ``stop_event`` is set.

        Returns as soon as the stop event fires; the in-flight run (if any)
        is left to :meth:`drain`.
        """
        self._running = True
        logger.info(
            "scheduler.started",
            interval_seconds=self._config.interval_seconds,
            run_timeout_seconds=self._config.run_timeout_seconds,
            command=self._config.command,
        )
        try:
            async for tick in self._ticker.ticks(stop_event):
                self._on_tick(tick)
        finally:
            self._running = False
            logger.info("scheduler.stopped", **self._stats.to_dict())

    async def drain(self, grace_seconds: float) -> bool:
        """Stop the in-flight run, if any, and wait for its record.

        The worker gets SIGTERM at once and SIGKILL after ``grace_seconds``.

        Returns:
            True if nothing is left running.
        """
        active = self._active
        if active is None or active.done():
            return True

        logger.info("scheduler.draining", grace_seconds=grace_seconds)
        reaped = await self._worker.terminate(grace_seconds)
        try:
            # a run caught mid-spawn escalates on its own once the child exists
            await asyncio.wait_for(asyncio.shield(active), timeout=grace_seconds + _RECORD_TIMEOUT)
        except TimeoutError:
            logger.error("scheduler.drain_timeout", grace_seconds=grace_seconds)
            active.cancel()
            await asyncio.gather(active, return_exceptions=True)
            return False
        return reaped and not self._worker.unreaped

    async def wait_idle(self) -> RunRecord | None:
        """Wait for the in-flight run to finish (used by tests and run-once)."""
        active = self._active
        if active is None:
            return None
        return await asyncio.shield(active)

    def _on_tick(self, tick: int) -> None:
        self._stats.ticks += 1
        if self.run_active:
            self._stats.skipped += 1
            self._state.record_skip()
            self._metrics.record_skip()
            current = self._worker.current
            logger.warning(
                "tick.skipped",
                tick=tick,
                reason="previous run still active",
                active_run_id=current.run_id if current else None,
            )
            return

        self._stats.runs_started += 1
        self._active = asyncio.create_task(self._run_once(tick), name=f"cadence-run-{tick}")

    async def _run_once(self, tick: int) -> RunRecord:
        self._metrics.record_start()
        try:
            record = await self._invoke(tick)
        finally:
            self._stats.runs_finished += 1

        snapshot = self._state.record_run(record)
        self._metrics.record_run(
            record.outcome.value,
            record.duration_seconds,
            snapshot.consecutive_failures,
        )

        log = logger.bind(
            run_id=record.run_id,
            tick=tick,
            outcome=record.outcome.value,
            exit_status=record.exit_status,
            duration_s=record.duration_seconds,
            consecutive_failures=snapshot.consecutive_failures,
        )
        if record.outcome is RunOutcome.SUCCESS:
            log.info("run.finished")
        else:
            log.warning("run.failed", error=record.error)
        return record

    async def _invoke(self, tick: int) -> RunRecord:
        record = self._worker.prepare(tick)
        self._state.record_start(record)
        try:
            return await self._worker.run(tick, record=record)
        except Exception as exc:
            logger.exception("run.crashed", tick=tick, run_id=record.run_id)
            return record.finish(RunOutcome.LAUNCH_FAILED, error=f"internal error: {exc}")
