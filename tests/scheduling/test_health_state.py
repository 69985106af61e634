"""Tests for HealthState, readiness evaluation and cadence stability."""

import threading
from datetime import UTC, datetime, timedelta

import pytest

from cadence.core.scheduling.health import (
    HealthSnapshot,
    HealthState,
    check_tick_interval_stability,
    evaluate_readiness,
)
from cadence.execution.models import RunOutcome, RunRecord


def _run(outcome: RunOutcome, exit_status: int | None = None, tick: int = 1) -> RunRecord:
    return RunRecord(tick=tick, command=["/bin/worker"]).finish(outcome, exit_status=exit_status)


class TestHealthState:
    """Test the shared supervisor health."""

    def test_initial_snapshot(self):
        """A fresh state has no runs and no failures."""
        snap = HealthState().snapshot()
        assert snap == HealthSnapshot()
        assert snap.last_outcome is None
        assert snap.run_active is False

    def test_failure_increments_and_success_resets(self):
        """consecutive_failures grows on failure and resets on success."""
        state = HealthState()
        state.record_run(_run(RunOutcome.NON_ZERO_EXIT, 1))
        state.record_run(_run(RunOutcome.TIMED_OUT))
        assert state.snapshot().consecutive_failures == 2

        snap = state.record_run(_run(RunOutcome.SUCCESS, 0))
        assert snap.consecutive_failures == 0
        assert snap.total_runs == 3
        assert snap.total_failures == 2
        assert snap.last_outcome is RunOutcome.SUCCESS

    @pytest.mark.parametrize("outcome", [RunOutcome.NON_ZERO_EXIT, RunOutcome.TIMED_OUT, RunOutcome.LAUNCH_FAILED])
    def test_every_non_success_counts(self, outcome):
        """All non-success outcomes are failures."""
        state = HealthState()
        state.record_run(_run(outcome))
        assert state.snapshot().consecutive_failures == 1

    def test_skip_does_not_touch_failures(self):
        """Skipped ticks are counted separately from failures."""
        state = HealthState()
        state.record_run(_run(RunOutcome.NON_ZERO_EXIT, 1))
        snap = state.record_skip()
        assert snap.total_skips == 1
        assert snap.last_skip_at is not None
        assert snap.consecutive_failures == 1
        assert snap.total_runs == 1

    def test_record_start_marks_current(self):
        """record_start exposes the in-flight run until it is recorded."""
        state = HealthState()
        record = RunRecord(tick=3, command=["/bin/worker"])
        state.record_start(record)
        assert state.current() is record
        assert state.snapshot().current_run_id == record.run_id
        assert state.snapshot().run_active

        state.record_run(record.finish(RunOutcome.SUCCESS, exit_status=0))
        assert state.current() is None
        assert state.snapshot().run_active is False

    def test_rejects_non_terminal_record(self):
        """Only terminal records can be applied."""
        with pytest.raises(ValueError):
            HealthState().record_run(RunRecord())

    def test_history_is_bounded_and_newest_first(self):
        """History keeps the newest ``history_size`` records."""
        state = HealthState(history_size=3)
        for tick in range(1, 6):
            state.record_run(_run(RunOutcome.SUCCESS, 0, tick=tick))
        assert [r.tick for r in state.history()] == [5, 4, 3]

    def test_snapshots_are_immutable(self):
        """A snapshot taken earlier is not changed by later writes."""
        state = HealthState()
        before = state.snapshot()
        state.record_run(_run(RunOutcome.NON_ZERO_EXIT, 1))
        assert before.consecutive_failures == 0

    def test_concurrent_readers_see_consistent_snapshots(self):
        """Readers on other threads never see a torn snapshot."""
        state = HealthState()
        errors = []
        done = threading.Event()

        def reader():
            while not done.is_set():
                snap = state.snapshot()
                if snap.total_failures > snap.total_runs:
                    errors.append(snap)

        threads = [threading.Thread(target=reader) for _ in range(4)]
        for t in threads:
            t.start()
        for i in range(500):
            state.record_run(_run(RunOutcome.SUCCESS if i % 2 else RunOutcome.NON_ZERO_EXIT, i % 2))
        done.set()
        for t in threads:
            t.join()

        assert errors == []
        assert state.snapshot().total_runs == 500


class TestEvaluateReadiness:
    """Test readiness rules."""

    def test_healthy_before_first_run(self):
        verdict = evaluate_readiness(HealthSnapshot(), failure_threshold=3)
        assert verdict.status == "healthy"
        assert verdict.ready

    def test_degraded_below_threshold(self):
        verdict = evaluate_readiness(HealthSnapshot(consecutive_failures=2), failure_threshold=3)
        assert verdict.status == "degraded"
        assert verdict.ready

    def test_unhealthy_at_threshold(self):
        snap = HealthSnapshot(consecutive_failures=3, last_outcome=RunOutcome.TIMED_OUT)
        verdict = evaluate_readiness(snap, failure_threshold=3)
        assert verdict.status == "unhealthy"
        assert not verdict.ready
        assert "TIMED_OUT" in verdict.reason

    def test_scheduler_stopped(self):
        verdict = evaluate_readiness(HealthSnapshot(), failure_threshold=3, scheduler_running=False)
        assert verdict.status == "unhealthy"
        assert verdict.reason == "scheduler loop is not running"


class TestTickIntervalStability:
    """Test cadence analysis over run start times."""

    def _times(self, offsets: list[float]) -> list[datetime]:
        base = datetime(2026, 1, 1, tzinfo=UTC)
        return [base + timedelta(seconds=s) for s in offsets]

    def test_insufficient_data(self):
        result = check_tick_interval_stability(self._times([0]), expected_interval=300)
        assert result["stable"] is True
        assert result["samples"] == 1

    def test_stable_intervals(self):
        result = check_tick_interval_stability(self._times([0, 300, 600.5, 900]), expected_interval=300)
        assert result["stable"] is True
        assert result["samples"] == 3
        assert result["avg_interval"] == pytest.approx(300, abs=1)

    def test_skipped_tick_is_still_stable(self):
        result = check_tick_interval_stability(self._times([0, 300, 900]), expected_interval=300)
        assert result["stable"] is True
        assert result["max_interval"] == 600

    def test_erratic_intervals(self):
        result = check_tick_interval_stability(self._times([0, 10, 460]), expected_interval=300, tolerance=0.1)
        assert result["stable"] is False
