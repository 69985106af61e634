"""Tests for cadence.core.health — models and the health router."""

from __future__ import annotations

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from cadence.core.health import CheckResult, HealthResponse, LivenessResponse, create_health_router
from cadence.core.scheduling.health import HealthState
from cadence.core.scheduling.ticker import FixedRateTicker
from cadence.execution.models import RunOutcome, RunRecord


def _finished(outcome: RunOutcome, exit_status: int | None = None) -> RunRecord:
    return RunRecord(command=["/bin/worker"]).finish(outcome, exit_status=exit_status)


def _client(state: HealthState, threshold: int = 3, running: bool = True) -> TestClient:
    app = FastAPI()
    app.include_router(
        create_health_router(
            "cadence",
            version="0.1.0",
            state=state,
            failure_threshold=threshold,
            scheduler_running=lambda: running,
        )
    )
    return TestClient(app)


# ── Model unit tests ────────────────────────────────────────────────────


class TestModels:
    def test_check_result(self):
        cr = CheckResult(status="degraded", error="1 consecutive failed runs")
        assert cr.details == {}

    def test_health_response_defaults(self):
        hr = HealthResponse(service="cadence", version="0.1.0")
        assert hr.status == "healthy"
        assert hr.uptime_s >= 0
        assert hr.timestamp

    def test_liveness(self):
        assert LivenessResponse().status == "alive"


# ── Router tests ────────────────────────────────────────────────────────


class TestHealthRouter:
    def test_healthy_before_first_run(self):
        resp = _client(HealthState()).get("/health/ready")
        assert resp.status_code == 200
        body = resp.json()
        assert body["status"] == "healthy"
        assert body["service"] == "cadence"
        assert body["checks"]["worker"]["details"]["total_runs"] == 0

    def test_degraded_below_threshold(self):
        state = HealthState()
        state.record_run(_finished(RunOutcome.NON_ZERO_EXIT, 1))
        resp = _client(state).get("/health/ready")
        assert resp.status_code == 200
        assert resp.json()["status"] == "degraded"

    def test_unhealthy_at_threshold(self):
        state = HealthState()
        for _ in range(3):
            state.record_run(_finished(RunOutcome.NON_ZERO_EXIT, 1))
        client = _client(state)

        resp = client.get("/health/ready")
        assert resp.status_code == 503
        body = resp.json()
        assert body["status"] == "unhealthy"
        assert "3 consecutive failed runs" in body["checks"]["worker"]["error"]
        assert client.get("/health").status_code == 503

    def test_recovers_after_success(self):
        state = HealthState()
        for _ in range(3):
            state.record_run(_finished(RunOutcome.TIMED_OUT))
        client = _client(state)
        assert client.get("/health/ready").status_code == 503

        state.record_run(_finished(RunOutcome.SUCCESS, 0))
        resp = client.get("/health/ready")
        assert resp.status_code == 200
        assert resp.json()["status"] == "healthy"

    def test_scheduler_not_running(self):
        resp = _client(HealthState(), running=False).get("/health/ready")
        assert resp.status_code == 503
        checks = resp.json()["checks"]
        assert checks["scheduler"]["status"] == "unhealthy"
        assert checks["worker"]["status"] == "healthy"

    def test_scheduler_details(self):
        ticker = FixedRateTicker(interval_seconds=300)
        app = FastAPI()
        app.include_router(
            create_health_router(
                "cadence",
                version="0.1.0",
                state=HealthState(),
                failure_threshold=3,
                scheduler_details=lambda: ticker.health().to_dict(),
            )
        )
        details = TestClient(app).get("/health").json()["checks"]["scheduler"]["details"]
        assert details["tick_count"] == 0
        assert details["missed_ticks"] == 0
        assert details["interval_seconds"] == 300
        assert details["last_tick"] is None

    @pytest.mark.parametrize("failures", [0, 1, 5])
    def test_liveness_always_ok(self, failures):
        state = HealthState()
        for _ in range(failures):
            state.record_run(_finished(RunOutcome.LAUNCH_FAILED))
        resp = _client(state, running=False).get("/health/live")
        assert resp.status_code == 200
        assert resp.json() == {"status": "alive"}
