"""Health endpoints for the supervisor.

Provides:

- **Response models** — ``HealthResponse``, ``CheckResult``, ``LivenessResponse``
  used as the JSON envelope of every health endpoint.
- **``create_health_router()``** — gives the app three K8s-style endpoints:
  ``/health``, ``/health/ready``, ``/health/live``.

Every handler reads one :class:`~cadence.core.scheduling.health.HealthSnapshot`
and returns; none of them await the scheduler or the worker, so a hung run
can never delay a probe.

Quick start::

    router = create_health_router(
        service_name="cadence",
        version="0.1.0",
        state=health_state,
        failure_threshold=3,
        scheduler_running=lambda: scheduler.is_running,
    )
    app.include_router(router)
"""

from __future__ import annotations

import time
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any, Literal

from fastapi import APIRouter
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from cadence.core.scheduling.health import HealthState, Readiness, evaluate_readiness

# Module-level start time, set when the service first imports this module.
_START_TIME = time.monotonic()


# ── Response Models ──────────────────────────────────────────────────────


class CheckResult(BaseModel):
    """Result of a single health check."""

    status: Literal["healthy", "degraded", "unhealthy"]
    error: str | None = None
    details: dict[str, Any] = Field(default_factory=dict)


class HealthResponse(BaseModel):
    """Standard health response envelope returned by ``GET /health``.

    Fields
    ──────
    status    : ``healthy`` | ``degraded`` | ``unhealthy``
    service   : Human-readable service name
    version   : Semver string
    uptime_s  : Seconds since startup
    timestamp : ISO-8601 UTC
    checks    : Per-check breakdown (name → CheckResult)
    """

    status: Literal["healthy", "degraded", "unhealthy"] = "healthy"
    service: str = ""
    version: str = ""
    uptime_s: float = Field(default_factory=lambda: round(time.monotonic() - _START_TIME, 1))
    timestamp: str = Field(default_factory=lambda: datetime.now(UTC).isoformat())
    checks: dict[str, CheckResult] = Field(default_factory=dict)


class LivenessResponse(BaseModel):
    """Response for liveness probes — always returns ``{"status": "alive"}``."""

    status: str = "alive"


# ── Router Factory ───────────────────────────────────────────────────────


def create_health_router(
    service_name: str,
    version: str,
    state: HealthState,
    failure_threshold: int,
    scheduler_running: Callable[[], bool] | None = None,
    scheduler_details: Callable[[], dict[str, Any]] | None = None,
    prefix: str = "/health",
) -> APIRouter:
    """Create a FastAPI ``APIRouter`` with the supervisor's health endpoints.

    Endpoints created
    -----------------
    ``GET {prefix}``         Full health — 503 when unhealthy.
    ``GET {prefix}/ready``   Readiness probe — 503 when unhealthy.
    ``GET {prefix}/live``    Liveness probe — always 200.

    Parameters
    ----------
    service_name : str
        Human-readable name (e.g. ``"cadence"``).
    version : str
        Service version string.
    state : HealthState
        Shared supervisor health, read as snapshots.
    failure_threshold : int
        Consecutive failed runs at which readiness turns unhealthy.
    scheduler_running : () -> bool | None
        Reports whether the scheduler loop is alive; assumed alive if omitted.
    scheduler_details : () -> dict | None
        Ticker diagnostics (tick count, missed boundaries, drift) shown
        under the ``scheduler`` check.
    prefix : str
        URL prefix (default ``"/health"``).
    """
    router = APIRouter(tags=["health"])

    def _evaluate() -> tuple[Readiness, dict[str, CheckResult]]:
        snapshot = state.snapshot()
        running = scheduler_running() if scheduler_running is not None else True
        readiness = evaluate_readiness(snapshot, failure_threshold, scheduler_running=running)
        worker = evaluate_readiness(snapshot, failure_threshold)

        checks = {
            "scheduler": CheckResult(
                status="healthy" if running else "unhealthy",
                error=None if running else "scheduler loop is not running",
                details=scheduler_details() if scheduler_details is not None else {},
            ),
            "worker": CheckResult(
                status=worker.status,
                error=worker.reason,
                details=snapshot.to_dict(),
            ),
        }
        return readiness, checks

    def _make_response(readiness: Readiness, checks: dict[str, CheckResult]) -> JSONResponse:
        body = HealthResponse(
            status=readiness.status,
            service=service_name,
            version=version,
            uptime_s=round(time.monotonic() - _START_TIME, 1),
            timestamp=datetime.now(UTC).isoformat(),
            checks=checks,
        )
        code = 503 if readiness.status == "unhealthy" else 200
        return JSONResponse(content=body.model_dump(), status_code=code)

    @router.get(prefix, response_model=HealthResponse)
    async def health() -> JSONResponse:
        """Full health — scheduler and worker checks."""
        readiness, checks = _evaluate()
        return _make_response(readiness, checks)

    @router.get(f"{prefix}/ready", response_model=HealthResponse)
    async def readiness() -> JSONResponse:
        """Readiness probe — 503 once failed runs reach the threshold."""
        verdict, checks = _evaluate()
        return _make_response(verdict, checks)

    @router.get(f"{prefix}/live", response_model=LivenessResponse)
    async def liveness() -> LivenessResponse:
        """Liveness probe — always 200 while the server loop is running."""
        return LivenessResponse()

    return router
