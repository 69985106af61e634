"""
FastAPI application factory for the health listener.

``create_app()`` wires the health router, the runs router and the metrics
endpoint around the supervisor's shared state.

Manifesto:
    The app factory is the single composition root for the HTTP side.
    Routers only ever see the objects stashed on ``app.state`` and never
    reach into the scheduler directly.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator, Callable
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI
from fastapi.responses import PlainTextResponse

from cadence import __version__
from cadence.api.deps import Registry
from cadence.core.health import create_health_router
from cadence.core.logging import get_logger
from cadence.core.scheduling.health import HealthState
from cadence.core.settings import ScheduleConfig
from cadence.observability.metrics import MetricsRegistry

logger = get_logger("cadence.api")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan — startup / shutdown hooks."""
    logger.info("listener.started", version=app.version)
    yield
    logger.info("listener.stopped")


def create_app(
    *,
    config: ScheduleConfig,
    state: HealthState,
    metrics_registry: MetricsRegistry | None = None,
    scheduler_running: Callable[[], bool] | None = None,
    scheduler_details: Callable[[], dict[str, Any]] | None = None,
) -> FastAPI:
    """Build and return the health listener application.

    Parameters
    ----------
    config : ScheduleConfig
        Supervisor configuration (threshold, interval for diagnostics).
    state : HealthState
        Shared supervisor health.
    metrics_registry : MetricsRegistry | None
        Registry exported on ``/metrics``; an empty one when omitted.
    scheduler_running : () -> bool | None
        Liveness of the scheduler loop, folded into readiness.
    scheduler_details : () -> dict | None
        Ticker diagnostics reported by the ``scheduler`` health check.
    """
    app = FastAPI(
        title="cadence supervisor",
        version=__version__,
        lifespan=lifespan,
        docs_url=None,
        redoc_url=None,
    )

    app.state.config = config
    app.state.health = state
    app.state.metrics_registry = metrics_registry or MetricsRegistry()

    # ── Routers ──────────────────────────────────────────────────────
    from cadence.api.routers import runs

    app.include_router(
        create_health_router(
            "cadence",
            version=__version__,
            state=state,
            failure_threshold=config.failure_threshold,
            scheduler_running=scheduler_running,
            scheduler_details=scheduler_details,
        ),
        tags=["health"],
    )
    app.include_router(runs.router, tags=["runs"])

    # ── Metrics endpoint (Prometheus format) ─────────────────────────

    @app.get("/metrics", tags=["observability"], response_class=PlainTextResponse)
    async def metrics_endpoint(registry: Registry) -> PlainTextResponse:
        """Export Prometheus-compatible metrics."""
        return PlainTextResponse(
            content=registry.export_prometheus(),
            media_type="text/plain; version=0.0.4; charset=utf-8",
        )

    return app
