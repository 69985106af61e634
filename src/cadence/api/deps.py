"""
FastAPI dependency injection — supervisor singletons stashed on app state.

Usage in routers::

    from cadence.api.deps import Config, Health

    @router.get("/runs")
    async def list_runs(state: Health, config: Config):
        ...

The supervisor builds one ``HealthState`` and one ``ScheduleConfig`` and
``create_app`` stores them on ``app.state``; these accessors are the only
way routers reach them.
"""

from __future__ import annotations

from typing import Annotated

from fastapi import Depends, Request

from cadence.core.scheduling.health import HealthState
from cadence.core.settings import ScheduleConfig
from cadence.observability.metrics import MetricsRegistry


def get_health_state(request: Request) -> HealthState:
    return request.app.state.health


def get_config(request: Request) -> ScheduleConfig:
    return request.app.state.config


def get_metrics_registry(request: Request) -> MetricsRegistry:
    return request.app.state.metrics_registry


Health = Annotated[HealthState, Depends(get_health_state)]
Config = Annotated[ScheduleConfig, Depends(get_config)]
Registry = Annotated[MetricsRegistry, Depends(get_metrics_registry)]
