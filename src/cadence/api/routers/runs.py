"""
Runs router — recent worker runs for operator diagnostics.

Endpoints:
    GET /runs           Bounded history (newest first) + in-flight run + cadence stats
    GET /runs/current   The in-flight run, 404 when idle

Records are plain snapshots; captured stdout/stderr tails are included so
an operator can see why the last run failed without shelling into the
container.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, HTTPException, Query
from pydantic import BaseModel, Field

from cadence.api.deps import Config, Health
from cadence.core.scheduling.health import check_tick_interval_stability

router = APIRouter(prefix="/runs")


class RunSchema(BaseModel):
    """One worker run."""

    run_id: str
    tick: int
    command: list[str] = Field(default_factory=list)
    started_at: str
    finished_at: str | None = None
    duration_seconds: float | None = None
    exit_status: int | None = None
    outcome: str | None = Field(default=None, description="SUCCESS, NON_ZERO_EXIT, TIMED_OUT or LAUNCH_FAILED")
    pid: int | None = None
    error: str | None = None
    stdout_tail: str = ""
    stderr_tail: str = ""
    interrupted_by_shutdown: bool = False


class RunsResponse(BaseModel):
    """Run history envelope."""

    current: RunSchema | None = None
    runs: list[RunSchema] = Field(default_factory=list)
    summary: dict[str, Any] = Field(default_factory=dict)
    cadence: dict[str, Any] = Field(default_factory=dict)


@router.get("", response_model=RunsResponse)
async def list_runs(
    state: Health,
    config: Config,
    limit: int = Query(20, ge=1, le=1000),
    include_output: bool = Query(True, description="Include stdout/stderr tails"),
) -> RunsResponse:
    """Recent terminal runs, newest first."""
    history = state.history()
    current = state.current()

    runs = []
    for record in history[:limit]:
        data = record.to_dict()
        if not include_output:
            data["stdout_tail"] = ""
            data["stderr_tail"] = ""
        runs.append(RunSchema(**data))

    starts = sorted(record.started_at for record in history)
    return RunsResponse(
        current=RunSchema(**current.to_dict()) if current else None,
        runs=runs,
        summary=state.snapshot().to_dict(),
        cadence=check_tick_interval_stability(starts, expected_interval=config.interval_seconds),
    )


@router.get("/current", response_model=RunSchema)
async def current_run(state: Health) -> RunSchema:
    """The in-flight run."""
    current = state.current()
    if current is None:
        raise HTTPException(status_code=404, detail="No run in progress")
    return RunSchema(**current.to_dict())
