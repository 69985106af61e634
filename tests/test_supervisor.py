"""End-to-end tests for the Supervisor: real listener, real worker processes."""

import asyncio
import os
import signal
import socket

import httpx
import pytest

from conftest import py, sh

from cadence.core.errors import ListenerBindError
from cadence.core.scheduling.health import HealthState
from cadence.core.scheduling.service import SchedulerLoop
from cadence.execution.models import RunOutcome
from cadence.observability.metrics import SupervisorMetrics
from cadence.supervisor import Supervisor, main


async def _start(supervisor: Supervisor, eventually) -> asyncio.Task:
    task = asyncio.create_task(supervisor.run())
    await eventually(lambda: supervisor.scheduler.is_running or task.done())
    assert not task.done(), task.exception()
    return task


def _base_url(supervisor: Supervisor) -> str:
    return f"http://127.0.0.1:{supervisor.bound_port}"


class TestProbes:
    """Probes answer from the same process while runs happen."""

    @pytest.mark.asyncio
    async def test_liveness_during_hung_run_and_fast_shutdown(self, make_config, eventually):
        config = make_config(
            py("import time; time.sleep(60)"),
            interval_seconds=60,
            run_timeout_seconds=60,
            run_on_start=True,
            shutdown_grace_seconds=0.2,
        )
        supervisor = Supervisor(config)
        task = await _start(supervisor, eventually)
        await eventually(lambda: supervisor.scheduler.current is not None and supervisor.scheduler.current.pid)

        async with httpx.AsyncClient(base_url=_base_url(supervisor), timeout=2.0) as client:
            live = await client.get("/health/live")
            assert live.status_code == 200
            assert live.json() == {"status": "alive"}

            ready = await client.get("/health/ready")
            assert ready.status_code == 200
            assert ready.json()["checks"]["worker"]["details"]["run_active"] is True
            ticker = ready.json()["checks"]["scheduler"]["details"]
            assert ticker["tick_count"] == 1
            assert ticker["missed_ticks"] == 0
            assert ticker["last_tick"] is not None

            current = await client.get("/runs/current")
            assert current.status_code == 200
            pid = current.json()["pid"]

        loop = asyncio.get_running_loop()
        started = loop.time()
        supervisor.request_shutdown()
        exit_code = await asyncio.wait_for(task, timeout=5.0)

        assert exit_code == 0
        assert loop.time() - started < 1.5
        record = supervisor.state.history()[0]
        assert record.pid == pid
        assert record.interrupted_by_shutdown is True

    @pytest.mark.asyncio
    async def test_readiness_fails_after_threshold(self, make_config, eventually):
        config = make_config(sh("exit 1"), interval_seconds=0.1, failure_threshold=3)
        supervisor = Supervisor(config)
        task = await _start(supervisor, eventually)

        async with httpx.AsyncClient(base_url=_base_url(supervisor), timeout=2.0) as client:
            loop = asyncio.get_running_loop()
            deadline = loop.time() + 5.0
            while True:
                assert (await client.get("/health/live")).status_code == 200
                ready = await client.get("/health/ready")
                if ready.status_code == 503:
                    break
                assert loop.time() < deadline, "readiness never failed"
                await asyncio.sleep(0.02)

            assert supervisor.state.snapshot().consecutive_failures >= 3
            metrics = (await client.get("/metrics")).text
            assert 'cadence_runs_total{outcome="NON_ZERO_EXIT"}' in metrics

        supervisor.request_shutdown()
        assert await asyncio.wait_for(task, timeout=5.0) == 0
        assert all(r.outcome is RunOutcome.NON_ZERO_EXIT for r in supervisor.state.history())


class TestShutdown:
    """Signals and exit codes."""

    @pytest.mark.asyncio
    async def test_sigterm_stops_supervisor(self, make_config, eventually):
        supervisor = Supervisor(make_config(sh("exit 0"), interval_seconds=60))
        task = await _start(supervisor, eventually)

        os.kill(os.getpid(), signal.SIGTERM)

        assert await asyncio.wait_for(task, timeout=5.0) == 0
        assert supervisor.scheduler.is_running is False

    @pytest.mark.asyncio
    async def test_unreaped_worker_exits_1(self, make_config, eventually):
        class StuckLoop(SchedulerLoop):
            async def drain(self, grace_seconds: float) -> bool:
                return False

        config = make_config(sh("exit 0"), interval_seconds=60)
        state = HealthState()
        supervisor = Supervisor(config, scheduler=StuckLoop(config, state))
        assert supervisor.state is state
        assert supervisor.app.state.health is state
        task = await _start(supervisor, eventually)

        supervisor.request_shutdown()
        assert await asyncio.wait_for(task, timeout=5.0) == 1


class TestStartupFailures:
    """Fatal faults at startup."""

    @pytest.mark.asyncio
    async def test_port_in_use(self, make_config):
        with socket.create_server(("127.0.0.1", 0)) as occupied:
            port = occupied.getsockname()[1]
            supervisor = Supervisor(make_config(sh("exit 0"), listen_address=f"127.0.0.1:{port}"))
            with pytest.raises(ListenerBindError) as exc_info:
                await supervisor.run()

        assert exc_info.value.port == port
        assert supervisor.scheduler.stats.ticks == 0

    def test_main_returns_2_on_bind_failure(self, make_config):
        with socket.create_server(("127.0.0.1", 0)) as occupied:
            port = occupied.getsockname()[1]
            assert main(make_config(sh("exit 0"), listen_address=f"127.0.0.1:{port}")) == 2


class TestWiring:
    """The listener serves exactly what the scheduler writes."""

    def test_injected_scheduler_supplies_state_and_metrics(self, make_config):
        config = make_config(sh("exit 0"))
        metrics = SupervisorMetrics()
        scheduler = SchedulerLoop(config, HealthState(), metrics)

        supervisor = Supervisor(config, scheduler=scheduler)

        assert supervisor.state is scheduler.state
        assert supervisor.metrics is metrics
        assert supervisor.app.state.health is scheduler.state
        assert supervisor.app.state.metrics_registry is metrics.registry
