"""
Supervisor process — one event loop, one listener, one scheduler.

┌──────────────────────────────────────────────────────────────────────────────┐
│  SUPERVISOR LIFECYCLE                                                         │
│                                                                               │
│   bind_listener() ──► OSError? ──► ListenerBindError (exit 2)                 │
│        │                                                                      │
│   server task (uvicorn, pre-bound socket) ──► wait until started              │
│        │                                                                      │
│   SIGTERM / SIGINT ──► stop_event.set()                                       │
│        │                                                                      │
│   SchedulerLoop.run(stop_event)  ... ticks until stop_event ...               │
│        │                                                                      │
│   SchedulerLoop.drain(shutdown_grace)                                         │
│        ├── reaped ──────► exit 0                                              │
│        └── not reaped ──► ShutdownTimeoutError (exit 1)                       │
│        │                                                                      │
│   server.should_exit = True ──► await server task                             │
└──────────────────────────────────────────────────────────────────────────────┘

The listener is bound before anything else so a port conflict is a clean,
logged startup failure instead of uvicorn calling ``sys.exit`` from inside
the loop. uvicorn's own signal capture is disabled; this module owns
SIGTERM/SIGINT and the shutdown order.
"""

from __future__ import annotations

import asyncio
import contextlib
import signal
import socket
from collections.abc import Iterator

import uvicorn
from fastapi import FastAPI

from cadence import __version__
from cadence.api.app import create_app
from cadence.core.errors import CadenceError, ListenerBindError, ShutdownTimeoutError
from cadence.core.logging import get_logger
from cadence.core.scheduling.health import HealthState
from cadence.core.scheduling.service import SchedulerLoop
from cadence.core.settings import ScheduleConfig
from cadence.observability.metrics import MetricsRegistry, SupervisorMetrics

logger = get_logger(__name__)

# Seconds allowed for the listener to start and to stop.
_SERVER_START_TIMEOUT = 10.0
_SERVER_STOP_TIMEOUT = 5.0

_SHUTDOWN_SIGNALS = (signal.SIGTERM, signal.SIGINT)


class _ListenerServer(uvicorn.Server):
    """uvicorn server that leaves signal handling to the supervisor."""

    def install_signal_handlers(self) -> None:
        pass

    @contextlib.contextmanager
    def capture_signals(self) -> Iterator[None]:
        yield


class Supervisor:
    """Owns health state, metrics, the listener and the scheduler loop.

    Args:
        config: Validated supervisor configuration.
        scheduler: Scheduler loop to drive (built from ``config`` if omitted).
            Its health state and metrics are the ones the listener serves.
    """

    def __init__(self, config: ScheduleConfig, scheduler: SchedulerLoop | None = None) -> None:
        self._config = config
        if scheduler is None:
            state = HealthState(history_size=config.history_size)
            scheduler = SchedulerLoop(config, state, SupervisorMetrics(MetricsRegistry()))
        self.scheduler = scheduler
        self.state = scheduler.state
        self.metrics = scheduler.metrics
        self.registry = self.metrics.registry
        self.app: FastAPI = create_app(
            config=config,
            state=self.state,
            metrics_registry=self.registry,
            scheduler_running=lambda: self.scheduler.is_running,
            scheduler_details=lambda: self.scheduler.ticker.health().to_dict(),
        )
        self._server = _ListenerServer(
            uvicorn.Config(
                self.app,
                log_config=None,
                access_log=False,
                lifespan="on",
                timeout_graceful_shutdown=1,
            )
        )
        self._socket: socket.socket | None = None
        self._stop: asyncio.Event | None = None

    @property
    def config(self) -> ScheduleConfig:
        return self._config

    @property
    def bound_port(self) -> int | None:
        """Port actually bound (differs from the configured one for port 0)."""
        if self._socket is None:
            return None
        return self._socket.getsockname()[1]

    def bind_listener(self) -> socket.socket:
        """Bind the health listener socket.

        Raises:
            ListenerBindError: If the address is in use or cannot be bound.
        """
        if self._socket is not None:
            return self._socket
        host, port = self._config.host, self._config.port
        family = socket.AF_INET6 if ":" in host else socket.AF_INET
        try:
            self._socket = socket.create_server((host, port), family=family, reuse_port=False)
        except OSError as exc:
            raise ListenerBindError(host, port, cause=exc) from exc
        self._socket.setblocking(False)
        logger.info("listener.bound", host=host, port=self.bound_port)
        return self._socket

    def request_shutdown(self, signame: str = "request") -> None:
        """Begin graceful shutdown; safe to call more than once."""
        if self._stop is None:
            return
        if not self._stop.is_set():
            logger.info("supervisor.shutdown", signal=signame)
        self._stop.set()

    async def run(self) -> int:
        """Run until a shutdown signal arrives and return the exit code.

        Raises:
            ListenerBindError: If the listener cannot be bound or started.
        """
        loop = asyncio.get_running_loop()
        self._stop = asyncio.Event()

        for note in self._config.advisories():
            logger.warning("config.advisory", message=note)
        logger.info("supervisor.starting", version=__version__, config=self._config.summary())

        sock = self.bind_listener()
        server_task = asyncio.create_task(self._server.serve(sockets=[sock]), name="cadence-listener")
        await self._wait_started(server_task)

        for sig in _SHUTDOWN_SIGNALS:
            loop.add_signal_handler(sig, self.request_shutdown, sig.name)

        exit_code = 0
        try:
            await self.scheduler.run(self._stop)
            current = self.scheduler.current
            reaped = await self.scheduler.drain(self._config.shutdown_grace_seconds)
            if not reaped:
                error = ShutdownTimeoutError(
                    self._config.shutdown_grace_seconds,
                    run_id=current.run_id if current else None,
                    pid=current.pid if current else None,
                )
                logger.error("supervisor.shutdown_timeout", **error.to_dict())
                exit_code = error.exit_code
        finally:
            for sig in _SHUTDOWN_SIGNALS:
                loop.remove_signal_handler(sig)
            await self._stop_server(server_task)

        logger.info("supervisor.stopped", exit_code=exit_code, **self.scheduler.stats.to_dict())
        return exit_code

    async def _wait_started(self, server_task: asyncio.Task) -> None:
        deadline = asyncio.get_running_loop().time() + _SERVER_START_TIMEOUT
        while not self._server.started:
            if server_task.done() or asyncio.get_running_loop().time() > deadline:
                await self._stop_server(server_task)
                raise ListenerBindError(self._config.host, self._config.port)
            await asyncio.sleep(0.01)
        logger.info("listener.started", address=f"{self._config.host}:{self.bound_port}")

    async def _stop_server(self, server_task: asyncio.Task) -> None:
        self._server.should_exit = True
        try:
            await asyncio.wait_for(server_task, timeout=_SERVER_STOP_TIMEOUT)
        except TimeoutError:
            logger.warning("listener.stop_timeout")
            server_task.cancel()
        except (OSError, SystemExit) as exc:
            logger.error("listener.failed", error=str(exc))
        finally:
            if self._socket is not None:
                self._socket.close()
                self._socket = None


def main(config: ScheduleConfig) -> int:
    """Run a supervisor to completion and return the process exit code."""
    try:
        return asyncio.run(Supervisor(config).run())
    except CadenceError as exc:
        logger.error("supervisor.fatal", **exc.to_dict())
        return exc.exit_code
