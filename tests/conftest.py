"""
Shared pytest fixtures for cadence tests.

This module provides:
- Environment isolation (no stray ``CADENCE_*`` variables or ``.env`` files)
- A config factory that turns a worker argv into a ``ScheduleConfig``
- Worker command builders backed by real child processes
- An ``eventually`` helper for polling asynchronous state

Usage:
    async def test_something(make_config, eventually):
        config = make_config(sh("exit 0"), interval_seconds=0.1)
        ...
"""

import asyncio
import logging
import os
import sys
from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest
import structlog

from cadence.core.settings import ScheduleConfig, load_config


def py(code: str) -> list[str]:
    """Worker argv running a Python snippet."""
    return [sys.executable, "-c", code]


def sh(script: str) -> list[str]:
    """Worker argv running a shell snippet."""
    return ["/bin/sh", "-c", script]


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Auto-mark tests that start a real supervisor as integration."""
    for item in items:
        test_path = Path(item.fspath).relative_to(Path(__file__).parent)
        if test_path.name == "test_supervisor.py":
            item.add_marker(pytest.mark.integration)
        markers = {mark.name for mark in item.iter_markers()}
        if not markers.intersection({"unit", "integration", "slow"}):
            item.add_marker(pytest.mark.unit)


# =============================================================================
# Isolation
# =============================================================================


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Path:
    """Strip ``CADENCE_*`` variables and run from an empty directory."""
    for key in list(os.environ):
        if key.startswith("CADENCE_"):
            monkeypatch.delenv(key)
    monkeypatch.chdir(tmp_path)
    return tmp_path


@pytest.fixture(autouse=True)
def reset_logging():
    """Undo any ``configure_logging`` call made by a test."""
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)
    structlog.reset_defaults()
    structlog.contextvars.clear_contextvars()


# =============================================================================
# Config
# =============================================================================


@pytest.fixture
def make_config() -> Callable[..., ScheduleConfig]:
    """
    Factory for configs with fast test defaults.

        config = make_config(py("print('hi')"), run_timeout_seconds=1)
    """

    def _make(command: list[str] | None = None, **overrides: Any) -> ScheduleConfig:
        values: dict[str, Any] = {
            "interval_seconds": 60.0,
            "run_timeout_seconds": 5.0,
            "kill_grace_seconds": 1.0,
            "shutdown_grace_seconds": 1.0,
            "listen_address": "127.0.0.1:0",
        }
        if command:
            values["worker_path"] = command[0]
            values["worker_args"] = list(command[1:])
        values.update(overrides)
        return load_config(**values)

    return _make


# =============================================================================
# Async helpers
# =============================================================================


@pytest.fixture
def eventually() -> Callable[..., Any]:
    """Poll ``predicate`` until it is true or ``timeout`` elapses."""

    async def _wait(predicate: Callable[[], bool], timeout: float = 5.0, interval: float = 0.01) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not predicate():
            if loop.time() > deadline:
                raise AssertionError(f"condition not met within {timeout}s")
            await asyncio.sleep(interval)

    return _wait
