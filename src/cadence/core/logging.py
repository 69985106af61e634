"""
Cadence Logging - structured logging for the supervisor and its workers.

Manifesto:
    The supervisor's log stream is the operator's only detailed record of
    what each worker run did, so every line is structured, including the
    lines uvicorn and asyncio emit through the standard library:

    - **Structures:** JSON output for log aggregation (ELK, Loki, etc.)
    - **Correlates:** run_id/tick propagation through ``LogContext``
    - **Flexes:** Console output for development, JSON for containers

Architecture:
    ::

        ┌─────────────────────────────────────────────────────────────┐
        │ configure_logging(level="INFO", json_format=None)           │
        │                                                             │
        │   structlog loggers ──┐                                     │
        │                       ├─► shared chain ─► renderer ─► stdout│
        │   stdlib (uvicorn) ───┘   (ProcessorFormatter)              │
        │                                                             │
        │ shared chain:                                               │
        │   merge_contextvars (run_id, tick) → log level → timestamp  │
        │   → service.name → ECS field names (JSON only)              │
        └─────────────────────────────────────────────────────────────┘

        logger = get_logger(__name__)
        logger.info("run.finished", outcome="SUCCESS", duration_s=0.41)

        {"@timestamp": "...", "log.level": "info", "service.name": "cadence",
         "event": "run.finished", "run_id": "3fa2c1d09b7e", "outcome": "SUCCESS", ...}

Examples:
    >>> from cadence.core.logging import configure_logging, get_logger
    >>> configure_logging(level="DEBUG", json_format=False)
    >>> logger = get_logger(__name__)
    >>> with LogContext(run_id="abc123"):
    ...     logger.info("run.started")

Tags:
    logging, structlog, observability, ecs, json-logging
"""

from __future__ import annotations

import logging
import sys
from contextlib import AbstractContextManager
from typing import Any, TextIO

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

# stdlib loggers that are too chatty at INFO for a long-lived supervisor
_QUIET_LOGGERS = ("uvicorn.access", "asyncio")


def _service_metadata(service: str) -> Processor:
    def add_service(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
        event_dict.setdefault("service.name", service)
        return event_dict

    return add_service


def _ecs_field_names(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    """Rename timestamp/level to their ECS names for the JSON output."""
    for key, ecs_key in (("timestamp", "@timestamp"), ("level", "log.level")):
        if key in event_dict:
            event_dict[ecs_key] = event_dict.pop(key)
    return event_dict


class _NamedPrintLogger(structlog.PrintLogger):
    """PrintLogger carrying a ``name`` for ``add_logger_name``."""

    def __init__(self, name: str, file: TextIO | None = None):
        super().__init__(file)
        self.name = name


class _NamedPrintLoggerFactory:
    """Like ``PrintLoggerFactory`` but keeps the name given to ``get_logger``."""

    def __call__(self, *args: Any) -> _NamedPrintLogger:
        name = args[0] if args and isinstance(args[0], str) else "cadence"
        return _NamedPrintLogger(name)


def resolve_json_format(log_format: str) -> bool | None:
    """Map a ``log_format`` setting (json/console/auto) to ``json_format``."""
    return {"json": True, "console": False}.get(log_format.lower())


def configure_logging(
    level: str = "INFO",
    json_format: bool | None = None,
    service: str = "cadence",
) -> None:
    """Configure structlog and route standard-library records through it.

    Args:
        level: Minimum level (DEBUG, INFO, WARNING, ERROR)
        json_format: True for JSON, False for console, None to pick JSON
            unless stdout is a terminal
        service: Value of the ``service.name`` field
    """
    numeric_level = logging.getLevelName(level.upper())
    if not isinstance(numeric_level, int):
        numeric_level = logging.INFO
    if json_format is None:
        json_format = not sys.stdout.isatty()

    shared: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        _service_metadata(service),
    ]

    if json_format:
        shared.append(_ecs_field_names)
        renderer: Processor = structlog.processors.JSONRenderer()
        exc_processors: list[Processor] = [structlog.processors.format_exc_info]
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())
        exc_processors = []

    structlog.configure(
        processors=[*shared, structlog.dev.set_exc_info, *exc_processors, renderer],
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        context_class=dict,
        logger_factory=_NamedPrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=shared,
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                *exc_processors,
                renderer,
            ],
        )
    )
    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(numeric_level)
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(numeric_level, logging.WARNING))


def get_logger(name: str | None = None) -> Any:
    """Get a structured logger; ``name`` is rendered as the ``logger`` field.

    The logger stays lazy, so module-level loggers pick up whatever
    ``configure_logging`` installs later.
    """
    if name is None:
        return structlog.get_logger()
    return structlog.get_logger(name)


def clear_context() -> None:
    structlog.contextvars.clear_contextvars()


class LogContext:
    """Scoped logging fields; previous values come back on exit.

    Usable with ``with`` and ``async with``. Fields bound inside an asyncio
    task stay in that task.

    Example:
        async with LogContext(run_id=record.run_id, tick=3):
            logger.info("worker.started")
    """

    def __init__(self, **kwargs: Any):
        self._fields = kwargs
        self._bound: AbstractContextManager[None] | None = None

    def __enter__(self) -> LogContext:
        self._bound = structlog.contextvars.bound_contextvars(**self._fields)
        self._bound.__enter__()
        return self

    def __exit__(self, *exc_info: Any) -> None:
        if self._bound is not None:
            self._bound.__exit__(*exc_info)
            self._bound = None

    async def __aenter__(self) -> LogContext:
        return self.__enter__()

    async def __aexit__(self, *exc_info: Any) -> None:
        self.__exit__(*exc_info)


__all__ = [
    "configure_logging",
    "resolve_json_format",
    "get_logger",
    "clear_context",
    "LogContext",
]
