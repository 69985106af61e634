"""
Structured error types for the cadence supervisor.

Every fault the supervisor can raise carries a category, optional
structured context and an optional chained cause, so the supervisor
entry point can log it as one structured event and pick an exit code.

Manifesto:
    - **Typed Error Hierarchy:** One class per failure the supervisor can hit
    - **Fatal vs recorded:** Per-run failures become RunRecords, only
      startup and shutdown faults escape as exceptions
    - **Rich Context:** Errors carry the worker command, listen address and
      run id for logging
    - **Error Chaining:** The underlying OSError is preserved as ``cause``

Architecture:
    ::

        ┌─────────────────────────────────────────────────────────────────┐
        │                       CadenceError                               │
        │  (category, context, cause)                                      │
        ├─────────────────────────────────────────────────────────────────┤
        │                                                                  │
        │  ConfigError         WorkerLaunchError     ListenerBindError     │
        │  (CONFIG, fatal)     (WORKER, recorded)    (NETWORK, fatal)      │
        │       │                                                          │
        │  InvalidConfigError  SchedulerError        ShutdownTimeoutError  │
        │                      (SCHEDULER, fatal)    (SHUTDOWN)            │
        └─────────────────────────────────────────────────────────────────┘

Examples:
    >>> error = WorkerLaunchError("/app/flavortown_tracker", cause=FileNotFoundError(2, "No such file"))
    >>> error.category
    <ErrorCategory.WORKER: 'WORKER'>
    >>> error.to_dict()["context"]["worker_path"]
    '/app/flavortown_tracker'

Usage:
    from cadence.core.errors import ListenerBindError

    try:
        sock = socket.create_server((host, port))
    except OSError as e:
        raise ListenerBindError(host, port, cause=e) from e
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Standard error categories for classification and exit-code routing."""

    CONFIG = "CONFIG"             # Missing or invalid settings
    WORKER = "WORKER"             # Worker binary could not be started
    NETWORK = "NETWORK"           # Listener bind / socket errors
    SCHEDULER = "SCHEDULER"       # Timer or loop could not be created
    SHUTDOWN = "SHUTDOWN"         # Worker not reaped within the grace period
    INTERNAL = "INTERNAL"         # Bugs, unexpected state


@dataclass
class ErrorContext:
    """Structured metadata attached to an error for logging.

    Attributes:
        run_id: Worker run identifier
        worker_path: Executable the supervisor tried to launch
        listen_address: ``host:port`` of the health listener
        setting: Name of the offending configuration field
        metadata: Additional key-value pairs
    """

    run_id: str | None = None
    worker_path: str | None = None
    listen_address: str | None = None
    setting: str | None = None

    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result = {}
        for key in ["run_id", "worker_path", "listen_address", "setting"]:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class CadenceError(Exception):
    """
    Base exception for all cadence supervisor errors.

    Subclasses set ``default_category`` and ``fatal``. A fatal error makes
    the supervisor exit non-zero; a non-fatal one is recorded and the
    scheduler keeps running.
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    fatal: bool = True
    exit_code: int = 2

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        context: ErrorContext | None = None,
        cause: BaseException | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> CadenceError:
        """
        Add context to this error (fluent API).

        Usage:
            raise ConfigError("bad value").with_context(setting="interval_seconds")
        """
        for key, value in kwargs.items():
            if hasattr(self.context, key) and key != "metadata":
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result: dict[str, Any] = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
            "fatal": self.fatal,
        }
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# CONFIGURATION ERRORS
# =============================================================================


class ConfigError(CadenceError):
    """
    Configuration error.

    Always fatal - the supervisor refuses to start with bad settings.
    """

    default_category = ErrorCategory.CONFIG


class InvalidConfigError(ConfigError):
    """Configuration value is invalid."""

    def __init__(self, key: str, value: Any, message: str | None = None):
        self.key = key
        self.value = value
        super().__init__(
            message or f"Invalid configuration for {key}: {value!r}",
            context=ErrorContext(setting=key),
        )


# =============================================================================
# WORKER ERRORS
# =============================================================================


class WorkerLaunchError(CadenceError):
    """The worker process could not be started.

    Never fatal: the invocation turns it into a ``LAUNCH_FAILED`` run.
    """

    default_category = ErrorCategory.WORKER
    fatal = False

    def __init__(self, worker_path: str, *, cause: BaseException | None = None):
        self.worker_path = worker_path
        detail = f": {cause}" if cause is not None else ""
        super().__init__(
            f"Failed to launch worker {worker_path}{detail}",
            context=ErrorContext(worker_path=worker_path),
            cause=cause,
        )


# =============================================================================
# RUNTIME ERRORS
# =============================================================================


class ListenerBindError(CadenceError):
    """The health listener could not bind its address."""

    default_category = ErrorCategory.NETWORK

    def __init__(self, host: str, port: int, *, cause: BaseException | None = None):
        self.host = host
        self.port = port
        address = f"{host}:{port}"
        detail = f": {cause}" if cause is not None else ""
        super().__init__(
            f"Cannot listen on {address}{detail}",
            context=ErrorContext(listen_address=address),
            cause=cause,
        )


class SchedulerError(CadenceError):
    """The scheduler loop could not be created or died unexpectedly."""

    default_category = ErrorCategory.SCHEDULER


class ShutdownTimeoutError(CadenceError):
    """An in-flight worker survived the shutdown grace period."""

    default_category = ErrorCategory.SHUTDOWN
    exit_code = 1

    def __init__(self, grace_seconds: float, *, run_id: str | None = None, pid: int | None = None):
        self.grace_seconds = grace_seconds
        self.pid = pid
        context = ErrorContext(run_id=run_id)
        if pid is not None:
            context.metadata["pid"] = pid
        super().__init__(
            f"Worker did not terminate within the {grace_seconds}s shutdown grace period",
            context=context,
        )


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "CadenceError",
    "ConfigError",
    "InvalidConfigError",
    "WorkerLaunchError",
    "ListenerBindError",
    "SchedulerError",
    "ShutdownTimeoutError",
]
