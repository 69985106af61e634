"""
Supervisor configuration.

Manifesto:
    One validated, immutable settings object is loaded once at start and
    handed to every component. Nothing re-reads the environment later, so
    the interval, worker command and listen address are fixed for the
    lifetime of the process.

:class:`ScheduleConfig` resolves values from (highest → lowest):

    1. Explicit overrides (``cadence run --interval 60 ...``)
    2. ``CADENCE_*`` environment variables
    3. ``.env`` file
    4. Defaults below

List and mapping fields are read from the environment as JSON, e.g.
``CADENCE_WORKER_ARGS='["--region", "USA"]'``.

Tags:
    cadence, configuration, settings, pydantic, validation
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import Field, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import ConfigError, InvalidConfigError


def split_listen_address(address: str) -> tuple[str, int]:
    """Split ``host:port`` (or ``[v6]:port``) into its parts.

    Raises:
        ValueError: If the address has no port or the port is out of range.
    """
    host, sep, port_text = address.strip().rpartition(":")
    if not sep or not port_text.isdigit():
        raise ValueError(f"expected host:port, got {address!r}")
    port = int(port_text)
    if port > 65535:
        raise ValueError(f"port out of range: {port}")
    host = host.strip("[]") or "0.0.0.0"
    return host, port


class ScheduleConfig(BaseSettings):
    """Immutable supervisor configuration.

    All fields can be set via ``CADENCE_*`` environment variables (e.g.
    ``CADENCE_INTERVAL_SECONDS=300``) or through a ``.env`` file.
    """

    model_config = SettingsConfigDict(
        env_prefix="CADENCE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
    )

    # ── Schedule ─────────────────────────────────────────────────
    interval_seconds: float = Field(default=300.0, gt=0, description="Seconds between ticks")
    run_timeout_seconds: float = Field(default=240.0, gt=0, description="Per-run time budget")
    run_on_start: bool = Field(default=False, description="Fire one run immediately at start")

    # ── Worker ───────────────────────────────────────────────────
    worker_path: str = Field(default="/app/flavortown_tracker", min_length=1)
    worker_args: list[str] = Field(default_factory=list)
    worker_env: dict[str, str] = Field(default_factory=dict)
    worker_cwd: str | None = Field(default=None)
    kill_grace_seconds: float = Field(default=5.0, gt=0, description="SIGTERM → SIGKILL window")
    output_tail_bytes: int = Field(default=8192, ge=0)

    # ── Health listener ──────────────────────────────────────────
    listen_address: str = Field(default="0.0.0.0:8080")
    failure_threshold: int = Field(default=3, ge=1)
    history_size: int = Field(default=50, ge=1)

    # ── Shutdown ─────────────────────────────────────────────────
    shutdown_grace_seconds: float = Field(default=10.0, gt=0)

    # ── Logging ──────────────────────────────────────────────────
    log_level: str = Field(default="INFO")
    log_format: Literal["json", "console", "auto"] = Field(default="auto")

    @field_validator("listen_address")
    @classmethod
    def _check_listen_address(cls, value: str) -> str:
        host, port = split_listen_address(value)
        return f"{host}:{port}"

    @field_validator("log_level")
    @classmethod
    def _check_log_level(cls, value: str) -> str:
        level = value.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"unknown log level {value!r}")
        return level

    @model_validator(mode="after")
    def _check_worker_path(self) -> ScheduleConfig:
        if not self.worker_path.strip():
            raise ValueError("worker_path must not be blank")
        return self

    # ── Derived properties ───────────────────────────────────────

    @property
    def host(self) -> str:
        return split_listen_address(self.listen_address)[0]

    @property
    def port(self) -> int:
        return split_listen_address(self.listen_address)[1]

    @property
    def command(self) -> list[str]:
        """Full argv for the worker process."""
        return [self.worker_path, *self.worker_args]

    def advisories(self) -> list[str]:
        """Non-fatal configuration warnings to log at startup."""
        notes = []
        if self.run_timeout_seconds > self.interval_seconds:
            notes.append(
                f"run_timeout_seconds ({self.run_timeout_seconds}) exceeds interval_seconds "
                f"({self.interval_seconds}); ticks will be skipped while a run is active"
            )
        return notes

    def summary(self) -> dict[str, Any]:
        """Loggable view of the configuration with worker_env values hidden."""
        data = self.model_dump()
        data["worker_env"] = {key: "***" for key in self.worker_env}
        return data


def load_config(**overrides: Any) -> ScheduleConfig:
    """Build a :class:`ScheduleConfig`, translating validation failures.

    ``None`` overrides are ignored so CLI options left unset fall through to
    the environment.

    Raises:
        ConfigError: If any value is missing or invalid.
    """
    explicit = {key: value for key, value in overrides.items() if value is not None}
    try:
        return ScheduleConfig(**explicit)
    except ValidationError as exc:
        errors = exc.errors()
        if len(errors) == 1 and errors[0].get("loc"):
            first = errors[0]
            key = str(first["loc"][0])
            raise InvalidConfigError(key, first.get("input"), f"Invalid configuration for {key}: {first['msg']}") from exc
        fields = sorted({str(error["loc"][0]) for error in errors if error.get("loc")})
        raise ConfigError(
            f"Invalid configuration: {exc.error_count()} errors", cause=exc
        ).with_context(setting=", ".join(fields) or None) from exc


__all__ = ["ScheduleConfig", "load_config", "split_listen_address"]
