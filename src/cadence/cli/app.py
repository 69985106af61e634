"""
Root Typer application for the cadence CLI.

    cadence run [OPTIONS] [WORKER_CMD]...   Start the supervisor
    cadence config                          Print the resolved configuration
    cadence --version

Options left unset fall through to ``CADENCE_*`` environment variables and
``.env``; anything after the first positional argument (or after ``--``)
is the worker command.
"""

from __future__ import annotations

import typer

from cadence import __version__, supervisor
from cadence.cli.utils import err_console, parse_env_pairs, print_error, print_json
from cadence.core.errors import ConfigError
from cadence.core.logging import configure_logging, resolve_json_format
from cadence.core.settings import load_config

app = typer.Typer(
    name="cadence",
    help="cadence — run a worker binary on a fixed cadence with health probes.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


# ── Version callback ─────────────────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"cadence {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(  # noqa: UP007
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
) -> None:
    """cadence CLI — periodic task supervisor."""


# ── Commands ─────────────────────────────────────────────────────────────


@app.command("run", context_settings={"allow_interspersed_args": False})
def run(
    worker_cmd: list[str] | None = typer.Argument(
        None, metavar="[WORKER_CMD]...", help="Worker executable and its arguments."
    ),
    interval: float | None = typer.Option(None, "--interval", "-i", help="Seconds between runs."),
    run_timeout: float | None = typer.Option(None, "--run-timeout", "-t", help="Per-run time budget in seconds."),
    listen: str | None = typer.Option(None, "--listen", "-l", help="Health listener address (host:port)."),
    failure_threshold: int | None = typer.Option(None, "--failure-threshold", help="Failed runs before unready."),
    kill_grace: float | None = typer.Option(None, "--kill-grace", help="Seconds between SIGTERM and SIGKILL."),
    shutdown_grace: float | None = typer.Option(None, "--shutdown-grace", help="Grace for the in-flight run on exit."),
    history: int | None = typer.Option(None, "--history", help="Run records kept for /runs."),
    output_tail: int | None = typer.Option(None, "--output-tail-bytes", help="Bytes of stdout/stderr kept per run."),
    run_on_start: bool = typer.Option(False, "--run-on-start", help="Run once at startup."),
    env: list[str] | None = typer.Option(None, "--env", "-e", help="Extra worker environment (KEY=VALUE)."),
    cwd: str | None = typer.Option(None, "--cwd", help="Worker working directory."),
    log_level: str | None = typer.Option(None, "--log-level", help="DEBUG, INFO, WARNING or ERROR."),
    log_format: str | None = typer.Option(None, "--log-format", help="json, console or auto."),
) -> None:
    """Start the supervisor and run until SIGTERM/SIGINT."""
    overrides = {
        "interval_seconds": interval,
        "run_timeout_seconds": run_timeout,
        "listen_address": listen,
        "failure_threshold": failure_threshold,
        "kill_grace_seconds": kill_grace,
        "shutdown_grace_seconds": shutdown_grace,
        "history_size": history,
        "output_tail_bytes": output_tail,
        "run_on_start": True if run_on_start else None,
        "worker_env": parse_env_pairs(env),
        "worker_cwd": cwd,
        "log_level": log_level,
        "log_format": log_format,
    }
    if worker_cmd:
        overrides["worker_path"] = worker_cmd[0]
        overrides["worker_args"] = list(worker_cmd[1:])

    try:
        config = load_config(**overrides)
    except ConfigError as e:
        print_error(e.message)
        raise typer.Exit(code=e.exit_code) from e

    configure_logging(level=config.log_level, json_format=resolve_json_format(config.log_format))
    raise typer.Exit(code=supervisor.main(config))


@app.command("config")
def show_config() -> None:
    """Print the resolved configuration (worker_env values masked)."""
    try:
        config = load_config()
    except ConfigError as e:
        print_error(e.message)
        raise typer.Exit(code=e.exit_code) from e

    for note in config.advisories():
        err_console.print(f"[yellow]warning:[/yellow] {note}")
    print_json(config.summary())
