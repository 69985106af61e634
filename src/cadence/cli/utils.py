"""
CLI utility helpers — consoles and option parsing.
"""

from __future__ import annotations

import json
from typing import Any

import typer
from rich.console import Console

console = Console()
err_console = Console(stderr=True)


def parse_env_pairs(pairs: list[str] | None) -> dict[str, str] | None:
    """Turn repeated ``--env KEY=VALUE`` options into a mapping.

    Returns ``None`` when no pairs were given so the environment setting
    still applies.
    """
    if not pairs:
        return None
    env: dict[str, str] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise typer.BadParameter(f"expected KEY=VALUE, got {pair!r}", param_hint="--env")
        env[key] = value
    return env


def print_json(data: Any) -> None:
    """Print *data* as indented JSON."""
    console.print_json(json.dumps(data, default=str))


def print_error(message: str) -> None:
    err_console.print(f"[red]Error:[/red] {message}")
