"""Allow ``python -m cadence``."""

from cadence.cli.app import app

app(prog_name="cadence")
