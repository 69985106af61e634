"""Command-line interface (``cadence``)."""
