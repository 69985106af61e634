"""
HTTP layer for the supervisor.

Quick start::

    from cadence.api import create_app

    app = create_app(config=config, state=health_state)

Manifesto:
    This package owns the HTTP boundary. Handlers read health snapshots
    and run records; they never start, stop or wait on a worker.
"""

from cadence.api.app import create_app

__all__ = ["create_app"]
