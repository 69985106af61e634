"""
Cadence - periodic task supervisor.

Runs a short-lived worker binary on a fixed cadence inside a long-lived
process and serves liveness/readiness probes while it does.
"""

__version__ = "0.1.0"
