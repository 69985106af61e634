"""In-process metrics with Prometheus text export."""

from cadence.observability.metrics import MetricsRegistry, SupervisorMetrics

__all__ = ["MetricsRegistry", "SupervisorMetrics"]
