"""Prometheus-style metrics for the supervisor.

Exposed as text on the health listener's ``/metrics`` endpoint.

Metric types:
- Counter: Monotonically increasing value, optionally split by labels
- Gauge: Value that can go up or down
- Histogram: Cumulative buckets of observed values

Example:
    >>> registry = MetricsRegistry()
    >>> metrics = SupervisorMetrics(registry)
    >>> metrics.record_run("SUCCESS", 0.42, consecutive_failures=0)
    >>> print(registry.export_prometheus())
"""

import threading
from abc import ABC, abstractmethod
from typing import Any

LabelKey = tuple[tuple[str, str], ...]


def _label_key(labels: dict[str, str]) -> LabelKey:
    return tuple(sorted(labels.items()))


def _format_labels(key: LabelKey, extra: str = "") -> str:
    parts = [f'{name}="{value}"' for name, value in key]
    if extra:
        parts.append(extra)
    return "{" + ",".join(parts) + "}" if parts else ""


class Metric(ABC):
    """Base class for metrics."""

    metric_type = "untyped"

    def __init__(self, name: str, description: str = ""):
        self.name = name
        self.description = description
        self._lock = threading.Lock()

    @abstractmethod
    def collect(self) -> list[dict[str, Any]]:
        """Current values as plain dicts."""

    @abstractmethod
    def samples(self) -> list[str]:
        """Exposition lines for this metric (without HELP/TYPE)."""

    def render(self) -> list[str]:
        header = [f"# HELP {self.name} {self.description}"] if self.description else []
        return header + [f"# TYPE {self.name} {self.metric_type}"] + self.samples()


class Counter(Metric):
    """A monotonically increasing counter (runs, skipped ticks)."""

    metric_type = "counter"

    def __init__(self, name: str, description: str = ""):
        super().__init__(name, description)
        self._values: dict[LabelKey, float] = {}

    def labels(self, **labels: str) -> "CounterChild":
        """Counter bound to one label set."""
        return CounterChild(self, _label_key(labels))

    def inc(self, value: float = 1.0) -> None:
        self.labels().inc(value)

    @property
    def value(self) -> float:
        return self.labels().value

    def _add(self, key: LabelKey, value: float) -> None:
        if value < 0:
            raise ValueError("Counter can only increase")
        with self._lock:
            self._values[key] = self._values.get(key, 0.0) + value

    def _read(self, key: LabelKey) -> float:
        with self._lock:
            return self._values.get(key, 0.0)

    def collect(self) -> list[dict[str, Any]]:
        with self._lock:
            return [{"labels": dict(key), "value": value} for key, value in self._values.items()]

    def samples(self) -> list[str]:
        with self._lock:
            items = list(self._values.items())
        return [f"{self.name}{_format_labels(key)} {value}" for key, value in items]


class CounterChild:
    """Counter with fixed labels."""

    def __init__(self, counter: Counter, key: LabelKey):
        self._counter = counter
        self._key = key

    def inc(self, value: float = 1.0) -> None:
        self._counter._add(self._key, value)

    @property
    def value(self) -> float:
        return self._counter._read(self._key)


class Gauge(Metric):
    """A value that can go up or down."""

    metric_type = "gauge"

    def __init__(self, name: str, description: str = ""):
        super().__init__(name, description)
        self._value = 0.0

    def set(self, value: float) -> None:
        with self._lock:
            self._value = float(value)

    @property
    def value(self) -> float:
        with self._lock:
            return self._value

    def collect(self) -> list[dict[str, Any]]:
        return [{"labels": {}, "value": self.value}]

    def samples(self) -> list[str]:
        return [f"{self.name} {self.value}"]


class Histogram(Metric):
    """Cumulative-bucket distribution (run durations, in seconds)."""

    metric_type = "histogram"

    DEFAULT_BUCKETS = (0.1, 0.5, 1.0, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0, float("inf"))

    def __init__(self, name: str, description: str = "", buckets: tuple[float, ...] | None = None):
        super().__init__(name, description)
        bounds = tuple(sorted(buckets or self.DEFAULT_BUCKETS))
        if bounds[-1] != float("inf"):
            bounds += (float("inf"),)
        self._bounds = bounds
        self._counts = [0] * len(bounds)
        self._sum = 0.0
        self._count = 0

    def observe(self, value: float) -> None:
        with self._lock:
            self._sum += value
            self._count += 1
            for i, bound in enumerate(self._bounds):
                if value <= bound:
                    self._counts[i] += 1

    @property
    def count(self) -> int:
        with self._lock:
            return self._count

    def collect(self) -> list[dict[str, Any]]:
        with self._lock:
            if not self._count:
                return []
            return [
                {
                    "labels": {},
                    "buckets": dict(zip(self._bounds, self._counts)),
                    "sum": self._sum,
                    "count": self._count,
                }
            ]

    def samples(self) -> list[str]:
        lines = []
        for data in self.collect():
            for bound, count in data["buckets"].items():
                le = "+Inf" if bound == float("inf") else bound
                lines.append(f'{self.name}_bucket{{le="{le}"}} {count}')
            lines.append(f"{self.name}_sum {data['sum']}")
            lines.append(f"{self.name}_count {data['count']}")
        return lines


class MetricsRegistry:
    """Named metrics, exported together in registration order."""

    def __init__(self):
        self._metrics: dict[str, Metric] = {}
        self._lock = threading.Lock()

    def _register(self, name: str, kind: type[Metric], **kwargs: Any) -> Any:
        with self._lock:
            metric = self._metrics.get(name)
            if metric is None:
                metric = self._metrics[name] = kind(name, **kwargs)
            elif not isinstance(metric, kind):
                raise ValueError(f"{name} is already registered as a {metric.metric_type}")
            return metric

    def counter(self, name: str, description: str = "") -> Counter:
        return self._register(name, Counter, description=description)

    def gauge(self, name: str, description: str = "") -> Gauge:
        return self._register(name, Gauge, description=description)

    def histogram(self, name: str, description: str = "", buckets: tuple[float, ...] | None = None) -> Histogram:
        return self._register(name, Histogram, description=description, buckets=buckets)

    def export_prometheus(self) -> str:
        """Text exposition format, version 0.0.4."""
        with self._lock:
            metrics = list(self._metrics.values())
        lines = [line for metric in metrics for line in metric.render()]
        return "\n".join(lines) + "\n"


class SupervisorMetrics:
    """Pre-defined metrics for the scheduler loop."""

    def __init__(self, registry: MetricsRegistry | None = None):
        self.registry = registry or MetricsRegistry()
        reg = self.registry

        self.runs = reg.counter(
            "cadence_runs_total",
            "Worker runs by terminal outcome",
        )

        self.skipped = reg.counter(
            "cadence_ticks_skipped_total",
            "Ticks skipped because the previous run was still active",
        )

        self.duration = reg.histogram(
            "cadence_run_duration_seconds",
            "Worker run duration in seconds",
        )

        self.consecutive_failures = reg.gauge(
            "cadence_consecutive_failures",
            "Failed runs since the last success",
        )

        self.run_active = reg.gauge(
            "cadence_run_active",
            "1 while a worker run is in flight",
        )

    def record_start(self) -> None:
        self.run_active.set(1)

    def record_run(self, outcome: str, duration: float | None, consecutive_failures: int) -> None:
        """Record a terminal run."""
        self.runs.labels(outcome=outcome).inc()
        if duration is not None:
            self.duration.observe(duration)
        self.consecutive_failures.set(consecutive_failures)
        self.run_active.set(0)

    def record_skip(self) -> None:
        self.skipped.inc()
