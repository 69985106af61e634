"""Tests for cadence.observability.metrics."""

import pytest

from cadence.observability.metrics import Counter, Gauge, Histogram, MetricsRegistry, SupervisorMetrics


class TestPrimitives:
    def test_counter_labels_are_independent(self):
        c = Counter("runs_total")
        c.labels(outcome="SUCCESS").inc()
        c.labels(outcome="SUCCESS").inc()
        c.labels(outcome="TIMED_OUT").inc()
        assert c.labels(outcome="SUCCESS").value == 2
        assert c.labels(outcome="TIMED_OUT").value == 1
        assert c.value == 0

    def test_counter_cannot_decrease(self):
        with pytest.raises(ValueError):
            Counter("c").inc(-1)

    def test_gauge(self):
        g = Gauge("active")
        g.set(1)
        g.set(0)
        assert g.value == 0.0

    def test_histogram_buckets_are_cumulative(self):
        h = Histogram("duration", buckets=(1.0, 5.0, float("inf")))
        h.observe(0.5)
        h.observe(3.0)
        h.observe(100.0)
        data = h.collect()[0]
        assert data["buckets"] == {1.0: 1, 5.0: 2, float("inf"): 3}
        assert data["count"] == 3
        assert h.count == 3

    def test_registry_returns_same_metric(self):
        reg = MetricsRegistry()
        assert reg.counter("x") is reg.counter("x")

    def test_registry_rejects_type_clash(self):
        reg = MetricsRegistry()
        reg.counter("x")
        with pytest.raises(ValueError):
            reg.gauge("x")

    def test_histogram_always_has_inf_bucket(self):
        h = Histogram("d", buckets=(1.0,))
        h.observe(2.0)
        assert h.collect()[0]["buckets"] == {1.0: 0, float("inf"): 1}


class TestPrometheusExport:
    def test_supervisor_metrics_export(self):
        metrics = SupervisorMetrics()
        metrics.record_start()
        metrics.record_run("SUCCESS", 0.42, consecutive_failures=0)
        metrics.record_start()
        metrics.record_run("NON_ZERO_EXIT", 1.5, consecutive_failures=1)
        metrics.record_skip()

        text = metrics.registry.export_prometheus()
        assert "# TYPE cadence_runs_total counter" in text
        assert 'cadence_runs_total{outcome="SUCCESS"} 1.0' in text
        assert 'cadence_runs_total{outcome="NON_ZERO_EXIT"} 1.0' in text
        assert "cadence_ticks_skipped_total 1.0" in text
        assert "cadence_consecutive_failures 1.0" in text
        assert "cadence_run_active 0.0" in text
        assert 'cadence_run_duration_seconds_bucket{le="+Inf"} 2' in text
        assert "cadence_run_duration_seconds_count 2" in text
        assert text.endswith("\n")

    def test_run_active_gauge(self):
        metrics = SupervisorMetrics()
        metrics.record_start()
        assert metrics.run_active.value == 1.0

    def test_launch_failure_without_duration(self):
        metrics = SupervisorMetrics()
        metrics.record_run("LAUNCH_FAILED", None, consecutive_failures=1)
        assert metrics.duration.count == 0
        assert metrics.runs.labels(outcome="LAUNCH_FAILED").value == 1
