"""Tests for Pulpit observability metrics module."""

import threading

from pulpit.observability.metrics import (
    Counter,
    Histogram,
    MetricsCollector,
    get_metrics,
    reset_metrics,
)


class TestCounter:
    """Tests for Counter metric."""

    def test_counter_increment_default(self) -> None:
        """Test counter increments by 1 by default."""
        counter = Counter(name="test_counter", help_text="Test counter")
        counter.increment()
        assert counter.get() == 1.0

    def test_counter_increment_with_labels(self) -> None:
        """Test counter with labels."""
        counter = Counter(name="test_counter", help_text="Test counter")
        counter.increment(labels={"channel": "socket"})
        counter.increment(labels={"channel": "push"})
        counter.increment(labels={"channel": "socket"})

        assert counter.get(labels={"channel": "socket"}) == 2.0
        assert counter.get(labels={"channel": "push"}) == 1.0
        assert counter.get(labels={"channel": "webhook"}) == 0.0

    def test_label_order_does_not_matter(self) -> None:
        counter = Counter(name="test_counter", help_text="Test counter")
        counter.increment(labels={"channel": "socket", "status": "succeeded"})

        assert counter.get(labels={"status": "succeeded", "channel": "socket"}) == 1.0


class TestHistogram:
    """Tests for Histogram metric."""

    def test_histogram_observe_with_labels(self) -> None:
        """Test histogram with labels."""
        histogram = Histogram(
            name="test_histogram",
            help_text="Test histogram",
            buckets=(0.1, 0.5, 1.0),
        )
        histogram.observe(0.25, labels={"channel": "socket"})
        histogram.observe(0.75, labels={"channel": "push"})
        histogram.observe(0.15, labels={"channel": "socket"})

        assert histogram.get_count(labels={"channel": "socket"}) == 2.0
        assert histogram.get_count(labels={"channel": "push"}) == 1.0
        assert histogram.get_count(labels={"channel": "webhook"}) == 0.0


class TestMetricsCollector:
    """Tests for MetricsCollector."""

    def test_default_metrics_are_registered(self) -> None:
        collector = MetricsCollector()
        output = collector.export_prometheus()

        assert "# TYPE pulpit_executions_total counter" in output
        assert "# TYPE pulpit_execution_duration_seconds histogram" in output
        assert "pulpit_process_uptime_seconds" in output

    def test_unknown_metric_is_ignored(self) -> None:
        """Unregistered names are dropped rather than created implicitly."""
        collector = MetricsCollector()
        collector.increment_counter("not_registered_total")

        assert collector.get_counter("not_registered_total") == 0.0

    def test_register_counter(self) -> None:
        collector = MetricsCollector()
        collector.register_counter("custom_total", "Custom counter")
        collector.increment_counter("custom_total", value=3)

        assert collector.get_counter("custom_total") == 3.0

    def test_export_labels_and_buckets(self) -> None:
        """Histogram buckets are cumulative and carry the series labels."""
        collector = MetricsCollector()
        collector.increment_counter(
            "pulpit_executions_total", {"channel": "socket", "status": "succeeded"}
        )
        collector.observe_histogram("pulpit_execution_duration_seconds", 0.2, {"channel": "socket"})
        collector.observe_histogram("pulpit_execution_duration_seconds", 3.0, {"channel": "socket"})

        output = collector.export_prometheus()

        assert 'pulpit_executions_total{channel="socket",status="succeeded"} 1.0' in output
        assert 'pulpit_execution_duration_seconds_bucket{channel="socket",le="0.25"} 1.0' in output
        assert 'pulpit_execution_duration_seconds_bucket{channel="socket",le="5.0"} 2.0' in output
        assert 'pulpit_execution_duration_seconds_bucket{channel="socket",le="+Inf"} 2.0' in output
        assert 'pulpit_execution_duration_seconds_count{channel="socket"} 2.0' in output

    def test_label_values_are_escaped(self) -> None:
        collector = MetricsCollector()
        collector.increment_counter("pulpit_push_errors_total", {"reason": 'Bad"Token'})

        assert 'reason="Bad\\"Token"' in collector.export_prometheus()

    def test_thread_safe_increments(self) -> None:
        collector = MetricsCollector()

        def work() -> None:
            for _ in range(1000):
                collector.increment_counter("pulpit_ws_connections_total")

        threads = [threading.Thread(target=work) for _ in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert collector.get_counter("pulpit_ws_connections_total") == 4000.0

    def test_reset(self) -> None:
        collector = MetricsCollector()
        collector.increment_counter("pulpit_auth_success_total")
        collector.observe_histogram("pulpit_execution_duration_seconds", 1.0)

        collector.reset()

        assert collector.get_counter("pulpit_auth_success_total") == 0.0
        assert collector.get_histogram_count("pulpit_execution_duration_seconds") == 0.0


class TestGlobalMetrics:
    """Tests for the process-wide collector."""

    def test_get_metrics_is_singleton(self) -> None:
        assert get_metrics() is get_metrics()

    def test_reset_metrics(self) -> None:
        get_metrics().increment_counter("pulpit_auth_failures_total")

        reset_metrics()

        assert get_metrics().get_counter("pulpit_auth_failures_total") == 0.0
