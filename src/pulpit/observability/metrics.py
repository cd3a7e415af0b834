"""Pulpit Metrics Collection.

Prometheus-compatible counters and histograms for the device gateway,
exposed via the /metrics endpoint.

Example:
    >>> from pulpit.observability.metrics import MetricsCollector
    >>> collector = MetricsCollector()
    >>> collector.increment_counter("pulpit_executions_total", {"channel": "socket"})
    >>> collector.observe_histogram("pulpit_execution_duration_seconds", 0.42)
    >>> print(collector.export_prometheus())
"""

from __future__ import annotations

import bisect
import threading
import time
from dataclasses import dataclass, field
from typing import ClassVar

LabelKey = tuple[tuple[str, str], ...]

# Execution latency spans sub-second socket round trips up to the 300s ceiling
DEFAULT_LATENCY_BUCKETS = (0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 300.0)


def _label_key(labels: dict[str, str] | None) -> LabelKey:
    return tuple(sorted((labels or {}).items()))


def _escape(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"').replace("\n", "\\n")


def _render_labels(labels: LabelKey, extra: tuple[str, str] | None = None) -> str:
    pairs = [*labels, extra] if extra is not None else list(labels)
    if not pairs:
        return ""
    return "{" + ",".join(f'{k}="{_escape(v)}"' for k, v in pairs) + "}"


@dataclass
class Counter:
    """A monotonically increasing counter metric."""

    name: str
    help_text: str
    values: dict[LabelKey, float] = field(default_factory=dict)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def increment(self, labels: dict[str, str] | None = None, value: float = 1.0) -> None:
        key = _label_key(labels)
        with self._lock:
            self.values[key] = self.values.get(key, 0.0) + value

    def get(self, labels: dict[str, str] | None = None) -> float:
        with self._lock:
            return self.values.get(_label_key(labels), 0.0)

    def render(self) -> list[str]:
        lines = [f"# HELP {self.name} {self.help_text}", f"# TYPE {self.name} counter"]
        with self._lock:
            if not self.values:
                lines.append(f"{self.name} 0")
            for key, value in self.values.items():
                lines.append(f"{self.name}{_render_labels(key)} {value}")
        return lines


@dataclass
class HistogramSeries:
    """Observations for one label set. ``counts[i]`` holds values in bucket i only."""

    counts: list[float]
    total: float = 0.0
    observations: float = 0.0


@dataclass
class Histogram:
    """A histogram metric for measuring distributions."""

    name: str
    help_text: str
    buckets: tuple[float, ...] = DEFAULT_LATENCY_BUCKETS
    series: dict[LabelKey, HistogramSeries] = field(default_factory=dict)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def observe(self, value: float, labels: dict[str, str] | None = None) -> None:
        key = _label_key(labels)
        with self._lock:
            entry = self.series.get(key)
            if entry is None:
                entry = self.series[key] = HistogramSeries(counts=[0.0] * len(self.buckets))
            index = bisect.bisect_left(self.buckets, value)
            if index < len(self.buckets):
                entry.counts[index] += 1.0
            entry.total += value
            entry.observations += 1.0

    def get_count(self, labels: dict[str, str] | None = None) -> float:
        with self._lock:
            entry = self.series.get(_label_key(labels))
            return entry.observations if entry is not None else 0.0

    def render(self) -> list[str]:
        lines = [f"# HELP {self.name} {self.help_text}", f"# TYPE {self.name} histogram"]
        with self._lock:
            if not self.series:
                for bound in self.buckets:
                    lines.append(f'{self.name}_bucket{{le="{bound}"}} 0')
                lines.append(f'{self.name}_bucket{{le="+Inf"}} 0')
                lines.append(f"{self.name}_sum 0")
                lines.append(f"{self.name}_count 0")
                return lines
            for key, entry in self.series.items():
                cumulative = 0.0
                for bound, count in zip(self.buckets, entry.counts):
                    cumulative += count
                    lines.append(
                        f"{self.name}_bucket{_render_labels(key, ('le', str(bound)))} {cumulative}"
                    )
                lines.append(
                    f"{self.name}_bucket{_render_labels(key, ('le', '+Inf'))} {entry.observations}"
                )
                lines.append(f"{self.name}_sum{_render_labels(key)} {entry.total}")
                lines.append(f"{self.name}_count{_render_labels(key)} {entry.observations}")
        return lines


class MetricsCollector:
    """Collects gateway metrics and renders them in Prometheus text format.

    Thread-safe. Names outside DEFAULT_COUNTERS / DEFAULT_HISTOGRAMS must be
    registered before use; updates to unknown names are ignored.
    """

    DEFAULT_COUNTERS: ClassVar[dict[str, str]] = {
        "pulpit_ws_connections_total": "Total number of device WebSocket connections accepted",
        "pulpit_auth_success_total": "Total number of successful device authentications",
        "pulpit_auth_failures_total": "Total number of failed device authentications",
        "pulpit_auth_timeouts_total": "Total number of connections closed for missing auth",
        "pulpit_sessions_superseded_total": (
            "Total number of sessions replaced by a newer connection"
        ),
        "pulpit_sessions_evicted_total": "Total number of sessions evicted for missed heartbeats",
        "pulpit_protocol_errors_total": "Total number of dropped malformed or out-of-order frames",
        "pulpit_executions_total": "Total number of executions by channel and status",
        "pulpit_late_results_total": "Total number of results with no pending execution",
        "pulpit_push_sent_total": "Total number of pushes accepted by the provider",
        "pulpit_push_errors_total": "Total number of push delivery failures",
        "pulpit_scheduled_tasks_total": "Total number of scheduled tasks processed by status",
    }

    DEFAULT_HISTOGRAMS: ClassVar[dict[str, str]] = {
        "pulpit_execution_duration_seconds": "Execution round-trip duration in seconds",
    }

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._started = time.time()
        self._counters = {
            name: Counter(name=name, help_text=text) for name, text in self.DEFAULT_COUNTERS.items()
        }
        self._histograms = {
            name: Histogram(name=name, help_text=text)
            for name, text in self.DEFAULT_HISTOGRAMS.items()
        }

    def register_counter(self, name: str, help_text: str) -> None:
        with self._lock:
            self._counters.setdefault(name, Counter(name=name, help_text=help_text))

    def register_histogram(
        self, name: str, help_text: str, buckets: tuple[float, ...] = DEFAULT_LATENCY_BUCKETS
    ) -> None:
        with self._lock:
            self._histograms.setdefault(
                name, Histogram(name=name, help_text=help_text, buckets=tuple(sorted(buckets)))
            )

    def increment_counter(
        self, name: str, labels: dict[str, str] | None = None, value: float = 1.0
    ) -> None:
        counter = self._counters.get(name)
        if counter is not None:
            counter.increment(labels, value)

    def observe_histogram(
        self, name: str, value: float, labels: dict[str, str] | None = None
    ) -> None:
        histogram = self._histograms.get(name)
        if histogram is not None:
            histogram.observe(value, labels)

    def get_counter(self, name: str, labels: dict[str, str] | None = None) -> float:
        counter = self._counters.get(name)
        return counter.get(labels) if counter is not None else 0.0

    def get_histogram_count(self, name: str, labels: dict[str, str] | None = None) -> float:
        histogram = self._histograms.get(name)
        return histogram.get_count(labels) if histogram is not None else 0.0

    def export_prometheus(self) -> str:
        """Render every metric, plus process uptime, as Prometheus text."""
        with self._lock:
            counters = list(self._counters.values())
            histograms = list(self._histograms.values())
        lines: list[str] = []
        for counter in counters:
            lines.extend(counter.render())
        for histogram in histograms:
            lines.extend(histogram.render())
        lines.append("# HELP pulpit_process_uptime_seconds Time since server start")
        lines.append("# TYPE pulpit_process_uptime_seconds gauge")
        lines.append(f"pulpit_process_uptime_seconds {time.time() - self._started:.3f}")
        return "\n".join(lines) + "\n"

    def reset(self) -> None:
        """Zero every metric. Registered names are kept."""
        with self._lock:
            for counter in self._counters.values():
                with counter._lock:
                    counter.values.clear()
            for histogram in self._histograms.values():
                with histogram._lock:
                    histogram.series.clear()


_collector: MetricsCollector | None = None
_collector_lock = threading.Lock()


def get_metrics() -> MetricsCollector:
    """Return the process-wide collector, creating it on first use."""
    global _collector
    with _collector_lock:
        if _collector is None:
            _collector = MetricsCollector()
        return _collector


def reset_metrics() -> None:
    """Zero the process-wide collector. Used between tests."""
    with _collector_lock:
        if _collector is not None:
            _collector.reset()
