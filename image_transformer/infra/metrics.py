from __future__ import annotations
import time
from collections import defaultdict, deque
from threading import Lock
from typing import Dict
from dataclasses import dataclass, field
from image_transformer.infra.logging_config import get_logger

logger = get_logger(__name__)


@dataclass
class Counter:
    """Simple counter metric"""
    value: int = 0

    def inc(self, amount: int = 1) -> None:
        self.value += amount


# Observations kept for percentile estimates
HISTOGRAM_WINDOW = 1024


@dataclass
class Histogram:
    """
    Track distribution of values (e.g., stage durations).

    count/min/max/avg cover every observation; p95/p99 cover the last
    HISTOGRAM_WINDOW values.
    """
    values: deque = field(default_factory=lambda: deque(maxlen=HISTOGRAM_WINDOW))
    count: int = 0
    total: float = 0.0
    min: float = 0.0
    max: float = 0.0

    def observe(self, value: float) -> None:
        if self.count == 0:
            self.min = self.max = value
        else:
            self.min = min(self.min, value)
            self.max = max(self.max, value)
        self.count += 1
        self.total += value
        self.values.append(value)

    def get_stats(self) -> dict:
        if not self.count:
            return {"count": 0, "min": 0, "max": 0, "avg": 0, "p95": 0, "p99": 0}

        window = sorted(self.values)
        size = len(window)

        def percentile(p: float) -> float:
            idx = int(size * p)
            return window[min(idx, size - 1)]

        return {
            "count": self.count,
            "min": self.min,
            "max": self.max,
            "avg": self.total / self.count,
            "p95": percentile(0.95),
            "p99": percentile(0.99),
        }


class MetricsCollector:
    """
    Lightweight in-process metrics collection.
    Values are per worker process; a scrape sees only the worker that served it.
    """

    def __init__(self):
        self._counters: Dict[str, Counter] = defaultdict(Counter)
        self._histograms: Dict[str, Histogram] = defaultdict(Histogram)
        self._lock = Lock()

    def inc_counter(self, name: str, amount: int = 1, labels: dict | None = None) -> None:
        """Increment a counter metric"""
        key = self._make_key(name, labels)
        with self._lock:
            self._counters[key].inc(amount)

    def observe_histogram(self, name: str, value: float, labels: dict | None = None) -> None:
        """Add a value to histogram"""
        key = self._make_key(name, labels)
        with self._lock:
            self._histograms[key].observe(value)

    def get_metrics(self) -> dict:
        """Get all current metrics"""
        with self._lock:
            counters = {k: v.value for k, v in self._counters.items()}
            histograms = {k: v.get_stats() for k, v in self._histograms.items()}

        return {
            "counters": counters,
            "histograms": histograms,
        }

    def reset(self) -> None:
        """Reset all metrics"""
        with self._lock:
            self._counters.clear()
            self._histograms.clear()
        logger.info("Metrics reset")

    @staticmethod
    def _make_key(name: str, labels: dict | None) -> str:
        """Create a metric key from name and labels"""
        if not labels:
            return name
        label_str = ",".join(f"{k}={v}" for k, v in sorted(labels.items()))
        return f"{name}{{{label_str}}}"


# Global metrics collector
_metrics = MetricsCollector()


def get_metrics_collector() -> MetricsCollector:
    """Get the global metrics collector"""
    return _metrics


def inc_counter(name: str, amount: int = 1, **labels) -> None:
    """Increment a counter metric"""
    _metrics.inc_counter(name, amount, labels or None)


def observe_histogram(name: str, value: float, **labels) -> None:
    """Record a histogram value"""
    _metrics.observe_histogram(name, value, labels or None)


class Timer:
    """Context manager to time operations"""

    def __init__(self, metric_name: str, **labels):
        self.metric_name = metric_name
        self.labels = labels
        self.start_time: float | None = None

    def __enter__(self):
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self.start_time is not None:
            duration = time.perf_counter() - self.start_time
            observe_histogram(self.metric_name, duration, **self.labels)


class TransformMetrics:
    """Pipeline-level metrics tracking"""

    @staticmethod
    def request_finished(endpoint: str, outcome: str) -> None:
        inc_counter("image_requests_total", endpoint=endpoint, outcome=outcome)

    @staticmethod
    def placeholder_failed() -> None:
        inc_counter("image_placeholder_failures_total")

    @staticmethod
    def track_stage(endpoint: str, stage: str) -> Timer:
        return Timer("image_stage_seconds", endpoint=endpoint, stage=stage)
