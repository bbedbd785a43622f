"""
Shared metrics configuration for the loadcache engine.
"""

from typing import Dict, Any, Optional
import threading

from prometheus_client import Counter, Histogram, Gauge, CollectorRegistry, generate_latest


class MetricsCollector:
    """Centralized metrics collector for one engine instance.

    Each collector owns its registry unless one is passed in, so several
    engines (or test instances) never collide on metric names.
    """

    def __init__(self, service_name: str, registry: Optional[CollectorRegistry] = None):
        self.service_name = service_name
        self.registry = registry if registry is not None else CollectorRegistry()
        self._metrics: Dict[str, Any] = {}
        self._lock = threading.Lock()
        self._setup_metrics()

    def _setup_metrics(self):
        """Set up load-coordination metrics."""
        self._metrics["loads_total"] = Counter(
            "loadcache_loads_total",
            "Total loader executions by outcome",
            ["result"],
            registry=self.registry
        )

        self._metrics["cache_hits_total"] = Counter(
            "loadcache_cache_hits_total",
            "Requests answered without invoking a loader",
            ["kind"],
            registry=self.registry
        )

        self._metrics["refusals_total"] = Counter(
            "loadcache_refusals_total",
            "Loads refused by the readiness gate",
            ["reason"],
            registry=self.registry
        )

        self._metrics["retries_total"] = Counter(
            "loadcache_retries_total",
            "Loader retries after a failed attempt",
            registry=self.registry
        )

        self._metrics["discarded_completions_total"] = Counter(
            "loadcache_discarded_completions_total",
            "Completed loads dropped because their generation was superseded",
            registry=self.registry
        )

        self._metrics["readiness_commits_total"] = Counter(
            "loadcache_readiness_commits_total",
            "Settled readiness states published",
            registry=self.registry
        )

        self._metrics["load_duration_seconds"] = Histogram(
            "loadcache_load_duration_seconds",
            "Loader duration including retries",
            ["result"],
            registry=self.registry
        )

        self._metrics["in_flight_loads"] = Gauge(
            "loadcache_in_flight_loads",
            "Keys currently loading",
            registry=self.registry
        )

    def get_metric(self, name: str):
        """Get a metric by name."""
        return self._metrics.get(name)

    def get_sample_value(self, name: str, labels: Optional[Dict[str, str]] = None) -> Optional[float]:
        """Read a sample from this collector's registry."""
        return self.registry.get_sample_value(name, labels or {})

    def export(self) -> bytes:
        """Render the registry in Prometheus text format."""
        return generate_latest(self.registry)

    def increment_counter(self, metric_name: str, amount: float = 1.0, **labels):
        """Increment a counter metric."""
        metric = self._metrics.get(metric_name)
        if metric is None:
            return
        with self._lock:
            (metric.labels(**labels) if labels else metric).inc(amount)

    def set_gauge(self, metric_name: str, value: float, **labels):
        """Set a gauge metric value."""
        metric = self._metrics.get(metric_name)
        if metric is None:
            return
        with self._lock:
            (metric.labels(**labels) if labels else metric).set(value)

    def observe_histogram(self, metric_name: str, value: float, **labels):
        """Observe a histogram metric."""
        metric = self._metrics.get(metric_name)
        if metric is None:
            return
        with self._lock:
            (metric.labels(**labels) if labels else metric).observe(value)


def get_metrics_collector(service_name: str, registry: Optional[CollectorRegistry] = None) -> MetricsCollector:
    """Get a metrics collector for an engine."""
    return MetricsCollector(service_name, registry)
