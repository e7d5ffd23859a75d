"""
Metrics Collection

Prometheus-backed metrics for tile generation runs. Each collector owns its
own registry so concurrent pipelines and tests never collide on metric
names. Metrics can be exported in the Prometheus text format or pushed to a
Pushgateway at the end of a job.
"""

import threading
from collections import defaultdict
from typing import Dict, List, Optional, Tuple, Union

import structlog
from prometheus_client import (
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
    push_to_gateway,
)


class MetricsCollector:
    """
    Thread-safe metrics collection for boundary tile generation.

    Counters, histograms and gauges are declared up front; recording a
    metric that was never declared is logged and ignored.
    """

    def __init__(self, prometheus_gateway: Optional[str] = None):
        """
        Initialize the metrics collector.

        Args:
            prometheus_gateway: Optional Prometheus Pushgateway address
        """
        self.prometheus_gateway = prometheus_gateway
        self.logger = structlog.get_logger(collector_type="MetricsCollector")

        self.totals: Dict[Tuple[str, Tuple[Tuple[str, str], ...]], float] = defaultdict(float)
        self.lock = threading.RLock()

        self.registry = CollectorRegistry()
        self.counters: Dict[str, Counter] = {}
        self.histograms: Dict[str, Histogram] = {}
        self.gauges: Dict[str, Gauge] = {}

        self._create_metric(
            'counter', 'tiles_processed_total',
            'Tile coordinates visited, by outcome',
            ['boundary_type', 'status']
        )
        self._create_metric(
            'counter', 'tile_runs_total',
            'Pipeline runs, by outcome',
            ['boundary_type', 'status']
        )
        self._create_metric(
            'histogram', 'tile_run_duration_seconds',
            'Duration of a pipeline run',
            ['boundary_type']
        )
        self._create_metric(
            'gauge', 'tile_run_progress_ratio',
            'Fraction of tile coordinates visited',
            ['boundary_type']
        )

    def _create_metric(
        self,
        metric_type: str,
        name: str,
        description: str,
        labels: List[str]
    ) -> None:
        if metric_type == 'counter':
            self.counters[name] = Counter(name, description, labels, registry=self.registry)
        elif metric_type == 'histogram':
            self.histograms[name] = Histogram(name, description, labels, registry=self.registry)
        elif metric_type == 'gauge':
            self.gauges[name] = Gauge(name, description, labels, registry=self.registry)
        else:
            raise ValueError(f"Unknown metric type: {metric_type}")

    def increment_counter(
        self,
        name: str,
        value: Union[int, float] = 1,
        labels: Optional[Dict[str, str]] = None
    ) -> None:
        """Increment a counter metric."""
        labels = labels or {}
        if name not in self.counters:
            self.logger.warning("Unknown counter", metric_name=name)
            return

        with self.lock:
            self.counters[name].labels(**labels).inc(value)
            self.totals[(name, tuple(sorted(labels.items())))] += value

    def record_histogram(
        self,
        name: str,
        value: Union[int, float],
        labels: Optional[Dict[str, str]] = None
    ) -> None:
        """Record an observation in a histogram metric."""
        labels = labels or {}
        if name not in self.histograms:
            self.logger.warning("Unknown histogram", metric_name=name)
            return

        with self.lock:
            self.histograms[name].labels(**labels).observe(value)

    def set_gauge(
        self,
        name: str,
        value: Union[int, float],
        labels: Optional[Dict[str, str]] = None
    ) -> None:
        """Set a gauge metric."""
        labels = labels or {}
        if name not in self.gauges:
            self.logger.warning("Unknown gauge", metric_name=name)
            return

        with self.lock:
            self.gauges[name].labels(**labels).set(value)

    def get_counter_total(self, name: str, **labels: str) -> float:
        """Sum of a counter across label sets matching ``labels``."""
        with self.lock:
            return sum(
                value for (metric, label_items), value in self.totals.items()
                if metric == name and set(labels.items()) <= set(label_items)
            )

    def export_metrics(self) -> str:
        """Export all metrics in the Prometheus text format."""
        return generate_latest(self.registry).decode('utf-8')

    def push_to_prometheus_gateway(self, job_name: str = "boundary_tiles") -> bool:
        """Push metrics to the configured Pushgateway."""
        if not self.prometheus_gateway:
            return False

        try:
            push_to_gateway(self.prometheus_gateway, job=job_name, registry=self.registry)
        except OSError as e:
            self.logger.error("Failed to push metrics to Prometheus gateway", error=str(e))
            return False

        self.logger.info(
            "Pushed metrics to Prometheus gateway",
            gateway=self.prometheus_gateway,
            job=job_name
        )
        return True
