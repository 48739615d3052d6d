"""
Defines the Prometheus metrics exported by the harvester.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from prometheus_client import REGISTRY as _PROM_REGISTRY
from prometheus_client import Counter as _OrigCounter
from prometheus_client import Gauge as _OrigGauge
from prometheus_client import Histogram as _OrigHistogram
from prometheus_client import generate_latest, start_http_server


def _duplicate_safe_factory(metric_cls):
    """Return a factory that reuses an existing collector if already present."""

    def _factory(name: str, documentation: str, *args, **kwargs):  # type: ignore[override]
        existing = _PROM_REGISTRY._names_to_collectors.get(name)
        if existing is not None:
            return existing
        try:
            return metric_cls(name, documentation, *args, **kwargs)
        except ValueError:
            # Lost a registration race, reuse the winner
            return _PROM_REGISTRY._names_to_collectors[name]

    return _factory


Counter = _duplicate_safe_factory(_OrigCounter)
Gauge = _duplicate_safe_factory(_OrigGauge)
Histogram = _duplicate_safe_factory(_OrigHistogram)


def _create_metrics() -> Dict[str, Any]:
    return {
        "pages_total": Counter(
            "pageharvest_pages_total",
            "Page attempts by final outcome",
            ["outcome"],
        ),
        "records_total": Counter(
            "pageharvest_records_total",
            "Unique records harvested",
        ),
        "duplicates_total": Counter(
            "pageharvest_duplicates_total",
            "Records dropped as duplicates",
        ),
        "rate_limit_events_total": Counter(
            "pageharvest_rate_limit_events_total",
            "Explicit throttling signals received from upstream",
        ),
        "cooldowns_total": Counter(
            "pageharvest_cooldowns_total",
            "Extended cooldowns after consecutive failed pages",
        ),
        "checkpoints_total": Counter(
            "pageharvest_checkpoints_total",
            "Checkpoints written",
        ),
        "batches_flushed_total": Counter(
            "pageharvest_batches_flushed_total",
            "Batches flushed to storage",
        ),
        "fetch_latency_seconds": Histogram(
            "pageharvest_fetch_latency_seconds",
            "Time taken by a single page fetch attempt",
            buckets=[0.1, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 60.0],
        ),
        "request_delay_seconds": Histogram(
            "pageharvest_request_delay_seconds",
            "Delay waited before a page request",
            buckets=[0.5, 1.0, 2.0, 5.0, 10.0, 20.0, 30.0, 60.0, 120.0],
        ),
        "jobs_active": Gauge(
            "pageharvest_jobs_active",
            "Jobs currently running",
        ),
    }


METRICS: Dict[str, Any] = _create_metrics()


def increment(name: str, value: float = 1.0, labels: Optional[Dict[str, Any]] = None) -> None:
    """Increment a counter metric."""
    metric = METRICS.get(name)
    if metric is None:
        return
    (metric.labels(**labels) if labels else metric).inc(value)


def gauge(name: str, value: float, labels: Optional[Dict[str, Any]] = None) -> None:
    """Set a gauge metric."""
    metric = METRICS.get(name)
    if metric is None:
        return
    (metric.labels(**labels) if labels else metric).set(value)


def observe(name: str, value: float, labels: Optional[Dict[str, Any]] = None) -> None:
    """Observe a histogram metric."""
    metric = METRICS.get(name)
    if metric is None:
        return
    (metric.labels(**labels) if labels else metric).observe(value)


def export_prometheus() -> bytes:
    return generate_latest()


def start_metrics_server(port: int) -> None:
    start_http_server(port)
