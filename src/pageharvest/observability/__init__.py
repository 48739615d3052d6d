"""Structured logging and Prometheus metrics."""

from __future__ import annotations

from .logging import bind_job_context, clear_job_context, configure_logging
from .metrics import METRICS, export_prometheus, gauge, increment, observe, start_metrics_server

__all__ = [
    "METRICS",
    "bind_job_context",
    "clear_job_context",
    "configure_logging",
    "export_prometheus",
    "gauge",
    "increment",
    "observe",
    "start_metrics_server",
]
