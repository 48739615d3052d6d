"""
Helpers for validating metric value changes during tests.
"""

from contextlib import contextmanager
from typing import Any, Dict, Optional


def _value(metric: Any, labels: Optional[Dict[str, str]] = None) -> float:
    target = metric.labels(**labels) if labels else metric
    if not hasattr(target, "_value"):
        raise ValueError(f"Metric {metric} doesn't have a _value attribute")
    return target._value.get()


@contextmanager
def metric_delta(metric, expected_delta=1, labels=None):
    """
    Context manager to validate metric value changes.

    Usage:
        with metric_delta(METRICS["records_total"], 9):
            await manager.run(job)
    """
    initial_value = _value(metric, labels)

    yield

    final_value = _value(metric, labels)
    actual_delta = final_value - initial_value
    if actual_delta != expected_delta:
        raise AssertionError(
            f"Expected metric to change by {expected_delta}, "
            f"but it changed by {actual_delta} "
            f"(from {initial_value} to {final_value})"
        )


def get_histogram_count(histogram):
    """Get the current observation count for a histogram."""
    for metric in histogram.collect():
        for sample in metric.samples:
            if sample.name.endswith("_count"):
                return sample.value
    return 0.0


@contextmanager
def histogram_observes(histogram, min_observations=1):
    """Context manager to validate that a histogram recorded observations."""
    initial_count = get_histogram_count(histogram)

    yield

    actual_observations = get_histogram_count(histogram) - initial_count
    if actual_observations < min_observations:
        raise AssertionError(
            f"Expected at least {min_observations} histogram observations, but got {actual_observations}"
        )
