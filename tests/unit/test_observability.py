"""
Unit tests for logging context, metrics helpers and the run budget.
"""

import math

import pytest
import structlog

from pageharvest.budget import Budget
from pageharvest.observability import METRICS, bind_job_context, clear_job_context, increment, observe
from pageharvest.observability.logging import add_job_context
from pageharvest.state import JobStats
from tests.helpers import FakeClock, histogram_observes, metric_delta


class TestJobContext:
    def test_bound_context_is_added_to_events(self):
        bind_job_context(job_id="abc", category="Paintings")
        try:
            event = add_job_context(None, "info", {"event": "Page completed"})
        finally:
            clear_job_context()
        assert event["job_id"] == "abc"
        assert event["category"] == "Paintings"

    def test_explicit_values_win(self):
        bind_job_context(category="Paintings")
        try:
            event = add_job_context(None, "info", {"event": "x", "category": "Sculpture"})
        finally:
            clear_job_context()
        assert event["category"] == "Sculpture"

    def test_no_context(self):
        clear_job_context()
        assert add_job_context(None, "info", {"event": "x"}) == {"event": "x"}
        assert structlog.contextvars.get_contextvars() == {}


class TestMetrics:
    def test_labelled_counter(self):
        with metric_delta(METRICS["pages_total"], 2, labels={"outcome": "rate_limited"}):
            increment("pages_total", labels={"outcome": "rate_limited"})
            increment("pages_total", labels={"outcome": "rate_limited"})

    def test_histogram(self):
        with histogram_observes(METRICS["fetch_latency_seconds"]):
            observe("fetch_latency_seconds", 0.25)

    def test_unknown_metric_is_ignored(self):
        increment("does_not_exist")


class TestBudget:
    def test_unlimited(self):
        budget = Budget.unlimited()
        assert budget.remaining() == math.inf
        assert not budget.expired

    def test_deadline(self):
        clock = FakeClock()
        budget = Budget(10, clock=clock)
        clock.now = 4
        assert budget.remaining() == 6
        clock.now = 10
        assert budget.expired
        assert budget.remaining() == 0

    def test_negative_budget(self):
        with pytest.raises(ValueError):
            Budget(-1)


class TestJobStats:
    def test_derived_rates(self):
        stats = JobStats(total_requests=4, successful_requests=3, total_response_time=2.0)
        assert stats.success_rate == 0.75
        assert stats.avg_response_time == 0.5
        data = stats.to_dict()
        assert data["success_rate"] == 0.75
        assert data["items_per_minute"] == 0.0

    def test_empty_stats(self):
        stats = JobStats()
        assert stats.success_rate == 0.0
        assert stats.avg_response_time == 0.0
