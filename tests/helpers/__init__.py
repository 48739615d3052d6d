from .fakes import FakeClock, FakeSearchFetcher, FixedJitter, make_manager
from .metric_delta import histogram_observes, metric_delta

__all__ = [
    "FakeClock",
    "FakeSearchFetcher",
    "FixedJitter",
    "histogram_observes",
    "make_manager",
    "metric_delta",
]
