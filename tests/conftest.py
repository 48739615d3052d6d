"""
Shared test configuration for PageHarvest.
"""

import tempfile
from pathlib import Path
from typing import Generator

import pytest

from pageharvest.protocols import HarvestJob
from pageharvest.storage.backends import MemoryStorage
from tests.helpers import FakeClock, FakeSearchFetcher

# ============================================================================
# Pytest Configuration
# ============================================================================


def pytest_configure(config):
    config.addinivalue_line("markers", "unit: Unit tests for individual components")
    config.addinivalue_line("markers", "integration: Integration tests across modules")


# ============================================================================
# Core Test Fixtures
# ============================================================================


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Provide temporary directory for test data."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def storage() -> MemoryStorage:
    return MemoryStorage()


@pytest.fixture
def fetcher(clock) -> FakeSearchFetcher:
    """480 results at 96 per page: five pages of three records each."""
    return FakeSearchFetcher(clock=clock)


@pytest.fixture
def job() -> HarvestJob:
    return HarvestJob(category="Paintings")
