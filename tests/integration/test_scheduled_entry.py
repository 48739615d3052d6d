"""
Tests for the scheduled (cron) entry point.
"""

import logging

import pytest
import structlog

import main as entry
from pageharvest.container import DependencyContainer
from pageharvest.errors import ConfigurationError
from pageharvest.protocols import JobStatus
from tests.helpers import FakeClock, FakeSearchFetcher, make_manager


@pytest.fixture(autouse=True)
def restore_logging():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)
    structlog.reset_defaults()


@pytest.fixture
def scheduled_env(monkeypatch, temp_dir):
    monkeypatch.setenv("HARVEST_CATEGORY", "Paintings")
    monkeypatch.setenv("HARVEST_MAX_RUNTIME", "600")
    monkeypatch.setenv("HARVEST_STORAGE__ROOT_DIR", str(temp_dir))
    monkeypatch.setenv("HARVEST_MONITORING__LOG_LEVEL", "ERROR")
    monkeypatch.delenv("HARVEST_CONFIG", raising=False)

    clock = FakeClock()

    async def create_manager(self, job):
        return make_manager(FakeSearchFetcher(clock=clock), await self.get_storage(), clock)

    monkeypatch.setattr(DependencyContainer, "create_manager", create_manager)
    return temp_dir


@pytest.mark.integration
class TestScheduledEntry:
    @pytest.mark.asyncio
    async def test_runs_job_from_environment(self, scheduled_env):
        result = await entry.run_scheduled_job()

        assert result.status is JobStatus.COMPLETED
        assert len(result.records) == 15
        assert (scheduled_env / "raw" / "paintings" / "checkpoint.json").is_file()

    @pytest.mark.asyncio
    async def test_second_run_resumes(self, scheduled_env):
        await entry.run_scheduled_job()
        second = await entry.run_scheduled_job()

        assert second.status is JobStatus.COMPLETED
        assert len(second.records) == 15

    def test_category_is_required(self, monkeypatch):
        monkeypatch.delenv("HARVEST_CATEGORY", raising=False)
        with pytest.raises(ConfigurationError):
            entry._job_from_env()

    def test_job_from_environment(self, monkeypatch):
        monkeypatch.setenv("HARVEST_CATEGORY", "Paintings")
        monkeypatch.setenv("HARVEST_QUERY", "oil")
        monkeypatch.delenv("HARVEST_MAX_RUNTIME", raising=False)
        job, max_runtime = entry._job_from_env()
        assert job.query == "oil"
        assert max_runtime is None
