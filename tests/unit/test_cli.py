"""
Tests for the command-line interface.
"""

import asyncio
import json
import logging

import pytest
import structlog
import yaml
from click.testing import CliRunner

from pageharvest.cli import cli
from pageharvest.container import DependencyContainer
from pageharvest.crawler.rate_limiter import RateControllerState
from pageharvest.protocols import NavigationState
from pageharvest.state import JobState
from pageharvest.storage.backends import LocalStorage
from pageharvest.storage.checkpoint import CheckpointStore
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
def config_file(temp_dir):
    path = temp_dir / "pageharvest.yaml"
    path.write_text(
        yaml.safe_dump(
            {
                "storage": {"backend": "local", "root_dir": str(temp_dir / "data")},
                "pagination": {"max_pages": 3, "batch_size": 10},
            }
        ),
        encoding="utf-8",
    )
    return path


@pytest.fixture
def fake_managers(monkeypatch):
    clock = FakeClock()

    async def create_manager(self, job):
        return make_manager(FakeSearchFetcher(clock=clock), await self.get_storage(), clock, max_pages=3)

    monkeypatch.setattr(DependencyContainer, "create_manager", create_manager)


def invoke(*args):
    return CliRunner().invoke(cli, ["--log-level", "ERROR", *args], obj={})


@pytest.mark.unit
class TestCli:
    def test_validate_config(self, config_file):
        result = invoke("-c", str(config_file), "validate-config")
        assert result.exit_code == 0, result.output
        data = json.loads(result.output)
        assert data["pagination"]["max_pages"] == 3
        assert data["storage"]["backend"] == "local"

    def test_invalid_config_file(self, temp_dir):
        path = temp_dir / "bad.yaml"
        path.write_text("rate_limit:\n  base_delay: -1\n", encoding="utf-8")
        result = invoke("-c", str(path), "validate-config")
        assert result.exit_code != 0
        assert "Could not load configuration" in result.output

    def test_run_then_status(self, config_file, fake_managers, temp_dir):
        result = invoke("-c", str(config_file), "run", "--category", "Paintings")
        assert result.exit_code == 0, result.output
        summary = json.loads(result.output)
        assert summary["status"] == "completed"
        assert summary["records"] == 9
        assert (temp_dir / "data" / "raw" / "paintings" / "checkpoint.json").is_file()

        status = invoke("-c", str(config_file), "status", "--category", "Paintings")
        assert status.exit_code == 0, status.output
        data = json.loads(status.output)
        assert data["current_page"] == 4
        assert data["finished"] is True

    def test_zero_runtime_pauses_after_first_page(self, config_file, fake_managers):
        result = invoke("-c", str(config_file), "run", "--category", "Paintings", "--max-runtime", "0")
        assert result.exit_code == 0, result.output
        summary = json.loads(result.output)
        assert summary["status"] == "paused"
        assert summary["stop_reason"] == "budget"
        assert summary["completed_pages"] == 1
        assert summary["current_page"] == 2

    def test_status_of_saved_checkpoint(self, config_file, temp_dir):
        state = JobState(
            category="Paintings",
            query="oil",
            navigation=NavigationState(),
            rate=RateControllerState(current_delay=2.0),
            current_page=5,
            total_pages=9,
            completed_pages={1, 2, 3, 4},
        )
        asyncio.run(CheckpointStore(LocalStorage(temp_dir / "data")).save(state))

        result = invoke("-c", str(config_file), "status", "--category", "Paintings", "--query", "oil")
        assert result.exit_code == 0, result.output
        data = json.loads(result.output)
        assert data["checkpoint_key"] == "raw/paintings/checkpoint_oil.json"
        assert data["completed_pages"] == 4
        assert data["finished"] is False

    def test_status_without_checkpoint(self, config_file):
        result = invoke("-c", str(config_file), "status", "--category", "Sculpture")
        assert result.exit_code == 1
        assert "No checkpoint found" in result.output

    def test_run_rejects_bad_page_numbers(self, config_file):
        result = invoke("-c", str(config_file), "run", "--category", "Paintings", "--start-page", "0")
        assert result.exit_code != 0
