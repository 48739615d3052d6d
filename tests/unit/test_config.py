"""
Unit tests for configuration loading and validation.
"""

import pytest
import yaml
from pydantic import ValidationError

from pageharvest.config import Config, FetcherConfig, MonitoringConfig, RateLimitConfig
from pageharvest.container import DependencyContainer
from pageharvest.errors import ConfigurationError
from pageharvest.pagination import HarvestSettings


@pytest.mark.unit
class TestConfig:
    def test_defaults(self):
        config = Config()
        assert config.rate_limit.base_delay == 2.0
        assert config.rate_limit.block_cooldown == 60.0
        assert config.pagination.max_retries == 3
        assert config.pagination.checkpoint_interval == 5
        assert config.pagination.batch_size == 100
        assert config.storage.backend == "local"

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("HARVEST_PAGINATION__MAX_PAGES", "7")
        monkeypatch.setenv("HARVEST_STORAGE__BACKEND", "memory")
        config = Config()
        assert config.pagination.max_pages == 7
        assert config.storage.backend == "memory"

    def test_from_yaml(self, temp_dir):
        path = temp_dir / "pageharvest.yaml"
        path.write_text(
            yaml.safe_dump({"rate_limit": {"base_delay": 3.0}, "fetcher": {"base_url": "https://a.test/"}}),
            encoding="utf-8",
        )
        config = Config.from_yaml(path)
        assert config.rate_limit.base_delay == 3.0
        assert config.fetcher.base_url == "https://a.test"

    def test_empty_yaml_uses_defaults(self, temp_dir):
        path = temp_dir / "empty.yaml"
        path.write_text("", encoding="utf-8")
        assert Config.from_yaml(path).pagination.max_pages == 100

    def test_missing_yaml(self, temp_dir):
        with pytest.raises(FileNotFoundError):
            Config.from_yaml(temp_dir / "missing.yaml")

    @pytest.mark.parametrize(
        "overrides",
        [
            {"base_delay": 0.5, "min_delay": 1.0},
            {"base_delay": 40.0},
            {"block_cooldown": 20.0},
            {"jitter_low": 1.2, "jitter_high": 1.1},
            {"growth_factor": 1.0},
        ],
    )
    def test_invalid_rate_limits(self, overrides):
        with pytest.raises(ValidationError):
            RateLimitConfig(**overrides)

    def test_log_level_is_normalized(self):
        assert MonitoringConfig(log_level="debug").log_level == "DEBUG"
        with pytest.raises(ValidationError):
            MonitoringConfig(log_level="loud")

    def test_harvest_settings_slice(self):
        config = Config()
        settings = HarvestSettings.from_config(config)
        assert settings.rate == config.rate_limit
        assert settings.pagination == config.pagination

    def test_fetcher_defaults(self):
        assert FetcherConfig().hits_per_page == 96

    def test_container_rejects_invalid_file(self, temp_dir):
        path = temp_dir / "bad.yaml"
        path.write_text("pagination:\n  batch_size: 0\n", encoding="utf-8")
        with pytest.raises(ConfigurationError):
            DependencyContainer(config_path=path).load_config()
