"""
Configuration management for PageHarvest using Pydantic.
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Any, ClassVar, Dict, Literal, Optional, cast

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# --- Setup Logging ---
log = logging.getLogger(__name__)

# --- Nested Configuration Models ---


class RateLimitConfig(BaseModel):
    """Adaptive delay between page requests. All values are seconds."""

    base_delay: float = Field(default=2.0, gt=0, description="Starting delay between requests.")
    min_delay: float = Field(default=1.0, gt=0, description="Floor for the adaptive delay.")
    max_delay: float = Field(default=30.0, gt=0, description="Ceiling for the adaptive delay and retry backoff.")
    growth_factor: float = Field(default=1.5, gt=1.0, description="Per-failure growth of the delay.")
    decay_factor: float = Field(default=0.9, gt=0, lt=1.0, description="Decay applied after a success streak.")
    success_threshold: int = Field(default=5, ge=0, description="Successes required before the delay decays.")
    jitter_low: float = Field(default=0.85, gt=0)
    jitter_high: float = Field(default=1.15, gt=0)
    block_cooldown: float = Field(
        default=60.0, description="Extended cooldown after consecutive failed pages (probable block)."
    )
    block_threshold: int = Field(default=2, ge=1, description="Consecutive failed pages that count as a block.")

    @model_validator(mode="after")
    def check_bounds(self) -> RateLimitConfig:
        if not self.min_delay <= self.base_delay <= self.max_delay:
            raise ValueError("delays must satisfy min_delay <= base_delay <= max_delay")
        if self.jitter_low > self.jitter_high:
            raise ValueError("jitter_low must not exceed jitter_high")
        if self.block_cooldown <= self.max_delay:
            raise ValueError("block_cooldown must be greater than max_delay")
        return self


class PaginationConfig(BaseModel):
    max_pages: int = Field(default=100, ge=1, description="Hard cap on pages per job.")
    start_page: int = Field(default=1, ge=1)
    max_retries: int = Field(default=3, ge=0, description="Retries per page after the first attempt.")
    checkpoint_interval: int = Field(default=5, ge=1, description="Page attempts between checkpoints.")
    batch_size: int = Field(default=100, ge=1, description="Pages per storage batch.")
    page_timeout: float = Field(default=60.0, gt=0, description="Upper bound for a single fetch attempt.")
    stall_page_limit: int = Field(
        default=0, ge=0, description="Consecutive pages without new records before stopping (0 disables)."
    )


class FetcherConfig(BaseModel):
    """Search API client configuration."""

    base_url: str = Field(default="https://www.example-auctions.com", description="Site origin.")
    results_path: str = Field(default="/api/search/results", description="Path of the results endpoint.")
    index_name: str = Field(default="archive_prod", description="Search index queried by the payload.")
    hits_per_page: int = Field(default=96, ge=1)
    user_agent: str = Field(
        default=(
            "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
            "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
        ),
        description="User-Agent string for HTTP requests.",
    )
    request_timeout: float = Field(default=30.0, gt=0, description="HTTP request timeout in seconds.")
    warmup: bool = Field(default=True, description="Visit base_url first to obtain session cookies.")
    extra_params: Dict[str, Any] = Field(default_factory=dict, description="Merged into every search request.")

    @field_validator("base_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")


class StorageConfig(BaseModel):
    backend: Literal["local", "memory"] = "local"
    root_dir: Path = Field(default=Path("./data"), description="Root directory of the local backend.")
    archive_pages: bool = Field(default=False, description="Also store every raw page response.")


class MonitoringConfig(BaseModel):
    log_level: str = "INFO"
    log_file: Optional[Path] = None
    json_logs: bool = False
    prometheus_port: Optional[int] = None

    @field_validator("log_level")
    @classmethod
    def normalize_level(cls, v: str) -> str:
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {v}")
        return level

    @field_validator("log_file", mode="before")
    @classmethod
    def create_parent_dir(cls, v: str | Path | None) -> Path | None:
        if v is None:
            return None
        path = Path(v)
        path.parent.mkdir(parents=True, exist_ok=True)
        return path


class WebConfig(BaseModel):
    host: str = "127.0.0.1"
    port: int = 8000


# --- Main Configuration Class ---


class Config(BaseSettings):
    """
    Main configuration for PageHarvest.
    Settings can be loaded from a YAML file and/or environment variables.
    """

    rate_limit: RateLimitConfig = Field(default_factory=RateLimitConfig)
    pagination: PaginationConfig = Field(default_factory=PaginationConfig)
    fetcher: FetcherConfig = Field(default_factory=FetcherConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    monitoring: MonitoringConfig = Field(default_factory=MonitoringConfig)
    web: WebConfig = Field(default_factory=WebConfig)

    model_config = SettingsConfigDict(env_prefix="HARVEST_", env_nested_delimiter="__", case_sensitive=False)

    @classmethod
    def from_yaml(cls, path: Path) -> Config:
        log.debug("Loading configuration from YAML file: %s", path)
        if not path.is_file():
            raise FileNotFoundError(f"Configuration file not found or is not a file: {path}")
        with open(path, "r", encoding="utf-8") as f:
            yaml_data = yaml.safe_load(f)
        if not yaml_data:
            log.warning("Configuration file is empty: %s. Using default settings.", path)
            return cls.model_validate({})
        return cls.model_validate(yaml_data)


def find_config_file() -> Path | None:
    paths_to_check = [
        Path.cwd() / "pageharvest.yaml",
        Path.cwd() / "pageharvest.yml",
        Path.home() / ".pageharvest" / "config.yaml",
    ]
    for path in paths_to_check:
        if path.exists():
            return path
    return None


# --- Lazy Configuration Loader ---


class LazyConfig:
    """
    A proxy for the Config object that delays loading and validation until an
    attribute is first accessed, so a broken config file does not fail imports.
    """

    _config: ClassVar[Config | None] = None
    _lock: ClassVar[threading.Lock] = threading.Lock()

    def __getattr__(self, name: str) -> Any:
        if self.__class__._config is None:
            with self.__class__._lock:
                if self.__class__._config is None:
                    self.__class__._config = self._load_config_with_fallback()
        return getattr(self.__class__._config, name)

    def _load_config_with_fallback(self) -> Config:
        config_path = find_config_file()
        if config_path:
            try:
                log.info("Lazy loading configuration from: %s", config_path)
                return Config.from_yaml(config_path)
            except (ValidationError, OSError, yaml.YAMLError) as e:
                log.error(
                    "Failed to load configuration from '%s': %s. Falling back to default settings.",
                    config_path,
                    e,
                )
        else:
            log.info("No config file found. Using default settings for lazy load.")

        try:
            return Config()
        except ValidationError as e:
            log.critical("FATAL: Default configuration is invalid: %s", e, exc_info=True)
            raise RuntimeError(f"Default configuration is invalid, cannot start: {e}") from e


# --- Global Settings Instance ---
settings: "Config" = cast("Config", LazyConfig())
