from .config import (
    Config,
    FetcherConfig,
    MonitoringConfig,
    PaginationConfig,
    RateLimitConfig,
    StorageConfig,
    WebConfig,
    find_config_file,
    settings,
)

__all__ = [
    "Config",
    "FetcherConfig",
    "MonitoringConfig",
    "PaginationConfig",
    "RateLimitConfig",
    "StorageConfig",
    "WebConfig",
    "find_config_file",
    "settings",
]
