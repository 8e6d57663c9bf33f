"""Configuration module."""

from nimlink.config.loader import get_default_config, load_config
from nimlink.config.models import (
    ConfigError,
    LoggingConfig,
    NimlinkConfig,
    SuggestConfig,
)
from nimlink.config.paths import (
    get_all_paths,
    get_config_path,
    get_logs_path,
    get_nimlink_home,
)

__all__ = [
    "ConfigError",
    "LoggingConfig",
    "NimlinkConfig",
    "SuggestConfig",
    "get_all_paths",
    "get_config_path",
    "get_default_config",
    "get_logs_path",
    "get_nimlink_home",
    "load_config",
]
