"""Centralized path management for nimlink.

State (config, logs) lives under a single base directory that can be
overridden with the NIMLINK_HOME environment variable.

Default locations:
- Linux/macOS: ~/.nimlink
- Windows: %USERPROFILE%\\.nimlink
"""

import os
from functools import lru_cache
from pathlib import Path

ENV_VAR = "NIMLINK_HOME"


@lru_cache(maxsize=1)
def get_nimlink_home() -> Path:
    """Get the base directory for all nimlink data.

    Resolution order:
    1. NIMLINK_HOME environment variable (if set)
    2. Platform default (~/.nimlink)
    """
    if env_home := os.environ.get(ENV_VAR):
        return Path(env_home).expanduser().resolve()
    return Path.home() / ".nimlink"


def get_config_path() -> Path:
    """Get the default config file path."""
    return get_nimlink_home() / "config.toml"


def get_logs_path() -> Path:
    """Get the default logs directory path."""
    return get_nimlink_home() / "logs"


def get_all_paths() -> dict[str, Path]:
    """Get all standard paths for display."""
    return {
        "home": get_nimlink_home(),
        "config": get_config_path(),
        "logs": get_logs_path(),
    }
