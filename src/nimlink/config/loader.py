"""Configuration loading from TOML files and environment variables."""

import os
import shlex
import tomllib
from pathlib import Path
from typing import Any

from nimlink.config.models import ConfigError, NimlinkConfig
from nimlink.config.paths import get_config_path

EXECUTABLE_ENV_VAR = "NIMLINK_NIMSUGGEST"


def _get_default_config_paths() -> list[Path]:
    """Get ordered list of default config file locations."""
    return [
        Path("nimlink.toml"),  # Current directory
        get_config_path(),  # ~/.nimlink/config.toml (or NIMLINK_HOME)
    ]


def _apply_env_overrides(config: dict[str, Any]) -> dict[str, Any]:
    """Apply environment variables that override file settings."""
    if executable := os.environ.get(EXECUTABLE_ENV_VAR):
        suggest = config.setdefault("suggest", {})
        suggest["executable"] = shlex.split(executable)
    return config


def load_config(path: Path | None = None) -> NimlinkConfig:
    """Load configuration from a TOML file.

    Args:
        path: Explicit path to config file. If None, searches default locations
            and falls back to the built-in defaults when none exists.

    Returns:
        Validated NimlinkConfig instance.

    Raises:
        FileNotFoundError: If an explicit path does not exist.
        ConfigError: If the file is not valid TOML.
        pydantic.ValidationError: If the values are invalid.
    """
    config_path: Path | None = None

    if path is not None:
        config_path = Path(path).expanduser()
        if not config_path.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")
    else:
        for default_path in _get_default_config_paths():
            expanded = default_path.expanduser()
            if expanded.exists():
                config_path = expanded
                break

    raw_config: dict[str, Any] = {}
    if config_path is not None:
        try:
            with config_path.open("rb") as f:
                raw_config = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise ConfigError(f"Invalid TOML in {config_path}: {e}") from e

    raw_config = _apply_env_overrides(raw_config)
    return NimlinkConfig.model_validate(raw_config)


def get_default_config() -> NimlinkConfig:
    """Get a default configuration with environment overrides applied."""
    return NimlinkConfig.model_validate(_apply_env_overrides({}))
