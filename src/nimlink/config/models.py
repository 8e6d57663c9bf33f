"""Configuration models using Pydantic."""

import shlex
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, field_validator


class ConfigError(Exception):
    """Configuration error."""

    pass


class SuggestConfig(BaseModel):
    """Configuration for the nimsuggest daemons.

    Timeouts are in seconds. An idle_timeout of 0 keeps daemons alive until
    they are closed explicitly.
    """

    # Path to nimsuggest, or a full command line. None = discover from PATH.
    executable: list[str] | None = None
    # Pass --log to nimsuggest
    log: bool = False
    # Pass --refresh:on so "chk" answers reflect unsaved buffers
    refresh_on_check: bool = False
    # Log every call and reply at DEBUG on nimlink.suggest.trace
    trace: bool = False
    idle_timeout: float = Field(default=300.0, ge=0)
    sweep_interval: float = Field(default=5.0, gt=0)
    handshake_timeout: float = Field(default=10.0, gt=0)
    # Caller-side give-up time for a single request. None = wait forever.
    call_timeout: float | None = Field(default=None, gt=0)

    @field_validator("executable", mode="before")
    @classmethod
    def _split_command(cls, value: object) -> object:
        if isinstance(value, Path):
            return [str(value)]
        if isinstance(value, str):
            return shlex.split(value) or None
        return value


class LoggingConfig(BaseModel):
    """Configuration for log output."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "WARNING"
    # Also write JSONL logs to $NIMLINK_HOME/logs
    file: bool = False
    retention_days: int = Field(default=7, ge=1)


class NimlinkConfig(BaseModel):
    """Root configuration model."""

    # Project entry files. When set, every file maps onto one of these
    # projects; otherwise each file is its own project.
    projects: list[Path] = Field(default_factory=list)
    suggest: SuggestConfig = Field(default_factory=SuggestConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @field_validator("projects")
    @classmethod
    def _absolute_projects(cls, value: list[Path]) -> list[Path]:
        return [Path(p).expanduser().absolute() for p in value]

    @property
    def project_mode(self) -> bool:
        return bool(self.projects)
