"""Shared bootstrap helpers for CLI entrypoints."""

from __future__ import annotations

from pathlib import Path

import typer
from pydantic import ValidationError

from nimlink.cli.console import console, error
from nimlink.config import ConfigError, NimlinkConfig, load_config
from nimlink.logging import configure_logging, configure_trace


def load_cli_config(path: Path | None) -> NimlinkConfig:
    """Load config for a command, exiting with a readable error on failure."""
    try:
        return load_config(path)
    except FileNotFoundError as e:
        error(str(e))
        raise typer.Exit(1) from None
    except ConfigError as e:
        error(str(e))
        raise typer.Exit(1) from None
    except ValidationError as e:
        error("Configuration validation failed:")
        for err in e.errors():
            loc = ".".join(str(x) for x in err["loc"])
            console.print(f"  [yellow]{loc}[/yellow]: {err['msg']}")
        raise typer.Exit(1) from None


def setup_logging(config: NimlinkConfig, verbose: bool = False) -> None:
    """Configure logging from config. Verbose forces DEBUG."""
    configure_logging(
        level="DEBUG" if verbose else config.logging.level,
        use_rich=True,
        log_to_file=config.logging.file,
        retention_days=config.logging.retention_days,
    )
    configure_trace(config.suggest.trace)
