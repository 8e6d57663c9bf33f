"""CLI command modules."""

from nimlink.cli.commands import config, info, query

__all__ = [
    "config",
    "info",
    "query",
]
