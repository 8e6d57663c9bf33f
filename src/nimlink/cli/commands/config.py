"""Configuration management commands."""

from pathlib import Path
from typing import Annotated

import click
import typer

from nimlink.cli.console import console, create_table, error, success


def register(app: typer.Typer) -> None:
    """Register the config command."""

    @app.command()
    def config(
        action: Annotated[
            str | None,
            typer.Argument(help="Action: show, validate"),
        ] = None,
        path: Annotated[
            Path | None,
            typer.Option(
                "--path",
                "-p",
                help="Path to config file (default: $NIMLINK_HOME/config.toml)",
            ),
        ] = None,
    ) -> None:
        """Manage configuration."""
        if action is None:
            ctx = click.get_current_context()
            click.echo(ctx.get_help())
            raise typer.Exit(0)

        from rich.syntax import Syntax

        from nimlink.cli.runtime import load_cli_config
        from nimlink.config.paths import get_config_path

        expanded_path = path.expanduser() if path else get_config_path()

        if action == "show":
            if not expanded_path.exists():
                error(f"Config file not found: {expanded_path}")
                raise typer.Exit(1)

            content = expanded_path.read_text()
            syntax = Syntax(content, "toml", theme="monokai", line_numbers=True)
            console.print(f"[bold]Config file: {expanded_path}[/bold]\n")
            console.print(syntax)

        elif action == "validate":
            if not expanded_path.exists():
                error(f"Config file not found: {expanded_path}")
                raise typer.Exit(1)

            config_obj = load_cli_config(expanded_path)

            table = create_table(
                "Configuration Summary", [("Setting", "cyan"), ("Value", "green")]
            )
            executable = config_obj.suggest.executable
            table.add_row(
                "nimsuggest",
                " ".join(executable) if executable else "[dim]discover from PATH[/dim]",
            )
            if config_obj.projects:
                for project in config_obj.projects:
                    table.add_row("Project", str(project))
            else:
                table.add_row("Projects", "[dim]one daemon per file[/dim]")
            idle = config_obj.suggest.idle_timeout
            table.add_row("Idle timeout", f"{idle:g}s" if idle else "disabled")
            call_timeout = config_obj.suggest.call_timeout
            table.add_row(
                "Call timeout", f"{call_timeout:g}s" if call_timeout else "none"
            )
            table.add_row("Log level", config_obj.logging.level)

            success("Configuration is valid!")
            console.print()
            console.print(table)

        else:
            error(f"Unknown action: {action}")
            console.print("Valid actions: show, validate")
            raise typer.Exit(1)
