"""Environment and daemon discovery report."""

from pathlib import Path
from typing import Annotated

import typer

from nimlink.cli.console import console, create_table, warning
from nimlink.cli.runtime import load_cli_config
from nimlink.config import get_all_paths
from nimlink.suggest.executable import detect_version, find_nimsuggest
from nimlink.suggest.projects import ProjectResolver


def register(app: typer.Typer) -> None:
    """Register the info command."""

    @app.command()
    def info(
        config_path: Annotated[
            Path | None,
            typer.Option(
                "--config",
                "-c",
                help="Path to configuration file",
            ),
        ] = None,
    ) -> None:
        """Show the nimsuggest executable, its version, and nimlink paths."""
        config_obj = load_cli_config(config_path)
        command = find_nimsuggest(config_obj.suggest.executable)

        table = create_table("nimlink", [("Setting", "cyan"), ("Value", "green")])
        if command is None:
            table.add_row("nimsuggest", "[red]not found[/red]")
        else:
            version = detect_version(command)
            table.add_row("nimsuggest", " ".join(command))
            table.add_row("Version", version or "[yellow]unknown[/yellow]")

        resolver = ProjectResolver(config_obj.projects)
        if resolver.project_mode:
            for project in resolver.projects:
                table.add_row("Project", str(project.path))
        else:
            table.add_row("Mode", "one daemon per file")

        for name, path in get_all_paths().items():
            table.add_row(name.capitalize(), str(path))

        console.print(table)
        if command is None:
            warning("Language features need nimsuggest on PATH or in the config")
