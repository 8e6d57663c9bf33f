"""One-shot nimsuggest queries."""

import asyncio
import json
from dataclasses import asdict
from pathlib import Path
from typing import Annotated

import typer

from nimlink.cli.console import console, create_table, dim, error
from nimlink.cli.runtime import load_cli_config, setup_logging
from nimlink.suggest import SuggestClient, SuggestResult, SuggestType

ConfigOption = Annotated[
    Path | None,
    typer.Option(
        "--config",
        "-c",
        help="Path to configuration file",
    ),
]
VerboseOption = Annotated[
    bool,
    typer.Option("--verbose", "-v", help="Show debug logging"),
]


def _client(config_path: Path | None, verbose: bool) -> SuggestClient:
    config_obj = load_cli_config(config_path)
    setup_logging(config_obj, verbose)
    client = SuggestClient.from_config(config_obj)
    if not client.available:
        error("nimsuggest not found")
        dim(
            "Install Nim, put nimsuggest on PATH, or set NIMLINK_NIMSUGGEST "
            "or suggest.executable in the config file"
        )
        raise typer.Exit(1)
    return client


def _print_results(suggest_type: SuggestType, results: list[SuggestResult]) -> None:
    if not results:
        dim("No results")
        return

    table = create_table(
        f"nimsuggest {suggest_type.value}",
        [
            ("Kind", "cyan"),
            ("Name", "green"),
            ("Type", {"style": "yellow", "overflow": "fold"}),
            ("Location", "dim"),
        ],
    )
    for result in results:
        location = f"{result.path}:{result.line}:{result.column}" if result.path else ""
        table.add_row(result.suggest, result.full_name, result.type, location)
    console.print(table)


def register(app: typer.Typer) -> None:
    """Register the query and known commands."""

    @app.command()
    def query(
        suggest_type: Annotated[
            SuggestType,
            typer.Argument(metavar="OP", help="nimsuggest command to run"),
        ],
        file: Annotated[Path, typer.Argument(help="Nim source file")],
        line: Annotated[int, typer.Argument(help="Line (1-based)")] = 1,
        column: Annotated[int, typer.Argument(help="Column (0-based)")] = 0,
        dirty: Annotated[
            Path | None,
            typer.Option(
                "--dirty",
                "-d",
                help="File holding unsaved contents of FILE",
            ),
        ] = None,
        as_json: Annotated[
            bool,
            typer.Option("--json", help="Print results as JSON lines"),
        ] = False,
        config_path: ConfigOption = None,
        verbose: VerboseOption = False,
    ) -> None:
        """Run a nimsuggest command against a file position."""
        client = _client(config_path, verbose)

        async def run() -> list[SuggestResult]:
            async with client:
                return await client.request(
                    suggest_type,
                    file.expanduser().absolute(),
                    line,
                    column,
                    dirty.expanduser().absolute() if dirty else None,
                )

        results = asyncio.run(run())

        if as_json:
            for result in results:
                typer.echo(json.dumps(asdict(result)))
            return
        _print_results(suggest_type, results)

    @app.command()
    def known(
        file: Annotated[Path, typer.Argument(help="Nim source file")],
        config_path: ConfigOption = None,
        verbose: VerboseOption = False,
    ) -> None:
        """Check whether a file belongs to its nimsuggest project."""
        client = _client(config_path, verbose)

        async def run() -> bool:
            async with client:
                return await client.is_known(str(file.expanduser().absolute()))

        if asyncio.run(run()):
            console.print(f"[green]{file}[/green] is known")
        else:
            console.print(f"[yellow]{file}[/yellow] is not known")
            raise typer.Exit(1)
