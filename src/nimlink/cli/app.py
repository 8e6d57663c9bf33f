"""Main CLI application."""

import typer

from nimlink.cli.commands import config, info, query

app = typer.Typer(
    name="nimlink",
    help="nimlink - nimsuggest over EPC",
    no_args_is_help=True,
)

query.register(app)
info.register(app)
config.register(app)


if __name__ == "__main__":
    app()
