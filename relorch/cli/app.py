from __future__ import annotations

import os
from pathlib import Path

import typer

from relorch import __version__
from relorch.cli.commands.cut_cmd import cut
from relorch.cli.commands.decide_cmd import decide
from relorch.cli.commands.ledger_cmd import ledger
from relorch.cli.commands.rollback_cmd import rollback
from relorch.cli.commands.watch_cmd import watch
from relorch.cli.context import CONFIG_ENV
from relorch.core.errors import ErrorCode


app = typer.Typer(
    add_completion=False,
    no_args_is_help=True,
    rich_markup_mode="rich",
)


app.command()(decide)
app.command()(cut)
app.command()(ledger)
app.command()(rollback)
app.command()(watch)


@app.callback(invoke_without_command=True)
def _main(  # pyright: ignore[reportUnusedFunction]
    version: bool = typer.Option(False, "--version", help="Show version and exit."),
    config: Path | None = typer.Option(
        None,
        "--config",
        help="Path to relorch.toml (default: ./relorch.toml if present)",
    ),
) -> None:
    if version:
        typer.echo(__version__)
        raise typer.Exit(code=0)

    if config is not None:
        path = config.expanduser()
        if not path.is_file():
            typer.echo(f"error: config file not found: {path}", err=True)
            raise typer.Exit(code=int(ErrorCode.CONFIG_ERROR))
        os.environ[CONFIG_ENV] = str(path.resolve())


def main() -> None:
    app()
