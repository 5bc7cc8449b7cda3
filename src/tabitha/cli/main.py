"""Tabitha CLI entry point."""

from __future__ import annotations

import importlib.metadata
import logging
from typing import Annotated

import typer

from tabitha.cli.ask import ask_cmd
from tabitha.cli.config_cmd import config_app
from tabitha.cli.search import search_cmd
from tabitha.cli.status import status_cmd


def _version() -> str:
    try:
        return importlib.metadata.version("tabitha")
    except importlib.metadata.PackageNotFoundError:
        return "dev"


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"tabitha {_version()}")
        raise typer.Exit()


app = typer.Typer(
    name="tabitha",
    help=(
        "Tabitha: conversational assistant for browser tabs.\n\n"
        '  tabitha ask "close all youtube tabs" --tabs tabs.yaml --then yes\n'
        '  tabitha search "cover letter" --tabs tabs.yaml'
    ),
    add_completion=False,
)


@app.callback()
def main_callback(
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            callback=_version_callback,
            is_eager=True,
            help="Show version and exit.",
        ),
    ] = False,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Log pipeline stages to stderr."),
    ] = False,
) -> None:
    """Tabitha: conversational assistant for browser tabs."""
    if verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(levelname)s %(name)s: %(message)s")
        logging.getLogger("LiteLLM").setLevel(logging.WARNING)


app.command("ask")(ask_cmd)
app.command("search")(search_cmd)
app.command("status")(status_cmd)
app.add_typer(config_app, name="config")


@app.command("version")
def version_cmd() -> None:
    """Show the installed Tabitha version."""
    typer.echo(f"tabitha {_version()}")


if __name__ == "__main__":
    app()
