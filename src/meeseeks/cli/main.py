"""Meeseeks CLI entry point."""

from __future__ import annotations

import importlib.metadata
import logging
from typing import Annotated

import typer
from rich.console import Console
from rich.logging import RichHandler

from meeseeks.cli.context import context_app
from meeseeks.cli.kb import kb_app


def _version() -> str:
    try:
        return importlib.metadata.version("meeseeks")
    except importlib.metadata.PackageNotFoundError:
        return "dev"


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"meeseeks {_version()}")
        raise typer.Exit()


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
        force=True,
    )


app = typer.Typer(
    name="meeseeks",
    help=(
        "Meeseeks: knowledge base retrieval and context budgeting.\n\n"
        "  meeseeks kb       Crawl documentation sites, index and search them.\n"
        "  meeseeks context  Fit prompts into a model's context window."
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
        typer.Option("--verbose", "-v", help="Show debug logging."),
    ] = False,
) -> None:
    """Meeseeks: knowledge base retrieval and context budgeting."""
    _configure_logging(verbose)


app.add_typer(kb_app, name="kb")
app.add_typer(context_app, name="context")


@app.command("version")
def version_cmd() -> None:
    """Show the installed Meeseeks version."""
    typer.echo(f"meeseeks {_version()}")


if __name__ == "__main__":
    app()
