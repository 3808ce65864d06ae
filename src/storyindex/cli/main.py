"""storyindex CLI entry point."""

from __future__ import annotations

import importlib.metadata
from typing import Annotated

import typer

from storyindex.cli.index import index_cmd, reindex_cmd
from storyindex.cli.status import status_cmd


def _installed_version() -> str:
    try:
        return importlib.metadata.version("storyindex")
    except importlib.metadata.PackageNotFoundError:
        return "dev"


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"storyindex {_installed_version()}")
        raise typer.Exit()


app = typer.Typer(
    name="storyindex",
    help=(
        "storyindex: build a deduplicated, embedded story corpus.\n\n"
        "  storyindex index    Index every story file in a folder.\n"
        "  storyindex reindex  Index only new or changed files.\n"
        "  storyindex status   Corpus counts and embedding settings."
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
) -> None:
    """storyindex: build a deduplicated, embedded story corpus."""


app.command("index")(index_cmd)
app.command("reindex")(reindex_cmd)
app.command("status")(status_cmd)


@app.command("version")
def version_cmd() -> None:
    """Show the installed storyindex version."""
    typer.echo(f"storyindex {_installed_version()}")


if __name__ == "__main__":
    app()
