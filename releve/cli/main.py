"""Main CLI entry point for releve."""

import logging

import typer
from typing_extensions import Annotated

from releve import __version__
from releve.cli import commands

app = typer.Typer(
    name="releve",
    help="Incremental backup of a Fastmail mailbox to local .eml files",
    no_args_is_help=True,
)

# Register command groups
app.add_typer(commands.backup.app, name="backup")
app.add_typer(commands.config.app, name="config")


@app.callback()
def configure(
    verbose: Annotated[
        bool, typer.Option("--verbose", "-v", help="Show debug logging")
    ] = False,
):
    """Incremental backup of a Fastmail mailbox to local .eml files."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@app.command()
def version():
    """Show version information."""
    typer.echo(f"releve version {__version__}")


def main():
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
