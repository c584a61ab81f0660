"""Config command implementation.

Writes and displays the releve configuration.
"""

import typer
from typing_extensions import Annotated

from releve.config import API_TOKEN_ENV, CONFIG_FILE, load_config, save_config
from releve.config.schema import ReleveConfig
from releve.errors import ConfigError

app = typer.Typer(help="Manage configuration")


@app.callback(invoke_without_command=True)
def config(
    ctx: typer.Context,
    api_token: Annotated[
        str | None, typer.Option("--api-token", help="Fastmail API token")
    ] = None,
    backup_directory: Annotated[
        str | None,
        typer.Option("--backup-directory", help="Directory to store backups in"),
    ] = None,
):
    """Save the API token and backup directory.

    Examples:
        releve config --api-token fmu1-xxxx --backup-directory ~/Backups/Fastmail
        releve config show
    """
    if ctx.invoked_subcommand is not None:
        return

    if not api_token or not backup_directory:
        typer.secho(
            "Both --api-token and --backup-directory are required.",
            fg=typer.colors.RED,
            err=True,
        )
        raise typer.Exit(1)

    config: ReleveConfig = {
        "api_token": api_token,
        "backup_directory": backup_directory,
    }

    try:
        save_config(config)
    except OSError as e:
        typer.secho(f"Error saving config: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(1)

    typer.secho(f"Config saved successfully to {CONFIG_FILE}", fg=typer.colors.GREEN)


@app.command()
def show():
    """Display current configuration.

    The API token is redacted in output.
    """
    try:
        config = load_config()
    except ConfigError as e:
        typer.secho(str(e), fg=typer.colors.RED, err=True)
        raise typer.Exit(1)

    if not config:
        typer.echo("No configuration found.")
        typer.echo(f"Run 'releve config' to create {CONFIG_FILE}")
        return

    for key, value in config.items():
        if key == "api_token":
            # Redact token but indicate it's set
            display_value = "***REDACTED***" if value else "(not set)"
        else:
            display_value = value
        typer.echo(f"{key} = {display_value}")

    typer.echo()
    typer.echo(f"({API_TOKEN_ENV} overrides api_token when set)")
