"""Backup command implementation."""

from datetime import timedelta
from enum import Enum

import typer
from typing_extensions import Annotated

from releve.config import load_config, validate_config
from releve.errors import ConfigError, ProtocolError, TransportError
from releve.jmap import JmapClient, fetch_session
from releve.storage.store import ItemStore
from releve.sync.context import SyncContext
from releve.sync.engine import ItemOutcome, SyncEngine, SyncEvent
from releve.sync.ratelimit import RateLimiter
from releve.sync.state import WatermarkTracker

app = typer.Typer(help="Back up new items from the remote account")


class BackupKind(str, Enum):
    emails = "emails"


def _print_event(event: SyncEvent) -> None:
    """Print one line per message handled by the engine."""
    item_id = event.descriptor.id
    position = f"[{event.index + 1}/{event.total}]"

    if event.outcome is ItemOutcome.DOWNLOADED:
        typer.secho(f"{position} Downloaded {item_id} as {event.detail}", fg=typer.colors.GREEN)
    elif event.outcome is ItemOutcome.FAILED:
        typer.secho(
            f"{position} Failed to download {item_id} ({event.descriptor.subject}): {event.detail}",
            fg=typer.colors.RED,
            err=True,
        )
    else:
        typer.secho(
            f"{position} Skipping {item_id} because it's {event.detail}",
            fg=typer.colors.GREEN,
        )


@app.callback(invoke_without_command=True)
def backup(
    kind: Annotated[
        BackupKind, typer.Option("--kind", help="Kind of items to back up")
    ] = BackupKind.emails,
    lookback_days: Annotated[
        int, typer.Option(min=1, help="How far back the first backup reaches")
    ] = 7,
    reset: Annotated[
        bool,
        typer.Option("--reset", help="Forget the saved watermark before backing up"),
    ] = False,
):
    """Back up everything received since the last successful backup."""
    try:
        config = load_config()
        api_token, backup_directory = validate_config(config)
    except ConfigError as e:
        typer.secho(str(e), fg=typer.colors.RED, err=True)
        raise typer.Exit(1)

    tracker = WatermarkTracker(backup_directory)

    try:
        if reset:
            tracker.clear(kind.value)
            typer.echo(f"Cleared saved watermark for {kind.value}")

        with JmapClient(api_token) as client:
            session = fetch_session(client)
            context = SyncContext(
                client=client,
                session=session,
                store=ItemStore(backup_directory),
                tracker=tracker,
                limiter=RateLimiter(),
            )
            engine = SyncEngine(
                context, kind=kind.value, lookback=timedelta(days=lookback_days)
            )

            typer.echo(f"Backing up {kind.value}...")
            report = engine.run(on_event=_print_event)
    except ProtocolError as e:
        typer.secho(f"Error in JMAP response: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(1)
    except TransportError as e:
        typer.secho(f"Error making request: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(1)
    except OSError as e:
        typer.secho(f"Error saving version data: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(1)

    typer.echo()
    if report.window is not None and report.window.is_empty:
        typer.echo("Nothing to back up yet.")
        return

    typer.echo(
        f"{report.discovered} {kind.value} received {report.window.start} - {report.window.end}"
    )
    typer.echo(f"  {report.downloaded} downloaded")
    typer.echo(f"  {report.skipped} skipped")

    if not report.watermark_saved:
        typer.secho(
            "Error saving version data - everything will be downloaded again next time",
            fg=typer.colors.RED,
            err=True,
        )

    if report.errors:
        typer.secho(
            f"  {report.errors} errors (these will not be retried automatically):",
            fg=typer.colors.RED,
            err=True,
        )
        for detail in report.error_details:
            typer.secho(f"    {detail}", fg=typer.colors.RED, err=True)
        raise typer.Exit(1)

    if not report.watermark_saved:
        raise typer.Exit(1)

    typer.secho("Done", fg=typer.colors.GREEN)
