"""Sync commands: one-shot sync and continuous watch."""

import logging
import time

import click
from rich.console import Console

from ...config import Config
from ...core.sync import EventKind, SyncEvent
from ..display import display_lists, display_status
from .init import engine_session, init_engine

console = Console()
logger = logging.getLogger(__name__)


@click.command("sync")
def sync_command() -> None:
    """Save, upload and download now.

    Pushes the local snapshot, fetches the remote one and merges it. Exits
    with an error if sync is in the error state afterwards.
    """
    try:
        console.print("[bold blue]🔄 Syncing...[/bold blue]")
        with engine_session() as engine:
            orchestrator = engine.orchestrator
            if engine.auth.identity is None:
                console.print(
                    "[yellow]⚠️  Not signed in; tasks are only stored locally. "
                    "Run 'tasksync login' to sync.[/yellow]"
                )
                return
            orchestrator.manual_refresh()
            engine.drain()
            status = orchestrator.sync_status
            document = orchestrator.document

        if status.is_error:
            console.print(f"[bold red]❌ Sync failed: {status.message}[/bold red]")
            raise click.Abort()

        console.print("[bold green]✅ Sync complete![/bold green]")
        display_lists(document)
    except click.Abort:
        raise
    except Exception as e:
        logger.exception("Sync failed")
        console.print(f"[bold red]❌ Sync failed: {e}[/bold red]")
        raise click.Abort()


@click.command("watch")
@click.option(
    "--reload-interval",
    type=click.FloatRange(min=1.0),
    default=5.0,
    show_default=True,
    help="Seconds between re-reading the local snapshot for edits made by "
    "other commands",
)
def watch_command(reload_interval: float) -> None:
    """Keep syncing in the foreground until interrupted.

    Remote changes are merged in as they arrive; edits made with other
    tasksync commands on this machine are picked up and uploaded.
    """
    try:
        engine = init_engine(Config(), threaded=True)
    except Exception as e:
        logger.exception("Watch failed to start")
        console.print(f"[bold red]❌ Watch failed: {e}[/bold red]")
        raise click.Abort()

    orchestrator = engine.orchestrator

    def on_event(event: SyncEvent) -> None:
        if event.kind == EventKind.DOCUMENT_CHANGED:
            items = sum(lst.item_count for lst in event.document.lists)
            console.print(
                f"[dim]{time.strftime('%H:%M:%S')}[/dim] "
                f"{len(event.document.lists)} lists, {items} tasks"
            )
        elif event.kind == EventKind.STATUS_CHANGED:
            status = event.sync_status
            style = "red" if status.is_error else "green"
            console.print(
                f"[dim]{time.strftime('%H:%M:%S')}[/dim] [{style}]{status}[/{style}]"
            )
        elif event.kind == EventKind.AUTH_CHANGED:
            console.print(f"[cyan]Account: {event.auth_state.identity or '-'}[/cyan]")

    orchestrator.subscribe(on_event)
    engine.start()

    if engine.auth.identity is None:
        console.print(
            "[yellow]⚠️  Not signed in; watching local changes only.[/yellow]"
        )
    console.print("[bold blue]👀 Watching for changes (Ctrl-C to stop)[/bold blue]")

    try:
        while True:
            time.sleep(reload_interval)
            engine.run(orchestrator.on_foreground)
    except KeyboardInterrupt:
        console.print("\n[dim]Stopping...[/dim]")
    finally:
        engine.close()
        display_status(orchestrator.sync_status, engine.auth.identity, engine.device_id)
