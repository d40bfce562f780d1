"""Account commands: login, logout, whoami and status."""

import logging
from typing import Optional

import click
from rich.console import Console

from ...config import Config
from ...core.remote.auth import session_to_dict
from ...exceptions import AuthenticationError
from ..display import display_status
from .init import engine_session, init_engine

console = Console()
logger = logging.getLogger(__name__)


@click.command("login")
@click.argument("email")
@click.option("--password", help="Account password (prompted if needed)")
def login_command(email: str, password: Optional[str]) -> None:
    """Sign in and start syncing.

    New accounts are created on first sign-in. Tasks created while signed
    out are kept and uploaded if the account has no tasks yet.
    """
    try:
        config = Config()
        engine = init_engine(config)
        orchestrator = engine.orchestrator
        try:
            orchestrator.start()
            engine.drain()

            current = engine.auth.identity
            if current is not None:
                if current.email == email.strip().lower() or current.uid == email:
                    console.print(f"[dim]Already signed in as {current}[/dim]")
                    return
                console.print(f"[yellow]Signing out {current} first[/yellow]")
                orchestrator.sign_out()
                engine.drain()

            if password is None and config.transport == "firestore":
                password = click.prompt("Password", hide_input=True)

            console.print(f"[bold blue]🔐 Signing in as {email}...[/bold blue]")
            identity = engine.auth.sign_in(email, password or "")
            orchestrator.on_signed_in(identity)
            engine.drain()
            engine.wait_for_bootstrap()
        finally:
            engine.close()

        console.print(f"[bold green]✅ Signed in as {identity}[/bold green]")
        display_status(orchestrator.sync_status, identity, engine.device_id)
    except AuthenticationError as e:
        console.print(f"[bold red]❌ {e}[/bold red]")
        raise click.Abort()
    except (click.ClickException, click.Abort):
        raise
    except Exception as e:
        logger.exception("Login failed")
        console.print(f"[bold red]❌ Login failed: {e}[/bold red]")
        raise click.Abort()


@click.command("logout")
def logout_command() -> None:
    """Sign out and delete the local copy of your tasks."""
    try:
        with engine_session() as engine:
            identity = engine.auth.identity
            if identity is None:
                console.print("[dim]Not signed in[/dim]")
                return
            engine.orchestrator.sign_out()
        console.print(f"[green]✓ Signed out {identity}; local tasks removed[/green]")
    except Exception as e:
        logger.exception("Logout failed")
        console.print(f"[bold red]❌ Logout failed: {e}[/bold red]")
        raise click.Abort()


@click.command("whoami")
def whoami_command() -> None:
    """Show the signed-in account."""
    try:
        config = Config()
        engine = init_engine(config)
        session = engine.auth.session_store.load()
        engine.close()
        if session is None:
            console.print("[dim]Not signed in[/dim]")
            return
        for key, value in session_to_dict(session).items():
            console.print(f"[cyan]{key}[/cyan]: {value}")
        console.print(f"[cyan]device_id[/cyan]: {engine.device_id}")
    except Exception as e:
        logger.exception("whoami failed")
        console.print(f"[bold red]❌ {e}[/bold red]")
        raise click.Abort()


@click.command("status")
def status_command() -> None:
    """Sync once and show the sync state."""
    try:
        with engine_session() as engine:
            orchestrator = engine.orchestrator
            display_status(
                orchestrator.sync_status, engine.auth.identity, engine.device_id
            )
            console.print(
                f"[dim]{len(orchestrator.lists)} lists, "
                f"{len(orchestrator.document.all_items())} tasks[/dim]"
            )
    except Exception as e:
        logger.exception("Status failed")
        console.print(f"[bold red]❌ Status failed: {e}[/bold red]")
        raise click.Abort()
