"""Configuration command."""

import logging

import click
from rich.console import Console

from ...config import Config
from ..display import display_config

console = Console()
logger = logging.getLogger(__name__)


@click.command("config")
def config_command() -> None:
    """Show the effective configuration."""
    try:
        config = Config()
    except Exception as e:
        logger.exception("Invalid configuration")
        console.print(f"[bold red]❌ Invalid configuration: {e}[/bold red]")
        raise click.Abort()

    console.print("[bold blue]⚙️  Configuration[/bold blue]")
    display_config(config.as_dict())
