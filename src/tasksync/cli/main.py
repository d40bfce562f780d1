"""Command-line interface for the tasksync application.

This is the main entry point that delegates to command modules.
"""

from pathlib import Path
from typing import Any, Optional

import click

from .. import __version__
from ..utils.logging_config import configure_third_party_loggers, setup_logging
from .commands import (
    add_command,
    config_command,
    done_command,
    edit_command,
    edit_list_command,
    lists_command,
    login_command,
    logout_command,
    move_command,
    new_list_command,
    reorder_command,
    rm_command,
    rm_list_command,
    show_command,
    sort_command,
    status_command,
    sync_command,
    watch_command,
    whoami_command,
)


@click.group()
@click.option(
    "--log-level",
    default="WARNING",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]),
    help="Set logging level",
)
@click.option("--log-file", type=click.Path(), help="Log to file")
@click.version_option(version=__version__, prog_name="tasksync")
@click.pass_context
def cli(ctx: Any, log_level: str, log_file: Optional[str]) -> None:
    """Offline-first task lists, synced across devices.

    Edits are saved locally first and merged with other devices when signed
    in. Configure the backend with TASKSYNC_* environment variables or a
    .env file (see 'tasksync config').
    """
    # Set up logging
    setup_logging(log_level=log_level, log_file=Path(log_file) if log_file else None)
    configure_third_party_loggers()
    ctx.ensure_object(dict)


# Account
cli.add_command(login_command)
cli.add_command(logout_command)
cli.add_command(whoami_command)
cli.add_command(status_command)

# Lists and tasks
cli.add_command(lists_command)
cli.add_command(show_command)
cli.add_command(new_list_command)
cli.add_command(edit_list_command)
cli.add_command(rm_list_command)
cli.add_command(add_command)
cli.add_command(done_command)
cli.add_command(rm_command)
cli.add_command(edit_command)
cli.add_command(move_command)
cli.add_command(sort_command)
cli.add_command(reorder_command)

# Sync
cli.add_command(sync_command)
cli.add_command(watch_command)
cli.add_command(config_command)


if __name__ == "__main__":
    cli()
