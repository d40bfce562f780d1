"""CLI command modules."""

from .auth import login_command, logout_command, status_command, whoami_command
from .config import config_command
from .init import Engine, engine_session, init_engine
from .sync import sync_command, watch_command
from .tasks import (
    add_command,
    done_command,
    edit_command,
    edit_list_command,
    lists_command,
    move_command,
    new_list_command,
    reorder_command,
    rm_command,
    rm_list_command,
    show_command,
    sort_command,
)

__all__ = [
    "Engine",
    "engine_session",
    "init_engine",
    "login_command",
    "logout_command",
    "whoami_command",
    "status_command",
    "config_command",
    "sync_command",
    "watch_command",
    "lists_command",
    "show_command",
    "new_list_command",
    "edit_list_command",
    "rm_list_command",
    "add_command",
    "done_command",
    "rm_command",
    "edit_command",
    "move_command",
    "sort_command",
    "reorder_command",
]
