"""CLI display and formatting utilities."""

from .formatters import (
    display_config,
    display_list,
    display_lists,
    display_merged,
    display_status,
    format_item,
)

__all__ = [
    "display_config",
    "display_list",
    "display_lists",
    "display_merged",
    "display_status",
    "format_item",
]
