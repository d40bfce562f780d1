"""Display formatters and UI helpers for CLI."""

import logging
from typing import Any, Dict, Iterable, Optional

from rich.console import Console
from rich.table import Table

from ...core.sync import SyncStatus
from ...core.sync.mutations import merged_tasks
from ...models import Document, Priority, TaskItem, TaskList

console = Console()
logger = logging.getLogger(__name__)

_PRIORITY_STYLE = {
    Priority.HIGH: "bold red",
    Priority.MEDIUM: "yellow",
    Priority.LOW: "cyan",
    Priority.NONE: "dim",
}


def format_item(item: TaskItem) -> str:
    """Rich markup for an item's content, honoring its formatting flags."""
    text = item.content or "[dim](empty)[/dim]"
    if item.is_bold:
        text = f"[bold]{text}[/bold]"
    if item.is_italic:
        text = f"[italic]{text}[/italic]"
    if item.is_strikethrough or item.is_completed:
        text = f"[strike]{text}[/strike]"
    return text


def _priority_cell(priority: Priority) -> str:
    if priority == Priority.NONE:
        return ""
    style = _PRIORITY_STYLE[priority]
    return f"[{style}]{priority.title}[/{style}]"


def display_lists(document: Document) -> None:
    """Display an overview of all lists.

    Args:
        document: Document to show
    """
    if document.is_empty:
        console.print("[dim]No lists yet. Create one with 'tasksync new-list'.[/dim]")
        return

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("#", style="dim", justify="right")
    table.add_column("ID", style="cyan")
    table.add_column("Title", style="bold")
    table.add_column("Color")
    table.add_column("Open", justify="right", style="green")
    table.add_column("Done", justify="right", style="dim")
    table.add_column("Modified", style="dim")

    for index, task_list in enumerate(document.lists, start=1):
        done = sum(1 for item in task_list.items if item.is_completed)
        table.add_row(
            str(index),
            task_list.id[:8],
            task_list.title,
            task_list.color.value,
            str(task_list.item_count - done),
            str(done),
            task_list.last_modified.strftime("%Y-%m-%d %H:%M"),
        )

    console.print(table)


def display_list(task_list: TaskList) -> None:
    """Display the items of one list.

    Args:
        task_list: List to show
    """
    console.print(f"\n[bold blue]📋 {task_list.title}[/bold blue]")
    _display_items(task_list.items)


def display_merged(document: Document, include_completed: bool = False) -> None:
    """Display the merged cross-list view.

    Args:
        document: Document to show
        include_completed: Also show completed items
    """
    console.print("\n[bold blue]🗂️  All tasks[/bold blue]")
    owners = {item.id: lst.title for lst in document.lists for item in lst.items}
    _display_items(merged_tasks(document, include_completed), owners)


def _display_items(
    items: Iterable[TaskItem], owners: Optional[Dict[str, str]] = None
) -> None:
    items = list(items)
    if not items:
        console.print("  [dim]No tasks[/dim]")
        return

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("#", style="dim", justify="right")
    table.add_column("", width=1)
    table.add_column("Task")
    table.add_column("Priority")
    table.add_column("Status", style="dim")
    if owners is not None:
        table.add_column("List", style="cyan")
    table.add_column("ID", style="dim")

    for index, item in enumerate(items, start=1):
        row = [
            str(index),
            "[green]✓[/green]" if item.is_completed else "·",
            format_item(item),
            _priority_cell(item.priority),
            item.status.value,
        ]
        if owners is not None:
            row.append(owners.get(item.id, ""))
        row.append(item.id[:8])
        table.add_row(*row)

    console.print(table)


def display_status(status: SyncStatus, identity: Any, device_id: str) -> None:
    """Display sync and sign-in state.

    Args:
        status: Current sync status
        identity: Signed-in identity, or None
        device_id: This installation's id
    """
    table = Table(show_header=False)
    table.add_column("Field", style="cyan")
    table.add_column("Value")

    if status.is_error:
        state = f"[red]❌ {status}[/red]"
    elif identity is not None:
        state = f"[green]✅ {status}[/green]"
    else:
        state = f"[dim]{status}[/dim]"

    table.add_row("Account", str(identity) if identity else "[dim]signed out[/dim]")
    table.add_row("Sync", state)
    table.add_row("Device", device_id)
    console.print(table)


def display_config(settings: Dict[str, Any]) -> None:
    """Display effective configuration.

    Args:
        settings: Output of ``Config.as_dict``
    """
    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Setting", style="cyan", width=28)
    table.add_column("Value", style="green")

    for key, value in settings.items():
        table.add_row(key, "[dim]not set[/dim]" if value is None else str(value))

    console.print(table)
