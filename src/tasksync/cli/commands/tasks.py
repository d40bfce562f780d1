"""Task and list editing commands.

Every command loads the local snapshot, syncs once when signed in, applies
its edit through the orchestrator and saves (and broadcasts) before exiting.
Lists are referenced by 1-based index, id prefix or title; items by 1-based
index within their list or id prefix.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

import click
from rich.console import Console

from ...models import Document, ListColor, Priority, TaskItem, TaskList, TaskStatus
from ..display import display_list, display_lists, display_merged
from .init import engine_session

console = Console()
logger = logging.getLogger(__name__)

COLORS = [color.value for color in ListColor]
PRIORITIES = [priority.value for priority in Priority]
STATUSES = [status.value for status in TaskStatus]


def resolve_list(document: Document, ref: str) -> TaskList:
    """Find a list by 1-based index, id, id prefix or title.

    Raises:
        click.ClickException: No list, or more than one, matches ``ref``
    """
    if ref.isdigit():
        index = int(ref)
        if 1 <= index <= len(document.lists):
            return document.lists[index - 1]

    exact = document.find_list(ref)
    if exact is not None:
        return exact

    matches = [lst for lst in document.lists if lst.id.startswith(ref)]
    if not matches:
        matches = [lst for lst in document.lists if lst.title.lower() == ref.lower()]
    if len(matches) == 1:
        return matches[0]
    if matches:
        raise click.ClickException(f"List reference '{ref}' is ambiguous")
    raise click.ClickException(f"No list matches '{ref}'")


def resolve_item(task_list: TaskList, ref: str) -> TaskItem:
    """Find an item of ``task_list`` by 1-based index, id or id prefix.

    Raises:
        click.ClickException: No item, or more than one, matches ``ref``
    """
    if ref.isdigit():
        index = int(ref)
        if 1 <= index <= task_list.item_count:
            return task_list.items[index - 1]

    exact = task_list.find_item(ref)
    if exact is not None:
        return exact

    matches = [item for item in task_list.items if item.id.startswith(ref)]
    if len(matches) == 1:
        return matches[0]
    if matches:
        raise click.ClickException(f"Item reference '{ref}' is ambiguous")
    raise click.ClickException(f"No item '{ref}' in list '{task_list.title}'")


def _parse_reminder(value: Optional[str]) -> Optional[datetime]:
    if value is None:
        return None
    try:
        when = datetime.fromisoformat(value)
    except ValueError as e:
        raise click.BadParameter(f"not an ISO date/time: {value}") from e
    if when.tzinfo is None:
        when = when.astimezone()
    return when.astimezone(timezone.utc)


def _fail(action: str, e: Exception) -> None:
    logger.exception("%s failed", action)
    console.print(f"[bold red]❌ {action} failed: {e}[/bold red]")
    raise click.Abort()


@click.command("lists")
def lists_command() -> None:
    """Show all lists."""
    try:
        with engine_session() as engine:
            display_lists(engine.orchestrator.document)
    except (click.ClickException, click.Abort):
        raise
    except Exception as e:
        _fail("Listing", e)


@click.command("show")
@click.argument("list_ref", required=False)
@click.option("--merged", "-m", is_flag=True, help="Show tasks of all lists")
@click.option("--all", "show_all", is_flag=True, help="Include completed tasks")
def show_command(list_ref: Optional[str], merged: bool, show_all: bool) -> None:
    """Show the tasks of one list, or the merged view across lists."""
    try:
        with engine_session() as engine:
            document = engine.orchestrator.document
            if merged or list_ref is None:
                display_merged(document, include_completed=show_all)
            else:
                display_list(resolve_list(document, list_ref))
    except (click.ClickException, click.Abort):
        raise
    except Exception as e:
        _fail("Show", e)


@click.command("new-list")
@click.argument("title")
@click.option("--color", type=click.Choice(COLORS), help="Color tag")
def new_list_command(title: str, color: Optional[str]) -> None:
    """Create a list."""
    fields: Dict[str, Any] = {}
    if color:
        fields["color"] = ListColor(color)
    try:
        with engine_session() as engine:
            task_list = engine.orchestrator.create_list(title, **fields)
        console.print(
            f"[green]✓ Created list '{task_list.title}' ({task_list.id[:8]})[/green]"
        )
    except (click.ClickException, click.Abort):
        raise
    except Exception as e:
        _fail("Creating list", e)


@click.command("edit-list")
@click.argument("list_ref")
@click.option("--title", help="New title")
@click.option("--color", type=click.Choice(COLORS), help="New color tag")
@click.option(
    "--descending/--ascending",
    default=None,
    help="Priority direction used by 'sort'",
)
@click.option("--hide/--unhide", default=None, help="Hide the list's window")
def edit_list_command(
    list_ref: str,
    title: Optional[str],
    color: Optional[str],
    descending: Optional[bool],
    hide: Optional[bool],
) -> None:
    """Change a list's title, color or sort direction."""
    changes: Dict[str, Any] = {}
    if title is not None:
        changes["title"] = title
    if color is not None:
        changes["color"] = ListColor(color)
    if descending is not None:
        changes["sort_descending"] = descending
    if hide is not None:
        changes["is_visible"] = not hide
    if not changes:
        raise click.UsageError("Nothing to change")

    try:
        with engine_session() as engine:
            task_list = resolve_list(engine.orchestrator.document, list_ref)
            engine.orchestrator.update_list(
                task_list.id, lambda lst: lst.with_changes(**changes)
            )
        console.print(f"[green]✓ Updated list '{task_list.title}'[/green]")
    except (click.ClickException, click.Abort):
        raise
    except Exception as e:
        _fail("Editing list", e)


@click.command("rm-list")
@click.argument("list_ref")
@click.option("--yes", "-y", is_flag=True, help="Do not ask for confirmation")
def rm_list_command(list_ref: str, yes: bool) -> None:
    """Delete a list and all of its tasks."""
    try:
        with engine_session() as engine:
            task_list = resolve_list(engine.orchestrator.document, list_ref)
            if not yes and not click.confirm(
                f"Delete '{task_list.title}' and its {task_list.item_count} tasks?"
            ):
                console.print("[dim]Cancelled[/dim]")
                return
            engine.orchestrator.delete_list(task_list.id)
        console.print(f"[green]✓ Deleted list '{task_list.title}'[/green]")
    except (click.ClickException, click.Abort):
        raise
    except Exception as e:
        _fail("Deleting list", e)


@click.command("add")
@click.argument("list_ref")
@click.argument("content")
@click.option("--priority", "-p", type=click.Choice(PRIORITIES), help="Priority")
@click.option("--status", "-s", type=click.Choice(STATUSES), help="Workflow status")
@click.option("--minutes", type=click.IntRange(min=1), help="Estimated minutes")
@click.option("--remind", help="Reminder date/time (ISO 8601)")
def add_command(
    list_ref: str,
    content: str,
    priority: Optional[str],
    status: Optional[str],
    minutes: Optional[int],
    remind: Optional[str],
) -> None:
    """Add a task to a list."""
    fields: Dict[str, Any] = {}
    if priority:
        fields["priority"] = Priority(priority)
    if status:
        fields["status"] = TaskStatus(status)
    if minutes:
        fields["estimated_minutes"] = minutes
    reminder = _parse_reminder(remind)
    if reminder is not None:
        fields["reminder_date"] = reminder

    try:
        with engine_session() as engine:
            task_list = resolve_list(engine.orchestrator.document, list_ref)
            item = engine.orchestrator.add_item(task_list.id, content, **fields)
        console.print(
            f"[green]✓ Added to '{task_list.title}': {item.content} "
            f"({item.id[:8]})[/green]"
        )
    except (click.ClickException, click.Abort):
        raise
    except Exception as e:
        _fail("Adding task", e)


@click.command("done")
@click.argument("list_ref")
@click.argument("item_ref")
def done_command(list_ref: str, item_ref: str) -> None:
    """Toggle a task's completion."""
    try:
        with engine_session() as engine:
            task_list = resolve_list(engine.orchestrator.document, list_ref)
            item = resolve_item(task_list, item_ref)
            engine.orchestrator.toggle_completion(item.id)
        state = "open" if item.is_completed else "done"
        console.print(f"[green]✓ Marked '{item.content}' as {state}[/green]")
    except (click.ClickException, click.Abort):
        raise
    except Exception as e:
        _fail("Toggling task", e)


@click.command("rm")
@click.argument("list_ref")
@click.argument("item_ref")
def rm_command(list_ref: str, item_ref: str) -> None:
    """Delete a task."""
    try:
        with engine_session() as engine:
            task_list = resolve_list(engine.orchestrator.document, list_ref)
            item = resolve_item(task_list, item_ref)
            engine.orchestrator.delete_item(task_list.id, item.id)
        console.print(f"[green]✓ Deleted '{item.content}'[/green]")
    except (click.ClickException, click.Abort):
        raise
    except Exception as e:
        _fail("Deleting task", e)


@click.command("edit")
@click.argument("list_ref")
@click.argument("item_ref")
@click.option("--content", "-c", help="New text")
@click.option("--priority", "-p", type=click.Choice(PRIORITIES), help="Priority")
@click.option("--status", "-s", type=click.Choice(STATUSES), help="Workflow status")
@click.option("--minutes", type=click.IntRange(min=0), help="Estimate, 0 clears it")
@click.option("--remind", help="Reminder date/time (ISO 8601), '' clears it")
@click.option("--bold/--no-bold", default=None)
@click.option("--italic/--no-italic", default=None)
@click.option("--strike/--no-strike", default=None)
def edit_command(
    list_ref: str,
    item_ref: str,
    content: Optional[str],
    priority: Optional[str],
    status: Optional[str],
    minutes: Optional[int],
    remind: Optional[str],
    bold: Optional[bool],
    italic: Optional[bool],
    strike: Optional[bool],
) -> None:
    """Change a task's text, priority, status or formatting."""
    changes: Dict[str, Any] = {}
    if content is not None:
        changes["content"] = content
    if priority is not None:
        changes["priority"] = Priority(priority)
    if status is not None:
        changes["status"] = TaskStatus(status)
    if minutes is not None:
        changes["estimated_minutes"] = minutes or None
    if remind is not None:
        changes["reminder_date"] = _parse_reminder(remind) if remind else None
    for field, value in (
        ("is_bold", bold),
        ("is_italic", italic),
        ("is_strikethrough", strike),
    ):
        if value is not None:
            changes[field] = value
    if not changes:
        raise click.UsageError("Nothing to change")

    try:
        with engine_session() as engine:
            task_list = resolve_list(engine.orchestrator.document, list_ref)
            item = resolve_item(task_list, item_ref)
            engine.orchestrator.mutate(
                task_list.id, item.id, lambda it: it.with_changes(**changes)
            )
        label = changes.get("content", item.content)
        console.print(f"[green]✓ Updated '{label}'[/green]")
    except (click.ClickException, click.Abort):
        raise
    except Exception as e:
        _fail("Editing task", e)


@click.command("move")
@click.argument("list_ref")
@click.argument("item_ref")
@click.argument("position", type=click.IntRange(min=1))
def move_command(list_ref: str, item_ref: str, position: int) -> None:
    """Move a task to POSITION (1-based) within its list."""
    try:
        with engine_session() as engine:
            task_list = resolve_list(engine.orchestrator.document, list_ref)
            item = resolve_item(task_list, item_ref)
            engine.orchestrator.move_item(task_list.id, item.id, position - 1)
        console.print(f"[green]✓ Moved '{item.content}'[/green]")
    except (click.ClickException, click.Abort):
        raise
    except Exception as e:
        _fail("Moving task", e)


@click.command("sort")
@click.argument("list_ref")
def sort_command(list_ref: str) -> None:
    """Sort a list: open tasks first, then by priority, then by text."""
    try:
        with engine_session() as engine:
            task_list = resolve_list(engine.orchestrator.document, list_ref)
            engine.orchestrator.sort_list(task_list.id)
            sorted_list = engine.orchestrator.document.find_list(task_list.id)
            if sorted_list is not None:
                display_list(sorted_list)
    except (click.ClickException, click.Abort):
        raise
    except Exception as e:
        _fail("Sorting", e)


@click.command("reorder")
@click.argument("item_ids", nargs=-1, required=True)
def reorder_command(item_ids: Tuple[str, ...]) -> None:
    """Set the merged view order; ITEM_IDS are id prefixes, first to last.

    Tasks not named keep their relative order after the named ones.
    """
    try:
        with engine_session() as engine:
            document = engine.orchestrator.document
            everything = document.all_items()
            chosen: List[str] = []
            for ref in item_ids:
                matches = [item.id for item in everything if item.id.startswith(ref)]
                if len(matches) != 1:
                    raise click.ClickException(
                        f"Item reference '{ref}' matches {len(matches)} tasks"
                    )
                chosen.append(matches[0])
            rest = [i for i in document.merged_task_order if i not in chosen]
            rest += [item.id for item in everything if item.id not in chosen]
            engine.orchestrator.set_merged_task_order(chosen + rest)
            display_merged(engine.orchestrator.document)
    except (click.ClickException, click.Abort):
        raise
    except Exception as e:
        _fail("Reordering", e)
