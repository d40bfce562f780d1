"""Pure update functions for the task document.

Each function takes the current ``Document`` and the wall-clock ``now`` and
returns a new ``Document``. Touched items and their owning list get a fresh
``last_modified`` that is strictly greater than the value they had before, even
when ``now`` lags behind a timestamp written by another device.

Unknown list or item ids raise ``KeyError``.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Iterable, List, Optional, Tuple

from ...models.models import Document, TaskItem, TaskList, utc
from .tombstones import TombstoneStore

logger = logging.getLogger(__name__)

TICK = timedelta(microseconds=1)

# Fields a caller-supplied update function may not change
_ITEM_IDENTITY = ("id",)
_LIST_IDENTITY = ("id", "items", "deleted_item_ids")


def bump(previous: datetime, now: datetime) -> datetime:
    """Return a timestamp strictly after ``previous`` and no earlier than ``now``."""
    return max(utc(now), utc(previous) + TICK)


def _require_list(document: Document, list_id: str) -> Tuple[int, TaskList]:
    for index, task_list in enumerate(document.lists):
        if task_list.id == list_id:
            return index, task_list
    raise KeyError(f"Unknown list: {list_id}")


def _require_item(document: Document, item_id: str) -> Tuple[TaskList, TaskItem]:
    found = document.find_item(item_id)
    if found is None:
        raise KeyError(f"Unknown item: {item_id}")
    return found


def _replace_list(document: Document, index: int, task_list: TaskList) -> Document:
    lists = list(document.lists)
    lists[index] = task_list
    return document.with_changes(lists=lists)


def _touch_list(task_list: TaskList, now: datetime, **changes: Any) -> TaskList:
    changes["last_modified"] = bump(task_list.last_modified, now)
    return task_list.with_changes(**changes)


def create_list(
    document: Document, now: datetime, title: str = "New List", **fields: Any
) -> Tuple[Document, TaskList]:
    """Append a new empty list.

    Args:
        document: Current document
        now: Current wall-clock time
        title: List title
        **fields: Extra ``TaskList`` fields (color, position, ...)

    Returns:
        Tuple of (new document, created list)
    """
    fields.pop("items", None)
    fields.pop("last_modified", None)
    task_list = TaskList(title=title, last_modified=utc(now), **fields)
    return document.with_changes(lists=[*document.lists, task_list]), task_list


def delete_list(document: Document, list_id: str, now: datetime) -> Document:
    """Remove a list and record its tombstone."""
    _, removed = _require_list(document, list_id)
    tombstones = TombstoneStore(document.deleted_list_ids)
    tombstones.record_deletion(list_id, now)
    removed_ids = {item.id for item in removed.items}
    return document.with_changes(
        lists=[task_list for task_list in document.lists if task_list.id != list_id],
        merged_task_order=[
            item_id
            for item_id in document.merged_task_order
            if item_id not in removed_ids
        ],
        deleted_list_ids=tombstones.to_dict(),
    )


def update_list(
    document: Document,
    list_id: str,
    update: Callable[[TaskList], TaskList],
    now: datetime,
) -> Document:
    """Apply ``update`` to a list's metadata.

    Identity, items and item tombstones are kept from the original list; use
    the item functions to change those.
    """
    index, task_list = _require_list(document, list_id)
    updated = update(task_list)
    changes = updated.model_dump(exclude=set(_LIST_IDENTITY) | {"last_modified"})
    return _replace_list(document, index, _touch_list(task_list, now, **changes))


def add_item(
    document: Document,
    list_id: str,
    now: datetime,
    content: str = "",
    **fields: Any,
) -> Tuple[Document, TaskItem]:
    """Append a new item to a list and to the merged task order."""
    index, task_list = _require_list(document, list_id)
    stamp = bump(task_list.last_modified, now)
    item = TaskItem(content=content, last_modified=stamp, **fields)
    task_list = task_list.with_changes(
        items=[*task_list.items, item], last_modified=stamp
    )
    document = _replace_list(document, index, task_list)
    document = document.with_changes(
        merged_task_order=[*document.merged_task_order, item.id]
    )
    return document, item


def delete_item(
    document: Document, list_id: str, item_id: str, now: datetime
) -> Document:
    """Remove an item from a list and record its tombstone."""
    index, task_list = _require_list(document, list_id)
    if task_list.find_item(item_id) is None:
        raise KeyError(f"Unknown item: {item_id}")

    tombstones = TombstoneStore(task_list.deleted_item_ids)
    tombstones.record_deletion(item_id, now)
    task_list = _touch_list(
        task_list,
        now,
        items=[item for item in task_list.items if item.id != item_id],
        deleted_item_ids=tombstones.to_dict(),
    )
    document = _replace_list(document, index, task_list)
    return document.with_changes(
        merged_task_order=[i for i in document.merged_task_order if i != item_id]
    )


def update_item(
    document: Document,
    item_id: str,
    update: Callable[[TaskItem], TaskItem],
    now: datetime,
    list_id: Optional[str] = None,
) -> Document:
    """Apply ``update`` to one item, wherever it lives.

    Args:
        document: Current document
        item_id: Item to change
        update: Function returning the changed item
        now: Current wall-clock time
        list_id: Owning list, if the caller knows it

    Returns:
        New document with the item and its list re-stamped
    """
    if list_id is not None:
        _, owner = _require_list(document, list_id)
        current = owner.find_item(item_id)
        if current is None:
            raise KeyError(f"Unknown item: {item_id}")
    else:
        owner, current = _require_item(document, item_id)

    updated = update(current)
    changes = updated.model_dump(exclude=set(_ITEM_IDENTITY) | {"last_modified"})
    stamp = max(bump(current.last_modified, now), bump(owner.last_modified, now))
    new_item = current.with_changes(last_modified=stamp, **changes)

    index, _ = _require_list(document, owner.id)
    items = [new_item if item.id == item_id else item for item in owner.items]
    return _replace_list(
        document, index, owner.with_changes(items=items, last_modified=stamp)
    )


def toggle_completion(document: Document, item_id: str, now: datetime) -> Document:
    """Flip an item's completed flag."""
    return update_item(
        document,
        item_id,
        lambda item: item.with_changes(is_completed=not item.is_completed),
        now,
    )


def move_item(
    document: Document, list_id: str, item_id: str, index: int, now: datetime
) -> Document:
    """Move an item to ``index`` within its list (clamped to the list bounds)."""
    list_index, task_list = _require_list(document, list_id)
    current = task_list.index_of(item_id)
    if current < 0:
        raise KeyError(f"Unknown item: {item_id}")

    items = list(task_list.items)
    item = items.pop(current)
    index = max(0, min(index, len(items)))
    items.insert(index, item)
    return _replace_list(document, list_index, _touch_list(task_list, now, items=items))


def sort_list(document: Document, list_id: str, now: datetime) -> Document:
    """Reorder a list's items with the explicit sort action."""
    index, task_list = _require_list(document, list_id)
    return _replace_list(
        document, index, _touch_list(task_list, now, items=task_list.sorted_items())
    )


def set_merged_task_order(document: Document, item_ids: Iterable[str]) -> Document:
    """Replace the cross-list display order.

    Unknown ids and duplicates are dropped. The order is a display hint and
    carries no timestamp.
    """
    live = document.live_item_ids()
    order: List[str] = []
    for item_id in item_ids:
        if item_id in live and item_id not in order:
            order.append(item_id)
    return document.with_changes(merged_task_order=order)


def merged_tasks(document: Document, include_completed: bool = False) -> List[TaskItem]:
    """Items for the merged view, following ``merged_task_order``.

    Items missing from the order are appended in list order.
    """
    candidates = [
        item
        for item in document.iter_items()
        if include_completed or not item.is_completed
    ]
    by_id = {item.id: item for item in candidates}
    ordered = [by_id[i] for i in document.merged_task_order if i in by_id]
    seen = {item.id for item in ordered}
    ordered.extend(item for item in candidates if item.id not in seen)
    return ordered


def prune_tombstones(
    document: Document, now: datetime, max_age: timedelta
) -> Tuple[Document, int]:
    """Drop list and item tombstones older than ``max_age``.

    Returns:
        Tuple of (new document, number of tombstones removed)
    """
    list_tombstones = TombstoneStore(document.deleted_list_ids)
    removed = list_tombstones.prune(now, max_age)

    lists = []
    for task_list in document.lists:
        item_tombstones = TombstoneStore(task_list.deleted_item_ids)
        pruned = item_tombstones.prune(now, max_age)
        if pruned:
            removed += pruned
            task_list = task_list.with_changes(
                deleted_item_ids=item_tombstones.to_dict()
            )
        lists.append(task_list)

    if not removed:
        return document, 0
    return (
        document.with_changes(lists=lists, deleted_list_ids=list_tombstones.to_dict()),
        removed,
    )
