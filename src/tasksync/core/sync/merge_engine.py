"""Merge engine for reconciling a local and a remote snapshot.

Conflict policy:
- Tombstones are unioned (earliest deletion time wins) and always beat edits.
- List metadata is whole-record last-writer-wins: the remote list replaces the
  local one only when its ``last_modified`` is strictly newer.
- Items are whole-record last-writer-wins. On an exact timestamp tie the remote
  copy is taken only when it differs from the local copy.
- Local item order is preserved; remote-only items are appended.
- List order follows the remote ordering; local-only lists are appended.

Every function here is pure: inputs are never modified.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from ...models.models import Document, TaskItem, TaskList
from .tombstones import TombstoneStore

logger = logging.getLogger(__name__)


@dataclass
class MergeStats:
    """Counters describing what a merge did."""

    lists_from_remote: int = 0
    lists_added: int = 0
    lists_dropped: int = 0
    items_from_remote: int = 0
    items_added: int = 0
    items_dropped: int = 0

    @property
    def changed(self) -> bool:
        """Whether the merge took anything from the remote side."""
        return any(
            (
                self.lists_from_remote,
                self.lists_added,
                self.lists_dropped,
                self.items_from_remote,
                self.items_added,
                self.items_dropped,
            )
        )

    def get_summary(self) -> Dict[str, int]:
        """Get summary statistics."""
        return {
            "lists_from_remote": self.lists_from_remote,
            "lists_added": self.lists_added,
            "lists_dropped": self.lists_dropped,
            "items_from_remote": self.items_from_remote,
            "items_added": self.items_added,
            "items_dropped": self.items_dropped,
        }


def resolve_item(local: TaskItem, remote: TaskItem) -> TaskItem:
    """Pick the winning version of one item.

    The strictly newer side wins wholesale. On an exact tie the remote copy is
    preferred only if its content differs; equal and identical is a no-op.
    """
    if remote.last_modified > local.last_modified:
        return remote
    if remote.last_modified < local.last_modified:
        return local
    if remote != local:
        return remote
    return local


def merge_items(
    local_items: Iterable[TaskItem],
    remote_items: Iterable[TaskItem],
    tombstones: TombstoneStore,
    stats: Optional[MergeStats] = None,
) -> List[TaskItem]:
    """Merge the items of one list.

    Args:
        local_items: Items in local order
        remote_items: Items in remote order
        tombstones: Union of both sides' item tombstones
        stats: Optional counters to update

    Returns:
        Merged items: local order first, remote-only items appended
    """
    stats = stats if stats is not None else MergeStats()
    remote_items = list(remote_items)
    remote_by_id = {item.id: item for item in remote_items}
    seen: Set[str] = set()
    merged: List[TaskItem] = []

    for local_item in local_items:
        seen.add(local_item.id)
        if local_item.id in tombstones:
            stats.items_dropped += 1
            continue

        remote_item = remote_by_id.get(local_item.id)
        if remote_item is None:
            merged.append(local_item)
            continue

        winner = resolve_item(local_item, remote_item)
        if winner is remote_item and remote_item != local_item:
            stats.items_from_remote += 1
        merged.append(winner)

    for remote_item in remote_items:
        if remote_item.id in seen:
            continue
        seen.add(remote_item.id)
        if remote_item.id in tombstones:
            continue
        stats.items_added += 1
        merged.append(remote_item)

    return merged


def merge_lists(
    local: TaskList, remote: TaskList, stats: Optional[MergeStats] = None
) -> TaskList:
    """Merge two versions of the same list.

    Metadata comes from the remote list only when it is strictly newer; items
    are always merged one by one.
    """
    stats = stats if stats is not None else MergeStats()
    item_tombstones = TombstoneStore(local.deleted_item_ids).merge(
        TombstoneStore(remote.deleted_item_ids)
    )
    items = merge_items(local.items, remote.items, item_tombstones, stats)

    base = local
    if remote.last_modified > local.last_modified:
        base = remote
        if remote.metadata() != local.metadata():
            stats.lists_from_remote += 1

    return base.with_changes(items=items, deleted_item_ids=item_tombstones.to_dict())


def merge_task_order(
    remote_order: Iterable[str], local_order: Iterable[str], live_ids: Set[str]
) -> Tuple[str, ...]:
    """Merge the cross-list display order.

    Remote order (restricted to live ids) followed by local ids the remote
    order does not mention. Display hint only; list membership is decided by
    the list merge.
    """
    merged: List[str] = []
    seen: Set[str] = set()
    for order in (remote_order, local_order):
        for item_id in order:
            if item_id in live_ids and item_id not in seen:
                seen.add(item_id)
                merged.append(item_id)
    return tuple(merged)


def merge_documents_with_stats(
    local: Document, remote: Document
) -> Tuple[Document, MergeStats]:
    """Merge ``remote`` into ``local`` and report what changed."""
    stats = MergeStats()
    list_tombstones = TombstoneStore(local.deleted_list_ids).merge(
        TombstoneStore(remote.deleted_list_ids)
    )
    local_by_id = {task_list.id: task_list for task_list in local.lists}
    remote_ids: Set[str] = set()
    merged_lists: List[TaskList] = []

    for remote_list in remote.lists:
        if remote_list.id in remote_ids:
            continue
        remote_ids.add(remote_list.id)
        if remote_list.id in list_tombstones:
            if remote_list.id in local_by_id:
                stats.lists_dropped += 1
            continue

        local_list = local_by_id.get(remote_list.id)
        if local_list is None:
            stats.lists_added += 1
            merged_lists.append(remote_list)
        else:
            merged_lists.append(merge_lists(local_list, remote_list, stats))

    for local_list in local.lists:
        if local_list.id in remote_ids:
            continue
        if local_list.id in list_tombstones:
            stats.lists_dropped += 1
            continue
        merged_lists.append(local_list)

    live_ids = {item.id for task_list in merged_lists for item in task_list.items}
    task_order = merge_task_order(
        remote.merged_task_order, local.merged_task_order, live_ids
    )

    merged = local.with_changes(
        lists=merged_lists,
        merged_task_order=task_order,
        deleted_list_ids=list_tombstones.to_dict(),
    )
    return merged, stats


def merge_documents(local: Document, remote: Document) -> Document:
    """Merge ``remote`` into ``local``; see module docstring for the policy."""
    merged, stats = merge_documents_with_stats(local, remote)
    if stats.changed:
        logger.debug("Merged remote snapshot: %s", stats.get_summary())
    return merged


def summarize(document: Document) -> Dict[str, Any]:
    """Small summary of a document for log lines."""
    return {
        "lists": len(document.lists),
        "items": sum(task_list.item_count for task_list in document.lists),
        "deleted_lists": len(document.deleted_list_ids),
    }
