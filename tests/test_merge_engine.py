"""Tests for the merge engine."""

import pytest

from conftest import at

from tasksync.core.sync import (
    MergeStats,
    TombstoneStore,
    merge_documents,
    merge_documents_with_stats,
    merge_items,
    merge_lists,
    merge_task_order,
)
from tasksync.core.sync.merge_engine import resolve_item, summarize
from tasksync.models import Document, ListColor, Point, TaskItem, TaskList


def item(item_id, content="task", modified=0, **fields):
    return TaskItem(id=item_id, content=content, last_modified=at(modified), **fields)


def task_list(list_id, items=(), modified=0, deleted=None, **fields):
    return TaskList(
        id=list_id,
        items=items,
        last_modified=at(modified),
        deleted_item_ids=deleted or {},
        **fields,
    )


@pytest.fixture
def sample_document():
    """Document with two lists and a few tombstones."""
    return Document(
        lists=[
            task_list(
                "L1",
                [item("a", "milk", 5), item("b", "eggs", 6)],
                modified=6,
                deleted={"gone": at(1)},
                title="Groceries",
            ),
            task_list("L2", [item("c", "report", 3)], modified=3, title="Work"),
        ],
        merged_task_order=["c", "a", "b"],
        deleted_list_ids={"L0": at(2)},
    )


class TestResolveItem:
    """Test single-item conflict resolution."""

    def test_newer_remote_wins(self):
        """Test strictly newer remote replaces local wholesale."""
        local = item("x", "buy milk", 100, is_bold=True)
        remote = item("x", "buy oat milk", 200)

        assert resolve_item(local, remote) is remote

    def test_newer_local_wins(self):
        """Test strictly newer local is kept."""
        local = item("x", "local", 300)
        remote = item("x", "remote", 200)

        assert resolve_item(local, remote) is local

    def test_tie_with_different_content_prefers_remote(self):
        """Test equal timestamps and different content take the remote copy."""
        local = item("x", "local", 100)
        remote = item("x", "remote", 100)

        assert resolve_item(local, remote) is remote

    def test_tie_with_identical_content_keeps_local(self):
        """Test equal and identical is a no-op."""
        local = item("x", "same", 100)
        remote = item("x", "same", 100)

        assert resolve_item(local, remote) is local


class TestMergeItems:
    """Test item-level merging within one list."""

    def test_local_order_kept_and_remote_only_appended(self):
        """Test ordering rules for merged items."""
        local = [item("a"), item("b")]
        remote = [item("c"), item("b"), item("d")]

        merged = merge_items(local, remote, TombstoneStore())

        assert [i.id for i in merged] == ["a", "b", "c", "d"]

    def test_tombstoned_items_are_dropped_on_both_sides(self):
        """Test tombstones remove local and remote items."""
        local = [item("a"), item("b")]
        remote = [item("b", modified=999), item("c", modified=999)]
        stats = MergeStats()

        merged = merge_items(
            local, remote, TombstoneStore({"b": at(1), "c": at(1)}), stats
        )

        assert [i.id for i in merged] == ["a"]
        assert stats.items_dropped == 1
        assert stats.items_added == 0

    def test_stats_count_remote_wins(self):
        """Test stats record items taken from remote."""
        stats = MergeStats()
        merge_items(
            [item("a", "old", 1), item("b", "same", 1)],
            [item("a", "new", 2), item("b", "same", 1), item("c")],
            TombstoneStore(),
            stats,
        )

        assert stats.items_from_remote == 1
        assert stats.items_added == 1
        assert stats.changed


class TestMergeLists:
    """Test list-level merging."""

    def test_newer_remote_metadata_wins(self):
        """Test remote title/color replace local when remote is newer."""
        local = task_list("L", [item("a")], modified=1, title="Old")
        remote = task_list(
            "L", [item("a")], modified=2, title="New", color=ListColor.GREEN
        )

        merged = merge_lists(local, remote)

        assert merged.title == "New"
        assert merged.color == ListColor.GREEN

    def test_older_remote_metadata_loses_but_items_merge(self):
        """Test items merge even when list metadata stays local."""
        local = task_list("L", [item("a", "local", 5)], modified=10, title="Local")
        remote = task_list(
            "L", [item("a", "remote", 8), item("b")], modified=8, title="Remote"
        )

        merged = merge_lists(local, remote)

        assert merged.title == "Local"
        assert [i.content for i in merged.items] == ["remote", "task"]

    def test_item_tombstones_are_unioned(self):
        """Test both sides' item tombstones end up in the result."""
        local = task_list("L", [item("b")], modified=1, deleted={"a": at(5)})
        remote = task_list(
            "L", [item("a"), item("b")], modified=2, deleted={"b": at(3)}
        )

        merged = merge_lists(local, remote)

        assert merged.items == ()
        assert merged.deleted_item_ids == {"a": at(5), "b": at(3)}


class TestMergeDocuments:
    """Test whole-document merging."""

    def test_idempotent(self, sample_document):
        """Test merge(D, D) == D."""
        assert merge_documents(sample_document, sample_document) == sample_document

    def test_merge_with_empty_remote_keeps_local(self, sample_document):
        """Test an empty remote changes nothing."""
        assert merge_documents(sample_document, Document()) == sample_document

    def test_newer_remote_content_wins(self):
        """Test the buy-milk scenario."""
        local = Document(
            lists=[task_list("A", [item("X", "buy milk", 100)], modified=100)]
        )
        remote = Document(
            lists=[task_list("A", [item("X", "buy oat milk", 200)], modified=200)]
        )

        merged = merge_documents(local, remote)

        assert merged.lists[0].items[0].content == "buy oat milk"

    def test_local_deletion_beats_newer_remote_edit(self):
        """Test a tombstoned item is not resurrected by a stale remote."""
        local = Document(
            lists=[task_list("A", [], modified=50, deleted={"Y": at(50)})]
        )
        remote = Document(
            lists=[task_list("A", [item("Y", "zombie", 999)], modified=999)]
        )

        merged = merge_documents(local, remote)

        assert merged.lists[0].items == ()
        assert "Y" in merged.lists[0].deleted_item_ids

    def test_list_order_follows_remote_then_local_only(self):
        """Test remote order first, local-only lists appended."""
        local = Document(lists=[task_list("A"), task_list("B"), task_list("L")])
        remote = Document(lists=[task_list("B"), task_list("R"), task_list("A")])

        merged = merge_documents(local, remote)

        assert [lst.id for lst in merged.lists] == ["B", "R", "A", "L"]

    def test_tombstoned_list_dropped_from_both_sides(self):
        """Test deleted lists vanish regardless of which side deleted them."""
        local = Document(
            lists=[task_list("A"), task_list("B", modified=999)],
            deleted_list_ids={"C": at(1)},
        )
        remote = Document(
            lists=[task_list("A"), task_list("C", modified=999)],
            deleted_list_ids={"B": at(1)},
        )

        merged, stats = merge_documents_with_stats(local, remote)

        assert [lst.id for lst in merged.lists] == ["A"]
        assert set(merged.deleted_list_ids) == {"B", "C"}
        assert stats.lists_dropped == 1

    def test_merged_task_order_prefers_remote(self):
        """Test remote order first, then local extras, restricted to live ids."""
        local = Document(
            lists=[task_list("A", [item("a"), item("b"), item("c")])],
            merged_task_order=["c", "a", "b"],
        )
        remote = Document(
            lists=[task_list("A", [item("a"), item("b"), item("c")])],
            merged_task_order=["b", "ghost", "a"],
        )

        merged = merge_documents(local, remote)

        assert merged.merged_task_order == ("b", "a", "c")

    def test_local_geometry_is_kept(self):
        """Test merged-view window geometry stays device-local."""
        local = Document(merged_list_position=Point(x=1, y=2))
        remote = Document(merged_list_position=Point(x=50, y=60))

        merged = merge_documents(local, remote)

        assert merged.merged_list_position == Point(x=1, y=2)

    def test_inputs_are_not_modified(self, sample_document):
        """Test merging leaves both inputs untouched."""
        remote = Document(
            lists=[task_list("L1", [item("z")], modified=100, title="Remote")]
        )
        before_local = sample_document.model_copy(deep=True)
        before_remote = remote.model_copy(deep=True)

        merge_documents(sample_document, remote)

        assert sample_document == before_local
        assert remote == before_remote

    def test_merge_converges_when_each_side_merges_the_other(self):
        """Test two devices with disjoint edits reach the same document."""
        base = task_list("A", [item("a", "shared", 1)], modified=1)
        device_1 = Document(
            lists=[
                base.with_changes(
                    items=[item("a", "shared", 1), item("n1", "from 1", 5)],
                    last_modified=at(5),
                )
            ]
        )
        device_2 = Document(
            lists=[
                base.with_changes(
                    items=[item("a", "edited", 7)],
                    last_modified=at(7),
                )
            ]
        )

        on_1 = merge_documents(device_1, device_2)
        on_2 = merge_documents(device_2, on_1)

        assert {i.id: i.content for i in on_1.lists[0].items} == {
            "a": "edited",
            "n1": "from 1",
        }
        assert merge_documents(on_1, on_2) == on_1


class TestHelpers:
    """Test small merge helpers."""

    def test_merge_task_order_dedups(self):
        """Test duplicates and dead ids are dropped."""
        order = merge_task_order(["a", "a", "x"], ["b", "a"], {"a", "b"})

        assert order == ("a", "b")

    def test_summarize(self, sample_document):
        """Test document summary counts."""
        assert summarize(sample_document) == {
            "lists": 2,
            "items": 3,
            "deleted_lists": 1,
        }

    def test_stats_summary(self):
        """Test stats summary keys."""
        stats = MergeStats(lists_added=1)

        assert stats.get_summary()["lists_added"] == 1
        assert stats.changed
        assert not MergeStats().changed
