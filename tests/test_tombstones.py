"""Tests for TombstoneStore."""

from datetime import timedelta

from conftest import at

from tasksync.core.sync import TombstoneStore


class TestRecordDeletion:
    """Test recording and querying tombstones."""

    def test_record_and_query(self):
        """Test a recorded id is reported as deleted."""
        store = TombstoneStore()
        store.record_deletion("a", at(10))

        assert store.is_deleted("a")
        assert "a" in store
        assert store.deleted_at("a") == at(10)
        assert not store.is_deleted("b")
        assert store.deleted_at("b") is None

    def test_earliest_deletion_is_kept(self):
        """Test re-recording keeps the earlier timestamp."""
        store = TombstoneStore()
        store.record_deletion("a", at(10))
        store.record_deletion("a", at(20))
        store.record_deletion("a", at(5))

        assert store.deleted_at("a") == at(5)
        assert len(store) == 1

    def test_init_from_mapping_copies(self):
        """Test the source mapping is not modified."""
        source = {"a": at(1)}
        store = TombstoneStore(source)
        store.record_deletion("b", at(2))

        assert source == {"a": at(1)}
        assert set(store) == {"a", "b"}


class TestMerge:
    """Test merging tombstone stores."""

    def test_merge_is_union_with_earliest(self):
        """Test merge keeps every id with its earliest time."""
        left = TombstoneStore({"a": at(10), "b": at(30)})
        right = TombstoneStore({"b": at(20), "c": at(40)})

        merged = left.merge(right)

        assert merged.to_dict() == {"a": at(10), "b": at(20), "c": at(40)}

    def test_merge_is_commutative(self):
        """Test merge(A, B) == merge(B, A)."""
        left = TombstoneStore({"a": at(10), "b": at(30)})
        right = TombstoneStore({"b": at(20), "c": at(40)})

        assert left.merge(right) == right.merge(left)

    def test_merge_is_associative_and_idempotent(self):
        """Test grouping and repetition do not change the result."""
        a = TombstoneStore({"x": at(3)})
        b = TombstoneStore({"x": at(1), "y": at(2)})
        c = TombstoneStore({"y": at(5), "z": at(9)})

        assert a.merge(b).merge(c) == a.merge(b.merge(c))
        assert a.merge(a) == a
        assert a.merge(b).merge(b) == a.merge(b)

    def test_merge_does_not_modify_inputs(self):
        """Test merge returns a new store."""
        left = TombstoneStore({"a": at(10)})
        right = TombstoneStore({"a": at(1)})

        left.merge(right)

        assert left.deleted_at("a") == at(10)


class TestPrune:
    """Test tombstone pruning."""

    def test_prune_removes_only_expired(self):
        """Test entries older than max_age are dropped."""
        now = at(0) + timedelta(days=40)
        store = TombstoneStore(
            {"old": at(0), "recent": now - timedelta(days=1)}
        )

        removed = store.prune(now, timedelta(days=30))

        assert removed == 1
        assert not store.is_deleted("old")
        assert store.is_deleted("recent")

    def test_prune_default_retention(self):
        """Test the default window is 30 days."""
        store = TombstoneStore({"a": at(0)})

        assert store.prune(at(0) + timedelta(days=29)) == 0
        assert store.prune(at(0) + timedelta(days=31)) == 1

    def test_clear(self):
        """Test clear forgets everything."""
        store = TombstoneStore({"a": at(0), "b": at(1)})
        store.clear()

        assert len(store) == 0
        assert "2 entries" not in repr(store)
