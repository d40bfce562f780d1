"""Tests for SyncOrchestrator."""

from datetime import timedelta
from unittest.mock import Mock

import pytest

from conftest import FakeTokenProvider, at

from tasksync.core.storage import decode_document, encode_document
from tasksync.core.sync import EventKind, SyncOrchestrator, SyncStatus, mutations
from tasksync.exceptions import PersistenceError
from tasksync.models import Document, TaskList


@pytest.fixture
def events(orchestrator):
    """Events emitted by the orchestrator."""
    received = []
    orchestrator.subscribe(received.append)
    return received


def remote_document(*titles, modified=10):
    return Document(
        lists=[TaskList(title=title, last_modified=at(modified)) for title in titles]
    )


class TestLocalEdits:
    """Test debounced saving and broadcasting of local edits."""

    def test_edits_coalesce_into_one_write_and_broadcast(
        self, signed_in, store, transport, scheduler
    ):
        """Test N edits within the window produce one write and one broadcast."""
        store.write_bytes = Mock(wraps=store.write_bytes)

        lst = signed_in.create_list("Groceries")
        scheduler.advance(0.1)
        signed_in.add_item(lst.id, "milk")
        scheduler.advance(0.1)
        signed_in.add_item(lst.id, "eggs")
        assert store.write_bytes.call_count == 0
        assert signed_in.has_pending_save

        scheduler.advance(0.3)

        assert store.write_bytes.call_count == 1
        assert len(transport.broadcasts) == 1
        assert decode_document(transport.broadcasts[0]) == signed_in.document
        assert not signed_in.has_pending_save

        scheduler.advance(10)
        assert len(transport.broadcasts) == 1

    def test_signed_out_edits_are_saved_but_not_broadcast(
        self, orchestrator, store, transport, scheduler
    ):
        """Test local-only operation while signed out."""
        orchestrator.create_list("Offline")
        scheduler.advance(0.3)

        assert store.load() == orchestrator.document
        assert transport.broadcasts == []

    def test_stamps_strictly_increase_with_frozen_clock(self, signed_in):
        """Test consecutive edits get distinct timestamps."""
        lst = signed_in.create_list("L")
        first = signed_in.add_item(lst.id, "a")
        second = signed_in.add_item(lst.id, "b")

        assert second.last_modified > first.last_modified

    def test_mutation_helpers(self, signed_in, scheduler, transport):
        """Test the orchestrator's edit operations end up in the document."""
        lst = signed_in.create_list("L")
        a = signed_in.add_item(lst.id, "a")
        b = signed_in.add_item(lst.id, "b")
        signed_in.toggle_completion(a.id)
        signed_in.mutate(lst.id, b.id, lambda i: i.with_changes(content="B"))
        signed_in.move_item(lst.id, b.id, 0)
        signed_in.update_list(lst.id, lambda l: l.with_changes(title="Renamed"))
        signed_in.set_merged_task_order([b.id, a.id])
        scheduler.advance(0.3)

        current = signed_in.document.lists[0]
        assert current.title == "Renamed"
        assert [i.content for i in current.items] == ["B", "a"]
        assert current.items[1].is_completed
        assert signed_in.document.merged_task_order == (b.id, a.id)
        assert len(transport.broadcasts) == 1

        signed_in.sort_list(lst.id)
        signed_in.delete_item(lst.id, a.id)
        signed_in.delete_list(lst.id)
        scheduler.advance(0.3)

        assert signed_in.lists == ()
        assert lst.id in signed_in.document.deleted_list_ids

    def test_expired_tombstones_pruned_on_save(self, signed_in, scheduler, clock):
        """Test saving drops tombstones past the retention window."""
        old = signed_in.create_list("Old")
        signed_in.delete_list(old.id)
        scheduler.advance(0.3)
        assert old.id in signed_in.document.deleted_list_ids

        clock.advance(timedelta(days=31).total_seconds())
        signed_in.create_list("New")
        scheduler.advance(0.3)

        assert signed_in.document.deleted_list_ids == {}


class TestRemoteData:
    """Test applying remote snapshots."""

    def test_remote_data_is_saved_but_never_echoed(
        self, signed_in, store, transport, scheduler
    ):
        """Test merges from remote do not trigger a broadcast."""
        transport.push(encode_document(remote_document("Remote")))

        assert [lst.title for lst in signed_in.lists] == ["Remote"]
        assert store.load() == signed_in.document
        assert transport.broadcasts == []

        scheduler.advance(10)
        assert transport.broadcasts == []

    def test_newer_remote_item_wins(self, signed_in, transport):
        """Test the newer remote version of an item replaces the local one."""
        lst = signed_in.create_list("Groceries")
        item = signed_in.add_item(lst.id, "buy milk")
        remote = mutations.update_item(
            signed_in.document,
            item.id,
            lambda i: i.with_changes(content="buy oat milk"),
            at(100),
        )

        transport.push(encode_document(remote))

        assert signed_in.document.find_item(item.id)[1].content == "buy oat milk"

    def test_deleted_item_is_not_resurrected(self, signed_in, transport, scheduler):
        """Test a stale remote copy does not bring back a deleted item."""
        lst = signed_in.create_list("L")
        item = signed_in.add_item(lst.id, "doomed")
        stale = signed_in.document
        signed_in.delete_item(lst.id, item.id)
        scheduler.advance(0.3)

        transport.push(encode_document(stale))

        assert signed_in.document.find_item(item.id) is None
        assert item.id in signed_in.document.lists[0].deleted_item_ids

    def test_undecodable_payload_is_dropped(self, signed_in, store, transport):
        """Test garbage from the remote leaves local state untouched."""
        signed_in.create_list("Local")
        before = signed_in.document

        transport.push(b"{not json")

        assert signed_in.document == before
        assert not signed_in.sync_status.is_error

    def test_unchanged_merge_does_not_write(self, signed_in, store, transport):
        """Test a snapshot already reflected locally is a no-op."""
        signed_in.manual_refresh()
        store.write_bytes = Mock(wraps=store.write_bytes)

        transport.push(encode_document(signed_in.document))

        store.write_bytes.assert_not_called()

    def test_legacy_array_payload_is_accepted(self, signed_in, transport):
        """Test the bare list-array format still merges."""
        transport.push(b'[{"id": "L1", "title": "Legacy", "items": []}]')

        assert [lst.title for lst in signed_in.lists] == ["Legacy"]


class TestSessionLifecycle:
    """Test sign-in, bootstrap and sign-out."""

    def test_start_resumes_stored_session(self, store, transport, scheduler, identity):
        """Test start signs in when the auth provider has an identity."""
        orchestrator = SyncOrchestrator(
            persistence=store,
            transport=transport,
            scheduler=scheduler,
            auth=FakeTokenProvider(identity),
        )

        orchestrator.start()

        assert orchestrator.auth_state.is_signed_in
        assert orchestrator.auth_state.identity == identity
        assert transport.accounts == ["user-1"]
        assert transport.is_listening
        assert orchestrator.sync_status == SyncStatus.connected()

    def test_sign_in_events(self, orchestrator, events, identity):
        """Test sign-in emits auth then status changes."""
        orchestrator.on_signed_in(identity)

        assert [event.kind for event in events] == [
            EventKind.AUTH_CHANGED,
            EventKind.STATUS_CHANGED,
        ]

    def test_bootstrap_pushes_local_data(
        self, orchestrator, transport, scheduler, identity
    ):
        """Test local data is seeded when nothing arrives after sign-in."""
        orchestrator.create_list("Local")
        scheduler.advance(0.3)
        orchestrator.on_signed_in(identity)

        scheduler.advance(2.4)
        assert transport.broadcasts == []

        scheduler.advance(0.2)
        assert len(transport.broadcasts) == 1
        assert decode_document(transport.broadcasts[0]) == orchestrator.document

    def test_bootstrap_cancelled_by_remote_data(
        self, orchestrator, transport, scheduler, identity
    ):
        """Test receiving remote data cancels the seed push."""
        orchestrator.create_list("Local")
        scheduler.advance(0.3)
        orchestrator.on_signed_in(identity)

        transport.push(encode_document(remote_document("Remote")))
        scheduler.advance(5)

        assert transport.broadcasts == []
        assert {lst.title for lst in orchestrator.lists} == {"Local", "Remote"}

    def test_bootstrap_skipped_for_empty_document(
        self, signed_in, transport, scheduler
    ):
        """Test an empty device never seeds the remote."""
        scheduler.advance(5)

        assert transport.broadcasts == []

    def test_sign_out_wipes_local_state(self, signed_in, store, transport, scheduler):
        """Test sign-out clears memory and disk and cancels pending saves."""
        lst = signed_in.create_list("Mine")
        scheduler.advance(0.3)
        assert store.exists()
        signed_in.add_item(lst.id, "pending")

        signed_in.on_signed_out()
        scheduler.advance(5)

        assert signed_in.document == Document()
        assert not store.exists()
        assert signed_in.sync_status == SyncStatus.disconnected()
        assert not signed_in.auth_state.is_signed_in
        assert transport.accounts[-1] is None
        assert not transport.is_listening
        assert len(transport.broadcasts) == 1

    def test_snapshot_for_closed_session_is_dropped(self, signed_in, transport):
        """Test deliveries to a previous session's callback are ignored."""
        callback = transport.last_callback
        signed_in.on_signed_out()

        callback(encode_document(remote_document("Late")))

        assert signed_in.document == Document()

    def test_sign_out_calls_auth(self, store, transport, scheduler, identity):
        """Test sign_out forgets the stored session."""
        auth = FakeTokenProvider(identity)
        orchestrator = SyncOrchestrator(
            persistence=store, transport=transport, scheduler=scheduler, auth=auth
        )
        orchestrator.start()

        orchestrator.sign_out()

        assert auth.signed_out
        assert not orchestrator.auth_state.is_signed_in

    def test_close_flushes_and_stops(self, signed_in, transport):
        """Test close writes pending edits and stops the transport."""
        signed_in.create_list("Unsaved")

        signed_in.close()

        assert len(transport.broadcasts) == 1
        assert not transport.is_listening


class TestForegroundAndRefresh:
    """Test foreground reloads and manual refresh."""

    def test_foreground_reloads_from_disk(self, orchestrator, store):
        """Test on_foreground picks up a snapshot written elsewhere."""
        other = remote_document("From disk")
        store.save(other)

        orchestrator.on_foreground()

        assert orchestrator.document == other

    def test_foreground_flushes_pending_save_first(self, signed_in, transport):
        """Test a pending edit survives a foreground reload."""
        signed_in.create_list("Pending")

        signed_in.on_foreground()

        assert [lst.title for lst in signed_in.lists] == ["Pending"]
        assert len(transport.broadcasts) == 1
        assert not signed_in.has_pending_save

    def test_manual_refresh_signed_in(self, signed_in, transport):
        """Test manual refresh broadcasts and forces a poll."""
        signed_in.manual_refresh()

        assert len(transport.broadcasts) == 1
        assert transport.force_polls == 1

    def test_manual_refresh_signed_out(self, orchestrator, store, transport):
        """Test manual refresh only saves locally when signed out."""
        orchestrator.manual_refresh()

        assert store.exists()
        assert transport.broadcasts == []
        assert transport.force_polls == 0


class TestStatus:
    """Test sync status handling."""

    def test_persistence_failure_and_recovery(
        self, signed_in, store, transport, scheduler
    ):
        """Test a failed write surfaces as an error until a write succeeds."""
        store.write_bytes = Mock(side_effect=PersistenceError("disk full"))

        signed_in.create_list("x")
        scheduler.advance(0.3)

        assert signed_in.sync_status.is_error
        assert "disk full" in signed_in.sync_status.message
        assert len(transport.broadcasts) == 1

        transport.report(SyncStatus.connected())
        assert signed_in.sync_status.is_error

        del store.write_bytes
        signed_in.create_list("y")
        scheduler.advance(0.3)

        assert signed_in.sync_status == SyncStatus.connected()

    def test_unreadable_snapshot_on_start(self, store, transport, scheduler):
        """Test a corrupt local file surfaces an error and starts empty."""
        store.path.write_bytes(b"\x00garbage")
        orchestrator = SyncOrchestrator(
            persistence=store, transport=transport, scheduler=scheduler
        )

        orchestrator.start()

        assert orchestrator.document == Document()
        assert orchestrator.sync_status.is_error

    def test_unreadable_snapshot_survives_next_save(
        self, store, transport, scheduler, tmp_path
    ):
        """Test an edit after a failed load never overwrites the old file."""
        original = b'{"lists": [{"title": "keep me", "items": ['
        store.path.write_bytes(original)
        orchestrator = SyncOrchestrator(
            persistence=store, transport=transport, scheduler=scheduler
        )

        orchestrator.start()
        orchestrator.create_list("new")
        scheduler.advance(1)

        kept = list(tmp_path.glob("tasks.json.corrupt-*"))
        assert len(kept) == 1
        assert kept[0].read_bytes() == original
        assert decode_document(store.path.read_bytes()).lists[0].title == "new"
        assert orchestrator.sync_status == SyncStatus.disconnected()

    def test_unmovable_snapshot_is_not_overwritten(self, store, transport, scheduler):
        """Test saves are skipped while an unreadable file can't be moved."""
        original = b"\x00garbage"
        store.path.write_bytes(original)
        store.quarantine = Mock(side_effect=PersistenceError("read-only"))
        orchestrator = SyncOrchestrator(
            persistence=store, transport=transport, scheduler=scheduler
        )

        orchestrator.start()
        orchestrator.create_list("new")
        scheduler.advance(1)

        assert store.path.read_bytes() == original
        assert store.quarantine.call_count == 2
        assert orchestrator.sync_status.is_error

    def test_snapshot_from_newer_version_loads(self, store, transport, scheduler):
        """Test values unknown to this version don't make the file unreadable."""
        store.path.write_bytes(
            b'{"lists": [{"title": "Inbox", "color": "red",'
            b' "items": [{"content": "keep me", "status": "cancelled"}]}]}'
        )
        orchestrator = SyncOrchestrator(
            persistence=store, transport=transport, scheduler=scheduler
        )

        orchestrator.start()

        assert orchestrator.lists[0].items[0].content == "keep me"
        assert not orchestrator.sync_status.is_error

    def test_recovery_restores_transport_error(
        self, signed_in, store, transport, scheduler
    ):
        """Test a successful write brings back the transport's last status."""
        store.write_bytes = Mock(side_effect=PersistenceError("disk full"))
        signed_in.create_list("x")
        scheduler.advance(0.3)
        transport.report(SyncStatus.error("Please sign in again"))

        del store.write_bytes
        signed_in.create_list("y")
        scheduler.advance(0.3)

        assert signed_in.sync_status == SyncStatus.error("Please sign in again")

    def test_transport_status_mirrored_when_signed_in(self, signed_in, transport):
        """Test transport status reports reach the orchestrator."""
        transport.report(SyncStatus.error("Network unavailable"))

        assert signed_in.sync_status == SyncStatus.error("Network unavailable")

        transport.report(SyncStatus.connected())
        assert signed_in.sync_status == SyncStatus.connected()

    def test_transport_status_ignored_when_signed_out(self, orchestrator, transport):
        """Test stale transport reports after sign-out are ignored."""
        transport.report(SyncStatus.error("late"))

        assert orchestrator.sync_status == SyncStatus.disconnected()

    def test_failing_handler_does_not_break_others(self, orchestrator):
        """Test handler exceptions are contained."""
        received = []

        def broken(event):
            raise RuntimeError("boom")

        orchestrator.subscribe(broken)
        orchestrator.subscribe(received.append)

        orchestrator.create_list("x")

        assert [event.kind for event in received] == [EventKind.DOCUMENT_CHANGED]

    def test_unsubscribe(self, orchestrator):
        """Test unsubscribed handlers are not called."""
        received = []
        orchestrator.subscribe(received.append)
        orchestrator.unsubscribe(received.append)

        orchestrator.create_list("x")

        assert received == []
