"""Sync orchestrator owning the live task document.

This module provides the SyncOrchestrator that coordinates:
- Local mutations: stamped, tombstoned, debounced into one save
- LocalStore: atomic snapshot writes and reloads
- RemoteTransport: broadcasts of local changes and delivery of remote ones
- Merge engine: reconciling every received snapshot into the local document

All public methods must be called on the scheduler's context (for a
``ManualScheduler`` that is simply the calling thread).
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Iterable, List, Optional, Tuple

from ...exceptions import CorruptSnapshotError, DecodeError, PersistenceError
from ...models.models import Document, TaskItem, TaskList, utc
from ..remote.base import DataCallback, RemoteTransport
from ..storage.codec import decode_document, encode_document
from ..storage.local_store import LocalStore
from . import mutations
from .merge_engine import merge_documents_with_stats, summarize
from .scheduler import Scheduler, TimerHandle
from .state import AuthState, EventKind, Identity, SyncEvent, SyncStatus

logger = logging.getLogger(__name__)

EventHandler = Callable[[SyncEvent], None]

DEFAULT_DEBOUNCE_SECONDS = 0.3
DEFAULT_BOOTSTRAP_DELAY = 2.5
DEFAULT_RETENTION_DAYS = 30


def utc_now() -> datetime:
    """Current wall-clock time in UTC."""
    return datetime.now(timezone.utc)


class SyncOrchestrator:
    """Single owner of the task document and its sync lifecycle.

    Local edits are persisted after a short debounce and broadcast to the
    remote. Remote snapshots are merged in and persisted immediately, but never
    broadcast back: only a save window that contains a local edit broadcasts.
    """

    def __init__(
        self,
        persistence: LocalStore,
        transport: RemoteTransport,
        scheduler: Scheduler,
        clock: Callable[[], datetime] = utc_now,
        config: Optional[Any] = None,
        auth: Optional[Any] = None,
    ) -> None:
        """Initialize orchestrator.

        Args:
            persistence: Local snapshot store
            transport: Remote transport
            scheduler: Serialized context and timers
            clock: Wall-clock source for ``last_modified`` stamps
            config: Optional ``Config`` supplying timing and retention
            auth: Optional token provider; its ``identity`` decides whether
                ``start`` signs in
        """
        self.persistence = persistence
        self.transport = transport
        self.scheduler = scheduler
        self.clock = clock
        self.auth = auth

        self.debounce_seconds = getattr(
            config, "debounce_seconds", DEFAULT_DEBOUNCE_SECONDS
        )
        self.bootstrap_delay = getattr(
            config, "bootstrap_delay", DEFAULT_BOOTSTRAP_DELAY
        )
        self.tombstone_retention = timedelta(
            days=getattr(config, "tombstone_retention_days", DEFAULT_RETENTION_DAYS)
        )

        self._document = Document()
        self._sync_status = SyncStatus.disconnected()
        self._auth_state = AuthState.signed_out()
        self._handlers: List[EventHandler] = []

        self._save_timer: Optional[TimerHandle] = None
        self._bootstrap_timer: Optional[TimerHandle] = None
        self._broadcast_pending = False
        self._persistence_failed = False
        self._unreadable_snapshot = False
        self._transport_status = SyncStatus.connected()
        self._session = 0
        self._last_stamp: Optional[datetime] = None

        self.transport.set_status_listener(self._on_transport_status)

    # Read-only state

    @property
    def document(self) -> Document:
        """Current document."""
        return self._document

    @property
    def lists(self) -> Tuple[TaskList, ...]:
        """Current lists, in display order."""
        return self._document.lists

    @property
    def sync_status(self) -> SyncStatus:
        """Current sync status."""
        return self._sync_status

    @property
    def auth_state(self) -> AuthState:
        """Current auth state."""
        return self._auth_state

    @property
    def has_pending_save(self) -> bool:
        """Whether a debounced save is scheduled."""
        return self._save_timer is not None

    # Observers

    def subscribe(self, handler: EventHandler) -> None:
        """Call ``handler`` with a ``SyncEvent`` after every change."""
        if handler not in self._handlers:
            self._handlers.append(handler)

    def unsubscribe(self, handler: EventHandler) -> None:
        """Stop calling ``handler``."""
        if handler in self._handlers:
            self._handlers.remove(handler)

    # Lifecycle

    def start(self) -> None:
        """Load the persisted snapshot and resume a stored session."""
        self._reload_from_disk()
        identity = getattr(self.auth, "identity", None)
        if identity is not None:
            self.on_signed_in(identity)

    def on_signed_in(self, identity: Identity) -> None:
        """Begin syncing for ``identity``.

        Starts listening (which fetches right away) and arms the bootstrap
        timer: if nothing is received before it fires, local data is pushed so
        the first device to sign in seeds the remote.
        """
        logger.info("Signed in as %s; starting sync", identity)
        self._session += 1
        self._auth_state = AuthState.signed_in(identity)
        self._notify(EventKind.AUTH_CHANGED)
        self._transport_status = SyncStatus.connected()
        if not self._persistence_failed:
            self._set_status(self._transport_status)

        self._cancel_bootstrap()
        self._bootstrap_timer = self.scheduler.call_later(
            self.bootstrap_delay, self._bootstrap
        )
        self.transport.bind(identity.uid)
        self.transport.start_listening(self._receiver())

    def on_signed_out(self) -> None:
        """Stop syncing and wipe all local state."""
        logger.info("Signed out; clearing local data")
        self._session += 1
        self._cancel_save()
        self._cancel_bootstrap()
        self._broadcast_pending = False
        self.transport.stop()
        self.transport.bind(None)

        self._document = Document()
        self._last_stamp = None
        try:
            self.persistence.delete()
        except PersistenceError as e:
            logger.error("Failed to delete local snapshot: %s", e)

        self._persistence_failed = False
        self._unreadable_snapshot = False
        self._auth_state = AuthState.signed_out()
        self._notify(EventKind.AUTH_CHANGED)
        self._notify(EventKind.DOCUMENT_CHANGED)
        self._set_status(SyncStatus.disconnected())

    def sign_out(self) -> None:
        """Forget the stored session, then run the sign-out path."""
        if self.auth is not None and hasattr(self.auth, "sign_out"):
            self.auth.sign_out()
        self.on_signed_out()

    def on_foreground(self) -> None:
        """Reload the document from disk.

        A pending local save is written first; the reload itself never
        broadcasts.
        """
        self.flush()
        self._reload_from_disk()

    def manual_refresh(self) -> None:
        """Persist and broadcast now, then force a poll."""
        self._cancel_save()
        self._broadcast_pending = False
        self._save(broadcast=self._auth_state.is_signed_in)
        if self._auth_state.is_signed_in:
            self.transport.force_poll()

    def flush(self, broadcast: Optional[bool] = None) -> None:
        """Run a pending debounced save immediately.

        Args:
            broadcast: Override whether to broadcast; by default a broadcast
                happens only if the pending window contains a local edit
        """
        if self._save_timer is None:
            return
        self._cancel_save()
        self._run_debounced_save(broadcast)

    def close(self) -> None:
        """Flush pending work and stop the transport."""
        self.flush()
        self._cancel_bootstrap()
        self.transport.stop()

    # Mutations

    def create_list(self, title: str = "New List", **fields: Any) -> TaskList:
        """Append a new empty list."""
        document, task_list = mutations.create_list(
            self._document, self._now(), title, **fields
        )
        self._apply_local(document)
        return task_list

    def delete_list(self, list_id: str) -> None:
        """Delete a list, leaving a tombstone."""
        self._apply_local(mutations.delete_list(self._document, list_id, self._now()))

    def update_list(self, list_id: str, update: Callable[[TaskList], TaskList]) -> None:
        """Change a list's metadata (title, color, geometry, ...)."""
        self._apply_local(
            mutations.update_list(self._document, list_id, update, self._now())
        )

    def add_item(self, list_id: str, content: str = "", **fields: Any) -> TaskItem:
        """Append a new item to a list."""
        document, item = mutations.add_item(
            self._document, list_id, self._now(), content, **fields
        )
        self._apply_local(document)
        return item

    def delete_item(self, list_id: str, item_id: str) -> None:
        """Delete an item, leaving a tombstone."""
        self._apply_local(
            mutations.delete_item(self._document, list_id, item_id, self._now())
        )

    def update_item(self, item_id: str, update: Callable[[TaskItem], TaskItem]) -> None:
        """Change an item wherever it lives."""
        self._apply_local(
            mutations.update_item(self._document, item_id, update, self._now())
        )

    def mutate(
        self, list_id: str, item_id: str, update: Callable[[TaskItem], TaskItem]
    ) -> None:
        """Change an item of a known list."""
        self._apply_local(
            mutations.update_item(
                self._document, item_id, update, self._now(), list_id=list_id
            )
        )

    def toggle_completion(self, item_id: str) -> None:
        """Flip an item's completed flag."""
        self._apply_local(
            mutations.toggle_completion(self._document, item_id, self._now())
        )

    def move_item(self, list_id: str, item_id: str, index: int) -> None:
        """Move an item within its list."""
        self._apply_local(
            mutations.move_item(self._document, list_id, item_id, index, self._now())
        )

    def sort_list(self, list_id: str) -> None:
        """Apply the explicit sort action to a list."""
        self._apply_local(mutations.sort_list(self._document, list_id, self._now()))

    def set_merged_task_order(self, item_ids: Iterable[str]) -> None:
        """Replace the cross-list display order."""
        self._apply_local(mutations.set_merged_task_order(self._document, item_ids))

    # Remote data

    def apply_remote_data(self, payload: bytes) -> None:
        """Merge a remote snapshot into the local document.

        The result is persisted right away and never broadcast. Payloads that
        can't be decoded are logged and dropped.
        """
        try:
            remote = decode_document(payload)
        except DecodeError as e:
            logger.error("Discarding undecodable remote snapshot: %s", e)
            return
        self._cancel_bootstrap()

        merged, stats = merge_documents_with_stats(self._document, remote)
        if merged == self._document:
            logger.debug("Remote snapshot already reflected locally")
            return

        logger.info(
            "Applied remote snapshot: %s (now %s)",
            stats.get_summary(),
            summarize(merged),
        )
        self._document = merged
        self._save(broadcast=False)
        self._notify(EventKind.DOCUMENT_CHANGED)

    # Internals

    def _receiver(self) -> DataCallback:
        session = self._session

        def receive(payload: bytes) -> None:
            if session != self._session:
                logger.debug("Dropping snapshot delivered to a closed session")
                return
            self.apply_remote_data(payload)

        return receive

    def _now(self) -> datetime:
        now = utc(self.clock())
        if self._last_stamp is not None and now <= self._last_stamp:
            now = self._last_stamp + mutations.TICK
        self._last_stamp = now
        return now

    def _apply_local(self, document: Document) -> None:
        self._document = document
        self._broadcast_pending = True
        self._schedule_save()
        self._notify(EventKind.DOCUMENT_CHANGED)

    def _schedule_save(self) -> None:
        self._cancel_save()
        self._save_timer = self.scheduler.call_later(
            self.debounce_seconds, self._run_debounced_save
        )

    def _run_debounced_save(self, broadcast: Optional[bool] = None) -> None:
        self._save_timer = None
        if broadcast is None:
            broadcast = self._broadcast_pending
        self._broadcast_pending = False
        self._save(broadcast=broadcast and self._auth_state.is_signed_in)

    def _save(self, broadcast: bool) -> None:
        self._document, pruned = mutations.prune_tombstones(
            self._document, utc(self.clock()), self.tombstone_retention
        )
        if pruned:
            logger.info("Pruned %d expired tombstones", pruned)

        payload = encode_document(self._document)
        if self._unreadable_snapshot and not self._set_aside_unreadable():
            logger.error(
                "Not saving over unreadable snapshot %s", self.persistence.path
            )
        else:
            self._write(payload)

        if broadcast:
            self._cancel_bootstrap()
            logger.debug("Broadcasting %d bytes", len(payload))
            self.transport.broadcast(payload)

    def _write(self, payload: bytes) -> None:
        try:
            self.persistence.write_bytes(payload)
        except PersistenceError as e:
            logger.error("Failed to save tasks: %s", e)
            self._persistence_failed = True
            self._set_status(SyncStatus.error(f"Could not save tasks: {e}"))
            return

        if self._persistence_failed:
            self._persistence_failed = False
            self._set_status(
                self._transport_status
                if self._auth_state.is_signed_in
                else SyncStatus.disconnected()
            )

    def _set_aside_unreadable(self) -> bool:
        try:
            self.persistence.quarantine()
        except PersistenceError as e:
            logger.error("Cannot move unreadable snapshot aside: %s", e)
            return False
        self._unreadable_snapshot = False
        return True

    def _bootstrap(self) -> None:
        self._bootstrap_timer = None
        if not self._auth_state.is_signed_in or self._document.is_empty:
            return
        logger.info("No remote snapshot received; seeding remote with local data")
        self.transport.broadcast(encode_document(self._document))

    def _reload_from_disk(self) -> None:
        try:
            loaded = self.persistence.load()
        except PersistenceError as e:
            logger.error("Failed to load tasks: %s", e)
            self._persistence_failed = True
            self._set_status(SyncStatus.error(f"Could not load tasks: {e}"))
            if isinstance(e, CorruptSnapshotError):
                self._unreadable_snapshot = True
                self._set_aside_unreadable()
            return

        if loaded is None or loaded == self._document:
            return
        self._document = loaded
        logger.info("Loaded %d lists from %s", len(loaded.lists), self.persistence.path)
        self._notify(EventKind.DOCUMENT_CHANGED)

    def _on_transport_status(self, status: SyncStatus) -> None:
        if not self._auth_state.is_signed_in:
            return
        self._transport_status = status
        if not self._persistence_failed:
            self._set_status(status)

    def _set_status(self, status: SyncStatus) -> None:
        if status == self._sync_status:
            return
        self._sync_status = status
        if status.is_error:
            logger.warning("Sync status: %s", status)
        else:
            logger.debug("Sync status: %s", status)
        self._notify(EventKind.STATUS_CHANGED)

    def _cancel_save(self) -> None:
        if self._save_timer is not None:
            self._save_timer.cancel()
            self._save_timer = None

    def _cancel_bootstrap(self) -> None:
        if self._bootstrap_timer is not None:
            self._bootstrap_timer.cancel()
            self._bootstrap_timer = None

    def _notify(self, kind: EventKind) -> None:
        event = SyncEvent(kind, self._document, self._sync_status, self._auth_state)
        for handler in list(self._handlers):
            try:
                handler(event)
            except Exception:
                logger.exception("Sync event handler failed for %s", kind.value)
