"""Push transport over an in-process document hub.

``DocumentHub`` keeps the latest snapshot per account and pushes every write
to the other subscribers of that account. It stands in for a realtime backend
and lets several engines in one process sync with each other.
"""

import logging
import threading
from collections import defaultdict
from typing import Callable, Dict, List, Optional, Tuple

from ..sync.scheduler import Scheduler
from ..sync.state import SyncStatus
from .base import DataCallback, RemoteRecord, RemoteTransport

logger = logging.getLogger(__name__)

Subscriber = Callable[[RemoteRecord], None]


class DocumentHub:
    """In-process store with per-account push delivery."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._records: Dict[str, RemoteRecord] = {}
        self._subscribers: Dict[str, List[Tuple[str, Subscriber]]] = defaultdict(list)
        self._version = 0

    def subscribe(self, account: str, device_id: str, handler: Subscriber) -> None:
        """Receive writes to ``account`` made by devices other than ``device_id``."""
        with self._lock:
            self._subscribers[account].append((device_id, handler))

    def unsubscribe(self, account: str, handler: Subscriber) -> None:
        """Stop delivering to ``handler``."""
        with self._lock:
            self._subscribers[account] = [
                entry for entry in self._subscribers[account] if entry[1] != handler
            ]

    def latest(self, account: str) -> Optional[RemoteRecord]:
        """Most recent record for ``account``."""
        with self._lock:
            return self._records.get(account)

    def publish(self, account: str, device_id: str, payload: bytes) -> RemoteRecord:
        """Store a write and push it to every other subscriber."""
        with self._lock:
            self._version += 1
            record = RemoteRecord(payload, device_id, str(self._version))
            self._records[account] = record
            targets = [
                handler
                for subscriber_id, handler in self._subscribers.get(account, [])
                if subscriber_id != device_id
            ]
        for handler in targets:
            try:
                handler(record)
            except Exception as exc:
                logger.error("DocumentHub subscriber failed for '%s': %s", account, exc)
        return record


class SubscriptionTransport(RemoteTransport):
    """Transport that receives pushed snapshots from a ``DocumentHub``."""

    def __init__(
        self,
        hub: DocumentHub,
        account: Optional[str],
        device_id: str,
        scheduler: Scheduler,
    ) -> None:
        """Initialize subscription transport.

        Args:
            hub: Shared hub
            account: Account whose snapshot is exchanged; None until bound
            device_id: This installation's id
            scheduler: Context on which snapshots are delivered
        """
        super().__init__()
        self.hub = hub
        self.account = account
        self.device_id = device_id
        self.scheduler = scheduler
        self._generation = 0
        self._last_version: Optional[str] = None

    def start_listening(self, on_data: DataCallback) -> None:
        """Subscribe and deliver the current snapshot, if any."""
        self.stop()
        if self.account is None:
            self.logger.warning("Cannot listen: no account bound")
            return
        self._on_data = on_data
        self.hub.subscribe(self.account, self.device_id, self._on_push)
        self._report_status(SyncStatus.connected())
        self.force_poll()

    def stop(self) -> None:
        """Unsubscribe; pushes already queued are dropped."""
        self._generation += 1
        if self.account is not None:
            self.hub.unsubscribe(self.account, self._on_push)
        self._on_data = None
        self._last_version = None

    def bind(self, account: Optional[str]) -> None:
        """Exchange snapshots of ``account`` from now on."""
        if account != self.account:
            self.stop()
            self.account = account

    def force_poll(self) -> None:
        """Re-deliver the hub's current snapshot."""
        if not self.is_listening:
            return
        self._last_version = None
        record = self.hub.latest(self.account or "")
        if record is not None:
            self._on_push(record)

    def broadcast(self, payload: bytes) -> None:
        """Publish ``payload`` to the hub."""
        if not self.is_listening:
            self.logger.debug("Broadcast dropped: not listening")
            return
        self.hub.publish(self.account or "", self.device_id, payload)
        self._report_status(SyncStatus.connected())

    def _on_push(self, record: RemoteRecord) -> None:
        generation = self._generation
        self.scheduler.call_soon(lambda: self._apply(generation, record))

    def _apply(self, generation: int, record: RemoteRecord) -> None:
        if generation != self._generation or not record.is_complete:
            return
        if record.device_id == self.device_id or record.version == self._last_version:
            return
        self._last_version = record.version
        self._deliver(record.payload or b"")
