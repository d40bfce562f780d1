"""Abstract interfaces for remote snapshot exchange.

Every transport strategy (polling a document store, push subscription)
inherits from ``RemoteTransport``. Polling transports talk to the backing
store through a ``DocumentClient``.

Usage:
    class MyTransport(RemoteTransport):
        def broadcast(self, payload: bytes) -> None: ...
        def start_listening(self, on_data: DataCallback) -> None: ...
        def stop(self) -> None: ...
        def force_poll(self) -> None: ...
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Optional

from ..sync.state import SyncStatus

DataCallback = Callable[[bytes], None]
StatusListener = Callable[[SyncStatus], None]


@dataclass(frozen=True)
class RemoteRecord:
    """The single remote snapshot record.

    Attributes:
        payload: Encoded document, None when the record has no payload yet
        device_id: Id of the device that wrote the record
        version: Server-assigned version marker used for dedup
    """

    payload: Optional[bytes] = None
    device_id: Optional[str] = None
    version: Optional[str] = None

    @property
    def is_complete(self) -> bool:
        """Whether both payload and writer id are present."""
        return self.payload is not None and self.device_id is not None


class DocumentClient(ABC):
    """Blocking access to the remote snapshot record."""

    @abstractmethod
    def fetch(self, token: Optional[str]) -> RemoteRecord:
        """Read the record.

        Raises:
            DocumentNotFoundError: The record does not exist yet
            UnauthorizedError: The token was rejected
            TransportError: Any other remote failure
        """

    @abstractmethod
    def put(self, token: Optional[str], payload: bytes, device_id: str) -> None:
        """Overwrite the record with ``payload`` written by ``device_id``.

        Raises:
            UnauthorizedError: The token was rejected
            TransportError: Any other remote failure
        """

    def bind(self, account: Optional[str]) -> None:
        """Point the client at the record of ``account``."""

    def close(self) -> None:
        """Release client resources."""


class RemoteTransport(ABC):
    """Abstract base class that all transports must implement."""

    def __init__(self) -> None:
        self.logger = logging.getLogger(self.__class__.__name__)
        self._on_data: Optional[DataCallback] = None
        self._status_listener: Optional[StatusListener] = None

    @abstractmethod
    def broadcast(self, payload: bytes) -> None:
        """Publish the full encoded document. Fire and forget."""

    @abstractmethod
    def start_listening(self, on_data: DataCallback) -> None:
        """Begin delivering remote snapshots to ``on_data``.

        Performs an immediate fetch so a freshly signed-in device sees the
        remote state without waiting a full interval.
        """

    @abstractmethod
    def stop(self) -> None:
        """Stop listening and cancel pending work.

        After ``stop`` returns, ``on_data`` is never called again, even for
        requests that were already in flight.
        """

    @abstractmethod
    def force_poll(self) -> None:
        """Fetch now, re-delivering the current remote snapshot even if seen."""

    def bind(self, account: Optional[str]) -> None:
        """Point the transport at the record of ``account``."""

    def set_status_listener(self, listener: Optional[StatusListener]) -> None:
        """Register the function that mirrors transport health."""
        self._status_listener = listener

    @property
    def is_listening(self) -> bool:
        """Whether a data callback is attached."""
        return self._on_data is not None

    def _report_status(self, status: SyncStatus) -> None:
        if self._status_listener is not None:
            self._status_listener(status)

    def _deliver(self, payload: bytes) -> None:
        if self._on_data is not None:
            self._on_data(payload)

    def __repr__(self) -> str:
        state = "listening" if self.is_listening else "stopped"
        return f"<{self.__class__.__name__} ({state})>"
