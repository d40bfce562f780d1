"""Shared-folder client for the snapshot record.

Stores the record as ``<folder>/<account>/snapshot.json`` in a directory that
some other tool (a cloud drive, a network share) replicates between machines.
"""

import json
import logging
import re
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from ...exceptions import (
    AuthenticationError,
    DocumentNotFoundError,
    PersistenceError,
    TransportError,
)
from ..storage.local_store import LocalStore
from .base import DocumentClient, RemoteRecord

logger = logging.getLogger(__name__)

_UNSAFE = re.compile(r"[^A-Za-z0-9._@-]")


class FolderDocumentClient(DocumentClient):
    """Reads and writes the snapshot record as a JSON file."""

    def __init__(self, folder: Path, account: Optional[str] = None) -> None:
        """Initialize client.

        Args:
            folder: Shared root directory
            account: Account name, used as a subdirectory; can be bound later
        """
        self.folder = Path(folder)
        self.account = account

    def bind(self, account: Optional[str]) -> None:
        """Switch to the record of ``account``."""
        self.account = account

    @property
    def path(self) -> Path:
        """Record file location."""
        if not self.account:
            raise AuthenticationError("Not signed in.")
        return self.folder / _UNSAFE.sub("_", self.account) / "snapshot.json"

    def fetch(self, token: Optional[str]) -> RemoteRecord:
        """Read the record file."""
        store = LocalStore(self.path)
        try:
            data = store.read_bytes()
        except PersistenceError as e:
            raise TransportError(str(e)) from e
        if data is None:
            raise DocumentNotFoundError(f"No snapshot at {store.path}")

        try:
            record = json.loads(data)
        except (UnicodeDecodeError, ValueError) as e:
            raise TransportError(f"Unreadable snapshot record {store.path}: {e}") from e
        if not isinstance(record, dict):
            raise TransportError(f"Unreadable snapshot record {store.path}")

        payload = record.get("payload")
        return RemoteRecord(
            payload=payload.encode("utf-8") if isinstance(payload, str) else None,
            device_id=record.get("deviceId"),
            version=record.get("version"),
        )

    def put(self, token: Optional[str], payload: bytes, device_id: str) -> None:
        """Atomically replace the record file."""
        store = LocalStore(self.path)
        record = {
            "payload": payload.decode("utf-8"),
            "deviceId": device_id,
            "updatedAt": datetime.now(timezone.utc).isoformat(),
            "version": uuid.uuid4().hex,
        }
        try:
            store.write_bytes(json.dumps(record).encode("utf-8"))
        except PersistenceError as e:
            raise TransportError(str(e)) from e
        logger.info("Wrote %d bytes to %s", len(payload), store.path)
