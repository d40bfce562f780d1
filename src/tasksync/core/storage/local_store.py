"""Atomic on-disk snapshot storage."""

import logging
import os
import tempfile
from datetime import datetime
from pathlib import Path
from typing import Optional

from ...exceptions import CorruptSnapshotError, DecodeError, PersistenceError
from ...models.models import Document
from .codec import decode_document, encode_document

logger = logging.getLogger(__name__)


class LocalStore:
    """Single-file snapshot store.

    Writes go to a temporary file in the same directory, are flushed to disk
    and then renamed over the target, so a reader sees either the previous or
    the new snapshot and never a partial one.
    """

    def __init__(self, path: Path) -> None:
        """Initialize store.

        Args:
            path: Snapshot file location
        """
        self.path = Path(path)

    def save(self, document: Document) -> None:
        """Serialize and atomically write ``document``."""
        self.write_bytes(encode_document(document))

    def load(self) -> Optional[Document]:
        """Read and decode the snapshot.

        Returns:
            The stored document, or None when no snapshot exists

        Raises:
            CorruptSnapshotError: If the file exists but can't be decoded
            PersistenceError: If the file can't be read
        """
        data = self.read_bytes()
        if data is None:
            return None
        try:
            return decode_document(data)
        except DecodeError as e:
            raise CorruptSnapshotError(f"Corrupt snapshot at {self.path}: {e}") from e

    def quarantine(self) -> Optional[Path]:
        """Move the snapshot file aside as ``<name>.corrupt-<timestamp>``.

        Returns:
            The new location, or None when there was no file to move

        Raises:
            PersistenceError: If the file can't be renamed
        """
        stamp = datetime.now().strftime("%Y%m%d-%H%M%S")
        target = self.path.with_name(f"{self.path.name}.corrupt-{stamp}")
        suffix = 1
        while target.exists():
            target = self.path.with_name(f"{self.path.name}.corrupt-{stamp}-{suffix}")
            suffix += 1

        try:
            os.replace(self.path, target)
        except FileNotFoundError:
            return None
        except OSError as e:
            raise PersistenceError(f"Cannot move {self.path} aside: {e}") from e

        logger.warning("Moved unreadable snapshot %s to %s", self.path, target)
        return target

    def write_bytes(self, data: bytes) -> None:
        """Atomically replace the snapshot file with ``data``."""
        directory = self.path.parent
        try:
            directory.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{self.path.name}.", suffix=".tmp", dir=directory
            )
        except OSError as e:
            raise PersistenceError(f"Cannot write {self.path}: {e}") from e

        try:
            with os.fdopen(fd, "wb") as tmp:
                tmp.write(data)
                tmp.flush()
                os.fsync(tmp.fileno())
            os.replace(tmp_name, self.path)
        except OSError as e:
            try:
                os.unlink(tmp_name)
            except OSError:
                logger.debug("Temp file %s already gone", tmp_name)
            raise PersistenceError(f"Cannot write {self.path}: {e}") from e

        logger.debug("Wrote %d bytes to %s", len(data), self.path)

    def read_bytes(self) -> Optional[bytes]:
        """Raw snapshot bytes, or None when the file does not exist."""
        try:
            return self.path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as e:
            raise PersistenceError(f"Cannot read {self.path}: {e}") from e

    def delete(self) -> None:
        """Remove the snapshot file if present."""
        try:
            self.path.unlink()
            logger.info("Deleted local snapshot %s", self.path)
        except FileNotFoundError:
            pass
        except OSError as e:
            raise PersistenceError(f"Cannot delete {self.path}: {e}") from e

    def exists(self) -> bool:
        """Whether a snapshot file is present."""
        return self.path.exists()

    def __repr__(self) -> str:
        return f"<LocalStore {self.path}>"
