"""Exception hierarchy for the task sync engine."""

from typing import Optional


class TaskSyncError(Exception):
    """Base class for all sync engine errors."""


class ConfigError(TaskSyncError):
    """Invalid or missing configuration value."""


class TransportError(TaskSyncError):
    """Transient remote failure (timeout, DNS, 5xx, malformed response)."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        """Initialize transport error.

        Args:
            message: Human readable description
            status_code: HTTP status code, if the failure came from a response
        """
        super().__init__(message)
        self.status_code = status_code


class UnauthorizedError(TransportError):
    """Remote rejected the current token (HTTP 401/403)."""


class DocumentNotFoundError(TransportError):
    """Remote document does not exist yet."""


class AuthenticationError(TaskSyncError):
    """Credentials are unusable; the user has to sign in again."""


class DecodeError(TaskSyncError):
    """Snapshot payload could not be decoded under any known schema."""


class PersistenceError(TaskSyncError):
    """Local snapshot could not be read or written."""


class CorruptSnapshotError(PersistenceError):
    """Local snapshot exists but can't be decoded."""
