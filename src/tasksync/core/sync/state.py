"""Observable sync and auth state."""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from ...models.models import Document


class SyncState(str, Enum):
    """Connection state of the sync engine."""

    DISCONNECTED = "disconnected"
    CONNECTED = "connected"
    ERROR = "error"


@dataclass(frozen=True)
class SyncStatus:
    """Current sync status, with a message when in the error state."""

    state: SyncState = SyncState.DISCONNECTED
    message: Optional[str] = None

    @classmethod
    def disconnected(cls) -> "SyncStatus":
        """Not signed in or transport stopped."""
        return cls(SyncState.DISCONNECTED)

    @classmethod
    def connected(cls) -> "SyncStatus":
        """Signed in and the last exchange succeeded."""
        return cls(SyncState.CONNECTED)

    @classmethod
    def error(cls, message: str) -> "SyncStatus":
        """Visible failure."""
        return cls(SyncState.ERROR, message)

    @property
    def is_error(self) -> bool:
        """Whether this status reports a failure."""
        return self.state == SyncState.ERROR

    def __str__(self) -> str:
        if self.message:
            return f"{self.state.value}: {self.message}"
        return self.state.value


@dataclass(frozen=True)
class Identity:
    """Signed-in account."""

    uid: str
    email: Optional[str] = None

    def __str__(self) -> str:
        return self.email or self.uid


@dataclass(frozen=True)
class AuthState:
    """Signed-out, or signed in as ``identity``."""

    identity: Optional[Identity] = None

    @classmethod
    def signed_out(cls) -> "AuthState":
        """No session."""
        return cls()

    @classmethod
    def signed_in(cls, identity: Identity) -> "AuthState":
        """Active session for ``identity``."""
        return cls(identity)

    @property
    def is_signed_in(self) -> bool:
        """Whether there is an active session."""
        return self.identity is not None


class EventKind(str, Enum):
    """What a ``SyncEvent`` reports."""

    DOCUMENT_CHANGED = "document_changed"
    STATUS_CHANGED = "status_changed"
    AUTH_CHANGED = "auth_changed"


@dataclass(frozen=True)
class SyncEvent:
    """Snapshot handed to observers after every change."""

    kind: EventKind
    document: Document
    sync_status: SyncStatus
    auth_state: AuthState
