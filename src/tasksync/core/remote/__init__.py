"""Remote transports, document clients and auth."""

from .auth import (
    FirebaseTokenProvider,
    LocalAccountProvider,
    SessionStore,
    StoredSession,
    TokenProvider,
    call_with_auth_retry,
    load_or_create_device_id,
)
from .base import DocumentClient, RemoteRecord, RemoteTransport
from .firestore import FirestoreDocumentClient
from .folder import FolderDocumentClient
from .polling import PollingPolicy, PollingTransport
from .subscription import DocumentHub, SubscriptionTransport

__all__ = [
    "DocumentClient",
    "DocumentHub",
    "FirebaseTokenProvider",
    "FirestoreDocumentClient",
    "FolderDocumentClient",
    "LocalAccountProvider",
    "PollingPolicy",
    "PollingTransport",
    "RemoteRecord",
    "RemoteTransport",
    "SessionStore",
    "StoredSession",
    "SubscriptionTransport",
    "TokenProvider",
    "call_with_auth_retry",
    "load_or_create_device_id",
]
