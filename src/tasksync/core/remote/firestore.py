"""Firestore REST client for the snapshot record.

The record lives at ``users/{uid}/store/snapshot`` with three fields:
``payload`` (the encoded document as a string), ``deviceId`` and
``updatedAt``. The server's ``updateTime`` serves as the version marker.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import requests

from ...exceptions import (
    AuthenticationError,
    DocumentNotFoundError,
    TransportError,
    UnauthorizedError,
)
from .base import DocumentClient, RemoteRecord

logger = logging.getLogger(__name__)

FIRESTORE_URL = "https://firestore.googleapis.com/v1"


class FirestoreDocumentClient(DocumentClient):
    """Reads and writes the snapshot document over Firestore REST."""

    def __init__(
        self,
        project_id: str,
        uid: Optional[str] = None,
        http: Optional[requests.Session] = None,
        timeout: float = 15.0,
    ) -> None:
        """Initialize client.

        Args:
            project_id: Firebase project id
            uid: Account whose snapshot is read and written; can be bound
                later with ``bind``
            http: Optional requests session
            timeout: Per-request timeout in seconds
        """
        self.project_id = project_id
        self.uid = uid
        self.http = http or requests.Session()
        self.timeout = timeout

    def bind(self, account: Optional[str]) -> None:
        """Switch to the snapshot of account ``account``."""
        self.uid = account

    @property
    def url(self) -> str:
        """Document URL."""
        if not self.uid:
            raise AuthenticationError("Not signed in.")
        return (
            f"{FIRESTORE_URL}/projects/{self.project_id}/databases/(default)"
            f"/documents/users/{self.uid}/store/snapshot"
        )

    def fetch(self, token: Optional[str]) -> RemoteRecord:
        """GET the snapshot document."""
        response = self._request("GET", token)
        try:
            data = response.json()
        except ValueError as e:
            raise TransportError(
                f"Sync response parse failed: {response.text[:200]}"
            ) from e
        if not isinstance(data, dict):
            raise TransportError("Sync response parse failed: not an object")
        return parse_document(data)

    def put(self, token: Optional[str], payload: bytes, device_id: str) -> None:
        """PATCH the snapshot document with a new payload."""
        body = build_document(payload, device_id, datetime.now(timezone.utc))
        self._request("PATCH", token, json=body)
        logger.info("Wrote %d bytes to Firestore", len(payload))

    def close(self) -> None:
        """Close the HTTP session."""
        self.http.close()

    def _request(
        self, method: str, token: Optional[str], **kwargs: Any
    ) -> requests.Response:
        headers = {}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        try:
            response = self.http.request(
                method, self.url, headers=headers, timeout=self.timeout, **kwargs
            )
        except requests.exceptions.RequestException as e:
            raise TransportError(f"Network unavailable: {e}") from e

        if response.ok:
            return response

        status = response.status_code
        if status in (401, 403):
            raise UnauthorizedError(f"Firestore {method} HTTP {status}", status)
        if status == 404 and "NOT_FOUND" in response.text:
            raise DocumentNotFoundError("Snapshot does not exist yet", status)
        logger.debug("Firestore %s HTTP %s: %s", method, status, response.text[:500])
        raise TransportError(f"Sync server returned HTTP {status}", status)


def build_document(payload: bytes, device_id: str, when: datetime) -> Dict[str, Any]:
    """Firestore document body for a snapshot write."""
    return {
        "fields": {
            "payload": {"stringValue": payload.decode("utf-8")},
            "deviceId": {"stringValue": device_id},
            "updatedAt": {
                "timestampValue": when.astimezone(timezone.utc)
                .isoformat()
                .replace("+00:00", "Z")
            },
        }
    }


def parse_document(data: Dict[str, Any]) -> RemoteRecord:
    """Extract the snapshot record from a Firestore document.

    Missing fields yield ``None`` values rather than an error; a document
    without payload is a valid "nothing synced yet" state.
    """
    fields = data.get("fields") or {}
    version = data.get("updateTime") or data.get("createTime")
    return RemoteRecord(
        payload=_string_field(fields, "payload", encode=True),
        device_id=_string_field(fields, "deviceId"),
        version=version,
    )


def _string_field(fields: Dict[str, Any], name: str, encode: bool = False) -> Any:
    field = fields.get(name)
    if not isinstance(field, dict):
        return None
    value = field.get("stringValue")
    if not isinstance(value, str):
        return None
    return value.encode("utf-8") if encode else value
