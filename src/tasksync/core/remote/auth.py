"""Account sessions and bearer tokens for the remote store.

``FirebaseTokenProvider`` signs in against the Firebase Auth REST API and keeps
a short-lived ID token cached, exchanging the stored refresh token whenever the
cached one expires or is rejected. ``LocalAccountProvider`` is used by
transports that need an account id but no token (shared folder, in-process
hub).
"""

import json
import logging
import os
import time
import uuid
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Protocol, TypeVar

import requests

from ...exceptions import (
    AuthenticationError,
    PersistenceError,
    TransportError,
    UnauthorizedError,
)
from ..sync.state import Identity

logger = logging.getLogger(__name__)

T = TypeVar("T")

IDENTITY_TOOLKIT_URL = "https://identitytoolkit.googleapis.com/v1"
SECURE_TOKEN_URL = "https://securetoken.googleapis.com/v1/token"

# Firebase ID tokens live for an hour; refresh a little early
ID_TOKEN_TTL = 3500.0

DEVICE_ID_PREFIX = "cli-"


@dataclass(frozen=True)
class StoredSession:
    """Persisted sign-in state."""

    refresh_token: str
    uid: str
    email: Optional[str] = None

    @property
    def identity(self) -> Identity:
        """Account identity for this session."""
        return Identity(uid=self.uid, email=self.email)


class SessionStore:
    """Persists the refresh token and account id as a private JSON file."""

    def __init__(self, path: Path) -> None:
        """Initialize session store.

        Args:
            path: Session file location
        """
        self.path = Path(path)

    def load(self) -> Optional[StoredSession]:
        """Stored session, or None when signed out or the file is unusable."""
        if not self.path.exists():
            return None
        try:
            with open(self.path, "r", encoding="utf-8") as file:
                data = json.load(file)
            return StoredSession(
                refresh_token=data["refreshToken"],
                uid=data["uid"],
                email=data.get("email"),
            )
        except (OSError, KeyError, TypeError, json.JSONDecodeError) as e:
            logger.warning("Ignoring unreadable session file %s: %s", self.path, e)
            return None

    def save(self, session: StoredSession) -> None:
        """Write ``session`` readable by the current user only."""
        data = {
            "refreshToken": session.refresh_token,
            "uid": session.uid,
            "email": session.email,
        }
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd = os.open(self.path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
            with os.fdopen(fd, "w", encoding="utf-8") as file:
                json.dump(data, file, indent=2)
            os.chmod(self.path, 0o600)
        except OSError as e:
            raise PersistenceError(f"Cannot save session to {self.path}: {e}") from e
        logger.info("Session saved to %s", self.path)

    def clear(self) -> None:
        """Forget the stored session."""
        try:
            self.path.unlink()
            logger.info("Removed session file %s", self.path)
        except FileNotFoundError:
            pass
        except OSError as e:
            raise PersistenceError(f"Cannot remove {self.path}: {e}") from e


class TokenProvider(Protocol):
    """Source of bearer tokens for the remote store."""

    @property
    def identity(self) -> Optional[Identity]:
        """Signed-in account, or None."""
        ...

    def get_valid_token(self, force_refresh: bool = False) -> str:
        """Return a token that has not expired yet.

        Raises:
            AuthenticationError: No session, or the session was revoked
            TransportError: The token endpoint could not be reached
        """
        ...

    def invalidate(self) -> None:
        """Drop the cached token so the next call refreshes it."""
        ...


def call_with_auth_retry(provider: TokenProvider, func: Callable[[str], T]) -> T:
    """Run ``func(token)``, refreshing the token and retrying once on rejection.

    Raises:
        AuthenticationError: The refreshed token was rejected as well
    """
    token = provider.get_valid_token()
    try:
        return func(token)
    except UnauthorizedError as e:
        logger.warning(
            "Request unauthorized (%s); refreshing token and retrying once",
            e.status_code,
        )
        provider.invalidate()

    token = provider.get_valid_token(force_refresh=True)
    try:
        return func(token)
    except UnauthorizedError as e:
        provider.invalidate()
        raise AuthenticationError(
            f"Remote rejected refreshed credentials (HTTP {e.status_code}). "
            "Please sign in again."
        ) from e


def friendly_auth_message(message: str) -> str:
    """Translate Firebase Auth error codes into actionable messages."""
    if "OPERATION_NOT_ALLOWED" in message:
        return (
            "Email/Password sign-in is not enabled. Enable it in the Firebase "
            "console under Authentication > Sign-in method."
        )
    if (
        "unregistered callers" in message.lower()
        or "UNAUTHORIZED_DOMAIN" in message
        or "API key not valid" in message
    ):
        return (
            "The API key is restricted or invalid. Remove the application "
            "restriction from the key in the Google Cloud console, or use an "
            "unrestricted key."
        )
    return message


class FirebaseTokenProvider:
    """Token provider backed by the Firebase Auth REST API."""

    def __init__(
        self,
        api_key: str,
        session_store: SessionStore,
        http: Optional[requests.Session] = None,
        timeout: float = 15.0,
        project_id: Optional[str] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize token provider.

        Args:
            api_key: Firebase web API key
            session_store: Where the refresh token is kept
            http: Optional requests session (shared connection pool)
            timeout: Per-request timeout in seconds
            project_id: Firebase project id, sent as Referer for keys with
                HTTP referrer restrictions
            clock: Wall-clock source, overridable in tests
        """
        self.api_key = api_key
        self.session_store = session_store
        self.http = http or requests.Session()
        self.timeout = timeout
        self.project_id = project_id
        self._clock = clock
        self._session: Optional[StoredSession] = session_store.load()
        self._id_token: Optional[str] = None
        self._expires_at = 0.0

    @property
    def identity(self) -> Optional[Identity]:
        """Signed-in account, or None."""
        return self._session.identity if self._session else None

    def sign_in(self, email: str, password: str) -> Identity:
        """Sign in, creating the account when it does not exist yet.

        Raises:
            AuthenticationError: Credentials rejected or provider misconfigured
            TransportError: Auth endpoint unreachable
        """
        if not self.api_key:
            raise AuthenticationError("No Firebase API key configured.")

        body = {"email": email, "password": password, "returnSecureToken": True}
        try:
            data = self._post_identity("accounts:signInWithPassword", body)
        except AuthenticationError as e:
            if "EMAIL_NOT_FOUND" not in str(e):
                raise
            logger.info("Account %s not found; creating it", email)
            data = self._post_identity("accounts:signUp", body)

        try:
            session = StoredSession(
                refresh_token=data["refreshToken"],
                uid=data["localId"],
                email=data.get("email", email),
            )
            id_token = data["idToken"]
        except KeyError as e:
            raise TransportError(f"Unexpected sign-in response: missing {e}") from e

        self.session_store.save(session)
        self._session = session
        self._cache_token(id_token)
        logger.info("Signed in as %s (uid=%s)", session.email, session.uid)
        return session.identity

    def sign_out(self) -> None:
        """Forget the session and cached token."""
        self.session_store.clear()
        self._session = None
        self.invalidate()

    def get_valid_token(self, force_refresh: bool = False) -> str:
        """Return the cached ID token, exchanging the refresh token if needed."""
        if (
            not force_refresh
            and self._id_token is not None
            and self._clock() < self._expires_at
        ):
            return self._id_token
        if self._session is None:
            raise AuthenticationError("Missing refresh token. Please sign in again.")

        data = self._post(
            SECURE_TOKEN_URL,
            {
                "grant_type": "refresh_token",
                "refresh_token": self._session.refresh_token,
            },
        )
        try:
            id_token = data["id_token"]
            uid = data["user_id"]
        except KeyError as e:
            raise TransportError(f"Token exchange failed: missing {e}") from e

        refresh_token = data.get("refresh_token", self._session.refresh_token)
        if refresh_token != self._session.refresh_token or uid != self._session.uid:
            self._session = StoredSession(refresh_token, uid, self._session.email)
            self.session_store.save(self._session)

        self._cache_token(id_token)
        logger.debug("Refreshed ID token for uid=%s", uid)
        return id_token

    def invalidate(self) -> None:
        """Drop the cached ID token."""
        self._id_token = None
        self._expires_at = 0.0

    def _cache_token(self, id_token: str) -> None:
        self._id_token = id_token
        self._expires_at = self._clock() + ID_TOKEN_TTL

    def _post_identity(self, method: str, body: Dict[str, Any]) -> Dict[str, Any]:
        return self._post(f"{IDENTITY_TOOLKIT_URL}/{method}", body)

    def _post(self, url: str, body: Dict[str, Any]) -> Dict[str, Any]:
        headers = {"Content-Type": "application/json"}
        if self.project_id:
            headers["Referer"] = f"https://{self.project_id}.firebaseapp.com"
        try:
            response = self.http.post(
                url,
                params={"key": self.api_key},
                json=body,
                headers=headers,
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as e:
            raise TransportError(f"Auth request failed: {e}") from e

        try:
            data = response.json()
        except ValueError as e:
            raise TransportError(
                f"Invalid auth response (HTTP {response.status_code})",
                response.status_code,
            ) from e

        error = data.get("error") if isinstance(data, dict) else None
        if error:
            if isinstance(error, dict):
                message = error.get("message", "")
            else:
                message = str(error)
            logger.error("Auth request error: %s", message)
            if response.status_code >= 500:
                raise TransportError(message, response.status_code)
            raise AuthenticationError(friendly_auth_message(message))
        if not response.ok:
            raise TransportError(
                f"Auth request HTTP {response.status_code}", response.status_code
            )
        if not isinstance(data, dict):
            raise TransportError("Unexpected auth response")
        return data


class LocalAccountProvider:
    """Account without a token service.

    Signing in only records the account name; tokens are empty strings.
    """

    def __init__(self, session_store: SessionStore) -> None:
        """Initialize provider.

        Args:
            session_store: Where the account name is kept
        """
        self.session_store = session_store
        self._session = session_store.load()

    @property
    def identity(self) -> Optional[Identity]:
        """Signed-in account, or None."""
        return self._session.identity if self._session else None

    def sign_in(self, email: str, password: str = "") -> Identity:
        """Record ``email`` as the signed-in account."""
        account = email.strip().lower()
        if not account:
            raise AuthenticationError("An account name is required.")
        self._session = StoredSession(refresh_token="", uid=account, email=account)
        self.session_store.save(self._session)
        logger.info("Signed in locally as %s", account)
        return self._session.identity

    def sign_out(self) -> None:
        """Forget the account."""
        self.session_store.clear()
        self._session = None

    def get_valid_token(self, force_refresh: bool = False) -> str:
        """Empty token; raises when signed out."""
        if self._session is None:
            raise AuthenticationError("Not signed in.")
        return ""

    def invalidate(self) -> None:
        """Nothing cached."""


def load_or_create_device_id(path: Path) -> str:
    """Stable per-installation device id, created on first use."""
    path = Path(path)
    try:
        existing = path.read_text(encoding="utf-8").strip()
        if existing:
            return existing
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning("Cannot read device id from %s: %s", path, e)

    device_id = f"{DEVICE_ID_PREFIX}{uuid.uuid4()}"
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(device_id, encoding="utf-8")
    except OSError as e:
        raise PersistenceError(f"Cannot store device id at {path}: {e}") from e
    logger.info("Created device id %s", device_id)
    return device_id


def session_to_dict(session: StoredSession) -> Dict[str, Any]:
    """Session fields without the refresh token, for display."""
    data = asdict(session)
    data.pop("refresh_token")
    return data
