"""Shared fixtures and fakes for the tasksync tests."""

from datetime import datetime, timedelta, timezone
from typing import List, Optional

import pytest

from tasksync.core.remote.base import DocumentClient, RemoteRecord, RemoteTransport
from tasksync.core.storage import LocalStore
from tasksync.core.sync import Identity, ManualScheduler, SyncOrchestrator, SyncStatus
from tasksync.exceptions import DocumentNotFoundError

T0 = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


def at(seconds: float) -> datetime:
    """Timestamp ``seconds`` after T0."""
    return T0 + timedelta(seconds=seconds)


class FakeClock:
    """Wall clock that only moves when told to."""

    def __init__(self, now: datetime = T0) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class FakeDocumentClient(DocumentClient):
    """In-memory remote record with scriptable failures."""

    def __init__(self, record: Optional[RemoteRecord] = None) -> None:
        self.record = record
        self.fetch_errors: List[Exception] = []
        self.put_errors: List[Exception] = []
        self.fetch_tokens: List[Optional[str]] = []
        self.puts: List[bytes] = []
        self.account: Optional[str] = None

    def fetch(self, token: Optional[str]) -> RemoteRecord:
        self.fetch_tokens.append(token)
        if self.fetch_errors:
            raise self.fetch_errors.pop(0)
        if self.record is None:
            raise DocumentNotFoundError("Snapshot does not exist yet", 404)
        return self.record

    def put(self, token: Optional[str], payload: bytes, device_id: str) -> None:
        if self.put_errors:
            raise self.put_errors.pop(0)
        self.puts.append(payload)

    def bind(self, account: Optional[str]) -> None:
        self.account = account

    @property
    def fetch_count(self) -> int:
        return len(self.fetch_tokens)


class FakeTokenProvider:
    """Token provider handing out numbered tokens."""

    def __init__(self, identity: Optional[Identity] = None) -> None:
        self.identity = identity
        self.issued = 0
        self.invalidations = 0
        self.signed_out = False

    def get_valid_token(self, force_refresh: bool = False) -> str:
        if force_refresh or self.issued == 0:
            self.issued += 1
        return f"token-{self.issued}"

    def invalidate(self) -> None:
        self.invalidations += 1

    def sign_out(self) -> None:
        self.signed_out = True
        self.identity = None


class RecordingTransport(RemoteTransport):
    """Transport that records calls and lets tests push snapshots."""

    def __init__(self) -> None:
        super().__init__()
        self.broadcasts: List[bytes] = []
        self.force_polls = 0
        self.stops = 0
        self.accounts: List[Optional[str]] = []
        self.last_callback = None

    def broadcast(self, payload: bytes) -> None:
        self.broadcasts.append(payload)

    def start_listening(self, on_data) -> None:
        self._on_data = on_data
        self.last_callback = on_data

    def stop(self) -> None:
        self.stops += 1
        self._on_data = None

    def force_poll(self) -> None:
        self.force_polls += 1

    def bind(self, account: Optional[str]) -> None:
        self.accounts.append(account)

    def push(self, payload: bytes) -> None:
        self._deliver(payload)

    def report(self, status: SyncStatus) -> None:
        self._report_status(status)


@pytest.fixture
def scheduler():
    """Manual scheduler starting at t=0."""
    return ManualScheduler()


@pytest.fixture
def clock():
    """Controllable wall clock."""
    return FakeClock()


@pytest.fixture
def store(tmp_path):
    """Local snapshot store in a temp directory."""
    return LocalStore(tmp_path / "tasks.json")


@pytest.fixture
def transport():
    """Recording transport."""
    return RecordingTransport()


@pytest.fixture
def identity():
    """A signed-in account."""
    return Identity(uid="user-1", email="user@example.com")


@pytest.fixture
def orchestrator(store, transport, scheduler, clock):
    """Signed-out orchestrator."""
    orchestrator = SyncOrchestrator(
        persistence=store, transport=transport, scheduler=scheduler, clock=clock
    )
    orchestrator.start()
    return orchestrator


@pytest.fixture
def signed_in(orchestrator, identity):
    """Orchestrator signed in as ``identity``."""
    orchestrator.on_signed_in(identity)
    return orchestrator
