"""Engine construction for CLI commands.

This module provides simple initialization functions that return wired-up
instances:
- init_auth() -> token provider for the configured transport
- init_transport() -> RemoteTransport for the configured transport
- init_engine() -> Engine (orchestrator plus its scheduler and executor)

Single-shot commands use a ``ManualScheduler`` with an ``ImmediateExecutor``
so one command runs one deterministic sync cycle; ``watch`` uses a threaded
scheduler and a thread pool.
"""

import logging
import threading
from concurrent.futures import Executor, ThreadPoolExecutor
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Callable, Iterator, Optional, Union

from ...config import Config
from ...exceptions import ConfigError
from ...core.remote import (
    DocumentHub,
    FirebaseTokenProvider,
    FirestoreDocumentClient,
    FolderDocumentClient,
    LocalAccountProvider,
    PollingPolicy,
    PollingTransport,
    RemoteTransport,
    SessionStore,
    SubscriptionTransport,
    load_or_create_device_id,
)
from ...core.storage import LocalStore
from ...core.sync import (
    ImmediateExecutor,
    ManualScheduler,
    Scheduler,
    SyncOrchestrator,
    ThreadedScheduler,
)

logger = logging.getLogger(__name__)

# Hub shared by every engine in this process when TASKSYNC_TRANSPORT=memory
_MEMORY_HUB = DocumentHub()

TokenSource = Union[FirebaseTokenProvider, LocalAccountProvider]


@dataclass
class Engine:
    """Orchestrator together with everything it runs on."""

    config: Config
    orchestrator: SyncOrchestrator
    scheduler: Scheduler
    executor: Executor
    auth: TokenSource
    transport: RemoteTransport
    device_id: str

    def drain(self) -> None:
        """Run callbacks that are due now (manual scheduler only)."""
        if isinstance(self.scheduler, ManualScheduler):
            self.scheduler.run_pending()

    def wait_for_bootstrap(self) -> None:
        """Let the sign-in bootstrap window elapse (manual scheduler only)."""
        if isinstance(self.scheduler, ManualScheduler):
            self.scheduler.advance(self.config.bootstrap_delay)

    def start(self) -> None:
        """Start the scheduler thread if any, then the orchestrator."""
        if isinstance(self.scheduler, ThreadedScheduler):
            self.scheduler.start()
        self.run(self.orchestrator.start)

    def run(self, callback: Callable[[], Any], timeout: float = 10.0) -> None:
        """Run ``callback`` on the scheduler's context and wait for it."""
        if not isinstance(self.scheduler, ThreadedScheduler):
            callback()
            self.drain()
            return

        done = threading.Event()

        def call() -> None:
            try:
                callback()
            finally:
                done.set()

        self.scheduler.call_soon(call)
        if not done.wait(timeout):
            logger.warning("Timed out waiting for the sync thread")

    def close(self) -> None:
        """Flush pending saves and broadcasts, then stop everything."""

        def shutdown() -> None:
            self.orchestrator.flush()
            self.drain()
            self.orchestrator.close()

        self.run(shutdown)
        if isinstance(self.scheduler, ThreadedScheduler):
            self.scheduler.stop()
        self.executor.shutdown(wait=True)


def init_auth(config: Config) -> TokenSource:
    """Token provider matching the configured transport."""
    sessions = SessionStore(config.session_file)
    if config.transport == "firestore":
        if not config.firebase_api_key or not config.firebase_project_id:
            raise ConfigError(
                "TASKSYNC_FIREBASE_API_KEY and TASKSYNC_FIREBASE_PROJECT_ID "
                "must be set for the firestore transport"
            )
        return FirebaseTokenProvider(
            api_key=config.firebase_api_key,
            session_store=sessions,
            timeout=config.http_timeout,
            project_id=config.firebase_project_id,
        )
    return LocalAccountProvider(sessions)


def init_transport(
    config: Config,
    auth: TokenSource,
    scheduler: Scheduler,
    executor: Executor,
    device_id: str,
    hub: Optional[DocumentHub] = None,
) -> RemoteTransport:
    """Transport selected by ``TASKSYNC_TRANSPORT``."""
    account = auth.identity.uid if auth.identity else None

    if config.transport == "memory":
        return SubscriptionTransport(hub or _MEMORY_HUB, account, device_id, scheduler)

    if config.transport == "folder":
        if config.shared_folder is None:
            raise ConfigError(
                "TASKSYNC_SHARED_FOLDER must be set for the folder transport"
            )
        client: Any = FolderDocumentClient(config.shared_folder, account)
        token_provider = None
    else:
        client = FirestoreDocumentClient(
            config.firebase_project_id, account, timeout=config.http_timeout
        )
        token_provider = auth

    return PollingTransport(
        client=client,
        token_provider=token_provider,
        scheduler=scheduler,
        executor=executor,
        device_id=device_id,
        policy=PollingPolicy.from_config(config),
    )


def init_engine(config: Optional[Config] = None, threaded: bool = False) -> Engine:
    """Build an orchestrator for ``config``.

    Args:
        config: Application configuration (creates new if not provided)
        threaded: Use a worker-thread scheduler and a thread pool

    Returns:
        Engine, not started yet
    """
    if config is None:
        config = Config()
    config.ensure_directories()

    scheduler: Scheduler
    executor: Executor
    if threaded:
        scheduler = ThreadedScheduler()
        executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="tasksync-net")
    else:
        scheduler = ManualScheduler()
        executor = ImmediateExecutor()

    auth = init_auth(config)
    device_id = load_or_create_device_id(config.device_id_file)
    transport = init_transport(config, auth, scheduler, executor, device_id)
    orchestrator = SyncOrchestrator(
        persistence=LocalStore(config.tasks_file),
        transport=transport,
        scheduler=scheduler,
        config=config,
        auth=auth,
    )
    logger.debug(
        "Engine ready (transport=%s, device=%s, data=%s)",
        config.transport,
        device_id,
        config.data_dir,
    )
    return Engine(
        config=config,
        orchestrator=orchestrator,
        scheduler=scheduler,
        executor=executor,
        auth=auth,
        transport=transport,
        device_id=device_id,
    )


@contextmanager
def engine_session(config: Optional[Config] = None) -> Iterator[Engine]:
    """Start an engine for one command and close it afterwards.

    On entry the local snapshot is loaded and, when signed in, the remote one
    is fetched and merged. On exit pending edits are saved and broadcast.
    """
    engine = init_engine(config)
    engine.start()
    try:
        yield engine
    finally:
        engine.close()
