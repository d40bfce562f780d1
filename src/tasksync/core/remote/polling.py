"""Polling transport.

Reads the remote record on a timer and delivers snapshots written by other
devices. The interval starts at ``min_interval``, grows by ``backoff`` after
every failed poll up to ``max_interval``, and snaps back after a success.
Failures only become a visible error after ``error_threshold`` consecutive
misses; an authentication failure that survives one token refresh is visible
immediately.

Network calls run on an executor. Their results are applied on the
scheduler's context and are dropped if the transport was stopped (or
restarted) while they were in flight.
"""

from concurrent.futures import Executor, Future
from dataclasses import dataclass
from typing import Any, Callable, Optional

from ...exceptions import (
    AuthenticationError,
    DocumentNotFoundError,
    TaskSyncError,
    TransportError,
)
from ..sync.scheduler import Scheduler, TimerHandle
from ..sync.state import SyncStatus
from .auth import TokenProvider, call_with_auth_retry
from .base import DataCallback, DocumentClient, RemoteRecord, RemoteTransport


@dataclass(frozen=True)
class PollingPolicy:
    """Poll interval and error visibility settings."""

    min_interval: float = 10.0
    max_interval: float = 90.0
    backoff: float = 1.8
    error_threshold: int = 3

    @classmethod
    def from_config(cls, config: Any) -> "PollingPolicy":
        """Build policy from a ``Config``."""
        return cls(
            min_interval=config.poll_min_interval,
            max_interval=config.poll_max_interval,
            backoff=config.poll_backoff,
            error_threshold=config.error_threshold,
        )

    def next_interval(self, current: float) -> float:
        """Interval after a failure."""
        return min(self.max_interval, max(self.min_interval, current * self.backoff))


class PollingTransport(RemoteTransport):
    """Transport that polls a ``DocumentClient``."""

    def __init__(
        self,
        client: DocumentClient,
        token_provider: Optional[TokenProvider],
        scheduler: Scheduler,
        executor: Executor,
        device_id: str,
        policy: Optional[PollingPolicy] = None,
    ) -> None:
        """Initialize polling transport.

        Args:
            client: Access to the remote record
            token_provider: Token source, or None for clients without auth
            scheduler: Serialized context for state changes and timers
            executor: Where blocking network calls run
            device_id: This installation's id, used to skip own writes
            policy: Interval and error settings
        """
        super().__init__()
        self.client = client
        self.token_provider = token_provider
        self.scheduler = scheduler
        self.executor = executor
        self.device_id = device_id
        self.policy = policy or PollingPolicy()

        self._generation = 0
        self._timer: Optional[TimerHandle] = None
        self._interval = self.policy.min_interval
        self._failures = 0
        self._poll_in_flight = False
        self._send_in_flight = False
        self._last_version: Optional[str] = None
        self._unsent: Optional[bytes] = None

    @property
    def interval(self) -> float:
        """Delay before the next scheduled poll."""
        return self._interval

    @property
    def consecutive_failures(self) -> int:
        """Failed polls since the last success."""
        return self._failures

    @property
    def has_unsent(self) -> bool:
        """Whether a broadcast is waiting to be (re)sent."""
        return self._unsent is not None

    def start_listening(self, on_data: DataCallback) -> None:
        """Attach ``on_data`` and poll immediately."""
        self.stop()
        self._on_data = on_data
        self.logger.info("Polling started for device %s", self.device_id)
        self._poll()

    def stop(self) -> None:
        """Detach the callback, cancel timers and forget in-flight work."""
        self._generation += 1
        self._cancel_timer()
        self._on_data = None
        self._interval = self.policy.min_interval
        self._failures = 0
        self._poll_in_flight = False
        self._send_in_flight = False
        self._last_version = None
        self._unsent = None

    def bind(self, account: Optional[str]) -> None:
        """Point the document client at ``account``."""
        self.client.bind(account)

    def force_poll(self) -> None:
        """Poll now and re-deliver the current snapshot even if already seen."""
        if not self.is_listening:
            self.logger.debug("force_poll ignored: not listening")
            return
        self._last_version = None
        self._cancel_timer()
        self._poll()

    def broadcast(self, payload: bytes) -> None:
        """Write ``payload`` to the remote record.

        A failed write is kept and retried after the next successful poll,
        unless a newer broadcast replaces it first.
        """
        if not self.is_listening:
            self.logger.debug("Broadcast dropped: not listening")
            return
        self._unsent = payload
        self._flush()

    # Poll cycle

    def _poll(self) -> None:
        if not self.is_listening:
            return
        if self._poll_in_flight:
            self.logger.debug("Poll already in flight; skipping")
            return
        self._poll_in_flight = True
        self._submit(self._fetch, self._on_poll_done)

    def _fetch(self) -> RemoteRecord:
        return self._with_token(self.client.fetch)

    def _on_poll_done(self, future: Future) -> None:
        self._poll_in_flight = False
        try:
            record = future.result()
        except DocumentNotFoundError:
            self.logger.info("Remote snapshot does not exist yet")
            self._mark_success()
            return
        except AuthenticationError as e:
            self._mark_failure(str(e), str(e), immediate=True)
            return
        except TransportError as e:
            self._mark_failure(_poll_message(e), f"poll failed: {e}")
            return
        except TaskSyncError as e:
            self._mark_failure("Sync failed. Retrying…", f"poll failed: {e}")
            return
        except Exception as e:
            self.logger.exception("Unexpected error while polling")
            self._mark_failure("Sync failed. Retrying…", f"unexpected: {e}")
            return

        self._handle_record(record)
        self._mark_success()

    def _handle_record(self, record: RemoteRecord) -> None:
        if not record.is_complete:
            self.logger.info("Remote snapshot has no payload/deviceId yet")
            return
        if record.device_id == self.device_id:
            self.logger.debug("Skipping snapshot written by this device")
            return
        if record.version is not None and record.version == self._last_version:
            self.logger.debug("Skipping already processed snapshot %s", record.version)
            return

        self._last_version = record.version
        self.logger.info(
            "Received %d bytes (device: %s, version: %s)",
            len(record.payload or b""),
            record.device_id,
            record.version,
        )
        self._deliver(record.payload or b"")

    def _mark_success(self) -> None:
        self._failures = 0
        self._interval = self.policy.min_interval
        self._report_status(SyncStatus.connected())
        self._schedule_next()
        self._flush()

    def _mark_failure(
        self, user_message: str, debug_message: str, immediate: bool = False
    ) -> None:
        self._failures += 1
        self._interval = self.policy.next_interval(self._interval)
        if immediate or self._failures >= self.policy.error_threshold:
            self.logger.error("Sync error: %s", debug_message)
            self._report_status(SyncStatus.error(user_message))
        else:
            self.logger.warning(
                "Transient sync issue (%d/%d): %s",
                self._failures,
                self.policy.error_threshold,
                debug_message,
            )
        self._schedule_next()

    def _schedule_next(self) -> None:
        self._cancel_timer()
        if self.is_listening:
            self._timer = self.scheduler.call_later(self._interval, self._poll)

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    # Broadcast

    def _flush(self) -> None:
        if self._unsent is None or self._send_in_flight or not self.is_listening:
            return
        payload = self._unsent
        self._send_in_flight = True
        self._submit(
            lambda: self._with_token(
                lambda token: self.client.put(token, payload, self.device_id)
            ),
            lambda future: self._on_send_done(payload, future),
        )

    def _on_send_done(self, payload: bytes, future: Future) -> None:
        self._send_in_flight = False
        try:
            future.result()
        except AuthenticationError as e:
            self.logger.error("Broadcast failed: %s", e)
            self._report_status(SyncStatus.error(str(e)))
            return
        except TaskSyncError as e:
            self.logger.error("Broadcast failed, will retry after next poll: %s", e)
            self._report_status(SyncStatus.error(f"Sync write failed: {e}"))
            return
        except Exception as e:
            self.logger.exception("Unexpected error while broadcasting")
            self._report_status(SyncStatus.error(f"Sync write failed: {e}"))
            return

        self.logger.info("Broadcast %d bytes", len(payload))
        self._report_status(SyncStatus.connected())
        if self._unsent is payload:
            self._unsent = None
        else:
            self._flush()

    # Helpers

    def _with_token(self, func: Callable[[Optional[str]], Any]) -> Any:
        if self.token_provider is None:
            return func(None)
        return call_with_auth_retry(self.token_provider, func)

    def _submit(
        self, work: Callable[[], Any], on_done: Callable[[Future], None]
    ) -> None:
        generation = self._generation

        def post_back(future: Future) -> None:
            self.scheduler.call_soon(lambda: self._apply(generation, on_done, future))

        self.executor.submit(work).add_done_callback(post_back)

    def _apply(
        self, generation: int, on_done: Callable[[Future], None], future: Future
    ) -> None:
        if generation != self._generation:
            self.logger.debug("Discarding result from a stopped session")
            return
        on_done(future)


def _poll_message(error: TransportError) -> str:
    if error.status_code is not None:
        return f"Sync server returned HTTP {error.status_code}. Retrying…"
    return "Network unavailable. Retrying…"
