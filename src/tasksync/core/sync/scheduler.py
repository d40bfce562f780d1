"""Serialized execution context and timers.

The orchestrator and the transports only touch shared state from callbacks
run by a ``Scheduler``. Callbacks run one at a time in submission order (timers
in due-time order), which makes the scheduler the single "main" context of the
engine. Blocking network calls run elsewhere (an executor) and hand their
results back through ``call_soon``.
"""

import heapq
import itertools
import logging
import threading
import time
from concurrent.futures import Executor, Future
from typing import Any, Callable, List, Optional, Protocol, Tuple

logger = logging.getLogger(__name__)

Callback = Callable[[], Any]


class TimerHandle:
    """Cancellable handle for a scheduled callback."""

    def __init__(self, when: float, callback: Callback) -> None:
        """Initialize handle.

        Args:
            when: Due time on the scheduler's clock
            callback: Function to run
        """
        self.when = when
        self._callback = callback
        self._cancelled = False

    def cancel(self) -> None:
        """Prevent the callback from running. Safe to call more than once."""
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        """Whether ``cancel`` was called."""
        return self._cancelled

    def run(self) -> None:
        """Run the callback unless cancelled; errors are logged."""
        if self._cancelled:
            return
        try:
            self._callback()
        except Exception:
            logger.exception("Scheduled callback %r failed", self._callback)

    def __repr__(self) -> str:
        state = "cancelled" if self._cancelled else "pending"
        return f"<TimerHandle when={self.when:.3f} ({state})>"


class Scheduler(Protocol):
    """Serialized context with one-shot timers."""

    def call_soon(self, callback: Callback) -> TimerHandle:
        """Run ``callback`` on the context as soon as possible."""
        ...

    def call_later(self, delay: float, callback: Callback) -> TimerHandle:
        """Run ``callback`` on the context after ``delay`` seconds."""
        ...

    def now(self) -> float:
        """Monotonic clock reading in seconds."""
        ...


class _TimerQueue:
    """Heap of pending timers ordered by (due time, submission order)."""

    def __init__(self) -> None:
        self._heap: List[Tuple[float, int, TimerHandle]] = []
        self._counter = itertools.count()

    def push(self, handle: TimerHandle) -> None:
        heapq.heappush(self._heap, (handle.when, next(self._counter), handle))

    def pop_due(self, now: float) -> Optional[TimerHandle]:
        while self._heap and self._heap[0][2].cancelled:
            heapq.heappop(self._heap)
        if self._heap and self._heap[0][0] <= now:
            return heapq.heappop(self._heap)[2]
        return None

    def next_due(self) -> Optional[float]:
        while self._heap and self._heap[0][2].cancelled:
            heapq.heappop(self._heap)
        return self._heap[0][0] if self._heap else None

    def clear(self) -> None:
        self._heap.clear()

    def __len__(self) -> int:
        return sum(1 for _, _, handle in self._heap if not handle.cancelled)


class ThreadedScheduler:
    """Scheduler backed by a single worker thread.

    Usage:
        scheduler = ThreadedScheduler()
        scheduler.start()
        scheduler.call_later(0.3, save)
        ...
        scheduler.stop()
    """

    def __init__(self, name: str = "tasksync-main") -> None:
        """Initialize scheduler.

        Args:
            name: Worker thread name
        """
        self._name = name
        self._queue = _TimerQueue()
        self._condition = threading.Condition()
        self._thread: Optional[threading.Thread] = None
        self._running = False

    def now(self) -> float:
        """Monotonic clock reading in seconds."""
        return time.monotonic()

    def call_soon(self, callback: Callback) -> TimerHandle:
        """Queue ``callback`` behind everything already due."""
        return self.call_later(0.0, callback)

    def call_later(self, delay: float, callback: Callback) -> TimerHandle:
        """Run ``callback`` after ``delay`` seconds."""
        handle = TimerHandle(self.now() + max(0.0, delay), callback)
        with self._condition:
            self._queue.push(handle)
            self._condition.notify()
        return handle

    def start(self) -> None:
        """Start the worker thread."""
        with self._condition:
            if self._running:
                return
            self._running = True
        self._thread = threading.Thread(target=self._run, name=self._name, daemon=True)
        self._thread.start()
        logger.debug("Scheduler thread %s started", self._name)

    def stop(self, timeout: float = 5.0) -> None:
        """Stop the worker thread and drop pending timers."""
        with self._condition:
            self._running = False
            self._queue.clear()
            self._condition.notify()
        if self._thread and self._thread.is_alive():
            if threading.current_thread() is not self._thread:
                self._thread.join(timeout=timeout)
        self._thread = None
        logger.debug("Scheduler thread %s stopped", self._name)

    @property
    def is_running(self) -> bool:
        """Whether the worker thread is active."""
        return self._running

    def _run(self) -> None:
        while True:
            with self._condition:
                if not self._running:
                    return
                handle = self._queue.pop_due(self.now())
                if handle is None:
                    due = self._queue.next_due()
                    timeout = None if due is None else max(0.0, due - self.now())
                    self._condition.wait(timeout)
                    continue
            handle.run()


class ManualScheduler:
    """Deterministic scheduler driven by a virtual clock.

    Nothing runs until ``run_pending`` or ``advance`` is called. Used by tests
    and by single-shot CLI commands.
    """

    def __init__(self, start: float = 0.0) -> None:
        """Initialize scheduler.

        Args:
            start: Initial virtual clock reading
        """
        self._now = start
        self._queue = _TimerQueue()

    def now(self) -> float:
        """Virtual clock reading in seconds."""
        return self._now

    def call_soon(self, callback: Callback) -> TimerHandle:
        """Queue ``callback`` at the current virtual time."""
        return self.call_later(0.0, callback)

    def call_later(self, delay: float, callback: Callback) -> TimerHandle:
        """Queue ``callback`` ``delay`` virtual seconds from now."""
        handle = TimerHandle(self._now + max(0.0, delay), callback)
        self._queue.push(handle)
        return handle

    def run_pending(self) -> int:
        """Run every callback due at the current time, including ones they queue.

        Returns:
            Number of callbacks run
        """
        count = 0
        while True:
            handle = self._queue.pop_due(self._now)
            if handle is None:
                return count
            handle.run()
            count += 1

    def advance(self, seconds: float) -> int:
        """Move the clock forward, running timers as they come due.

        Returns:
            Number of callbacks run
        """
        target = self._now + seconds
        count = self.run_pending()
        while True:
            due = self._queue.next_due()
            if due is None or due > target:
                break
            self._now = max(self._now, due)
            count += self.run_pending()
        self._now = target
        count += self.run_pending()
        return count

    def run_until_idle(self, max_seconds: float = 3600.0) -> int:
        """Advance until no timers remain or ``max_seconds`` have passed."""
        count = self.run_pending()
        deadline = self._now + max_seconds
        while True:
            due = self._queue.next_due()
            if due is None or due > deadline:
                return count
            count += self.advance(due - self._now)

    @property
    def pending(self) -> int:
        """Number of live timers."""
        return len(self._queue)


class ImmediateExecutor(Executor):
    """Executor that runs work synchronously in the caller's thread.

    Pairs with ``ManualScheduler`` so a whole sync cycle runs deterministically.
    """

    def submit(self, fn: Callable[..., Any], /, *args: Any, **kwargs: Any) -> Future:
        """Run ``fn`` now and return a completed future."""
        future: Future = Future()
        try:
            future.set_result(fn(*args, **kwargs))
        except Exception as exc:
            future.set_exception(exc)
        return future
