"""
Execution affinities.

An affinity is a single execution sequence. Every ObjectContext is confined to
one affinity; its methods must run there and nowhere else. Two implementations
live here:

- ``RunLoopAffinity``: the "main" sequence, owned by the thread that created
  it. Work submitted from any thread is queued and runs when the owner pumps
  the loop. This mirrors a UI event loop and keeps tests deterministic.
- ``SerialQueue``: a dedicated background worker thread.

The Qt event-loop affinity lives in ``gui.adapters.qt_affinity``.
"""

from __future__ import annotations

import logging
import queue
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable, Protocol, TypeVar

from notebook_engine.errors import AffinityError

T = TypeVar("T")

logger = logging.getLogger(__name__)


class Affinity(Protocol):
    """A single execution sequence that work can be scheduled onto."""

    @property
    def name(self) -> str:
        """Human-readable name used in logs and errors."""
        ...

    def submit(self, fn: Callable[[], T]) -> Future[T]:
        """Schedule ``fn`` and return a future for its result. Never runs inline."""
        ...

    def is_current(self) -> bool:
        """Return True if the calling code is running on this affinity."""
        ...


def run_task(fn: Callable[[], T], future: Future[T]) -> None:
    """Run ``fn`` and settle ``future`` with its outcome."""
    if not future.set_running_or_notify_cancel():
        return
    try:
        result = fn()
    except BaseException as exc:
        future.set_exception(exc)
    else:
        future.set_result(result)


def perform_and_wait(affinity: Affinity, fn: Callable[[], T], timeout: float | None = None) -> T:
    """
    Run ``fn`` on ``affinity`` and return its result.

    Runs inline when the caller is already on ``affinity``; otherwise blocks
    until the affinity has executed it.
    """
    if affinity.is_current():
        return fn()
    return affinity.submit(fn).result(timeout=timeout)


class RunLoopAffinity:
    """
    Affinity owned by the constructing thread and pumped explicitly.

    Parameters
    ----------
    name:
        Name used in logs and errors.
    """

    def __init__(self, name: str = "main") -> None:
        self._name = name
        self._owner = threading.get_ident()
        self._queue: queue.SimpleQueue[tuple[Callable[[], object], Future[object]]] = queue.SimpleQueue()

    @property
    def name(self) -> str:
        return self._name

    def is_current(self) -> bool:
        return threading.get_ident() == self._owner

    def submit(self, fn: Callable[[], T]) -> Future[T]:
        future: Future[T] = Future()
        self._queue.put((fn, future))  # type: ignore[arg-type]
        return future

    def run_pending(self) -> int:
        """
        Run every task queued so far, including tasks those tasks enqueue.

        Returns
        -------
        int
            Number of tasks executed.
        """
        self._require_owner()
        executed = 0
        while True:
            try:
                fn, future = self._queue.get_nowait()
            except queue.Empty:
                return executed
            run_task(fn, future)
            executed += 1

    def run_until(self, future: Future[T], timeout: float = 10.0) -> T:
        """
        Pump the loop until ``future`` settles, then drain what is left.

        Raises
        ------
        TimeoutError
            If the future does not settle within ``timeout`` seconds.
        """
        self._require_owner()
        deadline = time.monotonic() + timeout
        while not future.done():
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise TimeoutError(f"{self._name} loop timed out waiting for a result")
            try:
                fn, task_future = self._queue.get(timeout=min(remaining, 0.05))
            except queue.Empty:
                continue
            run_task(fn, task_future)
        self.run_pending()
        return future.result()

    def _require_owner(self) -> None:
        if not self.is_current():
            raise AffinityError(f"The {self._name} loop can only be pumped by its owning thread")


class SerialQueue:
    """
    Affinity backed by one dedicated worker thread.

    Parameters
    ----------
    name:
        Name used for the worker thread and in logs.
    """

    def __init__(self, name: str = "writer") -> None:
        self._name = name
        self._thread_id: int | None = None
        self._executor = ThreadPoolExecutor(
            max_workers=1, thread_name_prefix=name, initializer=self._bind_thread
        )

    @property
    def name(self) -> str:
        return self._name

    def _bind_thread(self) -> None:
        self._thread_id = threading.get_ident()

    def is_current(self) -> bool:
        return self._thread_id is not None and threading.get_ident() == self._thread_id

    def submit(self, fn: Callable[[], T]) -> Future[T]:
        try:
            return self._executor.submit(fn)
        except RuntimeError as exc:
            raise AffinityError(f"The {self._name} queue has been shut down") from exc

    def shutdown(self, wait: bool = True) -> None:
        """Stop accepting work and, if ``wait``, let queued work finish."""
        logger.debug("Shutting down %s queue", self._name)
        self._executor.shutdown(wait=wait)
