"""Qt event-loop affinity.

Gives the gateway's read context a home on the Qt GUI thread. Work submitted from
any thread is delivered through a queued signal and runs when the event loop
processes it, which is how change notifications committed on the writer thread
hop back to the GUI.

Threading model
---------------
- The QtAffinity object must be created on the thread it serves (normally the
  GUI thread) and must not be moved to another thread.
- ``submit`` is thread-safe; the callable always runs later on the owning
  thread, never inline.
"""

from __future__ import annotations

import threading
from concurrent.futures import Future
from typing import Callable, TypeVar

from PySide6.QtCore import QObject, Qt, Signal, Slot

from notebook_engine.affinity import run_task

T = TypeVar("T")


class QtAffinity(QObject):
    """Affinity that runs work on the thread owning this QObject."""

    _dispatch = Signal(object)  # (callable, Future)

    def __init__(self, name: str = "gui", parent: QObject | None = None) -> None:
        super().__init__(parent)
        self._name = name
        self._owner = threading.get_ident()
        self._dispatch.connect(self._run, type=Qt.ConnectionType.QueuedConnection)

    @property
    def name(self) -> str:
        return self._name

    def is_current(self) -> bool:
        return threading.get_ident() == self._owner

    def submit(self, fn: Callable[[], T]) -> Future[T]:
        future: Future[T] = Future()
        self._dispatch.emit((fn, future))
        return future

    @Slot(object)
    def _run(self, item: object) -> None:
        fn, future = item  # type: ignore[misc]
        run_task(fn, future)
