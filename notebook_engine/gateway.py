"""
Persistence gateway.

The gateway owns the store handle and its two contexts:

- the read context, confined to the main affinity, used for queries, view
  binding and small edits;
- the write context, confined to a background SerialQueue, used for edits whose
  payload is expensive to compute.

Opening is asynchronous and happens once. Until it completes no context is
exposed; if it fails the failure is fatal.
"""

from __future__ import annotations

import logging
import sqlite3
from concurrent.futures import Future
from functools import partial
from pathlib import Path
from typing import Callable

from notebook_engine.affinity import Affinity, RunLoopAffinity, SerialQueue
from notebook_engine.clock import Clock, SystemClock
from notebook_engine.context import ObjectContext
from notebook_engine.errors import GatewayError, StoreInitError, StoreNotOpenError
from notebook_engine.fatal import FatalHandler, terminate_process
from notebook_engine.paths import SafetyViolationError, store_db_path
from notebook_engine.store.sqlite_store import SqliteStore

logger = logging.getLogger(__name__)


class PersistenceGateway:
    """
    Owner of a notebook store and its affinity-confined contexts.

    Parameters
    ----------
    data_root:
        Override for the data root. Defaults to ``paths.default_data_root()``.
    main_affinity:
        Affinity of the read context. Defaults to a RunLoopAffinity owned by the
        constructing thread; Qt applications pass a ``QtAffinity``.
    clock:
        Timestamp source for new entities.
    fatal_handler:
        Called with the error when opening fails or a fatal error surfaces during
        change delivery. Defaults to terminating the process.
    busy_timeout:
        Seconds a commit waits on a store locked by another connection before
        failing with CommitError.
    """

    def __init__(
        self,
        *,
        data_root: Path | None = None,
        main_affinity: Affinity | None = None,
        clock: Clock | None = None,
        fatal_handler: FatalHandler = terminate_process,
        busy_timeout: float = 5.0,
    ) -> None:
        self._data_root = data_root
        self._busy_timeout = busy_timeout
        self._main: Affinity = main_affinity if main_affinity is not None else RunLoopAffinity("main")
        self._writer = SerialQueue("writer")
        self._clock: Clock = clock if clock is not None else SystemClock()
        self._fatal_handler = fatal_handler

        self._open_future: Future[None] | None = None
        self._store: SqliteStore | None = None
        self._read: ObjectContext | None = None
        self._write: ObjectContext | None = None

    @property
    def main(self) -> Affinity:
        """Affinity of the read context."""
        return self._main

    @property
    def is_open(self) -> bool:
        return self._read is not None

    @property
    def store(self) -> SqliteStore:
        if self._store is None:
            raise StoreNotOpenError("The store has not been opened")
        return self._store

    def open(self, store_name: str, on_ready: Callable[[], None] | None = None) -> Future[None]:
        """
        Open ``store_name`` in the background.

        ``on_ready`` is dispatched onto the main affinity exactly once, after
        both contexts exist. Initialization failure is passed to the fatal
        handler; the returned future then carries a StoreInitError.

        Raises
        ------
        GatewayError
            If ``open`` was already called on this gateway.
        """
        if self._open_future is not None:
            raise GatewayError("The gateway has already been opened")
        self._open_future = self._writer.submit(partial(self._open_store, store_name, on_ready))
        return self._open_future

    def read_context(self) -> ObjectContext:
        """Return the main-affinity context used for queries and view binding."""
        if self._read is None:
            raise StoreNotOpenError("The store has not finished opening")
        return self._read

    def write_context(self) -> ObjectContext:
        """Return the background context used for payload-processing edits."""
        if self._write is None:
            raise StoreNotOpenError("The store has not finished opening")
        return self._write

    def close(self) -> None:
        """
        Close both contexts and stop the writer queue.

        Must be called on the main affinity. Work already queued on the writer
        runs to completion first.
        """
        write, read = self._write, self._read
        if write is not None:
            self._writer.submit(write.close).result()
        if read is not None:
            read.perform_and_wait(read.close)
        self._writer.shutdown(wait=True)
        self._read = self._write = None
        logger.info("Closed gateway")

    def _open_store(self, store_name: str, on_ready: Callable[[], None] | None) -> None:
        try:
            db_path = store_db_path(store_name, self._data_root)
            store = SqliteStore(db_path, busy_timeout=self._busy_timeout)
            store.initialize()
        except StoreInitError as exc:
            self._fail(exc)
            raise
        except (SafetyViolationError, sqlite3.Error, OSError) as exc:
            error = StoreInitError(f"Cannot open store {store_name!r}: {exc}")
            error.__cause__ = exc
            self._fail(error)
            raise error from exc

        read = ObjectContext(
            store, self._main, name="read", clock=self._clock, fatal_handler=self._fatal_handler
        )
        write = ObjectContext(
            store, self._writer, name="write", clock=self._clock, fatal_handler=self._fatal_handler
        )
        store.attach(read)
        store.attach(write)
        self._store, self._read, self._write = store, read, write
        logger.info("Opened store %r at %s", store_name, store.db_path)

        if on_ready is not None:
            self._main.submit(on_ready)

    def _fail(self, exc: StoreInitError) -> None:
        logger.critical("%s", exc)
        self._fatal_handler(exc)
