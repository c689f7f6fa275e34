"""
SQLite store handle.

The store owns the on-disk format and the list of contexts attached to it. It
hands out connections but never uses one itself after initialization.

Threading
---------
sqlite3 connections are not shared across threads. Each ObjectContext opens its
own connection on its own affinity. The store only publishes change sets: for
every attached context other than the origin, it schedules ``merge_changes`` on
that context's affinity.
"""

from __future__ import annotations

import logging
import sqlite3
from functools import partial
from pathlib import Path
from typing import TYPE_CHECKING

from notebook_engine.errors import StoreInitError
from notebook_engine.store.schema import SCHEMA_V1

if TYPE_CHECKING:
    from notebook_engine.changes import ChangeSet
    from notebook_engine.context import ObjectContext

logger = logging.getLogger(__name__)


class SqliteStore:
    """
    SQLite-backed object store.

    Parameters
    ----------
    db_path:
        Path to the SQLite database. Created if absent, along with its parent
        directory.
    busy_timeout:
        Seconds a connection waits on a locked database before failing.
    """

    def __init__(self, db_path: Path, *, busy_timeout: float = 5.0) -> None:
        self._db_path = db_path
        self._busy_timeout = busy_timeout
        self._contexts: tuple[ObjectContext, ...] = ()

    @property
    def db_path(self) -> Path:
        """Return the on-disk path of the database."""
        return self._db_path

    def initialize(self) -> None:
        """
        Create the database file and schema.

        Raises
        ------
        StoreInitError
            If the directory or database cannot be created.
        """
        try:
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
            conn = self.connect()
            try:
                with conn:
                    conn.executescript(SCHEMA_V1)
                    version = conn.execute(
                        "SELECT value FROM store_meta WHERE key = 'schema_version'"
                    ).fetchone()
            finally:
                conn.close()
        except (OSError, sqlite3.Error) as exc:
            raise StoreInitError(f"Cannot initialize store at {self._db_path}: {exc}") from exc

        if version is None or str(version["value"]) != "1":
            raise StoreInitError(f"Unsupported store schema at {self._db_path}")
        logger.info("Initialized store %s", self._db_path)

    def connect(self) -> sqlite3.Connection:
        """Open a new connection with row access by name and foreign keys on."""
        conn = sqlite3.connect(self._db_path, timeout=self._busy_timeout)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    def attach(self, context: ObjectContext) -> None:
        """Register a context to receive change sets committed by its peers."""
        if context not in self._contexts:
            self._contexts = self._contexts + (context,)

    def detach(self, context: ObjectContext) -> None:
        """Stop delivering change sets to ``context``."""
        self._contexts = tuple(c for c in self._contexts if c is not context)

    def publish(self, origin: ObjectContext, changes: ChangeSet) -> None:
        """
        Schedule ``changes`` onto every attached context except ``origin``.

        Delivery is always asynchronous: each peer merges on its own affinity.
        """
        for context in self._contexts:
            if context is origin:
                continue
            logger.debug("Scheduling %s onto context %s", changes, context.name)
            context.perform(partial(context.deliver_merge, changes))
