"""
Object contexts.

An ObjectContext is a unit of work over the store, confined to one affinity:

- an identity map (one live entity per ObjectId),
- pending inserts and deletes,
- snapshot-based dirty tracking for updates,
- its own sqlite3 connection, opened lazily on its affinity.

``save()`` commits everything in one transaction, notifies the context's own
observers synchronously and publishes the resulting ChangeSet to the other
contexts of the store, each of which merges it on its own affinity.
"""

from __future__ import annotations

import logging
import sqlite3
from concurrent.futures import Future
from typing import TYPE_CHECKING, Callable, Hashable, TypeVar

from notebook_engine.affinity import Affinity, perform_and_wait
from notebook_engine.changes import ChangeSet
from notebook_engine.clock import Clock, from_storage_timestamp, to_storage_timestamp
from notebook_engine.errors import (
    AffinityError,
    CommitError,
    FatalEngineError,
    QueryExecutionError,
    StoreNotOpenError,
    UnknownEntityError,
)
from notebook_engine.fatal import FatalHandler
from notebook_engine.models import (
    Entity,
    EntityKind,
    Note,
    Notebook,
    ObjectId,
    restore,
    snapshot,
)
from notebook_engine.observers import ObserverRegistry, Subscription
from notebook_engine.payload import (
    DEFAULT_NOTE_TEXT,
    RichText,
    coerce_rich_text,
    decode_rich_text,
    encode_rich_text,
)
from notebook_engine.query import QueryDescriptor, table_for

if TYPE_CHECKING:
    from notebook_engine.store.sqlite_store import SqliteStore

T = TypeVar("T")

logger = logging.getLogger(__name__)

_SELECT_BY_ID: dict[EntityKind, str] = {
    EntityKind.NOTEBOOK: "SELECT id, name, creation_date FROM notebooks WHERE id = ?",
    EntityKind.NOTE: "SELECT id, notebook_id, body, creation_date FROM notes WHERE id = ?",
}


class ObjectContext:
    """
    Affinity-confined unit of work.

    Parameters
    ----------
    store:
        Store the context reads from and commits to.
    affinity:
        The only execution sequence allowed to use this context.
    name:
        Name used in logs and errors.
    clock:
        Source of ``creation_date`` values for new entities.
    fatal_handler:
        Receives fatal errors raised by observers during change delivery. When
        None they propagate to whoever triggered the delivery.
    """

    def __init__(
        self,
        store: SqliteStore,
        affinity: Affinity,
        *,
        name: str,
        clock: Clock,
        fatal_handler: FatalHandler | None = None,
    ) -> None:
        self._store = store
        self._affinity = affinity
        self._name = name
        self._clock = clock
        self._fatal_handler = fatal_handler
        self._conn: sqlite3.Connection | None = None
        self._closed = False

        self._registered: dict[ObjectId, Entity] = {}
        self._snapshots: dict[ObjectId, tuple[object, ...]] = {}
        self._inserted: dict[ObjectId, Entity] = {}
        self._deleted: dict[ObjectId, Entity] = {}
        self._observers: ObserverRegistry[ChangeSet] = ObserverRegistry()

    @property
    def name(self) -> str:
        return self._name

    @property
    def affinity(self) -> Affinity:
        return self._affinity

    def perform(self, fn: Callable[[], T]) -> Future[T]:
        """Schedule ``fn`` on this context's affinity."""
        return self._affinity.submit(fn)

    def perform_and_wait(self, fn: Callable[[], T]) -> T:
        """Run ``fn`` on this context's affinity and wait for its result."""
        return perform_and_wait(self._affinity, fn)

    # ------------------------------------------------------------------
    # Entities

    def create_notebook(self, name: str) -> Notebook:
        """Insert a new notebook; it is persisted by the next ``save()``."""
        self._check()
        if not name.strip():
            raise ValueError("Notebook name must not be empty.")
        notebook = Notebook(
            object_id=ObjectId.new(EntityKind.NOTEBOOK),
            name=name,
            creation_date=self._clock.now(),
        )
        self._register_insert(notebook)
        return notebook

    def create_note(self, notebook: Notebook | ObjectId, body: RichText | str | None = None) -> Note:
        """
        Insert a new note in ``notebook``; it is persisted by the next ``save()``.

        Raises
        ------
        UnknownEntityError
            If ``notebook`` does not exist or is pending deletion in this context.
        """
        self._check()
        notebook_id = notebook.object_id if isinstance(notebook, Notebook) else notebook
        if notebook_id.kind is not EntityKind.NOTEBOOK:
            raise UnknownEntityError(f"{notebook_id} is not a notebook")
        self.object_with_id(notebook_id)
        note = Note(
            object_id=ObjectId.new(EntityKind.NOTE),
            notebook_id=notebook_id,
            body=coerce_rich_text(body) if body is not None else RichText.plain(DEFAULT_NOTE_TEXT),
            creation_date=self._clock.now(),
        )
        self._register_insert(note)
        return note

    def delete(self, entity: Entity) -> None:
        """Mark ``entity`` for deletion; notebooks take their notes with them."""
        self._check()
        oid = entity.object_id
        if oid in self._inserted:
            del self._inserted[oid]
            del self._registered[oid]
            return
        if self._registered.get(oid) is not entity:
            raise UnknownEntityError(f"{oid} is not registered in context {self._name}")
        self._deleted[oid] = entity

    def discard(self, entity: Entity) -> None:
        """Drop ``entity`` from the pending inserts, e.g. after its commit failed."""
        self._check()
        oid = entity.object_id
        if self._inserted.get(oid) is entity:
            del self._inserted[oid]
            self._registered.pop(oid, None)

    def object_with_id(self, object_id: ObjectId) -> Entity:
        """
        Resolve ``object_id`` to this context's entity, loading it if needed.

        Raises
        ------
        UnknownEntityError
            If the entity does not exist or is pending deletion here.
        """
        self._check()
        if object_id in self._deleted:
            raise UnknownEntityError(f"{object_id} is pending deletion")
        existing = self._registered.get(object_id)
        if existing is not None:
            return existing
        row = self._load_row(object_id)
        if row is None:
            raise UnknownEntityError(f"{object_id} does not exist")
        return self._materialize(object_id.kind, row)

    def owner_of(self, note: Note) -> Notebook:
        """Return the notebook that owns ``note``."""
        owner = self.object_with_id(note.notebook_id)
        assert isinstance(owner, Notebook)
        return owner

    def execute(self, query: QueryDescriptor) -> list[Entity]:
        """
        Run ``query`` against committed data.

        Raises
        ------
        QueryExecutionError
            If the descriptor is malformed or the statement fails.
        """
        self._check()
        sql, params = query.to_sql()
        try:
            rows = self._connection().execute(sql, params).fetchall()
        except sqlite3.Error as exc:
            raise QueryExecutionError(f"Query failed in context {self._name}: {exc}") from exc
        return [self._materialize(query.entity, row) for row in rows]

    # ------------------------------------------------------------------
    # Unit of work

    @property
    def has_changes(self) -> bool:
        self._check()
        return bool(self._inserted or self._deleted or self._dirty_ids())

    def save(self) -> ChangeSet:
        """
        Commit pending changes in one transaction.

        Returns
        -------
        ChangeSet
            What the commit did; empty if there was nothing to save.

        Raises
        ------
        CommitError
            If the transaction fails. Pending changes are kept so the save can
            be retried.
        """
        self._check()
        updated = self._dirty_ids()
        if not (self._inserted or self._deleted or updated):
            return ChangeSet()

        conn = self._connection()
        try:
            with conn:
                conn.execute("BEGIN IMMEDIATE")
                cascaded = self._cascaded_note_ids(conn)
                for entity in self._inserted.values():
                    self._write_row(conn, entity, insert=True)
                for oid in updated:
                    self._write_row(conn, self._registered[oid], insert=False)
                for oid in self._deleted:
                    conn.execute(f"DELETE FROM {table_for(oid.kind)} WHERE id = ?", (oid.key,))
        except sqlite3.Error as exc:
            logger.warning("Context %s failed to commit: %s", self._name, exc)
            raise CommitError(f"Context {self._name} could not commit: {exc}") from exc

        changes = ChangeSet(
            inserted=frozenset(self._inserted),
            updated=frozenset(updated),
            deleted=frozenset(self._deleted) | cascaded,
        )
        for oid, entity in self._inserted.items():
            self._snapshots[oid] = snapshot(entity)
        for oid in updated:
            self._snapshots[oid] = snapshot(self._registered[oid])
        for oid in changes.deleted:
            self._forget(oid)
        self._inserted.clear()
        self._deleted.clear()

        logger.debug("Context %s committed %s", self._name, changes)
        self._notify(changes)
        self._store.publish(self, changes)
        return changes

    def rollback(self) -> None:
        """Discard pending inserts, deletes and attribute edits."""
        self._check()
        for oid in self._inserted:
            self._registered.pop(oid, None)
        self._inserted.clear()
        self._deleted.clear()
        for oid in self._dirty_ids():
            restore(self._registered[oid], self._snapshots[oid])

    def merge_changes(self, changes: ChangeSet) -> None:
        """
        Bring this context up to date with a peer's commit, then notify observers.

        Registered entities that were updated are refreshed in place unless they
        carry local edits; deleted ones are dropped from the identity map.
        """
        self._check()
        dirty = set(self._dirty_ids())
        for oid in changes.deleted:
            self._deleted.pop(oid, None)
            self._forget(oid)
        for oid in changes.updated:
            entity = self._registered.get(oid)
            if entity is None:
                continue
            row = self._load_row(oid)
            if row is None:
                self._forget(oid)
                continue
            values = self._values_from_row(oid.kind, row)
            if oid not in dirty:
                restore(entity, values)
            self._snapshots[oid] = values
        self._notify(changes)

    def deliver_merge(self, changes: ChangeSet) -> None:
        """Merge entry point used by the store; ignores deliveries after close."""
        if self._closed:
            logger.debug("Dropping %s for closed context %s", changes, self._name)
            return
        self.merge_changes(changes)

    # ------------------------------------------------------------------
    # Observation and lifecycle

    def observe(self, key: Hashable, callback: Callable[[ChangeSet], None]) -> Subscription[ChangeSet]:
        """
        Register ``callback`` for every change set this context applies.

        Registering under an existing key replaces the earlier callback.
        """
        self._check()
        return self._observers.register(key, callback)

    def close(self) -> None:
        """Close the connection and stop receiving change sets."""
        if self._closed:
            return
        self._check()
        self._store.detach(self)
        for key in self._observers.keys():
            self._observers.unregister(key)
        if self._conn is not None:
            self._conn.close()
            self._conn = None
        self._closed = True
        logger.debug("Closed context %s", self._name)

    # ------------------------------------------------------------------
    # Internals

    def _check(self) -> None:
        if not self._affinity.is_current():
            raise AffinityError(
                f"Context {self._name} used outside its {self._affinity.name} affinity"
            )
        if self._closed:
            raise StoreNotOpenError(f"Context {self._name} is closed")

    def _connection(self) -> sqlite3.Connection:
        if self._conn is None:
            self._conn = self._store.connect()
        return self._conn

    def _notify(self, changes: ChangeSet) -> None:
        try:
            self._observers.notify(changes)
        except FatalEngineError as exc:
            logger.critical("Fatal error while context %s delivered %s: %s", self._name, changes, exc)
            if self._fatal_handler is None:
                raise
            self._fatal_handler(exc)

    def _register_insert(self, entity: Entity) -> None:
        self._registered[entity.object_id] = entity
        self._inserted[entity.object_id] = entity

    def _forget(self, oid: ObjectId) -> None:
        self._registered.pop(oid, None)
        self._snapshots.pop(oid, None)

    def _dirty_ids(self) -> list[ObjectId]:
        return [
            oid
            for oid, entity in self._registered.items()
            if oid not in self._inserted
            and oid not in self._deleted
            and snapshot(entity) != self._snapshots.get(oid)
        ]

    def _cascaded_note_ids(self, conn: sqlite3.Connection) -> frozenset[ObjectId]:
        notebook_keys = [oid.key for oid in self._deleted if oid.kind is EntityKind.NOTEBOOK]
        if not notebook_keys:
            return frozenset()
        marks = ", ".join("?" for _ in notebook_keys)
        rows = conn.execute(
            f"SELECT id FROM notes WHERE notebook_id IN ({marks})", notebook_keys
        ).fetchall()
        return frozenset(ObjectId(EntityKind.NOTE, str(r["id"])) for r in rows)

    def _write_row(self, conn: sqlite3.Connection, entity: Entity, *, insert: bool) -> None:
        key = entity.object_id.key
        if isinstance(entity, Notebook):
            values = (entity.name, to_storage_timestamp(entity.creation_date))
            if insert:
                conn.execute(
                    "INSERT INTO notebooks(name, creation_date, id) VALUES(?, ?, ?)", (*values, key)
                )
            else:
                conn.execute(
                    "UPDATE notebooks SET name = ?, creation_date = ? WHERE id = ?", (*values, key)
                )
            return

        assert entity.creation_date is not None
        values = (
            entity.notebook_id.key,
            encode_rich_text(entity.body),
            to_storage_timestamp(entity.creation_date),
        )
        if insert:
            conn.execute(
                "INSERT INTO notes(notebook_id, body, creation_date, id) VALUES(?, ?, ?, ?)",
                (*values, key),
            )
        else:
            conn.execute(
                "UPDATE notes SET notebook_id = ?, body = ?, creation_date = ? WHERE id = ?",
                (*values, key),
            )

    def _load_row(self, oid: ObjectId) -> sqlite3.Row | None:
        return self._connection().execute(_SELECT_BY_ID[oid.kind], (oid.key,)).fetchone()

    def _values_from_row(self, kind: EntityKind, row: sqlite3.Row) -> tuple[object, ...]:
        created = from_storage_timestamp(str(row["creation_date"]))
        if kind is EntityKind.NOTEBOOK:
            return (str(row["name"]), created)
        return (
            ObjectId(EntityKind.NOTEBOOK, str(row["notebook_id"])),
            decode_rich_text(bytes(row["body"])),
            created,
        )

    def _materialize(self, kind: EntityKind, row: sqlite3.Row) -> Entity:
        oid = ObjectId(kind, str(row["id"]))
        existing = self._registered.get(oid)
        if existing is not None:
            return existing

        values = self._values_from_row(kind, row)
        entity: Entity
        if kind is EntityKind.NOTEBOOK:
            entity = Notebook(object_id=oid, name=str(values[0]), creation_date=values[1])  # type: ignore[arg-type]
        else:
            entity = Note(object_id=oid, notebook_id=values[0], body=values[1], creation_date=values[2])  # type: ignore[arg-type]
        self._registered[oid] = entity
        self._snapshots[oid] = values
        return entity
