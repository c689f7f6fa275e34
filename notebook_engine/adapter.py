"""
Observed list adapter.

The adapter binds a live query to a list view:

- the view asks it for section and row counts and for row content;
- user actions call its mutation methods, which go through the read context
  (small edits) or the write context (edits with an expensive payload);
- committed changes come back through the live query, which drives the
  adapter's ChangeObserver callbacks; the adapter validates the batch and
  forwards it to the view.

State machine::

    UNINITIALIZED -> BOUND -> OBSERVING <-> REACTING
                                  |
                              RELEASED --(rebind)--> BOUND

Two behaviours are kept as explicit options rather than fixed:

- ``CommitMode.FIRE_AND_FORGET`` (default) returns from ``delete`` before the
  commit lands; ``CommitMode.AWAIT`` commits before returning.
- ``SupersessionPolicy.LAST_COMMIT_WINS`` (default) lets an ``update_async``
  that started before a newer edit overwrite it when its commit lands last;
  ``SupersessionPolicy.DISCARD_STALE`` drops such stale results instead.
"""

from __future__ import annotations

import itertools
import logging
import threading
from concurrent.futures import Future
from dataclasses import dataclass
from enum import Enum
from functools import partial
from typing import TYPE_CHECKING, Any, Callable

from notebook_engine.changes import ChangeKind, IndexPath
from notebook_engine.context import ObjectContext
from notebook_engine.errors import (
    AdapterStateError,
    CommitError,
    ProtocolViolationError,
    UnknownEntityError,
)
from notebook_engine.models import Entity, EntityKind, Notebook, ObjectId, apply_payload
from notebook_engine.payload import RichText
from notebook_engine.query import QueryDescriptor
from notebook_engine.results import LiveQuery, SectionInfo
from notebook_engine.views import ListView

if TYPE_CHECKING:
    from notebook_engine.gateway import PersistenceGateway

logger = logging.getLogger(__name__)

RenderFn = Callable[[Any, Entity], None]
CommitErrorHandler = Callable[["CommitFailure"], None]


class AdapterState(str, Enum):
    """Lifecycle of an ObservedListAdapter."""

    UNINITIALIZED = "uninitialized"
    BOUND = "bound"
    OBSERVING = "observing"
    REACTING = "reacting"
    RELEASED = "released"


class CommitMode(str, Enum):
    """Whether a mutation waits for its commit before returning."""

    AWAIT = "await"
    FIRE_AND_FORGET = "fire_and_forget"


class SupersessionPolicy(str, Enum):
    """What happens to an async edit overtaken by a newer edit of the same entity."""

    LAST_COMMIT_WINS = "last_commit_wins"
    DISCARD_STALE = "discard_stale"


class EditingStyle(str, Enum):
    """Editing actions a list view can commit for a row."""

    NONE = "none"
    DELETE = "delete"
    INSERT = "insert"


@dataclass(frozen=True, slots=True)
class AdapterOptions:
    """Commit and supersession behaviour of an adapter."""

    delete_commit: CommitMode = CommitMode.FIRE_AND_FORGET
    supersession: SupersessionPolicy = SupersessionPolicy.LAST_COMMIT_WINS


@dataclass(frozen=True, slots=True)
class CommitFailure:
    """
    A mutation whose commit failed.

    Attributes
    ----------
    operation:
        Adapter method that issued the commit.
    object_ids:
        Entities the operation targeted.
    error:
        The commit error. The pending changes stay in their context and can be
        re-committed with ``ObservedListAdapter.retry_pending``.
    """

    operation: str
    object_ids: tuple[ObjectId, ...]
    error: CommitError


class ObservedListAdapter:
    """
    Keeps a list view in sync with a live query and mutates the underlying store.

    Parameters
    ----------
    gateway:
        Open gateway providing the read and write contexts.
    query:
        Query whose result set is displayed. Bound for the adapter's lifetime.
    view:
        View receiving batched update operations.
    render:
        ``render(container, entity)`` fills a view container (a cell, a role
        dict, a list of lines) for one row.
    section_key:
        Entity attribute used to group rows into sections, or None.
    cache_name:
        Observer key of the live query; re-binding under the same key replaces
        the earlier observation.
    options:
        Commit and supersession behaviour.
    on_commit_error:
        Called on the main affinity with a CommitFailure whenever a commit
        fails.
    """

    def __init__(
        self,
        gateway: PersistenceGateway,
        query: QueryDescriptor,
        *,
        view: ListView,
        render: RenderFn,
        section_key: str | None = None,
        cache_name: str | None = None,
        options: AdapterOptions | None = None,
        on_commit_error: CommitErrorHandler | None = None,
    ) -> None:
        self._read: ObjectContext = gateway.read_context()
        self._write: ObjectContext = gateway.write_context()
        self._query = query
        self._view = view
        self._render = render
        self._section_key = section_key
        self._cache_name = cache_name
        self._options = options or AdapterOptions()
        self._on_commit_error = on_commit_error

        self._state = AdapterState.UNINITIALIZED
        self._live: LiveQuery | None = None
        # Latest edit per entity still in flight; generations are unique per adapter.
        self._edit_generation: dict[ObjectId, int] = {}
        self._generations = itertools.count(1)
        self._generation_lock = threading.Lock()
        self._batch_old_counts: list[int] = []
        self._batch_has_rows = False

        self._bind()

    # ------------------------------------------------------------------
    # Properties

    @property
    def state(self) -> AdapterState:
        return self._state

    @property
    def query(self) -> QueryDescriptor:
        return self._query

    @property
    def section_key(self) -> str | None:
        return self._section_key

    @property
    def options(self) -> AdapterOptions:
        return self._options

    # ------------------------------------------------------------------
    # Reads

    def number_of_sections(self) -> int:
        return len(self._live_query().sections)

    def row_count(self, section: int) -> int:
        info = self.section(section)
        return 0 if info is None else info.number_of_objects

    def section(self, index: int) -> SectionInfo | None:
        """Return section ``index``, or None if it does not exist."""
        sections = self._live_query().sections
        if 0 <= index < len(sections):
            return sections[index]
        return None

    def row(self, path: IndexPath) -> Entity:
        """Return the entity displayed at ``path``."""
        return self._live_query().object_at(path)

    def rows(self, section: int = 0) -> list[Entity]:
        info = self.section(section)
        return [] if info is None else list(info.objects)

    def index_path_for(self, entity: Entity) -> IndexPath | None:
        return self._live_query().index_path_for(entity)

    def render_row(self, container: Any, path: IndexPath) -> Any:
        """Fill ``container`` for the row at ``path`` and return it."""
        return self.render_entity(container, self.row(path))

    def render_entity(self, container: Any, entity: Entity) -> Any:
        """Fill ``container`` for ``entity`` with the render callback and return it."""
        self._render(container, entity)
        return container

    @property
    def is_editable(self) -> bool:
        """True when there is at least one row to edit."""
        first = self.section(0)
        return first is not None and first.number_of_objects > 0

    # ------------------------------------------------------------------
    # Mutations

    def add(self, parent: Notebook | ObjectId | None = None, payload: Any = None) -> bool:
        """
        Create an entity of the query's kind and wait for its commit.

        The new row reaches the view through the change path, not through the
        return value.

        Returns
        -------
        bool
            True if the commit succeeded.
        """
        if self._query.entity is EntityKind.NOTE:
            if parent is None:
                raise ValueError("Adding a note requires its notebook.")
            return self.add_note(parent, payload)
        if parent is not None:
            raise ValueError("Notebooks have no parent.")
        if payload is None:
            raise ValueError("Adding a notebook requires its name.")
        return self.add_notebook(str(payload))

    def add_notebook(self, name: str) -> bool:
        """Create a notebook named ``name`` and wait for its commit."""
        return self._read.perform_and_wait(
            partial(self._create_and_save, "add_notebook", partial(self._read.create_notebook, name))
        )

    def add_note(self, notebook: Notebook | ObjectId, body: RichText | str | None = None) -> bool:
        """Create a note in ``notebook`` and wait for its commit."""
        return self._read.perform_and_wait(
            partial(self._create_and_save, "add_note", partial(self._read.create_note, notebook, body))
        )

    def update_immediate(self, entity: Entity, payload: Any) -> bool:
        """Apply ``payload`` to ``entity`` and commit on the read context."""

        def run() -> bool:
            self._require_read_entity(entity)
            generation = self._bump_generation(entity.object_id)
            try:
                apply_payload(entity, payload)
                return self._save(self._read, "update_immediate", (entity.object_id,))
            finally:
                self._settle_generation(entity.object_id, generation)

        return self._read.perform_and_wait(run)

    def update_async(self, entity: Entity, producer: Callable[[], Any]) -> Future[bool]:
        """
        Compute a payload off the read path and commit it on the write context.

        Only ``entity.object_id`` crosses to the write affinity, where the entity
        is re-resolved. The view hears about the result through the usual change
        path once the merge reaches the main affinity.

        Returns
        -------
        Future[bool]
            True once committed; False if the commit failed or the result was
            discarded as stale. A failed commit is rolled back in the write
            context, so the edit has to be re-issued. Exceptions raised by
            ``producer`` propagate into the future.
        """
        object_id = entity.object_id
        generation = self._bump_generation(object_id)
        policy = self._options.supersession

        def run() -> bool:
            try:
                target = self._write.object_with_id(object_id)
                payload = producer()
                stale = not self._is_latest(object_id, generation)
                if policy is SupersessionPolicy.DISCARD_STALE and stale:
                    logger.warning("Discarding stale async edit of %s", object_id)
                    return False
                apply_payload(target, payload)
                if self._save(self._write, "update_async", (object_id,)):
                    return True
                self._write.rollback()
                return False
            finally:
                self._settle_generation(object_id, generation)

        return self._write.perform(run)

    def delete(self, path: IndexPath) -> Future[bool]:
        """
        Delete the entity currently displayed at ``path``.

        With ``CommitMode.FIRE_AND_FORGET`` the commit is queued on the main
        affinity and the returned future settles later; with ``CommitMode.AWAIT``
        it has settled by the time this returns.
        """
        entity = self.row(path)
        ids = (entity.object_id,)
        with self._generation_lock:
            self._edit_generation.pop(entity.object_id, None)
        self._read.perform_and_wait(partial(self._read.delete, entity))
        save = partial(self._save, self._read, "delete", ids)

        if self._options.delete_commit is CommitMode.AWAIT:
            done: Future[bool] = Future()
            done.set_result(self._read.perform_and_wait(save))
            return done
        return self._read.perform(save)

    def commit_editing(self, style: EditingStyle, path: IndexPath) -> Future[bool] | None:
        """Apply a view-initiated edit, such as swipe-to-delete."""
        if style is EditingStyle.DELETE:
            return self.delete(path)
        logger.debug("Ignoring unsupported editing style %s at %s", style.value, path)
        return None

    def retry_pending(self) -> bool:
        """Re-commit changes left pending in the read context by a failed save."""
        return self._read.perform_and_wait(partial(self._save, self._read, "retry_pending", ()))

    def discard_pending(self) -> None:
        """Drop every change left pending in the read context by a failed save."""
        self._read.perform_and_wait(self._read.rollback)

    # ------------------------------------------------------------------
    # Lifecycle

    def release(self) -> None:
        """Tear down the live query; the adapter can be re-bound later."""
        if self._state is AdapterState.RELEASED:
            return
        if self._state is AdapterState.REACTING:
            raise AdapterStateError("Cannot release an adapter in the middle of a batch")
        live = self._live
        if live is not None:
            self._read.perform_and_wait(live.release)
        self._live = None
        self._state = AdapterState.RELEASED

    def rebind(self) -> None:
        """Re-execute the query after ``release``."""
        if self._state is not AdapterState.RELEASED:
            raise AdapterStateError(f"Only a released adapter can be re-bound (state: {self._state.value})")
        self._bind()

    # ------------------------------------------------------------------
    # ChangeObserver

    def on_batch_begin(self) -> None:
        if self._state is AdapterState.REACTING:
            raise ProtocolViolationError("Batch began while another batch was open")
        if self._state is not AdapterState.OBSERVING:
            raise ProtocolViolationError(f"Batch began while adapter was {self._state.value}")
        self._batch_old_counts = [s.number_of_objects for s in self._live_query().sections]
        self._batch_has_rows = False
        self._state = AdapterState.REACTING
        self._view.begin_updates()

    def on_section_change(self, kind: ChangeKind, index: int) -> None:
        self._require_batch("section change")
        if self._batch_has_rows:
            raise ProtocolViolationError("Section change arrived after row changes in the same batch")
        if kind is ChangeKind.INSERT:
            if not 0 <= index < len(self._live_query().sections):
                raise ProtocolViolationError(f"Inserted section {index} does not exist")
            self._view.insert_sections([index])
        elif kind is ChangeKind.DELETE:
            if not 0 <= index < len(self._batch_old_counts):
                raise ProtocolViolationError(f"Deleted section {index} did not exist")
            self._view.delete_sections([index])
        else:
            raise ProtocolViolationError(f"Unsupported section change kind: {kind!r}")

    def on_row_change(
        self, kind: ChangeKind, old_index: IndexPath | None, new_index: IndexPath | None
    ) -> None:
        self._require_batch("row change")
        self._batch_has_rows = True
        if kind is ChangeKind.INSERT:
            self._view.insert_rows([self._require_new(new_index)])
        elif kind is ChangeKind.DELETE:
            self._view.delete_rows([self._require_old(old_index)])
        elif kind is ChangeKind.UPDATE:
            self._view.reload_rows([self._require_old(old_index)])
        elif kind is ChangeKind.MOVE:
            self._view.move_row(self._require_old(old_index), self._require_new(new_index))
        else:
            raise ProtocolViolationError(f"Unrecognized row change kind: {kind!r}")

    def on_batch_end(self) -> None:
        self._require_batch("batch end")
        self._view.end_updates()
        self._batch_old_counts = []
        self._state = AdapterState.OBSERVING

    # ------------------------------------------------------------------
    # Internals

    def _bind(self) -> None:
        live = LiveQuery(
            self._read, self._query, section_key=self._section_key, cache_name=self._cache_name
        )
        live.delegate = self
        self._read.perform_and_wait(live.perform_fetch)
        self._live = live
        self._state = AdapterState.BOUND
        logger.debug("Adapter bound to %s", live.cache_name)
        self._state = AdapterState.OBSERVING

    def _live_query(self) -> LiveQuery:
        if self._live is None:
            raise AdapterStateError(f"Adapter is {self._state.value}")
        return self._live

    def _create_and_save(self, operation: str, factory: Callable[[], Entity]) -> bool:
        entity = factory()
        if self._save(self._read, operation, (entity.object_id,)):
            return True
        self._read.discard(entity)
        return False

    def _save(self, context: ObjectContext, operation: str, ids: tuple[ObjectId, ...]) -> bool:
        try:
            context.save()
        except CommitError as exc:
            logger.warning("%s could not commit %s: %s", operation, [str(i) for i in ids], exc)
            self._report(CommitFailure(operation=operation, object_ids=ids, error=exc))
            return False
        return True

    def _report(self, failure: CommitFailure) -> None:
        handler = self._on_commit_error
        if handler is None:
            return
        if self._read.affinity.is_current():
            handler(failure)
        else:
            self._read.perform(partial(handler, failure))

    def _bump_generation(self, object_id: ObjectId) -> int:
        with self._generation_lock:
            generation = next(self._generations)
            self._edit_generation[object_id] = generation
        return generation

    def _is_latest(self, object_id: ObjectId, generation: int) -> bool:
        with self._generation_lock:
            return self._edit_generation.get(object_id) == generation

    def _settle_generation(self, object_id: ObjectId, generation: int) -> None:
        with self._generation_lock:
            if self._edit_generation.get(object_id) == generation:
                del self._edit_generation[object_id]

    def _require_read_entity(self, entity: Entity) -> None:
        if self._read.object_with_id(entity.object_id) is not entity:
            raise UnknownEntityError(f"{entity.object_id} does not belong to the read context")

    def _require_batch(self, what: str) -> None:
        if self._state is not AdapterState.REACTING:
            raise ProtocolViolationError(f"{what} arrived outside a batch")

    def _require_old(self, path: IndexPath | None) -> IndexPath:
        counts = self._batch_old_counts
        if path is None or not (0 <= path.section < len(counts) and 0 <= path.row < counts[path.section]):
            raise ProtocolViolationError(f"Old row {path} does not exist")
        return path

    def _require_new(self, path: IndexPath | None) -> IndexPath:
        sections = self._live_query().sections
        if path is None or not (
            0 <= path.section < len(sections) and 0 <= path.row < sections[path.section].number_of_objects
        ):
            raise ProtocolViolationError(f"New row {path} does not exist")
        return path
