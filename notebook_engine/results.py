"""
Live queries.

A LiveQuery executes a QueryDescriptor in a context, groups the results into
sections and keeps them current: whenever its context applies a ChangeSet that
touches the queried entity kind, it refetches, diffs the old and new result
sets and replays the difference to its delegate as one bracketed batch.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, fields
from enum import Enum
from typing import TYPE_CHECKING

from notebook_engine.changes import ChangeBatch, ChangeSet, IndexPath, compute_changes
from notebook_engine.errors import AdapterStateError, QueryExecutionError
from notebook_engine.models import Entity, EntityKind, Note, Notebook, ObjectId
from notebook_engine.observers import ChangeObserver, Subscription
from notebook_engine.query import QueryDescriptor

if TYPE_CHECKING:
    from notebook_engine.context import ObjectContext

logger = logging.getLogger(__name__)

_ENTITY_TYPES: dict[EntityKind, type] = {EntityKind.NOTEBOOK: Notebook, EntityKind.NOTE: Note}


class LiveQueryState(str, Enum):
    """Lifecycle of a live query."""

    UNFETCHED = "unfetched"
    ACTIVE = "active"
    RELEASED = "released"


@dataclass(frozen=True, slots=True)
class SectionInfo:
    """One section of a result set."""

    name: str
    objects: tuple[Entity, ...]

    @property
    def number_of_objects(self) -> int:
        return len(self.objects)


class LiveQuery:
    """
    Sectioned, self-updating result set of a query.

    Parameters
    ----------
    context:
        Context the query runs in. All calls must happen on its affinity.
    query:
        What to fetch.
    section_key:
        Entity attribute whose value groups rows into sections, or None for a
        single section. Sections appear in the order their first row sorts.
    cache_name:
        Key under which the query observes its context. A second live query
        with the same key on the same context replaces this one's observation.
    """

    def __init__(
        self,
        context: ObjectContext,
        query: QueryDescriptor,
        *,
        section_key: str | None = None,
        cache_name: str | None = None,
    ) -> None:
        self._context = context
        self._query = query
        self._section_key = section_key
        self._cache_name = cache_name or f"live-query-{id(self):x}"
        self._sections: tuple[SectionInfo, ...] = ()
        self._subscription: Subscription[ChangeSet] | None = None
        self._state = LiveQueryState.UNFETCHED
        self.delegate: ChangeObserver | None = None

    @property
    def query(self) -> QueryDescriptor:
        return self._query

    @property
    def section_key(self) -> str | None:
        return self._section_key

    @property
    def cache_name(self) -> str:
        return self._cache_name

    @property
    def state(self) -> LiveQueryState:
        return self._state

    @property
    def sections(self) -> tuple[SectionInfo, ...]:
        self._require_active()
        return self._sections

    @property
    def fetched_objects(self) -> list[Entity]:
        self._require_active()
        return [obj for section in self._sections for obj in section.objects]

    def perform_fetch(self) -> None:
        """
        Execute the query and start observing the context.

        Raises
        ------
        QueryExecutionError
            If the query or section key is malformed, or the fetch fails.
        """
        if self._section_key is not None:
            entity_type = _ENTITY_TYPES[self._query.entity]
            if self._section_key not in {f.name for f in fields(entity_type)}:
                raise QueryExecutionError(
                    f"Unknown section key {self._section_key!r} for {self._query.entity.value!r}"
                )
        self._sections = self._build_sections(self._context.execute(self._query))
        self._subscription = self._context.observe(self._cache_name, self._on_changes)
        self._state = LiveQueryState.ACTIVE
        logger.debug(
            "Live query %s fetched %d rows in %d sections",
            self._cache_name,
            sum(s.number_of_objects for s in self._sections),
            len(self._sections),
        )

    def object_at(self, path: IndexPath) -> Entity:
        """
        Return the entity at ``path``.

        Raises
        ------
        IndexError
            If ``path`` is outside the current result set.
        """
        self._require_active()
        if not 0 <= path.section < len(self._sections):
            raise IndexError(f"No section {path.section}")
        objects = self._sections[path.section].objects
        if not 0 <= path.row < len(objects):
            raise IndexError(f"No row {path.row} in section {path.section}")
        return objects[path.row]

    def index_path_for(self, entity: Entity) -> IndexPath | None:
        """Return the position of ``entity``, or None if it is not in the result set."""
        self._require_active()
        for s, section in enumerate(self._sections):
            for r, obj in enumerate(section.objects):
                if obj is entity:
                    return IndexPath(s, r)
        return None

    def release(self) -> None:
        """Stop observing the context and drop the result set."""
        if self._subscription is not None:
            self._subscription.cancel()
            self._subscription = None
        self._sections = ()
        self._state = LiveQueryState.RELEASED
        logger.debug("Released live query %s", self._cache_name)

    def _on_changes(self, changes: ChangeSet) -> None:
        if self._state is not LiveQueryState.ACTIVE or not changes.affects(self._query.entity):
            return

        new_sections = self._build_sections(self._context.execute(self._query))
        batch = compute_changes(
            self._section_ids(self._sections), self._section_ids(new_sections), changes.updated
        )
        if batch.is_empty:
            self._sections = new_sections
            return

        logger.debug(
            "Live query %s applying %d section and %d row changes",
            self._cache_name,
            len(batch.sections),
            len(batch.rows),
        )
        delegate = self.delegate
        if delegate is None:
            self._sections = new_sections
            return

        delegate.on_batch_begin()
        self._sections = new_sections
        self._replay(delegate, batch)
        delegate.on_batch_end()

    @staticmethod
    def _replay(delegate: ChangeObserver, batch: ChangeBatch) -> None:
        for section_change in batch.sections:
            delegate.on_section_change(section_change.kind, section_change.index)
        for row_change in batch.rows:
            delegate.on_row_change(row_change.kind, row_change.old, row_change.new)

    def _build_sections(self, objects: list[Entity]) -> tuple[SectionInfo, ...]:
        if self._section_key is None:
            return (SectionInfo(name="", objects=tuple(objects)),)

        grouped: dict[str, list[Entity]] = {}
        for obj in objects:
            grouped.setdefault(_section_name(getattr(obj, self._section_key)), []).append(obj)
        return tuple(SectionInfo(name=name, objects=tuple(objs)) for name, objs in grouped.items())

    @staticmethod
    def _section_ids(sections: tuple[SectionInfo, ...]) -> list[tuple[str, list[ObjectId]]]:
        return [(s.name, [obj.object_id for obj in s.objects]) for s in sections]

    def _require_active(self) -> None:
        if self._state is not LiveQueryState.ACTIVE:
            raise AdapterStateError(f"Live query {self._cache_name} is {self._state.value}")


def _section_name(value: object) -> str:
    if isinstance(value, ObjectId):
        return value.key
    return "" if value is None else str(value)
