"""
Query descriptors.

A QueryDescriptor names an entity kind, an optional equality predicate and a
sort order. It is immutable and compiles to a parameterized SQL statement.
Field names are checked against a per-entity allowlist when the statement is
built, so a malformed descriptor fails at bind time with QueryExecutionError.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from notebook_engine.clock import to_storage_timestamp
from notebook_engine.errors import QueryExecutionError
from notebook_engine.models import EntityKind, Notebook, ObjectId

_TABLES: dict[EntityKind, str] = {
    EntityKind.NOTEBOOK: "notebooks",
    EntityKind.NOTE: "notes",
}

_COLUMNS: dict[EntityKind, str] = {
    EntityKind.NOTEBOOK: "id, name, creation_date",
    EntityKind.NOTE: "id, notebook_id, body, creation_date",
}

# Public field name -> column.
_FIELDS: dict[EntityKind, dict[str, str]] = {
    EntityKind.NOTEBOOK: {"id": "id", "name": "name", "creation_date": "creation_date"},
    EntityKind.NOTE: {
        "id": "id",
        "notebook": "notebook_id",
        "notebook_id": "notebook_id",
        "creation_date": "creation_date",
    },
}


@dataclass(frozen=True, slots=True)
class Predicate:
    """Equality filter ``field == value``."""

    field: str
    value: Any


@dataclass(frozen=True, slots=True)
class SortDescriptor:
    """Sort key for a query."""

    key: str
    ascending: bool = True


NEWEST_FIRST = (SortDescriptor("creation_date", ascending=False),)


@dataclass(frozen=True, slots=True)
class QueryDescriptor:
    """
    Immutable description of a live query.

    Attributes
    ----------
    entity:
        Entity kind to fetch.
    predicate:
        Optional equality filter.
    sort:
        Sort descriptors, applied in order. Rows with equal sort keys are
        ordered by id so results are deterministic.
    """

    entity: EntityKind
    predicate: Predicate | None = None
    sort: tuple[SortDescriptor, ...] = NEWEST_FIRST

    @classmethod
    def all_notebooks(cls) -> QueryDescriptor:
        """All notebooks, newest first."""
        return cls(entity=EntityKind.NOTEBOOK)

    @classmethod
    def all_notes(cls) -> QueryDescriptor:
        """All notes across notebooks, newest first."""
        return cls(entity=EntityKind.NOTE)

    @classmethod
    def notes_in(cls, notebook: Notebook | ObjectId) -> QueryDescriptor:
        """Notes belonging to ``notebook``, newest first."""
        notebook_id = notebook.object_id if isinstance(notebook, Notebook) else notebook
        return cls(entity=EntityKind.NOTE, predicate=Predicate("notebook", notebook_id))

    def to_sql(self) -> tuple[str, tuple[Any, ...]]:
        """
        Compile to a SELECT statement and its parameters.

        Raises
        ------
        QueryExecutionError
            If the predicate or a sort key names an unknown field.
        """
        fields = _FIELDS[self.entity]
        sql = f"SELECT {_COLUMNS[self.entity]} FROM {_TABLES[self.entity]}"
        params: tuple[Any, ...] = ()

        if self.predicate is not None:
            column = _column(fields, self.predicate.field, self.entity)
            sql += f" WHERE {column} = ?"
            params = (_sql_value(self.predicate.value),)

        order = [
            f"{_column(fields, s.key, self.entity)} {'ASC' if s.ascending else 'DESC'}"
            for s in self.sort
        ]
        order.append("id ASC")
        sql += " ORDER BY " + ", ".join(order)
        return sql, params


def table_for(kind: EntityKind) -> str:
    """Return the SQL table holding entities of ``kind``."""
    return _TABLES[kind]


def _column(fields: dict[str, str], name: str, entity: EntityKind) -> str:
    try:
        return fields[name]
    except KeyError:
        raise QueryExecutionError(f"Unknown field {name!r} for entity {entity.value!r}") from None


def _sql_value(value: Any) -> Any:
    if isinstance(value, ObjectId):
        return value.key
    if isinstance(value, Notebook):
        return value.object_id.key
    if isinstance(value, datetime):
        return to_storage_timestamp(value)
    return value
