"""
Entity model for notebooks and notes.

Entities are plain mutable objects owned by exactly one ObjectContext. They are
never shared across affinities; code that needs an entity elsewhere hands over
its ``object_id`` and re-resolves it in the target context.

Entities compare by identity. Within one context the identity map guarantees a
single live object per ``object_id``.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Union

from notebook_engine.payload import DEFAULT_NOTE_TEXT, RichText, coerce_rich_text


class EntityKind(str, Enum):
    """Persisted entity types."""

    NOTEBOOK = "notebook"
    NOTE = "note"


@dataclass(frozen=True, slots=True, order=True)
class ObjectId:
    """
    Stable, thread-safe identity of a persisted entity.

    Attributes
    ----------
    kind:
        Entity type.
    key:
        Primary key in the entity's table.
    """

    kind: EntityKind
    key: str

    @classmethod
    def new(cls, kind: EntityKind) -> ObjectId:
        """Return a fresh identifier for a new entity of ``kind``."""
        return cls(kind=kind, key=uuid.uuid4().hex)

    def __str__(self) -> str:
        return f"{self.kind.value}/{self.key}"


@dataclass(eq=False)
class Notebook:
    """A named collection of notes."""

    object_id: ObjectId
    name: str
    creation_date: datetime

    kind = EntityKind.NOTEBOOK


@dataclass(eq=False)
class Note:
    """A rich-text note belonging to exactly one notebook."""

    object_id: ObjectId
    notebook_id: ObjectId
    body: RichText = field(default_factory=lambda: RichText.plain(DEFAULT_NOTE_TEXT))
    creation_date: datetime | None = None

    kind = EntityKind.NOTE

    @property
    def preview(self) -> str:
        """One-line excerpt of the body."""
        return self.body.preview()


Entity = Union[Notebook, Note]

# Attributes that are persisted; changes to these make an entity dirty.
PERSISTED_FIELDS: dict[EntityKind, tuple[str, ...]] = {
    EntityKind.NOTEBOOK: ("name", "creation_date"),
    EntityKind.NOTE: ("notebook_id", "body", "creation_date"),
}


def snapshot(entity: Entity) -> tuple[object, ...]:
    """Return the persisted attribute values of ``entity``."""
    return tuple(getattr(entity, name) for name in PERSISTED_FIELDS[entity.kind])


def restore(entity: Entity, values: tuple[object, ...]) -> None:
    """Overwrite the persisted attributes of ``entity`` from a snapshot."""
    for name, value in zip(PERSISTED_FIELDS[entity.kind], values):
        setattr(entity, name, value)


def apply_payload(entity: Entity, payload: object) -> None:
    """
    Apply an edit payload to an entity.

    Notes take a ``RichText`` or ``str`` body; notebooks take a new name.
    """
    if isinstance(entity, Note):
        entity.body = coerce_rich_text(payload)  # type: ignore[arg-type]
        return
    if not isinstance(payload, str) or not payload.strip():
        raise ValueError("Notebook name must be a non-empty string.")
    entity.name = payload
