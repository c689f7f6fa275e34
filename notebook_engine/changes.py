"""
Change sets and result-set diffing.

A ``ChangeSet`` describes what one commit did to the store, by object id. A
``ChangeBatch`` describes what that commit did to one ordered, sectioned result
set, in the vocabulary a list view understands:

- section deletes and inserts come first,
- then row deletes (old coordinates), row inserts (new coordinates),
  row moves (old -> new) and in-place updates.

Sections are matched by name. A section whose position relative to the other
surviving sections changed is reported as deleted and
re-inserted.

Moves are the rows whose relative order changed. Rows that only shift because
something was inserted or deleted before them are not reported. The stable rows
are the longest subsequence whose old order is preserved in the new result set.
"""

from __future__ import annotations

from bisect import bisect_left
from dataclasses import dataclass
from enum import Enum
from typing import Collection, Sequence

from notebook_engine.models import EntityKind, ObjectId


class ChangeKind(str, Enum):
    """Kinds of result-set change."""

    INSERT = "insert"
    DELETE = "delete"
    UPDATE = "update"
    MOVE = "move"


@dataclass(frozen=True, slots=True, order=True)
class IndexPath:
    """Position of a row: section index, then row index within the section."""

    section: int
    row: int


@dataclass(frozen=True, slots=True)
class ChangeSet:
    """
    Object ids touched by one committed save.

    Attributes
    ----------
    inserted:
        Ids of newly created entities.
    updated:
        Ids of entities whose persisted attributes changed.
    deleted:
        Ids of removed entities, including cascaded deletions.
    """

    inserted: frozenset[ObjectId] = frozenset()
    updated: frozenset[ObjectId] = frozenset()
    deleted: frozenset[ObjectId] = frozenset()

    @property
    def is_empty(self) -> bool:
        return not (self.inserted or self.updated or self.deleted)

    def affects(self, kind: EntityKind) -> bool:
        """Return True if any touched id is of ``kind``."""
        return any(oid.kind is kind for oid in self.inserted | self.updated | self.deleted)

    def __str__(self) -> str:
        return (
            f"ChangeSet(+{len(self.inserted)} ~{len(self.updated)} -{len(self.deleted)})"
        )


@dataclass(frozen=True, slots=True)
class SectionChange:
    """A section inserted (new index) or deleted (old index)."""

    kind: ChangeKind
    index: int


@dataclass(frozen=True, slots=True)
class RowChange:
    """
    A row-level change.

    ``old`` is set for DELETE, UPDATE and MOVE; ``new`` for INSERT, UPDATE and
    MOVE.
    """

    kind: ChangeKind
    old: IndexPath | None
    new: IndexPath | None


@dataclass(frozen=True, slots=True)
class ChangeBatch:
    """Ordered view operations for one result-set transition."""

    sections: tuple[SectionChange, ...] = ()
    rows: tuple[RowChange, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not (self.sections or self.rows)


SectionIds = tuple[str, Sequence[ObjectId]]


def compute_changes(
    old: Sequence[SectionIds],
    new: Sequence[SectionIds],
    updated: Collection[ObjectId] = (),
) -> ChangeBatch:
    """
    Diff two sectioned result sets.

    Parameters
    ----------
    old:
        ``(section name, ordered ids)`` pairs before the change.
    new:
        ``(section name, ordered ids)`` pairs after the change.
    updated:
        Ids whose attributes changed; stable rows among them become UPDATEs.

    Returns
    -------
    ChangeBatch
        Section changes followed by row changes.
    """
    old_section_of = {name: i for i, (name, _) in enumerate(old)}
    common = [name for name, _ in new if name in old_section_of]
    kept = {common[i] for i in _longest_increasing_run([old_section_of[n] for n in common])}
    deleted_sections = {i for i, (name, _) in enumerate(old) if name not in kept}
    inserted_sections = {i for i, (name, _) in enumerate(new) if name not in kept}

    old_paths = _paths(old)
    new_paths = _paths(new)
    old_flat = {oid: i for i, oid in enumerate(_flatten(old))}

    deletes: list[RowChange] = []
    inserts: list[RowChange] = []

    for oid in _flatten(old):
        path = old_paths[oid]
        if oid not in new_paths and path.section not in deleted_sections:
            deletes.append(RowChange(ChangeKind.DELETE, path, None))

    candidates: list[ObjectId] = []
    for oid in _flatten(new):
        path = new_paths[oid]
        if oid not in old_paths:
            if path.section not in inserted_sections:
                inserts.append(RowChange(ChangeKind.INSERT, None, path))
            continue

        old_path = old_paths[oid]
        left_deleted_section = old_path.section in deleted_sections
        entered_new_section = path.section in inserted_sections
        if left_deleted_section and not entered_new_section:
            inserts.append(RowChange(ChangeKind.INSERT, None, path))
        elif entered_new_section and not left_deleted_section:
            deletes.append(RowChange(ChangeKind.DELETE, old_path, None))
        elif not (left_deleted_section or entered_new_section):
            candidates.append(oid)

    same_section = [
        oid for oid in candidates if old[old_paths[oid].section][0] == new[new_paths[oid].section][0]
    ]
    stable_positions = _longest_increasing_run([old_flat[oid] for oid in same_section])
    stable = {same_section[i] for i in stable_positions}

    moves = [
        RowChange(ChangeKind.MOVE, old_paths[oid], new_paths[oid])
        for oid in candidates
        if oid not in stable
    ]
    updated_ids = set(updated)
    updates = [
        RowChange(ChangeKind.UPDATE, old_paths[oid], new_paths[oid])
        for oid in _flatten(old)
        if oid in stable and oid in updated_ids
    ]

    section_changes = tuple(
        [SectionChange(ChangeKind.DELETE, i) for i in sorted(deleted_sections)]
        + [SectionChange(ChangeKind.INSERT, i) for i in sorted(inserted_sections)]
    )
    return ChangeBatch(sections=section_changes, rows=tuple(deletes + inserts + moves + updates))


def _flatten(sections: Sequence[SectionIds]) -> list[ObjectId]:
    return [oid for _, ids in sections for oid in ids]


def _paths(sections: Sequence[SectionIds]) -> dict[ObjectId, IndexPath]:
    return {
        oid: IndexPath(section, row)
        for section, (_, ids) in enumerate(sections)
        for row, oid in enumerate(ids)
    }


def _longest_increasing_run(values: Sequence[int]) -> set[int]:
    """Return the positions of one longest strictly increasing subsequence."""
    tail_positions: list[int] = []
    tail_values: list[int] = []
    parents = [-1] * len(values)

    for i, value in enumerate(values):
        slot = bisect_left(tail_values, value)
        if slot > 0:
            parents[i] = tail_positions[slot - 1]
        if slot == len(tail_values):
            tail_positions.append(i)
            tail_values.append(value)
        else:
            tail_positions[slot] = i
            tail_values[slot] = value

    result: set[int] = set()
    cursor = tail_positions[-1] if tail_positions else -1
    while cursor != -1:
        result.add(cursor)
        cursor = parents[cursor]
    return result
