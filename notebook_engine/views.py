"""
View-layer contract.

The adapter never draws anything. It drives an object implementing ListView,
which must apply every operation between ``begin_updates`` and
``end_updates`` atomically. Row paths follow the usual batch convention:
deletes, reloads and move sources are old coordinates, inserts and move
targets are new coordinates.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol, Sequence

from notebook_engine.changes import IndexPath


class ListView(Protocol):
    """A sectioned list that can apply batched, animated updates."""

    def begin_updates(self) -> None: ...

    def end_updates(self) -> None: ...

    def insert_sections(self, indexes: Sequence[int]) -> None: ...

    def delete_sections(self, indexes: Sequence[int]) -> None: ...

    def insert_rows(self, paths: Sequence[IndexPath]) -> None: ...

    def delete_rows(self, paths: Sequence[IndexPath]) -> None: ...

    def reload_rows(self, paths: Sequence[IndexPath]) -> None: ...

    def move_row(self, old: IndexPath, new: IndexPath) -> None: ...


@dataclass(frozen=True, slots=True)
class ViewOp:
    """One recorded view operation."""

    name: str
    args: tuple[object, ...] = ()


@dataclass
class RecordingView:
    """
    ListView that records operations instead of drawing.

    Used by headless hosts (the CLI) and by tests to assert on the exact
    operation stream.
    """

    ops: list[ViewOp] = field(default_factory=list)

    def begin_updates(self) -> None:
        self.ops.append(ViewOp("begin_updates"))

    def end_updates(self) -> None:
        self.ops.append(ViewOp("end_updates"))

    def insert_sections(self, indexes: Sequence[int]) -> None:
        self.ops.append(ViewOp("insert_sections", tuple(indexes)))

    def delete_sections(self, indexes: Sequence[int]) -> None:
        self.ops.append(ViewOp("delete_sections", tuple(indexes)))

    def insert_rows(self, paths: Sequence[IndexPath]) -> None:
        self.ops.append(ViewOp("insert_rows", tuple(paths)))

    def delete_rows(self, paths: Sequence[IndexPath]) -> None:
        self.ops.append(ViewOp("delete_rows", tuple(paths)))

    def reload_rows(self, paths: Sequence[IndexPath]) -> None:
        self.ops.append(ViewOp("reload_rows", tuple(paths)))

    def move_row(self, old: IndexPath, new: IndexPath) -> None:
        self.ops.append(ViewOp("move_row", (old, new)))

    def names(self) -> list[str]:
        """Return the recorded operation names in order."""
        return [op.name for op in self.ops]

    def clear(self) -> None:
        self.ops.clear()
