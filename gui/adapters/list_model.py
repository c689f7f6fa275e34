"""Qt item model over an ObservedListAdapter.

ObservedListModel is the view layer for an unsectioned adapter. It keeps its own
copy of the displayed rows and applies each adapter batch to that copy with the
begin/end notifications Qt views expect:

1. removals, highest old row first (deleted rows and move sources),
2. insertions, lowest new row first (inserted rows and move targets),
3. ``dataChanged`` for reloaded rows at their new position.

Display data comes from the adapter's render callback, called with a dict keyed
by Qt item data role.
"""

from __future__ import annotations

from typing import Any, Sequence, Union

from PySide6.QtCore import QAbstractListModel, QModelIndex, QObject, QPersistentModelIndex, Qt

from notebook_engine.adapter import ObservedListAdapter
from notebook_engine.changes import IndexPath
from notebook_engine.models import Entity

ModelIndex = Union[QModelIndex, QPersistentModelIndex]


class ObservedListModel(QAbstractListModel):
    """QAbstractListModel that implements the engine's ListView contract."""

    def __init__(self, parent: QObject | None = None) -> None:
        super().__init__(parent)
        self._adapter: ObservedListAdapter | None = None
        self._rows: list[Entity] = []
        self._removed: list[int] = []
        self._inserted: list[int] = []
        self._reloaded: list[Entity] = []

    def attach(self, adapter: ObservedListAdapter) -> None:
        """Display ``adapter``'s rows. Only unsectioned adapters are supported."""
        if adapter.section_key is not None:
            raise ValueError("ObservedListModel only displays unsectioned adapters.")
        self._adapter = adapter
        self.reset_from_adapter()

    def reset_from_adapter(self) -> None:
        """Reload every row, e.g. after the adapter was re-bound."""
        self.beginResetModel()
        self._rows = self._adapter.rows(0) if self._adapter is not None else []
        self.endResetModel()

    def entity(self, row: int) -> Entity:
        return self._rows[row]

    # --- QAbstractListModel ---

    def rowCount(self, parent: ModelIndex = QModelIndex()) -> int:
        if parent.isValid():
            return 0
        return len(self._rows)

    def data(self, index: ModelIndex, role: int = Qt.ItemDataRole.DisplayRole) -> Any:
        if self._adapter is None or not index.isValid() or not 0 <= index.row() < len(self._rows):
            return None
        cells: dict[int, Any] = {}
        self._adapter.render_entity(cells, self._rows[index.row()])
        return cells.get(int(role))

    # --- ListView ---

    def begin_updates(self) -> None:
        self._removed, self._inserted, self._reloaded = [], [], []

    def insert_sections(self, indexes: Sequence[int]) -> None:
        raise ValueError("ObservedListModel has a single implicit section.")

    def delete_sections(self, indexes: Sequence[int]) -> None:
        raise ValueError("ObservedListModel has a single implicit section.")

    def insert_rows(self, paths: Sequence[IndexPath]) -> None:
        self._inserted.extend(p.row for p in paths)

    def delete_rows(self, paths: Sequence[IndexPath]) -> None:
        self._removed.extend(p.row for p in paths)

    def reload_rows(self, paths: Sequence[IndexPath]) -> None:
        self._reloaded.extend(self._rows[p.row] for p in paths)

    def move_row(self, old: IndexPath, new: IndexPath) -> None:
        self._removed.append(old.row)
        self._inserted.append(new.row)

    def end_updates(self) -> None:
        assert self._adapter is not None
        root = QModelIndex()

        for row in sorted(set(self._removed), reverse=True):
            self.beginRemoveRows(root, row, row)
            del self._rows[row]
            self.endRemoveRows()

        current = self._adapter.rows(0)
        for row in sorted(set(self._inserted)):
            self.beginInsertRows(root, row, row)
            self._rows.insert(row, current[row])
            self.endInsertRows()

        for entity in self._reloaded:
            if entity in self._rows:
                model_index = self.index(self._rows.index(entity), 0)
                self.dataChanged.emit(model_index, model_index)
