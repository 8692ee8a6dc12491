"""
Qt Table Models
===============
Thin PySide6 adapters that let an editing surface show and edit castings and
show the output of a run.

Why is this file needed?
------------------------
1. Separation: The model layer has no knowledge of Qt. These classes only
   forward to it, so every rule (clamping, flags) stays in one place.
2. Responsiveness: A run is synchronous. `make_event_loop_callback` gives the
   engine a progress callback that refreshes the output view and lets Qt
   process pending events (e.g. a Cancel button) between iterations.

Classes:
    CastingTableModel: Editable view of one casting of a Model.
    OutputTableModel: Read-only view of an OutputLog.
"""
from __future__ import annotations

import logging
import math
from typing import Any, Optional, TYPE_CHECKING

from PySide6.QtCore import QAbstractTableModel, QCoreApplication, QModelIndex, Qt, Signal

from stox.config import OUTPUT_HEADER_ROWS

if TYPE_CHECKING:
    from stox.controller.simulation import ProgressCallback
    from stox.model.output import OutputLog
    from stox.model.state import Model

logger = logging.getLogger(__name__)


class CastingTableModel(QAbstractTableModel):
    """Shows the casting `name` of `model`. Edits go through Model.write_cell."""
    cell_edited = Signal(int, int, float)

    def __init__(self, model: Model, name: Optional[str] = None, parent=None) -> None:
        super().__init__(parent)
        self._model = model
        self._name = name

    @property
    def table_name(self) -> Optional[str]:
        return self._name

    def set_table(self, name: Optional[str]) -> None:
        self.beginResetModel()
        self._name = name
        self.endResetModel()

    def _table(self):
        if self._name is None or self._name not in self._model.tables:
            return None
        return self._model.tables[self._name]

    def rowCount(self, parent: QModelIndex = QModelIndex()) -> int:
        table = self._table()
        return 0 if parent.isValid() or table is None else table.rows

    def columnCount(self, parent: QModelIndex = QModelIndex()) -> int:
        table = self._table()
        return 0 if parent.isValid() or table is None else table.cols

    def data(self, index: QModelIndex, role: int = Qt.DisplayRole) -> Any:
        table = self._table()
        if table is None or not index.isValid():
            return None
        if index.row() >= table.rows or index.column() >= table.cols:
            return None
        if role == Qt.TextAlignmentRole:
            return int(Qt.AlignRight | Qt.AlignVCenter)
        if role in (Qt.DisplayRole, Qt.EditRole):
            return table.read_cell(index.row(), index.column())
        return None

    def setData(self, index: QModelIndex, value: Any, role: int = Qt.EditRole) -> bool:
        table = self._table()
        if table is None or not index.isValid() or role != Qt.EditRole:
            return False
        if index.row() >= table.rows or index.column() >= table.cols:
            return False
        try:
            number = float(value)
        except (TypeError, ValueError):
            logger.debug(f"Ignoring non-numeric casting value {value!r}.")
            return False
        if not math.isfinite(number):
            logger.debug(f"Ignoring non-finite casting value {value!r}.")
            return False

        stored = self._model.write_cell(self._name, index.row(), index.column(), number)
        self.dataChanged.emit(index, index, [role])
        self.cell_edited.emit(index.row(), index.column(), stored)
        return True

    def flags(self, index: QModelIndex) -> Qt.ItemFlags:
        if not index.isValid():
            return Qt.ItemIsEnabled
        return super().flags(index) | Qt.ItemIsEditable


class OutputTableModel(QAbstractTableModel):
    """Read-only view of the output of a run."""

    def __init__(self, log: Optional[OutputLog] = None, parent=None) -> None:
        super().__init__(parent)
        self._log = log

    @property
    def log(self) -> Optional[OutputLog]:
        return self._log

    def set_log(self, log: Optional[OutputLog]) -> None:
        self.beginResetModel()
        self._log = log
        self.endResetModel()

    def rowCount(self, parent: QModelIndex = QModelIndex()) -> int:
        return 0 if parent.isValid() or self._log is None else self._log.n_rows

    def columnCount(self, parent: QModelIndex = QModelIndex()) -> int:
        return 0 if parent.isValid() or self._log is None else self._log.n_cols

    def data(self, index: QModelIndex, role: int = Qt.DisplayRole) -> Any:
        if self._log is None or not index.isValid():
            return None
        if index.row() >= self._log.n_rows or index.column() >= self._log.n_cols:
            return None
        if role == Qt.TextAlignmentRole:
            if index.row() < OUTPUT_HEADER_ROWS:
                return int(Qt.AlignCenter | Qt.AlignVCenter)
            return int(Qt.AlignRight | Qt.AlignVCenter)
        if role == Qt.DisplayRole:
            return self._log.read_cell(index.row(), index.column())
        return None

    def refresh_row(self, row: int) -> None:
        if self._log is None:
            return
        self.dataChanged.emit(self.index(row, 0), self.index(row, self._log.n_cols - 1), [Qt.DisplayRole])


def make_event_loop_callback(view: OutputTableModel) -> ProgressCallback:
    """
    Progress callback that shows each finished iteration in `view` and lets
    the Qt event loop run, so the UI stays responsive during a long run.
    """
    def on_iteration(iteration: int, log: OutputLog) -> None:
        if view.log is not log:
            view.set_log(log)
        view.refresh_row(iteration + OUTPUT_HEADER_ROWS - 1)
        QCoreApplication.processEvents()

    return on_iteration
