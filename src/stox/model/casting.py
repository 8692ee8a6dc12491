"""
Casting Tables
==============
Defines the named probability matrices that govern how a stage splits its
incoming population among its following stages.

Each row of a casting is one observed (or assumed) distribution; each column
corresponds to one following stage. Several rows allow the simulation to
bootstrap, picking one row at random per iteration.
"""
from __future__ import annotations

import logging
import math
from typing import List, Optional, Sequence, TYPE_CHECKING

import numpy as np

from stox.config import ROW_SUM_TOLERANCE
from stox.model.errors import OutOfRange

if TYPE_CHECKING:
    import numpy.typing as npt

logger = logging.getLogger(__name__)


class CastingTable:
    """
    A named rows x cols matrix of transition probabilities stored as float32.

    Tables are always created empty and then filled with one of the fill_*
    methods. The shape never changes except through a full re-fill.
    """

    def __init__(self, name: str = "") -> None:
        self.name: str = name
        self._values: npt.NDArray[np.float32] = np.zeros((0, 0), dtype=np.float32)

    def __repr__(self) -> str:
        return f"CastingTable(name={self.name!r}, rows={self.rows}, cols={self.cols})"

    # --- Shape ---

    @property
    def rows(self) -> int:
        return int(self._values.shape[0])

    @property
    def cols(self) -> int:
        return int(self._values.shape[1])

    @property
    def values(self) -> npt.NDArray[np.float32]:
        """Read-only view of the cell values."""
        view = self._values.view()
        view.flags.writeable = False
        return view

    # --- Filling ---

    def fill_zeroes(self, rows: int, cols: int, name: Optional[str] = None) -> None:
        """Reset to a rows x cols table of zeroes."""
        if rows < 1 or cols < 1:
            raise ValueError(f"Casting shape must be at least 1x1, got {rows}x{cols}.")
        if name is not None:
            self.name = name
        self._values = np.zeros((rows, cols), dtype=np.float32)

    def fill_from_copy(self, source: CastingTable, name: Optional[str] = None) -> None:
        """Take the shape and values of another table."""
        if name is not None:
            self.name = name
        self._values = source._values.astype(np.float32, copy=True)

    def fill_from_raw(self, buffer: Sequence[float] | npt.ArrayLike, rows: int, cols: int) -> None:
        """
        Fill from a row-major flat buffer of rows*cols values.

        Values are stored as given (no clamping), so pasted or loaded data
        keeps whatever rows sums it had; validation reports leaking rows.
        """
        if rows < 1 or cols < 1:
            raise ValueError(f"Casting shape must be at least 1x1, got {rows}x{cols}.")
        flat = np.asarray(buffer, dtype=np.float32).ravel()
        if flat.size != rows * cols:
            raise ValueError(f"Expected {rows * cols} values for a {rows}x{cols} casting, got {flat.size}.")
        self._values = flat.reshape((rows, cols)).copy()

    def copy(self, name: Optional[str] = None) -> CastingTable:
        table = CastingTable(self.name if name is None else name)
        table.fill_from_copy(self)
        return table

    def rename(self, new_name: str) -> None:
        self.name = new_name

    # --- Cell access ---

    def _check_bounds(self, r: int, c: int) -> None:
        if not (0 <= r < self.rows) or not (0 <= c < self.cols):
            raise OutOfRange(
                f"Cell ({r}, {c}) is outside casting '{self.name}' of shape {self.rows}x{self.cols}."
            )

    def read_cell(self, r: int, c: int) -> float:
        self._check_bounds(r, c)
        return float(self._values[r, c])

    def write_cell(self, r: int, c: int, value: float) -> float:
        """
        Write a probability into cell (r, c) and return the value actually stored.

        The value is clamped to [0, 1] and then reduced to the headroom left by
        the other cells of the row, so that the row sum never exceeds 1.0.
        Other cells are never modified. Non-finite values raise ValueError.
        """
        self._check_bounds(r, c)
        if not math.isfinite(value):
            raise ValueError(f"Casting values must be finite numbers, got {value!r}.")
        val = np.float32(min(max(float(value), 0.0), 1.0))

        row = self._values[r]
        others = np.float32(row.sum(dtype=np.float32) - row[c])
        if others + val > np.float32(1.0):
            val = np.float32(max(np.float32(1.0) - others, np.float32(0.0)))

        row[c] = val
        return float(val)

    def row_sum(self, r: int) -> float:
        if not 0 <= r < self.rows:
            raise OutOfRange(f"Row {r} is outside casting '{self.name}' with {self.rows} rows.")
        return float(self._values[r].sum(dtype=np.float32))

    def leaking_rows(self, tolerance: float = ROW_SUM_TOLERANCE) -> List[int]:
        """Indices of rows whose sum is not finite or differs from 1.0 by more than tolerance."""
        sums = self._values.sum(axis=1, dtype=np.float32)
        leaking = ~np.isfinite(sums) | (np.abs(1.0 - sums) > tolerance)
        return [int(r) for r in np.flatnonzero(leaking)]

    def to_list(self) -> List[List[float]]:
        return [[float(v) for v in row] for row in self._values]

    @staticmethod
    def from_rows(name: str, rows: Sequence[Sequence[float]]) -> CastingTable:
        """Build a table from a list of equally long rows."""
        if not rows or not rows[0]:
            raise ValueError(f"Casting '{name}' needs at least one row and one column.")
        n_cols = len(rows[0])
        if any(len(row) != n_cols for row in rows):
            raise ValueError(f"Casting '{name}' has rows of different lengths.")
        table = CastingTable(name)
        table.fill_from_raw([v for row in rows for v in row], len(rows), n_cols)
        return table
