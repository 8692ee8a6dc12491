"""
Simulation Output Log
=====================
Holds the formatted results of one model run.

Layout (row-major, all cells are strings):
    row 0:  "", "Initial", N, "Eps", Eps
    row 1:  "", id of each reported stage
    row 2:  "Iter", name of each reported stage
    row 3+: iteration number, population reaching each reported stage

The raw populations are kept alongside as a float array for plotting and
further statistics.
"""
from __future__ import annotations

from dataclasses import dataclass
import html
from typing import List, Sequence, TYPE_CHECKING

import numpy as np

from stox.config import (
    ITERATION_WIDTH,
    OUTPUT_HEADER_ROWS,
    OUTPUT_MIN_COLUMNS,
    POPULATION_DECIMALS,
    POPULATION_WIDTH,
)
from stox.model.errors import OutOfRange

if TYPE_CHECKING:
    import numpy.typing as npt


def format_number(value: float) -> str:
    """Short general number format used in the header row."""
    return f"{value:g}"


def format_population(value: float) -> str:
    return f"{value:{POPULATION_WIDTH}.{POPULATION_DECIMALS}f}"


def format_iteration(i: int) -> str:
    return f"{i:{ITERATION_WIDTH}d}"


@dataclass(frozen=True)
class ReportedStage:
    handle: int
    hierarchical_id: str
    name: str


class OutputLog:
    """Fixed-size table of formatted values for one run."""

    def __init__(
        self,
        initial_population: float,
        epsilon: float,
        iterations: int,
        stages: Sequence[ReportedStage]
    ) -> None:
        self.initial_population = initial_population
        self.epsilon = epsilon
        self.iterations = iterations
        self.stages: List[ReportedStage] = list(stages)
        self.completed_iterations: int = 0
        self.cancelled: bool = False

        self.n_rows = iterations + OUTPUT_HEADER_ROWS
        self.n_cols = max(OUTPUT_MIN_COLUMNS, len(self.stages) + 1)
        self._cells: List[List[str]] = [[""] * self.n_cols for _ in range(self.n_rows)]
        self.populations: npt.NDArray[np.float64] = np.full(
            (iterations, len(self.stages)), np.nan, dtype=np.float64
        )
        self._write_header()

    def _write_header(self) -> None:
        self._cells[0][1] = "Initial"
        self._cells[0][2] = format_number(self.initial_population)
        self._cells[0][3] = "Eps"
        self._cells[0][4] = format_number(self.epsilon)
        self._cells[2][0] = "Iter"
        for col, stage in enumerate(self.stages, start=1):
            self._cells[1][col] = stage.hierarchical_id
            self._cells[2][col] = stage.name

    # --- Cell access ---

    def read_cell(self, r: int, c: int) -> str:
        if not (0 <= r < self.n_rows) or not (0 <= c < self.n_cols):
            raise OutOfRange(f"Cell ({r}, {c}) is outside the output of shape {self.n_rows}x{self.n_cols}.")
        return self._cells[r][c]

    def rows(self) -> List[List[str]]:
        return [list(row) for row in self._cells]

    def record_iteration(self, iteration: int, values: Sequence[float]) -> int:
        """
        Store the populations of iteration (1-based) and return its row index.
        """
        if not 1 <= iteration <= self.iterations:
            raise OutOfRange(f"Iteration {iteration} is outside the run of {self.iterations} iterations.")
        if len(values) != len(self.stages):
            raise ValueError(f"Expected {len(self.stages)} populations, got {len(values)}.")

        row = iteration + OUTPUT_HEADER_ROWS - 1
        self._cells[row][0] = format_iteration(iteration)
        for col, value in enumerate(values, start=1):
            self._cells[row][col] = format_population(value)
        self.populations[iteration - 1, :] = values
        self.completed_iterations = max(self.completed_iterations, iteration)
        return row

    def completed_populations(self) -> npt.NDArray[np.float64]:
        return self.populations[:self.completed_iterations]

    # --- Export ---

    def to_tsv(self) -> str:
        """Tab separated dump of every cell, one line per row."""
        return "".join("\t".join(row) + "\n" for row in self._cells)

    def to_html(self) -> str:
        """Minimal HTML table with the same cells as to_tsv."""
        lines = ["<html><table>"]
        for row in self._cells:
            cells = "".join(f"<td>{html.escape(cell)}</td>" for cell in row)
            lines.append(f"<tr>{cells}</tr>")
        lines.append("</table></html>")
        return "\n".join(lines) + "\n"
