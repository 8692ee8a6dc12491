"""
Model State (Data Model)
========================
This module defines the central data structure of an open model.

Why is this file needed?
------------------------
1. State Management: It holds the stage tree, the casting tables and the run
   parameters in one place, together with the 'checked' and 'saved' flags.
2. Rules: Every edit goes through this object, so name conflicts are rejected
   before anything changes and both flags are reset after every change.
3. Persistence: This object is what gets serialized when saving a model.

Classes:
    RunParameters: Initial population, iterations and epsilon.
    Model: The main container class and the interface used by front ends.
"""
from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Any, Dict, List, Optional, Tuple, TYPE_CHECKING

from stox.config import (
    DEFAULT_EPSILON,
    DEFAULT_INITIAL_POPULATION,
    DEFAULT_ITERATIONS,
    RESERVED_NAMES,
    ROOT_NAME,
)
from stox.controller.simulation import CancellationToken, ProgressCallback, SimulationEngine
from stox.model.casting import CastingTable
from stox.model.errors import (
    CloneInProgress,
    DuplicateName,
    EmptySelection,
    ReservedName,
    UnsavedChanges,
)
from stox.model.io import decode_model, encode_model, parse_tabular_text
from stox.model.stages import StageTree
from stox.model.validator import ValidationReport, WarningHandler, validate_model

if TYPE_CHECKING:
    from stox.model.output import OutputLog

logger = logging.getLogger(__name__)


@dataclass
class RunParameters:
    initial_population: float = DEFAULT_INITIAL_POPULATION
    iterations: int = DEFAULT_ITERATIONS
    epsilon: float = DEFAULT_EPSILON


class Model:
    """
    A recruitment model: one stage tree plus its named castings.

    Stages are addressed by the integer handles returned from add_child,
    add_sibling and clone_stage; the Start stage is `model.tree.root`.
    """

    def __init__(self) -> None:
        self.tree = StageTree()
        self.tables: Dict[str, CastingTable] = {}
        self.parameters = RunParameters()
        self.filepath: Optional[str] = None

        self.checked: bool = False
        self.saved: bool = True

        self.last_report: Optional[ValidationReport] = None
        self.last_output: Optional[OutputLog] = None

        self._clone_source: Optional[int] = None
        self._cancel_token: Optional[CancellationToken] = None

    # --- Status flags ---

    def _touch(self) -> None:
        """Any edit invalidates both the check and the saved state."""
        self.checked = False
        self.saved = False

    def mark_saved(self, filepath: Optional[str] = None) -> None:
        self.saved = True
        if filepath is not None:
            self.filepath = filepath

    @property
    def clone_pending(self) -> bool:
        return self._clone_source is not None

    def _require_no_clone(self) -> None:
        if self._clone_source is not None:
            name = self.tree[self._clone_source].name
            raise CloneInProgress(
                f"Replication of '{name}' in process. Complete or abort the replication first."
            )

    def new(self) -> None:
        """Start over with an empty model."""
        self.tree.clear()
        self.tables.clear()
        self.filepath = None
        self._clone_source = None
        self.last_report = None
        self.last_output = None
        self.checked = False
        self.saved = False
        logger.info("Model has been reset.")

    # --- Casting tables ---

    def _check_new_name(self, name: str) -> None:
        if not name:
            raise EmptySelection("Input a name for the casting and try again.")
        if name in RESERVED_NAMES:
            raise ReservedName(f"'{name}' is not allowed as a casting name. Try another one.", name)
        if name in self.tables:
            raise DuplicateName(f"Casting '{name}' already exists.", name)

    def get_table(self, name: str) -> CastingTable:
        if not name or name not in self.tables:
            raise EmptySelection(f"There is no casting '{name}'.")
        return self.tables[name]

    def table_names(self) -> List[str]:
        return sorted(self.tables)

    def create_table(self, name: str, rows: int, cols: int) -> CastingTable:
        self._check_new_name(name)
        table = CastingTable()
        table.fill_zeroes(rows, cols, name)
        self.tables[name] = table
        self._touch()
        logger.debug(f"Created casting '{name}' ({rows}x{cols}).")
        return table

    def duplicate_table(self, source: str, name: str) -> CastingTable:
        original = self.get_table(source)
        self._check_new_name(name)
        table = original.copy(name)
        self.tables[name] = table
        self._touch()
        logger.debug(f"Duplicated casting '{source}' as '{name}'.")
        return table

    def import_table_from_tabular_text(self, text: str, name: str) -> CastingTable:
        self._check_new_name(name)
        rows, cols, values = parse_tabular_text(text)
        table = CastingTable(name)
        table.fill_from_raw(values, rows, cols)
        self.tables[name] = table
        self._touch()
        logger.debug(f"Imported casting '{name}' ({rows}x{cols}) from tabular text.")
        return table

    def add_table(self, table: CastingTable) -> None:
        self._check_new_name(table.name)
        self.tables[table.name] = table
        self._touch()

    def rename_table(self, old: str, new: str) -> int:
        """Rename a casting and every stage reference to it. Returns the stages updated."""
        table = self.get_table(old)
        if new == old:
            return 0
        self._check_new_name(new)

        # Keep insertion order so the file layout stays stable
        self.tables = {(new if k == old else k): v for k, v in self.tables.items()}
        table.rename(new)
        changed = self.tree.replace_casting_ref(old, new)
        self._touch()
        logger.debug(f"Renamed casting '{old}' to '{new}' ({changed} stages updated).")
        return changed

    def delete_table(self, name: str) -> int:
        """
        Delete a casting. Stages using it lose their assignment and need another
        casting before the model checks again. Returns how many stages used it.
        """
        self.get_table(name)
        del self.tables[name]
        users = self.tree.replace_casting_ref(name, "")
        self._touch()
        logger.debug(f"Deleted casting '{name}' (used by {users} stages).")
        return users

    def write_cell(self, name: str, r: int, c: int, value: float) -> float:
        stored = self.get_table(name).write_cell(r, c, value)
        self._touch()
        return stored

    # --- Stages ---

    def _require_stage_name(self, name: str) -> None:
        if not name:
            raise EmptySelection("Input a name for the stage and try again.")

    def add_child(self, parent: int, name: str, kind: str = "", report: bool = False) -> int:
        self._require_stage_name(name)
        handle = self.tree.add_child(parent, name, kind, report)
        self._touch()
        return handle

    def add_sibling(self, reference: int, name: str, kind: str = "", report: bool = False) -> int:
        self._require_stage_name(name)
        handle = self.tree.add_sibling(reference, name, kind, report)
        self._touch()
        return handle

    def rename_stage(self, stage: int, name: str) -> None:
        self._require_stage_name(name)
        self.tree.rename(stage, name)
        self._touch()

    def set_casting(self, stage: int, kind: str) -> None:
        """Assign a reserved kind (Direct, Success, Sink) or the name of a casting."""
        if not kind:
            raise EmptySelection("Please select a casting and try again.")
        self.tree.set_casting(stage, kind)
        self._touch()

    def set_report(self, stage: int, report: bool) -> None:
        self.tree.set_report(stage, report)
        self.saved = False

    def report_all(self) -> None:
        self.tree.set_all_reports(True)
        self.saved = False

    def report_none(self) -> None:
        self.tree.set_all_reports(False)
        self.saved = False

    def report_success(self) -> None:
        self.tree.report_success_only()
        self.saved = False

    def remove_stage(self, stage: int) -> int:
        self._require_no_clone()
        removed = self.tree.remove(stage)
        self._touch()
        return removed

    def clone_stage(self, source: int, destination: int) -> int:
        handle = self.tree.clone(source, destination)
        self._touch()
        return handle

    def begin_clone(self, source: int) -> None:
        """Mark source for replication; the next complete_clone places the copy."""
        self._require_no_clone()
        self.tree.get(source)
        self._clone_source = source
        logger.debug(f"Replicate stage: waiting for a destination for '{self.tree[source].name}'.")

    def complete_clone(self, destination: int) -> int:
        if self._clone_source is None:
            raise EmptySelection("There is no stage waiting to be replicated.")
        handle = self.clone_stage(self._clone_source, destination)
        self._clone_source = None
        return handle

    def abort_clone(self) -> None:
        if self._clone_source is not None:
            logger.debug(f"Replication of stage {self._clone_source} aborted.")
        self._clone_source = None

    # --- Check & run ---

    def validate(self, on_warning: Optional[WarningHandler] = None) -> ValidationReport:
        self._require_no_clone()
        self.checked = False
        report = validate_model(self.tree, self.tables, on_warning=on_warning)
        self.checked = report.ok
        self.last_report = report
        return report

    def run(
        self,
        n: Optional[float] = None,
        iters: Optional[int] = None,
        eps: Optional[float] = None,
        cancel_token: Optional[CancellationToken] = None,
        progress_callback: Optional[ProgressCallback] = None,
        engine: Optional[SimulationEngine] = None,
        require_saved: bool = False
    ) -> OutputLog:
        """
        Run the model. Missing parameters fall back to the stored ones; the
        ones given are stored for the next run.
        """
        if require_saved and not self.saved:
            raise UnsavedChanges("The model has not been saved in its current state.")

        params = RunParameters(
            initial_population=self.parameters.initial_population if n is None else float(n),
            iterations=self.parameters.iterations if iters is None else int(iters),
            epsilon=self.parameters.epsilon if eps is None else float(eps),
        )
        engine = engine or SimulationEngine()
        self._cancel_token = cancel_token or CancellationToken()
        try:
            output = engine.run(
                self,
                n=params.initial_population,
                iters=params.iterations,
                eps=params.epsilon,
                cancel_token=self._cancel_token,
                progress_callback=progress_callback,
            )
        finally:
            self._cancel_token = None

        self.parameters = params
        self.last_output = output
        return output

    def cancel(self) -> None:
        """Ask a run in progress to stop after its current iteration."""
        if self._cancel_token is not None:
            self._cancel_token.cancel()

    # --- Persistence ---

    def save(self) -> bytes:
        return encode_model(self.tree, self.tables)

    def load(self, data: bytes) -> None:
        """Replace the whole model with the one encoded in data."""
        tree, tables = decode_model(data)
        self.tree = tree
        self.tables = tables
        self._clone_source = None
        self.last_report = None
        self.last_output = None
        self.checked = False
        self.saved = True
        logger.info(f"Loaded model with {len(tree)} stages and {len(tables)} castings.")

    # --- Dict description ---

    def to_dict(self) -> Dict[str, Any]:
        # Pre-order visits every parent before its children, in child order
        nodes: Dict[int, Dict[str, Any]] = {}
        for stage in self.tree.iter_preorder():
            node = {
                "name": stage.name,
                "casting": stage.casting_ref,
                "report": stage.report,
                "children": [],
            }
            nodes[stage.handle] = node
            if stage.parent is not None:
                nodes[stage.parent]["children"].append(node)

        return {
            "parameters": {
                "initial": self.parameters.initial_population,
                "iterations": self.parameters.iterations,
                "epsilon": self.parameters.epsilon,
            },
            "tables": [{"name": t.name, "values": t.to_list()} for t in self.tables.values()],
            "tree": nodes[self.tree.root],
        }

    @staticmethod
    def from_dict(data: Dict[str, Any]) -> Model:
        """Build a model from a description such as the one produced by to_dict."""
        model = Model()

        params = data.get("parameters", {})
        model.parameters = RunParameters(
            initial_population=float(params.get("initial", DEFAULT_INITIAL_POPULATION)),
            iterations=int(params.get("iterations", DEFAULT_ITERATIONS)),
            epsilon=float(params.get("epsilon", DEFAULT_EPSILON)),
        )

        for entry in data.get("tables", []):
            model.add_table(CastingTable.from_rows(entry["name"], entry["values"]))

        root = data.get("tree", {})
        tree = model.tree
        tree.rename(tree.root, root.get("name", ROOT_NAME))
        tree.set_casting(tree.root, root.get("casting", ""))
        tree.set_report(tree.root, root.get("report", False))

        pending: List[Tuple[int, Dict[str, Any]]] = [
            (tree.root, child) for child in reversed(root.get("children", []))
        ]
        while pending:
            parent, child = pending.pop()
            handle = model.add_child(
                parent, child["name"], child.get("casting", ""), bool(child.get("report", False))
            )
            pending.extend((handle, grandchild) for grandchild in reversed(child.get("children", [])))

        model.checked = False
        model.saved = False
        return model
