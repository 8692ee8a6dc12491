"""
Model Validator
===============
Checks a stage tree against its casting tables before a simulation may run.

A validation pass is a single pre-order traversal that
1. assigns hierarchical ids ("1", "1.1", "1.2.3", ...) to every stage,
2. checks that each stage's kind fits its number of following stages
   (stopping at the first structural error), and
3. scans every casting for rows that do not add up to 1.0. These only warn;
   the caller may acknowledge each warning or abort the check.

Apart from the hierarchical ids nothing in the model is written.
"""
from __future__ import annotations

from dataclasses import dataclass, field
import logging
from typing import Callable, List, Mapping, Optional

from stox.config import DIRECT, ROOT_ID, ROW_SUM_TOLERANCE, SINK, SUCCESS, TERMINAL_KINDS
from stox.model.casting import CastingTable
from stox.model.errors import (
    CastingShapeMismatch,
    MissingCastingForBranch,
    MissingTerminalKind,
    StructuralError,
    WrongKindForSingleChild,
)
from stox.model.stages import Stage, StageTree

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConsistencyWarning:
    """A casting row whose probabilities do not add up to 1.0."""
    table: str
    row: int
    row_sum: float

    @property
    def message(self) -> str:
        return (
            f"The sum of row {self.row + 1} of casting '{self.table}' is {self.row_sum:g}, "
            f"which is not equal to 1."
        )


@dataclass
class ValidationReport:
    """Outcome of a validation pass."""
    ok: bool = False
    aborted: bool = False
    error: Optional[StructuralError] = None
    warnings: List[ConsistencyWarning] = field(default_factory=list)
    diagnostics: List[str] = field(default_factory=list)

    @property
    def summary(self) -> str:
        if self.error is not None:
            return str(self.error)
        if self.aborted:
            return "Check aborted."
        if not self.warnings:
            return "Model checked and found consistent."
        n = len(self.warnings)
        return f"Model checked and found workable (with {n} warning{'s' if n > 1 else ''})."


# Return False to stop the check at this warning
WarningHandler = Callable[[ConsistencyWarning], bool]


def assign_hierarchical_ids(tree: StageTree) -> None:
    """Label the root "1" and each child with its parent's id plus its 1-based position."""
    tree[tree.root].hierarchical_id = ROOT_ID
    for stage in tree.iter_preorder():
        for position, child in enumerate(tree.children(stage.handle), start=1):
            child.hierarchical_id = f"{stage.hierarchical_id}.{position}"


def check_stage(stage: Stage, n_children: int, tables: Mapping[str, CastingTable], is_root: bool) -> None:
    """Raise the matching StructuralError if the stage kind does not fit its children."""
    ref = stage.casting_ref
    label = f"Stage '{stage.name}' ({stage.hierarchical_id})"

    if n_children == 0:
        if ref not in TERMINAL_KINDS:
            raise MissingTerminalKind(
                f"{label} has no following stages, it should be type '{SINK}' or type '{SUCCESS}'.",
                stage.handle, stage.name, stage.hierarchical_id
            )
    elif n_children == 1:
        # The unassigned Start stage simply passes its population on
        if ref != DIRECT and not (is_root and ref == ""):
            raise WrongKindForSingleChild(
                f"{label} has only one following stage, it should be type '{DIRECT}'.",
                stage.handle, stage.name, stage.hierarchical_id
            )
    else:
        table = tables.get(ref)
        if table is None:
            raise MissingCastingForBranch(
                f"{label} has more than one following stage but no casting, it should have a casting set.",
                stage.handle, stage.name, stage.hierarchical_id
            )
        if table.cols != n_children:
            raise CastingShapeMismatch(
                f"{label} has {n_children} following stages but its casting '{ref}' "
                f"has {table.cols} columns.",
                stage.handle, stage.name, stage.hierarchical_id,
                expected=n_children, actual=table.cols
            )


def validate_model(
    tree: StageTree,
    tables: Mapping[str, CastingTable],
    on_warning: Optional[WarningHandler] = None,
    tolerance: float = ROW_SUM_TOLERANCE
) -> ValidationReport:
    """
    Run a full validation pass.

    Structural errors are not raised; they are returned in the report with
    ok=False so the caller can point at the offending stage.
    """
    report = ValidationReport()
    assign_hierarchical_ids(tree)

    try:
        for stage in tree.iter_preorder():
            check_stage(stage, len(stage.children), tables, is_root=stage.handle == tree.root)
    except StructuralError as e:
        logger.warning(f"Model check failed: {e}")
        report.error = e
        report.diagnostics.append(str(e))
        return report

    for table in tables.values():
        for row in table.leaking_rows(tolerance):
            warning = ConsistencyWarning(table=table.name, row=row, row_sum=table.row_sum(row))
            report.warnings.append(warning)
            report.diagnostics.append(f"Warning: {warning.message}")
            logger.info(warning.message)
            if on_warning is not None and not on_warning(warning):
                logger.info("Model check aborted at a casting warning.")
                report.aborted = True
                return report

    report.ok = True
    logger.info(report.summary)
    return report
