"""
Stage Tree (Data Model)
=======================
This module defines the recruitment tree: an ordered, rooted tree of stages.

Why is this file needed?
------------------------
1. Ownership: The tree owns every stage. Stages live in an arena keyed by an
   integer handle, children are ordered lists of handles and the parent is an
   optional handle. Nothing here knows about widgets.
2. Editing: It provides the structural edits (add, remove, clone, re-assign)
   that the editing surface and the JSON builder perform.
3. Traversal: Validation, simulation and persistence all walk the tree in
   pre-order, which is provided here once.

Classes:
    StageKind: The reserved stage kinds.
    Stage: One node of the tree.
    StageTree: The arena and its operations.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
import logging
from typing import Dict, Iterator, List, Optional, Tuple

from stox.config import ROOT_NAME, TERMINAL_KINDS
from stox.model.errors import EmptySelection

logger = logging.getLogger(__name__)


class StageKind(StrEnum):
    DIRECT = "Direct"
    CASTER = "Caster"
    SUCCESS = "Success"
    SINK = "Sink"

    @staticmethod
    def of(casting_ref: str) -> Optional[StageKind]:
        """Kind described by a casting reference; None when unassigned."""
        if not casting_ref:
            return None
        if casting_ref in (StageKind.DIRECT, StageKind.SUCCESS, StageKind.SINK):
            return StageKind(casting_ref)
        return StageKind.CASTER


@dataclass
class Stage:
    """
    A node in the recruitment tree.

    casting_ref holds either a reserved kind name (Direct, Success, Sink),
    the name of a casting table, or an empty string when unassigned.
    """
    handle: int
    name: str
    casting_ref: str = ""
    report: bool = False
    hierarchical_id: str = ""
    parent: Optional[int] = None
    children: List[int] = field(default_factory=list)

    @property
    def kind(self) -> Optional[StageKind]:
        return StageKind.of(self.casting_ref)

    @property
    def is_terminal(self) -> bool:
        return self.casting_ref in TERMINAL_KINDS


class StageTree:
    """Arena of stages with exactly one, unremovable root."""

    def __init__(self, root_name: str = ROOT_NAME) -> None:
        self._stages: Dict[int, Stage] = {}
        self._next_handle: int = 0
        self.root: int = self._new_stage(root_name, "", False, None)

    # --- Access ---

    def __len__(self) -> int:
        return len(self._stages)

    def __contains__(self, handle: object) -> bool:
        return handle in self._stages

    def __getitem__(self, handle: int) -> Stage:
        try:
            return self._stages[handle]
        except KeyError:
            raise EmptySelection(f"There is no stage {handle} in the model.") from None

    def get(self, handle: Optional[int]) -> Stage:
        if handle is None:
            raise EmptySelection("There is no stage currently selected in the model.")
        return self[handle]

    def children(self, handle: int) -> List[Stage]:
        return [self._stages[h] for h in self[handle].children]

    def parent(self, handle: int) -> Optional[Stage]:
        parent = self[handle].parent
        return None if parent is None else self._stages[parent]

    def depth(self, handle: int) -> int:
        level = 0
        stage = self[handle]
        while stage.parent is not None:
            stage = self._stages[stage.parent]
            level += 1
        return level

    def is_descendant(self, handle: int, ancestor: int) -> bool:
        """True if handle lies in the subtree rooted at ancestor (inclusive)."""
        current: Optional[int] = handle
        while current is not None:
            if current == ancestor:
                return True
            current = self._stages[current].parent
        return False

    # --- Traversal ---

    def walk(self, start: Optional[int] = None) -> Iterator[Tuple[int, Stage]]:
        """Yield (level, stage) in pre-order, levels relative to start."""
        first = self.root if start is None else start
        pending: List[Tuple[int, int]] = [(0, first)]
        while pending:
            level, handle = pending.pop()
            stage = self._stages[handle]
            yield level, stage
            pending.extend((level + 1, child) for child in reversed(stage.children))

    def iter_preorder(self, start: Optional[int] = None) -> Iterator[Stage]:
        for _, stage in self.walk(start):
            yield stage

    def find_by_id(self, hierarchical_id: str) -> Optional[Stage]:
        for stage in self.iter_preorder():
            if stage.hierarchical_id == hierarchical_id:
                return stage
        return None

    def find_by_name(self, name: str) -> List[Stage]:
        return [stage for stage in self.iter_preorder() if stage.name == name]

    # --- Editing ---

    def _new_stage(self, name: str, casting_ref: str, report: bool, parent: Optional[int]) -> int:
        handle = self._next_handle
        self._next_handle += 1
        self._stages[handle] = Stage(
            handle=handle, name=name, casting_ref=casting_ref, report=report, parent=parent
        )
        if parent is not None:
            self._stages[parent].children.append(handle)
        return handle

    def add_child(self, parent: int, name: str, casting_ref: str = "", report: bool = False) -> int:
        """Append a new stage as the last child of parent and return its handle."""
        self.get(parent)
        handle = self._new_stage(name, casting_ref, report, parent)
        logger.debug(f"Added stage '{name}' ({casting_ref or 'unassigned'}) under stage {parent}.")
        return handle

    def add_sibling(self, reference: int, name: str, casting_ref: str = "", report: bool = False) -> int:
        """Append a new stage under the parent of reference."""
        stage = self.get(reference)
        if stage.parent is None:
            raise EmptySelection(
                "No stage can be added at the side of the Start stage. Add it under Start instead."
            )
        return self.add_child(stage.parent, name, casting_ref, report)

    def rename(self, handle: int, name: str) -> None:
        self.get(handle).name = name

    def set_casting(self, handle: int, casting_ref: str) -> None:
        self.get(handle).casting_ref = casting_ref

    def set_report(self, handle: int, report: bool) -> None:
        self.get(handle).report = bool(report)

    def remove(self, handle: int) -> int:
        """Remove a stage and its whole subtree. Returns the number of stages removed."""
        stage = self.get(handle)
        if stage.parent is None:
            raise EmptySelection("The Start stage cannot be removed.")

        doomed = [s.handle for s in self.iter_preorder(handle)]
        self._stages[stage.parent].children.remove(handle)
        for h in doomed:
            del self._stages[h]
        logger.debug(f"Removed stage '{stage.name}' and {len(doomed) - 1} dependent stages.")
        return len(doomed)

    def clone(self, source: int, destination: int) -> int:
        """
        Deep copy the subtree rooted at source and attach it as the last child
        of destination. The copy is taken before attaching, so destination may
        lie inside the source subtree. Returns the handle of the new subtree root.
        """
        self.get(source)
        self.get(destination)

        # Snapshot (level, stage data) first so the copy never sees itself
        snapshot = [
            (level, s.name, s.casting_ref, s.report)
            for level, s in self.walk(source)
        ]
        parents: List[int] = [destination]
        new_root = -1
        for level, name, casting_ref, report in snapshot:
            del parents[level + 1:]
            handle = self._new_stage(name, casting_ref, report, parents[level])
            parents.append(handle)
            if level == 0:
                new_root = handle
        logger.debug(f"Replicated {len(snapshot)} stages from stage {source} under stage {destination}.")
        return new_root

    def count_using(self, casting_ref: str) -> int:
        return sum(1 for s in self._stages.values() if s.casting_ref == casting_ref)

    def replace_casting_ref(self, old: str, new: str) -> int:
        """Re-point every stage using old to new. Returns the number of stages changed."""
        changed = 0
        for stage in self._stages.values():
            if stage.casting_ref == old:
                stage.casting_ref = new
                changed += 1
        return changed

    def set_all_reports(self, report: bool) -> None:
        """Set the report flag of every stage but the root."""
        for stage in self._stages.values():
            if stage.parent is not None:
                stage.report = report

    def report_success_only(self) -> None:
        for stage in self._stages.values():
            if stage.parent is not None:
                stage.report = stage.casting_ref == StageKind.SUCCESS

    def clear(self, root_name: str = ROOT_NAME) -> None:
        """Drop every stage and start over with a lone root."""
        self._stages.clear()
        self._next_handle = 0
        self.root = self._new_stage(root_name, "", False, None)

    # --- Reconstruction ---

    @staticmethod
    def from_records(records: List[Tuple[int, str, str, bool, str]]) -> StageTree:
        """
        Build a tree from pre-order (level, name, casting_ref, report, id) records.

        The caller is responsible for the records being well-formed: the first
        record has level 0 and every other level is between 1 and the previous
        level plus one. See stox.model.io for the checked decoder.
        """
        tree = StageTree()
        tree._stages.clear()
        tree._next_handle = 0

        parents: List[int] = []
        for level, name, casting_ref, report, hierarchical_id in records:
            del parents[level:]
            parent = parents[-1] if parents else None
            handle = tree._new_stage(name, casting_ref, report, parent)
            tree._stages[handle].hierarchical_id = hierarchical_id
            if parent is None:
                tree.root = handle
            parents.append(handle)
        return tree
