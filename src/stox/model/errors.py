"""
Error Taxonomy
==============
Exceptions raised by the model layer.

Structural errors abort a validation pass, precondition errors block an
operation until the caller resolves them, and name conflicts are rejected
before any mutation happens. Consistency warnings are not exceptions; see
`stox.model.validator.ConsistencyWarning`.
"""
from __future__ import annotations

from typing import Optional


class StoxError(Exception):
    """Base class for every error raised by the package."""


# --- Structural (validation) ---

class StructuralError(StoxError):
    """The stage tree is not consistent with its casting assignments."""

    def __init__(self, message: str, stage: int, stage_name: str, hierarchical_id: str) -> None:
        super().__init__(message)
        self.stage = stage
        self.stage_name = stage_name
        self.hierarchical_id = hierarchical_id


class MissingTerminalKind(StructuralError):
    pass


class WrongKindForSingleChild(StructuralError):
    pass


class MissingCastingForBranch(StructuralError):
    pass


class CastingShapeMismatch(StructuralError):
    def __init__(
        self,
        message: str,
        stage: int,
        stage_name: str,
        hierarchical_id: str,
        expected: int,
        actual: int
    ) -> None:
        super().__init__(message, stage, stage_name, hierarchical_id)
        self.expected = expected
        self.actual = actual


# --- Preconditions ---

class PreconditionError(StoxError):
    """The operation cannot run in the current model state."""


class NotValidated(PreconditionError):
    pass


class UnsavedChanges(PreconditionError):
    pass


class CloneInProgress(PreconditionError):
    pass


# --- Names & selection ---

class NameConflictError(StoxError):
    """A casting name collides with an existing casting or a reserved kind."""

    def __init__(self, message: str, name: str) -> None:
        super().__init__(message)
        self.name = name


class DuplicateName(NameConflictError):
    pass


class ReservedName(NameConflictError):
    pass


class EmptySelection(StoxError):
    """A required name, stage or table was not provided."""


class OutOfRange(StoxError, IndexError):
    """Cell access outside the bounds of a casting table."""


class TabularFormatError(StoxError, ValueError):
    """Tabular text could not be parsed into a rectangular numeric table."""


# --- Persistence ---

class ModelIOError(StoxError, OSError):
    """A model or settings file could not be read or written."""

    def __init__(self, message: str, path: Optional[str] = None) -> None:
        super().__init__(message)
        self.path = path


class MalformedModelFile(ModelIOError):
    """The byte stream does not describe a valid model."""
