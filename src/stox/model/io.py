"""
Input/Output Manager (Binary Model Files)
=========================================
Handles saving and loading models, the session-settings file, exporting run
output and importing castings from tabular text.

Model file layout (big-endian, sequential fields):

    int32 stageCount
    repeat stageCount:
        int32 level                          # depth from the Start stage (0)
        string name; string castingRef; bool report; string hierarchicalId
    int32 tableCount
    repeat tableCount:
        string name; int32 rows; int32 cols
        float32[rows*cols] values            # row-major

A string is a uint32 byte length followed by UTF-16BE text; 0xFFFFFFFF marks a
null string, which is read back as an empty one. A bool is a single byte.
"""
from __future__ import annotations

from dataclasses import dataclass
import logging
import math
import os
import struct
from typing import Dict, List, Optional, Tuple, TYPE_CHECKING

import numpy as np

from stox.config import APP_VERSION, RESERVED_NAMES, get_settings_path
from stox.model.casting import CastingTable
from stox.model.errors import EmptySelection, MalformedModelFile, ModelIOError, TabularFormatError
from stox.model.stages import StageTree

if TYPE_CHECKING:
    from stox.model.output import OutputLog
    from stox.model.state import Model

logger = logging.getLogger(__name__)

NULL_STRING_LENGTH = 0xFFFFFFFF
FLOAT_DTYPE = np.dtype(">f4")

StageRecord = Tuple[int, str, str, bool, str]


# --- Primitive encoding ---

class StreamWriter:
    """Accumulates big-endian fields into a byte buffer."""

    def __init__(self) -> None:
        self._chunks: List[bytes] = []

    def write_int32(self, value: int) -> None:
        self._chunks.append(struct.pack(">i", value))

    def write_bool(self, value: bool) -> None:
        self._chunks.append(b"\x01" if value else b"\x00")

    def write_string(self, value: str) -> None:
        raw = value.encode("utf-16-be")
        self._chunks.append(struct.pack(">I", len(raw)))
        self._chunks.append(raw)

    def write_floats(self, values: np.ndarray) -> None:
        self._chunks.append(np.ascontiguousarray(values, dtype=FLOAT_DTYPE).tobytes())

    def getvalue(self) -> bytes:
        return b"".join(self._chunks)


class StreamReader:
    """Reads big-endian fields, raising MalformedModelFile on truncation."""

    def __init__(self, data: bytes) -> None:
        self._data = memoryview(data)
        self._pos = 0

    @property
    def remaining(self) -> int:
        return len(self._data) - self._pos

    def _take(self, n: int, what: str) -> memoryview:
        if n > self.remaining:
            raise MalformedModelFile(
                f"Unexpected end of data reading {what} at byte {self._pos} "
                f"(needed {n}, {self.remaining} left)."
            )
        chunk = self._data[self._pos:self._pos + n]
        self._pos += n
        return chunk

    def read_int32(self, what: str = "integer") -> int:
        return struct.unpack(">i", self._take(4, what))[0]

    def read_bool(self, what: str = "flag") -> bool:
        return self._take(1, what)[0] != 0

    def read_string(self, what: str = "string") -> str:
        length = struct.unpack(">I", self._take(4, what))[0]
        if length == NULL_STRING_LENGTH:
            return ""
        if length % 2:
            raise MalformedModelFile(f"Invalid {what}: odd UTF-16 byte length {length}.")
        raw = self._take(length, what)
        try:
            return bytes(raw).decode("utf-16-be")
        except UnicodeDecodeError as e:
            raise MalformedModelFile(f"Invalid {what}: {e}") from e

    def read_floats(self, count: int, what: str = "values") -> np.ndarray:
        raw = self._take(count * FLOAT_DTYPE.itemsize, what)
        return np.frombuffer(raw, dtype=FLOAT_DTYPE).astype(np.float32)


# --- Model codec ---

def encode_model(tree: StageTree, tables: Dict[str, CastingTable]) -> bytes:
    """Serialize the tree (pre-order with levels) followed by the castings."""
    writer = StreamWriter()

    records = list(tree.walk())
    writer.write_int32(len(records))
    for level, stage in records:
        writer.write_int32(level)
        writer.write_string(stage.name)
        writer.write_string(stage.casting_ref)
        writer.write_bool(stage.report)
        writer.write_string(stage.hierarchical_id)

    writer.write_int32(len(tables))
    for table in tables.values():
        writer.write_string(table.name)
        writer.write_int32(table.rows)
        writer.write_int32(table.cols)
        writer.write_floats(table.values)

    return writer.getvalue()


def check_levels(levels: List[int]) -> None:
    """
    Make sure a level sequence describes a pre-order traversal of one tree:
    a single level-0 record first, then levels between 1 and previous + 1.
    """
    if not levels:
        raise MalformedModelFile("The model has no stages.")
    if levels[0] != 0:
        raise MalformedModelFile(f"The first stage must have level 0, found {levels[0]}.")
    previous = 0
    for i, level in enumerate(levels[1:], start=1):
        if level < 1:
            raise MalformedModelFile(f"Stage {i} has level {level}; only the first stage may be at level 0.")
        if level > previous + 1:
            raise MalformedModelFile(f"Stage {i} jumps from level {previous} to level {level}.")
        previous = level


def decode_model(data: bytes) -> Tuple[StageTree, Dict[str, CastingTable]]:
    """Rebuild a tree and its castings from a byte stream produced by encode_model."""
    reader = StreamReader(data)

    stage_count = reader.read_int32("stage count")
    if stage_count < 1:
        raise MalformedModelFile(f"Invalid stage count {stage_count}.")

    records: List[StageRecord] = []
    for i in range(stage_count):
        level = reader.read_int32(f"level of stage {i}")
        name = reader.read_string(f"name of stage {i}")
        casting_ref = reader.read_string(f"casting of stage {i}")
        report = reader.read_bool(f"report flag of stage {i}")
        hierarchical_id = reader.read_string(f"id of stage {i}")
        records.append((level, name, casting_ref, report, hierarchical_id))
    check_levels([r[0] for r in records])

    table_count = reader.read_int32("casting count")
    if table_count < 0:
        raise MalformedModelFile(f"Invalid casting count {table_count}.")

    tables: Dict[str, CastingTable] = {}
    for i in range(table_count):
        name = reader.read_string(f"name of casting {i}")
        if not name or name in RESERVED_NAMES:
            raise MalformedModelFile(f"Invalid casting name '{name}'.")
        if name in tables:
            raise MalformedModelFile(f"Casting '{name}' appears twice.")
        rows = reader.read_int32(f"rows of casting '{name}'")
        cols = reader.read_int32(f"columns of casting '{name}'")
        if rows < 1 or cols < 1:
            raise MalformedModelFile(f"Invalid shape {rows}x{cols} of casting '{name}'.")
        table = CastingTable(name)
        table.fill_from_raw(reader.read_floats(rows * cols, f"values of casting '{name}'"), rows, cols)
        tables[name] = table

    if reader.remaining:
        raise MalformedModelFile(f"{reader.remaining} unexpected bytes after the last casting.")

    return StageTree.from_records(records), tables


# --- Session settings ---

@dataclass
class SessionSettings:
    """Free-form echoes of the last used folder and run parameter fields."""
    last_path: str = ""
    iters_text: str = ""
    initial_pop_text: str = ""
    eps_text: str = ""

    def to_bytes(self) -> bytes:
        writer = StreamWriter()
        for text in (self.last_path, self.iters_text, self.initial_pop_text, self.eps_text):
            writer.write_string(text)
        return writer.getvalue()

    @staticmethod
    def from_bytes(data: bytes) -> SessionSettings:
        reader = StreamReader(data)
        return SessionSettings(
            last_path=reader.read_string("last path"),
            iters_text=reader.read_string("iterations"),
            initial_pop_text=reader.read_string("initial population"),
            eps_text=reader.read_string("epsilon"),
        )


# --- Tabular text ---

def parse_tabular_text(text: str) -> Tuple[int, int, List[float]]:
    """
    Parse tab separated rows (e.g. cells copied from a spreadsheet).

    Returns (rows, cols, row-major values).
    """
    lines = text.replace("\r\n", "\n").replace("\r", "\n").split("\n")
    while lines and not lines[-1].strip():
        lines.pop()
    if not lines:
        raise EmptySelection("There is no tabular text to import.")

    values: List[float] = []
    n_cols = len(lines[0].split("\t"))
    for r, line in enumerate(lines):
        cells = [cell.strip() for cell in line.split("\t")]
        if len(cells) != n_cols:
            raise TabularFormatError(f"Row {r + 1} has {len(cells)} cells, expected {n_cols}.")
        for c, cell in enumerate(cells):
            try:
                value = float(cell)
            except ValueError:
                raise TabularFormatError(f"Cell ({r + 1}, {c + 1}) is not a number: '{cell}'.") from None
            if not math.isfinite(value):
                raise TabularFormatError(f"Cell ({r + 1}, {c + 1}) is not a finite number: '{cell}'.")
            values.append(value)

    return len(lines), n_cols, values


class IOManager:
    """File level helpers. OS failures surface as ModelIOError."""

    @staticmethod
    def save_model(model: Model, filepath: str) -> None:
        logger.info(f"Saving model to: {filepath}")
        data = model.save()
        try:
            with open(filepath, "wb") as f:
                f.write(data)
        except OSError as e:
            logger.error(f"Couldn't save model to {filepath}: {e}")
            raise ModelIOError(f"Couldn't save model to {filepath}: {e}", filepath) from e

        model.mark_saved(filepath)
        logger.info(f"Model saved to: {filepath} ({len(data)} bytes, version {APP_VERSION})")

    @staticmethod
    def load_model(model: Model, filepath: str) -> None:
        logger.info(f"Loading model from: {filepath}")
        try:
            with open(filepath, "rb") as f:
                data = f.read()
        except OSError as e:
            logger.error(f"Could not open model {filepath}: {e}")
            raise ModelIOError(f"Could not open model {filepath}: {e}", filepath) from e

        try:
            model.load(data)
        except MalformedModelFile as e:
            e.path = filepath
            logger.error(f"Model file {filepath} is malformed: {e}")
            raise

        model.filepath = filepath
        logger.info(f"Model {filepath} successfully opened.")

    @staticmethod
    def export_output(log: OutputLog, filepath: str) -> None:
        """Write the output as HTML for .html/.htm names, tab separated text otherwise."""
        ext = os.path.splitext(filepath)[1].lower()
        text = log.to_html() if ext in (".html", ".htm") else log.to_tsv()
        try:
            with open(filepath, "w", encoding="utf-8") as f:
                f.write(text)
        except OSError as e:
            logger.error(f"Couldn't save model output to {filepath}: {e}")
            raise ModelIOError(f"Couldn't save model output to {filepath}: {e}", filepath) from e
        logger.info(f"Model output saved to {filepath}")

    @staticmethod
    def load_settings(filepath: Optional[str] = None) -> SessionSettings:
        """Read the session settings; a missing or unreadable file gives defaults."""
        path = str(filepath) if filepath else str(get_settings_path())
        if not os.path.exists(path):
            logger.debug(f"No session settings at {path}.")
            return SessionSettings()
        try:
            with open(path, "rb") as f:
                return SessionSettings.from_bytes(f.read())
        except (OSError, MalformedModelFile) as e:
            logger.warning(f"Ignoring unreadable session settings {path}: {e}")
            return SessionSettings()

    @staticmethod
    def save_settings(settings: SessionSettings, filepath: Optional[str] = None) -> None:
        path = str(filepath) if filepath else str(get_settings_path())
        try:
            with open(path, "wb") as f:
                f.write(settings.to_bytes())
        except OSError as e:
            logger.error(f"Couldn't save session settings to {path}: {e}")
            raise ModelIOError(f"Couldn't save session settings to {path}: {e}", path) from e
        logger.debug(f"Session settings saved to {path}.")
