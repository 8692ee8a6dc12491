"""
Configuration & Constants
=========================
This module serves as the central registry for global constants and for the
location of the session-settings file.

Why is this file needed?
------------------------
1. Abstraction: Reserved stage kinds, tolerances and output formatting widths
   are shared by the model, the engine and the I/O layer. Keeping them here
   prevents magic strings scattered throughout the code.
2. Deployment: It resolves where the session-settings file lives, which
   differs between a development checkout and an installed application.

Exports:
    RESERVED_NAMES (frozenset): Names that can never be used for a casting.
    ROW_SUM_TOLERANCE (float): Allowed deviation of a casting row sum from 1.0.
    APP_VERSION (str): Installed package version.
"""
import os
from importlib.metadata import version, PackageNotFoundError
from pathlib import Path

try:
    APP_VERSION: str = version("stox")
except PackageNotFoundError:
    APP_VERSION = "0.0.0-dev"

# Stage kinds
DIRECT: str = "Direct"
SUCCESS: str = "Success"
SINK: str = "Sink"
CASTER: str = "Caster"  # Display name only, a caster stage stores its table name

TERMINAL_KINDS: frozenset[str] = frozenset({SUCCESS, SINK})
RESERVED_NAMES: frozenset[str] = frozenset({DIRECT, SUCCESS, SINK, CASTER})

ROOT_NAME: str = "Start"
ROOT_ID: str = "1"

# Casting rows summing further than this from 1.0 are reported as leaking
ROW_SUM_TOLERANCE: float = 0.001

# Default run parameters
DEFAULT_INITIAL_POPULATION: float = 1000.0
DEFAULT_ITERATIONS: int = 100
DEFAULT_EPSILON: float = 0.0001

# Output log layout
OUTPUT_HEADER_ROWS: int = 3
OUTPUT_MIN_COLUMNS: int = 5
ITERATION_WIDTH: int = 4
POPULATION_WIDTH: int = 10
POPULATION_DECIMALS: int = 3

MODEL_FILE_SUFFIX: str = ".sxm"
SETTINGS_FILE_NAME: str = "Stox.ini"
SETTINGS_ENV_VAR: str = "STOX_SETTINGS"


def get_settings_path() -> Path:
    """
    Get the path of the session-settings file.

    The environment variable STOX_SETTINGS wins; otherwise the file sits in
    the current working directory, like the desktop application always did.
    """
    override = os.environ.get(SETTINGS_ENV_VAR)
    if override:
        return Path(override)
    return Path.cwd() / SETTINGS_FILE_NAME
