"""Allows running the command-line interface with `python -m stox`."""
import sys

from stox.main import main

if __name__ == "__main__":
    sys.exit(main())
