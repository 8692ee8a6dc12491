import os

# Headless plotting and Qt before either library is imported
os.environ.setdefault("MPLBACKEND", "Agg")
os.environ.setdefault("QT_QPA_PLATFORM", "offscreen")

import pytest

from stox.model.state import Model


def build_sample_model() -> Model:
    """Start -> A (Direct) -> B (casting T = [[0.5, 0.5]]) -> {C (Success), D (Sink)}"""
    model = Model()
    root = model.tree.root
    a = model.add_child(root, "A", "Direct", report=True)
    b = model.add_child(a, "B", "T", report=True)
    model.add_child(b, "C", "Success", report=True)
    model.add_child(b, "D", "Sink", report=True)
    model.create_table("T", 1, 2)
    model.write_cell("T", 0, 0, 0.5)
    model.write_cell("T", 0, 1, 0.5)
    return model


@pytest.fixture
def sample_model() -> Model:
    return build_sample_model()


@pytest.fixture
def checked_model(sample_model) -> Model:
    report = sample_model.validate()
    assert report.ok
    return sample_model


@pytest.fixture
def sample_description() -> dict:
    return {
        "parameters": {"initial": 100, "iterations": 5, "epsilon": 0.0001},
        "tables": [{"name": "T", "values": [[0.5, 0.5]]}],
        "tree": {
            "name": "Start",
            "casting": "",
            "report": False,
            "children": [
                {
                    "name": "A",
                    "casting": "Direct",
                    "report": True,
                    "children": [
                        {
                            "name": "B",
                            "casting": "T",
                            "report": True,
                            "children": [
                                {"name": "C", "casting": "Success", "report": True, "children": []},
                                {"name": "D", "casting": "Sink", "report": True, "children": []},
                            ],
                        }
                    ],
                }
            ],
        },
    }


@pytest.fixture
def qapp():
    from PySide6.QtCore import QCoreApplication
    return QCoreApplication.instance() or QCoreApplication([])
