import pytest

from stox.model.casting import CastingTable
from stox.model.errors import (
    CastingShapeMismatch,
    CloneInProgress,
    MissingCastingForBranch,
    MissingTerminalKind,
    WrongKindForSingleChild,
)
from stox.model.state import Model
from stox.model.validator import ConsistencyWarning, validate_model


class TestStructure:
    """Tests for the structural checks."""

    def test_valid_model(self, sample_model):
        report = sample_model.validate()
        assert report.ok
        assert report.error is None
        assert report.warnings == []
        assert sample_model.checked
        assert report.summary == "Model checked and found consistent."

    def test_assigns_hierarchical_ids(self, sample_model):
        sample_model.validate()
        ids = [(s.name, s.hierarchical_id) for s in sample_model.tree.iter_preorder()]
        assert ids == [("Start", "1"), ("A", "1.1"), ("B", "1.1.1"), ("C", "1.1.1.1"), ("D", "1.1.1.2")]

    def test_direct_leaf(self):
        model = Model()
        a = model.add_child(model.tree.root, "A", "Direct")
        report = model.validate()
        assert not report.ok
        assert isinstance(report.error, MissingTerminalKind)
        assert report.error.stage == a
        assert report.error.stage_name == "A"
        assert report.error.hierarchical_id == "1.1"
        assert "should be type 'Sink' or type 'Success'" in str(report.error)
        assert not model.checked

    def test_lone_root_is_missing_terminal_kind(self):
        report = Model().validate()
        assert isinstance(report.error, MissingTerminalKind)

    def test_single_child_needs_direct(self):
        model = Model()
        a = model.add_child(model.tree.root, "A", "Success")
        model.add_child(a, "B", "Sink")
        report = model.validate()
        assert isinstance(report.error, WrongKindForSingleChild)
        assert report.error.stage_name == "A"

    def test_unassigned_root_passes_single_child(self):
        model = Model()
        model.add_child(model.tree.root, "A", "Sink")
        assert model.validate().ok

    def test_branch_needs_casting(self):
        model = Model()
        a = model.add_child(model.tree.root, "A", "Direct")
        model.add_child(a, "B", "Sink")
        model.add_child(a, "C", "Sink")
        report = model.validate()
        assert isinstance(report.error, MissingCastingForBranch)
        assert report.error.stage == a

    def test_branch_with_unknown_casting(self):
        model = Model()
        model.add_child(model.tree.root, "B", "Sink")
        model.add_child(model.tree.root, "C", "Sink")
        model.set_casting(model.tree.root, "Ghost")
        assert isinstance(model.validate().error, MissingCastingForBranch)

    def test_shape_mismatch(self):
        model = Model()
        a = model.add_child(model.tree.root, "A", "T")
        model.add_child(a, "B", "Sink")
        model.add_child(a, "C", "Sink")
        model.create_table("T", 1, 3)
        report = model.validate()
        assert isinstance(report.error, CastingShapeMismatch)
        assert (report.error.expected, report.error.actual) == (2, 3)

    def test_first_error_in_preorder_wins(self):
        model = Model()
        a = model.add_child(model.tree.root, "A", "T")
        model.add_child(a, "B", "Direct")
        model.add_child(a, "C", "Direct")
        model.create_table("T", 1, 2)
        report = model.validate()
        assert report.error.stage_name == "B"
        assert report.diagnostics == [str(report.error)]

    def test_refused_while_clone_pending(self, sample_model):
        sample_model.begin_clone(sample_model.tree.root)
        with pytest.raises(CloneInProgress):
            sample_model.validate()


class TestWarnings:
    """Tests for casting rows that do not add up to 1."""

    @pytest.fixture
    def leaking_model(self, sample_model):
        sample_model.write_cell("T", 0, 1, 0.4)
        return sample_model

    def test_acknowledged_warnings(self, leaking_model):
        seen = []

        def on_warning(warning: ConsistencyWarning) -> bool:
            seen.append(warning)
            return True

        report = leaking_model.validate(on_warning)
        assert report.ok
        assert leaking_model.checked
        assert len(seen) == 1
        assert (seen[0].table, seen[0].row) == ("T", 0)
        assert seen[0].row_sum == pytest.approx(0.9)
        assert seen[0].message == "The sum of row 1 of casting 'T' is 0.9, which is not equal to 1."
        assert report.summary == "Model checked and found workable (with 1 warning)."

    def test_without_handler_warnings_are_recorded(self, leaking_model):
        report = leaking_model.validate()
        assert report.ok
        assert len(report.warnings) == 1

    def test_abort_at_warning(self, leaking_model):
        report = leaking_model.validate(lambda warning: False)
        assert not report.ok
        assert report.aborted
        assert not leaking_model.checked

    def test_non_finite_row_warns(self):
        model = Model()
        a = model.add_child(model.tree.root, "A", "T")
        model.add_child(a, "B", "Sink")
        model.add_child(a, "C", "Sink")
        model.add_table(CastingTable.from_rows("T", [[float("nan"), 1.0]]))
        report = model.validate()
        assert [(w.table, w.row) for w in report.warnings] == [("T", 0)]
        assert not model.validate(lambda warning: False).ok

    def test_warnings_follow_table_then_row_order(self):
        model = Model()
        model.add_child(model.tree.root, "A", "Sink")
        model.import_table_from_tabular_text("0.5\t0.4\n1\t0\n0\t0\n", "U")
        model.import_table_from_tabular_text("0.2\t0.2\n", "T")
        report = validate_model(model.tree, model.tables)
        assert [(w.table, w.row) for w in report.warnings] == [("U", 0), ("U", 2), ("T", 0)]
