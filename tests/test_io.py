import struct

import numpy as np
import pytest

from stox.model.errors import EmptySelection, MalformedModelFile, ModelIOError, TabularFormatError
from stox.model.io import (
    IOManager,
    SessionSettings,
    StreamReader,
    StreamWriter,
    check_levels,
    decode_model,
    parse_tabular_text,
)
from stox.model.state import Model


def write_stages(writer: StreamWriter, records) -> None:
    writer.write_int32(len(records))
    for level, name, ref, report, hid in records:
        writer.write_int32(level)
        writer.write_string(name)
        writer.write_string(ref)
        writer.write_bool(report)
        writer.write_string(hid)


class TestPrimitives:
    def test_string_is_utf16_big_endian(self):
        writer = StreamWriter()
        writer.write_string("Ab")
        assert writer.getvalue() == b"\x00\x00\x00\x04\x00A\x00b"

    def test_null_string_reads_empty(self):
        reader = StreamReader(b"\xff\xff\xff\xff")
        assert reader.read_string() == ""
        assert reader.remaining == 0

    def test_floats_are_big_endian_float32(self):
        writer = StreamWriter()
        writer.write_floats(np.array([0.5], dtype=np.float32))
        assert writer.getvalue() == struct.pack(">f", 0.5)

    def test_odd_string_length(self):
        with pytest.raises(MalformedModelFile):
            StreamReader(b"\x00\x00\x00\x03abc").read_string()


class TestModelCodec:
    """Tests for the binary model file format."""

    def test_round_trip(self, sample_model):
        sample_model.validate()
        data = sample_model.save()
        assert data[:4] == struct.pack(">i", 5)

        restored = Model()
        restored.load(data)
        assert restored.to_dict()["tree"] == sample_model.to_dict()["tree"]
        assert restored.to_dict()["tables"] == sample_model.to_dict()["tables"]
        assert [s.hierarchical_id for s in restored.tree.iter_preorder()] == [
            "1", "1.1", "1.1.1", "1.1.1.1", "1.1.1.2"
        ]
        assert restored.saved
        assert not restored.checked

    def test_null_strings_in_model(self):
        data = (
            struct.pack(">i", 1) + struct.pack(">i", 0)
            + b"\xff\xff\xff\xff" * 2 + b"\x00" + b"\xff\xff\xff\xff"
            + struct.pack(">i", 0)
        )
        tree, tables = decode_model(data)
        assert len(tree) == 1
        assert tree[tree.root].name == ""
        assert tables == {}

    @pytest.mark.parametrize("levels", [[], [1], [0, 2], [0, 1, 0], [0, 1, 3]])
    def test_bad_levels(self, levels):
        with pytest.raises(MalformedModelFile):
            check_levels(levels)

    def test_good_levels(self):
        check_levels([0, 1, 2, 2, 1, 2, 3])

    def test_level_jump_in_file(self):
        writer = StreamWriter()
        write_stages(writer, [(0, "Start", "", False, "1"), (2, "X", "Sink", False, "")])
        writer.write_int32(0)
        with pytest.raises(MalformedModelFile):
            decode_model(writer.getvalue())

    def test_reserved_table_name(self):
        writer = StreamWriter()
        write_stages(writer, [(0, "Start", "Sink", False, "1")])
        writer.write_int32(1)
        writer.write_string("Direct")
        writer.write_int32(1)
        writer.write_int32(1)
        writer.write_floats(np.array([1.0]))
        with pytest.raises(MalformedModelFile):
            decode_model(writer.getvalue())

    def test_truncated(self, sample_model):
        data = sample_model.save()
        with pytest.raises(MalformedModelFile):
            decode_model(data[:-3])

    def test_trailing_bytes(self, sample_model):
        with pytest.raises(MalformedModelFile):
            decode_model(sample_model.save() + b"\x00")

    def test_failed_load_leaves_model_untouched(self, sample_model):
        before = sample_model.to_dict()
        with pytest.raises(MalformedModelFile):
            sample_model.load(b"\x00\x00")
        assert sample_model.to_dict() == before


class TestIOManager:
    def test_save_and_load(self, sample_model, tmp_path):
        path = str(tmp_path / "model.sxm")
        IOManager.save_model(sample_model, path)
        assert sample_model.saved
        assert sample_model.filepath == path

        model = Model()
        IOManager.load_model(model, path)
        assert model.filepath == path
        assert len(model.tree) == 5

    def test_missing_file(self, tmp_path):
        with pytest.raises(ModelIOError):
            IOManager.load_model(Model(), str(tmp_path / "missing.sxm"))

    def test_malformed_file_carries_path(self, tmp_path):
        path = tmp_path / "broken.sxm"
        path.write_bytes(b"\x00\x00\x00\x01")
        with pytest.raises(MalformedModelFile) as excinfo:
            IOManager.load_model(Model(), str(path))
        assert excinfo.value.path == str(path)

    def test_export_output(self, checked_model, tmp_path):
        log = checked_model.run(n=100, iters=2, eps=0.0001)
        IOManager.export_output(log, str(tmp_path / "out.txt"))
        IOManager.export_output(log, str(tmp_path / "out.html"))
        assert (tmp_path / "out.txt").read_text(encoding="utf-8") == log.to_tsv()
        assert (tmp_path / "out.html").read_text(encoding="utf-8").startswith("<html><table>")


class TestSessionSettings:
    def test_round_trip(self, tmp_path):
        path = str(tmp_path / "Stox.ini")
        settings = SessionSettings(last_path="/data", iters_text="500", initial_pop_text="1000", eps_text="1e-4")
        IOManager.save_settings(settings, path)
        assert IOManager.load_settings(path) == settings

    def test_missing_gives_defaults(self, tmp_path):
        assert IOManager.load_settings(str(tmp_path / "none.ini")) == SessionSettings()

    def test_garbage_gives_defaults(self, tmp_path):
        path = tmp_path / "Stox.ini"
        path.write_bytes(b"\x00\x00")
        assert IOManager.load_settings(str(path)) == SessionSettings()

    def test_environment_override(self, tmp_path, monkeypatch):
        path = tmp_path / "custom.ini"
        monkeypatch.setenv("STOX_SETTINGS", str(path))
        IOManager.save_settings(SessionSettings(iters_text="7"))
        assert path.exists()
        assert IOManager.load_settings().iters_text == "7"


class TestTabularText:
    def test_parse(self):
        rows, cols, values = parse_tabular_text("0.5\t0.5\r\n1\t0\r\n")
        assert (rows, cols) == (2, 2)
        assert values == [0.5, 0.5, 1.0, 0.0]

    def test_empty(self):
        with pytest.raises(EmptySelection):
            parse_tabular_text("\n\n")

    def test_ragged(self):
        with pytest.raises(TabularFormatError):
            parse_tabular_text("0.5\t0.5\n1\n")

    @pytest.mark.parametrize("cell", ["nan", "inf", "-Infinity"])
    def test_non_finite(self, cell):
        with pytest.raises(TabularFormatError):
            parse_tabular_text(f"0.5\t{cell}\n")

    def test_not_a_number(self):
        with pytest.raises(ValueError):
            parse_tabular_text("0.5\tabc\n")
