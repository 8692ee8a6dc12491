import json

import pytest

from stox.main import main
from stox.model.io import IOManager


@pytest.fixture
def model_file(sample_description, tmp_path) -> str:
    description = tmp_path / "model.json"
    description.write_text(json.dumps(sample_description), encoding="utf-8")
    path = str(tmp_path / "model.sxm")
    assert main(["build", str(description), path]) == 0
    return path


@pytest.fixture
def settings_file(tmp_path) -> str:
    return str(tmp_path / "Stox.ini")


class TestCommands:
    """Tests for the command-line interface."""

    def test_no_command_prints_help(self, capsys):
        assert main([]) == 0
        assert "usage" in capsys.readouterr().out.lower()

    def test_check(self, model_file, capsys):
        assert main(["check", model_file]) == 0
        assert "found consistent" in capsys.readouterr().out

    def test_check_broken_model(self, sample_description, tmp_path, capsys):
        sample_description["tree"]["children"][0]["casting"] = "Sink"
        description = tmp_path / "broken.json"
        description.write_text(json.dumps(sample_description), encoding="utf-8")
        path = str(tmp_path / "broken.sxm")
        assert main(["build", str(description), path]) == 0
        assert main(["check", path]) == 1
        assert "should be type 'Direct'" in capsys.readouterr().err

    def test_show(self, model_file, capsys):
        assert main(["show", model_file]) == 0
        out = capsys.readouterr().out
        assert "Start" in out
        assert "(1.1.1.2)" in out
        assert "Casting 'T' (1x2)" in out

    def test_dump(self, model_file, sample_description, tmp_path):
        path = tmp_path / "dump.json"
        assert main(["dump", model_file, "-o", str(path)]) == 0
        assert json.loads(path.read_text(encoding="utf-8"))["tree"] == sample_description["tree"]

    def test_missing_model(self, tmp_path, capsys):
        assert main(["check", str(tmp_path / "missing.sxm")]) == 1
        assert "Error:" in capsys.readouterr().err


class TestRun:
    def test_run_to_stdout(self, model_file, settings_file, capsys):
        assert main(["--settings", settings_file, "run", model_file, "-n", "100", "-i", "3", "--seed", "1"]) == 0
        out = capsys.readouterr().out
        assert "\tInitial\t100\tEps\t" in out
        assert "    50.000" in out

    def test_run_remembers_parameters(self, model_file, settings_file, tmp_path):
        output = tmp_path / "out.txt"
        assert main([
            "--settings", settings_file, "run", model_file,
            "-n", "200", "-i", "4", "-e", "0.01", "--seed", "1", "-o", str(output),
        ]) == 0
        assert len(output.read_text(encoding="utf-8").splitlines()) == 4 + 3

        settings = IOManager.load_settings(settings_file)
        assert (settings.initial_pop_text, settings.iters_text, settings.eps_text) == ("200", "4", "0.01")

        # Later runs default to the remembered values
        again = tmp_path / "again.html"
        assert main(["--settings", settings_file, "run", model_file, "-o", str(again)]) == 0
        text = again.read_text(encoding="utf-8")
        assert "<td>200</td>" in text
        assert text.count("<tr>") == 4 + 3

    def test_run_with_plot(self, model_file, settings_file, tmp_path):
        plot = tmp_path / "run.png"
        assert main([
            "--settings", settings_file, "run", model_file, "-i", "5", "--seed", "2",
            "-o", str(tmp_path / "out.txt"), "--plot", str(plot),
        ]) == 0
        assert plot.exists()

    def test_run_refuses_unchecked_model(self, sample_description, settings_file, tmp_path):
        sample_description["tables"] = []
        description = tmp_path / "broken.json"
        description.write_text(json.dumps(sample_description), encoding="utf-8")
        path = str(tmp_path / "broken.sxm")
        main(["build", str(description), path])
        assert main(["--settings", settings_file, "run", path]) == 1
