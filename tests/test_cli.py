"""
Tests for the command-line interface
"""

import json

import pytest
import gguf

from gguf_quantize.cli import build_parser, main


@pytest.fixture(autouse=True)
def temp_config_file(tmp_path, monkeypatch):
    """
    Fixture keeping the CLI away from the user's real config file
    """
    temp_config = tmp_path / "cli_config.json"
    monkeypatch.setattr('gguf_quantize.config.CONFIG_FILE', temp_config)
    return temp_config


def test_quantize_command(gguf_model, tmp_path):
    """
    Test a full quantize run through the CLI
    """
    out = tmp_path / "out.gguf"
    code = main(["quantize", str(gguf_model), "--out-file", str(out), "-q", "Q8_0", "--workers", "1"])

    assert code == 0
    reader = gguf.GGUFReader(out)
    types = {t.name: t.tensor_type for t in reader.tensors}
    assert types["token_embd.weight"] == gguf.GGMLQuantizationType.Q8_0


def test_usage_error_exit_code(gguf_model, tmp_path, capsys):
    """
    Test that conversion errors print the failing stage and exit with 1
    """
    code = main(["quantize", str(gguf_model), str(gguf_model), "-o", str(tmp_path / "out.gguf")])

    assert code == 1
    assert "Error during validate" in capsys.readouterr().err


def test_missing_input_exit_code(tmp_path, capsys):
    """
    Test that a missing input file exits with 1
    """
    code = main(["quantize", str(tmp_path / "missing.gguf"), "-o", str(tmp_path / "out.gguf")])

    assert code == 1
    assert "missing.gguf" in capsys.readouterr().err


def test_ls_command(gguf_model, capsys):
    """
    Test that ls prints one line per tensor
    """
    assert main(["ls", str(gguf_model)]) == 0

    lines = capsys.readouterr().out.splitlines()
    assert len(lines) == 5
    assert lines[0].startswith("token_embd.weight")
    assert "F16" in [line for line in lines if line.startswith("blk.0.attn_q.weight")][0]


def test_defaults_come_from_config(temp_config_file):
    """
    Test that saved config values become the CLI defaults
    """
    temp_config_file.write_text(json.dumps({"quantization": "Q5_K", "mode": "baseline", "num_workers": 2}))

    args = build_parser().parse_args(["quantize", "in.gguf", "-o", "out.gguf"])

    assert args.quantization == "q5k"
    assert args.mode == "baseline"
    assert args.workers == 2


def test_invalid_codec_choice(capsys):
    """
    Test that argparse rejects unknown codecs
    """
    with pytest.raises(SystemExit):
        build_parser().parse_args(["quantize", "in.gguf", "-o", "out.gguf", "-q", "iq1_s"])


class TestConfigCommand:
    """Saving and resetting defaults through the CLI"""

    def test_set_saves_values(self, temp_config_file):
        """
        Test that config --set writes normalized values to the config file
        """
        code = main(["config", "--set", "quantization", "Q8_0", "--set", "num_workers", "3",
                     "--set", "verbose", "yes"])

        assert code == 0
        saved = json.loads(temp_config_file.read_text())
        assert saved["quantization"] == "q8_0"
        assert saved["num_workers"] == 3
        assert saved["verbose"] is True

    def test_saved_values_become_defaults(self, temp_config_file):
        """
        Test that a value set through the CLI is picked up by the next parse
        """
        main(["config", "--set", "mode", "baseline"])

        args = build_parser().parse_args(["quantize", "in.gguf", "-o", "out.gguf"])

        assert args.mode == "baseline"

    def test_auto_clears_mode(self, temp_config_file):
        """
        Test that auto stores None so the mode is picked per input format
        """
        temp_config_file.write_text(json.dumps({"mode": "llama"}))

        main(["config", "--set", "mode", "auto"])

        assert json.loads(temp_config_file.read_text())["mode"] is None

    def test_reset_restores_defaults(self, temp_config_file, capsys):
        """
        Test that config --reset writes and prints the built-in defaults
        """
        temp_config_file.write_text(json.dumps({"quantization": "q2k", "verbose": True}))

        assert main(["config", "--reset"]) == 0

        saved = json.loads(temp_config_file.read_text())
        assert saved["quantization"] == "q4k"
        assert saved["verbose"] is False
        assert json.loads(capsys.readouterr().out) == saved

    def test_show_does_not_write(self, temp_config_file, capsys):
        """
        Test that config without options only prints the current values
        """
        assert main(["config"]) == 0

        assert not temp_config_file.exists()
        assert json.loads(capsys.readouterr().out)["quantization"] == "q4k"

    def test_unknown_key(self, temp_config_file, capsys):
        """
        Test that an unknown key is a usage error and nothing is saved
        """
        code = main(["config", "--set", "color", "red"])

        assert code == 1
        assert "Error during validate" in capsys.readouterr().err
        assert not temp_config_file.exists()

    def test_invalid_value(self, temp_config_file, capsys):
        """
        Test that a value of the wrong type is a usage error
        """
        code = main(["config", "--set", "num_workers", "many"])

        assert code == 1
        assert "Error during validate" in capsys.readouterr().err
