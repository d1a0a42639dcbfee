"""Tests for the click CLI (non-interactive commands)."""

import io

import pytest
from click.testing import CliRunner
from rich.console import Console

from budget_chat import __version__
from budget_chat import main as main_mod
from budget_chat.main import cli


@pytest.fixture
def output(monkeypatch):
    buf = io.StringIO()
    monkeypatch.setattr(main_mod, "console", Console(file=buf, width=160, force_terminal=False,
                                                     color_system=None))
    return buf


@pytest.fixture
def no_logging(monkeypatch):
    monkeypatch.setattr(main_mod, "setup_logger", lambda **kwargs: None)


def test_version():
    result = CliRunner().invoke(cli, ["--version"])
    assert result.exit_code == 0
    assert __version__ in result.output


def test_models_lists_presets(isolated_home, tmp_dir, output):
    result = CliRunner().invoke(cli, ["models"])
    assert result.exit_code == 0, result.output
    text = output.getvalue()
    assert "gpt-4o-mini" in text
    assert "102,400" in text
    assert "800,000" in text
    assert "●" in text


def test_estimate_small_file(isolated_home, tmp_dir, output, no_logging):
    path = tmp_dir / "note.txt"
    path.write_text("hello world " * 100)
    result = CliRunner().invoke(cli, ["estimate", str(path), "--model", "gpt-4o"])
    assert result.exit_code == 0, result.output
    text = output.getvalue()
    assert "1,200" in text          # characters
    assert "gpt-4o" in text
    assert "Would reduce" in text
    assert "remaining" in text


def test_estimate_large_file_would_reduce(isolated_home, tmp_dir, output, no_logging,
                                          config_yaml_file):
    path = tmp_dir / "big.txt"
    path.write_text("x" * 60000)
    result = CliRunner().invoke(cli, ["estimate", str(path)])
    assert result.exit_code == 0, result.output
    text = output.getvalue()
    assert "local" in text
    assert "yes" in text


def test_estimate_missing_file(isolated_home, tmp_dir):
    result = CliRunner().invoke(cli, ["estimate", str(tmp_dir / "missing.txt")])
    assert result.exit_code != 0


def test_chat_rejects_unknown_model(isolated_home, tmp_dir, output):
    result = CliRunner().invoke(cli, ["chat", "--model", "nope"])
    assert result.exit_code == 1
    assert "unknown model 'nope'" in output.getvalue()
