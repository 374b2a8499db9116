from __future__ import annotations

import json
from pathlib import Path

import pytest
from typer.testing import CliRunner

from deepscan_client import __version__
from deepscan_client.cli.main import EXIT_CLEAN, EXIT_FAILED, EXIT_ISSUES, app, exit_code_for
from deepscan_client.lsp.protocol import Status, StatusParams
from tests.helpers import fake_server_command

runner = CliRunner()


def _workspace(tmp_path: Path, mode: str = "normal", **extra: object) -> Path:
    config = {"serverCommand": fake_server_command(mode), **extra}
    (tmp_path / ".deepscan.json").write_text(json.dumps(config), encoding="utf-8")
    return tmp_path


def _inspect(workspace: Path, name: str, text: str) -> object:
    (workspace / name).write_text(text, encoding="utf-8")
    return runner.invoke(app, [
        "inspect", name,
        "--directory", str(workspace),
        "--timeout", "15",
        "--no-log-file",
    ])


def test_version() -> None:
    result = runner.invoke(app, ["--version"])

    assert result.exit_code == 0
    assert f"deepscan-client {__version__}" in result.stdout


def test_exit_code_for_status() -> None:
    assert exit_code_for(None) == EXIT_FAILED
    assert exit_code_for(StatusParams(state=Status.OK)) == EXIT_CLEAN
    assert exit_code_for(StatusParams(state=Status.NONE)) == EXIT_CLEAN
    assert exit_code_for(StatusParams(state=Status.WARN)) == EXIT_ISSUES
    assert exit_code_for(StatusParams(state=Status.FAIL)) == EXIT_FAILED


def test_config_prints_the_effective_section(tmp_path: Path) -> None:
    _workspace(tmp_path, server="https://scan.example")

    result = runner.invoke(app, ["config", "--directory", str(tmp_path), "--sources"])

    assert result.exit_code == 0
    assert '"server": "https://scan.example"' in result.stdout
    assert ".deepscan.json" in result.stdout.replace("\n", "")


def test_config_reports_invalid_settings(tmp_path: Path) -> None:
    (tmp_path / ".deepscan.json").write_text('{"enable": "definitely"}', encoding="utf-8")

    result = runner.invoke(app, ["config", "--directory", str(tmp_path)])

    assert result.exit_code == EXIT_FAILED


def test_config_reports_malformed_settings_file(tmp_path: Path) -> None:
    (tmp_path / ".deepscan.json").write_text('{"enable": true', encoding="utf-8")

    result = runner.invoke(app, ["config", "--directory", str(tmp_path)])

    assert result.exit_code == EXIT_FAILED


def test_inspect_clean_file(tmp_path: Path) -> None:
    result = _inspect(_workspace(tmp_path), "app.js", "let a = 1;\n")

    assert result.exit_code == EXIT_CLEAN
    assert "Issue-free!" in result.stdout


def test_inspect_file_with_findings(tmp_path: Path) -> None:
    result = _inspect(_workspace(tmp_path), "app.js", "let a = null;\nproblem.x;\n")

    assert result.exit_code == EXIT_ISSUES
    assert "Issue(s) detected!" in result.stdout
    assert "Property of null is accessed" in result.stdout


def test_inspect_failure(tmp_path: Path) -> None:
    result = _inspect(_workspace(tmp_path, "fail"), "app.js", "let a = 1;\n")

    assert result.exit_code == EXIT_FAILED
    assert "analysis timed out" in result.stdout


@pytest.mark.parametrize("name", ["notes.txt", "missing.js"])
def test_inspect_rejects_unusable_files(tmp_path: Path, name: str) -> None:
    workspace = _workspace(tmp_path)
    if name.endswith(".txt"):
        (workspace / name).write_text("plain text\n", encoding="utf-8")

    result = runner.invoke(app, ["inspect", name, "--directory", str(workspace), "--no-log-file"])

    assert result.exit_code == EXIT_FAILED


def test_inspect_accepts_configured_suffixes(tmp_path: Path) -> None:
    result = _inspect(_workspace(tmp_path, fileSuffixes=[".es6"]), "app.es6", "let a = 1;\n")

    assert result.exit_code == EXIT_CLEAN
