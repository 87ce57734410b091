import os
from pathlib import Path
import subprocess
import sys

from tmtools import cli

from conftest import FakeOrgConnector


def _base_env(tmp_path: Path) -> dict:
    env = os.environ.copy()
    for name in ("SF_INSTANCE_URL", "SF_ACCESS_TOKEN", "SF_USERNAME", "SF_ALIAS"):
        env.pop(name, None)
    env["TMTOOLS_BASE_DIR"] = str(tmp_path / "tm-tools-output")
    env["RETRY_BACKOFF_SECONDS"] = "0"
    return env


def _run(tmp_path: Path, *args: str) -> subprocess.CompletedProcess:
    return subprocess.run(
        [sys.executable, "-m", "tmtools.cli", *args],
        cwd=Path(__file__).resolve().parents[1],
        env=_base_env(tmp_path),
        check=False,
        capture_output=True,
        text=True,
    )


def test_cli_returns_nonzero_on_missing_precondition(tmp_path: Path) -> None:
    proc = _run(tmp_path, "transform", "--base-dir", str(tmp_path))

    assert proc.returncode == 1
    assert "transform failed (precondition)" in proc.stdout
    assert "TM1 Analysis report could not be found" in proc.stdout


def test_cli_returns_nonzero_without_credentials(tmp_path: Path) -> None:
    proc = _run(tmp_path, "analyze")

    assert proc.returncode == 1
    assert "analyze failed (auth)" in proc.stdout


def test_cli_status_lists_every_stage(tmp_path: Path) -> None:
    proc = _run(tmp_path, "status")

    assert proc.returncode == 0
    assert proc.stdout.count("not completed") == 7


def test_cli_without_command_prints_help(tmp_path: Path) -> None:
    proc = _run(tmp_path)

    assert proc.returncode == 2
    assert "usage:" in proc.stdout


def test_cli_runs_the_pipeline(temp_workspace: Path, monkeypatch, capsys) -> None:
    org = FakeOrgConnector()
    monkeypatch.setattr(cli, "build_connector", lambda settings: org)
    base = ["--base-dir", str(temp_workspace)]

    assert cli.main(["analyze", *base]) == 0
    assert cli.main(["extract", *base]) == 0
    assert cli.main(["transform", *base]) == 0

    out = capsys.readouterr().out
    assert "TM TOOLS TRANSFORM" in out
    assert "Record counts reconciled with no discrepancies" in out

    org.model_state = "Inactive"
    assert cli.main(["deploy", *base]) == 1
    out = capsys.readouterr().out
    assert "[ERROR] TM2 Model Activation" in out
    assert "deploy failed (aborted)" in out

    assert cli.main(["status", *base]) == 0
    out = capsys.readouterr().out
    assert out.count("not completed") == 4
