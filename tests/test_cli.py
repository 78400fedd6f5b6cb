from __future__ import annotations

import json
from pathlib import Path

import pytest
from typer.testing import CliRunner

from proofs.config_loader import ENV_OVERRIDES
from scripts.cli import app

runner = CliRunner()
SMALL = ["--cpu-duration-ms", "10", "--memory-size-mb", "1", "--disk-size-mb", "1"]


@pytest.fixture
def workdir(tmp_path: Path, monkeypatch) -> Path:
    monkeypatch.chdir(tmp_path)
    for name in list(ENV_OVERRIDES) + ["ARTIFACT_STORAGE_TOKEN"]:
        monkeypatch.delenv(name, raising=False)
    return tmp_path


def test_create_execute_status_verify_flow(workdir: Path):
    created = runner.invoke(app, ["create-task", "--duration", "30"])
    assert created.exit_code == 0, created.output
    assert "task_id=0" in created.output
    assert "cpuDurationMs=10000" in created.output
    assert (workdir / "ledger-state.json").exists()

    pending = runner.invoke(app, ["status", "0"])
    assert pending.exit_code == 0, pending.output
    assert "PENDING" in pending.output

    executed = runner.invoke(app, ["execute", "0", *SMALL])
    assert executed.exit_code == 0, executed.output
    assert "Receipt submitted" in executed.output
    assert (workdir / "artifacts" / "task-0" / "receipt.json").exists()
    assert (workdir / "logs" / "task-0.log").exists()

    completed = runner.invoke(app, ["status", "0"])
    assert "COMPLETED" in completed.output

    verified = runner.invoke(app, ["verify", "0", "artifacts/task-0/result.json"])
    assert verified.exit_code == 0, verified.output
    assert "Verified" in verified.output

    folder = runner.invoke(app, ["verify", "0", "artifacts/task-0"])
    assert folder.exit_code == 0, folder.output


def test_second_execute_is_conflict(workdir: Path):
    runner.invoke(app, ["create-task"])
    assert runner.invoke(app, ["execute", "0", *SMALL]).exit_code == 0

    again = runner.invoke(app, ["execute", "0", *SMALL])
    assert again.exit_code == 1
    assert "conflict" in again.output
    assert "Receipt submitted" not in again.output


def test_unknown_task_reports_not_found(workdir: Path):
    result = runner.invoke(app, ["status", "9"])
    assert result.exit_code == 1
    assert "not_found" in result.output


def test_invalid_override_reports_validation(workdir: Path):
    runner.invoke(app, ["create-task"])
    result = runner.invoke(app, ["execute", "0", "--disk-size-mb", "0"])
    assert result.exit_code == 1
    assert "validation" in result.output


def test_benchmark_writes_result_document(workdir: Path):
    result = runner.invoke(app, ["benchmark", *SMALL, "--quiet", "--output", "bench.json"])
    assert result.exit_code == 0, result.output
    assert "cpuOpsPerSec=" in result.output
    document = json.loads((workdir / "bench.json").read_text(encoding="utf-8"))
    assert document["disk"]["fileSizeMB"] == 1
    assert not (workdir / "ledger-state.json").exists()


def test_benchmark_rejects_unknown_workload(workdir: Path):
    result = runner.invoke(app, ["benchmark", "--workload", "GPU_BENCHMARK"])
    assert result.exit_code != 0


def test_config_file_selects_directories(workdir: Path):
    (workdir / "proof.yaml").write_text(
        "ledger:\n  state_path: state/ledger.json\noutput:\n  artifacts_dir: out\n",
        encoding="utf-8",
    )
    assert runner.invoke(app, ["create-task", "--config", "proof.yaml"]).exit_code == 0
    result = runner.invoke(app, ["execute", "0", *SMALL, "--config", "proof.yaml"])
    assert result.exit_code == 0, result.output
    assert (workdir / "state" / "ledger.json").exists()
    assert (workdir / "out" / "task-0" / "result.json").exists()


def test_create_task_rejects_zero_memory(workdir: Path):
    result = runner.invoke(app, ["create-task", "--memory-size-mb", "0"])
    assert result.exit_code == 1
    assert "validation" in result.output
    assert not (workdir / "ledger-state.json").exists()


def test_missing_config_file_reports_validation(workdir: Path):
    result = runner.invoke(app, ["status", "0", "--config", "absent.yaml"])
    assert result.exit_code == 1
    assert "validation" in result.output
    assert "absent.yaml" in result.output
    assert result.exception is None or isinstance(result.exception, SystemExit)
