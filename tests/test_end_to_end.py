from __future__ import annotations

import json
from pathlib import Path

import pytest

from ledger.client import LocalRegistryClient
from proofs.config_models import OutputConfig, ProofConfig, StorageConfig
from proofs.coordinator import ReceiptCoordinator
from proofs.errors import NotFoundError, ValidationError
from proofs.hashing import hash_json
from proofs.schemas import BenchmarkConfig, TaskSpec, TaskStatus
from proofs.verify import verify_artifact_dir, verify_path, verify_result_file
from storage.backends import LocalArtifactStorage

ACCOUNT = "0x00000000000000000000000000000000000000a1"


def _config(tmp_path: Path, benchmark: BenchmarkConfig) -> ProofConfig:
    return ProofConfig(
        storage=StorageConfig(local_root=str(tmp_path / "store")),
        benchmark=benchmark,
        output=OutputConfig(
            artifacts_dir=str(tmp_path / "artifacts"),
            logs_dir=str(tmp_path / "logs"),
            scratch_root=str(tmp_path / "scratch"),
        ),
    )


def test_server_benchmark_proof_cycle(tmp_path: Path):
    config = _config(tmp_path, BenchmarkConfig(cpu_duration_ms=5000, memory_size_mb=100, disk_size_mb=10))
    storage = LocalArtifactStorage(Path(config.storage.local_root))

    with LocalRegistryClient(account=ACCOUNT) as registry:
        spec = TaskSpec.from_duration(30)
        creation = registry.create_task(hash_json(spec.to_document()))
        assert creation.task_id == 0
        assert registry.task_status(0) is TaskStatus.PENDING

        coordinator = ReceiptCoordinator(registry, storage, config)
        outcome = coordinator.execute(0)
        assert outcome.submitted
        assert registry.task_status(0) is TaskStatus.COMPLETED

        result = (outcome.artifact_dir / "result.json").read_text(encoding="utf-8")
        assert '"iterations"' in result
        summary = outcome.benchmark_summary
        assert summary["cpuOpsPerSec"] > 0
        assert summary["memoryWriteMBps"] > 0

        files = sorted(p.name for p in outcome.artifact_dir.iterdir())
        assert files == ["execution.log", "metrics.json", "receipt.json", "result.json"]

        # Download path: the local store holds the same bytes that were hashed.
        downloaded = tmp_path / "store" / "task-0"
        result_check = verify_result_file(registry, 0, downloaded / "result.json")
        assert result_check.matches
        folder_check = verify_artifact_dir(registry, 0, downloaded)
        assert folder_check.matches
        assert verify_path(registry, 0, outcome.artifact_dir).matches

    document = json.loads(result)
    assert document["cpu"]["iterations"] > 0
    assert document["cpu"]["primesFound"] > 0
    assert document["memory"]["writeMBps"] > 0
    assert document["disk"]["readMBps"] > 0
    assert document["disk"]["bytesWritten"] == 10 * 1024 * 1024
    assert list((tmp_path / "scratch").iterdir()) == []


def test_tampered_result_fails_verification(tmp_path: Path):
    config = _config(tmp_path, BenchmarkConfig(cpu_duration_ms=10, memory_size_mb=1, disk_size_mb=1))
    with LocalRegistryClient(account=ACCOUNT) as registry:
        coordinator = ReceiptCoordinator(registry, LocalArtifactStorage(tmp_path / "store"), config)
        coordinator.create_task(30)
        outcome = coordinator.execute(0)

        tampered = tmp_path / "result.json"
        tampered.write_bytes((outcome.artifact_dir / "result.json").read_bytes().replace(b'"cpu"', b'"cpu" '))
        check = verify_result_file(registry, 0, tampered)
        assert not check.matches
        assert check.expected_hash == outcome.result_hash
        assert check.to_dict()["matches"] is False


def test_verify_requires_receipt_and_existing_path(tmp_path: Path):
    with LocalRegistryClient(account=ACCOUNT) as registry:
        registry.create_task(hash_json(TaskSpec.from_duration(30).to_document()))
        (tmp_path / "result.json").write_text("{}\n", encoding="utf-8")
        with pytest.raises(NotFoundError):
            verify_result_file(registry, 0, tmp_path / "result.json")
        with pytest.raises(ValidationError):
            verify_result_file(registry, 0, tmp_path / "missing.json")
        with pytest.raises(ValidationError):
            verify_path(registry, 0, tmp_path / "other.txt")
