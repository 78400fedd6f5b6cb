from __future__ import annotations

import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Tuple

from proofs.execution_log import ExecutionLog
from proofs.hashing import hash_artifact_dir, hash_file
from proofs.manifest_store import canonical_document_text, write_json
from proofs.schemas import BenchmarkResult, utc_now_iso

EXECUTION_LOG = "execution.log"
METRICS_FILE = "metrics.json"
RESULT_FILE = "result.json"
RECEIPT_FILE = "receipt.json"
ARTIFACT_FILES = (EXECUTION_LOG, METRICS_FILE, RECEIPT_FILE, RESULT_FILE)


@dataclass
class HashedArtifacts:
    """Materialized artifact folder plus the two digests anchored on the ledger."""

    task_id: int
    artifact_dir: Path
    artifact_hash: str
    result_hash: str

    def content_files(self) -> List[Tuple[str, bytes]]:
        """Regular files currently in the folder, sorted by name."""

        return [
            (path.name, path.read_bytes())
            for path in sorted(self.artifact_dir.iterdir(), key=lambda p: p.name)
            if path.is_file()
        ]


def artifact_dir_for(artifacts_dir: Path, task_id: int) -> Path:
    return artifacts_dir / f"task-{task_id}"


def build_metrics(result: BenchmarkResult) -> Dict[str, Any]:
    """Summary projection of the full result."""

    return {
        "totalDurationMs": result.total_duration_ms,
        "timestamp": result.timestamp,
        "systemInfo": result.system_info.to_document(),
        "summary": {
            "cpuOpsPerSecond": result.cpu.ops_per_second,
            "memoryWriteMBps": result.memory.write_mbps,
            "memoryReadMBps": result.memory.read_mbps,
            "diskWriteMBps": result.disk.write_mbps,
            "diskReadMBps": result.disk.read_mbps,
        },
    }


def render_result(result: BenchmarkResult) -> str:
    """Canonical serialization of result.json."""

    return canonical_document_text(result.to_document())


class ArtifactHasher:
    """Turns a benchmark result and its execution log into the hashed artifact set."""

    def __init__(self, artifacts_dir: Path) -> None:
        self.artifacts_dir = artifacts_dir

    def materialize(self, task_id: int, result: BenchmarkResult, log: ExecutionLog) -> HashedArtifacts:
        """Write execution.log, metrics.json and result.json, then hash them."""

        folder = artifact_dir_for(self.artifacts_dir, task_id)
        if folder.exists():
            shutil.rmtree(folder)
        folder.mkdir(parents=True)

        (folder / EXECUTION_LOG).write_bytes(log.render().encode("utf-8"))
        write_json(folder / METRICS_FILE, build_metrics(result))
        (folder / RESULT_FILE).write_bytes(render_result(result).encode("utf-8"))

        # receipt.json is not there yet; it records these hashes.
        return HashedArtifacts(
            task_id=task_id,
            artifact_dir=folder,
            artifact_hash=hash_artifact_dir(folder),
            result_hash=hash_file(folder / RESULT_FILE),
        )

    def write_receipt(
        self,
        artifacts: HashedArtifacts,
        artifact_url: str,
        operator: str,
    ) -> Path:
        """Add receipt.json once hashes and locator are known."""

        path = artifacts.artifact_dir / RECEIPT_FILE
        write_json(
            path,
            {
                "taskId": artifacts.task_id,
                "artifactHash": artifacts.artifact_hash,
                "resultHash": artifacts.result_hash,
                "artifactUrl": artifact_url,
                "createdAt": utc_now_iso(),
                "operator": operator,
            },
        )
        return path
