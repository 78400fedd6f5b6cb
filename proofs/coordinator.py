from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Tuple

from pydantic import ValidationError as PydanticValidationError

from benchmarks.executor import BenchmarkExecutor
from ledger.client import RegistryClient
from ledger.contract import validate_task_id
from proofs.artifacts import RECEIPT_FILE, ArtifactHasher, HashedArtifacts
from proofs.config_models import ProofConfig
from proofs.errors import (
    REVERT_RECEIPT_EXISTS,
    ConflictError,
    ExecutionFailure,
    ProofError,
    StorageFailure,
    ValidationError,
)
from proofs.execution_log import ExecutionLog
from proofs.hashing import hash_json
from proofs.manifest_store import append_log, run_log_path
from proofs.schemas import SERVER_BENCHMARK, BenchmarkConfig, Receipt, Task, TaskSpec, TaskStatus
from storage.backends import ArtifactStorage
from storage.factory import fallback_locator

STATUS_SUBMITTED = "submitted"
STATUS_LOST_RACE = "lost_race"


@dataclass
class TaskCreationOutcome:
    """Requester-side result of anchoring a task spec."""

    task_id: int
    spec_hash: str
    tx_hash: str
    task_spec: TaskSpec

    def to_dict(self) -> Dict[str, Any]:
        return {
            "taskId": self.task_id,
            "specHash": self.spec_hash,
            "txHash": self.tx_hash,
            "taskSpec": self.task_spec.to_document(),
        }


@dataclass
class TaskStatusView:
    task: Task
    status: TaskStatus
    receipt: Optional[Receipt]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "task": {**self.task.to_dict(), "status": self.status.value},
            "receipt": self.receipt.to_dict() if self.receipt else None,
        }


@dataclass
class ProofOutcome:
    """Consolidated summary of one proof cycle."""

    task_id: int
    status: str
    artifact_hash: str
    result_hash: str
    artifact_url: str
    storage_fallback: bool
    receipt_tx_hash: Optional[str]
    artifact_dir: Path
    run_log_path: Path
    benchmark_summary: Dict[str, Any]
    winning_receipt: Optional[Receipt] = None

    @property
    def submitted(self) -> bool:
        return self.status == STATUS_SUBMITTED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "taskId": self.task_id,
            "status": self.status,
            "artifactHash": self.artifact_hash,
            "resultHash": self.result_hash,
            "artifactUrl": self.artifact_url,
            "storageFallback": self.storage_fallback,
            "receiptTxHash": self.receipt_tx_hash,
            "artifactDir": str(self.artifact_dir),
            "benchmarkSummary": self.benchmark_summary,
            "winningReceipt": self.winning_receipt.to_dict() if self.winning_receipt else None,
        }


class ReceiptCoordinator:
    """Runs one proof cycle: execute, hash, upload, submit receipt, report."""

    def __init__(
        self,
        registry: RegistryClient,
        storage: ArtifactStorage,
        config: ProofConfig,
        executor: Optional[BenchmarkExecutor] = None,
        echo: Optional[Callable[[str], None]] = None,
    ) -> None:
        """Wire the ledger client, storage and config for one operator."""

        self.registry = registry
        self.storage = storage
        self.config = config
        self.executor = executor or BenchmarkExecutor(
            scratch_root=Path(config.output.scratch_root) if config.output.scratch_root else None
        )
        self.hasher = ArtifactHasher(Path(config.output.artifacts_dir))
        self.logs_dir = Path(config.output.logs_dir)
        self.echo = echo

    def create_task(
        self,
        duration: int = 30,
        *,
        task_type: str = SERVER_BENCHMARK,
        memory_size_mb: Optional[int] = None,
        disk_size_mb: Optional[int] = None,
    ) -> TaskCreationOutcome:
        """Build the task spec, anchor its hash, and return the assigned id."""

        try:
            task_spec = TaskSpec.from_duration(
                duration,
                task_type=task_type,
                memory_size_mb=memory_size_mb,
                disk_size_mb=disk_size_mb,
            )
        except PydanticValidationError as exc:
            raise ValidationError(f"Invalid task spec: {exc}") from exc
        spec_hash = hash_json(task_spec.to_document())
        creation = self.registry.create_task(spec_hash)
        append_log(
            run_log_path(self.logs_dir, creation.task_id),
            f"Task created: task_id={creation.task_id} spec_hash={spec_hash} tx={creation.tx_hash}",
        )
        return TaskCreationOutcome(
            task_id=creation.task_id,
            spec_hash=spec_hash,
            tx_hash=creation.tx_hash,
            task_spec=task_spec,
        )

    def task_status(self, task_id: int) -> TaskStatusView:
        task = self.registry.get_task(task_id)
        receipt = self.registry.get_receipt(task_id)
        status = TaskStatus.COMPLETED if receipt else TaskStatus.PENDING
        return TaskStatusView(task=task, status=status, receipt=receipt)

    def _upload(self, artifacts: HashedArtifacts, log_path: Path) -> Tuple[str, bool]:
        """Upload the content files; a storage failure degrades to the fallback locator."""

        prefix = f"task-{artifacts.task_id}"
        try:
            artifact_url = self.storage.upload_set(prefix, artifacts.content_files())
        except StorageFailure as exc:
            artifact_url = fallback_locator(self.config.storage, artifacts.task_id)
            append_log(log_path, f"Artifact upload failed ({exc.message}); using {artifact_url}", level="WARNING")
            return artifact_url, True
        append_log(log_path, f"Artifacts uploaded to {artifact_url}")
        return artifact_url, False

    def _upload_receipt(self, artifacts: HashedArtifacts, receipt_path: Path, log_path: Path) -> None:
        try:
            self.storage.put_object(
                f"task-{artifacts.task_id}/{RECEIPT_FILE}",
                receipt_path.read_bytes(),
                "application/json",
            )
        except StorageFailure as exc:
            append_log(log_path, f"receipt.json upload failed: {exc.message}", level="WARNING")

    def _is_own_receipt(self, receipt: Optional[Receipt], artifacts: HashedArtifacts) -> bool:
        """True when the stored receipt is exactly the one this run tried to submit."""

        return (
            receipt is not None
            and receipt.operator.lower() == self.registry.account.lower()
            and receipt.artifact_hash == artifacts.artifact_hash
            and receipt.result_hash == artifacts.result_hash
        )

    def execute(
        self,
        task_id: int,
        benchmark_config: Optional[BenchmarkConfig] = None,
        *,
        workload: str = SERVER_BENCHMARK,
    ) -> ProofOutcome:
        """Prove one execution of `workload` for an existing, unreceipted task."""

        task_id = validate_task_id(task_id)
        bench_config = benchmark_config or self.config.benchmark
        log_path = run_log_path(self.logs_dir, task_id)
        append_log(
            log_path,
            (
                "Starting execution:"
                f" task_id={task_id}"
                f" workload={workload}"
                f" cpuDurationMs={bench_config.cpu_duration_ms}"
                f" memorySizeMB={bench_config.memory_size_mb}"
                f" diskSizeMB={bench_config.disk_size_mb}"
                f" operator={self.registry.account}"
            ),
        )

        self.registry.get_task(task_id)
        if self.registry.get_receipt(task_id) is not None:
            append_log(log_path, "Task already has a receipt; not executing", level="WARNING")
            raise ConflictError(REVERT_RECEIPT_EXISTS)

        log = ExecutionLog(echo=self.echo)
        log.append(f"Starting execution for task {task_id}")
        try:
            result = self.executor.run(bench_config, log, workload=workload)
        except ExecutionFailure as exc:
            append_log(log_path, f"Benchmark aborted: {exc.message}", level="ERROR")
            raise
        log.append("Processing artifacts")

        artifacts = self.hasher.materialize(task_id, result, log)
        append_log(
            log_path,
            f"Artifacts hashed: artifact_hash={artifacts.artifact_hash} result_hash={artifacts.result_hash}",
        )

        artifact_url, storage_fallback = self._upload(artifacts, log_path)
        receipt_path = self.hasher.write_receipt(artifacts, artifact_url, operator=self.registry.account)
        if not storage_fallback:
            self._upload_receipt(artifacts, receipt_path, log_path)

        summary = result.summary()
        try:
            submission = self.registry.submit_receipt(task_id, artifacts.artifact_hash, artifacts.result_hash)
        except ConflictError:
            winner = self.registry.get_receipt(task_id)
            if self._is_own_receipt(winner, artifacts):
                append_log(
                    log_path,
                    "Receipt already on the ledger with this operator and these hashes; treating as submitted",
                    level="WARNING",
                )
                return ProofOutcome(
                    task_id=task_id,
                    status=STATUS_SUBMITTED,
                    artifact_hash=artifacts.artifact_hash,
                    result_hash=artifacts.result_hash,
                    artifact_url=artifact_url,
                    storage_fallback=storage_fallback,
                    receipt_tx_hash=None,
                    artifact_dir=artifacts.artifact_dir,
                    run_log_path=log_path,
                    benchmark_summary=summary,
                )
            # Another operator finalized first; its receipt stands.
            append_log(
                log_path,
                f"Receipt rejected: another operator ({winner.operator if winner else 'unknown'}) submitted first",
                level="WARNING",
            )
            return ProofOutcome(
                task_id=task_id,
                status=STATUS_LOST_RACE,
                artifact_hash=artifacts.artifact_hash,
                result_hash=artifacts.result_hash,
                artifact_url=artifact_url,
                storage_fallback=storage_fallback,
                receipt_tx_hash=None,
                artifact_dir=artifacts.artifact_dir,
                run_log_path=log_path,
                benchmark_summary=summary,
                winning_receipt=winner,
            )
        except ProofError as exc:
            append_log(log_path, f"Receipt submission failed [{exc.kind}]: {exc.message}", level="ERROR")
            raise

        append_log(log_path, f"Receipt submitted: tx={submission.tx_hash} block={submission.block_number}")
        return ProofOutcome(
            task_id=task_id,
            status=STATUS_SUBMITTED,
            artifact_hash=artifacts.artifact_hash,
            result_hash=artifacts.result_hash,
            artifact_url=artifact_url,
            storage_fallback=storage_fallback,
            receipt_tx_hash=submission.tx_hash,
            artifact_dir=artifacts.artifact_dir,
            run_log_path=log_path,
            benchmark_summary=summary,
        )
