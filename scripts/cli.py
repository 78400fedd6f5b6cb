from pathlib import Path
from typing import Any, Dict, Optional

import typer
from dotenv import load_dotenv
from pydantic import ValidationError as PydanticValidationError
from rich import print
from rich.markup import escape

from benchmarks.executor import BenchmarkExecutor
from benchmarks.workload_registry import WorkloadRegistry
from ledger.client import RegistryClient
from ledger.factory import build_registry_client
from proofs.config_loader import load_config
from proofs.config_models import ProofConfig
from proofs.coordinator import ReceiptCoordinator
from proofs.errors import ProofError, ValidationError
from proofs.execution_log import ExecutionLog
from proofs.manifest_store import write_json
from proofs.schemas import SERVER_BENCHMARK, BenchmarkConfig
from proofs.verify import verify_path
from storage.factory import build_storage

app = typer.Typer(add_completion=False)
load_dotenv()

DEFAULT_LOCAL_STATE_PATH = "ledger-state.json"


def _load(config_path: Optional[str]) -> ProofConfig:
    try:
        config = load_config(Path(config_path) if config_path else None)
    except FileNotFoundError as exc:
        raise ValidationError(str(exc)) from exc
    if config.ledger.type == "local" and not config.ledger.state_path:
        # The CLI is one process per command, so the local ledger must persist between calls.
        ledger = config.ledger.model_copy(update={"state_path": DEFAULT_LOCAL_STATE_PATH})
        config = config.model_copy(update={"ledger": ledger})
    return config


def _benchmark_config(base: BenchmarkConfig, overrides: Dict[str, Any]) -> BenchmarkConfig:
    values = base.model_dump()
    values.update({key: value for key, value in overrides.items() if value is not None})
    try:
        return BenchmarkConfig.model_validate(values)
    except PydanticValidationError as exc:
        raise ValidationError(f"Invalid benchmark config: {exc}") from exc


def _build_coordinator(config: ProofConfig, registry: RegistryClient, verbose: bool) -> ReceiptCoordinator:
    return ReceiptCoordinator(
        registry=registry,
        storage=build_storage(config.storage),
        config=config,
        echo=print if verbose else None,
    )


def _fail(exc: ProofError) -> None:
    print(f"[red]Error[/red] {exc.kind}: {escape(exc.message)}")
    raise typer.Exit(code=1)


@app.command("create-task")
def create_task(
    duration: int = typer.Option(30, help="Requested duration in seconds; one third goes to the CPU phase"),
    memory_size_mb: Optional[int] = typer.Option(None, help="Memory phase size override"),
    disk_size_mb: Optional[int] = typer.Option(None, help="Disk phase size override"),
    config: Optional[str] = typer.Option(None, help="YAML config path"),
):
    """Anchor a new task spec on the ledger."""
    try:
        proof_config = _load(config)
        with build_registry_client(proof_config.ledger) as registry:
            coordinator = _build_coordinator(proof_config, registry, verbose=False)
            outcome = coordinator.create_task(
                duration,
                memory_size_mb=memory_size_mb,
                disk_size_mb=disk_size_mb,
            )
    except ProofError as exc:
        _fail(exc)

    print(f"Task created: task_id={outcome.task_id} tx={outcome.tx_hash}")
    print(f"Spec hash: {outcome.spec_hash}")
    spec_config = outcome.task_spec.config
    print(
        "Config:"
        f" cpuDurationMs={spec_config.cpu_duration_ms}"
        f" memorySizeMB={spec_config.memory_size_mb}"
        f" diskSizeMB={spec_config.disk_size_mb}"
    )


@app.command()
def execute(
    task_id: int = typer.Argument(..., help="Ledger task id"),
    cpu_duration_ms: Optional[int] = typer.Option(None, help="CPU phase duration override"),
    memory_size_mb: Optional[int] = typer.Option(None, help="Memory phase size override"),
    disk_size_mb: Optional[int] = typer.Option(None, help="Disk phase size override"),
    workload: str = typer.Option(SERVER_BENCHMARK, help="Registered workload name"),
    config: Optional[str] = typer.Option(None, help="YAML config path"),
    verbose: bool = typer.Option(
        False,
        "--verbose/--quiet",
        help="Quiet by default; use --verbose to echo execution log lines.",
    ),
):
    """Run the workload for a task, publish artifacts, and submit the receipt."""
    try:
        proof_config = _load(config)
        bench_config = _benchmark_config(
            proof_config.benchmark,
            {
                "cpu_duration_ms": cpu_duration_ms,
                "memory_size_mb": memory_size_mb,
                "disk_size_mb": disk_size_mb,
            },
        )
        with build_registry_client(proof_config.ledger) as registry:
            coordinator = _build_coordinator(proof_config, registry, verbose=verbose)
            outcome = coordinator.execute(task_id, bench_config, workload=workload)
    except ProofError as exc:
        _fail(exc)

    print(f"Artifacts: {outcome.artifact_dir}")
    print(f"Artifact hash: {outcome.artifact_hash}")
    print(f"Result hash: {outcome.result_hash}")
    locator_note = " (fallback)" if outcome.storage_fallback else ""
    print(f"Artifact URL: {outcome.artifact_url}{locator_note}")
    if not outcome.submitted:
        winner = outcome.winning_receipt
        print(
            f"[yellow]Lost race[/yellow]: task {outcome.task_id} was already receipted"
            f" by {winner.operator if winner else 'another operator'}"
        )
        if winner is not None:
            print(f"Winning artifact hash: {winner.artifact_hash}")
            print(f"Winning result hash: {winner.result_hash}")
        raise typer.Exit(code=2)

    summary = outcome.benchmark_summary
    tx_note = outcome.receipt_tx_hash or "unknown (receipt already on the ledger)"
    print(f"Receipt submitted: task_id={outcome.task_id} tx={tx_note}")
    print(
        "Benchmark:"
        f" totalDurationMs={summary['totalDurationMs']}"
        f" cpuOpsPerSec={summary['cpuOpsPerSec']}"
        f" memoryWriteMBps={summary['memoryWriteMBps']}"
        f" diskWriteMBps={summary['diskWriteMBps']}"
    )
    print(f"Run log: {outcome.run_log_path}")


@app.command()
def status(
    task_id: int = typer.Argument(..., help="Ledger task id"),
    config: Optional[str] = typer.Option(None, help="YAML config path"),
):
    """Show a task, its derived status, and the receipt when present."""
    try:
        proof_config = _load(config)
        with build_registry_client(proof_config.ledger) as registry:
            view = _build_coordinator(proof_config, registry, verbose=False).task_status(task_id)
    except ProofError as exc:
        _fail(exc)

    print(f"Task {view.task.task_id}: {view.status.value}")
    print(f"Requester: {view.task.requester}")
    print(f"Spec hash: {view.task.spec_hash}")
    print(f"Created at: {view.task.created_at}")
    if view.receipt is not None:
        print(f"Operator: {view.receipt.operator}")
        print(f"Artifact hash: {view.receipt.artifact_hash}")
        print(f"Result hash: {view.receipt.result_hash}")
        print(f"Completed at: {view.receipt.completed_at}")


@app.command()
def verify(
    task_id: int = typer.Argument(..., help="Ledger task id"),
    path: str = typer.Argument(..., help="Downloaded result.json or artifact folder"),
    config: Optional[str] = typer.Option(None, help="YAML config path"),
):
    """Recompute a downloaded artifact's hash and compare it with the ledger."""
    try:
        proof_config = _load(config)
        with build_registry_client(proof_config.ledger) as registry:
            result = verify_path(registry, task_id, Path(path))
    except ProofError as exc:
        _fail(exc)

    print(f"Expected {result.subject} hash: {result.expected_hash}")
    print(f"Actual {result.subject} hash:   {result.actual_hash}")
    if not result.matches:
        print("[red]Mismatch[/red]")
        raise typer.Exit(code=1)
    print("[green]Verified[/green]")


@app.command()
def benchmark(
    cpu_duration_ms: Optional[int] = typer.Option(None, help="CPU phase duration override"),
    memory_size_mb: Optional[int] = typer.Option(None, help="Memory phase size override"),
    disk_size_mb: Optional[int] = typer.Option(None, help="Disk phase size override"),
    workload: str = typer.Option(SERVER_BENCHMARK, help="Registered workload name"),
    output: Optional[str] = typer.Option(None, help="Write the result document to this path"),
    config: Optional[str] = typer.Option(None, help="YAML config path"),
    verbose: bool = typer.Option(
        True,
        "--verbose/--quiet",
        help="Verbose by default; use --quiet to only print the summary.",
    ),
):
    """Run a workload locally without touching the ledger or storage."""
    registry = WorkloadRegistry()
    if workload not in registry.list_workloads():
        raise typer.BadParameter(
            f"Unknown workload '{workload}'. Supported workloads: {', '.join(registry.list_workloads())}",
            param_hint="workload",
        )
    try:
        proof_config = _load(config)
        bench_config = _benchmark_config(
            proof_config.benchmark,
            {
                "cpu_duration_ms": cpu_duration_ms,
                "memory_size_mb": memory_size_mb,
                "disk_size_mb": disk_size_mb,
            },
        )
        scratch_root = Path(proof_config.output.scratch_root) if proof_config.output.scratch_root else None
        executor = BenchmarkExecutor(scratch_root=scratch_root, registry=registry)
        result = executor.run(bench_config, ExecutionLog(echo=print if verbose else None), workload=workload)
    except ProofError as exc:
        _fail(exc)

    summary = result.summary()
    print(
        "Benchmark:"
        f" totalDurationMs={summary['totalDurationMs']}"
        f" cpuOpsPerSec={summary['cpuOpsPerSec']}"
        f" memoryWriteMBps={summary['memoryWriteMBps']}"
        f" diskWriteMBps={summary['diskWriteMBps']}"
    )
    if output:
        write_json(Path(output), result.to_document())
        print(f"Result written to {output}")


if __name__ == "__main__":
    app()
