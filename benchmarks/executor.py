from __future__ import annotations

from pathlib import Path
from typing import Optional

from benchmarks.workload_registry import WorkloadRegistry
from proofs.errors import ExecutionFailure, ValidationError
from proofs.execution_log import ExecutionLog
from proofs.schemas import SERVER_BENCHMARK, BenchmarkConfig, BenchmarkResult


class BenchmarkExecutor:
    """Runs a registered workload and hands back its result plus the log buffer."""

    def __init__(
        self,
        scratch_root: Optional[Path] = None,
        registry: Optional[WorkloadRegistry] = None,
    ) -> None:
        self.scratch_root = scratch_root
        self.registry = registry or WorkloadRegistry()

    def run(
        self,
        config: BenchmarkConfig,
        log: ExecutionLog,
        workload: str = SERVER_BENCHMARK,
    ) -> BenchmarkResult:
        """Execute one workload; any phase I/O error aborts with ExecutionFailure."""

        try:
            runner = self.registry.get_runner(workload)
        except KeyError as exc:
            raise ValidationError(exc.args[0]) from exc
        try:
            return runner(config, log, self.scratch_root)
        except ExecutionFailure:
            raise
        except OSError as exc:
            raise ExecutionFailure(f"{workload} aborted: {exc}") from exc
