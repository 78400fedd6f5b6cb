from __future__ import annotations

from pathlib import Path
from typing import Callable, Dict, Mapping, Optional

from benchmarks.server_benchmark import run_server_benchmark
from proofs.execution_log import ExecutionLog
from proofs.schemas import SERVER_BENCHMARK, BenchmarkConfig, BenchmarkResult

WorkloadRunner = Callable[[BenchmarkConfig, ExecutionLog, Optional[Path]], BenchmarkResult]


class WorkloadRegistry:
    """Lookup table from task spec `type` to the workload that proves it."""

    DEFAULT_WORKLOADS: Mapping[str, WorkloadRunner] = {
        SERVER_BENCHMARK: run_server_benchmark,
    }

    def __init__(self, overrides: Optional[Mapping[str, WorkloadRunner]] = None) -> None:
        """Load built-in workloads and apply optional override mapping."""

        self._registry: Dict[str, WorkloadRunner] = dict(self.DEFAULT_WORKLOADS)
        if overrides:
            self._registry.update(dict(overrides))

    def get_runner(self, name: str) -> WorkloadRunner:
        """Return the runner for a workload type or raise a deterministic error."""

        if name not in self._registry:
            supported = ", ".join(sorted(self._registry.keys()))
            raise KeyError(f"Unknown workload '{name}'. Supported workloads: {supported}")
        return self._registry[name]

    def list_workloads(self) -> list[str]:
        """List all available workload types in stable order."""

        return sorted(self._registry.keys())
