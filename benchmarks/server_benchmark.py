from __future__ import annotations

import os
import platform
import time
from pathlib import Path
from typing import Optional

from benchmarks.phases import MEGABYTE, cpu_phase, disk_phase, memory_phase
from proofs.execution_log import ExecutionLog
from proofs.schemas import BenchmarkConfig, BenchmarkResult, SystemInfo, utc_now_iso


def _sysconf_mb(pages_name: str) -> Optional[int]:
    """Physical memory figure from sysconf, or None where unsupported."""

    try:
        pages = os.sysconf(pages_name)
        page_size = os.sysconf("SC_PAGE_SIZE")
    except (AttributeError, ValueError, OSError):
        return None
    if pages < 0 or page_size < 0:
        return None
    return int(pages * page_size // MEGABYTE)


def collect_system_info() -> SystemInfo:
    return SystemInfo(
        platform=platform.system().lower(),
        arch=platform.machine(),
        cpus=os.cpu_count() or 1,
        total_memory_mb=_sysconf_mb("SC_PHYS_PAGES"),
        free_memory_mb=_sysconf_mb("SC_AVPHYS_PAGES"),
        python_version=platform.python_version(),
    )


def run_server_benchmark(
    config: BenchmarkConfig,
    log: ExecutionLog,
    scratch_root: Optional[Path] = None,
) -> BenchmarkResult:
    """Run CPU, memory and disk phases one after another and assemble the result."""

    log.append("Starting SERVER_BENCHMARK")
    log.append(
        "Benchmark configuration:"
        f" cpuDurationMs={config.cpu_duration_ms}"
        f" memorySizeMB={config.memory_size_mb}"
        f" diskSizeMB={config.disk_size_mb}"
    )
    start = time.perf_counter()

    system_info = collect_system_info()
    log.append(f"System info: {system_info.model_dump_json(by_alias=True)}")

    # Phases must not overlap: each one's throughput is measured in isolation.
    cpu = cpu_phase(config.cpu_duration_ms, log)
    memory = memory_phase(config.memory_size_mb, log)
    disk = disk_phase(config.disk_size_mb, log, scratch_root=scratch_root)

    total_duration_ms = int(round((time.perf_counter() - start) * 1000))
    log.append(f"SERVER_BENCHMARK completed in {total_duration_ms}ms")
    return BenchmarkResult(
        system_info=system_info,
        cpu=cpu,
        memory=memory,
        disk=disk,
        total_duration_ms=total_duration_ms,
        timestamp=utc_now_iso(),
    )
