"""The three measured phases of the server benchmark.

Each phase is self-contained, reports into the run's ExecutionLog, and turns
OS/memory errors into ExecutionFailure so the caller never sees partial data.
"""

from __future__ import annotations

import os
import shutil
import tempfile
import time
from array import array
from pathlib import Path
from typing import Callable, Optional

from proofs.errors import ExecutionFailure
from proofs.execution_log import ExecutionLog
from proofs.schemas import CpuResult, DiskResult, MemoryResult

MEGABYTE = 1024 * 1024
MEMORY_PROGRESS_EVERY = 1_000_000
CHECKSUM_MODULUS = 1_000_000
DISK_CHUNK_SIZE = MEGABYTE
DISK_TEST_FILENAME = "benchmark-test.dat"
# Clamp for sub-resolution timings so throughput never divides by zero.
MIN_ELAPSED_S = 1e-6


def is_prime(n: int) -> bool:
    """Trial division over the 6k +/- 1 wheel."""

    if n <= 1:
        return False
    if n <= 3:
        return True
    if n % 2 == 0 or n % 3 == 0:
        return False
    i = 5
    while i * i <= n:
        if n % i == 0 or n % (i + 2) == 0:
            return False
        i += 6
    return True


def _elapsed_ms(elapsed_s: float) -> int:
    return int(round(elapsed_s * 1000))


def _rate(amount: float, elapsed_s: float) -> float:
    return round(amount / max(elapsed_s, MIN_ELAPSED_S), 2)


def cpu_phase(
    duration_ms: int,
    log: ExecutionLog,
    clock: Callable[[], float] = time.perf_counter,
) -> CpuResult:
    """Count primes over 2, 3, 4, ... until the wall-clock budget is spent."""

    log.append(f"Starting CPU test: duration target {duration_ms}ms")
    budget_s = duration_ms / 1000.0
    start = clock()
    last_report = start
    iterations = 0
    primes_found = 0
    candidate = 2

    now = start
    while now - start < budget_s:
        if is_prime(candidate):
            primes_found += 1
        candidate += 1
        iterations += 1

        now = clock()
        if now - last_report >= 1.0:
            elapsed = now - start
            log.append(
                f"CPU progress: {min(100.0, elapsed / budget_s * 100):.1f}% "
                f"iterations={iterations} primes={primes_found} "
                f"ops_per_sec={int(iterations / max(elapsed, MIN_ELAPSED_S))}"
            )
            last_report = now

    elapsed_s = clock() - start
    ops_per_second = int(iterations / max(elapsed_s, MIN_ELAPSED_S))
    log.append(
        f"CPU test completed: {iterations} iterations, {primes_found} primes found, "
        f"{ops_per_second} ops/sec"
    )
    return CpuResult(
        iterations=iterations,
        primes_found=primes_found,
        duration_ms=_elapsed_ms(elapsed_s),
        ops_per_second=ops_per_second,
    )


def memory_phase(size_mb: int, log: ExecutionLog) -> MemoryResult:
    """Sequential write then read-accumulate over a 64-bit integer buffer."""

    log.append(f"Starting memory test with {size_mb}MB")
    element_count = size_mb * MEGABYTE // 8
    start = time.perf_counter()
    try:
        buffer = array("q", [0]) * element_count
    except MemoryError as exc:
        raise ExecutionFailure(f"Memory test could not allocate {size_mb}MB", phase="memory") from exc
    log.append(f"Allocated {element_count} elements ({size_mb}MB)")

    write_start = time.perf_counter()
    for i in range(element_count):
        buffer[i] = i * 2
        if i % MEMORY_PROGRESS_EVERY == 0 and i > 0:
            log.append(f"Memory write progress: {i / element_count * 100:.1f}%")
    write_s = time.perf_counter() - write_start
    log.append(f"Memory write complete in {_elapsed_ms(write_s)}ms")

    read_start = time.perf_counter()
    total = 0
    for i in range(element_count):
        total += buffer[i]
        if i % MEMORY_PROGRESS_EVERY == 0 and i > 0:
            log.append(f"Memory read progress: {i / element_count * 100:.1f}%")
    read_s = time.perf_counter() - read_start
    checksum = total % CHECKSUM_MODULUS
    log.append(f"Memory read complete in {_elapsed_ms(read_s)}ms, checksum {checksum}")

    del buffer
    total_s = time.perf_counter() - start
    result = MemoryResult(
        allocated_mb=size_mb,
        write_duration_ms=_elapsed_ms(write_s),
        read_duration_ms=_elapsed_ms(read_s),
        total_duration_ms=_elapsed_ms(total_s),
        write_mbps=_rate(size_mb, write_s),
        read_mbps=_rate(size_mb, read_s),
        checksum=checksum,
    )
    log.append(
        f"Memory test completed: write {result.write_mbps:.2f} MB/s, read {result.read_mbps:.2f} MB/s"
    )
    return result


def _make_scratch_dir(scratch_root: Optional[Path]) -> Path:
    """Create a uniquely named directory owned by this run only."""

    if scratch_root is not None:
        scratch_root.mkdir(parents=True, exist_ok=True)
    return Path(tempfile.mkdtemp(prefix="benchmark-", dir=scratch_root))


def disk_phase(size_mb: int, log: ExecutionLog, scratch_root: Optional[Path] = None) -> DiskResult:
    """Chunked sequential write, full read back, then scratch cleanup."""

    log.append(f"Starting disk I/O test with {size_mb}MB")
    try:
        scratch_dir = _make_scratch_dir(scratch_root)
    except OSError as exc:
        raise ExecutionFailure(f"Disk test could not create scratch directory: {exc}", phase="disk") from exc
    log.append(f"Scratch directory: {scratch_dir}")

    test_file = scratch_dir / DISK_TEST_FILENAME
    chunk = b"A" * DISK_CHUNK_SIZE
    try:
        write_start = time.perf_counter()
        with test_file.open("wb") as f:
            for index in range(size_mb):
                f.write(chunk)
                written = index + 1
                if index % 2 == 0 or written == size_mb:
                    log.append(f"Disk written: {written}MB / {size_mb}MB ({written / size_mb * 100:.1f}%)")
            f.flush()
            os.fsync(f.fileno())
        write_s = time.perf_counter() - write_start
        log.append(f"Disk write complete in {_elapsed_ms(write_s)}ms")

        read_start = time.perf_counter()
        data = test_file.read_bytes()
        read_s = time.perf_counter() - read_start
        bytes_read = len(data)
        del data
        log.append(f"Disk read complete in {_elapsed_ms(read_s)}ms ({bytes_read} bytes)")
    except OSError as exc:
        shutil.rmtree(scratch_dir, ignore_errors=True)
        raise ExecutionFailure(f"Disk test I/O error: {exc}", phase="disk") from exc

    try:
        shutil.rmtree(scratch_dir)
    except OSError as exc:
        raise ExecutionFailure(f"Disk test could not remove scratch directory: {exc}", phase="disk") from exc
    log.append("Disk scratch directory removed")

    result = DiskResult(
        file_size_mb=size_mb,
        write_duration_ms=_elapsed_ms(write_s),
        read_duration_ms=_elapsed_ms(read_s),
        write_mbps=_rate(size_mb, write_s),
        read_mbps=_rate(size_mb, read_s),
        bytes_written=bytes_read,
    )
    log.append(
        f"Disk test completed: write {result.write_mbps:.2f} MB/s, read {result.read_mbps:.2f} MB/s"
    )
    return result
