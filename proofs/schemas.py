from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

SERVER_BENCHMARK = "SERVER_BENCHMARK"


def utc_now_iso() -> str:
    """Return UTC time as ISO-8601 with millisecond precision and a `Z` suffix."""

    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class _Document(BaseModel):
    """Base for records serialized with camelCase keys."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


class BenchmarkConfig(_Document):
    """Workload sizing; the only knobs a task spec can carry."""

    cpu_duration_ms: int = Field(default=5000, alias="cpuDurationMs", gt=0)
    memory_size_mb: int = Field(default=100, alias="memorySizeMB", gt=0)
    disk_size_mb: int = Field(default=10, alias="diskSizeMB", gt=0)


class TaskSpec(_Document):
    """Off-chain task description whose canonical hash is anchored as specHash."""

    type: str = SERVER_BENCHMARK
    duration: int = Field(default=30, gt=0)
    config: BenchmarkConfig = Field(default_factory=BenchmarkConfig)
    created_at: str = Field(default_factory=utc_now_iso, alias="createdAt")

    @classmethod
    def from_duration(
        cls,
        duration: int = 30,
        *,
        task_type: str = SERVER_BENCHMARK,
        memory_size_mb: Optional[int] = None,
        disk_size_mb: Optional[int] = None,
        created_at: Optional[str] = None,
    ) -> "TaskSpec":
        """Split the requested duration: one third of it goes to the CPU phase."""

        defaults = BenchmarkConfig()
        config = BenchmarkConfig(
            cpu_duration_ms=int(round(duration * 1000 / 3)),
            memory_size_mb=defaults.memory_size_mb if memory_size_mb is None else memory_size_mb,
            disk_size_mb=defaults.disk_size_mb if disk_size_mb is None else disk_size_mb,
        )
        payload: Dict[str, Any] = {"type": task_type, "duration": duration, "config": config}
        if created_at is not None:
            payload["created_at"] = created_at
        return cls(**payload)


class SystemInfo(_Document):
    platform: str
    arch: str
    cpus: int
    total_memory_mb: Optional[int] = Field(default=None, alias="totalMemoryMB")
    free_memory_mb: Optional[int] = Field(default=None, alias="freeMemoryMB")
    python_version: str = Field(alias="pythonVersion")


class CpuResult(_Document):
    iterations: int
    primes_found: int = Field(alias="primesFound")
    duration_ms: int = Field(alias="durationMs")
    ops_per_second: int = Field(alias="opsPerSecond")


class MemoryResult(_Document):
    allocated_mb: int = Field(alias="allocatedMB")
    write_duration_ms: int = Field(alias="writeDurationMs")
    read_duration_ms: int = Field(alias="readDurationMs")
    total_duration_ms: int = Field(alias="totalDurationMs")
    write_mbps: float = Field(alias="writeMBps")
    read_mbps: float = Field(alias="readMBps")
    checksum: int


class DiskResult(_Document):
    file_size_mb: int = Field(alias="fileSizeMB")
    write_duration_ms: int = Field(alias="writeDurationMs")
    read_duration_ms: int = Field(alias="readDurationMs")
    write_mbps: float = Field(alias="writeMBps")
    read_mbps: float = Field(alias="readMBps")
    bytes_written: int = Field(alias="bytesWritten")


class BenchmarkResult(_Document):
    """Complete output of one server benchmark run; serialized as result.json."""

    system_info: SystemInfo = Field(alias="systemInfo")
    cpu: CpuResult
    memory: MemoryResult
    disk: DiskResult
    total_duration_ms: int = Field(alias="totalDurationMs")
    timestamp: str

    def summary(self) -> Dict[str, Any]:
        """Highlights reported back to the caller after a proof cycle."""

        return {
            "totalDurationMs": self.total_duration_ms,
            "cpuOpsPerSec": self.cpu.ops_per_second,
            "memoryWriteMBps": self.memory.write_mbps,
            "diskWriteMBps": self.disk.write_mbps,
        }


class TaskState(str, Enum):
    NONE = "NONE"
    CREATED = "CREATED"
    RECEIPTED = "RECEIPTED"


class TaskStatus(str, Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"


@dataclass(frozen=True)
class Task:
    """Ledger task record; immutable once created."""

    task_id: int
    requester: str
    spec_hash: str
    created_at: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "taskId": self.task_id,
            "requester": self.requester,
            "specHash": self.spec_hash,
            "createdAt": self.created_at,
        }

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "Task":
        return cls(
            task_id=int(payload["taskId"]),
            requester=str(payload["requester"]),
            spec_hash=str(payload["specHash"]),
            created_at=int(payload["createdAt"]),
        )


@dataclass(frozen=True)
class Receipt:
    """Ledger receipt record; at most one per task."""

    task_id: int
    operator: str
    artifact_hash: str
    result_hash: str
    completed_at: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "taskId": self.task_id,
            "operator": self.operator,
            "artifactHash": self.artifact_hash,
            "resultHash": self.result_hash,
            "completedAt": self.completed_at,
        }

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "Receipt":
        return cls(
            task_id=int(payload["taskId"]),
            operator=str(payload["operator"]),
            artifact_hash=str(payload["artifactHash"]),
            result_hash=str(payload["resultHash"]),
            completed_at=int(payload["completedAt"]),
        )
