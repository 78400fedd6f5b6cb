"""Reference execution of the ExecutionRegistry contract rules.

The registry is the ledger-resident authority for tasks and receipts:

- ``createTask`` assigns ids monotonically from 0 and never reuses them
- ``submitReceipt`` is first-writer-wins; later submissions revert
- a reverted call leaves state untouched and emits nothing

All state transitions run under one lock, which is the single-writer
guarantee receipts rely on. ``transact`` wraps a call the way a mined
transaction would: it always produces a record, confirmed or reverted.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional

from proofs.errors import (
    REVERT_ARTIFACT_HASH_ZERO,
    REVERT_RECEIPT_EXISTS,
    REVERT_RESULT_HASH_ZERO,
    REVERT_SPEC_HASH_ZERO,
    REVERT_TASK_MISSING,
    ConflictError,
    NotFoundError,
    ProofError,
    ValidationError,
)
from proofs.hashing import hash_json, is_zero_digest, normalize_digest
from proofs.schemas import Receipt, Task, TaskState

TASK_CREATED = "TaskCreated"
RECEIPT_SUBMITTED = "ReceiptSubmitted"


@dataclass(frozen=True)
class LedgerEvent:
    name: str
    args: Dict[str, Any]

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "args": dict(self.args)}

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "LedgerEvent":
        return cls(name=str(payload["name"]), args=dict(payload.get("args") or {}))


@dataclass
class TransactionRecord:
    """Finalized outcome of one state-changing call."""

    tx_hash: str
    sender: str
    method: str
    status: str  # confirmed | reverted
    block_number: int
    timestamp: int
    events: List[LedgerEvent] = field(default_factory=list)
    revert_reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "txHash": self.tx_hash,
            "from": self.sender,
            "method": self.method,
            "status": self.status,
            "blockNumber": self.block_number,
            "timestamp": self.timestamp,
            "events": [event.to_dict() for event in self.events],
            "revertReason": self.revert_reason,
        }


def validate_task_id(task_id: Any) -> int:
    """Accept only non-negative integers as task ids."""

    if isinstance(task_id, bool) or not isinstance(task_id, int) or task_id < 0:
        raise ValidationError(f"Invalid task id: {task_id!r}")
    return task_id


class ExecutionRegistry:
    """Task/receipt store enforcing the NONE -> CREATED -> RECEIPTED state machine."""

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._lock = threading.RLock()
        self._clock = clock
        self._tasks: Dict[int, Task] = {}
        self._receipts: Dict[int, Receipt] = {}
        self._events: List[LedgerEvent] = []
        self._transactions: Dict[str, TransactionRecord] = {}
        self._next_task_id = 0
        self._block_number = 0

    def _now(self) -> int:
        return int(self._clock())

    def _emit(self, name: str, **args: Any) -> LedgerEvent:
        event = LedgerEvent(name=name, args=args)
        self._events.append(event)
        return event

    def create_task(self, sender: str, spec_hash: str) -> int:
        """Persist a new task for `sender` and emit TaskCreated."""

        spec_hash = normalize_digest(spec_hash, label="spec hash")
        if is_zero_digest(spec_hash):
            raise ValidationError(REVERT_SPEC_HASH_ZERO)
        with self._lock:
            task_id = self._next_task_id
            self._tasks[task_id] = Task(
                task_id=task_id,
                requester=sender,
                spec_hash=spec_hash,
                created_at=self._now(),
            )
            self._next_task_id += 1
            self._emit(TASK_CREATED, taskId=task_id, requester=sender, specHash=spec_hash)
            return task_id

    def submit_receipt(self, sender: str, task_id: int, artifact_hash: str, result_hash: str) -> None:
        """Record the first valid receipt for a task and emit ReceiptSubmitted."""

        task_id = validate_task_id(task_id)
        artifact_hash = normalize_digest(artifact_hash, label="artifact hash")
        result_hash = normalize_digest(result_hash, label="result hash")
        with self._lock:
            if task_id not in self._tasks:
                raise NotFoundError(REVERT_TASK_MISSING)
            if task_id in self._receipts:
                raise ConflictError(REVERT_RECEIPT_EXISTS)
            if is_zero_digest(artifact_hash):
                raise ValidationError(REVERT_ARTIFACT_HASH_ZERO)
            if is_zero_digest(result_hash):
                raise ValidationError(REVERT_RESULT_HASH_ZERO)
            self._receipts[task_id] = Receipt(
                task_id=task_id,
                operator=sender,
                artifact_hash=artifact_hash,
                result_hash=result_hash,
                completed_at=self._now(),
            )
            self._emit(
                RECEIPT_SUBMITTED,
                taskId=task_id,
                operator=sender,
                artifactHash=artifact_hash,
                resultHash=result_hash,
            )

    def get_task(self, task_id: int) -> Task:
        task_id = validate_task_id(task_id)
        with self._lock:
            task = self._tasks.get(task_id)
        if task is None:
            raise NotFoundError(REVERT_TASK_MISSING)
        return task

    def get_receipt(self, task_id: int) -> Optional[Receipt]:
        """Return the receipt, or None while the task is still pending."""

        task_id = validate_task_id(task_id)
        with self._lock:
            return self._receipts.get(task_id)

    def state(self, task_id: int) -> TaskState:
        task_id = validate_task_id(task_id)
        with self._lock:
            if task_id in self._receipts:
                return TaskState.RECEIPTED
            if task_id in self._tasks:
                return TaskState.CREATED
        return TaskState.NONE

    @property
    def task_count(self) -> int:
        with self._lock:
            return self._next_task_id

    @property
    def events(self) -> List[LedgerEvent]:
        with self._lock:
            return list(self._events)

    def transact(self, sender: str, method: str, args: Mapping[str, Any]) -> TransactionRecord:
        """Apply one call as a transaction and return its finalized record."""

        with self._lock:
            self._block_number += 1
            nonce = len(self._transactions)
            tx_hash = hash_json(
                {
                    "sender": sender,
                    "method": method,
                    "args": dict(args),
                    "block": self._block_number,
                    "nonce": nonce,
                }
            )
            first_event = len(self._events)
            status = "confirmed"
            revert_reason: Optional[str] = None
            try:
                if method == "createTask":
                    self.create_task(sender, args.get("specHash"))
                elif method == "submitReceipt":
                    self.submit_receipt(
                        sender,
                        args.get("taskId"),
                        args.get("artifactHash"),
                        args.get("resultHash"),
                    )
                else:
                    raise ValidationError(f"Unknown method {method}")
            except ProofError as exc:
                status = "reverted"
                revert_reason = exc.message
            record = TransactionRecord(
                tx_hash=tx_hash,
                sender=sender,
                method=method,
                status=status,
                block_number=self._block_number,
                timestamp=self._now(),
                events=self._events[first_event:],
                revert_reason=revert_reason,
            )
            self._transactions[tx_hash] = record
            return record

    def get_transaction(self, tx_hash: str) -> Optional[TransactionRecord]:
        with self._lock:
            return self._transactions.get(tx_hash)

    def snapshot(self) -> Dict[str, Any]:
        """Serialize tasks, receipts and counters to a JSON-compatible document."""

        with self._lock:
            return {
                "nextTaskId": self._next_task_id,
                "blockNumber": self._block_number,
                "tasks": [self._tasks[key].to_dict() for key in sorted(self._tasks)],
                "receipts": [self._receipts[key].to_dict() for key in sorted(self._receipts)],
                "events": [event.to_dict() for event in self._events],
            }

    @classmethod
    def restore(cls, payload: Mapping[str, Any], clock: Callable[[], float] = time.time) -> "ExecutionRegistry":
        """Rebuild a registry from a `snapshot()` document."""

        registry = cls(clock=clock)
        for item in payload.get("tasks", []):
            task = Task.from_dict(item)
            registry._tasks[task.task_id] = task
        for item in payload.get("receipts", []):
            receipt = Receipt.from_dict(item)
            registry._receipts[receipt.task_id] = receipt
        registry._events = [LedgerEvent.from_dict(item) for item in payload.get("events", [])]
        next_id = int(payload.get("nextTaskId", 0))
        registry._next_task_id = max(next_id, max(registry._tasks, default=-1) + 1)
        registry._block_number = int(payload.get("blockNumber", 0))
        return registry
