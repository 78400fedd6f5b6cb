from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from ledger.contract import TASK_CREATED, ExecutionRegistry, validate_task_id
from proofs.errors import LedgerFailure, error_from_revert
from proofs.hashing import normalize_digest
from proofs.manifest_store import read_json, write_json
from proofs.schemas import Receipt, Task, TaskStatus


@dataclass
class TaskCreation:
    """Finalized createTask outcome; the id comes from the TaskCreated event."""

    task_id: int
    tx_hash: str
    block_number: Optional[int] = None


@dataclass
class ReceiptSubmission:
    tx_hash: str
    block_number: Optional[int] = None


def find_event(record: Mapping[str, Any], name: str) -> Optional[Dict[str, Any]]:
    """Return the first event called `name` from a transaction record."""

    for event in record.get("events") or []:
        if isinstance(event, dict) and event.get("name") == name:
            return event
    return None


class RegistryClient:
    """Handle on the ledger's ExecutionRegistry.

    Construct once at startup, call `open()` before use and `close()` on
    shutdown. Every state-changing call returns only after the transaction is
    final.
    """

    def __init__(self, account: str) -> None:
        self.account = account
        self._is_open = False

    def open(self) -> "RegistryClient":
        self._is_open = True
        return self

    def close(self) -> None:
        self._is_open = False

    @property
    def is_open(self) -> bool:
        return self._is_open

    def __enter__(self) -> "RegistryClient":
        return self.open()

    def __exit__(self, exc_type, exc, tb) -> bool:
        self.close()
        return False

    def _require_open(self) -> None:
        if not self._is_open:
            raise LedgerFailure("Registry client is not open; call open() at startup")

    def _transact(self, method: str, args: Dict[str, Any]) -> Dict[str, Any]:
        """Submit a transaction and return its finalized record."""

        raise NotImplementedError

    def _fetch_task(self, task_id: int) -> Task:
        raise NotImplementedError

    def _fetch_receipt(self, task_id: int) -> Optional[Receipt]:
        raise NotImplementedError

    @staticmethod
    def _finalize(record: Mapping[str, Any]) -> Mapping[str, Any]:
        """Raise the mapped protocol error for anything but a confirmed record."""

        status = record.get("status")
        if status == "confirmed":
            return record
        if status == "reverted":
            raise error_from_revert(record.get("revertReason"))
        raise LedgerFailure(f"Transaction {record.get('txHash')} finished with status {status!r}")

    def create_task(self, spec_hash: str) -> TaskCreation:
        """Create a task and parse its id from the finalized TaskCreated event."""

        self._require_open()
        normalized = normalize_digest(spec_hash, label="spec hash")
        record = self._finalize(self._transact("createTask", {"specHash": normalized}))
        event = find_event(record, TASK_CREATED)
        if event is None:
            raise LedgerFailure("TaskCreated event not found in transaction receipt")
        try:
            task_id = int(event["args"]["taskId"])
        except (KeyError, TypeError, ValueError) as exc:
            raise LedgerFailure("TaskCreated event is missing a task id") from exc
        return TaskCreation(task_id=task_id, tx_hash=record["txHash"], block_number=record.get("blockNumber"))

    def submit_receipt(self, task_id: int, artifact_hash: str, result_hash: str) -> ReceiptSubmission:
        self._require_open()
        args = {
            "taskId": validate_task_id(task_id),
            "artifactHash": normalize_digest(artifact_hash, label="artifact hash"),
            "resultHash": normalize_digest(result_hash, label="result hash"),
        }
        record = self._finalize(self._transact("submitReceipt", args))
        return ReceiptSubmission(tx_hash=record["txHash"], block_number=record.get("blockNumber"))

    def get_task(self, task_id: int) -> Task:
        """Return the task or raise NotFoundError."""

        self._require_open()
        return self._fetch_task(validate_task_id(task_id))

    def get_receipt(self, task_id: int) -> Optional[Receipt]:
        """Return the receipt, or None while the task is pending."""

        self._require_open()
        return self._fetch_receipt(validate_task_id(task_id))

    def task_status(self, task_id: int) -> TaskStatus:
        self.get_task(task_id)
        return TaskStatus.COMPLETED if self.get_receipt(task_id) else TaskStatus.PENDING


class LocalRegistryClient(RegistryClient):
    """Runs the contract rules in process; optionally persists state to JSON."""

    def __init__(
        self,
        account: str,
        contract: Optional[ExecutionRegistry] = None,
        state_path: Optional[Path] = None,
    ) -> None:
        super().__init__(account)
        self.contract = contract
        self.state_path = state_path

    def open(self) -> "LocalRegistryClient":
        if self.contract is None:
            if self.state_path is not None and self.state_path.exists():
                snapshot = read_json(self.state_path)
                if not snapshot:
                    raise LedgerFailure(f"Unreadable ledger state file: {self.state_path}")
                self.contract = ExecutionRegistry.restore(snapshot)
            else:
                self.contract = ExecutionRegistry()
        super().open()
        return self

    def _transact(self, method: str, args: Dict[str, Any]) -> Dict[str, Any]:
        record = self.contract.transact(self.account, method, args)
        if self.state_path is not None and record.status == "confirmed":
            write_json(self.state_path, self.contract.snapshot())
        return record.to_dict()

    def _fetch_task(self, task_id: int) -> Task:
        return self.contract.get_task(task_id)

    def _fetch_receipt(self, task_id: int) -> Optional[Receipt]:
        return self.contract.get_receipt(task_id)
