from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict

from ledger.client import RegistryClient
from proofs.artifacts import RECEIPT_FILE, RESULT_FILE
from proofs.errors import NotFoundError, ValidationError
from proofs.hashing import hash_artifact_dir, hash_file


@dataclass
class VerificationResult:
    """Comparison of one recomputed digest with the value anchored on the ledger."""

    task_id: int
    subject: str  # result | artifact
    expected_hash: str
    actual_hash: str

    @property
    def matches(self) -> bool:
        return self.expected_hash == self.actual_hash

    def to_dict(self) -> Dict[str, Any]:
        return {
            "taskId": self.task_id,
            "subject": self.subject,
            "expectedHash": self.expected_hash,
            "actualHash": self.actual_hash,
            "matches": self.matches,
        }


def _ledger_receipt(registry: RegistryClient, task_id: int):
    registry.get_task(task_id)
    receipt = registry.get_receipt(task_id)
    if receipt is None:
        raise NotFoundError(f"Task {task_id} has no receipt yet")
    return receipt


def verify_result_file(registry: RegistryClient, task_id: int, path: Path) -> VerificationResult:
    """Hash a downloaded result.json and compare it with the receipt's resultHash."""

    if not path.is_file():
        raise ValidationError(f"Result file not found: {path}")
    receipt = _ledger_receipt(registry, task_id)
    return VerificationResult(
        task_id=task_id,
        subject="result",
        expected_hash=receipt.result_hash,
        actual_hash=hash_file(path),
    )


def verify_artifact_dir(registry: RegistryClient, task_id: int, folder: Path) -> VerificationResult:
    """Recompute artifactHash over a downloaded folder.

    receipt.json is written after hashing, so it is left out of the digest.
    """

    if not folder.is_dir():
        raise ValidationError(f"Artifact folder not found: {folder}")
    receipt = _ledger_receipt(registry, task_id)
    return VerificationResult(
        task_id=task_id,
        subject="artifact",
        expected_hash=receipt.artifact_hash,
        actual_hash=hash_artifact_dir(folder, exclude=(RECEIPT_FILE,)),
    )


def verify_path(registry: RegistryClient, task_id: int, path: Path) -> VerificationResult:
    """Dispatch on the downloaded path: a folder or a result.json file."""

    if path.is_dir():
        return verify_artifact_dir(registry, task_id, path)
    if path.name != RESULT_FILE:
        raise ValidationError(f"Expected an artifact folder or {RESULT_FILE}, got {path.name}")
    return verify_result_file(registry, task_id, path)
