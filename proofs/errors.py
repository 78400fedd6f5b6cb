from __future__ import annotations


class ProofError(Exception):
    """Base class for protocol failures; `kind` is the stable machine-readable tag."""

    kind = "proof"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict[str, str]:
        return {"kind": self.kind, "message": self.message}


class ValidationError(ProofError):
    """Zero or malformed digest, bad id, or invalid configuration value."""

    kind = "validation"


class NotFoundError(ProofError):
    kind = "not_found"


class ConflictError(ProofError):
    """A receipt already exists for the task."""

    kind = "conflict"


class ExecutionFailure(ProofError):
    """A benchmark phase failed; the whole run is aborted."""

    kind = "execution"

    def __init__(self, message: str, phase: str | None = None) -> None:
        super().__init__(message)
        self.phase = phase


class StorageFailure(ProofError):
    kind = "storage"


class LedgerFailure(ProofError):
    """Transaction rejected for an unmapped reason, not confirmed, or transport error."""

    kind = "ledger"


# Contract revert strings mapped back to error types by ledger clients.
REVERT_SPEC_HASH_ZERO = "Spec hash cannot be zero"
REVERT_TASK_MISSING = "Task does not exist"
REVERT_RECEIPT_EXISTS = "Receipt already submitted"
REVERT_ARTIFACT_HASH_ZERO = "Artifact hash cannot be zero"
REVERT_RESULT_HASH_ZERO = "Result hash cannot be zero"

REVERT_ERRORS: dict[str, type[ProofError]] = {
    REVERT_SPEC_HASH_ZERO: ValidationError,
    REVERT_TASK_MISSING: NotFoundError,
    REVERT_RECEIPT_EXISTS: ConflictError,
    REVERT_ARTIFACT_HASH_ZERO: ValidationError,
    REVERT_RESULT_HASH_ZERO: ValidationError,
}


def error_from_revert(reason: str | None) -> ProofError:
    """Translate a ledger revert reason into the matching protocol error."""

    normalized = (reason or "").strip()
    for known, error_cls in REVERT_ERRORS.items():
        if known in normalized:
            return error_cls(known)
    if normalized.startswith(("Malformed ", "Invalid task id")):
        return ValidationError(normalized)
    return LedgerFailure(f"Transaction reverted: {normalized or 'no reason given'}")
