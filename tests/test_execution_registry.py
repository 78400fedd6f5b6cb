from __future__ import annotations

import threading

import pytest

from ledger.contract import RECEIPT_SUBMITTED, TASK_CREATED, ExecutionRegistry
from proofs.errors import (
    REVERT_RECEIPT_EXISTS,
    REVERT_SPEC_HASH_ZERO,
    REVERT_TASK_MISSING,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from proofs.hashing import ZERO_DIGEST, hash_bytes
from proofs.schemas import TaskState

REQUESTER = "0x00000000000000000000000000000000000000a1"
OPERATOR = "0x00000000000000000000000000000000000000b2"
OTHER_OPERATOR = "0x00000000000000000000000000000000000000c3"

SPEC = hash_bytes(b"spec")
ARTIFACT = hash_bytes(b"artifact")
RESULT = hash_bytes(b"result")


def _registry() -> ExecutionRegistry:
    return ExecutionRegistry(clock=lambda: 1_700_000_000.7)


def test_create_task_assigns_ids_from_zero_and_records_requester():
    registry = _registry()
    assert registry.create_task(REQUESTER, SPEC) == 0
    assert registry.create_task(OPERATOR, hash_bytes(b"spec-2")) == 1

    task = registry.get_task(0)
    assert task.requester == REQUESTER
    assert task.spec_hash == SPEC
    assert task.created_at == 1_700_000_000
    assert registry.state(0) is TaskState.CREATED
    assert registry.task_count == 2


def test_create_task_zero_hash_rejected_without_side_effects():
    registry = _registry()
    with pytest.raises(ValidationError) as exc_info:
        registry.create_task(REQUESTER, ZERO_DIGEST)
    assert exc_info.value.message == REVERT_SPEC_HASH_ZERO
    assert registry.task_count == 0
    assert registry.events == []
    assert registry.create_task(REQUESTER, SPEC) == 0


def test_submit_receipt_before_task_is_not_found():
    registry = _registry()
    with pytest.raises(NotFoundError) as exc_info:
        registry.submit_receipt(OPERATOR, 0, ARTIFACT, RESULT)
    assert exc_info.value.message == REVERT_TASK_MISSING
    assert registry.state(0) is TaskState.NONE


def test_first_receipt_wins_and_is_never_overwritten():
    registry = _registry()
    task_id = registry.create_task(REQUESTER, SPEC)
    registry.submit_receipt(OPERATOR, task_id, ARTIFACT, RESULT)

    with pytest.raises(ConflictError) as exc_info:
        registry.submit_receipt(OTHER_OPERATOR, task_id, hash_bytes(b"x"), hash_bytes(b"y"))
    assert exc_info.value.message == REVERT_RECEIPT_EXISTS

    receipt = registry.get_receipt(task_id)
    assert receipt.operator == OPERATOR
    assert receipt.artifact_hash == ARTIFACT
    assert receipt.result_hash == RESULT
    assert registry.state(task_id) is TaskState.RECEIPTED


def test_zero_receipt_hashes_rejected():
    registry = _registry()
    task_id = registry.create_task(REQUESTER, SPEC)
    with pytest.raises(ValidationError):
        registry.submit_receipt(OPERATOR, task_id, ZERO_DIGEST, RESULT)
    with pytest.raises(ValidationError):
        registry.submit_receipt(OPERATOR, task_id, ARTIFACT, ZERO_DIGEST)
    assert registry.get_receipt(task_id) is None


def test_negative_and_non_integer_ids_are_validation_errors():
    registry = _registry()
    for bad in (-1, "0", 1.5, True):
        with pytest.raises(ValidationError):
            registry.get_task(bad)


def test_events_are_emitted_once_per_successful_call():
    registry = _registry()
    task_id = registry.create_task(REQUESTER, SPEC)
    registry.submit_receipt(OPERATOR, task_id, ARTIFACT, RESULT)
    with pytest.raises(ConflictError):
        registry.submit_receipt(OPERATOR, task_id, ARTIFACT, RESULT)

    names = [event.name for event in registry.events]
    assert names == [TASK_CREATED, RECEIPT_SUBMITTED]
    assert registry.events[0].args == {"taskId": 0, "requester": REQUESTER, "specHash": SPEC}
    assert registry.events[1].args["operator"] == OPERATOR


def test_transact_records_confirmed_and_reverted_calls():
    registry = _registry()
    created = registry.transact(REQUESTER, "createTask", {"specHash": SPEC})
    assert created.status == "confirmed"
    assert [event.name for event in created.events] == [TASK_CREATED]

    reverted = registry.transact(REQUESTER, "createTask", {"specHash": ZERO_DIGEST})
    assert reverted.status == "reverted"
    assert reverted.revert_reason == REVERT_SPEC_HASH_ZERO
    assert reverted.events == []
    assert reverted.tx_hash != created.tx_hash
    assert registry.get_transaction(reverted.tx_hash) is reverted
    assert registry.task_count == 1

    payload = created.to_dict()
    assert payload["from"] == REQUESTER
    assert payload["events"][0]["args"]["taskId"] == 0


def test_concurrent_submissions_admit_exactly_one_receipt():
    registry = _registry()
    task_id = registry.create_task(REQUESTER, SPEC)
    outcomes = []
    barrier = threading.Barrier(8)

    def _submit(index: int):
        barrier.wait()
        record = registry.transact(
            f"0x{index:040x}",
            "submitReceipt",
            {"taskId": task_id, "artifactHash": hash_bytes(bytes([index])), "resultHash": RESULT},
        )
        outcomes.append(record.status)

    threads = [threading.Thread(target=_submit, args=(i,)) for i in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert outcomes.count("confirmed") == 1
    assert outcomes.count("reverted") == 7


def test_snapshot_restore_round_trip_keeps_counter_and_receipts():
    registry = _registry()
    registry.create_task(REQUESTER, SPEC)
    registry.create_task(REQUESTER, hash_bytes(b"two"))
    registry.submit_receipt(OPERATOR, 1, ARTIFACT, RESULT)

    restored = ExecutionRegistry.restore(registry.snapshot())
    assert restored.task_count == 2
    assert restored.get_receipt(1) == registry.get_receipt(1)
    assert restored.get_receipt(0) is None
    assert restored.create_task(REQUESTER, hash_bytes(b"three")) == 2
