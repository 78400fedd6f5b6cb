from __future__ import annotations

import json
from pathlib import Path

import pytest

from ledger.client import LocalRegistryClient
from ledger.factory import build_registry_client
from ledger.http_client import HttpRegistryClient
from proofs.config_models import LedgerConfig
from proofs.errors import ConflictError, LedgerFailure, NotFoundError, ValidationError
from proofs.hashing import ZERO_DIGEST, hash_bytes
from proofs.schemas import TaskStatus

ACCOUNT = "0x00000000000000000000000000000000000000a1"
SPEC = hash_bytes(b"spec")
ARTIFACT = hash_bytes(b"artifact")
RESULT = hash_bytes(b"result")


def test_local_client_requires_open():
    client = LocalRegistryClient(account=ACCOUNT)
    with pytest.raises(LedgerFailure):
        client.create_task(SPEC)


def test_local_client_full_lifecycle():
    with LocalRegistryClient(account=ACCOUNT) as client:
        creation = client.create_task(SPEC)
        assert creation.task_id == 0
        assert creation.tx_hash.startswith("0x")
        assert client.task_status(0) is TaskStatus.PENDING
        assert client.get_receipt(0) is None

        submission = client.submit_receipt(0, ARTIFACT, RESULT)
        assert submission.tx_hash != creation.tx_hash
        assert client.task_status(0) is TaskStatus.COMPLETED
        assert client.get_receipt(0).operator == ACCOUNT

        with pytest.raises(ConflictError):
            client.submit_receipt(0, ARTIFACT, RESULT)
        with pytest.raises(NotFoundError):
            client.get_task(5)
    assert not client.is_open


def test_local_client_rejects_zero_spec_hash_through_revert():
    with LocalRegistryClient(account=ACCOUNT) as client:
        with pytest.raises(ValidationError):
            client.create_task(ZERO_DIGEST)
        assert client.contract.task_count == 0


def test_local_client_persists_state_between_instances(tmp_path: Path):
    state_path = tmp_path / "ledger" / "state.json"
    with LocalRegistryClient(account=ACCOUNT, state_path=state_path) as client:
        client.create_task(SPEC)
        client.submit_receipt(0, ARTIFACT, RESULT)

    assert json.loads(state_path.read_text(encoding="utf-8"))["nextTaskId"] == 1

    with LocalRegistryClient(account=ACCOUNT, state_path=state_path) as reopened:
        assert reopened.get_receipt(0).result_hash == RESULT
        assert reopened.create_task(hash_bytes(b"next")).task_id == 1


def test_factory_selects_client_by_type(tmp_path: Path):
    local = build_registry_client(LedgerConfig(type="local", state_path=str(tmp_path / "s.json")))
    assert isinstance(local, LocalRegistryClient)
    assert local.state_path == tmp_path / "s.json"

    remote = build_registry_client(LedgerConfig(type="http", endpoint="https://ledger.test/"))
    assert isinstance(remote, HttpRegistryClient)
    assert remote.endpoint == "https://ledger.test"


def test_ledger_config_requires_endpoint_for_http():
    with pytest.raises(ValueError):
        LedgerConfig(type="http")


def test_local_client_refuses_corrupt_state_file(tmp_path: Path):
    state_path = tmp_path / "state.json"
    state_path.write_text("{truncated", encoding="utf-8")
    with pytest.raises(LedgerFailure):
        LocalRegistryClient(account=ACCOUNT, state_path=state_path).open()
