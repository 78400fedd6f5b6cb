from __future__ import annotations

from pathlib import Path

from ledger.client import LocalRegistryClient, RegistryClient
from ledger.http_client import HttpRegistryClient
from proofs.config_models import LedgerConfig


def build_registry_client(ledger_config: LedgerConfig) -> RegistryClient:
    """Construct the ledger client implementation named by `ledger.type`."""

    if ledger_config.type == "local":
        state_path = Path(ledger_config.state_path) if ledger_config.state_path else None
        return LocalRegistryClient(account=ledger_config.account, state_path=state_path)
    if ledger_config.type == "http":
        if not ledger_config.endpoint:
            raise ValueError("Missing ledger.endpoint for http ledger client")
        return HttpRegistryClient(
            endpoint=ledger_config.endpoint,
            account=ledger_config.account,
            confirmation_timeout_s=ledger_config.confirmation_timeout_s,
            poll_interval_s=ledger_config.poll_interval_s,
            max_retries=ledger_config.max_retries,
            initial_backoff_s=ledger_config.initial_backoff_s,
            max_backoff_s=ledger_config.max_backoff_s,
        )
    raise ValueError(f"Unsupported ledger type: {ledger_config.type}")
