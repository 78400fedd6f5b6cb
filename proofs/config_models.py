from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from proofs.schemas import BenchmarkConfig

DEFAULT_FALLBACK_URL_TEMPLATE = (
    "https://testnet.greenfieldscan.com/bucket/{bucket}?tab=object&keyword=task-{task_id}"
)


class LedgerConfig(BaseModel):
    """Ledger client selection and finality polling knobs."""

    model_config = ConfigDict(extra="forbid")

    type: Literal["local", "http"] = "local"
    endpoint: Optional[str] = None
    account: str = "0x00000000000000000000000000000000000000a1"
    state_path: Optional[str] = None
    confirmation_timeout_s: float = 60.0
    poll_interval_s: float = 1.0
    max_retries: int = 3
    initial_backoff_s: float = 0.5
    max_backoff_s: float = 5.0

    @model_validator(mode="after")
    def validate_endpoint(self) -> "LedgerConfig":
        """Require an endpoint for the HTTP gateway client."""

        if self.type == "http" and not self.endpoint:
            raise ValueError("ledger.endpoint is required when ledger.type is 'http'")
        if self.confirmation_timeout_s <= 0:
            raise ValueError("ledger.confirmation_timeout_s must be positive")
        return self


class StorageConfig(BaseModel):
    """Artifact storage settings; remote upload needs endpoint, bucket and token."""

    model_config = ConfigDict(extra="forbid")

    endpoint: Optional[str] = None
    bucket: str = "infraproof-artifacts"
    public_url: Optional[str] = None
    token_env: str = "ARTIFACT_STORAGE_TOKEN"
    local_root: str = "artifact-store"
    fallback_url_template: str = DEFAULT_FALLBACK_URL_TEMPLATE
    timeout_s: float = 30.0


class OutputConfig(BaseModel):
    """Local output locations for artifact folders, run logs and scratch space."""

    model_config = ConfigDict(extra="forbid")

    artifacts_dir: str = "artifacts"
    logs_dir: str = "logs"
    scratch_root: Optional[str] = None


class ProofConfig(BaseModel):
    """Top-level strongly typed operator configuration."""

    model_config = ConfigDict(extra="forbid")

    ledger: LedgerConfig = Field(default_factory=LedgerConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    benchmark: BenchmarkConfig = Field(default_factory=BenchmarkConfig)
    output: OutputConfig = Field(default_factory=OutputConfig)
