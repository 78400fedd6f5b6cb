from __future__ import annotations

import os
from pathlib import Path
from typing import Mapping, Optional

from proofs.config_models import StorageConfig
from storage.backends import ArtifactStorage, HttpArtifactStorage, LocalArtifactStorage


def build_storage(
    storage_config: StorageConfig,
    environ: Optional[Mapping[str, str]] = None,
) -> ArtifactStorage:
    """Pick the storage implementation once, from configuration presence.

    Remote upload needs endpoint, bucket and a token in the environment;
    anything less selects the local development store.
    """

    source = os.environ if environ is None else environ
    token = (source.get(storage_config.token_env) or "").strip()
    if storage_config.endpoint and storage_config.bucket and token:
        return HttpArtifactStorage(
            endpoint=storage_config.endpoint,
            bucket=storage_config.bucket,
            token=token,
            public_url=storage_config.public_url,
            timeout_s=storage_config.timeout_s,
        )
    return LocalArtifactStorage(root=Path(storage_config.local_root))


def fallback_locator(storage_config: StorageConfig, task_id: int) -> str:
    """Deterministic locator used when an upload fails."""

    return storage_config.fallback_url_template.format(bucket=storage_config.bucket, task_id=task_id)
