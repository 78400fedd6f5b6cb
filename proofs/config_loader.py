from __future__ import annotations

import os
from copy import deepcopy
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml
from pydantic import ValidationError as PydanticValidationError

from proofs.config_models import DEFAULT_FALLBACK_URL_TEMPLATE, ProofConfig
from proofs.errors import ValidationError

# Environment variable -> (section, key)
ENV_OVERRIDES = {
    "LEDGER_TYPE": ("ledger", "type"),
    "LEDGER_ENDPOINT": ("ledger", "endpoint"),
    "LEDGER_ACCOUNT": ("ledger", "account"),
    "LEDGER_STATE_PATH": ("ledger", "state_path"),
    "STORAGE_ENDPOINT": ("storage", "endpoint"),
    "STORAGE_BUCKET": ("storage", "bucket"),
    "STORAGE_PUBLIC_URL": ("storage", "public_url"),
    "ARTIFACTS_DIR": ("output", "artifacts_dir"),
}


def default_config_dict() -> Dict[str, Any]:
    """Return the canonical nested defaults for all config sections."""

    return {
        "ledger": {
            "type": "local",
            "endpoint": None,
            "account": "0x00000000000000000000000000000000000000a1",
            "state_path": None,
            "confirmation_timeout_s": 60.0,
            "poll_interval_s": 1.0,
            "max_retries": 3,
            "initial_backoff_s": 0.5,
            "max_backoff_s": 5.0,
        },
        "storage": {
            "endpoint": None,
            "bucket": "infraproof-artifacts",
            "public_url": None,
            "token_env": "ARTIFACT_STORAGE_TOKEN",
            "local_root": "artifact-store",
            "fallback_url_template": DEFAULT_FALLBACK_URL_TEMPLATE,
            "timeout_s": 30.0,
        },
        # Workload defaults live on BenchmarkConfig; YAML may use field names or camelCase aliases.
        "benchmark": {},
        "output": {
            "artifacts_dir": "artifacts",
            "logs_dir": "logs",
            "scratch_root": None,
        },
    }


def _deep_merge(base: Dict[str, Any], override: Mapping[str, Any]) -> Dict[str, Any]:
    """Merge nested config values while preserving default sections."""

    merged = deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        elif value is not None:
            merged[key] = value
    return merged


def env_overrides(environ: Optional[Mapping[str, str]] = None) -> Dict[str, Any]:
    """Collect nested overrides from known environment variables."""

    source = os.environ if environ is None else environ
    overrides: Dict[str, Any] = {}
    for env_name, (section, key) in ENV_OVERRIDES.items():
        value = source.get(env_name)
        if value is None or not value.strip():
            continue
        overrides.setdefault(section, {})[key] = value.strip()
    return overrides


def normalize_config(
    raw_config: Mapping[str, Any],
    environ: Optional[Mapping[str, str]] = None,
) -> ProofConfig:
    """Merge raw values over defaults, apply env overrides, and validate."""

    unknown = sorted(set(raw_config) - set(default_config_dict()))
    if unknown:
        raise ValidationError(f"Unknown config sections: {', '.join(unknown)}")
    for key, value in raw_config.items():
        if value is not None and not isinstance(value, dict):
            raise ValidationError(f"Config section '{key}' must be an object")

    merged = _deep_merge(default_config_dict(), raw_config)
    merged = _deep_merge(merged, env_overrides(environ))
    try:
        return ProofConfig.model_validate(merged)
    except PydanticValidationError as exc:
        raise ValidationError(f"Invalid configuration: {exc}") from exc


def load_config(
    config_path: Optional[Path] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> ProofConfig:
    """Load the YAML config (optional) and resolve it against defaults and env."""

    raw_config: Any = {}
    if config_path is not None:
        if not config_path.exists():
            raise FileNotFoundError(f"Missing config file: {config_path}")
        with config_path.open("r", encoding="utf-8") as config_file:
            raw_config = yaml.safe_load(config_file) or {}
        if not isinstance(raw_config, dict):
            raise ValidationError(f"Invalid config shape in {config_path}: expected object at root")
    return normalize_config(raw_config, environ)
