from __future__ import annotations

from pathlib import Path

import pytest

from proofs.config_loader import load_config, normalize_config
from proofs.errors import ValidationError


def test_defaults_without_config_file():
    cfg = load_config(None, environ={})
    assert cfg.ledger.type == "local"
    assert cfg.ledger.confirmation_timeout_s == 60
    assert cfg.storage.bucket == "infraproof-artifacts"
    assert cfg.benchmark.cpu_duration_ms == 5000
    assert cfg.benchmark.memory_size_mb == 100
    assert cfg.benchmark.disk_size_mb == 10
    assert cfg.output.artifacts_dir == "artifacts"


def test_yaml_values_merge_over_defaults(tmp_path: Path):
    path = tmp_path / "proof.yaml"
    path.write_text(
        "\n".join(
            [
                "ledger:",
                "  type: http",
                "  endpoint: https://ledger.test",
                "benchmark:",
                "  cpuDurationMs: 1000",
                "  disk_size_mb: 2",
                "output:",
                "  logs_dir: run-logs",
            ]
        ),
        encoding="utf-8",
    )
    cfg = load_config(path, environ={})
    assert cfg.ledger.type == "http"
    assert cfg.ledger.poll_interval_s == 1.0
    assert cfg.benchmark.cpu_duration_ms == 1000
    assert cfg.benchmark.memory_size_mb == 100
    assert cfg.benchmark.disk_size_mb == 2
    assert cfg.output.logs_dir == "run-logs"
    assert cfg.output.artifacts_dir == "artifacts"


def test_env_overrides_win_over_file_values():
    cfg = normalize_config(
        {"storage": {"bucket": "from-file"}},
        environ={"STORAGE_BUCKET": "from-env", "LEDGER_ACCOUNT": "0xfeed", "ARTIFACTS_DIR": " out "},
    )
    assert cfg.storage.bucket == "from-env"
    assert cfg.ledger.account == "0xfeed"
    assert cfg.output.artifacts_dir == "out"


def test_unknown_sections_and_keys_rejected():
    with pytest.raises(ValidationError):
        normalize_config({"metrics": {}}, environ={})
    with pytest.raises(ValidationError):
        normalize_config({"benchmark": {"gpuCount": 2}}, environ={})
    with pytest.raises(ValidationError):
        normalize_config({"ledger": "local"}, environ={})


def test_http_ledger_without_endpoint_is_invalid():
    with pytest.raises(ValidationError):
        normalize_config({"ledger": {"type": "http"}}, environ={})


def test_missing_config_file(tmp_path: Path):
    with pytest.raises(FileNotFoundError):
        load_config(tmp_path / "absent.yaml", environ={})


def test_non_mapping_yaml_root_rejected(tmp_path: Path):
    path = tmp_path / "list.yaml"
    path.write_text("- a\n- b\n", encoding="utf-8")
    with pytest.raises(ValidationError):
        load_config(path, environ={})
