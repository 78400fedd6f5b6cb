"""Canonical digests for specs, result documents and artifact folders.

Rules:
- one digest function (SHA3-256, 32 bytes) everywhere
- digests are rendered as ``0x`` + 64 lowercase hex characters
- artifact folders hash per-file digests concatenated in filename order
- an empty folder hashes to the digest of the empty byte string
"""

from __future__ import annotations

import hashlib
import json
import re
from pathlib import Path
from typing import Any, Iterable, Mapping

from proofs.errors import ValidationError

DIGEST_SIZE = 32
ZERO_DIGEST = "0x" + "00" * DIGEST_SIZE
_DIGEST_PATTERN = re.compile(r"^0x[0-9a-fA-F]{64}$")


def digest_bytes(data: bytes) -> bytes:
    """Return the raw 32-byte digest of `data`."""

    return hashlib.sha3_256(data).digest()


def to_hex(raw: bytes) -> str:
    return "0x" + raw.hex()


def hash_bytes(data: bytes) -> str:
    """Return the prefixed hex digest of `data`."""

    return to_hex(digest_bytes(data))


def normalize_digest(value: Any, *, label: str = "hash") -> str:
    """Validate a prefixed hex digest and return it lowercased."""

    if not isinstance(value, str) or not _DIGEST_PATTERN.match(value):
        raise ValidationError(f"Malformed {label}: expected 0x-prefixed 32-byte hex digest")
    return value.lower()


def is_zero_digest(value: str) -> bool:
    return normalize_digest(value) == ZERO_DIGEST


def canonical_json_bytes(payload: Mapping[str, Any]) -> bytes:
    """Compact, key-sorted JSON encoding used for spec hashing."""

    return json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def hash_json(payload: Mapping[str, Any]) -> str:
    """Hash a JSON object through its single canonical byte representation."""

    return hash_bytes(canonical_json_bytes(payload))


def hash_file(path: Path) -> str:
    return hash_bytes(path.read_bytes())


def hash_artifact_dir(folder: Path, exclude: Iterable[str] = ()) -> str:
    """Hash the regular files of `folder` in lexicographic filename order."""

    excluded = set(exclude)
    combined = bytearray()
    for name in sorted(entry.name for entry in folder.iterdir()):
        if name in excluded:
            continue
        path = folder / name
        if not path.is_file():
            continue
        combined.extend(digest_bytes(path.read_bytes()))
    return hash_bytes(bytes(combined))
