from __future__ import annotations

import inspect
import json
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional


def now_human() -> str:
    """Return local timestamp in a compact log-friendly format."""

    return datetime.now().strftime("%Y-%m-%d %H:%M:%S")


def run_log_path(logs_dir: Path, task_id: int) -> Path:
    """Return the operator-side run log location for one task cycle."""

    return logs_dir / f"task-{task_id}.log"


def canonical_document_text(payload: Dict[str, Any]) -> str:
    """Key-sorted, indented JSON with a trailing newline."""

    return json.dumps(payload, indent=2, sort_keys=True, ensure_ascii=False) + "\n"


def write_json(path: Path, payload: Dict[str, Any]) -> None:
    """Write a JSON document and fail fast on non-serializable values."""

    text = canonical_document_text(payload)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(text.encode("utf-8"))


def read_json(path: Path) -> Dict[str, Any]:
    """Read a JSON object; return empty object when missing or invalid."""

    if not path.exists():
        return {}
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError):
        return {}
    if isinstance(payload, dict):
        return payload
    return {}


def _infer_log_source() -> str:
    """Best-effort caller source in file:line format."""

    frame = inspect.currentframe()
    try:
        caller = frame.f_back.f_back if frame and frame.f_back else None
        if caller is None:
            return "unknown:0"
        return f"{Path(caller.f_code.co_filename).name}:{caller.f_lineno}"
    finally:
        del frame


def append_log(
    path: Path,
    message: str,
    *,
    level: str = "INFO",
    source: Optional[str] = None,
) -> None:
    """Append one formatted line to the run log."""

    path.parent.mkdir(parents=True, exist_ok=True)
    normalized_level = (level or "INFO").upper()
    normalized_source = source or _infer_log_source()
    line = f"{now_human()} | {normalized_level:<8} | {normalized_source:<24} | {message}"
    with path.open("a", encoding="utf-8") as f:
        f.write(line + "\n")
