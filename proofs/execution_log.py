from __future__ import annotations

from typing import Callable, List, Optional

from proofs.schemas import utc_now_iso


class ExecutionLog:
    """Ordered in-memory log buffer that becomes execution.log.

    The optional `echo` callable only mirrors lines for human display; the
    buffer itself is the artifact source.
    """

    def __init__(self, echo: Optional[Callable[[str], None]] = None) -> None:
        self._lines: List[str] = []
        self._echo = echo

    def append(self, message: str) -> str:
        """Timestamp and record one progress line."""

        line = f"[{utc_now_iso()}] {message}"
        self._lines.append(line)
        if self._echo is not None:
            self._echo(line)
        return line

    @property
    def lines(self) -> List[str]:
        return list(self._lines)

    def __len__(self) -> int:
        return len(self._lines)

    def render(self) -> str:
        """Newline-joined lines with a trailing newline."""

        return "\n".join(self._lines) + "\n"
