"""Context providers handing the visible screen text to the orchestrator."""

from __future__ import annotations

import threading
from pathlib import Path

from .logger import get_logger


logger = get_logger("whisperly.context")


class PushedContextProvider:
    """Holds the latest screen text pushed by the extraction layer."""

    def __init__(self, initial: str = "") -> None:
        self._text = initial
        self._lock = threading.Lock()

    def update(self, text: str) -> None:
        with self._lock:
            self._text = text or ""

    def clear(self) -> None:
        self.update("")

    def get_current_context(self) -> str:
        with self._lock:
            return self._text


class FileContextProvider:
    """Reads the screen text from a file each time it is asked."""

    def __init__(self, path: str | Path, *, max_chars: int = 20_000) -> None:
        self.path = Path(path)
        self.max_chars = max_chars

    def get_current_context(self) -> str:
        try:
            text = self.path.read_text(encoding="utf-8").lstrip("\ufeff")
        except (OSError, UnicodeDecodeError) as exc:
            logger.warning("Cannot read context file %s: %s", self.path, exc)
            return ""
        return text[: self.max_chars]
