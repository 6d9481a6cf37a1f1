"""Interfaces of the collaborators consumed by the overlay core."""

from __future__ import annotations

import contextlib
from typing import Any, AsyncIterator, Optional, Protocol, runtime_checkable

from .models import SpeechEvent


@runtime_checkable
class ContextProvider(Protocol):
    def get_current_context(self) -> str:
        """Return the visible screen text, or "" on failure. Never raises."""
        ...


@runtime_checkable
class TextService(Protocol):
    def submit(self, prompt: str, context: str) -> AsyncIterator[str]:
        """Stream text increments; failures raise ``TextServiceError``."""
        ...


@runtime_checkable
class SpeechInputService(Protocol):
    def listen(self, language: str) -> AsyncIterator[SpeechEvent]:
        """Stream recognition events; closing the iterator releases the recognizer."""
        ...

    def stop(self) -> None:
        ...


@runtime_checkable
class SecretsProvider(Protocol):
    def get_api_key(self) -> Optional[str]:
        ...


def closing_stream(stream: Any) -> Any:
    """Context manager closing async generators on exit; other iterables pass through."""
    if hasattr(stream, "aclose"):
        return contextlib.aclosing(stream)
    return contextlib.nullcontext(stream)
