"""Error taxonomy shared by the orchestrator, the capture layer and the adapters."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict

import httpx


class ErrorKind(str, Enum):
    """Classified failure kinds surfaced to the UI."""

    NETWORK_ERROR = "network_error"
    AUTHENTICATION_ERROR = "authentication_error"
    RATE_LIMIT_ERROR = "rate_limit_error"
    INVALID_RESPONSE = "invalid_response"
    NO_CONTEXT_AVAILABLE = "no_context_available"
    SPEECH_RECOGNITION_ERROR = "speech_recognition_error"
    PERMISSION_ERROR = "permission_error"
    UNKNOWN_ERROR = "unknown_error"

    @property
    def retryable(self) -> bool:
        return self is not ErrorKind.AUTHENTICATION_ERROR


DEFAULT_MESSAGES: dict[ErrorKind, str] = {
    ErrorKind.NETWORK_ERROR: "Network error. Please check your internet connection and try again.",
    ErrorKind.AUTHENTICATION_ERROR: "Invalid API key. Please check your API key in settings.",
    ErrorKind.RATE_LIMIT_ERROR: "API rate limit exceeded. Please try again in a few moments.",
    ErrorKind.INVALID_RESPONSE: "AI service returned an empty response.",
    ErrorKind.NO_CONTEXT_AVAILABLE: (
        "No text content found on screen. Please navigate to a screen with text and try again."
    ),
    ErrorKind.SPEECH_RECOGNITION_ERROR: "An error occurred during speech recognition.",
    ErrorKind.PERMISSION_ERROR: "A required permission is missing.",
    ErrorKind.UNKNOWN_ERROR: "An unexpected error occurred.",
}


class TextServiceError(RuntimeError):
    """Failure raised by a text service adapter, already classified."""

    kind: ErrorKind = ErrorKind.UNKNOWN_ERROR

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or DEFAULT_MESSAGES[self.kind])
        self.message = str(self)


class ServiceNetworkError(TextServiceError):
    kind = ErrorKind.NETWORK_ERROR


class ServiceAuthError(TextServiceError):
    kind = ErrorKind.AUTHENTICATION_ERROR


class ServiceRateLimitError(TextServiceError):
    kind = ErrorKind.RATE_LIMIT_ERROR


class ServiceResponseError(TextServiceError):
    kind = ErrorKind.INVALID_RESPONSE


class CaptureBusyError(RuntimeError):
    """Raised when a capture session is started while another one is active."""


@dataclass(frozen=True, slots=True)
class Failure:
    """Result of classifying an exception."""

    kind: ErrorKind
    message: str
    retryable: bool


def classify_failure(exc: BaseException) -> Failure:
    """Map any collaborator exception onto the error taxonomy."""
    if isinstance(exc, TextServiceError):
        return Failure(exc.kind, exc.message, exc.kind.retryable)
    if isinstance(exc, (httpx.TransportError, ConnectionError, TimeoutError)):
        kind = ErrorKind.NETWORK_ERROR
        return Failure(kind, DEFAULT_MESSAGES[kind], kind.retryable)

    text = str(exc).lower()
    if "api key" in text or "api_key" in text:
        kind = ErrorKind.AUTHENTICATION_ERROR
    elif "quota" in text or "rate limit" in text:
        kind = ErrorKind.RATE_LIMIT_ERROR
    elif "network" in text or "connection" in text:
        kind = ErrorKind.NETWORK_ERROR
    else:
        kind = ErrorKind.UNKNOWN_ERROR
        detail = str(exc) or exc.__class__.__name__
        return Failure(kind, f"An unexpected error occurred: {detail}", kind.retryable)
    return Failure(kind, DEFAULT_MESSAGES[kind], kind.retryable)


def error_response(code: str, message: str, *, details: Any | None = None, trace_id: str | None = None) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "error": {
            "code": code,
            "message": message,
        }
    }
    if details is not None:
        payload["error"]["details"] = details
    if trace_id is not None:
        payload["error"]["trace_id"] = trace_id
    return payload
