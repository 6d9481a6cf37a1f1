"""State, intent and event types exchanged inside the overlay core."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Optional, Union

from .errors import ErrorKind


# --------------------------------------------------------------------------- #
# Response state
# --------------------------------------------------------------------------- #
@dataclass(frozen=True, slots=True)
class Idle:
    """No action requested yet, or the overlay was reset."""

    def to_payload(self) -> dict[str, Any]:
        return {"status": "idle"}


@dataclass(frozen=True, slots=True)
class Loading:
    """Work is in progress; ``label`` names what is being processed."""

    label: str | None = None

    def to_payload(self) -> dict[str, Any]:
        return {"status": "loading", "label": self.label}


@dataclass(frozen=True, slots=True)
class Streaming:
    """Partial response text received so far."""

    partial_text: str
    action_label: str | None = None

    def to_payload(self) -> dict[str, Any]:
        return {"status": "streaming", "text": self.partial_text, "action": self.action_label}


@dataclass(frozen=True, slots=True)
class Succeeded:
    """Final response text."""

    final_text: str
    action_label: str | None = None
    completed_at: float = 0.0

    def to_payload(self) -> dict[str, Any]:
        return {
            "status": "succeeded",
            "text": self.final_text,
            "action": self.action_label,
            "completed_at": self.completed_at,
        }


@dataclass(frozen=True, slots=True)
class Failed:
    """Terminal failure; ``retryable`` decides whether a retry is offered."""

    message: str
    kind: ErrorKind
    retryable: bool = True

    def to_payload(self) -> dict[str, Any]:
        return {
            "status": "failed",
            "message": self.message,
            "kind": self.kind.value,
            "retryable": self.retryable,
        }


ResponseState = Union[Idle, Loading, Streaming, Succeeded, Failed]
IDLE = Idle()


@dataclass(frozen=True, slots=True)
class UiState:
    """Snapshot rendered by the presentation layer."""

    expanded: bool = False
    response_state: ResponseState = IDLE
    listening: bool = False

    def to_payload(self) -> dict[str, Any]:
        return {
            "expanded": self.expanded,
            "listening": self.listening,
            "response": self.response_state.to_payload(),
        }


# --------------------------------------------------------------------------- #
# Side effects
# --------------------------------------------------------------------------- #
class HapticType(str, Enum):
    LIGHT = "light"
    MEDIUM = "medium"
    HEAVY = "heavy"
    SUCCESS = "success"
    ERROR = "error"


@dataclass(frozen=True, slots=True)
class ShowMessage:
    text: str

    def to_payload(self) -> dict[str, Any]:
        return {"type": "show_message", "text": self.text}


@dataclass(frozen=True, slots=True)
class Haptic:
    kind: HapticType

    def to_payload(self) -> dict[str, Any]:
        return {"type": "haptic", "kind": self.kind.value}


@dataclass(frozen=True, slots=True)
class CopyText:
    text: str

    def to_payload(self) -> dict[str, Any]:
        return {"type": "copy_text", "text": self.text}


SideEffect = Union[ShowMessage, Haptic, CopyText]


@dataclass(frozen=True, slots=True)
class StateDelta:
    """Partial update produced by a background task.

    ``None`` fields are left untouched when the delta is applied.
    """

    response_state: Optional[ResponseState] = None
    expanded: Optional[bool] = None
    listening: Optional[bool] = None
    effects: tuple[SideEffect, ...] = ()

    def apply_to(self, state: UiState) -> UiState:
        changes: dict[str, Any] = {}
        if self.response_state is not None:
            changes["response_state"] = self.response_state
        if self.expanded is not None:
            changes["expanded"] = self.expanded
        if self.listening is not None:
            changes["listening"] = self.listening
        return replace(state, **changes) if changes else state


# --------------------------------------------------------------------------- #
# Actions
# --------------------------------------------------------------------------- #
class ActionKind(str, Enum):
    """Predefined transformations plus the free-form voice command."""

    SUMMARIZE = "summarize"
    GRAMMAR = "grammar"
    TONE_PROFESSIONAL = "tone_professional"
    EXPLAIN_SIMPLY = "explain_simply"
    CUSTOM_COMMAND = "custom_command"

    @property
    def label(self) -> str:
        return _ACTION_LABELS[self]


_ACTION_LABELS = {
    ActionKind.SUMMARIZE: "Summarize",
    ActionKind.GRAMMAR: "Grammar Check",
    ActionKind.TONE_PROFESSIONAL: "Professional Tone",
    ActionKind.EXPLAIN_SIMPLY: "Simple Explanation",
    ActionKind.CUSTOM_COMMAND: "Voice Command",
}


@dataclass(frozen=True, slots=True)
class ActionRequest:
    """One accepted AI request, immutable once built."""

    action_kind: ActionKind
    prompt_template_id: str
    context_snapshot: str
    issued_at: float
    command: str | None = None


# --------------------------------------------------------------------------- #
# Intents
# --------------------------------------------------------------------------- #
@dataclass(frozen=True, slots=True)
class ToggleExpansion:
    pass


@dataclass(frozen=True, slots=True)
class CloseOverlay:
    pass


@dataclass(frozen=True, slots=True)
class CopyToClipboard:
    pass


@dataclass(frozen=True, slots=True)
class StopVoiceInput:
    pass


@dataclass(frozen=True, slots=True)
class SummarizeScreen:
    pass


@dataclass(frozen=True, slots=True)
class CheckGrammar:
    pass


@dataclass(frozen=True, slots=True)
class ChangeToneProfessional:
    pass


@dataclass(frozen=True, slots=True)
class ExplainSimply:
    pass


@dataclass(frozen=True, slots=True)
class StartVoiceInput:
    pass


@dataclass(frozen=True, slots=True)
class ProcessVoiceCommand:
    command: str


@dataclass(frozen=True, slots=True)
class RetryLastAction:
    pass


UserIntent = Union[
    ToggleExpansion,
    CloseOverlay,
    CopyToClipboard,
    StopVoiceInput,
    SummarizeScreen,
    CheckGrammar,
    ChangeToneProfessional,
    ExplainSimply,
    StartVoiceInput,
    ProcessVoiceCommand,
    RetryLastAction,
]

# Intents that map directly onto a predefined action.
PRESET_ACTIONS: dict[type, ActionKind] = {
    SummarizeScreen: ActionKind.SUMMARIZE,
    CheckGrammar: ActionKind.GRAMMAR,
    ChangeToneProfessional: ActionKind.TONE_PROFESSIONAL,
    ExplainSimply: ActionKind.EXPLAIN_SIMPLY,
}

INTENT_NAMES: dict[str, type] = {
    "toggle_expansion": ToggleExpansion,
    "close_overlay": CloseOverlay,
    "copy_to_clipboard": CopyToClipboard,
    "stop_voice_input": StopVoiceInput,
    "summarize_screen": SummarizeScreen,
    "check_grammar": CheckGrammar,
    "change_tone_professional": ChangeToneProfessional,
    "explain_simply": ExplainSimply,
    "start_voice_input": StartVoiceInput,
    "process_voice_command": ProcessVoiceCommand,
    "retry_last_action": RetryLastAction,
}


def intent_from_name(name: str, command: str | None = None) -> UserIntent:
    """Build an intent from its wire name (raises KeyError when unknown)."""
    intent_cls = INTENT_NAMES[name]
    if intent_cls is ProcessVoiceCommand:
        return ProcessVoiceCommand(command or "")
    return intent_cls()


# --------------------------------------------------------------------------- #
# Speech capture
# --------------------------------------------------------------------------- #
class SpeechErrorCode(str, Enum):
    PERMISSION_DENIED = "permission_denied"
    NETWORK = "network"
    NO_MATCH = "no_match"
    BUSY = "busy"
    INSUFFICIENT_PERMISSIONS = "insufficient_permissions"
    SERVICE_NOT_AVAILABLE = "service_not_available"
    UNKNOWN = "unknown"

    @property
    def default_message(self) -> str:
        return _SPEECH_MESSAGES.get(self, "An error occurred during speech recognition.")


_SPEECH_MESSAGES = {
    SpeechErrorCode.PERMISSION_DENIED: "Microphone permission is required for voice input",
    SpeechErrorCode.NETWORK: "Network error. Please check your connection.",
    SpeechErrorCode.NO_MATCH: "No speech was detected. Please try again.",
    SpeechErrorCode.BUSY: "Speech recognition is busy. Please wait and try again.",
    SpeechErrorCode.INSUFFICIENT_PERMISSIONS: "Insufficient permissions for speech recognition.",
    SpeechErrorCode.SERVICE_NOT_AVAILABLE: "Speech recognition service is not available on this device",
}

SUPPORTED_LANGUAGES = (
    "en-US", "en-GB", "es-ES", "fr-FR", "de-DE",
    "it-IT", "pt-BR", "ru-RU", "ja-JP", "ko-KR",
    "zh-CN", "hi-IN", "ar-SA",
)


# Events emitted by a speech input service.
@dataclass(frozen=True, slots=True)
class SpeechReady:
    pass


@dataclass(frozen=True, slots=True)
class SpeechPartial:
    text: str


@dataclass(frozen=True, slots=True)
class SpeechResult:
    text: str
    confidence: float = 1.0


@dataclass(frozen=True, slots=True)
class SpeechError:
    code: SpeechErrorCode
    message: str | None = None


@dataclass(frozen=True, slots=True)
class SpeechStopped:
    pass


SpeechEvent = Union[SpeechReady, SpeechPartial, SpeechResult, SpeechError, SpeechStopped]


# States of one capture session.
@dataclass(frozen=True, slots=True)
class CaptureIdle:
    pass


@dataclass(frozen=True, slots=True)
class CaptureListening:
    pass


@dataclass(frozen=True, slots=True)
class Recognized:
    text: str
    confidence: float = 1.0


@dataclass(frozen=True, slots=True)
class CaptureFailed:
    code: SpeechErrorCode
    message: str = field(default="")


@dataclass(frozen=True, slots=True)
class CaptureStopped:
    pass


CaptureState = Union[CaptureIdle, CaptureListening, Recognized, CaptureFailed, CaptureStopped]
