"""Explicit wiring of the overlay core and its collaborators."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from .apikeys import build_secrets
from .config import Settings, get_settings
from .context import PushedContextProvider
from .effects import SideEffectChannel
from .llm import build_text_service
from .logger import get_logger
from .orchestrator import ActionOrchestrator
from .ports import ContextProvider, SpeechInputService, TextService
from .speech import SpeechCapture
from .speech_ws import WebSocketSpeechInput
from .store import OverlayStore


logger = get_logger("whisperly.bootstrap")


@dataclass(slots=True)
class OverlayRuntime:
    """Everything the bridge or the CLI needs to drive the overlay."""

    settings: Settings
    store: OverlayStore
    context_provider: ContextProvider
    text_service: TextService
    speech_service: SpeechInputService

    async def aclose(self) -> None:
        await self.store.aclose()
        closer = getattr(self.text_service, "aclose", None)
        if closer is not None:
            await closer()


def build_runtime(
    settings: Optional[Settings] = None,
    *,
    context_provider: Optional[ContextProvider] = None,
    text_service: Optional[TextService] = None,
    speech_service: Optional[SpeechInputService] = None,
) -> OverlayRuntime:
    settings = settings or get_settings()
    if context_provider is None:
        context_provider = PushedContextProvider()
    if text_service is None:
        text_service = build_text_service(settings, build_secrets(settings))
    if speech_service is None:
        speech_service = WebSocketSpeechInput(settings.speech_ws_url)

    orchestrator = ActionOrchestrator(context_provider, text_service)
    capture = SpeechCapture(speech_service, language=settings.speech_language)
    store = OverlayStore(
        orchestrator,
        capture,
        effects=SideEffectChannel(buffer_size=settings.state_buffer_size),
        buffer_size=settings.state_buffer_size,
    )
    logger.info("Overlay runtime ready (provider=%s)", settings.llm_provider)
    return OverlayRuntime(settings, store, context_provider, text_service, speech_service)
