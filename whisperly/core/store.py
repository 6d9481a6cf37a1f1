"""Single source of truth for the overlay UI state."""

from __future__ import annotations

import asyncio
from typing import AsyncIterator, Callable, Optional

from .effects import SideEffectChannel, offer_latest
from .errors import CaptureBusyError, ErrorKind
from .logger import get_logger
from .models import (
    IDLE,
    PRESET_ACTIONS,
    ActionKind,
    CaptureFailed,
    CaptureIdle,
    CaptureListening,
    CaptureState,
    CaptureStopped,
    CloseOverlay,
    CopyText,
    CopyToClipboard,
    Failed,
    Haptic,
    HapticType,
    Loading,
    ProcessVoiceCommand,
    Recognized,
    RetryLastAction,
    ShowMessage,
    SideEffect,
    StartVoiceInput,
    StateDelta,
    StopVoiceInput,
    Succeeded,
    ToggleExpansion,
    UiState,
    UserIntent,
)
from .orchestrator import ActionOrchestrator
from .prompts import DEFAULT_TEMPLATE_IDS
from .speech import SpeechCapture


StateListener = Callable[[UiState], None]

logger = get_logger("whisperly.store")

_CLOSED = object()

LISTENING_LABEL = "Listening..."


class OverlayStore:
    """Applies intents and background deltas to one immutable ``UiState``.

    Every mutation happens on the store's event loop. ``dispatch`` never
    blocks: synchronous intents are applied inline, the others are handed
    to the orchestrator or the capture machine, whose deltas come back
    through :meth:`_apply`.
    """

    def __init__(
        self,
        orchestrator: ActionOrchestrator,
        capture: SpeechCapture,
        *,
        effects: Optional[SideEffectChannel] = None,
        initial: Optional[UiState] = None,
        loop: Optional[asyncio.AbstractEventLoop] = None,
        buffer_size: int = 64,
    ) -> None:
        self._orchestrator = orchestrator
        self._capture = capture
        self._effects = effects or SideEffectChannel()
        self._state = initial or UiState()
        self._loop = loop
        self._buffer_size = max(1, buffer_size)
        self._state_queues: set[asyncio.Queue] = set()
        self._state_listeners: list[StateListener] = []

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #
    @property
    def current_state(self) -> UiState:
        return self._state

    @property
    def effects(self) -> SideEffectChannel:
        return self._effects

    @property
    def orchestrator(self) -> ActionOrchestrator:
        return self._orchestrator

    @property
    def capture(self) -> SpeechCapture:
        return self._capture

    def dispatch(self, intent: UserIntent) -> None:
        """Accept an intent; safe to call from any thread."""
        try:
            running: Optional[asyncio.AbstractEventLoop] = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if self._loop is None:
            if running is None:
                raise RuntimeError("OverlayStore needs an event loop: pass loop= or dispatch from a coroutine.")
            self._loop = running
        if running is self._loop:
            self._handle(intent)
        else:
            self._loop.call_soon_threadsafe(self._handle, intent)

    def state_updates(self) -> AsyncIterator[UiState]:
        """Live states, starting with the current one.

        A subscriber that falls behind loses intermediate states, never the
        most recent one.
        """
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._buffer_size)
        queue.put_nowait(self._state)
        self._state_queues.add(queue)
        return self._drain(queue)

    def side_effects(self) -> AsyncIterator[SideEffect]:
        """Live side effects; nothing emitted before subscription is replayed."""
        return self._effects.subscribe()

    def add_state_listener(self, listener: StateListener) -> Callable[[], None]:
        """Call ``listener`` synchronously with every published state."""
        self._state_listeners.append(listener)

        def _remove() -> None:
            if listener in self._state_listeners:
                self._state_listeners.remove(listener)

        return _remove

    async def join(self) -> None:
        """Wait until no capture session or action run is pending."""
        while True:
            session = self._capture.session
            if session is not None and not session.done:
                await session.wait()
                continue
            handle = self._orchestrator.current
            if handle is not None and not handle.done():
                await handle.wait()
                continue
            return

    async def aclose(self) -> None:
        """Cancel background work and end every subscription."""
        self._capture.stop_capture()
        self._orchestrator.cancel()
        await self._orchestrator.join()
        self._effects.close()
        for queue in list(self._state_queues):
            offer_latest(queue, _CLOSED)

    # ------------------------------------------------------------------ #
    # Intent handling
    # ------------------------------------------------------------------ #
    def _handle(self, intent: UserIntent) -> None:
        logger.info("Intent %s", type(intent).__name__, extra={"intent": type(intent).__name__})
        if isinstance(intent, ToggleExpansion):
            self._toggle_expansion()
        elif isinstance(intent, CloseOverlay):
            self._close_overlay()
        elif isinstance(intent, CopyToClipboard):
            self._copy_to_clipboard()
        elif isinstance(intent, StopVoiceInput):
            self._stop_voice_input()
        elif type(intent) in PRESET_ACTIONS:
            self._run_action(PRESET_ACTIONS[type(intent)])
        elif isinstance(intent, StartVoiceInput):
            self._start_voice_input()
        elif isinstance(intent, ProcessVoiceCommand):
            self._process_voice_command(intent.command)
        elif isinstance(intent, RetryLastAction):
            self._retry_last_action()
        else:
            raise TypeError(f"Unknown intent: {intent!r}")

    def _toggle_expansion(self) -> None:
        if self._state.expanded:
            # Minimizing resets the response; a run still streaming must not re-show it.
            self._orchestrator.detach()
            self._apply(StateDelta(expanded=False, response_state=IDLE, effects=(Haptic(HapticType.LIGHT),)))
        else:
            self._apply(StateDelta(expanded=True, effects=(Haptic(HapticType.MEDIUM),)))

    def _close_overlay(self) -> None:
        self._orchestrator.detach()
        self._capture.stop_capture()
        self._apply(
            StateDelta(
                expanded=False,
                response_state=IDLE,
                listening=False,
                effects=(Haptic(HapticType.LIGHT),),
            )
        )

    def _copy_to_clipboard(self) -> None:
        response = self._state.response_state
        if isinstance(response, Succeeded):
            self._emit(
                CopyText(response.final_text),
                ShowMessage("Response copied to clipboard"),
                Haptic(HapticType.SUCCESS),
            )
        else:
            self._emit(ShowMessage("No response to copy"), Haptic(HapticType.ERROR))

    def _stop_voice_input(self) -> None:
        self._capture.stop_capture()
        self._apply(StateDelta(listening=False, response_state=IDLE, effects=(Haptic(HapticType.LIGHT),)))

    def _start_voice_input(self) -> None:
        try:
            self._capture.start_capture(self._on_capture_state)
        except CaptureBusyError:
            self._emit(ShowMessage("Voice input is already active"))
            return
        self._emit(Haptic(HapticType.MEDIUM))

    def _process_voice_command(self, command: str) -> None:
        if not command.strip():
            self._emit(ShowMessage("No voice command to process"))
            return
        self._run_action(ActionKind.CUSTOM_COMMAND, command=command.strip())

    def _retry_last_action(self) -> None:
        handle = self._orchestrator.retry(sink=self._apply, snapshot=self._snapshot)
        if handle is None:
            self._emit(ShowMessage("No action to retry"))

    def _run_action(self, kind: ActionKind, *, command: str | None = None) -> None:
        self._orchestrator.run(
            kind,
            DEFAULT_TEMPLATE_IDS[kind],
            sink=self._apply,
            snapshot=self._snapshot,
            command=command,
        )

    def _on_capture_state(self, state: CaptureState) -> None:
        if isinstance(state, CaptureIdle):
            return
        if isinstance(state, CaptureListening):
            self._apply(StateDelta(response_state=Loading(LISTENING_LABEL), listening=True))
        elif isinstance(state, Recognized):
            self._apply(StateDelta(listening=False))
            self._run_action(ActionKind.CUSTOM_COMMAND, command=state.text)
        elif isinstance(state, CaptureFailed):
            self._apply(
                StateDelta(
                    listening=False,
                    response_state=Failed(
                        message=state.message,
                        kind=ErrorKind.SPEECH_RECOGNITION_ERROR,
                        retryable=True,
                    ),
                    effects=(Haptic(HapticType.ERROR),),
                )
            )
        elif isinstance(state, CaptureStopped):
            self._apply(StateDelta(listening=False, response_state=IDLE))
        else:
            raise TypeError(f"Unknown capture state: {state!r}")

    # ------------------------------------------------------------------ #
    # State publication
    # ------------------------------------------------------------------ #
    def _snapshot(self) -> UiState:
        return self._state

    def _apply(self, delta: StateDelta) -> None:
        new_state = delta.apply_to(self._state)
        if new_state != self._state:
            self._publish(new_state)
        for effect in delta.effects:
            self._effects.emit(effect)

    def _emit(self, *effects: SideEffect) -> None:
        for effect in effects:
            self._effects.emit(effect)

    def _publish(self, state: UiState) -> None:
        self._state = state
        for listener in list(self._state_listeners):
            try:
                listener(state)
            except Exception:  # pragma: no cover - listener bug
                logger.exception("State listener failed")
        for queue in list(self._state_queues):
            offer_latest(queue, state)

    async def _drain(self, queue: asyncio.Queue) -> AsyncIterator[UiState]:
        try:
            while True:
                item = await queue.get()
                if item is _CLOSED:
                    return
                yield item
        finally:
            self._state_queues.discard(queue)
