"""Speech capture state machine wrapped around a speech input service."""

from __future__ import annotations

import asyncio
import contextlib
from typing import AsyncIterable, AsyncIterator, Callable, Optional

from .errors import CaptureBusyError
from .logger import get_logger
from .metrics import inc_capture
from .models import (
    CaptureFailed,
    CaptureIdle,
    CaptureListening,
    CaptureState,
    CaptureStopped,
    Recognized,
    SpeechError,
    SpeechErrorCode,
    SpeechEvent,
    SpeechPartial,
    SpeechReady,
    SpeechResult,
    SpeechStopped,
)
from .ports import SpeechInputService, closing_stream


CaptureSink = Callable[[CaptureState], None]

logger = get_logger("whisperly.speech")


async def capture_states(events: AsyncIterable[SpeechEvent]) -> AsyncIterator[CaptureState]:
    """Map raw recognizer events onto capture states.

    ``CaptureListening`` is only produced once the recognizer reports it is
    ready; an error before that goes straight to ``CaptureFailed``. Partial
    results are ignored. The sequence always ends with exactly one terminal
    state, ``CaptureStopped`` when the recognizer ends without a result.
    """
    ready = False
    async for event in events:
        if isinstance(event, SpeechReady):
            if not ready:
                ready = True
                yield CaptureListening()
        elif isinstance(event, SpeechPartial):
            continue
        elif isinstance(event, SpeechResult):
            text = event.text.strip()
            if text:
                yield Recognized(text=text, confidence=event.confidence)
            else:
                yield CaptureFailed(
                    SpeechErrorCode.NO_MATCH,
                    "No speech was recognized. Please try again.",
                )
            return
        elif isinstance(event, SpeechError):
            yield CaptureFailed(event.code, event.message or event.code.default_message)
            return
        elif isinstance(event, SpeechStopped):
            yield CaptureStopped()
            return
        else:
            raise TypeError(f"Unknown speech event: {event!r}")
    yield CaptureStopped()


class CaptureSession:
    """One active capture; ``state`` follows the session's lifecycle."""

    def __init__(self) -> None:
        self.state: CaptureState = CaptureIdle()
        self.stale = False
        self._task: Optional[asyncio.Task[None]] = None

    @property
    def done(self) -> bool:
        return self._task is not None and self._task.done()

    def cancel(self) -> None:
        self.stale = True
        if self._task is not None and not self._task.done():
            self._task.cancel()

    async def wait(self) -> None:
        if self._task is not None:
            await asyncio.wait({self._task})


class SpeechCapture:
    """Runs at most one capture session at a time."""

    def __init__(self, service: SpeechInputService, *, language: str = "en-US") -> None:
        self._service = service
        self.language = language
        self._session: Optional[CaptureSession] = None

    @property
    def active(self) -> bool:
        return self._session is not None and not self._session.done

    @property
    def session(self) -> Optional[CaptureSession]:
        return self._session

    def start_capture(self, sink: CaptureSink) -> CaptureSession:
        """Start listening and report every state change to ``sink``.

        Raises ``CaptureBusyError`` while another session is active.
        """
        if self.active:
            raise CaptureBusyError("A voice capture session is already active.")
        session = CaptureSession()
        session._task = asyncio.get_running_loop().create_task(self._pump(session, sink))
        self._session = session
        logger.info("Voice capture started (language=%s)", self.language, extra={"language": self.language})
        return session

    def stop_capture(self) -> bool:
        """Stop the active session; its later states are not reported."""
        session = self._session
        if session is None or session.done:
            return False
        self._session = None
        session.state = CaptureStopped()
        with contextlib.suppress(Exception):
            self._service.stop()
        session.cancel()
        inc_capture("stopped")
        logger.info("Voice capture stopped")
        return True

    async def _pump(self, session: CaptureSession, sink: CaptureSink) -> None:
        try:
            events = self._service.listen(self.language)
            async with closing_stream(events) as feed, closing_stream(capture_states(feed)) as states:
                async for state in states:
                    self._publish(session, sink, state)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.warning("Speech input service failed: %s", exc)
            self._publish(session, sink, CaptureFailed(SpeechErrorCode.UNKNOWN, f"Voice input failed: {exc}"))
        finally:
            if self._session is session:
                self._session = None

    def _publish(self, session: CaptureSession, sink: CaptureSink, state: CaptureState) -> None:
        session.state = state
        if session.stale:
            return
        if isinstance(state, (Recognized, CaptureFailed, CaptureStopped)):
            outcome = type(state).__name__.lower()
            inc_capture(outcome)
            # Terminal: free the slot before the sink may start a follow-up action.
            if self._session is session:
                self._session = None
        sink(state)
