"""Speech input service talking to a recognizer over a WebSocket."""

from __future__ import annotations

import asyncio
import contextlib
import json
from typing import Any, AsyncIterator, Optional

from websockets.asyncio.client import connect as ws_connect
from websockets.exceptions import ConnectionClosed, WebSocketException

from .logger import get_logger
from .models import (
    SpeechError,
    SpeechErrorCode,
    SpeechEvent,
    SpeechPartial,
    SpeechReady,
    SpeechResult,
    SpeechStopped,
)


logger = get_logger("whisperly.speech_ws")

_TERMINAL = (SpeechResult, SpeechError, SpeechStopped)


def parse_speech_event(message: str | bytes) -> Optional[SpeechEvent]:
    """Decode one recognizer message; unknown messages yield ``None``."""
    if isinstance(message, bytes):
        message = message.decode("utf-8", errors="replace")
    try:
        data: Any = json.loads(message)
    except ValueError:
        logger.warning("Ignoring non-JSON speech message")
        return None
    if not isinstance(data, dict):
        return None
    kind = data.get("type")
    if kind == "ready":
        return SpeechReady()
    if kind == "partial":
        return SpeechPartial(str(data.get("text") or ""))
    if kind == "result":
        try:
            confidence = float(data.get("confidence", 1.0))
        except (TypeError, ValueError):
            confidence = 1.0
        return SpeechResult(str(data.get("text") or ""), confidence)
    if kind == "error":
        try:
            code = SpeechErrorCode(str(data.get("code") or "unknown").lower())
        except ValueError:
            code = SpeechErrorCode.UNKNOWN
        return SpeechError(code, data.get("message") or None)
    if kind == "stopped":
        return SpeechStopped()
    return None


class WebSocketSpeechInput:
    """Streams recognition events from ``url``.

    The recognizer receives ``{"type": "start", "language": ...}`` and answers
    with ``ready``/``partial``/``result``/``error``/``stopped`` messages.
    """

    def __init__(self, url: str, *, open_timeout: float = 10.0) -> None:
        self.url = url
        self.open_timeout = open_timeout
        self._websocket: Any = None
        self._stopping = False
        self._closer: Optional[asyncio.Task[None]] = None

    async def listen(self, language: str) -> AsyncIterator[SpeechEvent]:
        self._stopping = False
        try:
            async with ws_connect(self.url, open_timeout=self.open_timeout) as websocket:
                self._websocket = websocket
                await websocket.send(json.dumps({"type": "start", "language": language}))
                async for message in websocket:
                    event = parse_speech_event(message)
                    if event is None:
                        continue
                    yield event
                    if isinstance(event, _TERMINAL):
                        return
        except ConnectionClosed as exc:
            if not self._stopping:
                logger.warning("Speech connection dropped: %s", exc)
                yield SpeechError(SpeechErrorCode.NETWORK)
        except (OSError, WebSocketException) as exc:
            logger.warning("Speech service unreachable at %s: %s", self.url, exc)
            yield SpeechError(SpeechErrorCode.SERVICE_NOT_AVAILABLE)
        finally:
            self._websocket = None

    def stop(self) -> None:
        """Ask the recognizer to stop and close the connection."""
        self._stopping = True
        websocket = self._websocket
        if websocket is None:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        self._closer = loop.create_task(self._close(websocket))

    @staticmethod
    async def _close(websocket: Any) -> None:
        with contextlib.suppress(ConnectionClosed, OSError):
            await websocket.send(json.dumps({"type": "stop"}))
        await websocket.close()
