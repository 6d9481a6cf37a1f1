from __future__ import annotations

import json

import pytest
from websockets.asyncio.server import serve

from whisperly.core.models import (
    SpeechError,
    SpeechErrorCode,
    SpeechPartial,
    SpeechReady,
    SpeechResult,
    SpeechStopped,
)
from whisperly.core.speech_ws import WebSocketSpeechInput, parse_speech_event


def test_parse_known_messages():
    assert parse_speech_event('{"type": "ready"}') == SpeechReady()
    assert parse_speech_event(b'{"type": "partial", "text": "he"}') == SpeechPartial("he")
    assert parse_speech_event('{"type": "result", "text": "hello", "confidence": "0.5"}') == SpeechResult("hello", 0.5)
    assert parse_speech_event('{"type": "stopped"}') == SpeechStopped()


def test_parse_errors_map_codes():
    assert parse_speech_event('{"type": "error", "code": "BUSY"}') == SpeechError(SpeechErrorCode.BUSY)
    assert parse_speech_event('{"type": "error", "code": "E42", "message": "boom"}') == SpeechError(
        SpeechErrorCode.UNKNOWN, "boom"
    )


def test_parse_ignores_noise():
    assert parse_speech_event("not json") is None
    assert parse_speech_event("[1, 2]") is None
    assert parse_speech_event('{"type": "volume", "rms": 0.3}') is None


@pytest.mark.asyncio
async def test_listen_streams_until_a_result():
    received = []

    async def recognizer(websocket):
        received.append(json.loads(await websocket.recv()))
        await websocket.send(json.dumps({"type": "ready"}))
        await websocket.send(json.dumps({"type": "volume", "rms": 0.1}))
        await websocket.send(json.dumps({"type": "partial", "text": "sum"}))
        await websocket.send(json.dumps({"type": "result", "text": "summarize this", "confidence": 0.9}))

    async with serve(recognizer, "127.0.0.1", 0) as server:
        port = server.sockets[0].getsockname()[1]
        speech = WebSocketSpeechInput(f"ws://127.0.0.1:{port}/speech")
        events = [event async for event in speech.listen("fr-FR")]

    assert received == [{"type": "start", "language": "fr-FR"}]
    assert events == [SpeechReady(), SpeechPartial("sum"), SpeechResult("summarize this", 0.9)]


@pytest.mark.asyncio
async def test_unreachable_recognizer_reports_service_not_available():
    speech = WebSocketSpeechInput("ws://127.0.0.1:9/speech", open_timeout=2.0)
    events = [event async for event in speech.listen("en-US")]
    assert events == [SpeechError(SpeechErrorCode.SERVICE_NOT_AVAILABLE)]


def test_stop_without_connection_is_harmless():
    speech = WebSocketSpeechInput("ws://127.0.0.1:9/speech")
    speech.stop()
