from __future__ import annotations

import json

import httpx
import pytest

from whisperly.core.config import Settings
from whisperly.core.errors import (
    ServiceAuthError,
    ServiceNetworkError,
    ServiceRateLimitError,
    ServiceResponseError,
    TextServiceError,
)
from whisperly.core.llm import (
    GeminiTextService,
    OpenAICompatTextService,
    StreamingTextService,
    build_text_service,
)

from fakes import FakeSecrets


def _sse(*chunks) -> bytes:
    lines = []
    for chunk in chunks:
        data = chunk if isinstance(chunk, str) else json.dumps(chunk)
        lines.append(f"data: {data}\n\n")
    return "".join(lines).encode("utf-8")


def _gemini_chunk(text: str) -> dict:
    return {"candidates": [{"content": {"role": "model", "parts": [{"text": text}]}}]}


def _settings(**overrides) -> Settings:
    return Settings(_env_file=None, **overrides)


async def _drain(stream) -> list[str]:
    return [part async for part in stream]


@pytest.mark.asyncio
async def test_gemini_streams_text_parts():
    captured: dict[str, object] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["url"] = request.url
        captured["headers"] = request.headers
        captured["body"] = json.loads(request.content)
        body = _sse(_gemini_chunk("Hel"), _gemini_chunk("lo"), _gemini_chunk(" world"))
        return httpx.Response(200, content=body, headers={"content-type": "text/event-stream"})

    service = GeminiTextService(_settings(), FakeSecrets("AIza-test-key"), transport=httpx.MockTransport(handler))
    parts = await _drain(service.submit("Summarize:", "the screen"))
    await service.aclose()

    assert parts == ["Hel", "lo", " world"]
    url = captured["url"]
    assert url.path == "/v1beta/models/gemini-1.5-flash:streamGenerateContent"
    assert url.params["alt"] == "sse"
    assert captured["headers"]["x-goog-api-key"] == "AIza-test-key"
    text = captured["body"]["contents"][0]["parts"][0]["text"]
    assert text == "Summarize:\n\nthe screen"
    assert captured["body"]["generationConfig"]["temperature"] == 0.7


@pytest.mark.asyncio
async def test_gemini_without_key_fails_before_any_request():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(200)

    service = GeminiTextService(_settings(), FakeSecrets(None), transport=httpx.MockTransport(handler))
    with pytest.raises(ServiceAuthError):
        await _drain(service.submit("p", "c"))
    await service.aclose()
    assert calls == []


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("status", "body", "expected"),
    [
        (401, "unauthorized", ServiceAuthError),
        (400, '{"error": {"message": "API key not valid. Please pass a valid API key."}}', ServiceAuthError),
        (429, "slow down", ServiceRateLimitError),
        (503, "overloaded", ServiceNetworkError),
        (404, "no such model", TextServiceError),
    ],
)
async def test_gemini_http_errors_are_classified(status, body, expected):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status, text=body)

    service = GeminiTextService(_settings(), FakeSecrets("k"), transport=httpx.MockTransport(handler))
    with pytest.raises(expected):
        await _drain(service.submit("p", "c"))
    await service.aclose()


@pytest.mark.asyncio
async def test_gemini_transport_failure_is_a_network_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    service = GeminiTextService(_settings(), FakeSecrets("k"), transport=httpx.MockTransport(handler))
    with pytest.raises(ServiceNetworkError):
        await _drain(service.submit("p", "c"))
    await service.aclose()


@pytest.mark.asyncio
async def test_gemini_malformed_chunk_is_an_invalid_response():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=_sse(_gemini_chunk("ok"), "{broken"))

    service = GeminiTextService(_settings(), FakeSecrets("k"), transport=httpx.MockTransport(handler))
    with pytest.raises(ServiceResponseError):
        await _drain(service.submit("p", "c"))
    await service.aclose()


@pytest.mark.asyncio
async def test_gemini_blocked_prompt_is_reported():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=_sse({"promptFeedback": {"blockReason": "SAFETY"}}))

    service = GeminiTextService(_settings(), FakeSecrets("k"), transport=httpx.MockTransport(handler))
    with pytest.raises(ServiceResponseError, match="SAFETY"):
        await _drain(service.submit("p", "c"))
    await service.aclose()


@pytest.mark.asyncio
async def test_gemini_test_connection():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=_sse(_gemini_chunk("API connection "), _gemini_chunk("successful")))

    service = GeminiTextService(_settings(), FakeSecrets("k"), transport=httpx.MockTransport(handler))
    assert await service.test_connection() is True
    await service.aclose()


@pytest.mark.asyncio
async def test_openai_compat_streams_deltas():
    captured: dict[str, object] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["url"] = str(request.url)
        captured["headers"] = request.headers
        captured["body"] = json.loads(request.content)
        body = _sse(
            {"choices": [{"delta": {"role": "assistant"}}]},
            {"choices": [{"delta": {"content": "Bon"}}]},
            {"choices": [{"delta": {"content": "jour"}}]},
            "[DONE]",
        )
        return httpx.Response(200, content=body)

    settings = _settings(
        llm_provider="openai_compat",
        openai_compat_base_url="http://llm.local:9000/",
        openai_compat_chat_endpoint="v1/chat/completions",
        openai_compat_model="demo-model",
        openai_compat_api_key="secret-key",
    )
    service = OpenAICompatTextService(settings, transport=httpx.MockTransport(handler))
    parts = await _drain(service.submit("Translate:", "hello"))
    await service.aclose()

    assert parts == ["Bon", "jour"]
    assert captured["url"] == "http://llm.local:9000/v1/chat/completions"
    assert captured["headers"]["Authorization"] == "Bearer secret-key"
    assert captured["body"]["model"] == "demo-model"
    assert captured["body"]["stream"] is True
    assert captured["body"]["messages"] == [{"role": "user", "content": "Translate:\n\nhello"}]


@pytest.mark.asyncio
async def test_openai_compat_requires_a_model():
    service = OpenAICompatTextService(_settings(openai_compat_model=None))
    with pytest.raises(TextServiceError):
        await _drain(service.submit("p", "c"))
    await service.aclose()


@pytest.mark.asyncio
async def test_openai_compat_error_chunk_is_raised():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=_sse({"error": {"code": 429, "message": "Rate limit reached"}}))

    service = OpenAICompatTextService(_settings(openai_compat_model="m"), transport=httpx.MockTransport(handler))
    with pytest.raises(ServiceRateLimitError):
        await _drain(service.submit("p", "c"))
    await service.aclose()


@pytest.mark.asyncio
async def test_build_text_service_selects_the_provider():
    gemini = build_text_service(_settings(llm_provider="gemini"), FakeSecrets())
    compat = build_text_service(_settings(llm_provider="OpenAI_Compat"), FakeSecrets())
    assert isinstance(gemini, GeminiTextService)
    assert isinstance(compat, OpenAICompatTextService)
    await gemini.aclose()
    await compat.aclose()

    with pytest.raises(RuntimeError):
        build_text_service(_settings(llm_provider="llama_cpp"), FakeSecrets())


def test_provider_without_a_request_builder_cannot_be_created():
    class Incomplete(StreamingTextService):
        provider = "incomplete"

    with pytest.raises(TypeError):
        Incomplete(_settings(), base_url="http://localhost")
