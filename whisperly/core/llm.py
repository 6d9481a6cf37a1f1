"""Streaming text services backed by hosted language models."""

from __future__ import annotations

import json
from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Optional

import httpx

from .config import Settings
from .errors import (
    ServiceAuthError,
    ServiceNetworkError,
    ServiceRateLimitError,
    ServiceResponseError,
    TextServiceError,
)
from .logger import get_logger
from .ports import SecretsProvider
from .prompts import build_full_prompt


logger = get_logger("whisperly.llm")

CONNECTION_TEST_PROMPT = "Say 'API connection successful'"


def _extract_token(payload: Any) -> str:
    """Pull the text of one streamed chunk (Gemini or OpenAI-style)."""
    if isinstance(payload, str):
        return payload
    if not isinstance(payload, dict):
        return ""
    candidates = payload.get("candidates")
    if candidates:
        content = (candidates[0] or {}).get("content") or {}
        parts = content.get("parts") or []
        return "".join(str(part.get("text", "")) for part in parts if isinstance(part, dict))
    choices = payload.get("choices") or []
    if not choices:
        return ""
    choice = choices[0]
    text = choice.get("text")
    if text:
        return str(text)
    delta = choice.get("delta") or {}
    content = delta.get("content")
    if content:
        return str(content)
    message = choice.get("message") or {}
    content = message.get("content")
    if content:
        return str(content)
    return ""


def _parse_sse_line(line: str) -> Optional[Any]:
    line = line.strip()
    if not line.startswith("data:"):
        return None
    data = line[len("data:"):].strip()
    if not data or data == "[DONE]":
        return None
    try:
        return json.loads(data)
    except ValueError as exc:
        raise ServiceResponseError("The AI service sent a malformed chunk.") from exc


def status_error(status_code: int, body: str) -> TextServiceError:
    """Classify an HTTP error answer from the model endpoint."""
    lowered = body.lower()
    if status_code in (401, 403) or (status_code == 400 and "api key" in lowered):
        return ServiceAuthError()
    if status_code == 429 or "quota" in lowered:
        return ServiceRateLimitError()
    if status_code in (500, 502, 503, 504):
        return ServiceNetworkError(f"AI service unavailable (HTTP {status_code}). Please try again.")
    snippet = body[:200].strip()
    return TextServiceError(f"AI service error (HTTP {status_code}): {snippet}")


class StreamingTextService(ABC):
    """Shared SSE plumbing; subclasses build the request."""

    provider = "base"

    def __init__(
        self,
        settings: Settings,
        *,
        base_url: str,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.settings = settings
        timeout = httpx.Timeout(
            connect=settings.llm_connect_timeout_sec,
            read=settings.llm_read_timeout_sec,
            write=30.0,
            pool=None,
        )
        self._client = httpx.AsyncClient(base_url=base_url.rstrip("/"), timeout=timeout, transport=transport)

    @abstractmethod
    def _build_request(self, prompt: str, context: str) -> tuple[str, dict[str, Any], dict[str, str], dict[str, str]]:
        """Return (url, json payload, headers, query params)."""

    async def submit(self, prompt: str, context: str) -> AsyncIterator[str]:
        url, payload, headers, params = self._build_request(prompt, context)
        chunks = 0
        try:
            async with self._client.stream("POST", url, json=payload, headers=headers, params=params) as response:
                if response.status_code >= 400:
                    body = (await response.aread()).decode("utf-8", errors="replace")
                    logger.warning(
                        "%s answered HTTP %s", self.provider, response.status_code, extra={"provider": self.provider}
                    )
                    raise status_error(response.status_code, body)
                async for line in response.aiter_lines():
                    chunk = _parse_sse_line(line)
                    if chunk is None:
                        continue
                    self._check_chunk(chunk)
                    token = _extract_token(chunk)
                    if token:
                        chunks += 1
                        yield token
        except httpx.TimeoutException as exc:
            raise ServiceNetworkError("Timed out waiting for the AI service.") from exc
        except httpx.TransportError as exc:
            raise ServiceNetworkError() from exc
        finally:
            logger.info("%s stream closed after %d chunks", self.provider, chunks, extra={"provider": self.provider})

    def _check_chunk(self, chunk: Any) -> None:
        if not isinstance(chunk, dict):
            return
        error = chunk.get("error")
        if isinstance(error, dict):
            code = int(error.get("code") or 0)
            raise status_error(code, str(error.get("message") or ""))

    async def test_connection(self) -> bool:
        """Send a tiny prompt and check the answer comes back."""
        parts: list[str] = []
        async for token in self.submit(CONNECTION_TEST_PROMPT, ""):
            parts.append(token)
        return "successful" in "".join(parts).lower()

    async def aclose(self) -> None:
        await self._client.aclose()


class GeminiTextService(StreamingTextService):
    """Gemini ``streamGenerateContent`` over server-sent events."""

    provider = "gemini"

    def __init__(
        self,
        settings: Settings,
        secrets: SecretsProvider,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        super().__init__(settings, base_url=settings.gemini_base_url, transport=transport)
        self.secrets = secrets
        self.model = settings.gemini_model

    def _build_request(self, prompt: str, context: str) -> tuple[str, dict[str, Any], dict[str, str], dict[str, str]]:
        api_key = self.secrets.get_api_key()
        if not api_key:
            raise ServiceAuthError("Please configure your Gemini API key in settings")
        payload = {
            "contents": [{"role": "user", "parts": [{"text": build_full_prompt(prompt, context)}]}],
            "generationConfig": {"temperature": self.settings.llm_temperature},
        }
        url = f"/v1beta/models/{self.model}:streamGenerateContent"
        return url, payload, {"x-goog-api-key": api_key}, {"alt": "sse"}

    def _check_chunk(self, chunk: Any) -> None:
        super()._check_chunk(chunk)
        if isinstance(chunk, dict):
            feedback = chunk.get("promptFeedback") or {}
            reason = feedback.get("blockReason")
            if reason:
                raise ServiceResponseError(f"The AI service blocked this request ({reason}).")


class OpenAICompatTextService(StreamingTextService):
    """Any endpoint speaking the OpenAI chat completions protocol."""

    provider = "openai_compat"

    def __init__(
        self,
        settings: Settings,
        secrets: SecretsProvider | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        super().__init__(settings, base_url=settings.openai_compat_base_url, transport=transport)
        self.secrets = secrets
        endpoint = settings.openai_compat_chat_endpoint or "/v1/chat/completions"
        self.chat_endpoint = endpoint if endpoint.startswith("/") else f"/{endpoint}"
        self.model = settings.openai_compat_model

    def _build_request(self, prompt: str, context: str) -> tuple[str, dict[str, Any], dict[str, str], dict[str, str]]:
        if not self.model:
            raise TextServiceError("openai_compat_model is not configured.")
        headers: dict[str, str] = {}
        api_key = self.settings.openai_compat_api_key
        if not api_key and self.secrets is not None:
            api_key = self.secrets.get_api_key()
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        payload = {
            "model": self.model,
            "messages": [{"role": "user", "content": build_full_prompt(prompt, context)}],
            "temperature": self.settings.llm_temperature,
            "stream": True,
        }
        return self.chat_endpoint, payload, headers, {}


def build_text_service(settings: Settings, secrets: SecretsProvider) -> StreamingTextService:
    provider = (settings.llm_provider or "gemini").lower()
    if provider == "gemini":
        return GeminiTextService(settings, secrets)
    if provider == "openai_compat":
        return OpenAICompatTextService(settings, secrets)
    raise RuntimeError(f"Unknown LLM provider: {provider}")
