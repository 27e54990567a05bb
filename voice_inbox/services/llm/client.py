from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol

import httpx

from voice_inbox.core.config import settings

logger = logging.getLogger(__name__)


class LlmUnavailableError(RuntimeError):
    """Backend is down, loading, or unreachable. Safe to retry later."""


class LlmResponseError(RuntimeError):
    """Backend answered, but not with a usable completion."""


@dataclass
class ChatCompletionResult:
    content: str
    raw: Dict[str, Any] = field(default_factory=dict)


class LlmBackend(Protocol):
    def start(self) -> None: ...

    def stop(self) -> None: ...

    def health_check(self) -> bool: ...

    def chat_completion(
        self,
        messages: List[Dict[str, str]],
        *,
        temperature: float = 0.1,
        max_tokens: int = 4096,
        response_format: Optional[Dict[str, str]] = None,
        timeout_s: Optional[float] = None,
    ) -> ChatCompletionResult: ...


def timeout_for_prompt(prompt_chars: int) -> float:
    """Local models slow down roughly linearly with input size."""
    scaled = settings.llm_timeout_base_s + settings.llm_timeout_per_kchar_s * (prompt_chars / 1000.0)
    return min(settings.llm_timeout_max_s, scaled)


class LlamaServerClient:
    """
    Client for an OpenAI-compatible llama-server process.

    Uses /health for liveness and /v1/chat/completions for generation. The
    process itself is managed elsewhere; start/stop only own the HTTP pool.
    """

    def __init__(
        self,
        base_url: str,
        health_timeout_s: float = 5.0,
        timeout_s: float = 120.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.health_timeout_s = health_timeout_s
        self.timeout_s = timeout_s
        self._transport = transport
        self._client: httpx.Client | None = None

    def start(self) -> None:
        if self._client is None:
            self._client = httpx.Client(
                base_url=self.base_url,
                timeout=self.timeout_s,
                transport=self._transport,
            )

    def stop(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None

    @property
    def http(self) -> httpx.Client:
        self.start()
        assert self._client is not None
        return self._client

    def health_check(self) -> bool:
        try:
            r = self.http.get("/health", timeout=self.health_timeout_s)
        except httpx.HTTPError as e:
            logger.warning("LLM health check failed: %s", e)
            return False
        if r.status_code != 200:
            logger.warning("LLM health check returned %s", r.status_code)
            return False
        return True

    def chat_completion(
        self,
        messages: List[Dict[str, str]],
        *,
        temperature: float = 0.1,
        max_tokens: int = 4096,
        response_format: Optional[Dict[str, str]] = None,
        timeout_s: Optional[float] = None,
    ) -> ChatCompletionResult:
        payload: Dict[str, Any] = {
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        if response_format:
            payload["response_format"] = response_format

        try:
            r = self.http.post(
                "/v1/chat/completions",
                json=payload,
                timeout=timeout_s or self.timeout_s,
            )
        except httpx.TimeoutException as e:
            raise LlmUnavailableError(f"LLM request timed out: {e}") from e
        except httpx.TransportError as e:
            raise LlmUnavailableError(f"LLM transport error: {e}") from e

        if r.status_code >= 500:
            raise LlmUnavailableError(f"LLM API error: {r.status_code} {r.text[:200]}")
        if r.status_code >= 400:
            raise LlmResponseError(f"LLM API error: {r.status_code} {r.text[:200]}")

        try:
            data = r.json()
            content = data["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise LlmResponseError(f"Malformed completion payload: {r.text[:200]!r}") from e

        if content is not None and not isinstance(content, str):
            raise LlmResponseError(f"Unexpected completion content type: {type(content).__name__}")
        return ChatCompletionResult(content=(content or "").strip(), raw=data)


def build_llm_client() -> LlamaServerClient:
    return LlamaServerClient(
        base_url=settings.llm_base_url,
        health_timeout_s=settings.llm_health_timeout_s,
        timeout_s=settings.llm_timeout_base_s,
    )
