"""OpenAI-compatible chat completion client used for vision transcription."""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Protocol, Sequence

import httpx

from summarybench.core.errors import ConfigurationError, NonJsonResponseError, TransportError
from summarybench.core.retry import DEFAULT_POLICY, RetryPolicy, call_with_retry
from summarybench.domain.jobs import UsageStats


LOGGER = logging.getLogger(__name__)

DEFAULT_API_BASE = "https://api.case.dev"
COMPLETIONS_PATH = "/llm/v1/chat/completions"


@dataclass(slots=True)
class ChatCompletion:
    text: str
    usage: UsageStats | None = None
    model: str | None = None


class ChatCompletionClient(Protocol):
    """Contract for chat completion backends."""

    def complete(
        self,
        model: str,
        messages: Sequence[dict[str, Any]],
        *,
        max_tokens: int | None = None,
        temperature: float | None = None,
        timeout: float | None = None,
    ) -> ChatCompletion:
        """Return generated text and token usage for ``messages``."""


def _message_text(message: dict[str, Any]) -> str:
    content = message.get("content")
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = [part.get("text", "") for part in content if isinstance(part, dict) and part.get("type") == "text"]
        return "".join(parts)
    return ""


class HttpChatCompletionClient:
    def __init__(
        self,
        api_key: str,
        *,
        api_base: str = DEFAULT_API_BASE,
        timeout: float = 60.0,
        retry_policy: RetryPolicy = DEFAULT_POLICY,
        sleep: Callable[[float], None] = time.sleep,
        http_client: httpx.Client | None = None,
    ) -> None:
        if not api_key:
            raise ConfigurationError("Chat completion API key is not configured")
        self._api_key = api_key
        self._url = f"{api_base.rstrip('/')}{COMPLETIONS_PATH}"
        self._timeout = timeout
        self._retry_policy = retry_policy
        self._sleep = sleep
        self._client = http_client or httpx.Client(timeout=timeout)
        self._owns_client = http_client is None

    def _send(self, payload: dict[str, Any], timeout: float) -> dict[str, Any]:
        started = time.monotonic()
        try:
            response = self._client.post(
                self._url,
                json=payload,
                headers={"Authorization": f"Bearer {self._api_key}"},
                timeout=timeout,
            )
        except httpx.HTTPError as exc:
            raise TransportError(f"Chat completion request failed: {exc}") from exc

        LOGGER.info(
            "POST %s model=%s -> %s (%.0fms)",
            COMPLETIONS_PATH,
            payload.get("model"),
            response.status_code,
            (time.monotonic() - started) * 1000,
        )
        if response.status_code >= 400:
            body = response.text[:200]
            raise TransportError(
                f"Chat completion returned {response.status_code}: {body}",
                status_code=response.status_code,
                body=body,
            )
        try:
            data = response.json()
        except ValueError as exc:
            raise NonJsonResponseError(
                "Chat completion returned a non-JSON body",
                status_code=response.status_code,
                content_type=response.headers.get("content-type", ""),
                preview=response.text[:200],
            ) from exc
        if not isinstance(data, dict):
            raise TransportError("Chat completion returned an unexpected payload", status_code=response.status_code)
        return data

    def complete(
        self,
        model: str,
        messages: Sequence[dict[str, Any]],
        *,
        max_tokens: int | None = None,
        temperature: float | None = None,
        timeout: float | None = None,
    ) -> ChatCompletion:
        payload: dict[str, Any] = {"model": model, "messages": list(messages)}
        if max_tokens is not None:
            payload["max_tokens"] = max_tokens
        if temperature is not None:
            payload["temperature"] = temperature

        data = call_with_retry(
            lambda: self._send(payload, timeout or self._timeout),
            policy=self._retry_policy,
            sleep=self._sleep,
            describe=f"chat completion ({model})",
        )

        choices = data.get("choices") or []
        message = choices[0].get("message", {}) if choices and isinstance(choices[0], dict) else {}
        text = _message_text(message).strip()

        usage = None
        raw_usage = data.get("usage")
        if isinstance(raw_usage, dict):
            prompt = int(raw_usage.get("prompt_tokens") or 0)
            completion = int(raw_usage.get("completion_tokens") or 0)
            usage = UsageStats(
                input_tokens=prompt,
                output_tokens=completion,
                total_tokens=int(raw_usage.get("total_tokens") or prompt + completion),
                estimated=False,
            )
        return ChatCompletion(text=text, usage=usage, model=data.get("model") or model)

    def close(self) -> None:  # pragma: no cover - best effort cleanup
        if self._owns_client:
            self._client.close()


__all__ = ["ChatCompletion", "ChatCompletionClient", "HttpChatCompletionClient"]
