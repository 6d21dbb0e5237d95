"""OpenAI-compatible LLM provider (OpenAI, DeepSeek, Ollama, vLLM, etc.)."""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator

import httpx

from starchat.errors import UpstreamError
from starchat.llm import register_provider
from starchat.llm.base import BaseLLMProvider, LLMResponse
from starchat.models import ChatMessage
from starchat.retry import retry_async

logger = logging.getLogger(__name__)


def to_openai_message(message: ChatMessage) -> dict:
    """Map a chat turn to the chat/completions shape; user images become content parts."""
    if message.role == "user" and message.image_url:
        parts: list[dict] = []
        if message.content:
            parts.append({"type": "text", "text": message.content})
        parts.append({"type": "image_url", "image_url": {"url": message.image_url}})
        return {"role": "user", "content": parts}
    return {"role": message.role, "content": message.content}


@register_provider("openai_compatible")
class OpenAICompatibleProvider(BaseLLMProvider):
    """Provider for any OpenAI-compatible API."""

    @property
    def provider_name(self) -> str:
        return "openai_compatible"

    def _url(self) -> str:
        return f"{self.base_url.rstrip('/')}/chat/completions"

    def _headers(self) -> dict:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def complete(
        self,
        prompt: str,
        system: str = "",
        model: str | None = None,
        temperature: float = 0.2,
        max_tokens: int = 1200,
    ) -> LLMResponse:
        return await retry_async(
            self._do_complete, prompt, system, self._model(model),
            temperature, max_tokens,
            max_retries=self.max_retries,
        )

    async def _do_complete(
        self,
        prompt: str,
        system: str,
        model: str,
        temperature: float,
        max_tokens: int,
    ) -> LLMResponse:
        messages = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": prompt})

        payload = {
            "model": model,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        if self.json_mode:
            payload["response_format"] = {"type": "json_object"}

        async with httpx.AsyncClient(timeout=self.timeout) as client:
            resp = await client.post(self._url(), json=payload, headers=self._headers())
            resp.raise_for_status()
            data = resp.json()

        choice = data["choices"][0]
        usage = data.get("usage", {})
        return LLMResponse(
            text=choice["message"]["content"] or "",
            input_tokens=usage.get("prompt_tokens", 0),
            output_tokens=usage.get("completion_tokens", 0),
            model=model,
        )

    async def stream(
        self,
        messages: list[ChatMessage],
        system: str = "",
        model: str | None = None,
        temperature: float = 0.6,
        max_tokens: int = 500,
    ) -> AsyncIterator[str]:
        model = self._model(model)
        wire = [{"role": "system", "content": system}] if system else []
        wire.extend(to_openai_message(m) for m in messages)

        payload = {
            "model": model,
            "messages": wire,
            "temperature": temperature,
            "max_tokens": max_tokens,
            "stream": True,
        }

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                async with client.stream(
                    "POST", self._url(), json=payload, headers=self._headers(),
                ) as resp:
                    if resp.status_code >= 400:
                        body = (await resp.aread()).decode("utf-8", "replace")
                        raise UpstreamError(
                            "Completion API error",
                            status_code=resp.status_code,
                            detail=body[:500],
                        )
                    async for line in resp.aiter_lines():
                        delta = _parse_stream_line(line)
                        if delta:
                            yield delta
        except httpx.HTTPError as exc:
            raise UpstreamError("Completion API error", detail=str(exc)) from exc


def _parse_stream_line(line: str) -> str:
    """Extract the content delta from one ``data: {...}`` line."""
    if not line.startswith("data:"):
        return ""
    data = line[5:].strip()
    if not data or data == "[DONE]":
        return ""
    try:
        chunk = json.loads(data)
    except json.JSONDecodeError:
        logger.debug("Skipping malformed stream line: %s", data[:120])
        return ""
    choices = chunk.get("choices") or []
    if not choices:
        return ""
    return (choices[0].get("delta") or {}).get("content") or ""
