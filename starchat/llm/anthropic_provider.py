"""Anthropic Claude LLM provider."""

from __future__ import annotations

import logging
import re
from collections.abc import AsyncIterator

import anthropic

from starchat.errors import UpstreamError
from starchat.llm import register_provider
from starchat.llm.base import BaseLLMProvider, LLMResponse
from starchat.models import ChatMessage
from starchat.retry import retry_async

logger = logging.getLogger(__name__)

_DATA_URL = re.compile(r"^data:(?P<media_type>[\w/+.-]+);base64,(?P<data>.+)$", re.DOTALL)


def _image_block(url: str) -> dict:
    match = _DATA_URL.match(url)
    if match:
        return {
            "type": "image",
            "source": {
                "type": "base64",
                "media_type": match.group("media_type"),
                "data": match.group("data"),
            },
        }
    return {"type": "image", "source": {"type": "url", "url": url}}


def to_anthropic_messages(messages: list[ChatMessage]) -> list[dict]:
    """Map chat turns to the Messages API shape.

    The API requires the first turn to be the user's, so leading assistant
    greetings are dropped.
    """
    out: list[dict] = []
    for message in messages:
        if not out and message.role != "user":
            continue
        if message.role == "user" and message.image_url:
            content: list[dict] = [_image_block(message.image_url)]
            if message.content:
                content.append({"type": "text", "text": message.content})
            out.append({"role": "user", "content": content})
        else:
            out.append({"role": message.role, "content": message.content})
    return out


@register_provider("anthropic")
class AnthropicProvider(BaseLLMProvider):
    """Provider for Anthropic Claude models."""

    @property
    def provider_name(self) -> str:
        return "anthropic"

    def _client(self) -> anthropic.AsyncAnthropic:
        kwargs = {"api_key": self.api_key, "timeout": self.timeout}
        if self.base_url:
            kwargs["base_url"] = self.base_url
        return anthropic.AsyncAnthropic(**kwargs)

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
        kwargs = {
            "model": model,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "messages": [{"role": "user", "content": prompt}],
        }
        if system:
            kwargs["system"] = system

        response = await self._client().messages.create(**kwargs)

        text = response.content[0].text if response.content else ""
        return LLMResponse(
            text=text,
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
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
        kwargs = {
            "model": self._model(model),
            "max_tokens": max_tokens,
            "temperature": temperature,
            "messages": to_anthropic_messages(messages),
        }
        if system:
            kwargs["system"] = system

        try:
            async with self._client().messages.stream(**kwargs) as stream:
                async for text in stream.text_stream:
                    if text:
                        yield text
        except anthropic.APIStatusError as exc:
            raise UpstreamError(
                "Completion API error", status_code=exc.status_code, detail=str(exc),
            ) from exc
        except anthropic.APIError as exc:
            raise UpstreamError("Completion API error", detail=str(exc)) from exc
