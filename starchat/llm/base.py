"""Abstract base class for LLM providers."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from dataclasses import dataclass

from starchat.models import ChatMessage

logger = logging.getLogger(__name__)


@dataclass
class LLMResponse:
    """Response from a one-shot LLM call."""

    text: str
    input_tokens: int = 0
    output_tokens: int = 0
    model: str = ""


class BaseLLMProvider(ABC):
    """Base class for LLM providers.

    ``complete`` serves the classifier (single prompt, JSON answer, retried).
    ``stream`` serves fan replies (multi-turn, optional image, never retried).
    """

    def __init__(
        self,
        api_key: str,
        base_url: str,
        default_model: str,
        max_retries: int = 3,
        timeout: int = 120,
        json_mode: bool = False,
    ):
        self.api_key = api_key
        self.base_url = base_url
        self.default_model = default_model
        self.active_model = default_model
        self.max_retries = max_retries
        self.timeout = timeout
        self.json_mode = json_mode

    @abstractmethod
    async def complete(
        self,
        prompt: str,
        system: str = "",
        model: str | None = None,
        temperature: float = 0.2,
        max_tokens: int = 1200,
    ) -> LLMResponse:
        """Send a completion request and return the response."""
        ...

    @abstractmethod
    def stream(
        self,
        messages: list[ChatMessage],
        system: str = "",
        model: str | None = None,
        temperature: float = 0.6,
        max_tokens: int = 500,
    ) -> AsyncIterator[str]:
        """Yield text deltas for a conversation. Raises UpstreamError on failure."""
        ...

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Human-readable provider name."""
        ...

    def _model(self, model: str | None) -> str:
        return model or self.active_model or self.default_model
