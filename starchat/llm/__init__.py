"""LLM provider registry and task routing."""

from __future__ import annotations

from typing import TYPE_CHECKING

from starchat.errors import ConfigurationError

if TYPE_CHECKING:
    from starchat.llm.base import BaseLLMProvider

PROVIDERS: dict[str, type[BaseLLMProvider]] = {}

_provider_instances: dict[str, BaseLLMProvider] = {}


def register_provider(name: str):
    """Decorator to register an LLM provider."""

    def decorator(cls):
        PROVIDERS[name] = cls
        return cls

    return decorator


def get_provider_for_task(config: dict, task: str) -> BaseLLMProvider:
    """Get the configured LLM provider instance for a task.

    Raises ConfigurationError when the provider has no API key and is not
    marked ``allow_anonymous`` (local servers such as Ollama).
    """
    from starchat.config import get_llm_task_config

    task_cfg = get_llm_task_config(config, task)
    provider_type = task_cfg["provider_type"]
    provider_name = task_cfg["provider_name"]

    if not task_cfg["api_key"] and not task_cfg["allow_anonymous"]:
        raise ConfigurationError(
            f"API key for LLM provider '{provider_name}' not configured",
            detail=f"Set llm.providers.{provider_name}.api_key (task '{task}')",
        )

    if provider_name not in _provider_instances:
        if provider_type not in PROVIDERS:
            raise ConfigurationError(f"Unknown LLM provider type: {provider_type}")
        cls = PROVIDERS[provider_type]
        _provider_instances[provider_name] = cls(
            api_key=task_cfg["api_key"],
            base_url=task_cfg["base_url"],
            default_model=task_cfg["model"],
            max_retries=task_cfg["max_retries"],
            timeout=task_cfg["timeout"],
            json_mode=task_cfg["json_mode"],
        )

    provider = _provider_instances[provider_name]
    provider.active_model = task_cfg["model"]
    return provider


def reset_providers() -> None:
    """Drop cached provider instances (config reloads, tests)."""
    _provider_instances.clear()


# Import implementations to trigger registration
from starchat.llm.anthropic_provider import AnthropicProvider  # noqa: E402, F401
from starchat.llm.openai_compat import OpenAICompatibleProvider  # noqa: E402, F401
