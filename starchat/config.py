"""Load and validate configuration from YAML with env var substitution."""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any

import yaml

_ENV_PATTERN = re.compile(r"\$\{([^}]+)\}")


def _load_dotenv(path: str | Path = ".env") -> None:
    """Load a .env file into os.environ (without overwriting existing vars)."""
    env_path = Path(path)
    if not env_path.is_file():
        return
    with open(env_path) as f:
        for line in f:
            line = line.strip()
            if not line or line.startswith("#") or "=" not in line:
                continue
            key, _, value = line.partition("=")
            key = key.strip()
            value = value.strip().strip("'\"")
            if key and key not in os.environ:
                os.environ[key] = value


def _resolve_env_vars(value: Any) -> Any:
    """Recursively resolve ${ENV_VAR} patterns in config values."""
    if isinstance(value, str):
        match = _ENV_PATTERN.search(value)
        if not match:
            return value
        # A value that is exactly one ${VAR} resolves to that var verbatim
        if match.group(0) == value:
            return os.environ.get(match.group(1), "")
        return _ENV_PATTERN.sub(lambda m: os.environ.get(m.group(1), ""), value)
    if isinstance(value, dict):
        return {k: _resolve_env_vars(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_resolve_env_vars(item) for item in value]
    return value


def load_config(path: str | Path = "config.yaml") -> dict[str, Any]:
    """Load config from YAML file and resolve environment variables."""
    _load_dotenv()

    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(path) as f:
        raw = yaml.safe_load(f) or {}

    return _resolve_env_vars(raw)


def get_llm_task_config(config: dict, task: str) -> dict:
    """Get provider settings and model for an LLM task (``chat`` or ``classify``)."""
    tasks = config.get("llm", {}).get("tasks", {})
    task_cfg = tasks.get(task, {})
    provider_name = task_cfg.get("provider", "openai")
    model_override = task_cfg.get("model")

    providers = config.get("llm", {}).get("providers", {})
    provider_cfg = providers.get(provider_name, {})

    return {
        "provider_name": provider_name,
        "provider_type": provider_cfg.get("type", "openai_compatible"),
        "api_key": provider_cfg.get("api_key", ""),
        "base_url": provider_cfg.get("base_url", ""),
        "model": model_override or provider_cfg.get("default_model", ""),
        "max_retries": provider_cfg.get("max_retries", 3),
        "timeout": provider_cfg.get("timeout", 120),
        "json_mode": bool(provider_cfg.get("json_mode", False)),
        "allow_anonymous": bool(provider_cfg.get("allow_anonymous", False)),
    }


def get_db_path(config: dict) -> str:
    """Get database path from config."""
    return config.get("database", {}).get("path", "data/starchat.db")


def get_personas_path(config: dict) -> str:
    """Path to the read-only persona registry."""
    return config.get("personas", {}).get("path", "data/personas.yaml")


def get_default_persona(config: dict) -> str:
    return config.get("chat", {}).get("default_persona", "naval")


def get_insights_settings(config: dict) -> dict:
    cfg = config.get("insights", {})
    return {
        "max_new_to_process": int(cfg.get("max_new_to_process", 120)),
        "max_existing_keys": int(cfg.get("max_existing_keys", 500)),
    }


def get_analytics_settings(config: dict) -> dict:
    cfg = config.get("analytics", {})
    return {
        "usd_per_token": float(cfg.get("usd_per_token", 0.05)),
        "per_day_window": int(cfg.get("per_day_window", 60)),
    }


def get_chat_settings(config: dict) -> dict:
    cfg = config.get("chat", {})
    return {
        "stall_timeout": float(cfg.get("stall_timeout", 45.0)),
        "temperature": float(cfg.get("temperature", 0.6)),
        "max_tokens": int(cfg.get("max_tokens", 500)),
    }


def is_production(config: dict) -> bool:
    """Production mode suppresses upstream error details in responses."""
    return config.get("app", {}).get("environment", "development") == "production"


def get_notification_settings(config: dict) -> dict:
    """Optional webhook posted for every fan message; empty url disables it."""
    cfg = config.get("notifications") or {}
    return {
        "webhook_url": (cfg.get("webhook_url") or "").strip(),
        "timeout": float(cfg.get("timeout", 5.0)),
    }
