"""Tests for config loading and getters."""

from __future__ import annotations

import pytest

from starchat.config import (
    _resolve_env_vars,
    get_analytics_settings,
    get_chat_settings,
    get_db_path,
    get_default_persona,
    get_insights_settings,
    get_llm_task_config,
    get_notification_settings,
    is_production,
    load_config,
)


def test_load_config(sample_config):
    """Config loads and has expected sections."""
    assert "llm" in sample_config
    assert "database" in sample_config
    assert get_default_persona(sample_config) == "naval"


def test_load_config_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_config(str(tmp_path / "nope.yaml"))


def test_env_var_resolution(monkeypatch):
    """${VAR} patterns are resolved from environment."""
    monkeypatch.setenv("STARCHAT_TEST_KEY", "secret123")
    result = _resolve_env_vars({"key": "${STARCHAT_TEST_KEY}", "url": "http://${STARCHAT_TEST_KEY}/v1"})
    assert result["key"] == "secret123"
    assert result["url"] == "http://secret123/v1"


def test_env_var_missing(monkeypatch):
    """Missing env vars resolve to empty string."""
    monkeypatch.delenv("STARCHAT_NONEXISTENT", raising=False)
    assert _resolve_env_vars("${STARCHAT_NONEXISTENT}") == ""


def test_llm_task_config(sample_config):
    cfg = get_llm_task_config(sample_config, "classify")
    assert cfg["provider_name"] == "mock"
    assert cfg["provider_type"] == "openai_compatible"
    assert cfg["model"] == "test-model"
    assert cfg["allow_anonymous"] is False


def test_llm_task_model_override():
    config = {
        "llm": {
            "providers": {"p": {"type": "anthropic", "api_key": "k", "default_model": "base"}},
            "tasks": {"classify": {"provider": "p", "model": "small"}},
        },
    }
    cfg = get_llm_task_config(config, "classify")
    assert cfg["provider_type"] == "anthropic"
    assert cfg["model"] == "small"


def test_defaults_for_empty_config():
    assert get_db_path({}) == "data/starchat.db"
    assert get_default_persona({}) == "naval"
    assert get_insights_settings({})["max_new_to_process"] == 120
    assert get_analytics_settings({}) == {"usd_per_token": 0.05, "per_day_window": 60}
    chat = get_chat_settings({})
    assert chat["temperature"] == 0.6
    assert chat["max_tokens"] == 500
    assert chat["stall_timeout"] == 45.0
    assert is_production({}) is False


def test_is_production():
    assert is_production({"app": {"environment": "production"}}) is True


def test_notification_settings(monkeypatch):
    assert get_notification_settings({}) == {"webhook_url": "", "timeout": 5.0}
    # An unset env var resolves to "" and leaves the webhook off
    monkeypatch.delenv("FAN_WEBHOOK_URL", raising=False)
    config = _resolve_env_vars({"notifications": {"webhook_url": "${FAN_WEBHOOK_URL}"}})
    assert get_notification_settings(config)["webhook_url"] == ""

    config = {"notifications": {"webhook_url": " http://hooks.test/fan ", "timeout": 2}}
    assert get_notification_settings(config) == {"webhook_url": "http://hooks.test/fan", "timeout": 2.0}
