"""Shared test fixtures."""

from __future__ import annotations

import pytest

from starchat.config import load_config
from starchat.db import get_connection, init_db
from starchat.llm import reset_providers
from starchat.models import Event, FanMeta
from starchat.personas import Persona, PersonaRegistry

PERSONAS_YAML = """
personas:
  naval:
    name: Naval-style AI
    bio: Calm, aphoristic investor.
    style_rules: [Short sentences.]
    principles: [Play long-term games.]
    do_not: [Give financial advice.]
    examples:
      - topic: wealth
        response: Own equity.
  maya:
    name: Maya Chen
    bio: Travel photographer.
"""


@pytest.fixture
def sample_config(tmp_path):
    """Minimal config for testing (no real API keys)."""
    config_text = """
app:
  environment: development

llm:
  providers:
    mock:
      type: "openai_compatible"
      api_key: "test-key"
      base_url: "http://localhost:9999"
      default_model: "test-model"
  tasks:
    chat: { provider: "mock" }
    classify: { provider: "mock" }

chat:
  default_persona: naval

database:
  path: "DB_PATH_PLACEHOLDER"

personas:
  path: "PERSONAS_PATH_PLACEHOLDER"
"""
    db_path = str(tmp_path / "test.db")
    personas_path = str(tmp_path / "personas.yaml")
    (tmp_path / "personas.yaml").write_text(PERSONAS_YAML)
    cfg_path = tmp_path / "config.yaml"
    cfg_path.write_text(
        config_text
        .replace("DB_PATH_PLACEHOLDER", db_path)
        .replace("PERSONAS_PATH_PLACEHOLDER", personas_path)
    )
    init_db(db_path)
    return load_config(str(cfg_path))


@pytest.fixture
def db_conn(sample_config):
    """Initialized test database connection."""
    conn = get_connection(sample_config["database"]["path"])
    yield conn
    conn.close()


@pytest.fixture
def personas():
    return PersonaRegistry({
        "naval": Persona(id="naval", name="Naval-style AI", bio="Calm investor."),
        "maya": Persona(id="maya", name="Maya Chen", bio="Travel photographer."),
    })


@pytest.fixture(autouse=True)
def _fresh_providers():
    """Provider instances are cached per name; isolate each test."""
    reset_providers()
    yield
    reset_providers()


@pytest.fixture
def sample_events():
    """Fan events spread over a few days, oldest first."""
    return [
        Event(ts="2026-10-01T10:00:00Z", message="hi", tokens_spent=1),
        Event(
            ts="2026-10-01T11:00:00Z",
            message="Do you sell hoodies with your logo on them?",
            tokens_spent=3,
            fan=FanMeta(email="a@example.com", gender="female", country="US"),
        ),
        Event(
            ts="2026-10-02T09:30:00Z",
            message="When is the new book coming out this year?",
            tokens_spent=2,
            fan=FanMeta(email="B@example.com", gender="male", country="DE"),
        ),
        Event(
            ts="2026-10-02T18:45:00Z",
            message="Can you tell me how to grow my audience on weekends",
            tokens_spent=4,
            fan=FanMeta(email="a@example.com", country="US"),
        ),
    ]
