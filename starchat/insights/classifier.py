"""Ask the configured LLM to bucket a batch of fan messages into topics."""

from __future__ import annotations

import json
import logging
import re
from typing import Literal

from pydantic import BaseModel, ValidationError

from starchat.errors import ClassificationError, ConfigurationError
from starchat.insights.prefilter import Candidate
from starchat.llm import get_provider_for_task
from starchat.llm.prompts import CLASSIFY_OUTPUT_SCHEMA, CLASSIFY_TASK, SYSTEM_INSIGHTS

logger = logging.getLogger(__name__)

CLASSIFY_TEMPERATURE = 0.2
CLASSIFY_MAX_TOKENS = 1200


class ClassificationItem(BaseModel):
    message_id: str
    decision: Literal["opportunity", "common_question", "ignore"]
    topic_key: str | None = None
    title: str | None = None
    score: float | None = None
    confidence: float


class ClassificationResponse(BaseModel):
    items: list[ClassificationItem]


def _normalize_quotes(text: str) -> str:
    """Replace smart/curly quotes with straight quotes for JSON parsing."""
    return (
        text
        .replace("“", '"')
        .replace("”", '"')
        .replace("‘", "'")
        .replace("’", "'")
    )


def _try_parse(text: str) -> dict | None:
    for candidate in (text, _normalize_quotes(text)):
        try:
            parsed = json.loads(candidate)
        except (json.JSONDecodeError, ValueError):
            continue
        if isinstance(parsed, dict):
            return parsed
    return None


def extract_json(text: str) -> dict | None:
    """Extract a JSON object from LLM output that may contain fences or extra text."""
    result = _try_parse(text)
    if result is not None:
        return result

    fenced = re.search(r"```(?:json)?\s*\n?(.*?)\n?```", text, re.DOTALL)
    if fenced:
        result = _try_parse(fenced.group(1))
        if result is not None:
            return result

    brace = re.search(r"\{.*\}", text, re.DOTALL)
    if brace:
        return _try_parse(brace.group(0))
    return None


def build_classify_prompt(messages: list[Candidate], existing_topic_keys: list[str]) -> str:
    return json.dumps({
        "existing_topic_keys": existing_topic_keys,
        "messages": [{"id": m.id, "text": m.text} for m in messages],
        "task": CLASSIFY_TASK,
        "output_schema": CLASSIFY_OUTPUT_SCHEMA,
    })


async def classify_messages(
    config: dict,
    messages: list[Candidate],
    existing_topic_keys: list[str],
) -> list[ClassificationItem]:
    """Classify a batch. Raises ClassificationError on any call/parse/schema failure.

    ConfigurationError propagates unchanged so callers can report it apart
    from classifier failures.
    """
    provider = get_provider_for_task(config, "classify")
    prompt = build_classify_prompt(messages, existing_topic_keys)

    try:
        response = await provider.complete(
            prompt,
            system=SYSTEM_INSIGHTS,
            temperature=CLASSIFY_TEMPERATURE,
            max_tokens=CLASSIFY_MAX_TOKENS,
        )
    except ConfigurationError:
        raise
    except Exception as exc:
        logger.warning("Classification call failed: %s", exc)
        raise ClassificationError("Classification call failed", detail=str(exc)) from exc

    data = extract_json(response.text)
    if data is None:
        logger.warning("Classifier returned non-JSON output (%d chars)", len(response.text))
        raise ClassificationError("Classifier returned non-JSON output")

    try:
        parsed = ClassificationResponse.model_validate(data)
    except ValidationError as exc:
        logger.warning("Classifier output failed schema validation: %s", exc)
        raise ClassificationError("Classifier output failed schema", detail=str(exc)) from exc

    logger.info(
        "Classified %d messages -> %d items (%d ignored)",
        len(messages), len(parsed.items),
        sum(1 for it in parsed.items if it.decision == "ignore"),
    )
    return parsed.items
