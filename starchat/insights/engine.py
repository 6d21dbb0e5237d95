"""Incremental insight refresh and the snapshot/drill-down queries.

A refresh walks IDLE -> PREFILTERING -> CLASSIFYING -> MERGING -> PERSISTED.
Nothing about an in-flight run is stored: if it dies before the final write,
the cards are as they were and the batch stays eligible for the next refresh.

Known limitation: refreshes for the same persona are not serialized. Two
concurrent runs read the same record and the later write wins.
"""

from __future__ import annotations

import asyncio
import logging

from starchat.config import get_db_path, get_insights_settings
from starchat.db import get_connection, load_star_insights, save_star_insights
from starchat.errors import (
    ClassificationError,
    ConfigurationError,
    InvalidClassifierOutput,
)
from starchat.insights.classifier import classify_messages
from starchat.insights.merge import merge_batch
from starchat.insights.prefilter import prefilter_messages
from starchat.models import (
    COMMON_QUESTION,
    OPPORTUNITY,
    SOURCES_CAP,
    Event,
    InsightCard,
    RefreshResult,
    RefreshStage,
    StarInsights,
    card_key,
)

logger = logging.getLogger(__name__)

CONFIG_MISSING = "CONFIG_MISSING"
LLM_CLASSIFICATION_FAILED = "LLM_CLASSIFICATION_FAILED"
INVALID_LLM_OUTPUT = "INVALID_LLM_OUTPUT"
PERSIST_FAILED = "PERSIST_FAILED"
READ_FAILED = "READ_FAILED"


def _load(config: dict, persona_id: str) -> StarInsights:
    conn = get_connection(get_db_path(config))
    try:
        return load_star_insights(conn, persona_id)
    finally:
        conn.close()


def _save(config: dict, persona_id: str, insights: StarInsights) -> None:
    conn = get_connection(get_db_path(config))
    try:
        save_star_insights(conn, persona_id, insights)
    finally:
        conn.close()


def _load_or_empty(config: dict, persona_id: str) -> StarInsights:
    """Stored insights, or an empty record when the read fails."""
    try:
        return _load(config, persona_id)
    except Exception:
        logger.warning("Could not read insights for '%s'", persona_id, exc_info=True)
        return StarInsights()


def _sorted_bucket(cards: list[InsightCard], bucket: str) -> list[InsightCard]:
    selected = [c for c in cards if c.bucket == bucket]
    # Two stable passes: score desc, then last_seen desc within equal scores
    selected.sort(key=lambda c: c.last_seen, reverse=True)
    selected.sort(key=lambda c: c.score, reverse=True)
    return selected


def _card_dict(card: InsightCard) -> dict:
    return {
        "title": card.title,
        "topic_key": card.topic_key,
        "bucket": card.bucket,
        "count": card.count,
        "last_seen": card.last_seen,
        "score": card.score,
    }


def build_snapshot(persona_id: str, insights: StarInsights) -> dict:
    cards = list(insights.cards.values())
    return {
        "star_id": persona_id,
        "cards": {
            "opportunities": [_card_dict(c) for c in _sorted_bucket(cards, OPPORTUNITY)],
            "common_questions": [_card_dict(c) for c in _sorted_bucket(cards, COMMON_QUESTION)],
        },
        "processed_count": len(insights.processed_ids),
    }


def get_insights_snapshot(config: dict, persona_id: str) -> dict:
    """All cards for a persona, split by bucket and ranked."""
    return build_snapshot(persona_id, _load_or_empty(config, persona_id))


def get_insight_sources(config: dict, persona_id: str, bucket: str, topic_key: str) -> dict:
    """Most recent source messages behind one card."""
    insights = _load_or_empty(config, persona_id)
    sources = insights.sources.get(card_key(bucket, topic_key), [])
    return {
        "star_id": persona_id,
        "bucket": bucket,
        "topic_key": topic_key,
        "sources": [
            {"id": m.id, "text": m.text, "ts": m.ts, "conversation_href": m.conversation_href}
            for m in sources[:SOURCES_CAP]
        ],
    }


async def refresh_insights(
    config: dict,
    persona_id: str,
    events: list[Event],
    max_new_to_process: int | None = None,
) -> RefreshResult:
    """Classify not-yet-seen messages and merge them into the persona's cards."""
    settings = get_insights_settings(config)
    limit = max_new_to_process or settings["max_new_to_process"]

    stage = RefreshStage.PREFILTERING
    try:
        star = await asyncio.to_thread(_load, config, persona_id)
    except Exception:
        logger.exception("Insights for '%s': failed to read stored state", persona_id)
        return RefreshResult(updated=False, error=READ_FAILED, stage=stage)
    candidates = prefilter_messages(events, set(star.processed_ids))
    pending = len(candidates)
    if not pending:
        logger.info("Insights for '%s': nothing new to process", persona_id)
        return RefreshResult(
            updated=False, pending=0, stage=stage,
            snapshot=build_snapshot(persona_id, star),
        )

    batch = candidates[-limit:]
    existing_keys = list(dict.fromkeys(c.topic_key for c in star.cards.values()))
    existing_keys = existing_keys[: settings["max_existing_keys"]]

    stage = RefreshStage.CLASSIFYING
    logger.info(
        "Insights for '%s': classifying %d of %d candidates (%d known topics)",
        persona_id, len(batch), pending, len(existing_keys),
    )
    try:
        items = await classify_messages(config, batch, existing_keys)
    except ConfigurationError as exc:
        logger.error("Insights refresh for '%s' not configured: %s", persona_id, exc)
        return RefreshResult(updated=False, error=CONFIG_MISSING, stage=stage)
    except ClassificationError:
        return RefreshResult(updated=False, error=LLM_CLASSIFICATION_FAILED, stage=stage)

    stage = RefreshStage.MERGING
    try:
        next_star = merge_batch(star, items, batch)
    except InvalidClassifierOutput as exc:
        logger.warning(
            "Insights for '%s': rejected batch of %d (%s: %s)",
            persona_id, len(batch), exc.message, exc.detail,
        )
        return RefreshResult(updated=False, error=INVALID_LLM_OUTPUT, stage=stage)

    try:
        await asyncio.to_thread(_save, config, persona_id, next_star)
    except Exception:
        logger.exception("Insights for '%s': failed to persist merged state", persona_id)
        return RefreshResult(updated=False, error=PERSIST_FAILED, stage=stage)

    stage = RefreshStage.PERSISTED
    logger.info(
        "Insights for '%s': merged %d messages into %d cards",
        persona_id, len(batch), len(next_star.cards),
    )
    return RefreshResult(
        updated=True,
        pending=max(0, pending - len(batch)),
        processed=len(batch),
        stage=stage,
        snapshot=build_snapshot(persona_id, next_star),
    )
