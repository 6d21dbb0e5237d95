"""Per-persona creator policy: forbidden topics and promo hooks."""

from __future__ import annotations

import logging

from starchat.config import get_db_path
from starchat.db import get_connection, load_star_control, save_star_control
from starchat.errors import PersistenceError
from starchat.models import StarControl

logger = logging.getLogger(__name__)


def get_star_control(config: dict, persona_id: str) -> StarControl:
    """Current policy; empty lists when none is stored or the read fails."""
    try:
        conn = get_connection(get_db_path(config))
        try:
            return load_star_control(conn, persona_id)
        finally:
            conn.close()
    except Exception:
        logger.warning("Could not read star control for '%s'", persona_id, exc_info=True)
        return StarControl()


def set_star_control(
    config: dict,
    persona_id: str,
    forbidden_topics: list[str] | None = None,
    promo_hooks: list[str] | None = None,
) -> StarControl:
    """Overwrite the fields that are given; keep the others as stored."""
    try:
        conn = get_connection(get_db_path(config))
        try:
            current = load_star_control(conn, persona_id)
            updated = StarControl(
                forbidden_topics=(
                    [str(t) for t in forbidden_topics]
                    if forbidden_topics is not None else current.forbidden_topics
                ),
                promo_hooks=(
                    [str(h) for h in promo_hooks]
                    if promo_hooks is not None else current.promo_hooks
                ),
            )
            save_star_control(conn, persona_id, updated)
        finally:
            conn.close()
    except Exception as exc:
        raise PersistenceError("Failed to save star control", detail=str(exc)) from exc

    logger.info(
        "Star control for '%s' updated: %d forbidden topics, %d promo hooks",
        persona_id, len(updated.forbidden_topics), len(updated.promo_hooks),
    )
    return updated
