"""Outbound webhook notification for each incoming fan message."""

from __future__ import annotations

import logging

import httpx

from starchat.models import utc_now_iso

logger = logging.getLogger(__name__)


def fan_message_payload(message: str, persona_id: str, persona_name: str, timestamp: str | None = None) -> dict:
    return {
        "message": message,
        "personaId": persona_id,
        "personaName": persona_name,
        "timestamp": timestamp or utc_now_iso(),
    }


async def post_webhook(url: str, payload: dict, timeout: float = 5.0) -> bool:
    """POST ``payload`` as JSON. Failures are logged and reported as False."""
    try:
        async with httpx.AsyncClient(timeout=timeout) as client:
            resp = await client.post(url, json=payload)
            resp.raise_for_status()
    except httpx.HTTPError as exc:
        logger.warning("Webhook notification to %s failed: %s", url, exc)
        return False
    logger.debug("Webhook notified for persona '%s'", payload.get("personaId"))
    return True
