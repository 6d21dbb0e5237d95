"""Append-only per-persona fan event log with incremental rollups."""

from __future__ import annotations

import asyncio
import logging
import re
from datetime import datetime, timedelta, timezone

from starchat.config import get_db_path
from starchat.db import get_connection, load_event_bucket, save_event_bucket
from starchat.models import (
    EMAILS_CAP,
    EVENTS_CAP,
    QUESTIONS_CAP,
    Event,
    EventBucket,
    FanMeta,
    utc_now_iso,
)

logger = logging.getLogger(__name__)

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

RANGE_DAYS = {"1m": 30, "3m": 90, "1y": 365}


def normalize_question(text: str) -> str:
    """Lossy key for the legacy top-questions view."""
    q = (text or "").lower()
    q = re.sub(r"https?://\S+", "", q)
    q = re.sub(r"[^a-z0-9\s]", " ", q)
    q = re.sub(r"\s+", " ", q).strip()
    return q[:90]


def parse_ts(ts: str) -> datetime | None:
    """Parse an ISO-8601 timestamp to an aware UTC datetime; None if unparseable."""
    if not isinstance(ts, str) or not ts:
        return None
    try:
        dt = datetime.fromisoformat(ts.replace("Z", "+00:00"))
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def range_start(range_: str | None, now: datetime | None = None) -> datetime:
    """Start of a dashboard range; anything but 1m/3m/1y means all time."""
    days = RANGE_DAYS.get(range_ or "")
    if days is None:
        return EPOCH
    now = now or datetime.now(timezone.utc)
    return now - timedelta(days=days)


def filter_events(events: list[Event], since: datetime) -> list[Event]:
    """Events at or after ``since``. Unparseable timestamps never match."""
    out = []
    for event in events:
        dt = parse_ts(event.ts)
        if dt is not None and dt >= since:
            out.append(event)
    return out


def _clean_fan(fan: FanMeta | None) -> FanMeta | None:
    if fan is None:
        return None
    cleaned = FanMeta(
        email=(fan.email or "").strip().lower() or None,
        gender=(fan.gender or "").strip() or None,
        country=(fan.country or "").strip() or None,
    )
    return None if cleaned.is_empty() else cleaned


def apply_event(bucket: EventBucket, event: Event) -> EventBucket:
    """Fold one event into a bucket, enforcing every cap."""
    bucket.last_message = {"ts": event.ts, "message": event.message}
    bucket.tokens_spent_total += event.tokens_spent

    key = normalize_question(event.message)
    if key:
        bucket.questions[key] = bucket.questions.get(key, 0) + 1

    fan = event.fan
    if fan is not None:
        if fan.gender:
            bucket.gender_counts[fan.gender] = bucket.gender_counts.get(fan.gender, 0) + 1
        if fan.country:
            bucket.country_counts[fan.country] = bucket.country_counts.get(fan.country, 0) + 1
        if fan.email and fan.email not in bucket.unique_emails:
            bucket.unique_emails.append(fan.email)
            if len(bucket.unique_emails) > EMAILS_CAP:
                bucket.unique_emails = bucket.unique_emails[-EMAILS_CAP:]

    bucket.events.append(event)
    if len(bucket.events) > EVENTS_CAP:
        bucket.events = bucket.events[-EVENTS_CAP:]

    # sorted() is stable, so ties keep first-seen order
    top = sorted(bucket.questions.items(), key=lambda kv: kv[1], reverse=True)
    bucket.questions = dict(top[:QUESTIONS_CAP])
    return bucket


def make_event(
    message: str,
    tokens_spent: int = 0,
    fan: FanMeta | None = None,
    ts: str | None = None,
) -> Event | None:
    """Build a normalized event, or None when the message is blank."""
    text = str(message or "").strip()
    if not text:
        return None
    return Event(
        ts=ts or utc_now_iso(),
        message=text,
        tokens_spent=max(0, int(tokens_spent or 0)),
        fan=_clean_fan(fan),
    )


def append_event(config: dict, persona_id: str, event: Event) -> None:
    """Load, fold and save one event. Blocking; callers on the loop use ``record_event``."""
    conn = get_connection(get_db_path(config))
    try:
        bucket = load_event_bucket(conn, persona_id)
        apply_event(bucket, event)
        save_event_bucket(conn, persona_id, bucket)
    finally:
        conn.close()


async def record_event(
    config: dict,
    persona_id: str,
    message: str,
    tokens_spent: int = 0,
    fan: FanMeta | None = None,
    ts: str | None = None,
) -> None:
    """Append a fan event off the event loop. Best-effort: failures are logged, never raised."""
    try:
        event = make_event(message, tokens_spent, fan, ts)
        if event is None:
            return
        await asyncio.to_thread(append_event, config, persona_id, event)
    except Exception:
        logger.exception("Failed to record fan event for persona '%s'", persona_id)


def get_top_questions(config: dict, persona_id: str, limit: int = 30) -> list[dict]:
    """Most frequent normalized questions, highest count first."""
    try:
        conn = get_connection(get_db_path(config))
        try:
            bucket = load_event_bucket(conn, persona_id)
        finally:
            conn.close()
    except Exception:
        logger.warning("Could not read top questions for '%s'", persona_id, exc_info=True)
        return []
    ranked = sorted(bucket.questions.items(), key=lambda kv: kv[1], reverse=True)
    return [{"question": q, "count": c} for q, c in ranked[:limit]]


def get_star_events(
    config: dict, persona_id: str, range_: str | None, now: datetime | None = None,
) -> list[Event]:
    """Events for a persona within a dashboard range, oldest first."""
    try:
        conn = get_connection(get_db_path(config))
        try:
            bucket = load_event_bucket(conn, persona_id)
        finally:
            conn.close()
    except Exception:
        logger.warning("Could not read events for '%s'", persona_id, exc_info=True)
        return []
    return filter_events(bucket.events, range_start(range_, now))
