"""Read-side dashboard projection over a persona's event bucket."""

from __future__ import annotations

import logging
from datetime import datetime

from starchat.analytics.events import filter_events, parse_ts, range_start
from starchat.config import get_analytics_settings, get_db_path
from starchat.db import get_connection, load_event_bucket
from starchat.models import EventBucket

logger = logging.getLogger(__name__)

# Substring -> dashboard label; several keys may share a label
BUSINESS_KEYWORDS = [
    ("hoodie", "Hoodies / merch"),
    ("merch", "Merchandise"),
    ("book", "Books / releases"),
    ("hoodies", "Hoodies / merch"),
    ("tshirt", "T-shirts / merch"),
    ("course", "Courses / education"),
]

TOP_QUESTIONS_LIMIT = 15
TOP_GENDERS_LIMIT = 6
TOP_COUNTRIES_LIMIT = 8
SIGNALS_LIMIT = 6


def empty_analytics(range_: str | None) -> dict:
    """Zeroed result served when the event store can't be read."""
    return {
        "range": range_ or "all",
        "dashboard": {
            "messages_total": 0,
            "last_message": None,
            "peak": {"day": "", "count": 0},
            "per_day": [],
        },
        "insights": {
            "top_questions": [],
            "fans_count_estimate": None,
            "genders": [],
            "countries": [],
            "business_opportunities": [],
        },
        "revenue": {"tokens_spent": 0, "usd_earned_estimate": 0.0},
    }


def _ranked_questions(bucket: EventBucket, limit: int) -> list[dict]:
    ranked = sorted(bucket.questions.items(), key=lambda kv: kv[1], reverse=True)
    return [{"question": q, "count": c} for q, c in ranked[:limit]]


def business_signals(top_questions: list[dict]) -> list[dict]:
    """Score keyword labels by the counts of the questions mentioning them."""
    scores: dict[str, int] = {}
    for item in top_questions:
        q = item["question"].lower()
        for key, label in BUSINESS_KEYWORDS:
            if key in q:
                scores[label] = scores.get(label, 0) + item["count"]
    ranked = sorted(scores.items(), key=lambda kv: kv[1], reverse=True)
    return [{"label": label, "count": count} for label, count in ranked[:SIGNALS_LIMIT]]


def _top(counts: dict[str, int], field: str, limit: int) -> list[dict]:
    ranked = sorted(counts.items(), key=lambda kv: kv[1], reverse=True)
    return [{field: k, "count": v} for k, v in ranked[:limit]]


def summarize_bucket(
    config: dict, bucket: EventBucket, range_: str | None, now: datetime | None = None,
) -> dict:
    """Compute the dashboard/insights/revenue summary for one bucket."""
    settings = get_analytics_settings(config)
    filtered = filter_events(bucket.events, range_start(range_, now))

    last = bucket.last_message
    if last is None and filtered:
        last = {"ts": filtered[-1].ts, "message": filtered[-1].message}

    per_day: dict[str, int] = {}
    genders: dict[str, int] = {}
    countries: dict[str, int] = {}
    emails: set[str] = set()
    tokens_spent = 0

    for event in filtered:
        day = parse_ts(event.ts).date().isoformat()
        per_day[day] = per_day.get(day, 0) + 1
        tokens_spent += event.tokens_spent
        fan = event.fan
        if fan is None:
            continue
        if fan.gender:
            genders[fan.gender] = genders.get(fan.gender, 0) + 1
        if fan.country:
            countries[fan.country] = countries.get(fan.country, 0) + 1
        if fan.email:
            emails.add(fan.email.lower())

    day_series = [{"day": d, "count": c} for d, c in sorted(per_day.items())]

    peak = {"day": "", "count": 0}
    for entry in day_series:
        if entry["count"] > peak["count"]:
            peak = entry

    window = settings["per_day_window"]
    top_questions = _ranked_questions(bucket, 30)

    return {
        "range": range_ or "all",
        "dashboard": {
            "messages_total": len(filtered),
            "last_message": last,
            "peak": dict(peak),
            "per_day": day_series[-window:] if window > 0 else day_series,
        },
        "insights": {
            "top_questions": top_questions[:TOP_QUESTIONS_LIMIT],
            "fans_count_estimate": len(emails) or None,
            "genders": _top(genders, "gender", TOP_GENDERS_LIMIT),
            "countries": _top(countries, "country", TOP_COUNTRIES_LIMIT),
            "business_opportunities": business_signals(top_questions),
        },
        "revenue": {
            "tokens_spent": tokens_spent,
            "usd_earned_estimate": round(tokens_spent * settings["usd_per_token"], 2),
        },
    }


def get_aggregated_analytics(
    config: dict, persona_id: str, range_: str | None, now: datetime | None = None,
) -> dict:
    """Dashboard summary for a persona; zeroed on read failure."""
    try:
        conn = get_connection(get_db_path(config))
        try:
            bucket = load_event_bucket(conn, persona_id)
        finally:
            conn.close()
    except Exception:
        logger.warning("Analytics read failed for '%s'", persona_id, exc_info=True)
        return empty_analytics(range_)
    return summarize_bucket(config, bucket, range_, now)
