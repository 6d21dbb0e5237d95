"""Tests for the fan event store."""

from __future__ import annotations

from datetime import datetime, timezone
from unittest.mock import patch

import pytest

from starchat.analytics.events import (
    apply_event,
    filter_events,
    get_star_events,
    get_top_questions,
    make_event,
    normalize_question,
    parse_ts,
    range_start,
    record_event,
)
from starchat.db import load_event_bucket
from starchat.models import EMAILS_CAP, EVENTS_CAP, QUESTIONS_CAP, Event, EventBucket, FanMeta

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


def test_normalize_question():
    assert normalize_question("  Do you sell HOODIES?? https://shop.example.com/x ") == "do you sell hoodies"
    assert normalize_question("🙂🙂") == ""
    assert len(normalize_question("word " * 50)) == 90


def test_parse_ts():
    assert parse_ts("2026-10-01T10:00:00Z") == datetime(2026, 10, 1, 10, tzinfo=timezone.utc)
    assert parse_ts("2026-10-01T10:00:00").tzinfo is not None
    assert parse_ts("yesterday") is None
    assert parse_ts("") is None


def test_range_start():
    assert range_start("1m", NOW) == datetime(2026, 9, 19, 12, tzinfo=timezone.utc)
    assert range_start("all", NOW).year == 1970
    assert range_start(None, NOW).year == 1970
    assert range_start("bogus", NOW).year == 1970


def test_filter_events_drops_unparseable():
    events = [
        Event(ts="not a date", message="a"),
        Event(ts="2026-10-01T00:00:00Z", message="b"),
    ]
    assert [e.message for e in filter_events(events, range_start("all"))] == ["b"]


def test_make_event_blank_message():
    assert make_event("   ") is None
    event = make_event(" hi ", tokens_spent=-5, fan=FanMeta(email=" A@X.com ", gender=""))
    assert event.message == "hi"
    assert event.tokens_spent == 0
    assert event.fan == FanMeta(email="a@x.com")
    assert event.ts.endswith("Z")


def test_apply_event_updates_rollups():
    bucket = EventBucket()
    apply_event(bucket, Event(
        ts="2026-10-01T10:00:00Z", message="Do you sell hoodies?", tokens_spent=3,
        fan=FanMeta(email="a@x.com", gender="female", country="US"),
    ))
    apply_event(bucket, Event(
        ts="2026-10-01T11:00:00Z", message="do you sell hoodies", tokens_spent=2,
        fan=FanMeta(email="a@x.com", country="US"),
    ))

    assert bucket.questions == {"do you sell hoodies": 2}
    assert bucket.tokens_spent_total == 5
    assert bucket.gender_counts == {"female": 1}
    assert bucket.country_counts == {"US": 2}
    assert bucket.unique_emails == ["a@x.com"]
    assert bucket.last_message == {"ts": "2026-10-01T11:00:00Z", "message": "do you sell hoodies"}


def test_apply_event_without_question_key_still_recorded():
    """Messages with no alphanumerics are kept as events, just not counted as questions."""
    bucket = EventBucket()
    apply_event(bucket, Event(ts="2026-10-01T10:00:00Z", message="🔥🔥🔥"))
    assert len(bucket.events) == 1
    assert bucket.questions == {}


def test_apply_event_enforces_caps():
    bucket = EventBucket()
    for i in range(EVENTS_CAP + 10):
        apply_event(bucket, Event(
            ts=f"2026-10-01T10:00:{i % 60:02d}Z",
            message=f"question number {i}",
            fan=FanMeta(email=f"fan{i}@x.com"),
        ))

    assert len(bucket.events) == EVENTS_CAP
    assert bucket.events[0].message == "question number 10"
    assert len(bucket.questions) == QUESTIONS_CAP
    assert len(bucket.unique_emails) <= EMAILS_CAP


def test_apply_event_email_cap_keeps_newest():
    bucket = EventBucket(unique_emails=[f"old{i}@x.com" for i in range(EMAILS_CAP)])
    apply_event(bucket, Event(ts="2026-10-01T10:00:00Z", message="hey", fan=FanMeta(email="new@x.com")))
    assert len(bucket.unique_emails) == EMAILS_CAP
    assert bucket.unique_emails[-1] == "new@x.com"
    assert "old0@x.com" not in bucket.unique_emails


@pytest.mark.asyncio
async def test_record_event_persists(sample_config, db_conn):
    await record_event(sample_config, "naval", "When is the next book out?", tokens_spent=2)
    await record_event(sample_config, "naval", "   ")

    bucket = load_event_bucket(db_conn, "naval")
    assert len(bucket.events) == 1
    assert bucket.tokens_spent_total == 2


@pytest.mark.asyncio
async def test_record_event_swallows_failures(sample_config):
    """Storage failures are logged, never raised to the caller."""
    with patch("starchat.analytics.events.get_connection", side_effect=OSError("disk full")):
        await record_event(sample_config, "naval", "this should not raise")


@pytest.mark.asyncio
async def test_top_questions_and_star_events(sample_config):
    for msg in ["what camera do you use", "what camera do you use", "favorite city"]:
        await record_event(sample_config, "maya", msg, ts="2026-10-10T10:00:00Z")
    await record_event(sample_config, "maya", "old news here", ts="2025-01-01T00:00:00Z")

    top = get_top_questions(sample_config, "maya", limit=1)
    assert top == [{"question": "what camera do you use", "count": 2}]

    recent = get_star_events(sample_config, "maya", "1m", now=NOW)
    assert len(recent) == 3
    assert len(get_star_events(sample_config, "maya", "all")) == 4
