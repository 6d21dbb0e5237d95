"""Tests for dashboard analytics aggregation."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from unittest.mock import patch

from starchat.analytics.aggregate import (
    business_signals,
    empty_analytics,
    get_aggregated_analytics,
    summarize_bucket,
)
from starchat.analytics.events import apply_event
from starchat.db import save_event_bucket
from starchat.models import Event, EventBucket, FanMeta

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


def _iso(dt: datetime) -> str:
    return dt.isoformat().replace("+00:00", "Z")


def _bucket(events: list[Event]) -> EventBucket:
    bucket = EventBucket()
    for event in events:
        apply_event(bucket, event)
    return bucket


def test_range_boundary():
    """An event 31 days old is outside 1m; one 29 days old is inside."""
    bucket = _bucket([
        Event(ts=_iso(NOW - timedelta(days=31)), message="old message here"),
        Event(ts=_iso(NOW - timedelta(days=29)), message="new message here"),
    ])

    month = summarize_bucket({}, bucket, "1m", NOW)
    assert month["dashboard"]["messages_total"] == 1
    assert month["range"] == "1m"

    everything = summarize_bucket({}, bucket, "all", NOW)
    assert everything["dashboard"]["messages_total"] == 2


def test_per_day_and_peak(sample_events):
    data = summarize_bucket({}, _bucket(sample_events), None, NOW)
    dash = data["dashboard"]

    assert data["range"] == "all"
    assert dash["per_day"] == [
        {"day": "2026-10-01", "count": 2},
        {"day": "2026-10-02", "count": 2},
    ]
    # Ties go to the earliest day
    assert dash["peak"] == {"day": "2026-10-01", "count": 2}
    assert dash["last_message"]["message"] == "Can you tell me how to grow my audience on weekends"


def test_last_message_is_global():
    """last_message is not range-filtered."""
    bucket = _bucket([Event(ts="2020-01-01T00:00:00Z", message="ancient history")])
    data = summarize_bucket({}, bucket, "1m", NOW)
    assert data["dashboard"]["messages_total"] == 0
    assert data["dashboard"]["last_message"]["message"] == "ancient history"


def test_fans_genders_countries(sample_events):
    insights = summarize_bucket({}, _bucket(sample_events), "all", NOW)["insights"]

    assert insights["fans_count_estimate"] == 2  # a@ and b@, case-insensitive
    assert insights["countries"][0] == {"country": "US", "count": 2}
    assert {"gender": "male", "count": 1} in insights["genders"]


def test_no_emails_gives_null_fan_estimate():
    data = summarize_bucket({}, _bucket([Event(ts="2026-10-01T00:00:00Z", message="hi")]), "all", NOW)
    assert data["insights"]["fans_count_estimate"] is None


def test_revenue_uses_unit_price(sample_events):
    revenue = summarize_bucket({}, _bucket(sample_events), "all", NOW)["revenue"]
    assert revenue == {"tokens_spent": 10, "usd_earned_estimate": 0.5}

    config = {"analytics": {"usd_per_token": 0.333}}
    revenue = summarize_bucket(config, _bucket(sample_events), "all", NOW)["revenue"]
    assert revenue["usd_earned_estimate"] == 3.33


def test_business_signals():
    signals = business_signals([
        {"question": "do you sell hoodies", "count": 3},
        {"question": "new book when", "count": 2},
        {"question": "is there a course", "count": 1},
        {"question": "favorite food", "count": 9},
    ])
    # "hoodies" matches both the hoodie and hoodies keys
    assert signals[0] == {"label": "Hoodies / merch", "count": 6}
    assert {"label": "Books / releases", "count": 2} in signals
    assert {"label": "Courses / education", "count": 1} in signals
    assert all(s["label"] != "Merchandise" for s in signals)


def test_get_aggregated_analytics_reads_store(sample_config, db_conn, sample_events):
    save_event_bucket(db_conn, "naval", _bucket(sample_events))
    data = get_aggregated_analytics(sample_config, "naval", "all", NOW)
    assert data["dashboard"]["messages_total"] == 4


def test_get_aggregated_analytics_zeroed_on_failure(sample_config):
    with patch("starchat.analytics.aggregate.get_connection", side_effect=OSError("locked")):
        data = get_aggregated_analytics(sample_config, "naval", "3m")
    assert data == empty_analytics("3m")
