"""SQLite persistence: one JSON record per persona for each kind of state.

Every save replaces the whole record. There is no cross-process locking, so
two writers for the same persona race and the last write wins.
"""

from __future__ import annotations

import json
import sqlite3
from dataclasses import asdict
from datetime import datetime, timezone
from pathlib import Path

from starchat.models import (
    Event,
    EventBucket,
    FanMeta,
    InsightCard,
    SourceMessage,
    StarControl,
    StarInsights,
)

SCHEMA_VERSION = 1

EVENT_BUCKETS = "event_buckets"
STAR_INSIGHTS = "star_insights"
STAR_CONTROLS = "star_controls"
TABLES = (EVENT_BUCKETS, STAR_INSIGHTS, STAR_CONTROLS)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY
);

CREATE TABLE IF NOT EXISTS event_buckets (
    persona_id TEXT PRIMARY KEY,
    data TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS star_insights (
    persona_id TEXT PRIMARY KEY,
    data TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS star_controls (
    persona_id TEXT PRIMARY KEY,
    data TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
"""


def get_connection(db_path: str) -> sqlite3.Connection:
    """Get a SQLite connection with WAL mode enabled."""
    path = Path(db_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(str(path))
    conn.execute("PRAGMA journal_mode=WAL")
    conn.row_factory = sqlite3.Row
    return conn


def init_db(db_path: str) -> None:
    """Create all tables and set schema version."""
    conn = get_connection(db_path)
    try:
        conn.executescript(SCHEMA_SQL)
        conn.execute(
            "INSERT OR REPLACE INTO schema_version (version) VALUES (?)",
            (SCHEMA_VERSION,),
        )
        conn.commit()
    finally:
        conn.close()


def _now_str() -> str:
    return datetime.now(timezone.utc).isoformat()


def _load_record(conn: sqlite3.Connection, table: str, persona_id: str) -> dict | None:
    row = conn.execute(
        f"SELECT data FROM {table} WHERE persona_id = ?", (persona_id,)
    ).fetchone()
    if row is None:
        return None
    return json.loads(row["data"])


def _save_record(conn: sqlite3.Connection, table: str, persona_id: str, data: dict) -> None:
    conn.execute(
        f"INSERT OR REPLACE INTO {table} (persona_id, data, updated_at) VALUES (?, ?, ?)",
        (persona_id, json.dumps(data), _now_str()),
    )
    conn.commit()


def list_personas(conn: sqlite3.Connection, table: str = EVENT_BUCKETS) -> list[str]:
    """Persona ids that have a record of the given kind."""
    if table not in TABLES:
        raise ValueError(f"Unknown table: {table}")
    rows = conn.execute(f"SELECT persona_id FROM {table} ORDER BY persona_id").fetchall()
    return [row["persona_id"] for row in rows]


# --- Event bucket helpers ---


def _event_to_dict(event: Event) -> dict:
    data: dict = {"ts": event.ts, "message": event.message}
    if event.tokens_spent:
        data["tokens_spent"] = event.tokens_spent
    if event.fan is not None and not event.fan.is_empty():
        data["fan"] = {k: v for k, v in asdict(event.fan).items() if v}
    return data


def _dict_to_event(data: dict) -> Event:
    fan = data.get("fan")
    return Event(
        ts=str(data.get("ts", "")),
        message=str(data.get("message", "")),
        tokens_spent=int(data.get("tokens_spent") or 0),
        fan=FanMeta(**fan) if isinstance(fan, dict) else None,
    )


def load_event_bucket(conn: sqlite3.Connection, persona_id: str) -> EventBucket:
    """Fetch a persona's event bucket, or an empty one."""
    data = _load_record(conn, EVENT_BUCKETS, persona_id)
    if data is None:
        return EventBucket()
    return EventBucket(
        events=[_dict_to_event(e) for e in data.get("events", [])],
        questions=dict(data.get("questions", {})),
        last_message=data.get("last_message"),
        tokens_spent_total=int(data.get("tokens_spent_total", 0)),
        gender_counts=dict(data.get("gender_counts", {})),
        country_counts=dict(data.get("country_counts", {})),
        unique_emails=list(data.get("unique_emails", [])),
    )


def save_event_bucket(conn: sqlite3.Connection, persona_id: str, bucket: EventBucket) -> None:
    _save_record(conn, EVENT_BUCKETS, persona_id, {
        "events": [_event_to_dict(e) for e in bucket.events],
        "questions": bucket.questions,
        "last_message": bucket.last_message,
        "tokens_spent_total": bucket.tokens_spent_total,
        "gender_counts": bucket.gender_counts,
        "country_counts": bucket.country_counts,
        "unique_emails": bucket.unique_emails,
    })


# --- Insights helpers ---


def load_star_insights(conn: sqlite3.Connection, persona_id: str) -> StarInsights:
    """Fetch cards, sources and the processed-message ledger for a persona."""
    data = _load_record(conn, STAR_INSIGHTS, persona_id)
    if data is None:
        return StarInsights()
    return StarInsights(
        cards={k: InsightCard(**c) for k, c in data.get("cards", {}).items()},
        sources={
            k: [SourceMessage(**m) for m in msgs]
            for k, msgs in data.get("sources", {}).items()
        },
        processed_ids=list(data.get("processed_ids", [])),
    )


def save_star_insights(conn: sqlite3.Connection, persona_id: str, insights: StarInsights) -> None:
    """Persist cards, sources and ledger in a single write."""
    _save_record(conn, STAR_INSIGHTS, persona_id, {
        "cards": {k: asdict(c) for k, c in insights.cards.items()},
        "sources": {
            k: [asdict(m) for m in msgs] for k, msgs in insights.sources.items()
        },
        "processed_ids": insights.processed_ids,
    })


# --- Star control helpers ---


def load_star_control(conn: sqlite3.Connection, persona_id: str) -> StarControl:
    data = _load_record(conn, STAR_CONTROLS, persona_id)
    if data is None:
        return StarControl()
    return StarControl(
        forbidden_topics=list(data.get("forbidden_topics", [])),
        promo_hooks=list(data.get("promo_hooks", [])),
    )


def save_star_control(conn: sqlite3.Connection, persona_id: str, control: StarControl) -> None:
    _save_record(conn, STAR_CONTROLS, persona_id, asdict(control))
