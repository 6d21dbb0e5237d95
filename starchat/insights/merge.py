"""Validate classifier output and fold it into persisted insight cards.

Topic keys are authoritative as returned: no semantic re-merging of keys
happens here. A card is identified by ``bucket:topic_key`` so a key can never
move between buckets.
"""

from __future__ import annotations

import math
import re
from dataclasses import replace

from starchat.errors import InvalidClassifierOutput
from starchat.insights.classifier import ClassificationItem
from starchat.insights.prefilter import Candidate, normalize_text
from starchat.models import (
    LEDGER_CAP,
    SOURCES_CAP,
    InsightCard,
    SourceMessage,
    StarInsights,
    card_key,
    utc_now_iso,
)

TOPIC_KEY_RE = re.compile(r"^[a-z0-9]+(_[a-z0-9]+)*$")
TITLE_MAX = 45
TITLE_CONFIDENCE = 0.85
PREV_WEIGHT = 0.8
INCOMING_WEIGHT = 0.2


def clamp_score(n: float) -> int:
    """Clamp to 0..100 and round half up."""
    if n is None or not math.isfinite(n):
        return 0
    return int(max(0, min(100, math.floor(n + 0.5))))


def smooth_score(prev: int | None, incoming: float) -> int:
    if prev is None:
        return clamp_score(incoming)
    return clamp_score(prev * PREV_WEIGHT + incoming * INCOMING_WEIGHT)


def pick_better_title(old: str, new: str) -> str:
    """Prefer the shorter title, but only if it fits the card."""
    a = normalize_text(old)
    b = normalize_text(new)
    if not a:
        return b[:TITLE_MAX]
    if not b:
        return a
    if len(b) <= TITLE_MAX and len(b) < len(a):
        return b
    return a


def validate_items(items: list[ClassificationItem], batch_ids: set[str]) -> None:
    """Raise InvalidClassifierOutput if any item is unusable; nothing is merged then."""
    for item in items:
        if item.message_id not in batch_ids:
            raise InvalidClassifierOutput(
                "Classifier referenced an unknown message",
                detail=item.message_id,
            )
        if item.decision == "ignore":
            continue
        if not item.topic_key or not TOPIC_KEY_RE.match(item.topic_key):
            raise InvalidClassifierOutput("Invalid topic_key", detail=repr(item.topic_key))
        if not item.title or not item.title.strip():
            raise InvalidClassifierOutput("Missing title", detail=item.topic_key)
        if item.score is None or not math.isfinite(item.score):
            raise InvalidClassifierOutput("Missing score", detail=item.topic_key)


def group_items(
    items: list[ClassificationItem],
) -> dict[tuple[str, str], list[ClassificationItem]]:
    """Group non-ignore items by (bucket, topic_key), in first-seen order."""
    groups: dict[tuple[str, str], list[ClassificationItem]] = {}
    for item in items:
        if item.decision == "ignore":
            continue
        groups.setdefault((item.decision, item.topic_key), []).append(item)
    return groups


def _merge_sources(
    existing: list[SourceMessage], appended: list[SourceMessage],
) -> list[SourceMessage]:
    by_id: dict[str, SourceMessage] = {}
    for msg in [*existing, *appended]:
        by_id[msg.id] = msg
    merged = sorted(by_id.values(), key=lambda m: m.ts, reverse=True)
    return merged[:SOURCES_CAP]


def merge_group(
    prev: InsightCard | None,
    bucket: str,
    topic_key: str,
    group: list[ClassificationItem],
    by_id: dict[str, Candidate],
    now: str | None = None,
) -> InsightCard:
    """Apply count, recency, score smoothing and the title rule to one card."""
    timestamps = sorted(by_id[it.message_id].ts for it in group if it.message_id in by_id)
    last_seen = timestamps[-1] if timestamps else None

    best_score = clamp_score(max(it.score or 0 for it in group))
    best_confidence = max(
        (it.confidence if math.isfinite(it.confidence) else 0.0) for it in group
    )
    candidate_title = next((it.title for it in group if it.title), "")

    if prev is None:
        title = normalize_text(candidate_title)[:TITLE_MAX]
    elif best_confidence >= TITLE_CONFIDENCE:
        title = pick_better_title(prev.title, candidate_title)
    else:
        title = prev.title

    return InsightCard(
        title=title,
        topic_key=topic_key,
        bucket=bucket,
        count=(prev.count if prev else 0) + len(group),
        last_seen=last_seen or (prev.last_seen if prev else None) or now or utc_now_iso(),
        score=smooth_score(prev.score if prev else None, best_score),
    )


def extend_ledger(processed_ids: list[str], new_ids: list[str], cap: int = LEDGER_CAP) -> list[str]:
    """Order-preserving union of the ledger and the batch, newest ``cap`` kept."""
    seen: set[str] = set()
    merged: list[str] = []
    for mid in [*processed_ids, *new_ids]:
        if mid in seen:
            continue
        seen.add(mid)
        merged.append(mid)
    return merged[-cap:]


def merge_batch(
    insights: StarInsights,
    items: list[ClassificationItem],
    batch: list[Candidate],
    now: str | None = None,
) -> StarInsights:
    """Return the next insights state; ``insights`` itself is left untouched."""
    by_id = {c.id: c for c in batch}
    validate_items(items, set(by_id))

    cards = dict(insights.cards)
    sources = {k: list(v) for k, v in insights.sources.items()}

    for (bucket, topic_key), group in group_items(items).items():
        key = card_key(bucket, topic_key)
        cards[key] = merge_group(cards.get(key), bucket, topic_key, group, by_id, now)

        appended = [
            SourceMessage(id=c.id, text=c.text, ts=c.ts, conversation_href=None)
            for c in (by_id[it.message_id] for it in group)
        ]
        sources[key] = _merge_sources(sources.get(key, []), appended)

    return replace(
        insights,
        cards=cards,
        sources=sources,
        processed_ids=extend_ledger(insights.processed_ids, [c.id for c in batch]),
    )
