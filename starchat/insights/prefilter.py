"""Select unprocessed, substantive fan messages for classification."""

from __future__ import annotations

import hashlib
import re
from dataclasses import dataclass

from starchat.models import Event

MIN_CHARS = 12
MIN_WORDS = 3
SMALL_TALK_MAX_CHARS = 4

SMALL_TALK = frozenset({
    "hi", "hello", "hey", "yo", "sup",
    "good morning", "good afternoon", "good evening",
    "how are you", "hru",
    "lol", "lmao", "ok", "okay", "k",
    "thanks", "thank you", "thx",
    "nice", "cool", "love you",
})


@dataclass(frozen=True)
class Candidate:
    """A message eligible for classification, keyed by its identity hash."""

    id: str
    text: str
    ts: str


def normalize_text(text: str) -> str:
    return re.sub(r"\s+", " ", str(text or "").strip())


def message_id(ts: str, text: str) -> str:
    """Deterministic identity of a message: sha1 of ``ts|text``."""
    return hashlib.sha1(f"{ts}|{text}".encode("utf-8")).hexdigest()


def _has_alphanumeric(text: str) -> bool:
    return any(ch.isalnum() for ch in text)


def is_small_talk(text: str) -> bool:
    t = normalize_text(text).lower()
    if not t:
        return True
    if t in SMALL_TALK:
        return True
    if len(t) <= SMALL_TALK_MAX_CHARS:
        return True
    return not _has_alphanumeric(t)


def prefilter_messages(events: list[Event], processed_ids: set[str]) -> list[Candidate]:
    """Candidates in event order, skipping processed, short and small-talk messages."""
    out: list[Candidate] = []
    for event in events:
        text = normalize_text(event.message)
        ts = event.ts if isinstance(event.ts, str) else ""
        if not text or not ts:
            continue

        mid = message_id(ts, text)
        if mid in processed_ids:
            continue
        if len(text) < MIN_CHARS:
            continue
        if len(text.split(" ")) < MIN_WORDS:
            continue
        if is_small_talk(text):
            continue

        out.append(Candidate(id=mid, text=text, ts=ts))
    return out
