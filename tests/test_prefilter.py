"""Tests for the insight prefilter."""

from __future__ import annotations

from starchat.insights.prefilter import (
    is_small_talk,
    message_id,
    normalize_text,
    prefilter_messages,
)
from starchat.models import Event

TS = "2026-10-01T10:00:00Z"


def _events(*messages: str) -> list[Event]:
    return [Event(ts=f"2026-10-01T10:00:{i:02d}Z", message=m) for i, m in enumerate(messages)]


def test_small_talk_and_short_messages_excluded():
    events = _events(
        "hi", "lol", "👍👍", "ok",
        "thank you so much",  # three words, 17 chars, but not in the vocabulary
        "can you tell me how to grow my audience on weekends",
    )
    texts = [c.text for c in prefilter_messages(events, set())]
    assert texts == [
        "thank you so much",
        "can you tell me how to grow my audience on weekends",
    ]


def test_word_count_minimum():
    events = _events("supercalifragilistic expialidocious")
    assert prefilter_messages(events, set()) == []


def test_no_alphanumerics_is_small_talk():
    assert is_small_talk("?!?! ... ?!?!")
    assert is_small_talk("good morning")
    assert not is_small_talk("what lens do you use")


def test_processed_ids_skipped():
    text = "what lens do you use for portraits"
    events = [Event(ts=TS, message=text)]
    processed = {message_id(TS, text)}
    assert prefilter_messages(events, processed) == []


def test_identity_uses_normalized_text():
    """Whitespace differences do not create a new identity."""
    events = [Event(ts=TS, message="  what   lens do\nyou use  ")]
    candidate = prefilter_messages(events, set())[0]
    assert candidate.text == "what lens do you use"
    assert candidate.id == message_id(TS, "what lens do you use")


def test_missing_ts_skipped():
    events = [Event(ts="", message="what lens do you use for portraits")]
    assert prefilter_messages(events, set()) == []


def test_order_preserved():
    events = _events("first real question here", "second real question here", "third real question here")
    assert [c.text.split()[0] for c in prefilter_messages(events, set())] == ["first", "second", "third"]


def test_normalize_text():
    assert normalize_text(" a \t b\n\nc ") == "a b c"
    assert normalize_text(None) == ""
