"""Tests for SSE framing and reply text cleanup."""

from __future__ import annotations

import pytest

from starchat.chat.cleaner import clean_response_text
from starchat.chat.sse import END_FRAME, decode_line, encode_frame, is_end, iter_frames, parse_frames


async def _agen(items):
    for item in items:
        yield item


@pytest.mark.asyncio
async def test_iter_frames_skips_empty_and_terminates():
    frames = [f async for f in iter_frames(_agen(["Hel", "", "lo"]))]
    assert frames == [
        'data: {"content": "Hel"}\n\n',
        'data: {"content": "lo"}\n\n',
        END_FRAME,
    ]


def test_frames_roundtrip_unicode_and_marker_text():
    chunks = ["Line one\n", "“quoted” ", "[DONE]", " ✓"]
    lines = "".join(encode_frame(c) for c in chunks).split("\n") + ["data: [DONE]"]
    assert parse_frames(lines) == "".join(chunks)


def test_parse_frames_stops_at_done():
    lines = [": keepalive", 'data: {"content": "a"}', "", "data: [DONE]", 'data: {"content": "b"}']
    assert parse_frames(lines) == "a"


def test_decode_line():
    assert decode_line('data: {"content": "x"}') == "x"
    assert decode_line("data: [DONE]") is None
    assert decode_line("data: {not json") is None
    assert decode_line("event: ping") is None
    assert is_end("data: [DONE]")
    assert not is_end('data: {"content": "[DONE]"}')


def test_clean_dashes_and_emphasis():
    assert clean_response_text("Wealth — not money — matters") == "Wealth, not money, matters"
    assert clean_response_text("This is **really** *important*") == "This is really important"
    assert clean_response_text("keep snake_case_names intact") == "keep snake_case_names intact"


def test_clean_markdown_structure():
    raw = "## Plan\n\n- first step\n- second step\n\n1. numbered\n\nSee [my site](https://x.com) or `code`."
    assert clean_response_text(raw) == "Plan\n\nfirst step\nsecond step\n\nnumbered\n\nSee my site or code."


def test_clean_whitespace():
    assert clean_response_text("a\n\n\n\nb") == "a\n\nb"
    assert clean_response_text("too    many \t spaces") == "too many spaces"
    assert clean_response_text("  para one\n\npara two  ") == "para one\n\npara two"
    assert clean_response_text("") == ""


def test_clean_keeps_next_delimiter():
    assert clean_response_text("one\n[[NEXT]]\ntwo") == "one\n[[NEXT]]\ntwo"
