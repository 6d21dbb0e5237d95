"""Strip residual markdown from model output so it reads like a text message."""

from __future__ import annotations

import re

_SUBSTITUTIONS: list[tuple[re.Pattern, str]] = [
    # em/en dashes read as written prose, not chat
    (re.compile(r"\s*[—–]\s*"), ", "),
    (re.compile(r"\*\*\*(.*?)\*\*\*"), r"\1"),
    (re.compile(r"\*\*(.*?)\*\*"), r"\1"),
    (re.compile(r"\*(.*?)\*"), r"\1"),
    (re.compile(r"__(.*?)__"), r"\1"),
    (re.compile(r"(?<!\w)_(.+?)_(?!\w)"), r"\1"),
    (re.compile(r"^#{1,6}\s+", re.MULTILINE), ""),
    (re.compile(r"\[([^\]]+)\]\([^)]+\)"), r"\1"),
    (re.compile(r"```[\s\S]*?```"), ""),
    (re.compile(r"`([^`]+)`"), r"\1"),
    (re.compile(r"^[ \t]*[-*+]\s+", re.MULTILINE), ""),
    (re.compile(r"^[ \t]*\d+\.\s+", re.MULTILINE), ""),
    (re.compile(r"\n{3,}"), "\n\n"),
    (re.compile(r"[ \t]{2,}"), " "),
    (re.compile(r",\s*,"), ","),
]


def clean_response_text(text: str) -> str:
    cleaned = text or ""
    for pattern, repl in _SUBSTITUTIONS:
        cleaned = pattern.sub(repl, cleaned)
    return cleaned.strip()
