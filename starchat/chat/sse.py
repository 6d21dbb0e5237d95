"""Wire framing for streamed replies: ``data: {"content": ...}`` then ``[DONE]``."""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator, Iterable

logger = logging.getLogger(__name__)

DONE = "[DONE]"
END_FRAME = f"data: {DONE}\n\n"


def encode_frame(content: str) -> str:
    return f"data: {json.dumps({'content': content})}\n\n"


async def iter_frames(chunks: AsyncIterator[str]) -> AsyncIterator[str]:
    """Frame every non-empty chunk, then the end marker."""
    async for chunk in chunks:
        if chunk:
            yield encode_frame(chunk)
    yield END_FRAME


def is_end(line: str) -> bool:
    return line.startswith("data: ") and line[6:].strip() == DONE


def decode_line(line: str) -> str | None:
    """Content carried by one SSE line, or None for comments/markers/bad data."""
    if not line.startswith("data: "):
        return None
    data = line[6:].strip()
    if not data or data == DONE:
        return None
    try:
        parsed = json.loads(data)
    except json.JSONDecodeError:
        logger.warning("Failed to parse SSE data: %s", data[:120])
        return None
    content = parsed.get("content") if isinstance(parsed, dict) else None
    return content or None


def parse_frames(lines: Iterable[str]) -> str:
    """Reassemble the full reply text from SSE lines."""
    parts = []
    for line in lines:
        if is_end(line):
            break
        content = decode_line(line)
        if content is not None:
            parts.append(content)
    return "".join(parts)
