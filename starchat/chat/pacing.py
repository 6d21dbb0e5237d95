"""Simulated typing for a finished reply.

The reply is cleaned, split into one or more chat bubbles, and each bubble is
revealed a few characters at a time with a human-ish cadence. Pacing never
changes content: the chunks emitted across all bubbles, concatenated in
order, equal ``ReplyPlan.text``.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import random
import re
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum

from starchat.chat.cleaner import clean_response_text

logger = logging.getLogger(__name__)

NEXT_DELIMITER = re.compile(r"\n\s*\[\[NEXT\]\]\s*\n")
SPLIT_MAX_CHARS = 520
SPLIT_MIN_CHARS = 280
# Paragraph, sentence, line, then word boundaries
BREAKPOINTS = ("\n\n", ". ", "! ", "? ", "\n", " ")

CHUNK_SIZE = 4
MIN_CHUNK_DELAY_MS = 12
DEFAULT_INITIAL_DELAY_MS = 260
SENTENCE_END = frozenset(".!?\n")
CLAUSE_END = frozenset(",;:")


@dataclass
class ReplyPlan:
    """Cleaned reply text and its split into consecutive bubble slices."""

    text: str
    parts: list[str]

    @property
    def messages(self) -> list[str]:
        """Bubble texts as displayed (separator whitespace trimmed)."""
        return [p.strip() for p in self.parts if p.strip()]


def _find_cut(rest: str, max_len: int, min_len: int) -> int:
    window = rest[: max_len + 1]
    for sep in BREAKPOINTS:
        idx = window.rfind(sep)
        if idx >= min_len:
            cut = idx + len(sep)
            break
    else:
        cut = max_len
    # Separator whitespace stays with the earlier bubble
    while cut < len(rest) and rest[cut].isspace():
        cut += 1
    return cut


def auto_split(text: str, max_len: int = SPLIT_MAX_CHARS, min_len: int = SPLIT_MIN_CHARS) -> list[str]:
    """Split long text into slices whose concatenation is exactly ``text``."""
    if not text:
        return []
    parts: list[str] = []
    rest = text
    while len(rest) > max_len:
        cut = _find_cut(rest, max_len, min_len)
        parts.append(rest[:cut])
        rest = rest[cut:]
    if rest:
        parts.append(rest)
    return parts


def plan_reply(raw: str) -> ReplyPlan:
    """Clean a streamed reply and decide how many bubbles it becomes."""
    cleaned = clean_response_text(raw)
    if NEXT_DELIMITER.search(cleaned):
        pieces = [p.strip() for p in NEXT_DELIMITER.split(cleaned)]
        pieces = [p for p in pieces if p]
        if len(pieces) > 1:
            first = pieces[0] + "\n\n"
            second = "\n\n".join(pieces[1:])
            return ReplyPlan(text=first + second, parts=[first, second])
        cleaned = pieces[0] if pieces else ""
    return ReplyPlan(text=cleaned, parts=auto_split(cleaned))


@dataclass
class TypingCadence:
    base_ms: int = 36
    jitter_ms: int = 14

    @classmethod
    def random(cls, rng: random.Random) -> TypingCadence:
        return cls(base_ms=rng.randint(26, 58), jitter_ms=rng.randint(8, 22))

    def delay_ms(self, chunk: str, rng: random.Random) -> int:
        jittered = max(
            MIN_CHUNK_DELAY_MS,
            self.base_ms + rng.randint(-self.jitter_ms, self.jitter_ms),
        )
        last = chunk[-1:]
        if not last:
            return jittered
        if last in SENTENCE_END:
            return jittered + rng.randint(160, 260)
        if last in CLAUSE_END:
            return jittered + rng.randint(90, 160)
        return jittered


def thinking_delay_ms(message_index: int, rng: random.Random) -> int:
    """Pause before the first visible character of a bubble."""
    if message_index == 0:
        return rng.randint(3000, 6000)
    return rng.randint(1000, 3000)


class PacerState(str, Enum):
    IDLE = "idle"
    THINKING = "thinking"
    REVEALING = "revealing"
    STOPPED = "stopped"


ChunkCallback = Callable[[int, str], None]
Sleep = Callable[[float], Awaitable[None]]


class RevealPacer:
    """Single-loop reveal queue for one chat session.

    At most one reveal task exists at a time. ``reveal`` clears whatever a
    previous message left queued before starting, so bubbles never interleave.
    """

    def __init__(
        self,
        on_chunk: ChunkCallback,
        *,
        rng: random.Random | None = None,
        sleep: Sleep = asyncio.sleep,
        chunk_size: int = CHUNK_SIZE,
    ):
        self._on_chunk = on_chunk
        self._rng = rng or random.Random()
        self._sleep = sleep
        self._chunk_size = chunk_size
        self._queue: deque[tuple[int, str]] = deque()
        self._task: asyncio.Task | None = None
        self._cadence = TypingCadence()
        self._initial_delay_ms = 0
        self.state = PacerState.IDLE

    @property
    def pending(self) -> int:
        return len(self._queue)

    @property
    def active(self) -> bool:
        return self._task is not None and not self._task.done()

    def enqueue(
        self,
        message_index: int,
        text: str,
        *,
        cadence: TypingCadence | None = None,
        initial_delay_ms: int | None = None,
    ) -> None:
        if self.state is PacerState.STOPPED:
            raise RuntimeError("RevealPacer is stopped")
        if not text:
            return
        if cadence is not None:
            self._cadence = cadence
        if initial_delay_ms is not None:
            self._initial_delay_ms = initial_delay_ms
        for i in range(0, len(text), self._chunk_size):
            self._queue.append((message_index, text[i:i + self._chunk_size]))
        if not self.active:
            self._task = asyncio.create_task(self._run(), name="reveal-pacer")

    async def _run(self) -> None:
        initial = self._initial_delay_ms if self._initial_delay_ms > 0 else DEFAULT_INITIAL_DELAY_MS
        self._initial_delay_ms = 0
        self.state = PacerState.THINKING
        await self._sleep(initial / 1000)

        self.state = PacerState.REVEALING
        while self._queue:
            index, chunk = self._queue.popleft()
            self._on_chunk(index, chunk)
            await self._sleep(self._cadence.delay_ms(chunk, self._rng) / 1000)
        self.state = PacerState.IDLE

    async def drain(self, timeout: float = 60.0) -> bool:
        """Wait for the queue to empty; False if ``timeout`` elapsed first.

        An exception raised by ``on_chunk`` is re-raised here after the
        queue is dropped.
        """
        task = self._task
        if task is None:
            return True
        if not task.done():
            done, _ = await asyncio.wait({task}, timeout=timeout)
            if not done:
                logger.warning("Reveal did not drain within %.0fs (%d chunks left)", timeout, self.pending)
                return False
        if not task.cancelled() and task.exception() is not None:
            self._task = None
            self.clear()
            task.result()
        return True

    def clear(self) -> None:
        """Drop queued chunks and cancel the active timer task."""
        self._queue.clear()
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None
        if self.state is not PacerState.STOPPED:
            self.state = PacerState.IDLE

    async def stop(self) -> None:
        """Cancel everything and refuse further work; leaves no dangling task."""
        task = self._task
        self.clear()
        self.state = PacerState.STOPPED
        if task is not None:
            with contextlib.suppress(asyncio.CancelledError):
                await task

    async def reveal(self, plan: ReplyPlan, drain_timeout: float = 60.0) -> None:
        """Reveal every bubble of a plan in order, each after its thinking pause."""
        self.clear()
        for index, part in enumerate(plan.parts):
            self.enqueue(
                index,
                part,
                cadence=TypingCadence.random(self._rng),
                initial_delay_ms=thinking_delay_ms(index, self._rng),
            )
            await self.drain(drain_timeout)
