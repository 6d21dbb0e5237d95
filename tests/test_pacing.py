"""Tests for reply splitting and the reveal pacer."""

from __future__ import annotations

import asyncio
import random

import pytest

from starchat.chat.pacing import (
    MIN_CHUNK_DELAY_MS,
    PacerState,
    RevealPacer,
    TypingCadence,
    auto_split,
    plan_reply,
)

SENTENCE = "Consistency beats intensity when you build an audience over years. "
LONG_REPLY = (SENTENCE * 10).strip()


class Recorder:
    """Collects emitted chunks and the delays the pacer asked for."""

    def __init__(self):
        self.chunks: list[tuple[int, str]] = []
        self.delays: list[float] = []

    def on_chunk(self, index: int, chunk: str) -> None:
        self.chunks.append((index, chunk))

    async def sleep(self, seconds: float) -> None:
        self.delays.append(seconds)
        await asyncio.sleep(0)

    def text(self, index: int | None = None) -> str:
        return "".join(c for i, c in self.chunks if index is None or i == index)


def _pacer(recorder: Recorder, seed: int = 7) -> RevealPacer:
    return RevealPacer(recorder.on_chunk, rng=random.Random(seed), sleep=recorder.sleep)


def test_explicit_split():
    plan = plan_reply("First thought.\n[[NEXT]]\nSecond thought.")
    assert plan.parts == ["First thought.\n\n", "Second thought."]
    assert plan.text == "First thought.\n\nSecond thought."
    assert plan.messages == ["First thought.", "Second thought."]


def test_explicit_split_joins_remaining_parts():
    plan = plan_reply("one\n[[NEXT]]\ntwo\n  [[NEXT]]  \nthree")
    assert plan.messages == ["one", "two\n\nthree"]


def test_short_reply_is_one_part():
    plan = plan_reply("Own equity. **Not** time.")
    assert plan.parts == ["Own equity. Not time."]


def test_auto_split_long_reply():
    parts = auto_split(LONG_REPLY)
    assert len(parts) == 2
    assert "".join(parts) == LONG_REPLY
    assert parts[0].endswith(". ")
    assert 280 <= len(parts[0].strip()) <= 520
    assert all(len(p.strip()) <= 520 for p in parts)


def test_auto_split_prefers_paragraphs():
    text = "a" * 300 + "\n\n" + "b" * 150 + ". " + "c" * 200
    parts = auto_split(text)
    assert parts[0] == "a" * 300 + "\n\n"
    assert "".join(parts) == text


def test_auto_split_hard_cut():
    parts = auto_split("x" * 1200)
    assert [len(p) for p in parts] == [520, 520, 160]


def test_auto_split_empty():
    assert auto_split("") == []
    assert plan_reply("   ").parts == []


def test_cadence_floor_and_pauses():
    rng = random.Random(1)
    flat = TypingCadence(base_ms=0, jitter_ms=0)
    assert flat.delay_ms("abcd", rng) == MIN_CHUNK_DELAY_MS
    assert MIN_CHUNK_DELAY_MS + 160 <= flat.delay_ms("end.", rng) <= MIN_CHUNK_DELAY_MS + 260
    assert flat.delay_ms("so, ", rng) == MIN_CHUNK_DELAY_MS
    assert MIN_CHUNK_DELAY_MS + 90 <= flat.delay_ms("a,", rng) <= MIN_CHUNK_DELAY_MS + 160
    assert flat.delay_ms("", rng) == MIN_CHUNK_DELAY_MS

    cadence = TypingCadence.random(rng)
    assert 26 <= cadence.base_ms <= 58
    assert 8 <= cadence.jitter_ms <= 22


@pytest.mark.asyncio
async def test_reveal_round_trip():
    """Concatenated chunks reproduce the planned text exactly."""
    plan = plan_reply(LONG_REPLY)
    recorder = Recorder()
    pacer = _pacer(recorder)

    await pacer.reveal(plan)

    assert recorder.text() == plan.text
    for index, part in enumerate(plan.parts):
        assert recorder.text(index) == part
    assert all(len(chunk) <= 4 for _, chunk in recorder.chunks)
    assert pacer.state is PacerState.IDLE
    assert pacer.pending == 0


@pytest.mark.asyncio
async def test_reveal_thinking_delays():
    plan = plan_reply("First.\n[[NEXT]]\nSecond.")
    recorder = Recorder()
    await _pacer(recorder).reveal(plan)

    first_bubble_chunks = len(range(0, len(plan.parts[0]), 4))
    assert 3.0 <= recorder.delays[0] <= 6.0
    second_thinking = recorder.delays[1 + first_bubble_chunks]
    assert 1.0 <= second_thinking <= 3.0


@pytest.mark.asyncio
async def test_default_initial_delay():
    recorder = Recorder()
    pacer = _pacer(recorder)
    pacer.enqueue(0, "hey")
    assert await pacer.drain()
    assert recorder.delays[0] == pytest.approx(0.26)
    assert recorder.text() == "hey"


@pytest.mark.asyncio
async def test_reveal_clears_stale_queue():
    recorder = Recorder()
    pacer = _pacer(recorder)
    pacer.enqueue(0, "stale reply text")

    await pacer.reveal(plan_reply("fresh"))

    assert recorder.text() == "fresh"


@pytest.mark.asyncio
async def test_single_active_task():
    recorder = Recorder()
    pacer = _pacer(recorder)
    pacer.enqueue(0, "abcd")
    task = pacer._task
    pacer.enqueue(0, "efgh")
    assert pacer._task is task
    await pacer.drain()
    assert recorder.text() == "abcdefgh"


@pytest.mark.asyncio
async def test_clear_and_stop():
    recorder = Recorder()
    pacer = _pacer(recorder)
    pacer.enqueue(0, "some text that will never show")
    pacer.clear()
    assert pacer.pending == 0
    assert pacer.state is PacerState.IDLE

    pacer.enqueue(0, "more")
    await pacer.stop()
    assert pacer.state is PacerState.STOPPED
    assert not pacer.active
    with pytest.raises(RuntimeError):
        pacer.enqueue(0, "after stop")


@pytest.mark.asyncio
async def test_chunk_callback_error_surfaces_from_reveal():
    recorder = Recorder()

    def on_chunk(index: int, chunk: str) -> None:
        if len(recorder.chunks) == 2:
            raise ValueError("display closed")
        recorder.on_chunk(index, chunk)

    pacer = RevealPacer(on_chunk, rng=random.Random(3), sleep=recorder.sleep)

    with pytest.raises(ValueError, match="display closed"):
        await pacer.reveal(plan_reply("A reply long enough for several chunks."))

    assert recorder.text() == "A reply "
    assert pacer.pending == 0
    assert not pacer.active
    assert pacer.state is PacerState.IDLE
