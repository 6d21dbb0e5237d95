"""Terminal front end for the chat endpoint.

Replies are revealed bubble by bubble through a RevealPacer. A stalled or
failed turn prints an inline error and asks whether to resend. The pacer is
always stopped on the way out, including on Ctrl-C.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from pathlib import Path

import httpx

from starchat.chat.client import ChatClient, ChatRequestError, StreamStalledError
from starchat.chat.pacing import ChunkCallback, ReplyPlan, RevealPacer
from starchat.chat.session import ChatSession

logger = logging.getLogger(__name__)

QUIT_WORDS = ("/quit", "/exit")
YES = ("", "y", "yes")

Reader = Callable[[str], str]
Writer = Callable[[str], None]


def terminal_printer(name: str) -> ChunkCallback:
    """Chunk callback that prints ``name>`` at the start of each bubble."""
    last = {"index": -1}

    def on_chunk(index: int, chunk: str) -> None:
        if index != last["index"]:
            if last["index"] >= 0:
                print()
            print(f"{name}> ", end="")
            last["index"] = index
        print(chunk, end="", flush=True)

    return on_chunk


async def send_with_retry(
    client: ChatClient,
    session: ChatSession,
    text: str,
    *,
    read: Reader = input,
    write: Writer = print,
) -> ReplyPlan | None:
    """Send one turn, offering a resend after each failure. None if declined."""
    while True:
        try:
            return await client.send(session, text)
        except StreamStalledError as exc:
            write(f"[stalled] {exc.message}")
        except ChatRequestError as exc:
            write(f"[error {exc.status_code}] {exc.message}" + (f": {exc.detail}" if exc.detail else ""))
        except httpx.TransportError as exc:
            write(f"[offline] {exc}")

        try:
            answer = read("Retry? [Y/n] ").strip().lower()
        except EOFError:
            return None
        if answer not in YES:
            return None


async def run_console(
    client: ChatClient,
    session: ChatSession,
    pacer: RevealPacer,
    *,
    session_path: Path | None = None,
    read: Reader = input,
    write: Writer = print,
) -> None:
    try:
        while True:
            try:
                text = read("you> ").strip()
            except EOFError:
                break
            if not text:
                continue
            if text in QUIT_WORDS:
                break

            plan = await send_with_retry(client, session, text, read=read, write=write)
            if plan is None:
                continue
            await pacer.reveal(plan)
            write("")
            if session_path is not None:
                session.save(session_path)
    finally:
        await pacer.stop()
        logger.debug("Console for '%s' closed with %d turns", session.persona_id, len(session.history))
