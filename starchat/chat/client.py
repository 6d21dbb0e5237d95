"""HTTP client for the chat endpoint: post a turn, read SSE, plan the reveal."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Callable

import httpx

from starchat.chat.pacing import ReplyPlan, plan_reply
from starchat.chat.session import ChatSession
from starchat.chat.sse import decode_line, is_end
from starchat.errors import StarchatError
from starchat.models import ChatMessage

logger = logging.getLogger(__name__)

CHAT_PATH = "/api/chat"


class ChatRequestError(StarchatError):
    """The chat endpoint answered with a non-2xx JSON error."""

    def __init__(self, message: str, status: int, detail: str | None = None):
        super().__init__(message, detail)
        self.status_code = status


class StreamStalledError(StarchatError):
    """No SSE line arrived within the stall timeout."""

    status_code = 504


def _error_from_response(status: int, body: bytes) -> ChatRequestError:
    message, detail = f"Chat request failed ({status})", None
    try:
        data = json.loads(body.decode("utf-8", errors="replace"))
    except ValueError:
        data = None
    if isinstance(data, dict):
        message = str(data.get("error") or message)
        if data.get("details") is not None:
            detail = str(data["details"])
    elif body:
        detail = body.decode("utf-8", errors="replace")[:500]
    return ChatRequestError(message, status, detail)


class ChatClient:
    def __init__(
        self,
        base_url: str,
        stall_timeout: float = 45.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.stall_timeout = stall_timeout
        self._transport = transport

    async def send(
        self,
        session: ChatSession,
        text: str,
        image_url: str | None = None,
        on_text: Callable[[str], None] | None = None,
    ) -> ReplyPlan:
        """Send one user turn and return the planned reply.

        Both turns are appended to ``session.history`` only after the stream
        completes; a failed turn leaves the history untouched.
        """
        user = ChatMessage(role="user", content=text, image_url=image_url)
        body = session.request_body(session.history + [user])
        received: list[str] = []

        async with httpx.AsyncClient(
            base_url=self.base_url,
            transport=self._transport,
            timeout=httpx.Timeout(10.0, read=None),
        ) as client:
            async with client.stream("POST", CHAT_PATH, json=body) as resp:
                if not resp.is_success:
                    raise _error_from_response(resp.status_code, await resp.aread())

                lines = resp.aiter_lines()
                while True:
                    try:
                        line = await asyncio.wait_for(lines.__anext__(), timeout=self.stall_timeout)
                    except StopAsyncIteration:
                        break
                    except asyncio.TimeoutError as exc:
                        raise StreamStalledError(
                            f"Reply stream stalled for {self.stall_timeout:.0f}s"
                        ) from exc
                    if is_end(line):
                        break
                    content = decode_line(line)
                    if content:
                        received.append(content)
                        if on_text is not None:
                            on_text(content)

        plan = plan_reply("".join(received))
        session.history.extend([user, ChatMessage(role="assistant", content=plan.text)])
        logger.debug("Reply planned as %d message(s), %d chars", len(plan.parts), len(plan.text))
        return plan
