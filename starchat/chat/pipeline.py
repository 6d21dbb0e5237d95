"""One fan turn in, one reply stream out.

Order matters: credentials are checked before anything else, the fan event is
recorded before the policy gate (so refused messages still count in
analytics), and the upstream stream is primed before the caller starts
framing so that open failures surface as a JSON error instead of a broken
SSE body. Event recording and the webhook run detached and never hold up
the reply.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass, field

from starchat.analytics.events import record_event
from starchat.chat.prompt import assemble_system_prompt
from starchat.config import get_chat_settings, get_default_persona, get_notification_settings
from starchat.control import get_star_control
from starchat.errors import InvalidRequestError, PersonaNotFoundError
from starchat.llm import get_provider_for_task
from starchat.models import ChatMessage, FanMeta
from starchat.notify import fan_message_payload, post_webhook
from starchat.personas import PersonaRegistry
from starchat.safety import evaluate, refusal_text
from starchat.tasks import fire_and_forget

logger = logging.getLogger(__name__)

ROLES = ("user", "assistant")


@dataclass
class ChatRequest:
    messages: list[ChatMessage]
    persona_id: str | None = None
    tokens_spent: int = 0
    fan: FanMeta | None = None


@dataclass
class ReplyStream:
    """Reply chunks for one turn; a refusal is a single pre-built chunk."""

    chunks: AsyncIterator[str]
    persona_id: str
    refused: bool = False
    reason: str = field(default="", repr=False)


async def _single(text: str) -> AsyncIterator[str]:
    yield text


async def _primed(first: str, rest: AsyncIterator[str]) -> AsyncIterator[str]:
    if first:
        yield first
    async for chunk in rest:
        if chunk:
            yield chunk


async def _empty() -> AsyncIterator[str]:
    for chunk in ():
        yield chunk


def validate_messages(messages: list[ChatMessage] | None) -> list[ChatMessage]:
    if not messages:
        raise InvalidRequestError("Missing messages")
    for msg in messages:
        if msg.role not in ROLES:
            raise InvalidRequestError(f"Invalid message role: {msg.role!r}")
        if not (msg.content or "").strip() and not msg.image_url:
            raise InvalidRequestError("Empty message content")
    return messages


def latest_user_text(messages: list[ChatMessage]) -> str:
    for msg in reversed(messages):
        if msg.role == "user":
            return msg.content or ""
    return ""


class ChatPipeline:
    def __init__(self, config: dict, personas: PersonaRegistry):
        self.config = config
        self.personas = personas

    def resolve_persona_id(self, persona_id: str | None) -> str:
        pid = (persona_id or "").strip() or get_default_persona(self.config)
        if self.personas.get(pid) is None:
            raise PersonaNotFoundError(f"Persona not found: {pid}")
        return pid

    def _notify(self, persona_id: str, persona_name: str, text: str) -> None:
        settings = get_notification_settings(self.config)
        if not settings["webhook_url"] or not text.strip():
            return
        fire_and_forget(
            post_webhook(
                settings["webhook_url"],
                fan_message_payload(text, persona_id, persona_name),
                timeout=settings["timeout"],
            ),
            name=f"webhook:{persona_id}",
        )

    async def submit(self, request: ChatRequest) -> ReplyStream:
        provider = get_provider_for_task(self.config, "chat")
        messages = validate_messages(request.messages)
        persona_id = self.resolve_persona_id(request.persona_id)
        persona = self.personas.get(persona_id)

        user_text = latest_user_text(messages)
        fire_and_forget(
            record_event(
                self.config, persona_id, user_text,
                tokens_spent=request.tokens_spent, fan=request.fan,
            ),
            name=f"record-event:{persona_id}",
        )

        self._notify(persona_id, persona.name, user_text)

        control = await asyncio.to_thread(get_star_control, self.config, persona_id)
        decision = evaluate(user_text, control.forbidden_topics)
        if not decision.allowed:
            logger.info("Refused message for '%s': %s", persona_id, decision.reason)
            return ReplyStream(
                chunks=_single(refusal_text(decision)),
                persona_id=persona_id,
                refused=True,
                reason=decision.reason,
            )

        settings = get_chat_settings(self.config)
        upstream = provider.stream(
            messages,
            system=assemble_system_prompt(persona, control),
            temperature=settings["temperature"],
            max_tokens=settings["max_tokens"],
        )
        # Raises UpstreamError here, before the caller frames anything
        try:
            first = await upstream.__anext__()
        except StopAsyncIteration:
            logger.warning("Upstream returned an empty reply for '%s'", persona_id)
            return ReplyStream(chunks=_empty(), persona_id=persona_id)

        return ReplyStream(chunks=_primed(first, upstream), persona_id=persona_id)
