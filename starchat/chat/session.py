"""Client-side conversation context, persisted as a small JSON file."""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass, field
from pathlib import Path

from starchat.models import ChatMessage, FanMeta

logger = logging.getLogger(__name__)


@dataclass
class ChatSession:
    """Everything a client sends with each turn besides the new message."""

    persona_id: str
    fan: FanMeta | None = None
    history: list[ChatMessage] = field(default_factory=list)
    tokens_per_message: int = 0

    def request_body(self, messages: list[ChatMessage]) -> dict:
        body: dict = {
            "personaId": self.persona_id,
            "tokensSpent": self.tokens_per_message,
            "messages": [
                {"role": m.role, "content": m.content, **({"imageUrl": m.image_url} if m.image_url else {})}
                for m in messages
            ],
        }
        if self.fan is not None and not self.fan.is_empty():
            body["fan"] = {k: v for k, v in asdict(self.fan).items() if v}
        return body

    def to_dict(self) -> dict:
        return {
            "persona_id": self.persona_id,
            "fan": asdict(self.fan) if self.fan else None,
            "history": [asdict(m) for m in self.history],
            "tokens_per_message": self.tokens_per_message,
        }

    @classmethod
    def from_dict(cls, data: dict) -> ChatSession:
        fan = data.get("fan")
        return cls(
            persona_id=data["persona_id"],
            fan=FanMeta(**fan) if fan else None,
            history=[ChatMessage(**m) for m in data.get("history", [])],
            tokens_per_message=int(data.get("tokens_per_message", 0)),
        )

    def save(self, path: str | Path) -> None:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            json.dump(self.to_dict(), f, ensure_ascii=False, indent=2)

    @classmethod
    def load(cls, path: str | Path, persona_id: str) -> ChatSession:
        """Load a saved session, or start a fresh one if none exists."""
        path = Path(path)
        if not path.is_file():
            return cls(persona_id=persona_id)
        with open(path) as f:
            session = cls.from_dict(json.load(f))
        if session.persona_id != persona_id:
            logger.info("Session at %s belongs to '%s'; starting fresh", path, session.persona_id)
            return cls(persona_id=persona_id, fan=session.fan, tokens_per_message=session.tokens_per_message)
        return session
