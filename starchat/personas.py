"""Read-only persona registry loaded from YAML."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path

import yaml

logger = logging.getLogger(__name__)


@dataclass
class Persona:
    """Static definition of an AI twin; never mutated by the chat core."""

    id: str
    name: str
    bio: str = ""
    style_rules: list[str] = field(default_factory=list)
    principles: list[str] = field(default_factory=list)
    do_not: list[str] = field(default_factory=list)
    examples: list[dict] = field(default_factory=list)  # {topic, response}
    opinions: list[dict] = field(default_factory=list)  # {topic, summary}
    latest_posts: list[dict] = field(default_factory=list)  # {platform, date, text, url}
    socials: dict[str, str] = field(default_factory=dict)


def _as_list(value) -> list:
    if value is None:
        return []
    return list(value) if isinstance(value, (list, tuple)) else [value]


def _persona_from_dict(persona_id: str, raw: dict) -> Persona:
    return Persona(
        id=persona_id,
        name=str(raw.get("name") or persona_id),
        bio=str(raw.get("bio") or ""),
        style_rules=[str(x) for x in _as_list(raw.get("style_rules"))],
        principles=[str(x) for x in _as_list(raw.get("principles"))],
        do_not=[str(x) for x in _as_list(raw.get("do_not"))],
        examples=[e for e in _as_list(raw.get("examples")) if isinstance(e, dict)],
        opinions=[o for o in _as_list(raw.get("opinions")) if isinstance(o, dict)],
        latest_posts=[p for p in _as_list(raw.get("latest_posts")) if isinstance(p, dict)],
        socials={str(k): str(v) for k, v in (raw.get("socials") or {}).items()},
    )


class PersonaRegistry:
    """Lookup table of personas by id."""

    def __init__(self, personas: dict[str, Persona] | None = None):
        self._personas = dict(personas or {})

    @classmethod
    def from_file(cls, path: str | Path) -> PersonaRegistry:
        path = Path(path)
        if not path.is_file():
            logger.warning("Persona registry not found at %s; starting empty", path)
            return cls()
        with open(path) as f:
            raw = yaml.safe_load(f) or {}
        entries = raw.get("personas", {})
        personas = {
            str(pid): _persona_from_dict(str(pid), body or {})
            for pid, body in entries.items()
        }
        logger.info("Loaded %d personas from %s", len(personas), path)
        return cls(personas)

    def get(self, persona_id: str) -> Persona | None:
        return self._personas.get(persona_id)

    def ids(self) -> list[str]:
        return sorted(self._personas)

    def __len__(self) -> int:
        return len(self._personas)
