"""System prompt assembly: persona description plus live dashboard rules."""

from __future__ import annotations

from starchat.llm.prompts import DASHBOARD_RULES, NO_KNOWLEDGE, PERSONA_SYSTEM
from starchat.models import StarControl
from starchat.personas import Persona
from starchat.safety import clean_topics

MAX_OPINIONS = 30
MAX_POSTS = 10
MAX_EXAMPLES = 8


def _bullets(items: list[str], empty: str = "- none") -> str:
    return "\n".join(f"- {x}" for x in items) if items else empty


def format_knowledge(persona: Persona) -> str:
    """Curated opinions and recent posts, or a do-not-invent notice."""
    parts: list[str] = []

    if persona.opinions:
        parts.append("KNOWN POSITIONS (curated):")
        for o in persona.opinions[:MAX_OPINIONS]:
            parts.append(f"- {o.get('topic', '')}: {o.get('summary', '')}")
        parts.append("")

    if persona.latest_posts:
        parts.append("RECENT PUBLIC POSTS (curated):")
        for p in persona.latest_posts[:MAX_POSTS]:
            meta = " • ".join(str(x) for x in (p.get("platform"), p.get("date")) if x)
            url = f" ({p['url']})" if p.get("url") else ""
            parts.append(f"- {meta}: {p.get('text', '')}{url}")
        parts.append("")

    if not parts:
        return NO_KNOWLEDGE
    return "\n".join(parts)


def _format_examples(persona: Persona) -> str:
    if not persona.examples:
        return ""
    lines = ["EXAMPLE REPLIES:"]
    for ex in persona.examples[:MAX_EXAMPLES]:
        lines.append(f"- On {ex.get('topic', '')}: {ex.get('response', '')}")
    return "\n".join(lines) + "\n\n"


def build_system_prompt(persona: Persona) -> str:
    return PERSONA_SYSTEM.format(
        name=persona.name,
        bio=persona.bio,
        style_rules=_bullets(persona.style_rules),
        principles=_bullets(persona.principles),
        do_not=_bullets(persona.do_not),
        examples=_format_examples(persona),
        knowledge=format_knowledge(persona),
    )


def build_dashboard_rules(control: StarControl) -> str:
    forbidden = clean_topics(control.forbidden_topics)
    promo = clean_topics(control.promo_hooks)
    return DASHBOARD_RULES.format(
        forbidden="; ".join(forbidden) if forbidden else "none",
        promo="\n".join(f"  - {h}" for h in promo) if promo else "  - none",
    )


def assemble_system_prompt(persona: Persona, control: StarControl) -> str:
    return f"{build_system_prompt(persona)}\n\n{build_dashboard_rules(control)}"
