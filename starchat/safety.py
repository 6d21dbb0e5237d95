"""Pre-completion policy gate: creator forbidden topics, then static patterns."""

from __future__ import annotations

import re
from dataclasses import dataclass

from starchat.models import SafetyDecision


@dataclass(frozen=True)
class PatternFamily:
    name: str
    patterns: tuple[re.Pattern, ...]
    reason: str
    safe_alternative: str | None = None

    def matches(self, text: str) -> bool:
        return any(p.search(text) for p in self.patterns)


def _compile(*patterns: str, flags: int = re.IGNORECASE) -> tuple[re.Pattern, ...]:
    return tuple(re.compile(p, flags) for p in patterns)


PROMPT_INJECTION = PatternFamily(
    name="prompt_injection",
    patterns=_compile(
        r"ignore (all|the|previous) (instructions|rules)",
        r"forget (all|the|previous) (instructions|rules)",
        r"reveal (the )?(system prompt|hidden instructions)",
        r"(developer|system) message",
        r"jailbreak",
    ) + _compile(r"\bDAN\b", flags=0),
    reason="I can’t follow requests to ignore instructions or reveal hidden prompts.",
    safe_alternative="Ask your question normally and I’ll help within safe boundaries.",
)

HATE = PatternFamily(
    name="hate",
    patterns=_compile(
        r"what do you think of (the )?(jews|muslims|christians|black people|white people|asians)",
        r"opinions? about (the )?(jews|muslims|christians)",
        r"race realism",
        r"inferior race",
    ),
    reason="I can’t engage with hateful or targeted content about protected groups.",
    safe_alternative=(
        "If you want, I can discuss history, culture, or how to have respectful conversations."
    ),
)

ILLEGAL = PatternFamily(
    name="illegal",
    patterns=_compile(
        r"how to (make|build) (a )?(bomb|explosive)",
        r"how to hack",
        r"credit card",
        r"\bsteal",
    ),
    reason="I can’t help with wrongdoing or illegal instructions.",
    safe_alternative="I can help with legal, safe alternatives or general education.",
)

SELF_HARM = PatternFamily(
    name="self_harm",
    patterns=_compile(r"kill myself", r"suicide", r"self[- ]harm"),
    reason=(
        "I can’t help with self-harm. If you’re in danger, please contact local "
        "emergency services or a trusted person right now."
    ),
    safe_alternative=(
        "If you want, tell me what you’re feeling and I’ll try to support you "
        "and point to resources."
    ),
)

STATIC_FAMILIES = (PROMPT_INJECTION, HATE, ILLEGAL, SELF_HARM)


def clean_topics(topics: list[str] | None) -> list[str]:
    return [t for t in (str(x or "").strip() for x in topics or []) if t]


def match_forbidden_topic(text: str, forbidden_topics: list[str] | None) -> str | None:
    lowered = (text or "").lower()
    for topic in clean_topics(forbidden_topics):
        if topic.lower() in lowered:
            return topic
    return None


def evaluate(user_text: str, forbidden_topics: list[str] | None = None) -> SafetyDecision:
    """First match wins: creator forbidden topics, then the static families."""
    text = user_text or ""

    hit = match_forbidden_topic(text, forbidden_topics)
    if hit:
        return SafetyDecision(action="refuse", reason=f"I can’t discuss that topic. ({hit})")

    for family in STATIC_FAMILIES:
        if family.matches(text):
            return SafetyDecision(
                action="refuse",
                reason=family.reason,
                safe_alternative=family.safe_alternative,
            )

    return SafetyDecision(action="allow")


def refusal_text(decision: SafetyDecision) -> str:
    if decision.safe_alternative:
        return f"{decision.reason}\n\n{decision.safe_alternative}"
    return decision.reason
