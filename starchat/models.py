"""Core data models for fan events, insight cards and the chat pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

EVENTS_CAP = 3000
QUESTIONS_CAP = 120
EMAILS_CAP = 5000
SOURCES_CAP = 200
LEDGER_CAP = 20000

OPPORTUNITY = "opportunity"
COMMON_QUESTION = "common_question"
INSIGHT_BUCKETS = (OPPORTUNITY, COMMON_QUESTION)


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


@dataclass
class FanMeta:
    """Optional self-reported fan profile attached to a chat turn."""

    email: str | None = None
    gender: str | None = None
    country: str | None = None

    def is_empty(self) -> bool:
        return not (self.email or self.gender or self.country)


@dataclass(frozen=True)
class Event:
    """A single fan message sent to a persona."""

    ts: str
    message: str
    tokens_spent: int = 0
    fan: FanMeta | None = None


@dataclass
class EventBucket:
    """Per-persona event log plus the rollups derived from it."""

    events: list[Event] = field(default_factory=list)
    questions: dict[str, int] = field(default_factory=dict)
    last_message: dict | None = None  # {"ts": ..., "message": ...}
    tokens_spent_total: int = 0
    gender_counts: dict[str, int] = field(default_factory=dict)
    country_counts: dict[str, int] = field(default_factory=dict)
    unique_emails: list[str] = field(default_factory=list)


@dataclass
class InsightCard:
    """A stable named cluster of fan messages."""

    title: str
    topic_key: str
    bucket: str  # opportunity, common_question
    count: int
    last_seen: str
    score: int

    @property
    def key(self) -> str:
        return card_key(self.bucket, self.topic_key)


def card_key(bucket: str, topic_key: str) -> str:
    return f"{bucket}:{topic_key}"


@dataclass
class SourceMessage:
    """A fan message kept on a card for drill-down."""

    id: str
    text: str
    ts: str
    conversation_href: str | None = None


@dataclass
class StarInsights:
    """Everything the insights engine persists for one persona."""

    cards: dict[str, InsightCard] = field(default_factory=dict)
    sources: dict[str, list[SourceMessage]] = field(default_factory=dict)
    processed_ids: list[str] = field(default_factory=list)


@dataclass
class StarControl:
    """Creator-managed policy applied to every reply."""

    forbidden_topics: list[str] = field(default_factory=list)
    promo_hooks: list[str] = field(default_factory=list)


@dataclass
class ChatMessage:
    role: str  # user, assistant
    content: str
    image_url: str | None = None


@dataclass
class SafetyDecision:
    action: str  # allow, refuse
    reason: str = ""
    safe_alternative: str | None = None

    @property
    def allowed(self) -> bool:
        return self.action == "allow"


class RefreshStage(str, Enum):
    IDLE = "idle"
    PREFILTERING = "prefiltering"
    CLASSIFYING = "classifying"
    MERGING = "merging"
    PERSISTED = "persisted"


@dataclass
class RefreshResult:
    """Outcome of one incremental insight refresh."""

    updated: bool
    pending: int = 0
    processed: int = 0
    error: str | None = None  # CONFIG_MISSING, LLM_CLASSIFICATION_FAILED, ...
    stage: RefreshStage = RefreshStage.IDLE
    snapshot: dict | None = None

    def to_dict(self) -> dict:
        data: dict = {"updated": self.updated, "stage": self.stage.value}
        if self.error:
            data["error"] = self.error
            return data
        data["pending"] = self.pending
        if self.updated:
            data["processed"] = self.processed
        data["snapshot"] = self.snapshot
        return data
