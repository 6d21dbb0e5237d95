"""HTTP surface: the fan chat stream plus the creator dashboard endpoints."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import BackgroundTasks, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, ConfigDict, Field

from starchat import tasks
from starchat.analytics.aggregate import get_aggregated_analytics
from starchat.analytics.events import get_star_events, record_event
from starchat.chat.pipeline import ChatPipeline, ChatRequest
from starchat.chat.sse import iter_frames
from starchat.config import get_db_path, get_personas_path, is_production
from starchat.control import get_star_control, set_star_control
from starchat.db import init_db
from starchat.errors import InvalidRequestError, StarchatError, UpstreamError
from starchat.insights.engine import get_insight_sources, get_insights_snapshot, refresh_insights
from starchat.models import INSIGHT_BUCKETS, ChatMessage, FanMeta, StarControl
from starchat.personas import PersonaRegistry

logger = logging.getLogger(__name__)

NO_STORE = {"Cache-Control": "no-store"}
SSE_HEADERS = {"Cache-Control": "no-cache, no-transform", "Connection": "keep-alive"}


class FanIn(BaseModel):
    email: str | None = None
    gender: str | None = None
    country: str | None = None

    def to_meta(self) -> FanMeta:
        return FanMeta(email=self.email, gender=self.gender, country=self.country)


class MessageIn(BaseModel):
    role: str
    content: str = ""
    image_url: str | None = Field(None, alias="imageUrl")

    model_config = ConfigDict(populate_by_name=True)


class ChatBody(BaseModel):
    messages: list[MessageIn] = Field(default_factory=list)
    persona_id: str | None = Field(None, alias="personaId")
    tokens_spent: int = Field(0, alias="tokensSpent", ge=0)
    fan: FanIn | None = None

    model_config = ConfigDict(populate_by_name=True)

    def to_request(self) -> ChatRequest:
        return ChatRequest(
            messages=[ChatMessage(role=m.role, content=m.content, image_url=m.image_url) for m in self.messages],
            persona_id=self.persona_id,
            tokens_spent=self.tokens_spent,
            fan=self.fan.to_meta() if self.fan else None,
        )


class EventBody(BaseModel):
    star_id: str | None = Field(None, alias="starId")
    message: str = ""
    tokens_spent: int = Field(0, alias="tokensSpent", ge=0)
    fan: FanIn | None = None
    ts: str | None = None

    model_config = ConfigDict(populate_by_name=True)


class RefreshBody(BaseModel):
    star_id: str | None = Field(None, alias="starId")
    range: str | None = None

    model_config = ConfigDict(populate_by_name=True)


class ControlBody(BaseModel):
    star_id: str | None = Field(None, alias="starId")
    forbidden_topics: list[str] | None = Field(None, alias="forbiddenTopics")
    promo_hooks: list[str] | None = Field(None, alias="promoHooks")

    model_config = ConfigDict(populate_by_name=True)


def _require_star(star_id: str | None) -> str:
    star_id = (star_id or "").strip()
    if not star_id:
        raise InvalidRequestError("Missing starId")
    return star_id


def _control_dict(control: StarControl) -> dict:
    return {"forbiddenTopics": control.forbidden_topics, "promoHooks": control.promo_hooks}


async def _guarded(chunks: AsyncIterator[str], persona_id: str) -> AsyncIterator[str]:
    """Pass chunks through; a mid-stream upstream failure ends the reply early."""
    try:
        async for chunk in chunks:
            yield chunk
    except UpstreamError as exc:
        logger.warning("Reply stream for '%s' cut short: %s", persona_id, exc.message)


def create_app(config: dict, personas: PersonaRegistry | None = None) -> FastAPI:
    init_db(get_db_path(config))
    if personas is None:
        personas = PersonaRegistry.from_file(get_personas_path(config))
    pipeline = ChatPipeline(config, personas)
    production = is_production(config)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        await tasks.drain()

    app = FastAPI(title="starchat", version="0.1.0", docs_url=None, redoc_url=None, lifespan=lifespan)
    app.state.config = config
    app.state.personas = personas

    @app.exception_handler(StarchatError)
    async def starchat_error(request: Request, exc: StarchatError):
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s (%s)", request.method, request.url.path, exc.message, exc.detail)
        return JSONResponse(status_code=exc.status_code, content=exc.to_payload(production))

    @app.exception_handler(RequestValidationError)
    async def validation_error(request: Request, exc: RequestValidationError):
        err = InvalidRequestError("Invalid request body", detail=str(exc.errors()))
        return JSONResponse(status_code=400, content=err.to_payload(production))

    @app.post("/api/chat")
    async def chat(body: ChatBody):
        reply = await pipeline.submit(body.to_request())
        return StreamingResponse(
            iter_frames(_guarded(reply.chunks, reply.persona_id)),
            media_type="text/event-stream",
            headers=SSE_HEADERS,
        )

    @app.post("/api/star/events", status_code=202)
    async def star_events(body: EventBody, background: BackgroundTasks):
        star_id = _require_star(body.star_id)
        background.add_task(
            record_event, config, star_id, body.message,
            tokens_spent=body.tokens_spent,
            fan=body.fan.to_meta() if body.fan else None,
            ts=body.ts,
        )
        return {"accepted": True}

    @app.get("/api/star/analytics")
    def star_analytics(starId: str | None = None, range: str | None = None):  # noqa: A002
        star_id = _require_star(starId)
        data = get_aggregated_analytics(config, star_id, range)
        return JSONResponse({"starId": star_id, **data}, headers=NO_STORE)

    @app.get("/api/star/insights")
    def star_insights(starId: str | None = None, bucket: str | None = None, topic_key: str | None = None):
        star_id = _require_star(starId)
        if bucket and topic_key:
            if bucket not in INSIGHT_BUCKETS:
                raise InvalidRequestError("Invalid bucket")
            return JSONResponse(get_insight_sources(config, star_id, bucket, topic_key), headers=NO_STORE)
        return JSONResponse(get_insights_snapshot(config, star_id), headers=NO_STORE)

    @app.post("/api/star/insights")
    async def refresh_star_insights(body: RefreshBody):
        star_id = _require_star(body.star_id)
        events = await asyncio.to_thread(get_star_events, config, star_id, body.range)
        result = await refresh_insights(config, star_id, events)
        return JSONResponse(
            result.to_dict(),
            status_code=500 if result.error else 200,
            headers=NO_STORE,
        )

    @app.get("/api/star/control")
    def star_control(starId: str | None = None):
        star_id = _require_star(starId)
        control = get_star_control(config, star_id)
        return JSONResponse({"starId": star_id, "control": _control_dict(control)}, headers=NO_STORE)

    @app.post("/api/star/control")
    def update_star_control(body: ControlBody):
        star_id = _require_star(body.star_id)
        control = set_star_control(config, star_id, body.forbidden_topics, body.promo_hooks)
        return JSONResponse({"starId": star_id, "control": _control_dict(control)}, headers=NO_STORE)

    return app
