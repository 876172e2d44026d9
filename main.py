from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

import redis
from dotenv import load_dotenv
from fastapi import Body, Cookie, FastAPI, Header, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, Field

from app.amadeus.client import create_amadeus_client
from app.cache.flight_cache import FlightOffersCache
from app.cache.redis_client import create_redis_client
from app.config import settings
from app.errors import (
    AuthError,
    FlightSearchError,
    NotFoundOrExpired,
    RequestDeadlineExceeded,
    UpstreamRejectedError,
    UpstreamTransientError,
    ValidationError,
)
from app.infrastructure.resilience import ProductionMiddleware
from app.llm.agent import create_chat_model, run_tool_loop, stream_tool_loop, to_messages, today_str
from app.llm.prompts import FLIGHT_ASSISTANT_SYSTEM, STUDY_ABROAD_SYSTEM
from app.llm.tools import FlightToolContext, build_flight_tools, build_program_tools
from app.obs.logger import log_event
from app.obs.metrics import get_metrics_snapshot
from app.obs.middleware import ObservabilityMiddleware
from app.programs.db import close_mongo_client, get_mongo_client, get_programs_collection
from app.programs.search import ProgramsRepository
from app.rank.selector import criteria_from_query
from app.services.flight_offers import FlightOffersService
from app.types import TripSpec

load_dotenv()


@asynccontextmanager
async def lifespan(app: FastAPI):
    log_event("startup", env=settings.APP_ENV)

    app.state.redis = create_redis_client()
    app.state.cache = FlightOffersCache(app.state.redis)
    app.state.amadeus = create_amadeus_client()
    app.state.service = FlightOffersService(app.state.amadeus, app.state.cache)
    app.state.programs = ProgramsRepository(get_programs_collection())
    app.state.llm = create_chat_model()

    yield

    log_event("shutdown")
    app.state.amadeus.close()
    close_mongo_client()


api = FastAPI(
    title="NGabroad Study & Flight Assistant",
    version="1.0.0",
    lifespan=lifespan
)


class ChatMessage(BaseModel):
    role: str
    content: str = ""


class ChatRequest(BaseModel):
    messages: List[ChatMessage] = Field(default_factory=list)


def _error(status: int, body: Dict[str, Any]) -> JSONResponse:
    return JSONResponse(body, status_code=status)


def set_handle_cookie(response, handle: str, ttl_seconds: int) -> None:
    response.set_cookie(
        key=settings.FLIGHT_OFFERS_COOKIE,
        value=handle,
        max_age=ttl_seconds,
        path="/",
        httponly=True,
        samesite="strict",
        secure=settings.APP_ENV == "prod",
    )


@api.exception_handler(FlightSearchError)
async def flight_search_error_handler(request: Request, exc: FlightSearchError):
    log_event("request_failed", level="WARNING", error_type=type(exc).__name__, error=exc.message)
    if isinstance(exc, ValidationError):
        return _error(400, {"error": exc.message, "field": exc.field})
    if isinstance(exc, NotFoundOrExpired):
        return _error(410, {"error": exc.message, "hint": "Run the flight search again"})
    if isinstance(exc, AuthError):
        return _error(502, {"error": "Flight search is unavailable: upstream authentication failed"})
    if isinstance(exc, RequestDeadlineExceeded):
        return _error(504, {"error": "Flight search timed out"})
    if isinstance(exc, UpstreamTransientError):
        return _error(503, {"error": exc.message, "details": exc.detail})
    if isinstance(exc, UpstreamRejectedError):
        return _error(exc.status_code or 400, {"error": exc.message, "details": exc.detail})
    return _error(502, {"error": exc.message})


@api.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    first = exc.errors()[0] if exc.errors() else {}
    field = ".".join(str(p) for p in first.get("loc", ()) if p != "body") or "body"
    return _error(400, {"error": first.get("msg", "Invalid request body"), "field": field})


@api.exception_handler(redis.RedisError)
async def redis_error_handler(request: Request, exc: redis.RedisError):
    log_event("redis_error", level="ERROR", error=str(exc))
    return _error(503, {"error": "Flight results store is unavailable, please try again"})


@api.get("/")
async def root():
    return {
        "service": "NGabroad Study & Flight Assistant",
        "version": "1.0.0",
        "status": "running",
        "features": [
            "Study programme search",
            "Live flight offers with cached filtering",
            "Streaming chat assistant",
        ]
    }


@api.get("/health")
async def health():
    return {"status": "healthy", "service": "ngabroad-assistant"}


@api.get("/metrics")
async def metrics():
    return get_metrics_snapshot()


@api.post("/api/flight-offers")
def flight_offers(
    request: Request,
    body: Any = Body(None),
    x_http_method_override: Optional[str] = Header(None),
):
    """Raw Flight Offers Search body in, provider payload out (plus the handle cookie)."""
    outcome = request.app.state.service.search(body, method_override=x_http_method_override)
    response = JSONResponse(outcome.payload)
    if outcome.handle:
        set_handle_cookie(response, outcome.handle, outcome.metadata.ttl_seconds)
    return response


@api.post("/api/flight-offers/search")
def search_trip(request: Request, trip: TripSpec):
    outcome = request.app.state.service.search_trip(trip)
    body = dict(outcome.payload)
    body["cacheKeyIssued"] = outcome.handle is not None
    body["metadata"] = outcome.metadata.to_wire() if outcome.metadata else None
    response = JSONResponse(body)
    if outcome.handle:
        set_handle_cookie(response, outcome.handle, outcome.metadata.ttl_seconds)
    return response


@api.get("/api/flight-offers-filter")
def filter_flight_offers(
    request: Request,
    airlines: Optional[str] = None,
    sortBy: Optional[str] = None,
    stops: Optional[str] = None,
    page: Optional[str] = None,
    limit: Optional[str] = None,
    handle: Optional[str] = Cookie(None, alias=settings.FLIGHT_OFFERS_COOKIE),
):
    if not handle:
        return _error(404, {"error": "No flight offers cookie found"})
    criteria = criteria_from_query(airlines=airlines, sort_by=sortBy, stops=stops, page=page, limit=limit)
    outcome = request.app.state.service.filter(handle, criteria)
    return JSONResponse(outcome.to_wire())


def _llm_or_503(request: Request):
    llm = getattr(request.app.state, "llm", None)
    if llm is None:
        return None, _error(503, {"error": "Assistant is not configured"})
    return llm, None


@api.post("/api/chat")
def chat(request: Request, chat_request: ChatRequest):
    llm, unavailable = _llm_or_503(request)
    if unavailable:
        return unavailable

    history = [m.model_dump() for m in chat_request.messages]
    messages = to_messages(STUDY_ABROAD_SYSTEM.format(today=today_str()), history)
    tools = build_program_tools(request.app.state.programs)
    log_event("chat_request", turns=len(history))
    return StreamingResponse(
        stream_tool_loop(llm, tools, messages, settings.CHAT_MAX_STEPS),
        media_type="text/plain; charset=utf-8",
    )


@api.post("/api/flight-assistant")
def flight_assistant(
    request: Request,
    chat_request: ChatRequest,
    handle: Optional[str] = Cookie(None, alias=settings.FLIGHT_OFFERS_COOKIE),
):
    llm, unavailable = _llm_or_503(request)
    if unavailable:
        return unavailable

    ctx = FlightToolContext(request.app.state.service, handle=handle)
    history = [m.model_dump() for m in chat_request.messages]
    messages = to_messages(FLIGHT_ASSISTANT_SYSTEM.format(today=today_str()), history)
    reply = run_tool_loop(llm, build_flight_tools(ctx), messages, settings.CHAT_MAX_STEPS)

    response = JSONResponse({"reply": reply})
    if ctx.issued_handle:
        set_handle_cookie(response, ctx.issued_handle, ctx.issued_ttl)
    return response


# Apply middleware
app = ObservabilityMiddleware(api)
app = ProductionMiddleware(
    app,
    redis.from_url(settings.REDIS_URL, decode_responses=True, socket_connect_timeout=3, socket_timeout=3),
    mongo_ping=lambda: get_mongo_client().admin.command("ping"),
)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=8001,
        reload=settings.APP_ENV == "dev",
        log_level="info"
    )
