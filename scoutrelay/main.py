"""
FastAPI application: the scoutrelay entry point.

Endpoints:
  - POST /coach-chat                   streaming coach chat (SSE)
  - GET  /coach-chat/conversation      active conversation + messages
  - POST /coach-chat/conversation      start a fresh conversation
  - GET  /coach-chat/starters          conversation starters for the scout
  - POST /feedback-analyze             one-shot feedback triage
  - POST /extract-cv                   one-shot CV field extraction
  - POST /webhook/lead-intake          website form lead intake
  - GET  /health, /api/v1/stats
"""

import json
import logging
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, StreamingResponse

from scoutrelay import __version__
from scoutrelay.backends.gemini import GeminiUpstream
from scoutrelay.config import get_config
from scoutrelay.errors import RelayError
from scoutrelay.extraction import CVExtractor
from scoutrelay.feedback import FeedbackAnalyzer
from scoutrelay.identity import IdentityResolver, client_address
from scoutrelay.ratelimit import FixedWindowRateLimiter
from scoutrelay.relay import CoachRelay
from scoutrelay.storage.sqlite_store import SQLiteStore
from scoutrelay.webhook import LeadIntake
from scoutrelay.wiretap import WireLog

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Globals, initialized at startup
# ---------------------------------------------------------------------------
store: SQLiteStore | None = None
wire: WireLog | None = None
coach_relay: CoachRelay | None = None
feedback_analyzer: FeedbackAnalyzer | None = None
cv_extractor: CVExtractor | None = None
lead_intake: LeadIntake | None = None


def _setup_logging(cfg: dict):
    log_cfg = cfg.get("logging", {})
    level = getattr(logging, str(log_cfg.get("level", "INFO")).upper(), logging.INFO)
    log_file = log_cfg.get("file")

    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_file:
        from pathlib import Path
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=handlers,
    )


def init_services(cfg: dict, transport: httpx.AsyncBaseTransport | None = None):
    """
    Build every service from config and bind the module globals.
    `transport` is handed to the upstream and identity clients (tests pass
    an httpx.MockTransport here).
    """
    global store, wire, coach_relay, feedback_analyzer, cv_extractor, lead_intake

    store = SQLiteStore(cfg["storage"]["sqlite_path"])
    wire_cfg = cfg.get("wiretap", {})
    wire = WireLog(wire_cfg.get("path", "./data/wire.jsonl"), enabled=wire_cfg.get("enabled", True))

    upstream = GeminiUpstream.from_config(cfg, transport=transport)
    up_cfg = cfg.get("upstream", {})
    auth_cfg = cfg.get("auth", {})
    identity = IdentityResolver(
        auth_url=auth_cfg.get("url", ""),
        anon_key=auth_cfg.get("anon_key", ""),
        transport=transport,
    )

    coach_relay = CoachRelay(
        store=store,
        upstream=upstream,
        identity=identity,
        limiter=FixedWindowRateLimiter.from_config("coach_chat", cfg),
        model=up_cfg.get("chat_model", "gemini-2.5-flash"),
        wire=wire,
    )
    feedback_analyzer = FeedbackAnalyzer(
        upstream=upstream,
        limiter=FixedWindowRateLimiter.from_config("feedback", cfg),
        model=up_cfg.get("oneshot_model", "gemini-2.0-flash"),
        wire=wire,
    )
    cv_extractor = CVExtractor(
        upstream=upstream,
        limiter=FixedWindowRateLimiter.from_config("extract_cv", cfg),
        model=up_cfg.get("extract_model", "gemini-2.5-flash"),
        wire=wire,
    )
    webhook_cfg = cfg.get("webhook", {})
    lead_intake = LeadIntake(
        store=store,
        limiter=FixedWindowRateLimiter.from_config("webhook", cfg),
        secret=webhook_cfg.get("secret", ""),
        form_sources=webhook_cfg.get("form_sources", {}),
    )

    if not upstream.configured:
        logger.warning("Upstream API key missing: coach chat and CV extraction will answer 500")
    if not identity.configured:
        logger.warning("Identity provider not configured: coach chat will answer 500")
    if not lead_intake.secret:
        logger.warning("Webhook secret missing: lead intake will answer 500")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup / shutdown lifecycle."""
    cfg = get_config()
    _setup_logging(cfg)
    init_services(cfg)
    logger.info(
        "scoutrelay started, listening on %s:%s, storage %s",
        cfg["server"]["host"], cfg["server"]["port"], cfg["storage"]["sqlite_path"],
    )

    yield

    if wire:
        wire.close()
    logger.info("scoutrelay shutting down")


# ---------------------------------------------------------------------------
# App
# ---------------------------------------------------------------------------
app = FastAPI(
    title="scoutrelay",
    description="AI relay for the scout portal: coach chat, feedback triage, CV extraction.",
    version=__version__,
    lifespan=lifespan,
)


@app.exception_handler(RelayError)
async def relay_error_handler(request: Request, exc: RelayError):
    if exc.status_code >= 500:
        logger.warning("%s %s -> %d %s", request.method, request.url.path, exc.status_code, exc.message)
    return JSONResponse(exc.to_dict(), status_code=exc.status_code)


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse({"error": "Internal server error"}, status_code=500)


async def _read_body(request: Request) -> dict:
    """JSON object body, or {} when absent, malformed or not an object."""
    raw = await request.body()
    if not raw:
        return {}
    try:
        body = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError):
        return {}
    return body if isinstance(body, dict) else {}


# ---------------------------------------------------------------------------
# Coach chat
# ---------------------------------------------------------------------------

@app.post("/coach-chat")
async def coach_chat(request: Request):
    """
    Streaming coach reply. Everything that can fail cheaply (auth, rate
    limit, validation, persistence, upstream status) fails before the
    200 is committed; later failures arrive as an `error` envelope.
    """
    body = await _read_body(request)
    stream = await coach_relay.start(
        request.headers.get("authorization"),
        body,
        is_disconnected=request.is_disconnected,
    )
    return StreamingResponse(
        stream.frames(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )


@app.get("/coach-chat/conversation")
async def get_conversation(request: Request):
    return JSONResponse(await coach_relay.active_conversation(request.headers.get("authorization")))


@app.post("/coach-chat/conversation")
async def new_conversation(request: Request):
    return JSONResponse(await coach_relay.reset_conversation(request.headers.get("authorization")))


@app.get("/coach-chat/starters")
async def starters(request: Request):
    return JSONResponse(await coach_relay.starters(request.headers.get("authorization")))


# ---------------------------------------------------------------------------
# One-shot endpoints
# ---------------------------------------------------------------------------

@app.post("/feedback-analyze")
async def feedback_analyze(request: Request):
    body = await _read_body(request)
    return JSONResponse(await feedback_analyzer.analyze(client_address(request), body))


@app.post("/extract-cv")
async def extract_cv(request: Request):
    body = await _read_body(request)
    return JSONResponse(await cv_extractor.extract(client_address(request), body))


@app.post("/webhook/lead-intake")
async def webhook_lead_intake(request: Request):
    body = await _read_body(request)
    result = await lead_intake.receive(
        request.headers.get("x-webhook-secret"),
        client_address(request),
        body,
    )
    return JSONResponse(result)


# ---------------------------------------------------------------------------
# Ops
# ---------------------------------------------------------------------------

@app.get("/health")
async def health():
    return JSONResponse({"status": "ok", "version": __version__})


@app.get("/api/v1/stats")
async def stats():
    """Storage counts and assistant token usage."""
    if not store:
        return JSONResponse({"error": "Store not initialized"}, status_code=503)
    return JSONResponse(store.get_stats())
