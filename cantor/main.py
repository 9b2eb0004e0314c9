"""
FastAPI application, the Cantor entry point.

    POST /api/chat      {message, topic?} -> {reply, history}
    GET  /api/history   -> {history}
    OPTIONS *           -> 204, CORS headers only
    anything else       -> 404 "Not found"

Each request is resolved to a session key and handed to that session's
ConversationMemory; the edge only shapes CORS and cookie headers.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse, Response
from starlette.exceptions import HTTPException as StarletteHTTPException

from cantor.backends import BaseBackend, make_backend
from cantor.config import (
    ChatSettings,
    SessionSettings,
    get_chat_settings,
    get_config,
    get_session_settings,
)
from cantor.cors import cors_headers
from cantor.errors import CantorError, NotFound, ValidationError
from cantor.memory import MemoryRegistry
from cantor.session import SessionIdentity, resolve_session, set_session_cookie
from cantor.storage.sqlite_store import SQLiteStore


# ---------------------------------------------------------------------------
# Globals, initialized at startup
# ---------------------------------------------------------------------------
sqlite_store: SQLiteStore | None = None
backend: BaseBackend | None = None
registry: MemoryRegistry | None = None
chat_settings: ChatSettings | None = None
session_settings: SessionSettings = SessionSettings()

logger = logging.getLogger(__name__)


def _setup_logging(cfg: dict):
    log_cfg = cfg.get("logging", {})
    level = getattr(logging, log_cfg.get("level", "INFO").upper(), logging.INFO)
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


def _build_backend(cfg: dict) -> BaseBackend:
    b_cfg = cfg.get("backend", {})
    backend_type = b_cfg.get("type", "workers_ai")
    kwargs = {
        "name": backend_type,
        "url": b_cfg.get("url", ""),
        "timeout": int(b_cfg.get("timeout", 120)),
        "api_key": b_cfg.get("api_key", ""),
    }
    if backend_type == "workers_ai":
        kwargs["account_id"] = b_cfg.get("account_id", "")
    return make_backend(backend_type, **kwargs)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup / shutdown lifecycle."""
    global sqlite_store, backend, registry, chat_settings, session_settings

    cfg = get_config()
    _setup_logging(cfg)

    chat_settings = get_chat_settings(cfg)
    session_settings = get_session_settings(cfg)
    sqlite_store = SQLiteStore(cfg.get("storage", {}).get("sqlite_path", "./data/cantor.db"))

    if chat_settings.mock:
        backend = None
        logger.warning("Mock replies: ENABLED, no model backend will be called")
    else:
        backend = _build_backend(cfg)
        logger.info("Model backend: %r", backend)

    registry = MemoryRegistry(sqlite_store, backend, chat_settings)

    server = cfg.get("server", {})
    logger.info(
        "Cantor started, listening on %s:%s, model %s, history limit %d",
        server.get("host", "0.0.0.0"),
        server.get("port", 8000),
        chat_settings.model,
        chat_settings.history_limit,
    )

    yield

    logger.info("Cantor shutting down")


# ---------------------------------------------------------------------------
# App
# ---------------------------------------------------------------------------
app = FastAPI(
    title="Cantor",
    description="A Baroque study partner with a short memory.",
    version="1.0.0",
    lifespan=lifespan,
)


@app.middleware("http")
async def cors_middleware(request: Request, call_next):
    """Answer every preflight with 204 and stamp CORS headers on all responses."""
    if request.method == "OPTIONS":
        response = Response(status_code=204)
    else:
        response = await call_next(request)
    response.headers.update(
        cors_headers(request.headers.get("Origin"), session_settings.header)
    )
    return response


@app.exception_handler(CantorError)
async def cantor_error_handler(request: Request, exc: CantorError):
    return JSONResponse(exc.to_dict(), status_code=exc.status_code)


@app.exception_handler(NotFound)
async def not_found_handler(request: Request, exc: NotFound):
    return PlainTextResponse(exc.message, status_code=exc.status_code)


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    # Wrong verb on a known path is treated like an unknown path.
    if exc.status_code in (404, 405):
        return await not_found_handler(request, NotFound())
    return JSONResponse({"error": exc.detail}, status_code=exc.status_code)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

async def _read_body(request: Request) -> dict:
    """Parse the JSON body; anything unparseable counts as empty."""
    try:
        body = await request.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


def _finish(request: Request, identity: SessionIdentity, payload: dict, status_code: int = 200):
    response = JSONResponse(payload, status_code=status_code)
    if identity.should_issue_cookie:
        set_session_cookie(
            response,
            identity.id,
            session_settings,
            secure=request.url.scheme == "https",
        )
    return response


async def _dispatch(request: Request, method: str, payload: dict | None = None):
    identity = resolve_session(request.headers, request.cookies, session_settings)
    memory = registry.get(identity.id)
    try:
        result = await memory.handle(method, payload)
    except CantorError as e:
        return _finish(request, identity, e.to_dict(), status_code=e.status_code)
    return _finish(request, identity, result)


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@app.post("/api/chat")
async def chat(request: Request):
    body = await _read_body(request)
    message = body.get("message")
    if not isinstance(message, str) or not message.strip():
        raise ValidationError("Please include a message.")

    topic = body.get("topic")
    if not isinstance(topic, str) or not topic:
        topic = None

    return await _dispatch(request, "POST", {"message": message, "topic": topic})


@app.get("/api/history")
async def history(request: Request):
    return await _dispatch(request, "GET")
