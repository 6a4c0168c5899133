"""
RELAYCHAT MAIN API
==================

This module defines the FastAPI application and its HTTP endpoints.

ENDPOINTS:
  GET  /          - Returns API name and list of endpoints.
  GET  /health    - Returns whether both API keys are configured.
  POST /api/chat  - Runs a Tavily search for the latest user message, injects the
                    results as the system message, calls Together with stream=true
                    and relays a re-framed SSE stream (data: <text>\n\n).

ERRORS:
  Anything that fails before the stream starts (missing key, bad body, provider
  unreachable after retries) is returned as HTTP 500 with
  { "error", "timestamp", "details" }. The stack trace is only included when
  APP_ENV=development. Once streaming has begun, a read failure simply ends the
  stream abnormally.

STARTUP:
  The lifespan function creates the shared httpx.AsyncClient used for upstream
  streams and closes it on shutdown.
"""

import json
import logging
import traceback
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from functools import lru_cache
from typing import Optional

import httpx
import uvicorn
from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from starlette.background import BackgroundTask

from app.exceptions import MessageValidationError, RelayError
from app.models import ErrorDetails, ErrorResponse, parse_chat_request
from app.services.chat_service import RelayChatService
from config import RelaySettings, load_settings


# -----------------------------------------------------------------------------
# LOGGING
# -----------------------------------------------------------------------------
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s | %(levelname)-8s | %(name)-20s | %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S'
)
logger = logging.getLogger("RelayChat")

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
}


# -----------------------------------------------------------------------------
# SHARED RESOURCES
# -----------------------------------------------------------------------------
# Set during startup (lifespan) and closed on shutdown.
http_client: Optional[httpx.AsyncClient] = None


@lru_cache
def get_settings() -> RelaySettings:
    """Settings are read from the environment once per process."""
    return load_settings()


def _new_http_client(settings: RelaySettings) -> httpx.AsyncClient:
    # No read timeout: the stream itself is unbounded, only connecting is.
    return httpx.AsyncClient(timeout=httpx.Timeout(None, connect=settings.connect_timeout))


def active_settings(app: FastAPI) -> RelaySettings:
    """Settings as the request handlers see them, honouring dependency overrides."""
    return app.dependency_overrides.get(get_settings, get_settings)()


def get_http_client() -> httpx.AsyncClient:
    if http_client is None:
        raise HTTPException(status_code=503, detail="HTTP client not initialized")
    return http_client


def get_configured_settings(settings: RelaySettings = Depends(get_settings)) -> RelaySettings:
    """Fail fast on missing keys; nothing has touched the network yet."""
    settings.require_keys()
    return settings


def get_chat_service(
    settings: RelaySettings = Depends(get_configured_settings),
    client: httpx.AsyncClient = Depends(get_http_client),
) -> RelayChatService:
    return RelayChatService(settings, client)


@asynccontextmanager
async def lifespan(app: FastAPI):
    global http_client

    settings = active_settings(app)
    logger.info("=" * 60)
    logger.info("RelayChat - Starting Up...")
    http_client = _new_http_client(settings)
    logger.info("Model: %s", settings.model)
    logger.info("Together key configured: %s", bool(settings.together_api_key))
    logger.info("Tavily key configured: %s", bool(settings.tavily_api_key))
    logger.info("=" * 60)

    yield

    logger.info("Shutting down RelayChat...")
    if http_client is not None:
        await http_client.aclose()
        http_client = None


# -------------------------------------------------------------------------
# FASTAPI APP AND CORS
# -------------------------------------------------------------------------
app = FastAPI(
    title="RelayChat API",
    description="Search-augmented chat completions relayed as a clean SSE stream",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# -------------------------------------------------------------------------
# ERROR ENVELOPE
# -------------------------------------------------------------------------

def error_response(exc: Exception, include_stack: bool) -> JSONResponse:
    stack = None
    if include_stack:
        stack = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
    body = ErrorResponse(
        error=str(exc) or "An unexpected error occurred",
        timestamp=datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
        details=ErrorDetails(name=type(exc).__name__, stack=stack),
    )
    return JSONResponse(
        status_code=500,
        content=body.model_dump(exclude_none=True),
        headers={"Cache-Control": "no-store"},
        media_type="application/json; charset=utf-8",
    )


@app.exception_handler(RelayError)
async def relay_error_handler(request: Request, exc: RelayError):
    logger.error("Chat API Error: %s", exc, exc_info=exc)
    return error_response(exc, active_settings(request.app).is_development)


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.error("Unexpected error: %s", exc, exc_info=exc)
    return error_response(exc, active_settings(request.app).is_development)


# =========================================================================
# API ENDPOINTS
# =========================================================================

@app.get("/")
async def root():
    """Return the API name and a short description of each endpoint."""
    return {
        "message": "RelayChat API",
        "endpoints": {
            "/api/chat": "Search-augmented chat, streamed as SSE",
            "/health": "System health check",
        },
    }


@app.get("/health")
async def health(settings: RelaySettings = Depends(get_settings)):
    return {
        "status": "healthy",
        "together_configured": bool(settings.together_api_key),
        "tavily_configured": bool(settings.tavily_api_key),
    }


@app.post("/api/chat")
async def chat(request: Request, chat_service: RelayChatService = Depends(get_chat_service)):
    """
    Stream a search-augmented completion.

    REQUEST BODY:
    {
        "messages": [{"role": "user", "content": "What happened in AI this week?"}]
    }

    RESPONSE (text/event-stream):
        data: Here\n\n
        data:  is what\n\n
        ...
        data: [DONE]\n\n
    """
    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise MessageValidationError("Failed to parse request body as JSON") from e

    chat_request = parse_chat_request(body)
    transformer = await chat_service.open_stream(chat_request)

    # The background task covers a client that disconnects before the body is read.
    return StreamingResponse(
        transformer,
        media_type="text/event-stream",
        headers=SSE_HEADERS,
        background=BackgroundTask(transformer.release),
    )


# -------------------------------------------------------------------------
# STANDALONE RUN (python -m app.main)
# -------------------------------------------------------------------------
def run():
    """Start the uvicorn server (same as run.py)."""
    uvicorn.run(
        "app.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        log_level="info"
    )

if __name__ == "__main__":
    run()
