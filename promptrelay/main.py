"""promptrelay FastAPI application factory + lifespan lifecycle.

This module implements:
  - create_app() — testable application factory
  - lifespan     — @asynccontextmanager startup/shutdown sequence
  - RequestIdMiddleware — ULID request_id bound for every request
  - exception handlers — GateRejection → plain-text 4xx, router 405 → origin
                         check then plain-text 405, anything else → 500
  - app = create_app() — module-level instance for uvicorn

Startup sequence:
  1. load_config()          → app.state.config (frozen, shared by reference)
  2. create_http_client()   → app.state.http_client (pooled, shared)

Shutdown sequence (reverse):
  close shared HTTP client

Run with:
  python -m promptrelay.run
  uvicorn promptrelay.main:app --host 127.0.0.1 --port 8787 --limit-concurrency 100
"""

from __future__ import annotations

import os
from contextlib import asynccontextmanager
from typing import AsyncGenerator

import httpx
from fastapi import FastAPI, Request
from fastapi.responses import PlainTextResponse, Response
from starlette.exceptions import HTTPException as StarletteHTTPException

from promptrelay import __version__
from promptrelay.config import Config, load_config
from promptrelay.gate import GateRejection, build_rejection_response, check_method, check_origin
from promptrelay.relay.engine import router as relay_router
from promptrelay.relay.middleware import RequestIdMiddleware
from promptrelay.relay.upstream import create_http_client
from promptrelay.utils.logger import configure_logging, get_logger

# ─── Logging Setup ────────────────────────────────────────────────────────────
# Configure logging at module import time (before any other imports that may log).
DEBUG = os.getenv("DEBUG", "false").lower() == "true"
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO" if not DEBUG else "DEBUG")
JSON_LOGS = os.getenv("JSON_LOGS", "true").lower() == "true"

configure_logging(log_level=LOG_LEVEL, json_output=JSON_LOGS)
logger = get_logger(__name__)


# ─── Lifespan ─────────────────────────────────────────────────────────────────


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan — load config, open the shared upstream client."""
    logger.info("promptrelay starting up...")

    # load_config() raises SystemExit on an invalid config file, so the process
    # exits non-zero before serving a single request.
    config: Config = load_config()
    app.state.config = config

    http_client: httpx.AsyncClient = create_http_client(config.upstream.timeout_s)
    app.state.http_client = http_client
    logger.info(
        "HTTP upstream client created",
        upstream_url=config.upstream.url,
        timeout_s=config.upstream.timeout_s,
        credential_configured=bool(config.upstream.api_key),
    )

    logger.info(
        "promptrelay ready",
        allowed_origin=config.allowed_origin,
        max_prompt_length=config.limits.max_prompt_length,
        max_response_length=config.limits.max_response_length,
    )

    yield

    logger.info("promptrelay shutting down...")
    try:
        await http_client.aclose()
        logger.info("HTTP upstream client closed")
    except Exception as exc:
        logger.warning("HTTP upstream client close error (non-fatal)", error=str(exc))
    logger.info("promptrelay shutdown complete")


# ─── Application Factory ──────────────────────────────────────────────────────


def create_app() -> FastAPI:
    """Create and configure the promptrelay FastAPI application.

    Call this function directly in tests to get an isolated app instance:
        app = create_app()

    Every path is served by the relay's catch-all route, so the interactive
    docs and OpenAPI schema are disabled; they would otherwise bypass the
    origin check.
    """
    application = FastAPI(
        title="promptrelay",
        description="Origin-locked, length-capped streaming relay to a generative-text API",
        version=__version__,
        lifespan=lifespan,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )

    application.include_router(relay_router)
    application.add_middleware(RequestIdMiddleware)

    @application.exception_handler(GateRejection)
    async def gate_rejection_handler(request: Request, exc: GateRejection) -> Response:
        logger.info(
            "request_rejected",
            request_id=getattr(request.state, "request_id", None),
            status_code=exc.status_code,
            reason=exc.reason,
            method=request.method,
            path=str(request.url.path),
        )
        return build_rejection_response(exc)

    @application.exception_handler(StarletteHTTPException)
    async def http_exception_handler(
        request: Request, exc: StarletteHTTPException
    ) -> Response:
        # The router refuses methods outside RELAY_METHODS before relay_handler
        # runs; the origin check still comes first for those.
        if exc.status_code == 405:
            config: Config = getattr(request.app.state, "config", None) or Config.defaults()
            try:
                check_origin(request.headers.get("origin"), config.allowed_origin)
                check_method(request.method)
            except GateRejection as rejection:
                return await gate_rejection_handler(request, rejection)

        logger.warning(
            "HTTP exception",
            request_id=getattr(request.state, "request_id", None),
            status_code=exc.status_code,
            detail=exc.detail,
            path=str(request.url.path),
        )
        return PlainTextResponse(str(exc.detail), status_code=exc.status_code)

    @application.exception_handler(Exception)
    async def unhandled_exception_handler(
        request: Request, exc: Exception
    ) -> Response:
        logger.error(
            "Unhandled exception",
            request_id=getattr(request.state, "request_id", None),
            error=str(exc),
            error_type=type(exc).__name__,
            path=str(request.url.path),
        )
        return PlainTextResponse("Internal Server Error", status_code=500)

    return application


# ─── Module-Level App (for uvicorn) ───────────────────────────────────────────

app = create_app()
