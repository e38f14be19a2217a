"""Relay handler for promptrelay.

One catch-all route receives every request and runs, strictly in order:

  1. Request gate — origin (403), preflight (204), method (405), body size
     (413), JSON (400), prompt presence (400), prompt length (400).
     Failures raise GateRejection; the handler in main.py renders them.
  2. Upstream call — POST {"prompt", "stream": true} with the bearer
     credential. Connect failure or non-2xx → 500, nothing streamed.
  3. Streaming relay — 200 with Content-Type and Access-Control-Allow-Origin
     sent immediately; body produced by relay_stream() under the
     response-length budget.

Shared resources come from app.state (set by the lifespan): the frozen Config
and the pooled httpx.AsyncClient. The handler keeps no state between requests;
each relay gets its own RelaySession. The request ID is assigned by
RequestIdMiddleware before routing.
"""

from __future__ import annotations

import httpx
from fastapi import APIRouter, Request, Response

from promptrelay.config import Config
from promptrelay.gate import (
    build_preflight_response,
    build_upstream_error_response,
    check_method,
    check_origin,
    cors_headers,
    is_preflight,
    parse_prompt,
    read_body,
)
from promptrelay.relay.session import RelaySession
from promptrelay.relay.streaming import relay_response
from promptrelay.relay.upstream import UpstreamError, open_upstream_stream
from promptrelay.utils.logger import get_logger

logger = get_logger(__name__)

router = APIRouter(tags=["relay"])

# Methods routed to relay_handler so they pass through the origin check before
# being refused. Anything outside this list is refused by the router itself;
# the 405 handler in main.py applies the origin check to those as well.
RELAY_METHODS: list[str] = ["GET", "HEAD", "POST", "PUT", "DELETE", "PATCH", "OPTIONS", "TRACE"]


@router.api_route("/{path:path}", methods=RELAY_METHODS)
async def relay_handler(request: Request, path: str) -> Response:
    """Gate the request, call the upstream, and stream the capped response back.

    Returns:
        204 preflight response, 500 upstream error response, or the 200
        RelayStreamingResponse.

    Raises:
        GateRejection: On the first failed gate check.
    """
    config: Config = request.app.state.config
    http_client: httpx.AsyncClient = request.app.state.http_client

    request_id: str = request.state.request_id

    # ── Request gate ──────────────────────────────────────────────────────────
    check_origin(request.headers.get("origin"), config.allowed_origin)

    if is_preflight(request.method):
        logger.debug("preflight", request_id=request_id, path=path)
        return build_preflight_response(config.allowed_origin)

    check_method(request.method)

    body = await read_body(request, config.limits.max_request_body_bytes)
    prompt_request = parse_prompt(body, config.limits.max_prompt_length)

    # ── Upstream call ─────────────────────────────────────────────────────────
    try:
        upstream_response = await open_upstream_stream(http_client, config.upstream, prompt_request)
    except UpstreamError as exc:
        if exc.status_code is None:
            logger.warning(
                "upstream_unavailable",
                request_id=request_id,
                upstream_url=config.upstream.url,
                error_type=exc.reason,
                error=str(exc.__cause__) if exc.__cause__ else None,
            )
        else:
            logger.warning(
                "upstream_error_status",
                request_id=request_id,
                upstream_url=config.upstream.url,
                status_code=exc.status_code,
            )
        return build_upstream_error_response()

    logger.info(
        "request_relayed",
        request_id=request_id,
        path=path,
        prompt_length=prompt_request.length,
        upstream=config.upstream.url,
        status_code=upstream_response.status_code,
    )

    # ── Streaming relay ───────────────────────────────────────────────────────
    session = RelaySession(max_chars=config.limits.max_response_length)
    return relay_response(
        upstream_response,
        session,
        request_id=request_id,
        headers=cors_headers(config.allowed_origin),
    )
