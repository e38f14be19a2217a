"""HTTP response builders for the gate and the pre-stream failure path.

Three distinct non-streaming outcomes leave the relay handler:

  build_rejection_response():
      4xx — a gate check failed. Plain-text body naming the reason.
      The upstream is never contacted for these.

  build_preflight_response():
      204 — CORS preflight from the allowed origin. Empty body, three
      Access-Control-* headers.

  build_upstream_error_response():
      500 — the upstream could not be reached or answered non-2xx before any
      byte was streamed. Plain-text body; no upstream detail is leaked.

The streaming success path is built in ``promptrelay.relay.engine``.
"""

from __future__ import annotations

from starlette.responses import PlainTextResponse, Response

from promptrelay.gate.checks import FORWARD_METHOD, PREFLIGHT_METHOD, GateRejection

# ─── CORS headers ─────────────────────────────────────────────────────────────

ALLOW_METHODS: str = f"{FORWARD_METHOD}, {PREFLIGHT_METHOD}"
ALLOW_HEADERS: str = "Content-Type, Authorization"

UPSTREAM_ERROR_MESSAGE: str = "Error from upstream API"


def cors_headers(allowed_origin: str) -> dict[str, str]:
    """``Access-Control-Allow-Origin`` header for responses to the allowed origin."""
    return {"Access-Control-Allow-Origin": allowed_origin}


def build_rejection_response(exc: GateRejection) -> PlainTextResponse:
    """Render a :class:`GateRejection` as a plain-text 4xx response.

    No CORS headers are attached: an origin mismatch must not grant the
    browser read access, and the remaining rejections are still readable by
    status code alone.
    """
    return PlainTextResponse(exc.message, status_code=exc.status_code)


def build_preflight_response(allowed_origin: str) -> Response:
    """Build the 204 CORS preflight response with an empty body."""
    headers = cors_headers(allowed_origin)
    headers["Access-Control-Allow-Methods"] = ALLOW_METHODS
    headers["Access-Control-Allow-Headers"] = ALLOW_HEADERS
    return Response(status_code=204, headers=headers)


def build_upstream_error_response() -> PlainTextResponse:
    """Build the 500 response for upstream connect failures and non-2xx statuses."""
    return PlainTextResponse(UPSTREAM_ERROR_MESSAGE, status_code=500)
