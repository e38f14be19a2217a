"""Upstream call for the promptrelay streaming relay.

  - create_http_client():     shared pooled httpx.AsyncClient (one per process)
  - build_upstream_payload(): JSON body {"prompt", "stream": true, **params}
  - build_upstream_headers(): bearer credential + content type
  - open_upstream_stream():   send the request with stream=True and hand back
                              an unread, 2xx httpx.Response

Failure mapping (before any byte reaches the client):
  - httpx.TransportError (connect error, timeout, protocol error, ...) → UpstreamError
  - httpx.InvalidURL (misconfigured endpoint)                          → UpstreamError
  - upstream non-2xx status (body is closed unread)                    → UpstreamError

The handler maps every UpstreamError to a 500. No retry is attempted: the
upstream may be rate limiting, and retrying blindly only adds load.
"""

from __future__ import annotations

from typing import Any, Optional

import httpx

from promptrelay.config import UpstreamConfig
from promptrelay.constants import (
    DEFAULT_UPSTREAM_TIMEOUT_S,
    POOL_KEEPALIVE_EXPIRY,
    POOL_MAX_CONNECTIONS,
    POOL_MAX_KEEPALIVE,
)
from promptrelay.gate.checks import PromptRequest


class UpstreamError(Exception):
    """The upstream call failed before streaming could begin.

    Attributes:
        reason:      Exception class name or ``"status"`` for non-2xx answers.
        status_code: Upstream HTTP status when the upstream answered, else None.
    """

    def __init__(self, reason: str, status_code: Optional[int] = None) -> None:
        super().__init__(reason if status_code is None else f"{reason} {status_code}")
        self.reason = reason
        self.status_code = status_code


def create_http_client(timeout_s: float = DEFAULT_UPSTREAM_TIMEOUT_S) -> httpx.AsyncClient:
    """Create the shared httpx.AsyncClient with connection pooling configured.

    This client is created once at lifespan startup and stored in
    app.state.http_client. It is NEVER instantiated per-request.

    Returns:
        Configured httpx.AsyncClient ready for use.
    """
    return httpx.AsyncClient(
        limits=httpx.Limits(
            max_connections=POOL_MAX_CONNECTIONS,
            max_keepalive_connections=POOL_MAX_KEEPALIVE,
            keepalive_expiry=POOL_KEEPALIVE_EXPIRY,
        ),
        timeout=httpx.Timeout(timeout_s),
        follow_redirects=False,
    )


def build_upstream_payload(prompt_request: PromptRequest, params: dict[str, Any]) -> dict[str, Any]:
    """Merge operator params with the prompt; ``prompt`` and ``stream`` always win."""
    payload = dict(params)
    payload["prompt"] = prompt_request.prompt
    payload["stream"] = True
    return payload


def build_upstream_headers(api_key: str) -> dict[str, str]:
    """Headers for the upstream call.

    Only the relay's own credential is sent; nothing from the browser request
    (cookies, its Authorization header, Origin) is forwarded.
    """
    headers = {"Content-Type": "application/json"}
    if api_key:
        headers["Authorization"] = f"Bearer {api_key}"
    return headers


async def open_upstream_stream(
    http_client: httpx.AsyncClient,
    upstream: UpstreamConfig,
    prompt_request: PromptRequest,
) -> httpx.Response:
    """POST the prompt upstream and return the streaming response, unread.

    The caller owns the returned response and must ``aclose()`` it.

    Raises:
        UpstreamError: On any transport failure or a non-2xx status.
    """
    try:
        upstream_request = http_client.build_request(
            "POST",
            upstream.url,
            headers=build_upstream_headers(upstream.api_key),
            json=build_upstream_payload(prompt_request, upstream.params),
        )
        response = await http_client.send(upstream_request, stream=True)
    except (httpx.TransportError, httpx.InvalidURL) as exc:
        raise UpstreamError(type(exc).__name__) from exc

    if not response.is_success:
        await response.aclose()
        raise UpstreamError("status", status_code=response.status_code)

    return response
