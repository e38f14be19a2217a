"""promptrelay streaming relay package.

Layout:
    engine.py     — catch-all route: gate → upstream call → streaming response
    upstream.py   — shared httpx client, upstream payload/headers, UpstreamError
    session.py    — RelaySession character budget + RelayOutcome
    streaming.py  — relay_stream() loop + RelayStreamingResponse
    middleware.py — RequestIdMiddleware (ULID per request, bound for logging)
"""

from promptrelay.relay.session import RelayOutcome, RelaySession
from promptrelay.relay.streaming import RelayStreamingResponse, relay_response, relay_stream
from promptrelay.relay.upstream import UpstreamError, create_http_client, open_upstream_stream

__all__ = [
    "RelayOutcome",
    "RelaySession",
    "RelayStreamingResponse",
    "UpstreamError",
    "create_http_client",
    "open_upstream_stream",
    "relay_response",
    "relay_stream",
]
