"""Request ID middleware for promptrelay.

Assigns a ULID to every HTTP request before routing, so the id exists for
every path a request can take: the relay handler, a router-level 405, the
exception handlers and the streaming body.

  - ``scope["state"]["request_id"]`` → readable as ``request.state.request_id``
  - ``request_id_var``                → added to every structlog event by
                                        ``add_request_id``

Written as a plain ASGI middleware rather than BaseHTTPMiddleware: the latter
re-wraps streaming bodies, which changes how a relay sees client disconnects.

Registration (in create_app() in promptrelay/main.py):
    application.add_middleware(RequestIdMiddleware)
"""

from __future__ import annotations

from starlette.types import ASGIApp, Receive, Scope, Send

from promptrelay.utils.logger import reset_request_id, set_request_id
from promptrelay.utils.ulid import generate_request_id


class RequestIdMiddleware:
    """Generate and bind a request ID for each HTTP request."""

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        request_id = generate_request_id()
        scope.setdefault("state", {})["request_id"] = request_id
        token = set_request_id(request_id)
        try:
            await self.app(scope, receive, send)
        finally:
            reset_request_id(token)
