"""Request gate checks for promptrelay.

Validates transport-level preconditions before any upstream work begins.
The relay handler runs these in a fixed order and the first failure
short-circuits:

  1. check_origin()   — Origin header must equal the configured origin (403)
  2. is_preflight()   — OPTIONS is answered with CORS headers by the handler
  3. check_method()   — only POST is forwarded (405)
  4. read_body()      — rolling byte cap while reading the body (413)
  5. parse_prompt()   — JSON parse (400), prompt presence (400), prompt length (400)

Every failure is raised as :class:`GateRejection` and rendered as a plain-text
response by the exception handler registered in ``create_app()``. None of these
functions perform I/O other than ``read_body()`` reading the request stream.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Optional

from starlette.requests import Request

# ─── Wire messages ────────────────────────────────────────────────────────────
# These strings are part of the client contract; browser code matches on them.

FORBIDDEN_MESSAGE: str = "Forbidden"
METHOD_NOT_ALLOWED_MESSAGE: str = "Method Not Allowed"
PAYLOAD_TOO_LARGE_MESSAGE: str = "Payload Too Large"
INVALID_JSON_MESSAGE: str = "Bad Request: Invalid JSON"
MISSING_PROMPT_MESSAGE: str = "Bad Request: Missing prompt"
# Unbalanced parenthesis is part of the wire format.
PROMPT_TOO_LONG_TEMPLATE: str = "Bad Request: Max prompt length exceeded ({actual}>{maximum}"

FORWARD_METHOD: str = "POST"
PREFLIGHT_METHOD: str = "OPTIONS"


class GateRejection(Exception):
    """A request failed a gate check and must not reach the upstream.

    Attributes:
        status_code: HTTP status to return (403, 405, 413 or 400).
        message:     Plain-text response body.
        reason:      Short machine-readable tag used in log events.
    """

    def __init__(self, status_code: int, message: str, reason: str) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.message = message
        self.reason = reason


@dataclass(frozen=True)
class PromptRequest:
    """A prompt that passed every gate check. Only ``parse_prompt()`` builds these."""

    prompt: str

    @property
    def length(self) -> int:
        return len(self.prompt)


def check_origin(origin: Optional[str], allowed_origin: str) -> None:
    """Reject unless ``origin`` is exactly the configured allowed origin.

    An empty ``allowed_origin`` (unconfigured deployment) rejects everything,
    including requests that send an empty Origin header.

    Raises:
        GateRejection(403)
    """
    if not allowed_origin or origin is None or origin != allowed_origin:
        raise GateRejection(403, FORBIDDEN_MESSAGE, "origin_mismatch")


def is_preflight(method: str) -> bool:
    """True for the CORS preflight verb."""
    return method.upper() == PREFLIGHT_METHOD


def check_method(method: str) -> None:
    """Reject every method other than POST (run after preflight handling).

    Raises:
        GateRejection(405)
    """
    if method.upper() != FORWARD_METHOD:
        raise GateRejection(405, METHOD_NOT_ALLOWED_MESSAGE, "method_not_allowed")


async def read_body(request: Request, max_bytes: int) -> bytes:
    """Read the request body, aborting as soon as it exceeds ``max_bytes``.

    The body is accumulated chunk by chunk with a rolling cap so an oversized
    (or chunked, length-less) upload is never fully buffered.

    Raises:
        GateRejection(413)
    """
    body_chunks: list[bytes] = []
    total_size = 0

    async for chunk in request.stream():
        total_size += len(chunk)
        if total_size > max_bytes:
            raise GateRejection(413, PAYLOAD_TOO_LARGE_MESSAGE, "body_too_large")
        body_chunks.append(chunk)

    return b"".join(body_chunks)


def parse_prompt(body: bytes, max_prompt_length: int) -> PromptRequest:
    """Parse the JSON body and extract a validated prompt.

    Rules:
      - Body must be valid JSON. ``json.loads`` accepts UTF-8/16/32 bytes;
        undecodable bytes, syntax errors and pathological nesting are all
        reported as invalid JSON rather than raised.
      - A prompt that cannot be encoded as UTF-8 (a lone surrogate escape
        such as ``"\\ud800"``) is also invalid JSON: it could never be sent
        upstream.
      - The document must be an object with a non-empty string ``prompt``.
        Any other shape (array, null, number prompt, empty string) is a
        missing prompt.
      - ``len(prompt)`` counts Unicode code points and must not exceed
        ``max_prompt_length``.

    Raises:
        GateRejection(400): with one of the three Bad Request messages.
    """
    try:
        payload: Any = json.loads(body)
    except (ValueError, RecursionError):
        raise GateRejection(400, INVALID_JSON_MESSAGE, "invalid_json") from None

    prompt = payload.get("prompt") if isinstance(payload, dict) else None
    if not isinstance(prompt, str) or not prompt:
        raise GateRejection(400, MISSING_PROMPT_MESSAGE, "missing_prompt")

    # JSON escapes can produce lone surrogates, which have no UTF-8 encoding.
    try:
        prompt.encode("utf-8")
    except UnicodeEncodeError:
        raise GateRejection(400, INVALID_JSON_MESSAGE, "invalid_json") from None

    if len(prompt) > max_prompt_length:
        raise GateRejection(
            400,
            PROMPT_TOO_LONG_TEMPLATE.format(actual=len(prompt), maximum=max_prompt_length),
            "prompt_too_long",
        )

    return PromptRequest(prompt=prompt)
