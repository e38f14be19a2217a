"""promptrelay request gate package.

Re-exports the public API for ergonomic imports:

    from promptrelay.gate import GateRejection, PromptRequest, parse_prompt

Layout:
    checks.py    — ordered validation checks + GateRejection + PromptRequest
    responses.py — plain-text rejection, preflight and upstream-error responses
"""

from promptrelay.gate.checks import (
    GateRejection,
    PromptRequest,
    check_method,
    check_origin,
    is_preflight,
    parse_prompt,
    read_body,
)
from promptrelay.gate.responses import (
    build_preflight_response,
    build_rejection_response,
    build_upstream_error_response,
    cors_headers,
)

__all__ = [
    "GateRejection",
    "PromptRequest",
    "build_preflight_response",
    "build_rejection_response",
    "build_upstream_error_response",
    "check_method",
    "check_origin",
    "cors_headers",
    "is_preflight",
    "parse_prompt",
    "read_body",
]
