"""Unit tests for the promptrelay request gate (promptrelay/gate/checks.py).

Covers:
  - check_origin(): exact match only; empty configured origin rejects all
  - is_preflight() / check_method(): OPTIONS answered, only POST forwarded
  - read_body(): rolling byte cap → 413
  - parse_prompt(): invalid JSON, missing prompt, prompt too long (400)
  - Prompt length is counted in characters, not bytes
  - Response builders: rejection, preflight and upstream-error responses
"""

from __future__ import annotations

import json

import pytest
from starlette.requests import Request

from promptrelay.gate import (
    GateRejection,
    PromptRequest,
    build_preflight_response,
    build_rejection_response,
    build_upstream_error_response,
    check_method,
    check_origin,
    cors_headers,
    is_preflight,
    parse_prompt,
    read_body,
)

ORIGIN = "https://example.com"


def _request_with_body(*chunks: bytes) -> Request:
    """Build a POST Request whose body arrives in the given ASGI chunks."""
    messages = [
        {"type": "http.request", "body": chunk, "more_body": index < len(chunks) - 1}
        for index, chunk in enumerate(chunks or (b"",))
    ]

    async def receive() -> dict:
        return messages.pop(0)

    scope = {
        "type": "http",
        "method": "POST",
        "path": "/",
        "query_string": b"",
        "headers": [],
    }
    return Request(scope, receive)


# ─── Origin ───────────────────────────────────────────────────────────────────


class TestCheckOrigin:
    """Origin header must equal the configured origin exactly."""

    def test_exact_match_passes(self) -> None:
        check_origin(ORIGIN, ORIGIN)

    @pytest.mark.parametrize(
        "origin",
        [
            None,
            "",
            "https://evil.com",
            "https://example.com/",
            "http://example.com",
            "https://EXAMPLE.com",
            "https://example.com:443",
            "https://sub.example.com",
        ],
    )
    def test_mismatch_is_forbidden(self, origin: str | None) -> None:
        """Absent, empty and near-miss origins are all rejected with 403."""
        with pytest.raises(GateRejection) as exc_info:
            check_origin(origin, ORIGIN)
        assert exc_info.value.status_code == 403
        assert exc_info.value.message == "Forbidden"
        assert exc_info.value.reason == "origin_mismatch"

    @pytest.mark.parametrize("origin", [None, "", ORIGIN])
    def test_unconfigured_origin_rejects_everything(self, origin: str | None) -> None:
        """An empty allowed origin never matches, not even an empty header."""
        with pytest.raises(GateRejection) as exc_info:
            check_origin(origin, "")
        assert exc_info.value.status_code == 403


# ─── Method ───────────────────────────────────────────────────────────────────


class TestMethod:
    """OPTIONS is a preflight; everything else but POST is a 405."""

    @pytest.mark.parametrize("method", ["OPTIONS", "options"])
    def test_options_is_preflight(self, method: str) -> None:
        assert is_preflight(method) is True

    @pytest.mark.parametrize("method", ["POST", "GET", "HEAD"])
    def test_other_methods_are_not_preflight(self, method: str) -> None:
        assert is_preflight(method) is False

    def test_post_passes(self) -> None:
        check_method("POST")

    @pytest.mark.parametrize("method", ["GET", "HEAD", "PUT", "DELETE", "PATCH", "TRACE", "PROPFIND"])
    def test_non_post_is_method_not_allowed(self, method: str) -> None:
        with pytest.raises(GateRejection) as exc_info:
            check_method(method)
        assert exc_info.value.status_code == 405
        assert exc_info.value.message == "Method Not Allowed"


# ─── Body size ────────────────────────────────────────────────────────────────


class TestReadBody:
    """Rolling byte cap while reading the request body."""

    @pytest.mark.asyncio
    async def test_body_under_cap_is_joined(self) -> None:
        request = _request_with_body(b'{"prompt":', b' "hi"}')
        assert await read_body(request, max_bytes=1024) == b'{"prompt": "hi"}'

    @pytest.mark.asyncio
    async def test_body_exactly_at_cap_is_accepted(self) -> None:
        request = _request_with_body(b"x" * 16)
        assert await read_body(request, max_bytes=16) == b"x" * 16

    @pytest.mark.asyncio
    async def test_body_over_cap_is_payload_too_large(self) -> None:
        """The cap trips as soon as the running total passes it."""
        request = _request_with_body(b"x" * 10, b"x" * 10, b"x" * 10)
        with pytest.raises(GateRejection) as exc_info:
            await read_body(request, max_bytes=15)
        assert exc_info.value.status_code == 413
        assert exc_info.value.message == "Payload Too Large"

    @pytest.mark.asyncio
    async def test_empty_body(self) -> None:
        request = _request_with_body()
        assert await read_body(request, max_bytes=10) == b""


# ─── Prompt parsing ───────────────────────────────────────────────────────────


class TestParsePrompt:
    """JSON parse, prompt presence and prompt length."""

    def test_valid_prompt(self) -> None:
        result = parse_prompt(b'{"prompt": "hello"}', max_prompt_length=1000)
        assert result == PromptRequest(prompt="hello")
        assert result.length == 5

    def test_extra_fields_are_ignored(self) -> None:
        result = parse_prompt(b'{"prompt": "hi", "model": "other", "stream": false}', 1000)
        assert result.prompt == "hi"

    @pytest.mark.parametrize("body", [b"", b"{", b"not json", b'{"prompt": "x",}', b"\xff\xfe\x00"])
    def test_invalid_json(self, body: bytes) -> None:
        with pytest.raises(GateRejection) as exc_info:
            parse_prompt(body, 1000)
        assert exc_info.value.status_code == 400
        assert exc_info.value.message == "Bad Request: Invalid JSON"

    def test_deeply_nested_json_is_invalid_not_crash(self) -> None:
        body = b"[" * 100_000 + b"]" * 100_000
        with pytest.raises(GateRejection) as exc_info:
            parse_prompt(body, 1000)
        assert exc_info.value.status_code == 400

    @pytest.mark.parametrize(
        "body",
        [
            b"{}",
            b'{"prompt": ""}',
            b'{"prompt": null}',
            b'{"prompt": 42}',
            b'{"prompt": ["a"]}',
            b'{"text": "hello"}',
            b'["prompt"]',
            b'"prompt"',
            b"null",
        ],
    )
    def test_missing_prompt(self, body: bytes) -> None:
        with pytest.raises(GateRejection) as exc_info:
            parse_prompt(body, 1000)
        assert exc_info.value.status_code == 400
        assert exc_info.value.message == "Bad Request: Missing prompt"

    @pytest.mark.parametrize("escape", [b"\\ud800", b"\\udfff", b"abc\\udc00def"])
    def test_lone_surrogate_prompt_is_invalid_json(self, escape: bytes) -> None:
        """A lone surrogate escape parses but has no UTF-8 form."""
        with pytest.raises(GateRejection) as exc_info:
            parse_prompt(b'{"prompt": "' + escape + b'"}', 1000)
        assert exc_info.value.status_code == 400
        assert exc_info.value.message == "Bad Request: Invalid JSON"

    def test_surrogate_pair_prompt_is_accepted(self) -> None:
        """A correctly paired escape is one ordinary character."""
        result = parse_prompt(b'{"prompt": "\\ud83d\\ude42"}', 1000)
        assert result.prompt == "\U0001f642"
        assert result.length == 1

    def test_prompt_at_limit_is_accepted(self) -> None:
        body = json.dumps({"prompt": "a" * 1000}).encode()
        assert parse_prompt(body, 1000).length == 1000

    def test_prompt_over_limit_message(self) -> None:
        """1,500-character prompt against a 1,000 limit names both numbers."""
        body = json.dumps({"prompt": "a" * 1500}).encode()
        with pytest.raises(GateRejection) as exc_info:
            parse_prompt(body, 1000)
        assert exc_info.value.status_code == 400
        assert exc_info.value.message == "Bad Request: Max prompt length exceeded (1500>1000"

    def test_prompt_length_counts_characters_not_bytes(self) -> None:
        """Ten 3-byte characters are ten characters."""
        body = json.dumps({"prompt": "€" * 10}, ensure_ascii=False).encode("utf-8")
        assert parse_prompt(body, 10).length == 10
        with pytest.raises(GateRejection):
            parse_prompt(body, 9)


# ─── Response builders ────────────────────────────────────────────────────────


class TestResponses:
    """Plain-text rejections, 204 preflight, generic upstream failure."""

    def test_rejection_response_is_plain_text(self) -> None:
        response = build_rejection_response(GateRejection(403, "Forbidden", "origin_mismatch"))
        assert response.status_code == 403
        assert response.body == b"Forbidden"
        assert response.headers["content-type"].startswith("text/plain")

    def test_rejection_response_has_no_cors_header(self) -> None:
        response = build_rejection_response(GateRejection(405, "Method Not Allowed", "method_not_allowed"))
        assert "access-control-allow-origin" not in response.headers

    def test_preflight_response(self) -> None:
        response = build_preflight_response(ORIGIN)
        assert response.status_code == 204
        assert response.body == b""
        assert response.headers["access-control-allow-origin"] == ORIGIN
        assert response.headers["access-control-allow-methods"] == "POST, OPTIONS"
        assert response.headers["access-control-allow-headers"] == "Content-Type, Authorization"

    def test_upstream_error_response_is_generic(self) -> None:
        response = build_upstream_error_response()
        assert response.status_code == 500
        assert response.body == b"Error from upstream API"

    def test_cors_headers(self) -> None:
        assert cors_headers(ORIGIN) == {"Access-Control-Allow-Origin": ORIGIN}
