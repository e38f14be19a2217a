"""Streaming relay loop with inline length capping.

``relay_stream()`` is the async generator handed to the downstream
StreamingResponse. It is the only reader of the upstream body and the only
producer of the downstream body, and it pulls one chunk at a time:

  upstream chunk ──► RelaySession.feed() ──► yield bytes ──► next pull
                          │
                          └─ budget spent ──► stop pulling, close upstream

Termination paths:
  - upstream end of stream → decoder flushed, downstream closed normally
  - budget spent           → truncated piece yielded (or none, if the budget
                             was met exactly), downstream closed normally
  - read / decode error    → exception re-raised; the already-started response
                             is aborted (no terminating chunk reaches the client)
  - client disconnect      → generator closed or cancelled at its await point

In every path the upstream response is closed in a cancellation-shielded
``finally`` so its connection goes back to the pool even while the request
task is being cancelled.

``RelayStreamingResponse`` closes the generator (and the upstream) when the
downstream write fails. Plain ``StreamingResponse`` would leave the generator
suspended until garbage collection.
"""

from __future__ import annotations

import asyncio
import time
from typing import AsyncGenerator, Optional

import anyio
import httpx
from starlette.responses import StreamingResponse
from starlette.types import Send

from promptrelay.relay.session import RelayOutcome, RelaySession
from promptrelay.utils.logger import get_logger

logger = get_logger(__name__)


async def relay_stream(
    upstream_response: httpx.Response,
    session: RelaySession,
    request_id: str,
) -> AsyncGenerator[bytes, None]:
    """Relay the upstream body to the client, enforcing the session budget.

    Args:
        upstream_response: Streaming httpx.Response (``stream=True`` on send),
                           already checked for a 2xx status.
        session:           Fresh RelaySession for this request.
        request_id:        ULID for log correlation.

    Yields:
        Byte chunks in upstream order. Only the last one may be truncated.
    """
    started = time.perf_counter()
    logger.info(
        "relay_started",
        request_id=request_id,
        max_response_length=session.max_chars,
    )

    try:
        if not session.exhausted:
            async for chunk in upstream_response.aiter_bytes():
                forward = session.feed(chunk)
                if forward:
                    yield forward
                if session.exhausted:
                    break
            else:
                tail = session.finish()
                if tail:
                    yield tail

        if session.truncated:
            session.outcome = RelayOutcome.TRUNCATED
        elif session.exhausted:
            session.outcome = RelayOutcome.BUDGET_REACHED
        else:
            session.outcome = RelayOutcome.COMPLETED

    except (GeneratorExit, asyncio.CancelledError):
        session.outcome = RelayOutcome.DISCONNECTED
        raise

    except Exception as exc:
        session.outcome = RelayOutcome.FAILED
        logger.warning(
            "relay_failed",
            request_id=request_id,
            error_type=type(exc).__name__,
            error=str(exc),
            chars_emitted=session.total_emitted,
            chunks_read=session.chunks_read,
        )
        raise

    finally:
        with anyio.CancelScope(shield=True):
            await upstream_response.aclose()
        logger.info(
            "relay_finished",
            request_id=request_id,
            outcome=session.outcome.value if session.outcome else None,
            chars_emitted=session.total_emitted,
            chunks_read=session.chunks_read,
            truncated=session.truncated,
            duration_ms=round((time.perf_counter() - started) * 1000, 2),
        )


class RelayStreamingResponse(StreamingResponse):
    """StreamingResponse that always releases the relay generator and upstream.

    If sending to the client fails (disconnect, broken pipe) Starlette stops
    iterating but does not close the body iterator. This subclass closes it,
    and closes the upstream response directly in case the generator never
    started (failure while sending the response headers).
    """

    def __init__(
        self,
        content: AsyncGenerator[bytes, None],
        upstream_response: httpx.Response,
        status_code: int = 200,
        headers: Optional[dict[str, str]] = None,
        media_type: Optional[str] = None,
    ) -> None:
        super().__init__(content, status_code=status_code, headers=headers, media_type=media_type)
        self._relay = content
        self._upstream_response = upstream_response

    async def stream_response(self, send: Send) -> None:
        try:
            await super().stream_response(send)
        finally:
            with anyio.CancelScope(shield=True):
                await self._relay.aclose()
                await self._upstream_response.aclose()


def relay_response(
    upstream_response: httpx.Response,
    session: RelaySession,
    request_id: str,
    headers: dict[str, str],
) -> RelayStreamingResponse:
    """Build the 200 streaming response wrapping ``relay_stream()``.

    Headers are sent before the first upstream chunk is read.
    """
    return RelayStreamingResponse(
        relay_stream(upstream_response, session, request_id=request_id),
        upstream_response=upstream_response,
        status_code=200,
        headers=headers,
        media_type="application/json",
    )
