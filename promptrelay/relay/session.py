"""Per-request character accounting for the streaming relay.

A :class:`RelaySession` decides, chunk by chunk, what part of the upstream
stream may be forwarded under the response budget. It performs no I/O; the
async loop in ``promptrelay.relay.streaming`` feeds it.

Accounting rules:
  - Every chunk is decoded with ONE incremental decoder that lives for the
    whole session, so a multi-byte character split across chunks is counted
    once, when it completes.
  - Bytes of an incomplete trailing character are held back and forwarded
    together with the chunk that completes them. The concatenation of all
    forwarded bytes is therefore byte-identical to upstream, and the client
    never receives half a character even if the stream is cut right after.
  - A chunk that keeps ``total_emitted`` within ``max_chars`` is forwarded as
    its original bytes. A chunk that would overflow is cut to the remaining
    budget of characters, re-encoded, and the session becomes exhausted.
  - Decode errors are not replaced: ``UnicodeDecodeError`` propagates to the
    loop, which aborts the downstream stream.

Lengths are Unicode code points (``len(str)``).
"""

from __future__ import annotations

import codecs
import enum
from typing import Optional

from promptrelay.constants import RELAY_ENCODING


class RelayOutcome(str, enum.Enum):
    """How a relay session ended. Logged only; never sent to the client."""

    COMPLETED = "completed"            # upstream reached end of stream
    TRUNCATED = "truncated"            # last piece cut to the budget; closed gracefully
    BUDGET_REACHED = "budget_reached"  # budget spent exactly; upstream not read further
    FAILED = "failed"                  # upstream read or decode error; stream aborted
    DISCONNECTED = "disconnected"      # downstream client went away


class RelaySession:
    """Cumulative character budget for one relayed response.

    Args:
        max_chars: Response budget in characters (``limits.max_response_length``).
        encoding:  Upstream body encoding.

    Usage::

        session = RelaySession(max_chars=10)
        session.feed(b"abcde")    # -> b"abcde"
        session.feed(b"fghijkl")  # -> b"fghij", session.exhausted is True
    """

    def __init__(self, max_chars: int, encoding: str = RELAY_ENCODING) -> None:
        self.max_chars = max_chars
        self.total_emitted = 0
        self.chunks_read = 0
        self.truncated = False
        self.outcome: Optional[RelayOutcome] = None
        self._encoding = encoding
        self._decoder = codecs.getincrementaldecoder(encoding)(errors="strict")
        self._held = b""

    @property
    def exhausted(self) -> bool:
        """True once the budget is spent; no further chunk may be pulled."""
        return self.total_emitted >= self.max_chars

    @property
    def remaining(self) -> int:
        return max(self.max_chars - self.total_emitted, 0)

    def feed(self, chunk: bytes) -> bytes:
        """Account for one upstream chunk and return the bytes to forward.

        Raises:
            UnicodeDecodeError: The chunk is not valid in the session encoding.
        """
        self.chunks_read += 1
        text = self._decoder.decode(chunk)

        data = self._held + chunk
        held = self._decoder.getstate()[0]
        self._held = held
        complete = data[: len(data) - len(held)]

        return self._emit(text, complete)

    def finish(self) -> bytes:
        """Flush the decoder at end of stream and return any final bytes.

        Raises:
            UnicodeDecodeError: The stream ended in the middle of a character.
        """
        text = self._decoder.decode(b"", final=True)
        self._held = b""
        return self._emit(text, text.encode(self._encoding))

    def _emit(self, text: str, raw: bytes) -> bytes:
        if self.total_emitted + len(text) > self.max_chars:
            allowed = self.remaining
            self.total_emitted += allowed
            self.truncated = True
            return text[:allowed].encode(self._encoding)

        self.total_emitted += len(text)
        return raw
