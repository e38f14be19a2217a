"""Request ID generation for promptrelay.

Every inbound request gets a ULID (Universally Unique Lexicographically Sortable
Identifier) that ties together the gate, upstream and relay log events for that
request. ULIDs sort by creation time, so grepping a JSON log by request_id and
ordering by it reproduces arrival order.

Uses the `python-ulid` library — do NOT hand-roll ULID generation.
"""

from __future__ import annotations

from ulid import ULID


def generate_request_id() -> str:
    """Generate a new ULID as a 26-character uppercase string.

    Returns:
        str: A 26-character Crockford Base32 ULID (e.g. ``"01KJ0JRVHYA7KX32VPN5ZSCTMV"``).
    """
    return str(ULID())
