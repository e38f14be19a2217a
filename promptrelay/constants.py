"""Shared constants for promptrelay.

All size limits and numeric caps used across modules are defined here.
No magic numbers in other modules — import from here.
"""

# ─── Request Gate Limits ─────────────────────────────────────────────────────

# Maximum prompt length in characters (Unicode code points).
# Prompts longer than this are rejected with HTTP 400 before any upstream call.
DEFAULT_MAX_PROMPT_LENGTH: int = 1_000

# Maximum raw request body size in bytes.
# Bodies exceeding this are rejected with HTTP 413 while being read, so an
# oversized payload is never fully materialised in memory.
DEFAULT_MAX_REQUEST_BODY_BYTES: int = 65_536  # 64 KB

# ─── Streaming Relay Limits ──────────────────────────────────────────────────

# Maximum number of characters relayed to the client for one response.
# The relay stops pulling from upstream as soon as this budget is spent.
DEFAULT_MAX_RESPONSE_LENGTH: int = 5_000

# Encoding used to decode upstream chunks for length accounting.
RELAY_ENCODING: str = "utf-8"

# ─── Upstream ────────────────────────────────────────────────────────────────

DEFAULT_UPSTREAM_URL: str = "https://api.openai.com/v1/responses"

# Total timeout applied by the shared httpx client to the upstream call.
DEFAULT_UPSTREAM_TIMEOUT_S: float = 30.0

# Pool size matches the uvicorn --limit-concurrency value in run.py so every
# concurrent relay has a pooled upstream slot available.
POOL_MAX_CONNECTIONS: int = 100
POOL_MAX_KEEPALIVE: int = 100
POOL_KEEPALIVE_EXPIRY: float = 30.0  # seconds

# ─── Server ──────────────────────────────────────────────────────────────────

DEFAULT_HOST: str = "127.0.0.1"
DEFAULT_PORT: int = 8787
