"""Programmatic uvicorn entry point for promptrelay.

Reads host and port from the loaded config (127.0.0.1:8787 by default) and
starts uvicorn with hardened defaults:

  --limit-concurrency 100  Max 100 concurrent connections; HTTP 503 when exceeded
  --backlog 50             OS connection queue depth
  --timeout-keep-alive 5   Short keep-alive to limit idle connection hoarding

Usage:
    python -m promptrelay.run
    promptrelay                # via pyproject.toml [project.scripts]
"""

from __future__ import annotations

import uvicorn

from promptrelay.config import load_config
from promptrelay.constants import POOL_MAX_CONNECTIONS

# Must match the httpx pool size so every accepted connection can get an
# upstream slot.
UVICORN_LIMIT_CONCURRENCY: int = POOL_MAX_CONNECTIONS

UVICORN_BACKLOG: int = 50

UVICORN_TIMEOUT_KEEP_ALIVE: int = 5


def main() -> None:
    """Start the relay with hardened uvicorn defaults.

    Raises:
        SystemExit: Propagated from load_config() on config errors.
    """
    config = load_config()

    uvicorn.run(
        "promptrelay.main:app",
        host=config.server.host,
        port=config.server.port,
        limit_concurrency=UVICORN_LIMIT_CONCURRENCY,
        backlog=UVICORN_BACKLOG,
        timeout_keep_alive=UVICORN_TIMEOUT_KEEP_ALIVE,
    )


if __name__ == "__main__":
    main()
