"""Programmatic uvicorn entry point for CorsGate.

Reads host and port from the loaded config (127.0.0.1:8080 by default) and
starts uvicorn with conservative connection limits.

Usage:
    python -m corsgate.run
    corsgate                    # via pyproject.toml [project.scripts]
"""

from __future__ import annotations

import uvicorn

from corsgate.config import load_config

# ─── Uvicorn defaults ────────────────────────────────────────────────────────

# Maximum number of concurrent connections accepted by uvicorn.
UVICORN_LIMIT_CONCURRENCY: int = 100

# OS-level TCP connection backlog queue size.
UVICORN_BACKLOG: int = 50

# HTTP keep-alive timeout in seconds.
UVICORN_TIMEOUT_KEEP_ALIVE: int = 5


def main() -> None:
    """Start the CorsGate server.

    Raises:
        SystemExit: Propagated from load_config() on config parse errors.
    """
    config = load_config()

    uvicorn.run(
        "corsgate.main:app",
        host=config.server.host,
        port=config.server.port,
        limit_concurrency=UVICORN_LIMIT_CONCURRENCY,
        backlog=UVICORN_BACKLOG,
        timeout_keep_alive=UVICORN_TIMEOUT_KEEP_ALIVE,
    )


if __name__ == "__main__":
    main()
