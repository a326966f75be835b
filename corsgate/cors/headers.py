"""CORS response header construction and non-destructive application.

  - build_cors_headers(): the header set recommended for an allowed origin.
  - apply_cors_headers(): writes those headers onto a response, skipping any
    header the response already carries. Upstream values always win, so the
    filter is idempotent with respect to application-level CORS handling.

Header name constants defined here are the single source of truth — do not
redeclare them elsewhere.
"""

from __future__ import annotations

from typing import Mapping, MutableMapping

from corsgate.config import HeadersConfig

# ─── Constants ────────────────────────────────────────────────────────────────

ACCESS_CONTROL_ALLOW_ORIGIN: str = "Access-Control-Allow-Origin"
ACCESS_CONTROL_ALLOW_HEADERS: str = "Access-Control-Allow-Headers"
ACCESS_CONTROL_ALLOW_CREDENTIALS: str = "Access-Control-Allow-Credentials"
ACCESS_CONTROL_ALLOW_METHODS: str = "Access-Control-Allow-Methods"
ACCESS_CONTROL_EXPOSE_HEADERS: str = "Access-Control-Expose-Headers"
ACCESS_CONTROL_MAX_AGE: str = "Access-Control-Max-Age"

# Emission order.
CORS_HEADER_NAMES: tuple[str, ...] = (
    ACCESS_CONTROL_ALLOW_ORIGIN,
    ACCESS_CONTROL_ALLOW_HEADERS,
    ACCESS_CONTROL_ALLOW_CREDENTIALS,
    ACCESS_CONTROL_ALLOW_METHODS,
    ACCESS_CONTROL_EXPOSE_HEADERS,
    ACCESS_CONTROL_MAX_AGE,
)

# ─── Public API ───────────────────────────────────────────────────────────────


def build_cors_headers(origin: str, config: HeadersConfig) -> dict[str, str]:
    """Build the CORS header dict for an allowed ``origin``.

    ``Access-Control-Allow-Origin`` echoes the request origin verbatim; the
    other values come from configuration.
    """
    return {
        ACCESS_CONTROL_ALLOW_ORIGIN: origin,
        ACCESS_CONTROL_ALLOW_HEADERS: config.allow_headers,
        ACCESS_CONTROL_ALLOW_CREDENTIALS: config.allow_credentials,
        ACCESS_CONTROL_ALLOW_METHODS: config.allow_methods,
        ACCESS_CONTROL_EXPOSE_HEADERS: config.expose_headers,
        ACCESS_CONTROL_MAX_AGE: config.max_age,
    }


def apply_cors_headers(
    response_headers: MutableMapping[str, str],
    cors_headers: Mapping[str, str],
) -> list[str]:
    """Add each of ``cors_headers`` to ``response_headers`` unless already present.

    ``response_headers`` should be case-insensitive (Starlette MutableHeaders,
    httpx.Headers); with a plain dict, presence checks are case-sensitive.

    Returns:
        Names of the headers actually added.
    """
    added: list[str] = []
    for name, value in cors_headers.items():
        if name in response_headers:
            continue
        response_headers[name] = value
        added.append(name)
    return added
