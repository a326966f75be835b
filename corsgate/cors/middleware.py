"""CORS header middleware for CorsGate.

Adds CORS headers to EVERY response in scope — including responses produced
by other middleware that never reach a route handler (401s from an auth
layer, 413s from a body-size gate, 429s from a rate limiter). Those responses
bypass application-level CORS handling, which is why this middleware exists.

Registration (last, so it is OUTERMOST):
    application.add_middleware(CorsHeaderMiddleware, cors_filter=cors_filter)

In Starlette the LAST-added middleware runs first and sees the final response
of everything inside it.

Headers already present on the response are never overwritten.
"""

from __future__ import annotations

from starlette.concurrency import run_in_threadpool
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import ASGIApp

from corsgate.cors.filter import CorsFilter
from corsgate.cors.headers import apply_cors_headers
from corsgate.utils.logger import get_logger

logger = get_logger(__name__)


class CorsHeaderMiddleware(BaseHTTPMiddleware):
    """Starlette middleware applying a CorsFilter to every response.

    Evaluation runs in Starlette's worker thread pool: a whitelist reload reads
    a file, and that must never happen on the event loop.

    INVARIANT: never breaks the response pipeline. If evaluation raises, the
    error is logged and the response is returned without CORS headers.
    """

    def __init__(self, app: ASGIApp, cors_filter: CorsFilter) -> None:
        super().__init__(app)
        self.cors_filter = cors_filter

    async def dispatch(self, request: Request, call_next) -> Response:  # type: ignore[override]
        response = await call_next(request)

        origin = request.headers.get("origin")
        if origin is None:
            return response

        url = str(request.url)
        try:
            cors_headers = await run_in_threadpool(self.cors_filter.decide, url, origin)
        except Exception as exc:  # noqa: BLE001
            logger.error(
                "CORS evaluation failed — response returned without CORS headers",
                origin=origin,
                path=request.url.path,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            return response

        if cors_headers is None:
            logger.debug(
                "CORS headers NOT added",
                origin=origin,
                path=request.url.path,
                status_code=response.status_code,
            )
            return response

        added = apply_cors_headers(response.headers, cors_headers)
        logger.debug(
            "CORS headers added",
            origin=origin,
            path=request.url.path,
            status_code=response.status_code,
            added=added,
        )
        return response
