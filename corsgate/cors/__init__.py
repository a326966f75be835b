"""CorsGate HTTP integration — CORS decision, header emission, middleware.

Public API:
    CorsFilter            — URL gate + origin gate + policy gate → headers or None
    CorsHeaderMiddleware  — Starlette middleware applying a CorsFilter
    build_cors_headers    — recommended headers for an allowed origin
    apply_cors_headers    — add headers without overwriting existing ones
"""
from corsgate.cors.filter import CorsFilter
from corsgate.cors.headers import apply_cors_headers, build_cors_headers
from corsgate.cors.middleware import CorsHeaderMiddleware

__all__ = [
    "CorsFilter",
    "CorsHeaderMiddleware",
    "apply_cors_headers",
    "build_cors_headers",
]
