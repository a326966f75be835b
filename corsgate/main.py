"""CorsGate FastAPI application factory + lifespan lifecycle.

This module implements:
  - create_app() — testable application factory
  - lifespan — @asynccontextmanager startup/shutdown sequence
  - /health router — delegated to corsgate/health.py
  - /        route  — service discovery root
  - app = create_app() — module-level instance for uvicorn

Startup sequence:
  1. CorsFilter built in create_app() (middleware needs it before startup)
  2. cors_filter.warm_up()  → policy constructed, whitelist loaded + watched
  3. app.state.ready = True

Shutdown:
  app.state.ready = False → cors_filter.close() (stops whitelist watchers)
"""

from __future__ import annotations

import os
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI
from fastapi.routing import APIRouter
from starlette.concurrency import run_in_threadpool

from corsgate.config import Config, load_config
from corsgate.cors.filter import CorsFilter
from corsgate.cors.middleware import CorsHeaderMiddleware
from corsgate.health import router as health_router
from corsgate.policy.resolver import PolicyRegistry
from corsgate.utils.logger import configure_logging, get_logger

# ─── Logging Setup ────────────────────────────────────────────────────────────
DEBUG = os.getenv("DEBUG", "false").lower() == "true"
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO" if not DEBUG else "DEBUG")
JSON_LOGS = os.getenv("JSON_LOGS", "true").lower() == "true"

configure_logging(log_level=LOG_LEVEL, json_output=JSON_LOGS)
logger = get_logger(__name__)


# ─── Routers ──────────────────────────────────────────────────────────────────

root_router = APIRouter(tags=["root"])


@root_router.get("/")
async def root() -> dict[str, str]:
    """Root endpoint — service identity / discovery."""
    return {
        "service": "CorsGate",
        "health": "/health",
    }


# ─── Lifespan ─────────────────────────────────────────────────────────────────


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan — startup and shutdown sequence.

    The policy is built before ready=True so the first request does not pay
    for reading the whitelist file. A policy that cannot be built is logged
    and leaves the service running with every origin denied.
    """
    logger.info("CorsGate starting up...")
    cors_filter: CorsFilter = app.state.cors_filter

    # Whitelist construction reads a file and arms a watcher — off the loop.
    policy_ok = await run_in_threadpool(cors_filter.warm_up)
    if not policy_ok:
        logger.error(
            "CORS policy unavailable — no CORS headers will be added",
            policy_class=cors_filter.policy_config.policy_class,
        )

    app.state.ready = True
    logger.info(
        "CorsGate ready",
        policy_class=cors_filter.policy_config.policy_class,
        url_pattern=cors_filter.config.filter.url_pattern,
    )

    yield

    logger.info("CorsGate shutting down...")
    app.state.ready = False

    try:
        await run_in_threadpool(cors_filter.close)
    except Exception as exc:  # noqa: BLE001
        logger.warning("CORS filter close error (non-fatal)", error=str(exc))

    logger.info("CorsGate shutdown complete")


# ─── Application Factory ──────────────────────────────────────────────────────


def create_app(
    config: Optional[Config] = None,
    registry: Optional[PolicyRegistry] = None,
) -> FastAPI:
    """Create and configure the CorsGate FastAPI application.

    Args:
        config:   Configuration to use; load_config() is called when omitted.
        registry: Policy registry holding custom policies; the built-ins are
                  used when omitted.

    Returns:
        Configured FastAPI application with lifespan, routers, and middleware.
    """
    if config is None:
        config = load_config()

    _debug = os.getenv("DEBUG", "false").lower() == "true"

    application = FastAPI(
        title="CorsGate",
        description="CORS headers for every response, driven by a pluggable origin policy",
        version="1.0.0",
        lifespan=lifespan,
        docs_url="/docs" if _debug else None,
        redoc_url="/redoc" if _debug else None,
        openapi_url="/openapi.json" if _debug else None,
    )

    # Initialize ready flag before lifespan — /health returns 503 until startup completes.
    application.state.ready = False
    application.state.config = config

    cors_filter = CorsFilter(config, registry=registry)
    application.state.cors_filter = cors_filter

    # CORS header middleware — registered LAST so it is OUTERMOST and also
    # covers responses produced by any middleware added before it.
    application.add_middleware(CorsHeaderMiddleware, cors_filter=cors_filter)

    application.include_router(root_router)
    application.include_router(health_router)

    return application


# ─── Module-Level App (for uvicorn) ───────────────────────────────────────────
#   uvicorn corsgate.main:app --host 127.0.0.1 --port 8080

app = create_app()
