"""Health endpoint for CorsGate.

Implements:
  GET /health — 503 before ready, 200 after, with the active policy state.

The same ``app.state.ready`` gate set by the lifespan in main.py is used here.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, HTTPException, Request

from corsgate.cors.filter import CorsFilter
from corsgate.policy.builtin import Whitelist

router = APIRouter(tags=["health"])


@router.get("/health")
def health(request: Request) -> dict[str, Any]:
    """Primary health check endpoint.

    Declared sync so FastAPI runs it in the worker pool: reading the policy
    state can trigger a whitelist reload.

    Response body (200):
        {
          "status": "ok" | "degraded",
          "policy_class": "Whitelist",
          "policy": "ready" | "unavailable",
          "whitelist_path": "/etc/corsgate/whitelist.txt" | null,
          "whitelist_rules": 3 | null,
          "whitelist_watching": true | false | null
        }

    "degraded" means the policy could not be built, so every origin is denied.
    """
    if not getattr(request.app.state, "ready", False):
        raise HTTPException(
            status_code=503,
            detail={
                "status": "starting",
                "message": "CorsGate is starting up...",
            },
        )

    cors_filter: CorsFilter = request.app.state.cors_filter
    policy = cors_filter.policy()

    body: dict[str, Any] = {
        "status": "ok" if policy is not None else "degraded",
        "policy_class": cors_filter.policy_config.policy_class,
        "policy": "ready" if policy is not None else "unavailable",
        "whitelist_path": None,
        "whitelist_rules": None,
        "whitelist_watching": None,
    }

    if isinstance(policy, Whitelist):
        source = policy.source
        body["whitelist_path"] = policy.file_path
        body["whitelist_rules"] = len(policy.get_whitelist())
        body["whitelist_watching"] = source.watching if source is not None else False

    return body
