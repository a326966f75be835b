"""Integration tests for the CorsGate FastAPI application.

Covers create_app() + lifespan end to end:
  - /health gated on app.state.ready (503 before startup, 200 after)
  - policy warm-up at startup, whitelist watcher stopped at shutdown
  - CORS headers on route responses and on the 503 startup response
  - a policy that cannot be built degrades /health and denies every origin
"""

from __future__ import annotations

import dataclasses

import httpx
import pytest
from fastapi.testclient import TestClient

from corsgate.config import Config, FilterConfig, WhitelistConfig
from corsgate.cors.headers import ACCESS_CONTROL_ALLOW_ORIGIN
from corsgate.main import create_app
from corsgate.policy.builtin import AllowMatching
from corsgate.policy.resolver import PolicyRegistry


def _config(**filter_fields) -> Config:
    return dataclasses.replace(
        Config.defaults(),
        filter=FilterConfig(**filter_fields),
        whitelist=WhitelistConfig(debounce_ms=50, watch_ready_timeout_s=5.0),
    )


# ─── Lifespan + /health ───────────────────────────────────────────────────────


class TestHealth:
    def test_ready_after_startup(self):
        with TestClient(create_app(Config.defaults())) as client:
            response = client.get("/health")
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "ok"
        assert body["policy_class"] == "AllowAll"
        assert body["policy"] == "ready"
        assert body["whitelist_path"] is None

    def test_503_before_startup(self):
        client = TestClient(create_app(Config.defaults()))
        response = client.get("/health")
        assert response.status_code == 503
        assert response.json()["detail"]["status"] == "starting"

    def test_whitelist_details(self, write_whitelist):
        path = write_whitelist()
        app = create_app(_config(policy_class="Whitelist", policy_param=path))
        with TestClient(app) as client:
            body = client.get("/health").json()
            assert body["whitelist_path"] == path
            assert body["whitelist_rules"] == 2
            assert body["whitelist_watching"] is True
            policy = app.state.cors_filter.policy()
        assert app.state.ready is False
        assert not policy.source.watching

    def test_degraded_when_policy_unavailable(self):
        app = create_app(_config(policy_class="NoSuchPolicy"))
        with TestClient(app) as client:
            body = client.get("/health").json()
            cors = client.get("/", headers={"Origin": "https://a.test"})
        assert body["status"] == "degraded"
        assert body["policy"] == "unavailable"
        assert ACCESS_CONTROL_ALLOW_ORIGIN not in cors.headers

    def test_root(self):
        with TestClient(create_app(Config.defaults())) as client:
            assert client.get("/").json() == {"service": "CorsGate", "health": "/health"}


# ─── CORS through the full app ────────────────────────────────────────────────


class TestCorsThroughApp:
    def test_allow_all(self):
        with TestClient(create_app(Config.defaults())) as client:
            response = client.get("/", headers={"Origin": "https://a.test"})
        assert response.headers[ACCESS_CONTROL_ALLOW_ORIGIN] == "https://a.test"

    def test_whitelist(self, write_whitelist):
        app = create_app(_config(policy_class="Whitelist", policy_param=write_whitelist()))
        with TestClient(app) as client:
            allowed = client.get("/", headers={"Origin": "https://www.example.org"})
            denied = client.get("/", headers={"Origin": "https://example.net"})
        assert allowed.headers[ACCESS_CONTROL_ALLOW_ORIGIN] == "https://www.example.org"
        assert ACCESS_CONTROL_ALLOW_ORIGIN not in denied.headers

    def test_custom_registry(self):
        registry = PolicyRegistry()
        registry.register("LocalOnly", lambda param: AllowMatching("^http://localhost(:\\d+)?$"))
        app = create_app(_config(policy_class="LocalOnly"), registry=registry)
        with TestClient(app) as client:
            local = client.get("/", headers={"Origin": "http://localhost:5173"})
            remote = client.get("/", headers={"Origin": "https://remote.test"})
        assert local.headers[ACCESS_CONTROL_ALLOW_ORIGIN] == "http://localhost:5173"
        assert ACCESS_CONTROL_ALLOW_ORIGIN not in remote.headers

    @pytest.mark.asyncio
    async def test_cors_on_startup_503(self):
        # ASGITransport does not run the lifespan, so the app stays not-ready.
        app = create_app(Config.defaults())
        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
            response = await client.get("/health", headers={"Origin": "https://a.test"})
        assert response.status_code == 503
        assert response.headers[ACCESS_CONTROL_ALLOW_ORIGIN] == "https://a.test"
