"""Tests for rate limiting and request logging middleware."""

import logging
import sys
import time
from unittest.mock import MagicMock, patch

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from starlette.requests import Request

from src.api.middleware import (
    REQUEST_ID_HEADER,
    ClientWindows,
    RateLimitMiddleware,
    RequestLoggingMiddleware,
    get_client_ip,
)
from src.careermatch.knn import RecommendationEngine

# TestClient connects from this host
TEST_PROXY = frozenset({"testclient"})

ANALYZE_PATH = "/api/profile/analyze"
ANALYZE_BODY = {"user_profile": {}}


# =============================================================================
# Helpers
# =============================================================================


def _make_test_app(rate_limit: int | None = None, trusted_proxies=TEST_PROXY) -> FastAPI:
    """Minimal FastAPI app for isolated middleware testing."""
    app = FastAPI()

    @app.get("/ping")
    async def ping():
        return {"pong": True}

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    if rate_limit is not None:
        app.add_middleware(
            RateLimitMiddleware,
            requests_per_minute=rate_limit,
            trusted_proxies=trusted_proxies,
        )

    app.add_middleware(RequestLoggingMiddleware, trusted_proxies=trusted_proxies)
    return app


def _make_request(headers: dict | None = None, client_host: str = "127.0.0.1"):
    """Create a fake Starlette Request for unit-testing get_client_ip."""
    scope = {
        "type": "http",
        "method": "GET",
        "path": "/",
        "headers": [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()],
    }
    if client_host:
        scope["client"] = (client_host, 12345)
    else:
        scope["client"] = None
    return Request(scope)


# =============================================================================
# TestGetClientIp
# =============================================================================


class TestGetClientIp:
    def test_direct_connection(self):
        req = _make_request(client_host="192.168.1.5")
        assert get_client_ip(req) == "192.168.1.5"

    def test_forwarded_ignored_without_trusted_proxy(self):
        req = _make_request(headers={"X-Forwarded-For": "1.2.3.4"}, client_host="127.0.0.1")
        assert get_client_ip(req) == "127.0.0.1"

    def test_forwarded_ignored_from_untrusted_proxy(self):
        req = _make_request(headers={"X-Forwarded-For": "1.2.3.4"}, client_host="10.9.9.9")
        assert get_client_ip(req, frozenset({"10.0.0.1"})) == "10.9.9.9"

    def test_forwarded_from_trusted_proxy(self):
        req = _make_request(headers={"X-Forwarded-For": "10.0.0.1"}, client_host="172.16.0.2")
        assert get_client_ip(req, frozenset({"172.16.0.2"})) == "10.0.0.1"

    def test_forwarded_chain(self):
        req = _make_request(
            headers={"X-Forwarded-For": "203.0.113.50, 70.41.3.18, 150.172.238.178"},
            client_host="172.16.0.2",
        )
        assert get_client_ip(req, frozenset({"172.16.0.2"})) == "203.0.113.50"

    def test_no_client_at_all(self):
        req = _make_request(headers={}, client_host=None)
        assert get_client_ip(req) == "unknown"


# =============================================================================
# TestClientWindows
# =============================================================================


class TestClientWindows:
    def test_admits_up_to_limit(self):
        windows = ClientWindows(limit=2, window_seconds=60)
        assert windows.admit("a", 0.0) == 0.0
        assert windows.admit("a", 1.0) == 0.0
        assert windows.admit("a", 2.0) == pytest.approx(58.0)

    def test_rejected_request_not_counted(self):
        windows = ClientWindows(limit=1, window_seconds=10)
        windows.admit("a", 0.0)
        windows.admit("a", 5.0)
        assert windows.admit("a", 10.5) == 0.0

    def test_clients_tracked_separately(self):
        windows = ClientWindows(limit=1)
        windows.admit("a", 0.0)
        assert windows.admit("b", 0.0) == 0.0
        assert len(windows) == 2


# =============================================================================
# TestRateLimitMiddleware
# =============================================================================


class TestRateLimitMiddleware:
    def test_under_limit_succeeds(self):
        client = TestClient(_make_test_app(rate_limit=5), raise_server_exceptions=False)
        for _ in range(5):
            assert client.get("/ping").status_code == 200

    def test_over_limit_returns_429(self):
        client = TestClient(_make_test_app(rate_limit=3), raise_server_exceptions=False)
        for _ in range(3):
            assert client.get("/ping").status_code == 200
        assert client.get("/ping").status_code == 429

    def test_429_response_format(self):
        client = TestClient(_make_test_app(rate_limit=1), raise_server_exceptions=False)
        client.get("/ping")
        resp = client.get("/ping")
        assert resp.status_code == 429
        data = resp.json()
        assert data["error"]["code"] == "RATE_LIMITED"
        assert "1 requests/minute" in data["error"]["message"]

    def test_retry_after_header(self):
        client = TestClient(_make_test_app(rate_limit=1), raise_server_exceptions=False)
        client.get("/ping")
        resp = client.get("/ping")
        retry_after = int(resp.headers["Retry-After"])
        assert 1 <= retry_after <= 60

    def test_different_ips_tracked_separately(self):
        client = TestClient(_make_test_app(rate_limit=2), raise_server_exceptions=False)

        # IP A: 2 requests (at limit)
        for _ in range(2):
            resp = client.get("/ping", headers={"X-Forwarded-For": "1.1.1.1"})
            assert resp.status_code == 200

        # IP A: blocked
        resp = client.get("/ping", headers={"X-Forwarded-For": "1.1.1.1"})
        assert resp.status_code == 429

        # IP B: still allowed
        resp = client.get("/ping", headers={"X-Forwarded-For": "2.2.2.2"})
        assert resp.status_code == 200

    def test_health_probe_exempt(self):
        client = TestClient(_make_test_app(rate_limit=1), raise_server_exceptions=False)
        client.get("/ping")
        for _ in range(5):
            assert client.get("/health").status_code == 200
        assert client.get("/ping").status_code == 429

    def test_spoofed_header_shares_budget_without_proxy(self):
        app = _make_test_app(rate_limit=1, trusted_proxies=None)
        client = TestClient(app, raise_server_exceptions=False)
        client.get("/ping", headers={"X-Forwarded-For": "1.1.1.1"})
        resp = client.get("/ping", headers={"X-Forwarded-For": "2.2.2.2"})
        assert resp.status_code == 429

    def test_window_expiry_allows_new_requests(self):
        """After the sliding window passes, requests should be allowed again."""
        client = TestClient(_make_test_app(rate_limit=2), raise_server_exceptions=False)

        client.get("/ping")
        client.get("/ping")
        assert client.get("/ping").status_code == 429

        # Fast-forward monotonic time past the 60s window
        with patch("src.api.middleware.time") as mock_time:
            mock_time.monotonic.return_value = time.monotonic() + 61
            assert client.get("/ping").status_code == 200


# =============================================================================
# TestRequestLoggingMiddleware
# =============================================================================


class TestRequestLoggingMiddleware:
    def test_logs_request(self, caplog):
        client = TestClient(_make_test_app(), raise_server_exceptions=False)
        with caplog.at_level(logging.INFO, logger="src.api.access"):
            client.get("/ping")
        assert any("GET /ping 200" in rec.message for rec in caplog.records)

    def test_logs_client_ip(self, caplog):
        client = TestClient(_make_test_app(), raise_server_exceptions=False)
        with caplog.at_level(logging.INFO, logger="src.api.access"):
            client.get("/ping", headers={"X-Forwarded-For": "5.6.7.8"})
        assert any("5.6.7.8" in rec.message for rec in caplog.records)

    def test_generates_request_id(self):
        client = TestClient(_make_test_app(), raise_server_exceptions=False)
        first = client.get("/ping").headers[REQUEST_ID_HEADER]
        second = client.get("/ping").headers[REQUEST_ID_HEADER]
        assert len(first) == 12
        assert first != second

    def test_reuses_incoming_request_id(self, caplog):
        client = TestClient(_make_test_app(), raise_server_exceptions=False)
        with caplog.at_level(logging.INFO, logger="src.api.access"):
            resp = client.get("/ping", headers={REQUEST_ID_HEADER: "abc123"})
        assert resp.headers[REQUEST_ID_HEADER] == "abc123"
        assert any("id=abc123" in rec.message for rec in caplog.records)

    def test_logs_429_from_rate_limiter(self, caplog):
        client = TestClient(_make_test_app(rate_limit=1), raise_server_exceptions=False)
        with caplog.at_level(logging.INFO, logger="src.api.access"):
            client.get("/ping")  # OK
            client.get("/ping")  # 429
        assert any(" 429 " in rec.message for rec in caplog.records)


# =============================================================================
# TestMiddlewareIntegration
# =============================================================================


class TestMiddlewareIntegration:
    """End-to-end tests using the real create_app factory."""

    def _make_client(self, rate_limit_rpm: int = 100) -> TestClient:
        from src.api.app import create_app, get_engine

        app = create_app(rate_limit_rpm=rate_limit_rpm)
        app.router.lifespan_context = None

        # Mock engine for the health endpoint
        engine = MagicMock()
        engine.catalog.count_careers.return_value = 3
        engine.analyze_profile.side_effect = RecommendationEngine.analyze_profile
        app.dependency_overrides[get_engine] = lambda: engine
        sys.modules["src.api.app"]._engine = engine

        return TestClient(app, raise_server_exceptions=False)

    def teardown_method(self):
        sys.modules["src.api.app"]._engine = None

    def test_rate_limit_with_real_app(self):
        client = self._make_client(rate_limit_rpm=3)
        for _ in range(3):
            assert client.post(ANALYZE_PATH, json=ANALYZE_BODY).status_code == 200
        assert client.post(ANALYZE_PATH, json=ANALYZE_BODY).status_code == 429

    def test_health_not_rate_limited(self):
        client = self._make_client(rate_limit_rpm=1)
        for _ in range(5):
            assert client.get("/health").status_code == 200

    def test_rate_limit_disabled(self):
        client = self._make_client(rate_limit_rpm=0)
        for _ in range(150):
            assert client.post(ANALYZE_PATH, json=ANALYZE_BODY).status_code == 200

    def test_rate_limit_from_env(self, monkeypatch):
        from src.api.app import create_app

        monkeypatch.setenv("CAREERMATCH_RATE_LIMIT_RPM", "42")
        assert create_app().state.rate_limit_rpm == 42

    def test_cache_ttl_from_env(self, monkeypatch):
        from src.api.app import create_app

        monkeypatch.setenv("CAREERMATCH_CACHE_TTL_HOURS", "1.5")
        assert create_app().state.cache_ttl_ms == 90 * 60 * 1000

    def test_logging_with_real_app(self, caplog):
        client = self._make_client()
        with caplog.at_level(logging.INFO, logger="src.api.access"):
            resp = client.get("/health")
        assert resp.headers.get(REQUEST_ID_HEADER)
        assert any("GET /health 200" in rec.message for rec in caplog.records)

    def test_cors_on_429(self):
        """429 responses should include CORS headers for browser clients."""
        client = self._make_client(rate_limit_rpm=1)
        client.post(ANALYZE_PATH, json=ANALYZE_BODY)
        resp = client.post(
            ANALYZE_PATH,
            json=ANALYZE_BODY,
            headers={"Origin": "http://localhost:3000"},
        )
        assert resp.status_code == 429
        assert resp.headers.get("access-control-allow-origin") == "http://localhost:3000"
