"""Tests for FastAPI application endpoints."""

import json
import sys
from unittest.mock import MagicMock

import httpx
import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from src.api.app import create_app, get_engine, get_insight_client
from src.careermatch.insights import InsightClient
from src.careermatch.knn import (
    CacheUnavailable,
    DimensionMismatch,
    RecommendationEngine,
)

from .factories import SAMPLE_INSIGHTS

SE_PROFILE = {
    "skill_results": [
        {"skill": "Technical Aptitude", "score": 9},
        {"skill": "Problem Solving", "score": 8},
        {"skill": "Data Analysis", "score": 7},
    ],
    "personality_traits": [
        {"trait": "Analytical Thinking", "score": 85},
        {"trait": "Creativity", "score": 70},
    ],
    "preferences": {"industry": "Technology", "work_environment": "Team-oriented"},
    "experience_level": "Mid Level",
}


# =============================================================================
# Fixtures
# =============================================================================


def _create_test_app(engine) -> FastAPI:
    """Create a FastAPI app with lifespan disabled and engine dependency overridden."""
    app = create_app(rate_limit_rpm=0)
    # Disable lifespan to prevent opening the default database
    app.router.lifespan_context = None
    app.dependency_overrides[get_engine] = lambda: engine
    return app


def _mock_engine() -> MagicMock:
    engine = MagicMock()
    engine.analyze_profile = RecommendationEngine.analyze_profile
    return engine


@pytest.fixture
def make_client():
    """Build TestClients around a given engine; the module global is reset afterwards."""
    app_module = sys.modules["src.api.app"]

    def make(engine, insight_client=None):
        app = _create_test_app(engine)
        if insight_client is not None:
            app.dependency_overrides[get_insight_client] = lambda: insight_client
        # Also set the module-level variable (read by the health endpoint)
        app_module._engine = engine
        return TestClient(app, raise_server_exceptions=False)

    yield make
    app_module._engine = None


@pytest.fixture
def client(make_client, engine):
    """TestClient around a real engine over the sample catalog."""
    return make_client(engine)


@pytest.fixture
def client_no_engine():
    """TestClient with no engine (simulates engine not initialized)."""
    app_module = sys.modules["src.api.app"]

    app = create_app()
    app.router.lifespan_context = None
    app_module._engine = None
    yield TestClient(app, raise_server_exceptions=False)
    app_module._engine = None


# =============================================================================
# Health Endpoint
# =============================================================================


class TestHealthEndpoint:
    def test_healthy(self, client):
        resp = client.get("/health")
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "healthy"
        assert data["engine_loaded"] is True
        assert data["active_careers"] == 4
        assert data["cache_enabled"] is True

    def test_empty_catalog_is_degraded(self, make_client, empty_db):
        with RecommendationEngine(catalog=empty_db) as engine:
            resp = make_client(engine).get("/health")
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "degraded"
        assert data["active_careers"] == 0
        assert data["cache_enabled"] is False

    def test_no_engine(self, client_no_engine):
        resp = client_no_engine.get("/health")
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "degraded"
        assert data["engine_loaded"] is False


# =============================================================================
# Recommendations Endpoint
# =============================================================================


class TestRecommendationsEndpoint:
    def test_recommend(self, client):
        resp = client.post("/api/recommendations", json={"user_profile": SE_PROFILE})
        assert resp.status_code == 200
        data = resp.json()
        assert len(data["recommendations"]) == 4
        top = data["recommendations"][0]
        assert top["title"] == "Software Engineer"
        assert top["match"] == 100
        assert top["source"] == "knn"
        assert top["match_reasons"]
        assert data["analysis"]["total_careers"] == 4
        assert data["cache_hit"] is False
        assert data["debug_info"] is None
        assert data["assessment_id"].startswith("assessment_")

    def test_second_request_hits_cache(self, client):
        client.post("/api/recommendations", json={"user_profile": SE_PROFILE})
        resp = client.post("/api/recommendations", json={"user_profile": SE_PROFILE})
        assert resp.json()["cache_hit"] is True

    def test_options(self, client):
        resp = client.post(
            "/api/recommendations",
            json={"user_profile": SE_PROFILE, "options": {"k": 2, "include_debug": True}},
        )
        assert resp.status_code == 200
        data = resp.json()
        assert len(data["recommendations"]) == 2
        debug = data["debug_info"]
        assert len(debug["user_features"]) == 16
        assert [n["title"] for n in debug["neighbors"]] == [
            r["title"] for r in data["recommendations"]
        ]

    def test_options_passed_to_engine(self, make_client):
        engine = _mock_engine()
        engine.recommend.side_effect = RuntimeError("stop")
        make_client(engine).post(
            "/api/recommendations",
            json={"user_profile": SE_PROFILE, "options": {"k": 3, "use_cache": False}},
        )
        profile, options = engine.recommend.call_args[0]
        assert profile.experience_level == "Mid Level"
        assert options.k == 3
        assert options.use_cache is False
        assert options.save_to_database is True

    @pytest.mark.parametrize(
        "payload",
        [
            {},
            {"user_profile": SE_PROFILE, "options": {"k": 0}},
            {"user_profile": SE_PROFILE, "options": {"k": 51}},
            {"user_profile": {"skill_results": [{"skill": "Leadership", "score": 11}]}},
            {"user_profile": {"personality_traits": [{"trait": "Creativity", "score": -1}]}},
        ],
    )
    def test_invalid_payload(self, client, payload):
        resp = client.post("/api/recommendations", json=payload)
        assert resp.status_code == 422

    def test_empty_catalog(self, make_client, empty_db):
        with RecommendationEngine(catalog=empty_db) as engine:
            resp = make_client(engine).post(
                "/api/recommendations", json={"user_profile": SE_PROFILE}
            )
        assert resp.status_code == 503
        assert resp.json()["error"]["code"] == "NO_CANDIDATES"

    def test_dimension_mismatch(self, make_client):
        engine = _mock_engine()
        engine.recommend.side_effect = DimensionMismatch(16, 12)
        resp = make_client(engine).post("/api/recommendations", json={"user_profile": SE_PROFILE})
        assert resp.status_code == 500
        data = resp.json()
        assert data["error"]["code"] == "INTERNAL_ERROR"
        assert "12" not in data["error"]["message"]

    def test_no_engine(self, client_no_engine):
        resp = client_no_engine.post("/api/recommendations", json={"user_profile": SE_PROFILE})
        assert resp.status_code == 503
        assert resp.json()["error"]["code"] == "SERVICE_UNAVAILABLE"


# =============================================================================
# Profile Analysis Endpoint
# =============================================================================


class TestProfileAnalysisEndpoint:
    def test_analyze(self, client):
        profile = {
            "skill_results": [
                {"skill": "Technical Aptitude", "score": 9},
                {"skill": "Communication", "score": 3},
            ],
            "personality_traits": [{"trait": "Extraversion", "score": 20}],
        }
        resp = client.post("/api/profile/analyze", json={"user_profile": profile})
        assert resp.status_code == 200
        data = resp.json()
        assert data["strongest_skills"][0]["skill"] == "Technical Aptitude"
        assert data["weakest_skills"][0]["skill"] == "Communication"
        assert data["dominant_traits"][0]["trait"] == "Extraversion"
        assert data["recommended_improvements"] == [
            "Consider improving Communication through online courses or practice",
            "Consider developing networking and communication skills",
        ]


# =============================================================================
# Insights Endpoint
# =============================================================================


def _insight_client(status_code=200, text=None, api_key="test-key"):
    def handler(request: httpx.Request) -> httpx.Response:
        if status_code != 200:
            return httpx.Response(status_code, text="upstream failure")
        body = text if text is not None else json.dumps(SAMPLE_INSIGHTS)
        return httpx.Response(200, json={"content": [{"type": "text", "text": body}]})

    return InsightClient(api_key=api_key, transport=httpx.MockTransport(handler))


class TestInsightsEndpoint:
    def test_insights(self, make_client, engine, catalog_db):
        client = make_client(engine, insight_client=_insight_client())
        resp = client.post("/api/insights", json={"user_profile": SE_PROFILE, "k": 3})
        assert resp.status_code == 200
        data = resp.json()
        assert data["interpretation"] == SAMPLE_INSIGHTS["interpretation"]
        assert data["careerPath"][0]["role"] == "Senior Engineer"
        assert data["model"] == "sonnet"
        assert data["profiles_analyzed"] == 4
        assert data["fallback"] is False
        # Insights never record an assessment
        assert catalog_db.get_system_metrics()["total_assessments"] == 0

    def test_fallback(self, make_client, engine):
        client = make_client(engine, insight_client=_insight_client(text="no json here"))
        resp = client.post("/api/insights", json={"user_profile": SE_PROFILE})
        assert resp.status_code == 200
        assert resp.json()["fallback"] is True

    def test_missing_api_key(self, make_client, engine, monkeypatch):
        monkeypatch.delenv("CLAUDE_API_KEY", raising=False)
        client = make_client(engine, insight_client=_insight_client(api_key=None))
        resp = client.post("/api/insights", json={"user_profile": SE_PROFILE})
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "VALIDATION_ERROR"

    def test_unknown_model(self, make_client, engine):
        client = make_client(engine, insight_client=_insight_client())
        resp = client.post("/api/insights", json={"user_profile": SE_PROFILE, "model": "gpt"})
        assert resp.status_code == 400

    def test_upstream_error(self, make_client, engine):
        client = make_client(engine, insight_client=_insight_client(status_code=500))
        resp = client.post("/api/insights", json={"user_profile": SE_PROFILE})
        assert resp.status_code == 502
        assert resp.json()["error"]["code"] == "UPSTREAM_ERROR"


# =============================================================================
# Summary Endpoint
# =============================================================================


class TestSummaryEndpoint:
    def test_summary_by_assessment(self, client):
        rec = client.post(
            "/api/recommendations", json={"user_profile": SE_PROFILE, "options": {"k": 3}}
        ).json()
        resp = client.get("/api/summary", params={"assessment_id": rec["assessment_id"]})
        assert resp.status_code == 200
        data = resp.json()
        assert data["assessment_id"] == rec["assessment_id"]
        assert data["knn_generated"] == 3
        assert data["k_value"] == 3
        assert data["algorithm_type"] == "Euclidean KNN"
        assert data["cache_used"] is False

    def test_summary_by_user(self, client):
        profile = dict(SE_PROFILE, user_id="user-42")
        client.post("/api/recommendations", json={"user_profile": profile})
        resp = client.get("/api/summary", params={"user_id": "user-42"})
        assert resp.status_code == 200
        assert resp.json()["user_id"] == "user-42"

    def test_missing_params(self, client):
        resp = client.get("/api/summary")
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "VALIDATION_ERROR"

    def test_not_found(self, client):
        resp = client.get("/api/summary", params={"assessment_id": "nope"})
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "NOT_FOUND"


# =============================================================================
# Stats and Cache Endpoints
# =============================================================================


class TestStatsEndpoint:
    def test_stats(self, client):
        client.post("/api/recommendations", json={"user_profile": SE_PROFILE})
        resp = client.get("/api/stats")
        assert resp.status_code == 200
        data = resp.json()
        assert data["total_careers"] == 4
        assert data["active_careers"] == 4
        assert data["by_industry"]["Technology"] == 1
        assert data["total_assessments"] == 1
        assert data["cache_entries"] == 1
        assert data["default_k"] == 5
        assert data["feature_dimension"] == 16


class TestCacheEndpoints:
    def test_cache_stats(self, client):
        client.post("/api/recommendations", json={"user_profile": SE_PROFILE})
        client.post("/api/recommendations", json={"user_profile": SE_PROFILE})
        resp = client.get("/api/cache/stats")
        assert resp.status_code == 200
        data = resp.json()
        assert data["active_entries"] == 1
        assert data["hit_rate"] == pytest.approx(0.5)

    def test_cache_disabled(self, make_client, catalog_db):
        with RecommendationEngine(catalog=catalog_db) as engine:
            resp = make_client(engine).get("/api/cache/stats")
        assert resp.status_code == 404

    def test_purge_expired(self, client):
        client.post("/api/recommendations", json={"user_profile": SE_PROFILE})
        resp = client.post("/api/cache/purge")
        assert resp.status_code == 200
        assert resp.json() == {"removed": 0}

    def test_purge_all(self, client):
        client.post("/api/recommendations", json={"user_profile": SE_PROFILE})
        resp = client.post("/api/cache/purge", params={"all": "true"})
        assert resp.json() == {"removed": 1}

    def test_cache_unavailable(self, make_client):
        engine = _mock_engine()
        engine.purge_expired_cache.side_effect = CacheUnavailable("Cache purge failed: locked")
        resp = make_client(engine).post("/api/cache/purge")
        assert resp.status_code == 503
        assert resp.json()["error"]["code"] == "SERVICE_UNAVAILABLE"


# =============================================================================
# Error Handling
# =============================================================================


class TestErrorHandling:
    def test_404_for_unknown_route(self, client):
        resp = client.get("/api/nonexistent")
        assert resp.status_code == 404

    def test_405_for_wrong_method(self, client):
        resp = client.get("/api/recommendations")  # Should be POST
        assert resp.status_code == 405

    def test_unhandled_exception_returns_500(self, make_client):
        engine = _mock_engine()
        engine.recommend.side_effect = RuntimeError("unexpected")
        resp = make_client(engine).post("/api/recommendations", json={"user_profile": SE_PROFILE})
        assert resp.status_code == 500
        assert resp.json()["error"]["code"] == "INTERNAL_ERROR"


# =============================================================================
# CORS
# =============================================================================


class TestCORS:
    def test_cors_headers_present(self, client):
        resp = client.options(
            "/api/recommendations",
            headers={
                "Origin": "http://localhost:3000",
                "Access-Control-Request-Method": "POST",
            },
        )
        assert resp.headers.get("access-control-allow-origin") == "http://localhost:3000"

    def test_disallowed_origin(self, client):
        resp = client.options(
            "/api/recommendations",
            headers={
                "Origin": "http://evil.com",
                "Access-Control-Request-Method": "POST",
            },
        )
        assert resp.headers.get("access-control-allow-origin") is None
