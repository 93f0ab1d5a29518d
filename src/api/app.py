"""
FastAPI application for CareerMatch recommendations.

Wraps the synchronous RecommendationEngine with an async HTTP API.
The engine does CPU-bound and blocking work (numpy, sqlite3), so
handlers use run_in_executor to avoid blocking the event loop.

Usage:
    from src.api.app import create_app
    app = create_app(db_path="data/careers.db", cache_backend="sqlite")

    # Or run directly:
    # uvicorn src.api.app:app --reload
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from functools import partial
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .middleware import RateLimitMiddleware, RequestLoggingMiddleware
from .models import (
    CacheStatsResponse,
    ErrorResponse,
    HealthResponse,
    InsightsRequest,
    ProfileAnalysisRequest,
    ProfileAnalysisResponse,
    PurgeResponse,
    RecommendationResponse,
    RecommendRequest,
    ResultsSummaryResponse,
    StatsResponse,
)
from ..careermatch.insights import (
    CareerInsights,
    InsightClient,
    InsightConfigError,
    InsightError,
)
from ..careermatch.knn import (
    CacheUnavailable,
    DimensionMismatch,
    EmptyCandidatePool,
    RecommendationEngine,
    RecommendOptions,
)

logger = logging.getLogger(__name__)

# Global engine instance (set during lifespan)
_engine: Optional[RecommendationEngine] = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Open the catalog and build the engine on startup, release it on shutdown."""
    global _engine

    db_path = app.state.db_path
    cache_backend = app.state.cache_backend

    logger.info("Starting recommendation engine (db=%s, cache=%s)...", db_path, cache_backend)
    loop = asyncio.get_running_loop()
    _engine = await loop.run_in_executor(
        None,
        partial(
            RecommendationEngine.from_database,
            db_path,
            cache_backend=cache_backend,
            cache_ttl_ms=app.state.cache_ttl_ms,
        ),
    )

    active = await loop.run_in_executor(None, _engine.catalog.count_careers)
    if active:
        logger.info("Recommendation engine ready (%d active careers)", active)
    else:
        logger.warning("Career catalog is empty; recommendations will be unavailable")

    yield

    logger.info("Shutting down recommendation engine")
    _engine.close()
    _engine = None


def get_engine() -> RecommendationEngine:
    """FastAPI dependency that returns the running engine."""
    if _engine is None:
        raise HTTPException(status_code=503, detail="Recommendation engine not initialized")
    return _engine


def get_insight_client() -> InsightClient:
    """FastAPI dependency that returns a new insights client."""
    return InsightClient()


def create_app(
    db_path: str | None = None,
    cache_backend: str | None = None,
    cache_ttl_hours: float | None = None,
    cors_origins: Optional[list[str]] = None,
    rate_limit_rpm: int | None = None,
) -> FastAPI:
    """
    Application factory.

    Args:
        db_path: Path to the SQLite database.  Falls back to
            ``CAREERMATCH_DB_PATH`` env var, then ``"data/careers.db"``.
        cache_backend: ``"sqlite"``, ``"memory"`` or ``"none"``.  Falls back
            to ``CAREERMATCH_CACHE_BACKEND`` env var, then ``"sqlite"``.
        cache_ttl_hours: Lifetime of cached results.  Falls back to
            ``CAREERMATCH_CACHE_TTL_HOURS`` env var, then ``24``.
        cors_origins: Allowed CORS origins.  Falls back to
            ``CAREERMATCH_CORS_ORIGINS`` env var (comma-separated), then
            common localhost ports.
        rate_limit_rpm: Max requests per minute per IP.  Falls back to
            ``CAREERMATCH_RATE_LIMIT_RPM`` env var, then ``100``.  Set to
            ``0`` to disable rate limiting.
    """
    import os

    if db_path is None:
        db_path = os.environ.get("CAREERMATCH_DB_PATH", "data/careers.db")
    if cache_backend is None:
        cache_backend = os.environ.get("CAREERMATCH_CACHE_BACKEND", "sqlite")
    if cache_ttl_hours is None:
        cache_ttl_hours = float(os.environ.get("CAREERMATCH_CACHE_TTL_HOURS", "24"))
    if cors_origins is None:
        env_origins = os.environ.get("CAREERMATCH_CORS_ORIGINS")
        if env_origins:
            cors_origins = [o.strip() for o in env_origins.split(",") if o.strip()]
    if rate_limit_rpm is None:
        rate_limit_rpm = int(os.environ.get("CAREERMATCH_RATE_LIMIT_RPM", "100"))

    app = FastAPI(
        title="CareerMatch API",
        description="Career recommendations by K-nearest-neighbour profile matching",
        version="1.0.0",
        lifespan=lifespan,
        responses={
            400: {"model": ErrorResponse},
            429: {"model": ErrorResponse},
            500: {"model": ErrorResponse},
            503: {"model": ErrorResponse},
        },
    )

    # Store config on app state so lifespan can access it
    app.state.db_path = db_path
    app.state.cache_backend = cache_backend
    app.state.cache_ttl_ms = int(cache_ttl_hours * 60 * 60 * 1000)
    app.state.rate_limit_rpm = rate_limit_rpm

    if cors_origins is None:
        cors_origins = ["http://localhost:3000", "http://localhost:5173"]

    # Middleware execution order (outermost first):
    #   Logging → CORS → RateLimit → App
    # add_middleware prepends, so we add in reverse order.

    if rate_limit_rpm > 0:
        app.add_middleware(RateLimitMiddleware, requests_per_minute=rate_limit_rpm)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_middleware(RequestLoggingMiddleware)

    _register_routes(app)
    _register_exception_handlers(app)

    return app


# =========================================================================
# Route registration
# =========================================================================


def _register_routes(app: FastAPI) -> None:
    """Attach all route handlers to the app."""

    # -- Recommendation endpoints ---------------------------------------------

    @app.post("/api/recommendations", response_model=RecommendationResponse)
    async def recommend(
        request: RecommendRequest,
        engine: RecommendationEngine = Depends(get_engine),
    ) -> RecommendationResponse:
        """
        Recommend careers for an assessment profile.

        Returns the k nearest careers with match percentages, reasons
        and an aggregate analysis.
        """
        options = request.options.to_internal()
        loop = asyncio.get_running_loop()
        result = await loop.run_in_executor(
            None, engine.recommend, request.user_profile, options
        )
        return RecommendationResponse.from_internal(result)

    @app.post("/api/profile/analyze", response_model=ProfileAnalysisResponse)
    async def analyze_profile(
        request: ProfileAnalysisRequest,
        engine: RecommendationEngine = Depends(get_engine),
    ) -> ProfileAnalysisResponse:
        """Summarize a profile's strengths and suggest improvements."""
        analysis = engine.analyze_profile(request.user_profile)
        return ProfileAnalysisResponse.from_internal(analysis)

    @app.post("/api/insights", response_model=CareerInsights)
    async def generate_insights(
        request: InsightsRequest,
        engine: RecommendationEngine = Depends(get_engine),
        client: InsightClient = Depends(get_insight_client),
    ) -> CareerInsights:
        """
        Generate AI insights for a profile's recommendations.

        Recommendations are computed (or served from cache) without
        recording a new assessment.
        """
        options = RecommendOptions(k=request.k, save_to_database=False)
        loop = asyncio.get_running_loop()
        result = await loop.run_in_executor(
            None, engine.recommend, request.user_profile, options
        )

        try:
            async with client:
                return await client.generate_insights(
                    request.user_profile, result, k=request.k, model=request.model
                )
        except InsightConfigError as e:
            raise HTTPException(status_code=400, detail=str(e))
        except InsightError as e:
            logger.warning(f"Insight generation failed: {e}")
            raise HTTPException(status_code=502, detail="Insight service unavailable")

    @app.get("/api/summary", response_model=ResultsSummaryResponse)
    async def results_summary(
        assessment_id: Optional[str] = None,
        user_id: Optional[str] = None,
        engine: RecommendationEngine = Depends(get_engine),
    ) -> ResultsSummaryResponse:
        """Get the stored summary for an assessment, or a user's latest run."""
        if not assessment_id and not user_id:
            raise HTTPException(status_code=400, detail="assessment_id or user_id is required")
        loop = asyncio.get_running_loop()
        summary = await loop.run_in_executor(
            None,
            partial(engine.audit.get_results_summary, assessment_id=assessment_id, user_id=user_id),
        )
        if summary is None:
            raise HTTPException(status_code=404, detail="No results summary found")
        return ResultsSummaryResponse(**summary)

    # -- Utility endpoints ----------------------------------------------------

    @app.get("/api/stats", response_model=StatsResponse)
    async def get_stats(
        engine: RecommendationEngine = Depends(get_engine),
    ) -> StatsResponse:
        """Get catalog, cache and usage statistics."""
        loop = asyncio.get_running_loop()
        raw = await loop.run_in_executor(None, engine.get_stats)
        metrics = await loop.run_in_executor(None, engine.get_system_metrics)
        catalog = raw.get("catalog", {})
        return StatsResponse(
            total_careers=catalog.get("total_careers", 0),
            active_careers=catalog.get("active_careers", 0),
            careers_without_vectors=catalog.get("careers_without_vectors", 0),
            by_industry=catalog.get("by_industry", {}),
            by_experience_level=catalog.get("by_experience_level", {}),
            total_assessments=metrics.get("total_assessments", 0),
            avg_processing_time_ms=metrics.get("avg_processing_time_ms", 0),
            cache_entries=metrics.get("cache_entries", 0),
            cache_hit_rate=metrics.get("cache_hit_rate", 0.0),
            top_careers=metrics.get("top_careers", []),
            default_k=raw["default_k"],
            feature_dimension=raw["feature_dimension"],
        )

    @app.get("/api/cache/stats", response_model=CacheStatsResponse)
    async def cache_stats(
        engine: RecommendationEngine = Depends(get_engine),
    ) -> CacheStatsResponse:
        """Get result cache statistics."""
        if engine.cache is None:
            raise HTTPException(status_code=404, detail="Result cache is disabled")
        loop = asyncio.get_running_loop()
        stats = await loop.run_in_executor(None, engine.cache.stats)
        return CacheStatsResponse(
            total_entries=stats.total_entries,
            active_entries=stats.active_entries,
            expired_entries=stats.expired_entries,
            avg_computation_ms=stats.avg_computation_ms,
            hit_rate=stats.hit_rate,
        )

    @app.post("/api/cache/purge", response_model=PurgeResponse)
    async def purge_cache(
        all: bool = False,
        engine: RecommendationEngine = Depends(get_engine),
    ) -> PurgeResponse:
        """Remove expired cache entries, or every entry with ``?all=true``."""
        loop = asyncio.get_running_loop()
        action = engine.clear_cache if all else engine.purge_expired_cache
        removed = await loop.run_in_executor(None, action)
        return PurgeResponse(removed=removed)

    @app.get("/health", response_model=HealthResponse)
    async def health_check() -> HealthResponse:
        """Health check endpoint."""
        if _engine is None:
            return HealthResponse(status="degraded", engine_loaded=False)

        loop = asyncio.get_running_loop()
        active = await loop.run_in_executor(None, _engine.catalog.count_careers)
        return HealthResponse(
            status="healthy" if active else "degraded",
            engine_loaded=True,
            active_careers=active,
            cache_enabled=_engine.cache is not None,
        )


# =========================================================================
# Exception handlers
# =========================================================================

_STATUS_CODES = {
    400: "VALIDATION_ERROR",
    404: "NOT_FOUND",
    422: "VALIDATION_ERROR",
    429: "RATE_LIMITED",
    500: "INTERNAL_ERROR",
    502: "UPSTREAM_ERROR",
    503: "SERVICE_UNAVAILABLE",
}


def _error(status_code: int, code: str, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": {"code": code, "message": message}},
    )


def _register_exception_handlers(app: FastAPI) -> None:

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        return _error(
            exc.status_code,
            _STATUS_CODES.get(exc.status_code, "UNKNOWN_ERROR"),
            exc.detail,
        )

    @app.exception_handler(EmptyCandidatePool)
    async def empty_pool_handler(request: Request, exc: EmptyCandidatePool):
        return _error(503, "NO_CANDIDATES", str(exc))

    @app.exception_handler(DimensionMismatch)
    async def dimension_mismatch_handler(request: Request, exc: DimensionMismatch):
        # Already logged by the engine; the catalog needs repair
        return _error(500, "INTERNAL_ERROR", "An unexpected error occurred")

    @app.exception_handler(CacheUnavailable)
    async def cache_unavailable_handler(request: Request, exc: CacheUnavailable):
        logger.warning(f"Cache maintenance failed: {exc}")
        return _error(503, "SERVICE_UNAVAILABLE", "Result cache unavailable")

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        logger.exception("Unhandled exception")
        return _error(500, "INTERNAL_ERROR", "An unexpected error occurred")


# =========================================================================
# Default app instance (for `uvicorn src.api.app:app`)
# =========================================================================

app = create_app()
