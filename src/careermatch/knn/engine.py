"""
Career recommendation engine.

Orchestrates KNN career matching by combining:
- Feature extraction (user and career profiles into a shared vector space)
- Exact nearest-neighbour search over the active catalog
- Match explanations from the raw profile fields
- Result caching keyed by the query vector (performance optimization)
- Feature-vector write-back to the catalog (fire-and-forget)
- Assessment audit records

Example:
    engine = RecommendationEngine.from_database("data/careers.db")

    result = engine.recommend(profile, RecommendOptions(k=5))

    for rec in result.recommendations:
        print(f"{rec.title}: {rec.match}% ({rec.reasoning})")
"""

import logging
import time
import uuid
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import replace
from typing import Optional, Union

import numpy as np
from pydantic import ValidationError

from ..models import UserProfile
from .cache import MemoryCacheStore, ResultCache, SQLiteCacheStore, hash_features
from .errors import CacheUnavailable, CatalogWriteBackFailed, DimensionMismatch
from .explainer import explain_match
from .features import FeatureExtractor
from .models import (
    AnalysisSummary,
    DebugInfo,
    NeighborResult,
    ProfileAnalysis,
    Recommendation,
    RecommendationResult,
    RecommendOptions,
)
from .selector import find_k_nearest

logger = logging.getLogger(__name__)


class RecommendationEngine:
    """
    Recommends careers for a user profile by K-nearest-neighbour search.

    Collaborators are passed in at construction:

    - catalog: provides ``list_active_careers()`` and
      ``bulk_update_feature_vectors(updates)`` (CareerDatabase does both)
    - cache: optional ResultCache; failures degrade to computing
    - audit: optional store with ``save_assessment`` and
      ``save_results_summary``; failures are logged and ignored

    Only DimensionMismatch and EmptyCandidatePool (plus errors raised by
    the catalog while loading candidates) propagate out of recommend().

    Example:
        db = CareerDatabase("data/careers.db")
        engine = RecommendationEngine(
            catalog=db,
            cache=ResultCache(SQLiteCacheStore(db)),
            audit=db,
        )
        result = engine.recommend(profile)
    """

    # Default configuration
    DEFAULT_K = 5
    CACHE_TTL_MS = ResultCache.DEFAULT_TTL_MS  # 24 hours
    ALGORITHM_NAME = "Euclidean KNN"
    STRONG_SKILL_SCORE = 7
    STRONG_TRAIT_SCORE = 70

    def __init__(
        self,
        catalog,
        cache: Optional[ResultCache] = None,
        audit=None,
        extractor: Optional[FeatureExtractor] = None,
        default_k: int = DEFAULT_K,
        cache_ttl_ms: int = CACHE_TTL_MS,
    ):
        """
        Initialize the engine.

        Args:
            catalog: Candidate catalog store
            cache: Result cache (None disables caching)
            audit: Audit record store (None disables persistence)
            extractor: Feature extractor (default: unweighted)
            default_k: k used when recommend() gets no options
            cache_ttl_ms: Lifetime of cached results
        """
        self.catalog = catalog
        self.cache = cache
        self.audit = audit
        self.extractor = extractor or FeatureExtractor()
        self.default_k = max(1, default_k)
        self.cache_ttl_ms = cache_ttl_ms

        self._write_back_executor = ThreadPoolExecutor(
            max_workers=1, thread_name_prefix="vector-writeback"
        )

    @classmethod
    def from_database(
        cls,
        db_path: str = "data/careers.db",
        cache_backend: str = "sqlite",
        **kwargs,
    ) -> "RecommendationEngine":
        """
        Build an engine backed by a CareerDatabase.

        Args:
            db_path: Path to SQLite database
            cache_backend: 'sqlite', 'memory' or 'none'
            **kwargs: Passed through to the constructor
        """
        from ..database import CareerDatabase

        db = CareerDatabase(db_path)
        if cache_backend == "sqlite":
            cache = ResultCache(SQLiteCacheStore(db))
        elif cache_backend == "memory":
            cache = ResultCache(MemoryCacheStore())
        elif cache_backend == "none":
            cache = None
        else:
            raise ValueError(f"Unknown cache backend: {cache_backend}")

        return cls(catalog=db, cache=cache, audit=db, **kwargs)

    def close(self) -> None:
        """Wait for pending write-backs and release the worker thread."""
        self._write_back_executor.shutdown(wait=True)

    def __enter__(self) -> "RecommendationEngine":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    # =========================================================================
    # Recommendations
    # =========================================================================

    def recommend(
        self,
        profile: UserProfile,
        options: Optional[RecommendOptions] = None,
    ) -> RecommendationResult:
        """
        Recommend the k careers closest to a user profile.

        Flow:
        1. Extract the query vector
        2. Check the result cache for (hash(query), k); hits are re-explained
        3. On a miss, scan the active catalog and explain the top k
        4. Cache the computed neighbours
        5. Summarize, sort by descending similarity and record an audit trail

        Args:
            profile: Validated user profile
            options: Request options (default: k=default_k, cache on)

        Returns:
            RecommendationResult with recommendations and analysis

        Raises:
            ValueError: If options.k < 1
            EmptyCandidatePool: If the catalog has no active careers
            DimensionMismatch: If a stored career vector has the wrong length
        """
        start_time = time.time()
        options = options or RecommendOptions(k=self.default_k)
        if options.k < 1:
            raise ValueError(f"k must be at least 1, got {options.k}")
        k = options.k

        # Step 1: Query vector
        query = self.extractor.extract_user_features(profile)
        cache_key = hash_features(query)

        # Step 2: Cache lookup
        neighbors: Optional[list[NeighborResult]] = None
        pool_size = 0
        cache_used = False
        pending: dict[str, list[float]] = {}

        if options.use_cache and self.cache is not None:
            cached = self._cache_lookup(cache_key, k)
            if cached is not None:
                neighbors, pool_size = cached
                cache_used = True
                # Reasons read raw profile fields the cache key does not cover
                neighbors = [
                    replace(r, match_reasons=explain_match(profile, r.career))
                    for r in neighbors
                ]

        # Step 3: Compute on miss
        if neighbors is None:
            neighbors, pool_size, pending = self._compute_neighbors(profile, query, k)

            # Step 4: Cache
            if options.use_cache and self.cache is not None:
                self._cache_store(
                    cache_key,
                    k,
                    neighbors,
                    pool_size,
                    computation_time_ms=(time.time() - start_time) * 1000,
                )

            if pending:
                self.reconcile_feature_vectors(pending, wait=False)

        # Step 5: Analysis and response
        ordered = sorted(neighbors, key=lambda r: -r.similarity)
        recommendations = [Recommendation.from_neighbor(r) for r in ordered]
        analysis = self.summarize(
            profile,
            ordered,
            pool_size,
            processing_time_ms=(time.time() - start_time) * 1000,
        )

        assessment_id = f"assessment_{int(start_time * 1000)}_{uuid.uuid4().hex[:9]}"
        user_id = profile.user_id or "anonymous"
        if options.save_to_database and self.audit is not None and ordered:
            user_id = self._record_assessment(
                assessment_id, profile, ordered, analysis, k, cache_used
            ) or user_id

        debug_info = None
        if options.include_debug:
            debug_info = DebugInfo(
                user_features=[float(v) for v in query],
                cache_key=cache_key,
                cache_used=cache_used,
                neighbors=ordered,
                pending_write_backs=len(pending),
            )

        return RecommendationResult(
            assessment_id=assessment_id,
            user_id=user_id,
            recommendations=recommendations,
            neighbors=ordered,
            analysis=analysis,
            cache_hit=cache_used,
            debug_info=debug_info,
        )

    def summarize(
        self,
        profile: UserProfile,
        neighbors: list[NeighborResult],
        pool_size: int,
        processing_time_ms: float = 0.0,
    ) -> AnalysisSummary:
        """
        Build the aggregate analysis for a set of neighbours.

        Top skill and personality matches come from the user's own
        profile: their strongest skills (7+) and traits (70+), up to 3 each.
        """
        average = (
            sum(r.similarity for r in neighbors) / len(neighbors) if neighbors else 0.0
        )

        strong_skills = sorted(
            (s for s in profile.skill_results if s.score >= self.STRONG_SKILL_SCORE),
            key=lambda s: -s.score,
        )
        strong_traits = sorted(
            (t for t in profile.personality_traits if t.score >= self.STRONG_TRAIT_SCORE),
            key=lambda t: -t.score,
        )

        return AnalysisSummary(
            total_careers=pool_size,
            average_similarity=round(average),
            top_skill_matches=_unique([s.skill for s in strong_skills])[:3],
            top_personality_matches=_unique([t.trait for t in strong_traits])[:3],
            processing_time_ms=processing_time_ms,
        )

    def _compute_neighbors(
        self,
        profile: UserProfile,
        query: np.ndarray,
        k: int,
    ) -> tuple[list[NeighborResult], int, dict[str, list[float]]]:
        """
        Scan the active catalog for the k nearest careers.

        Returns:
            Tuple of (neighbours by ascending distance, pool size,
            vectors computed during the scan keyed by career ID)
        """
        careers = self.catalog.list_active_careers()

        candidates = []
        pending: dict[str, list[float]] = {}
        for career in careers:
            vector, computed = self.extractor.resolve_base_features(career)
            if computed:
                pending[career.id] = [float(v) for v in vector]
            candidates.append((career, self.extractor.apply_weights(vector)))

        try:
            nearest = find_k_nearest(query, candidates, k)
        except DimensionMismatch as e:
            logger.error(f"Feature vector invariant violated: {e}")
            raise

        results = [
            NeighborResult(
                career=n.item,
                distance=n.distance,
                similarity=n.similarity,
                match_reasons=explain_match(profile, n.item),
            )
            for n in nearest
        ]
        logger.debug(
            f"Computed {len(results)} neighbours from {len(candidates)} careers "
            f"({len(pending)} vectors pending write-back)"
        )
        return results, len(candidates), pending

    # =========================================================================
    # Cache helpers
    # =========================================================================

    def _cache_lookup(
        self, cache_key: str, k: int
    ) -> Optional[tuple[list[NeighborResult], int]]:
        try:
            entry = self.cache.get(cache_key, k)
        except CacheUnavailable as e:
            logger.warning(f"{e}. Computing without cache.")
            return None

        if entry is None:
            logger.debug(f"Cache miss for {cache_key} (k={k})")
            return None

        try:
            neighbors = entry.neighbors()
        except (KeyError, TypeError, ValueError, ValidationError) as e:
            logger.warning(f"Discarding unreadable cache entry {cache_key}: {e}")
            return None

        logger.debug(f"Cache hit for {cache_key} (k={k})")
        return neighbors, entry.pool_size or len(neighbors)

    def _cache_store(
        self,
        cache_key: str,
        k: int,
        neighbors: list[NeighborResult],
        pool_size: int,
        computation_time_ms: float,
    ) -> None:
        try:
            self.cache.put(
                cache_key,
                k,
                [r.to_dict() for r in neighbors],
                ttl_ms=self.cache_ttl_ms,
                computation_time_ms=computation_time_ms,
                pool_size=pool_size,
            )
        except CacheUnavailable as e:
            logger.warning(f"{e}. Result not cached.")

    def clear_cache(self) -> int:
        """Drop every cached result. Returns the number removed."""
        if self.cache is None:
            return 0
        return self.cache.clear()

    def purge_expired_cache(self) -> int:
        """Drop expired cached results. Returns the number removed."""
        if self.cache is None:
            return 0
        return self.cache.purge_expired()

    # =========================================================================
    # Feature-vector write-back
    # =========================================================================

    def reconcile_feature_vectors(
        self,
        pending: dict[str, list[float]],
        wait: bool = False,
    ) -> Union[bool, Future, None]:
        """
        Persist feature vectors computed during a catalog scan.

        Failures are logged and never raised: the stored vectors are only
        an optimisation and will be recomputed on the next scan.

        Args:
            pending: Mapping of career_id -> vector
            wait: Run in the caller's thread and return the outcome instead
                of scheduling on the background worker

        Returns:
            True/False when wait is set, a Future resolving to True/False
            otherwise, or None if there was nothing to write or the worker
            has been shut down
        """
        if not pending:
            return None
        if wait:
            return self._write_back(dict(pending))
        try:
            return self._write_back_executor.submit(self._write_back, dict(pending))
        except RuntimeError as e:
            # Executor already shut down by close()
            failure = CatalogWriteBackFailed(
                f"Could not schedule feature vectors for {len(pending)} careers: {e}"
            )
            logger.warning(str(failure))
            return None

    def _write_back(self, pending: dict[str, list[float]]) -> bool:
        try:
            self.catalog.bulk_update_feature_vectors(pending)
        except Exception as e:
            failure = CatalogWriteBackFailed(
                f"Failed to store feature vectors for {len(pending)} careers: {e}"
            )
            logger.warning(str(failure))
            return False

        logger.info(f"Stored feature vectors for {len(pending)} careers")
        return True

    # =========================================================================
    # Audit records
    # =========================================================================

    def _record_assessment(
        self,
        assessment_id: str,
        profile: UserProfile,
        neighbors: list[NeighborResult],
        analysis: AnalysisSummary,
        k: int,
        cache_used: bool,
    ) -> Optional[str]:
        """
        Persist the assessment, its recommendations and a run summary.

        Returns:
            The stored user ID, or None if persistence failed
        """
        analysis_dict = {
            "total_careers": analysis.total_careers,
            "average_similarity": analysis.average_similarity,
            "top_skill_matches": analysis.top_skill_matches,
            "top_personality_matches": analysis.top_personality_matches,
            "processing_time_ms": analysis.processing_time_ms,
        }
        matches = [round(r.similarity) for r in neighbors]

        try:
            user_id = self.audit.save_assessment(
                assessment_id, profile, neighbors, analysis_dict, k
            )
            self.audit.save_results_summary(
                {
                    "assessment_id": assessment_id,
                    "user_id": user_id,
                    "knn_generated": len(neighbors),
                    "avg_match_score": round(sum(matches) / len(matches)) if matches else 0,
                    "industries_count": len({r.career.industry for r in neighbors if r.career.industry}),
                    "processing_time": analysis.processing_time_ms,
                    "total_profiles_analyzed": analysis.total_careers,
                    "confidence_score": min(95, analysis.average_similarity + 10),
                    "algorithm_type": self.ALGORITHM_NAME,
                    "k_value": k,
                    "cache_used": cache_used,
                }
            )
        except Exception as e:
            logger.warning(f"Failed to record assessment {assessment_id}: {e}")
            return None

        return user_id

    # =========================================================================
    # Profile utilities
    # =========================================================================

    def find_similar_users(
        self,
        profile: UserProfile,
        others: list[UserProfile],
        k: Optional[int] = None,
    ) -> list[UserProfile]:
        """
        Find the k user profiles closest to the given one.

        Returns an empty list when there are no other profiles.
        """
        if not others:
            return []
        query = self.extractor.extract_user_features(profile)
        candidates = [(other, self.extractor.extract_user_features(other)) for other in others]
        nearest = find_k_nearest(query, candidates, k or self.default_k)
        return [n.item for n in nearest]

    @staticmethod
    def analyze_profile(profile: UserProfile) -> ProfileAnalysis:
        """
        Summarize a profile's strengths and suggest improvements.

        Suggests courses for skills scoring below 5, and networking or
        leadership development when Extraversion or Leadership is below 40.
        """
        skills = sorted(profile.skill_results, key=lambda s: -s.score)
        traits = sorted(profile.personality_traits, key=lambda t: -t.score)
        weakest = list(reversed(skills[-3:]))

        improvements = [
            f"Consider improving {s.skill} through online courses or practice"
            for s in weakest
            if s.score < 5
        ]
        extraversion = profile.trait_score("Extraversion")
        if extraversion is not None and extraversion < 40:
            improvements.append("Consider developing networking and communication skills")
        leadership = profile.trait_score("Leadership")
        if leadership is not None and leadership < 40:
            improvements.append(
                "Leadership development could open up management opportunities"
            )

        return ProfileAnalysis(
            strongest_skills=skills[:3],
            weakest_skills=weakest,
            dominant_traits=traits[:3],
            recommended_improvements=improvements,
        )

    # =========================================================================
    # Statistics
    # =========================================================================

    def get_stats(self) -> dict:
        """
        Get engine statistics.

        Returns:
            Dict with configuration, cache stats and catalog stats
        """
        stats = {
            "default_k": self.default_k,
            "feature_dimension": self.extractor.dimension,
            "cache_enabled": self.cache is not None,
            "cache_ttl_ms": self.cache_ttl_ms,
            "trait_weights": self.extractor.trait_weights,
        }

        if self.cache is not None:
            try:
                cache_stats = self.cache.stats()
                stats["cache"] = {
                    "total_entries": cache_stats.total_entries,
                    "active_entries": cache_stats.active_entries,
                    "expired_entries": cache_stats.expired_entries,
                    "avg_computation_ms": cache_stats.avg_computation_ms,
                    "hit_rate": cache_stats.hit_rate,
                }
            except CacheUnavailable as e:
                stats["cache"] = {"error": str(e)}

        if hasattr(self.catalog, "get_career_stats"):
            try:
                stats["catalog"] = self.catalog.get_career_stats()
            except Exception as e:
                stats["catalog"] = {"error": str(e)}

        return stats

    def get_system_metrics(self) -> dict:
        """
        Usage metrics from the audit store plus this engine's cache hit rate.
        """
        metrics = {
            "total_assessments": 0,
            "avg_processing_time_ms": 0,
            "cache_entries": 0,
            "top_careers": [],
        }
        if self.audit is not None and hasattr(self.audit, "get_system_metrics"):
            try:
                metrics.update(self.audit.get_system_metrics())
            except Exception as e:
                logger.warning(f"Failed to get system metrics: {e}")

        metrics["cache_hit_rate"] = 0.0
        if self.cache is not None:
            try:
                metrics["cache_hit_rate"] = self.cache.stats().hit_rate
            except CacheUnavailable as e:
                logger.warning(str(e))
        return metrics


def _unique(names: list[str]) -> list[str]:
    seen: set[str] = set()
    result = []
    for name in names:
        if name not in seen:
            seen.add(name)
            result.append(name)
    return result
