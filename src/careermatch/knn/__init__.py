"""
K-nearest-neighbour career matching.

Encodes user assessments and catalog careers into a shared 16-dimension
feature space and ranks careers by Euclidean distance, with a
content-addressed result cache and human-readable match reasons.

Features:
- Exact brute-force search (no approximate index)
- Similarity scores normalised to 0-100 over the candidate pool
- Result caching in SQLite or in memory with a 24h TTL
- Background write-back of computed career vectors

Example:
    from src.careermatch.knn import RecommendationEngine, RecommendOptions

    engine = RecommendationEngine.from_database("data/careers.db")
    result = engine.recommend(profile, RecommendOptions(k=5))
"""

from .cache import MemoryCacheStore, ResultCache, SQLiteCacheStore, hash_features
from .distance import euclidean_distance, pairwise_distances, similarity
from .engine import RecommendationEngine
from .errors import (
    CacheUnavailable,
    CatalogWriteBackFailed,
    DimensionMismatch,
    EmptyCandidatePool,
    RecommendationError,
)
from .explainer import explain_match
from .features import FEATURE_LENGTH, FEATURE_NAMES, FeatureExtractor
from .models import (
    AnalysisSummary,
    CachedResult,
    CacheStats,
    DebugInfo,
    Neighbor,
    NeighborResult,
    ProfileAnalysis,
    Recommendation,
    RecommendationResult,
    RecommendOptions,
)
from .selector import find_k_nearest

__all__ = [
    # Engine
    "RecommendationEngine",
    "RecommendOptions",
    "RecommendationResult",
    "Recommendation",
    "AnalysisSummary",
    "ProfileAnalysis",
    "DebugInfo",
    # Building blocks
    "FeatureExtractor",
    "FEATURE_LENGTH",
    "FEATURE_NAMES",
    "euclidean_distance",
    "pairwise_distances",
    "similarity",
    "find_k_nearest",
    "explain_match",
    "Neighbor",
    "NeighborResult",
    # Cache
    "ResultCache",
    "SQLiteCacheStore",
    "MemoryCacheStore",
    "CachedResult",
    "CacheStats",
    "hash_features",
    # Errors
    "RecommendationError",
    "DimensionMismatch",
    "EmptyCandidatePool",
    "CacheUnavailable",
    "CatalogWriteBackFailed",
]
