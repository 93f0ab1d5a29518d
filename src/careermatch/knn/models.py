"""
Models for the KNN recommendation engine.

Contains:
- Neighbour and result records produced by the selector and engine
- Cache entry and statistics records
- Request options and the aggregate analysis returned to callers
"""

from dataclasses import dataclass, field
from typing import Any, Optional

from ..models import CareerProfile, PersonalityTrait, SkillResult


@dataclass
class Neighbor:
    """
    A candidate scored by find_k_nearest.

    ``position`` is the candidate's index in the pool passed to the
    selector, used to keep tie ordering visible in debug output.
    """

    item: Any
    distance: float
    similarity: float
    position: int = 0


@dataclass
class NeighborResult:
    """
    One career in a KNN result, with the reasons it matched.

    Similarity is a strictly decreasing function of distance for a fixed
    query and candidate pool.
    """

    career: CareerProfile
    distance: float
    similarity: float
    match_reasons: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        """Serialize for the result cache."""
        return {
            "career": self.career.model_dump(),
            "distance": self.distance,
            "similarity": self.similarity,
            "match_reasons": list(self.match_reasons),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "NeighborResult":
        return cls(
            career=CareerProfile.model_validate(data["career"]),
            distance=float(data["distance"]),
            similarity=float(data["similarity"]),
            match_reasons=list(data.get("match_reasons", [])),
        )


@dataclass
class CachedResult:
    """
    A cached KNN computation keyed by (hash, k).

    Valid only while ``now_ms < expires_at_ms``. ``pool_size`` records how
    many active careers were scanned so cache hits can report it.
    """

    hash: str
    k: int
    payload: list[dict] = field(default_factory=list)
    computed_at_ms: int = 0
    expires_at_ms: int = 0
    computation_time_ms: float = 0.0
    pool_size: int = 0

    def is_valid(self, now_ms: int) -> bool:
        return now_ms < self.expires_at_ms

    def neighbors(self) -> list[NeighborResult]:
        """Deserialize the payload back into NeighborResult records."""
        return [NeighborResult.from_dict(item) for item in self.payload]


@dataclass
class CacheStats:
    """Result cache statistics."""

    total_entries: int = 0
    active_entries: int = 0
    expired_entries: int = 0
    avg_computation_ms: float = 0.0
    hits: int = 0
    misses: int = 0
    errors: int = 0

    @property
    def hit_rate(self) -> float:
        """Fraction of lookups served from cache since startup."""
        lookups = self.hits + self.misses
        if lookups > 0:
            return self.hits / lookups
        return 0.0


@dataclass
class RecommendOptions:
    """
    Options for RecommendationEngine.recommend.

    Example:
        options = RecommendOptions(k=3, include_debug=True)
    """

    k: int = 5
    use_cache: bool = True
    include_debug: bool = False
    save_to_database: bool = True


@dataclass
class AnalysisSummary:
    """
    Aggregate analysis of a recommendation run.

    Attributes:
        total_careers: Size of the candidate pool searched (returned
            count when the result came from cache and the pool was not loaded)
        average_similarity: Mean similarity over the returned careers, rounded
        top_skill_matches: User's own skills scoring 7+ (best first, up to 3)
        top_personality_matches: User's own traits scoring 70+ (best first, up to 3)
        processing_time_ms: Wall-clock time of the call
    """

    total_careers: int = 0
    average_similarity: int = 0
    top_skill_matches: list[str] = field(default_factory=list)
    top_personality_matches: list[str] = field(default_factory=list)
    processing_time_ms: float = 0.0


@dataclass
class Recommendation:
    """Caller-facing view of a recommended career."""

    id: str
    title: str
    match: int
    description: str = ""
    skills: list[str] = field(default_factory=list)
    salary: str = ""
    outlook: str = ""
    reasoning: str = ""
    knn_similarity: float = 0.0
    source: str = "knn"
    match_reasons: list[str] = field(default_factory=list)
    industry: str = ""
    experience_level: str = ""
    work_environment: str = ""

    @classmethod
    def from_neighbor(cls, result: NeighborResult) -> "Recommendation":
        career = result.career
        return cls(
            id=career.id,
            title=career.title,
            match=round(result.similarity),
            description=career.description,
            skills=career.key_skills,
            salary=career.salary_range,
            outlook=career.growth_outlook,
            reasoning=". ".join(result.match_reasons),
            knn_similarity=result.similarity,
            match_reasons=list(result.match_reasons),
            industry=career.industry,
            experience_level=career.experience_level,
            work_environment=career.work_environment,
        )


@dataclass
class DebugInfo:
    """Internals exposed when RecommendOptions.include_debug is set."""

    user_features: list[float] = field(default_factory=list)
    cache_key: str = ""
    cache_used: bool = False
    neighbors: list[NeighborResult] = field(default_factory=list)
    pending_write_backs: int = 0


@dataclass
class RecommendationResult:
    """Response from RecommendationEngine.recommend."""

    assessment_id: str
    user_id: str
    recommendations: list[Recommendation] = field(default_factory=list)
    neighbors: list[NeighborResult] = field(default_factory=list)
    analysis: AnalysisSummary = field(default_factory=AnalysisSummary)
    cache_hit: bool = False
    debug_info: Optional[DebugInfo] = None


@dataclass
class ProfileAnalysis:
    """Strengths, weaknesses and suggestions derived from a user profile."""

    strongest_skills: list[SkillResult] = field(default_factory=list)
    weakest_skills: list[SkillResult] = field(default_factory=list)
    dominant_traits: list[PersonalityTrait] = field(default_factory=list)
    recommended_improvements: list[str] = field(default_factory=list)
