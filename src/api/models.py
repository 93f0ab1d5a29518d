"""
API request/response models for the CareerMatch recommendation API.

Pydantic models providing:
- Input validation with field constraints
- OpenAPI schema generation with examples
- Conversion to/from internal engine dataclasses

These models sit at the API boundary. The engine uses plain dataclasses
internally (src/careermatch/knn/models.py), and this module translates
between the HTTP layer and the engine layer. Profiles are already pydantic
models and are accepted as-is.
"""

from typing import Optional

from pydantic import BaseModel, Field

from ..careermatch.knn.models import (
    AnalysisSummary as InternalAnalysisSummary,
    DebugInfo as InternalDebugInfo,
    NeighborResult as InternalNeighborResult,
    ProfileAnalysis as InternalProfileAnalysis,
    Recommendation as InternalRecommendation,
    RecommendationResult as InternalRecommendationResult,
    RecommendOptions as InternalRecommendOptions,
)
from ..careermatch.models import PersonalityTrait, SkillResult, UserProfile


# =============================================================================
# Request Models
# =============================================================================


class RecommendOptionsModel(BaseModel):
    """Options for a recommendation request."""

    k: int = Field(5, ge=1, le=50, description="Number of careers to return")
    use_cache: bool = Field(True, description="Serve from the result cache when possible")
    include_debug: bool = Field(False, description="Include feature vectors and distances")
    save_to_database: bool = Field(True, description="Record the assessment for analytics")

    def to_internal(self) -> InternalRecommendOptions:
        """Convert to the internal engine dataclass."""
        return InternalRecommendOptions(
            k=self.k,
            use_cache=self.use_cache,
            include_debug=self.include_debug,
            save_to_database=self.save_to_database,
        )


class RecommendRequest(BaseModel):
    """Request for career recommendations."""

    user_profile: UserProfile
    options: RecommendOptionsModel = Field(default_factory=RecommendOptionsModel)

    model_config = {
        "json_schema_extra": {
            "examples": [
                {
                    "user_profile": {
                        "personality_traits": [
                            {"trait": "Analytical Thinking", "score": 85},
                            {"trait": "Creativity", "score": 60},
                        ],
                        "skill_results": [
                            {"skill": "Technical Aptitude", "score": 9},
                            {"skill": "Problem Solving", "score": 8},
                        ],
                        "preferences": {
                            "industry": "Technology",
                            "work_environment": "Team-oriented",
                        },
                        "experience_level": "Mid Level",
                    },
                    "options": {"k": 5},
                }
            ]
        }
    }


class ProfileAnalysisRequest(BaseModel):
    """Request for a strengths/weaknesses analysis of a profile."""

    user_profile: UserProfile


class InsightsRequest(BaseModel):
    """Request for AI-generated insights on a profile's recommendations."""

    user_profile: UserProfile
    k: int = Field(5, ge=1, le=50, description="Number of careers to analyse")
    model: str = Field("sonnet", description="Model family: 'opus', 'sonnet' or 'haiku'")


# =============================================================================
# Response Models
# =============================================================================


class RecommendationItem(BaseModel):
    """A recommended career."""

    id: str
    title: str
    match: int = Field(description="Similarity rounded to a whole percentage")
    description: str = ""
    skills: list[str] = Field(default_factory=list, description="Skills required at level 7+")
    salary: str = ""
    outlook: str = ""
    reasoning: str = ""
    knn_similarity: float
    source: str = "knn"
    match_reasons: list[str] = Field(default_factory=list)
    industry: str = ""
    experience_level: str = ""
    work_environment: str = ""

    @classmethod
    def from_internal(cls, rec: InternalRecommendation) -> "RecommendationItem":
        """Convert from the internal engine dataclass."""
        return cls(
            id=rec.id,
            title=rec.title,
            match=rec.match,
            description=rec.description,
            skills=rec.skills,
            salary=rec.salary,
            outlook=rec.outlook,
            reasoning=rec.reasoning,
            knn_similarity=rec.knn_similarity,
            source=rec.source,
            match_reasons=rec.match_reasons,
            industry=rec.industry,
            experience_level=rec.experience_level,
            work_environment=rec.work_environment,
        )


class AnalysisModel(BaseModel):
    """Aggregate analysis of a recommendation run."""

    total_careers: int
    average_similarity: int
    top_skill_matches: list[str]
    top_personality_matches: list[str]
    processing_time_ms: float

    @classmethod
    def from_internal(cls, analysis: InternalAnalysisSummary) -> "AnalysisModel":
        return cls(
            total_careers=analysis.total_careers,
            average_similarity=analysis.average_similarity,
            top_skill_matches=analysis.top_skill_matches,
            top_personality_matches=analysis.top_personality_matches,
            processing_time_ms=analysis.processing_time_ms,
        )


class NeighborDebug(BaseModel):
    career_id: str
    title: str
    distance: float
    similarity: float

    @classmethod
    def from_internal(cls, result: InternalNeighborResult) -> "NeighborDebug":
        return cls(
            career_id=result.career.id,
            title=result.career.title,
            distance=result.distance,
            similarity=result.similarity,
        )


class DebugInfoModel(BaseModel):
    """Engine internals returned when include_debug is set."""

    user_features: list[float]
    cache_key: str
    cache_used: bool
    neighbors: list[NeighborDebug]
    pending_write_backs: int

    @classmethod
    def from_internal(cls, info: InternalDebugInfo) -> "DebugInfoModel":
        return cls(
            user_features=info.user_features,
            cache_key=info.cache_key,
            cache_used=info.cache_used,
            neighbors=[NeighborDebug.from_internal(n) for n in info.neighbors],
            pending_write_backs=info.pending_write_backs,
        )


class RecommendationResponse(BaseModel):
    """Response for a recommendation request."""

    assessment_id: str
    user_id: str
    recommendations: list[RecommendationItem]
    analysis: AnalysisModel
    cache_hit: bool = False
    debug_info: Optional[DebugInfoModel] = None

    @classmethod
    def from_internal(cls, result: InternalRecommendationResult) -> "RecommendationResponse":
        """Convert from the internal engine dataclass."""
        return cls(
            assessment_id=result.assessment_id,
            user_id=result.user_id,
            recommendations=[RecommendationItem.from_internal(r) for r in result.recommendations],
            analysis=AnalysisModel.from_internal(result.analysis),
            cache_hit=result.cache_hit,
            debug_info=(
                DebugInfoModel.from_internal(result.debug_info)
                if result.debug_info is not None
                else None
            ),
        )


class ProfileAnalysisResponse(BaseModel):
    """Strengths, weaknesses and improvement suggestions for a profile."""

    strongest_skills: list[SkillResult]
    weakest_skills: list[SkillResult]
    dominant_traits: list[PersonalityTrait]
    recommended_improvements: list[str]

    @classmethod
    def from_internal(cls, analysis: InternalProfileAnalysis) -> "ProfileAnalysisResponse":
        return cls(
            strongest_skills=analysis.strongest_skills,
            weakest_skills=analysis.weakest_skills,
            dominant_traits=analysis.dominant_traits,
            recommended_improvements=analysis.recommended_improvements,
        )


class ResultsSummaryResponse(BaseModel):
    """Stored summary of a past recommendation run."""

    assessment_id: str
    user_id: str
    knn_generated: int
    avg_match_score: int
    industries_count: int
    processing_time: float
    total_profiles_analyzed: int
    confidence_score: int
    algorithm_type: str
    k_value: Optional[int] = None
    cache_used: bool
    created_at: Optional[str] = None


class CacheStatsResponse(BaseModel):
    """Result cache statistics."""

    total_entries: int
    active_entries: int
    expired_entries: int
    avg_computation_ms: float
    hit_rate: float = Field(description="Fraction of lookups served from cache since startup")


class PurgeResponse(BaseModel):
    removed: int


class StatsResponse(BaseModel):
    """System statistics."""

    total_careers: int
    active_careers: int
    careers_without_vectors: int
    by_industry: dict[str, int]
    by_experience_level: dict[str, int]
    total_assessments: int
    avg_processing_time_ms: float
    cache_entries: int
    cache_hit_rate: float
    top_careers: list[dict]
    default_k: int
    feature_dimension: int


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = Field(description="'healthy' or 'degraded'")
    engine_loaded: bool
    active_careers: int = 0
    cache_enabled: bool = False


class ErrorDetail(BaseModel):
    code: str
    message: str


class ErrorResponse(BaseModel):
    """Standard error envelope."""

    error: ErrorDetail
