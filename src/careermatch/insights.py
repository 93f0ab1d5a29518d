"""
Async client for AI-generated career insights.

Sends a compact summary of a recommendation run to the Anthropic
Messages API and parses the structured reply into CareerInsights.

Provides:
- Automatic retry with exponential backoff
- Lenient parsing (JSON is extracted from surrounding prose)
- A deterministic local fallback when the reply cannot be parsed
"""

import json
import logging
import os
import re
from datetime import datetime
from typing import Optional

import httpx
from pydantic import BaseModel, Field, ValidationError
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from .knn.models import RecommendationResult
from .models import UserProfile

logger = logging.getLogger(__name__)


class InsightError(Exception):
    """Base exception for insight generation errors."""
    pass


class InsightConfigError(InsightError):
    """Raised when the client is missing an API key or gets an unknown model."""
    pass


class InsightRateLimitError(InsightError):
    """Raised when rate limited by the API."""
    pass


# =============================================================================
# Insight models
# =============================================================================


class CareerPathStep(BaseModel):
    role: str
    timeframe: str = ""
    skills: str = ""
    reasoning: str = ""


class SkillGap(BaseModel):
    name: str
    priority: str = "Medium"
    reason: str = ""


class IndustryInsight(BaseModel):
    name: str
    match_percentage: float = Field(0, alias="matchPercentage", ge=0, le=100)
    reason: str = ""
    growth_potential: str = Field("", alias="growthPotential")

    model_config = {"populate_by_name": True}


class CareerInsights(BaseModel):
    """
    Structured insights about a recommendation run.

    ``fallback`` is True when the content was built locally because the
    service reply could not be parsed.
    """

    interpretation: str = ""
    patterns: list[str] = Field(default_factory=list)
    career_path: list[CareerPathStep] = Field(default_factory=list, alias="careerPath")
    skill_gaps: list[SkillGap] = Field(default_factory=list, alias="skillGaps")
    industry_insights: list[IndustryInsight] = Field(default_factory=list, alias="industryInsights")
    networking_tips: list[str] = Field(default_factory=list, alias="networkingTips")
    unique_insights: str = Field("", alias="uniqueInsights")
    success_predictors: list[str] = Field(default_factory=list, alias="successPredictors")

    model: str = ""
    generated_at: datetime = Field(default_factory=datetime.now)
    profiles_analyzed: int = 0
    fallback: bool = False

    model_config = {"populate_by_name": True}


# =============================================================================
# Prompt building
# =============================================================================


def summarize_for_prompt(profile: UserProfile, result: RecommendationResult, k: int) -> dict:
    """
    Build a JSON-serialisable summary of a recommendation run.

    Only the fields the prompt needs are included.
    """
    top_skills = sorted(
        (s for s in profile.skill_results if s.score >= 7), key=lambda s: -s.score
    )[:5]
    top_traits = sorted(
        (t for t in profile.personality_traits if t.score >= 70), key=lambda t: -t.score
    )[:3]

    return {
        "top_skills": [f"{s.skill} ({s.score:g}/10)" for s in top_skills],
        "top_traits": [f"{t.trait} ({t.score:g}%)" for t in top_traits],
        "experience_level": profile.experience_level or "Not specified",
        "preferred_industry": profile.preferences.industry or "Not specified",
        "work_environment": profile.preferences.work_environment or "Not specified",
        "total_careers": result.analysis.total_careers,
        "average_similarity": result.analysis.average_similarity,
        "k": k,
        "careers": [
            {"title": r.title, "match": r.match, "industry": r.industry}
            for r in result.recommendations[:5]
        ],
    }


def build_prompt(summary: dict) -> str:
    careers = ", ".join(f"{c['title']} ({c['match']}% match)" for c in summary["careers"])
    return f"""You are an expert career counselor analyzing K-nearest-neighbour career matching results.

User Profile Summary:
- Top Skills: {", ".join(summary["top_skills"]) or "None identified"}
- Dominant Personality Traits: {", ".join(summary["top_traits"]) or "None identified"}
- Experience Level: {summary["experience_level"]}
- Preferred Industry: {summary["preferred_industry"]}
- Work Environment: {summary["work_environment"]}

Matching Results:
- Total Careers Analyzed: {summary["total_careers"]}
- Average Similarity Score: {summary["average_similarity"]}%
- K Value Used: {summary["k"]}
- Top Matched Careers: {careers or "None"}

Respond with a single JSON object with these keys:
"interpretation" (2-3 sentences), "patterns" (list of strings),
"careerPath" (list of {{"role", "timeframe", "skills", "reasoning"}}),
"skillGaps" (list of {{"name", "priority", "reason"}}),
"industryInsights" (list of {{"name", "matchPercentage", "reason", "growthPotential"}}),
"networkingTips" (list of strings), "uniqueInsights" (string),
"successPredictors" (list of strings).

Keep the advice practical and tied to the matching results above."""


def parse_insights(text: str) -> Optional[CareerInsights]:
    """
    Extract CareerInsights from a free-text reply.

    Returns:
        Parsed insights, or None if no valid JSON object is found
    """
    match = re.search(r"\{[\s\S]*\}", text)
    if not match:
        return None
    try:
        return CareerInsights.model_validate(json.loads(match.group(0)))
    except (json.JSONDecodeError, ValidationError) as e:
        logger.warning(f"Failed to parse insights reply: {e}")
        return None


def fallback_insights(profile: UserProfile, result: RecommendationResult) -> CareerInsights:
    """Build insights locally from the recommendation run."""
    titles = [r.title for r in result.recommendations[:3]]
    strong_skills = [
        s.skill for s in sorted(profile.skill_results, key=lambda s: -s.score) if s.score >= 7
    ]
    weak_skills = [
        s for s in sorted(profile.skill_results, key=lambda s: s.score) if s.score < 5
    ]

    if titles:
        interpretation = (
            f"Your closest matches are {', '.join(titles)}, "
            f"with an average similarity of {result.analysis.average_similarity}%."
        )
    else:
        interpretation = "No careers were matched for this profile."

    industries: dict[str, list[int]] = {}
    for rec in result.recommendations:
        if rec.industry:
            industries.setdefault(rec.industry, []).append(rec.match)

    return CareerInsights(
        interpretation=interpretation,
        patterns=[f"Strong {skill.lower()}" for skill in strong_skills[:3]],
        career_path=[CareerPathStep(role=title) for title in titles],
        skill_gaps=[
            SkillGap(
                name=s.skill,
                priority="High" if s.score < 3 else "Medium",
                reason=f"Scored {s.score:g}/10",
            )
            for s in weak_skills[:3]
        ],
        industry_insights=[
            IndustryInsight(name=name, match_percentage=round(sum(m) / len(m)))
            for name, m in industries.items()
        ],
        profiles_analyzed=result.analysis.total_careers,
        fallback=True,
    )


# =============================================================================
# Client
# =============================================================================


class InsightClient:
    """
    Async client for the Anthropic Messages API.

    Example:
        async with InsightClient() as client:
            insights = await client.generate_insights(profile, result)
            print(insights.interpretation)
    """

    BASE_URL = "https://api.anthropic.com/v1"
    API_VERSION = "2023-06-01"
    MODEL_CONFIGS = {
        "opus": {"name": "claude-3-opus-20240229", "max_tokens": 3000, "temperature": 0.2},
        "sonnet": {"name": "claude-3-5-sonnet-20241022", "max_tokens": 4000, "temperature": 0.3},
        "haiku": {"name": "claude-3-5-haiku-20241022", "max_tokens": 2000, "temperature": 0.4},
    }
    DEFAULT_MODEL = "sonnet"

    def __init__(
        self,
        api_key: Optional[str] = None,
        timeout: float = 60.0,
        base_url: str = BASE_URL,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize the insight client.

        Args:
            api_key: API key (default: CLAUDE_API_KEY environment variable)
            timeout: Request timeout in seconds
            base_url: API base URL
            transport: Optional httpx transport (used by tests)
        """
        self.api_key = api_key or os.environ.get("CLAUDE_API_KEY")
        self.timeout = timeout
        self.base_url = base_url
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self) -> "InsightClient":
        if not self.api_key:
            raise InsightConfigError("API key not configured (set CLAUDE_API_KEY)")
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers={
                "Content-Type": "application/json",
                "x-api-key": self.api_key,
                "anthropic-version": self.API_VERSION,
            },
            timeout=self.timeout,
            transport=self._transport,
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    def _handle_response(self, response: httpx.Response) -> dict:
        if response.status_code == 429:
            raise InsightRateLimitError("Rate limited by insights API")

        if response.status_code >= 400:
            raise InsightError(
                f"Insights API error {response.status_code}: {response.text[:200]}"
            )

        return response.json()

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        retry=retry_if_exception_type((httpx.HTTPError, InsightRateLimitError)),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    async def _complete(self, prompt: str, model: str) -> str:
        """Send a single-message completion request and return its text."""
        if not self._client:
            raise RuntimeError("Client not initialized. Use 'async with' context.")

        config = self.MODEL_CONFIGS[model]
        response = await self._client.post(
            "/messages",
            json={
                "model": config["name"],
                "max_tokens": config["max_tokens"],
                "temperature": config["temperature"],
                "messages": [{"role": "user", "content": prompt}],
            },
        )
        data = self._handle_response(response)
        return "".join(
            block.get("text", "")
            for block in data.get("content", [])
            if block.get("type", "text") == "text"
        )

    async def generate_insights(
        self,
        profile: UserProfile,
        result: RecommendationResult,
        k: Optional[int] = None,
        model: str = DEFAULT_MODEL,
    ) -> CareerInsights:
        """
        Generate insights for a recommendation run.

        Args:
            profile: The profile the recommendations were computed for
            result: Output of RecommendationEngine.recommend
            k: k used for the run (default: number of recommendations)
            model: One of MODEL_CONFIGS

        Returns:
            CareerInsights (with fallback=True if the reply was unusable)

        Raises:
            InsightConfigError: If the model is unknown
            InsightError: If the API keeps failing after retries
        """
        if model not in self.MODEL_CONFIGS:
            raise InsightConfigError(f"Invalid model selected: {model}")

        summary = summarize_for_prompt(profile, result, k or len(result.recommendations))
        text = await self._complete(build_prompt(summary), model)

        insights = parse_insights(text)
        if insights is None:
            logger.warning("Insights reply was not usable; using local summary")
            insights = fallback_insights(profile, result)

        insights.model = model
        insights.profiles_analyzed = result.analysis.total_careers
        return insights
