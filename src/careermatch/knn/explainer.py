"""
Human-readable match explanations.

Explanations are built from the raw profile fields rather than the feature
vectors, so a close neighbour can have a short explanation and a distant one
a long explanation. Rules are applied in a fixed order and each contributes
at most one sentence.
"""

from ..models import CareerProfile, UserProfile

STRONG_SKILL_SCORE = 7
STRONG_TRAIT_SCORE = 70
HIGH_REQUIREMENT = 7

MAX_SKILLS_MENTIONED = 3
MAX_TRAITS_MENTIONED = 2

FALLBACK_REASON = "Good overall profile match"


def explain_match(profile: UserProfile, career: CareerProfile) -> list[str]:
    """
    Explain why a career matched a user profile.

    Returns:
        Ordered list of reasons; never empty.
    """
    reasons: list[str] = []

    strong_skills = [
        s.skill
        for s in profile.skill_results
        if s.score >= STRONG_SKILL_SCORE
        and career.required_skills.get(s.skill, 0) >= HIGH_REQUIREMENT
    ][:MAX_SKILLS_MENTIONED]
    if strong_skills:
        reasons.append(f"Strong match in {_join_lower(strong_skills)}")

    strong_traits = [
        t.trait
        for t in profile.personality_traits
        if t.score >= STRONG_TRAIT_SCORE
        and career.personality_fit.get(t.trait, 0) >= HIGH_REQUIREMENT
    ][:MAX_TRAITS_MENTIONED]
    if strong_traits:
        reasons.append(f"Personality aligns with {_join_lower(strong_traits)}")

    prefs = profile.preferences
    if prefs.industry and prefs.industry == career.industry:
        reasons.append(f"Matches your preferred {career.industry.lower()} industry")

    if prefs.work_environment and prefs.work_environment == career.work_environment:
        reasons.append(f"Fits your {career.work_environment.lower()} work style")

    if profile.experience_level and profile.experience_level == career.experience_level:
        reasons.append(f"Appropriate for your {career.experience_level.lower()} experience")

    return reasons or [FALLBACK_REASON]


def _join_lower(names: list[str]) -> str:
    return ", ".join(name.lower() for name in names)
