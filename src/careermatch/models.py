"""
Pydantic models for assessment profiles and the career catalog.

These models validate the records that enter the recommendation engine,
so the engine itself can rely on scores being in range and on every
career carrying a stable identifier.
"""

import re
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


def career_id_from_title(title: str) -> str:
    """
    Derive a stable career identifier from its title.

    Example:
        career_id_from_title("Software Engineer (Backend)") -> "software-engineer-backend-"
    """
    slug = re.sub(r"[^a-z0-9]", "-", title.lower())
    return re.sub(r"-+", "-", slug)


class PersonalityTrait(BaseModel):
    """A personality trait score from the survey (0-100)."""
    model_config = ConfigDict(frozen=True)

    trait: str = Field(..., min_length=1)
    score: float = Field(..., ge=0, le=100)


class SkillResult(BaseModel):
    """A self-assessed skill score (0-10) with its category label."""
    model_config = ConfigDict(frozen=True)

    skill: str = Field(..., min_length=1)
    score: float = Field(..., ge=0, le=10)
    category: str = ""


class Preferences(BaseModel):
    """Work preferences collected at the start of the assessment."""
    model_config = ConfigDict(frozen=True)

    work_environment: str = ""
    industry: str = ""
    location: str = ""


class UserProfile(BaseModel):
    """
    Assessment profile submitted by a user.

    Constructed fresh for every submission and never mutated afterwards.
    """
    model_config = ConfigDict(frozen=True)

    user_id: Optional[str] = None
    personality_traits: list[PersonalityTrait] = Field(default_factory=list)
    skill_results: list[SkillResult] = Field(default_factory=list)
    preferences: Preferences = Field(default_factory=Preferences)
    experience_level: str = ""
    career_goals: str = ""

    def skill_score(self, name: str) -> Optional[float]:
        """Return the score for a skill, or None if it was not assessed."""
        for result in self.skill_results:
            if result.skill == name:
                return result.score
        return None

    def trait_score(self, name: str) -> Optional[float]:
        """Return the score for a personality trait, or None if absent."""
        for trait in self.personality_traits:
            if trait.trait == name:
                return trait.score
        return None


class CareerProfile(BaseModel):
    """
    A career in the recommendation catalog.

    ``feature_vector`` is a cached encoding of the scoring fields
    (required_skills, personality_fit, industry, experience_level,
    work_environment), stored without trait weights. It must be cleared
    whenever one of those changes; CareerDatabase.upsert_career does this
    automatically.
    """

    id: str = ""
    title: str = Field(..., min_length=1)
    description: str = ""
    required_skills: dict[str, float] = Field(default_factory=dict)
    personality_fit: dict[str, float] = Field(default_factory=dict)
    industry: str = ""
    experience_level: str = ""
    work_environment: str = ""
    salary_range: str = ""
    growth_outlook: str = ""
    feature_vector: Optional[list[float]] = None
    is_active: bool = True

    @field_validator("required_skills", "personality_fit")
    @classmethod
    def levels_in_range(cls, v: dict[str, float]) -> dict[str, float]:
        for name, level in v.items():
            if not 0 <= level <= 10:
                raise ValueError(f"level for '{name}' must be between 0 and 10, got {level}")
        return v

    @model_validator(mode="after")
    def default_id_from_title(self) -> "CareerProfile":
        if not self.id:
            self.id = career_id_from_title(self.title)
        return self

    def scoring_fields(self) -> tuple:
        """Fields the feature vector is derived from (used for staleness checks)."""
        return (
            tuple(sorted(self.required_skills.items())),
            tuple(sorted(self.personality_fit.items())),
            self.industry,
            self.experience_level,
            self.work_environment,
        )

    @property
    def key_skills(self) -> list[str]:
        """Skills the career requires at level 7 or above."""
        return [skill for skill, level in self.required_skills.items() if level >= 7]
