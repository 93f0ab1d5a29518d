"""
Feature extraction for user and career profiles.

Both profile types are encoded into the same fixed-length vector so that
component i carries the same meaning on either side:

    [0:8]   skill levels        (SKILL_DIMENSIONS, scaled 0-1)
    [8:13]  personality traits  (TRAIT_DIMENSIONS, scaled 0-1)
    [13]    industry is "Technology"           (0/1)
    [14]    experience ordinal                 (Entry=0, Mid=0.5, other=1)
    [15]    work environment is "Team-oriented" (0/1)

Example:
    extractor = FeatureExtractor()
    query = extractor.extract_user_features(profile)
    vector, computed = extractor.resolve_career_features(career)
"""

import logging
from typing import Optional

import numpy as np

from ..models import CareerProfile, UserProfile

logger = logging.getLogger(__name__)

SKILL_DIMENSIONS: tuple[str, ...] = (
    "Technical Aptitude",
    "Problem Solving",
    "Creativity",
    "Communication",
    "Data Analysis",
    "Project Management",
    "Leadership",
    "Adaptability",
)

TRAIT_DIMENSIONS: tuple[str, ...] = (
    "Analytical Thinking",
    "Creativity",
    "Extraversion",
    "Leadership",
    "Adaptability",
)

CATEGORICAL_DIMENSIONS: tuple[str, ...] = (
    "industry_technology",
    "experience_ordinal",
    "work_environment_team",
)

FEATURE_NAMES: tuple[str, ...] = (
    tuple(f"skill:{s}" for s in SKILL_DIMENSIONS)
    + tuple(f"trait:{t}" for t in TRAIT_DIMENSIONS)
    + CATEGORICAL_DIMENSIONS
)
FEATURE_LENGTH = len(FEATURE_NAMES)

# Neutral values for anything a user did not answer
USER_SKILL_DEFAULT = 5.0
USER_TRAIT_DEFAULT = 50.0

TECHNOLOGY_INDUSTRY = "Technology"
TEAM_ENVIRONMENT = "Team-oriented"


def experience_ordinal(level: str) -> float:
    """
    Map an experience label to its ordinal feature value.

    Accepts both short and long forms ("Entry" / "Entry Level").
    Unrecognised and empty labels rank as senior.
    """
    normalized = level.strip().lower()
    if normalized.endswith(" level"):
        normalized = normalized[: -len(" level")]
    if normalized == "entry":
        return 0.0
    if normalized == "mid":
        return 0.5
    return 1.0


class FeatureExtractor:
    """
    Encodes UserProfile and CareerProfile records into feature vectors.

    Args:
        trait_weights: Optional per-trait multipliers applied to the
            personality dimensions of both users and careers. Use this to
            carry survey importance weights into the KNN feature space;
            by default every trait has weight 1.

    Weights are applied after the 0-1 clamp, so a weight above 1 stretches
    its trait dimension beyond 1 and a weight of 0 removes it from the
    distance. Stored career vectors are always unweighted: weighting is
    applied on read, so one catalog can serve engines with different
    weights.

    Raises:
        ValueError: If a weight is negative
    """

    def __init__(self, trait_weights: Optional[dict[str, float]] = None):
        self.trait_weights = dict(trait_weights or {})
        unknown = set(self.trait_weights) - set(TRAIT_DIMENSIONS)
        if unknown:
            logger.warning(f"Ignoring weights for unknown traits: {sorted(unknown)}")
        negative = sorted(t for t, w in self.trait_weights.items() if w < 0)
        if negative:
            raise ValueError(f"Trait weights must not be negative: {negative}")
        self._weights = np.array(
            [self.trait_weights.get(t, 1.0) for t in TRAIT_DIMENSIONS], dtype=np.float64
        )

    @property
    def dimension(self) -> int:
        return FEATURE_LENGTH

    def extract_user_features(self, profile: UserProfile) -> np.ndarray:
        """
        Encode a user's assessment results.

        Missing skills default to 5/10, missing traits to 50/100.
        """
        skills = [
            _score_or(profile.skill_score(name), USER_SKILL_DEFAULT) / 10
            for name in SKILL_DIMENSIONS
        ]
        traits = [
            _score_or(profile.trait_score(name), USER_TRAIT_DEFAULT) / 100
            for name in TRAIT_DIMENSIONS
        ]
        vector = _assemble(
            skills,
            traits,
            industry=profile.preferences.industry,
            experience=profile.experience_level,
            work_environment=profile.preferences.work_environment,
        )
        return self.apply_weights(vector)

    def extract_career_features(
        self, career: CareerProfile, weighted: bool = True
    ) -> np.ndarray:
        """
        Encode a career's requirements, ignoring any stored vector.

        Requirements the career does not list count as 0/10. With
        ``weighted=False`` the result is the form stored in the catalog.
        """
        skills = [career.required_skills.get(name, 0) / 10 for name in SKILL_DIMENSIONS]
        traits = [career.personality_fit.get(name, 0) / 10 for name in TRAIT_DIMENSIONS]
        vector = _assemble(
            skills,
            traits,
            industry=career.industry,
            experience=career.experience_level,
            work_environment=career.work_environment,
        )
        return self.apply_weights(vector) if weighted else vector

    def resolve_base_features(self, career: CareerProfile) -> tuple[np.ndarray, bool]:
        """
        Return a career's unweighted vector, preferring the stored one.

        Returns:
            Tuple of (vector, computed) where computed is True when the
            vector had to be derived and should be written back.
        """
        if career.feature_vector:
            return np.asarray(career.feature_vector, dtype=np.float64), False
        return self.extract_career_features(career, weighted=False), True

    def resolve_career_features(self, career: CareerProfile) -> tuple[np.ndarray, bool]:
        """Like resolve_base_features, with trait weights applied."""
        vector, computed = self.resolve_base_features(career)
        return self.apply_weights(vector), computed

    def apply_weights(self, vector: np.ndarray) -> np.ndarray:
        """
        Scale the trait slice of an unweighted vector.

        Vectors of the wrong length are returned unchanged so the
        selector can report the mismatch.
        """
        vector = np.array(vector, dtype=np.float64)
        if vector.shape != (FEATURE_LENGTH,):
            return vector
        vector[_TRAIT_SLICE] *= self._weights
        return vector


_TRAIT_SLICE = slice(len(SKILL_DIMENSIONS), len(SKILL_DIMENSIONS) + len(TRAIT_DIMENSIONS))


def _assemble(
    skills: list[float],
    traits: list[float],
    industry: str,
    experience: str,
    work_environment: str,
) -> np.ndarray:
    vector = np.concatenate(
        [
            np.asarray(skills, dtype=np.float64),
            np.asarray(traits, dtype=np.float64),
            np.array(
                [
                    1.0 if industry == TECHNOLOGY_INDUSTRY else 0.0,
                    experience_ordinal(experience),
                    1.0 if work_environment == TEAM_ENVIRONMENT else 0.0,
                ]
            ),
        ]
    )
    return np.clip(vector, 0.0, 1.0)


def _score_or(score: Optional[float], default: float) -> float:
    return default if score is None else score
