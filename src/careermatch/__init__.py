"""
CareerMatch - career recommendations from assessment profiles

Matches a user's personality traits, skills and work preferences
against a catalog of careers using K-nearest-neighbour search.

Features:
- SQLite career catalog with stored feature vectors
- KNN recommendations with match explanations
- Result caching and assessment audit records
- Optional AI-generated career insights
- CSV export
"""

from .models import (
    CareerProfile,
    PersonalityTrait,
    Preferences,
    SkillResult,
    UserProfile,
    career_id_from_title,
)
from .database import CareerDatabase
from .insights import CareerInsights, InsightClient, InsightError

__all__ = [
    # Profiles
    "UserProfile",
    "PersonalityTrait",
    "SkillResult",
    "Preferences",
    "CareerProfile",
    "career_id_from_title",
    # Storage
    "CareerDatabase",
    # Insights
    "InsightClient",
    "CareerInsights",
    "InsightError",
]
__version__ = "0.1.0"
