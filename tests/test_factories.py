"""
Tests for test data factories.

These tests ensure our factories generate valid data that can be
used reliably in other tests.
"""

from src.careermatch.knn import FeatureExtractor, euclidean_distance
from src.careermatch.knn.features import SKILL_DIMENSIONS, TRAIT_DIMENSIONS
from src.careermatch.models import CareerProfile, UserProfile

from .factories import (
    generate_career,
    generate_distant_careers,
    generate_software_engineer_career,
    generate_software_engineer_user,
    generate_test_careers,
    generate_user_profile,
)


class TestGenerateUserProfile:
    """Tests for the user profile factory."""

    def test_defaults_cover_every_dimension(self):
        profile = generate_user_profile()
        assert isinstance(profile, UserProfile)
        assert {s.skill for s in profile.skill_results} == set(SKILL_DIMENSIONS)
        assert {t.trait for t in profile.personality_traits} == set(TRAIT_DIMENSIONS)

    def test_custom_scores(self):
        profile = generate_user_profile(skills={"Leadership": 3}, traits={}, industry="Finance")
        assert profile.skill_score("Leadership") == 3
        assert profile.personality_traits == []
        assert profile.preferences.industry == "Finance"


class TestGenerateCareer:
    """Tests for the career factories."""

    def test_generates_valid_career(self):
        career = generate_career()
        assert isinstance(career, CareerProfile)
        assert career.id
        assert career.required_skills

    def test_overrides(self):
        career = generate_career(title="Pilot", industry="", is_active=False)
        assert career.id == "pilot"
        assert career.industry == ""
        assert career.is_active is False

    def test_unique_titles(self):
        careers = generate_test_careers(8)
        assert len({c.id for c in careers}) == 8


class TestSampleCatalog:
    """The sample catalog relies on these distances."""

    def test_software_engineer_pair_is_exact(self):
        extractor = FeatureExtractor()
        user = extractor.extract_user_features(generate_software_engineer_user())
        career = extractor.extract_career_features(generate_software_engineer_career())
        assert euclidean_distance(user, career) == 0.0

    def test_distant_careers_are_distant(self):
        extractor = FeatureExtractor()
        user = extractor.extract_user_features(generate_software_engineer_user())
        for career in generate_distant_careers():
            assert euclidean_distance(user, extractor.extract_career_features(career)) > 1.0
