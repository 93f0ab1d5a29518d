"""Tests for match explanations."""

from src.careermatch.knn.explainer import FALLBACK_REASON, explain_match
from src.careermatch.models import CareerProfile, UserProfile

from .factories import (
    generate_career,
    generate_software_engineer_career,
    generate_software_engineer_user,
    generate_user_profile,
)


class TestExplainMatch:
    def test_full_match(self):
        reasons = explain_match(
            generate_software_engineer_user(), generate_software_engineer_career()
        )
        assert reasons == [
            "Strong match in technical aptitude, problem solving, data analysis",
            "Personality aligns with analytical thinking, creativity",
            "Matches your preferred technology industry",
            "Fits your team-oriented work style",
            "Appropriate for your mid level experience",
        ]

    def test_fallback_when_nothing_matches(self):
        reasons = explain_match(UserProfile(), CareerProfile(title="Anything"))
        assert reasons == [FALLBACK_REASON]

    def test_never_empty(self):
        for _ in range(20):
            assert explain_match(generate_user_profile(), generate_career())

    def test_skill_needs_both_strong_score_and_high_requirement(self):
        profile = generate_user_profile(
            skills={"Technical Aptitude": 9, "Communication": 6}, traits={}
        )
        career = CareerProfile(
            title="Engineer",
            required_skills={"Technical Aptitude": 6, "Communication": 9},
        )
        assert explain_match(profile, career) == [FALLBACK_REASON]

    def test_at_most_three_skills(self):
        skills = {"Technical Aptitude": 9, "Problem Solving": 9, "Creativity": 9, "Leadership": 9}
        profile = generate_user_profile(skills=skills, traits={})
        career = CareerProfile(title="Generalist", required_skills=dict(skills))
        reasons = explain_match(profile, career)
        assert reasons[0] == "Strong match in technical aptitude, problem solving, creativity"

    def test_at_most_two_traits(self):
        traits = {"Analytical Thinking": 90, "Creativity": 90, "Leadership": 90}
        profile = generate_user_profile(skills={}, traits=traits)
        career = CareerProfile(title="Founder", personality_fit={t: 9 for t in traits})
        reasons = explain_match(profile, career)
        assert reasons == ["Personality aligns with analytical thinking, creativity"]

    def test_empty_preferences_do_not_match_empty_fields(self):
        reasons = explain_match(UserProfile(), CareerProfile(title="Blank", industry=""))
        assert reasons == [FALLBACK_REASON]

    def test_rule_order(self):
        profile = generate_user_profile(
            skills={}, traits={}, industry="Finance", experience_level="Entry Level"
        )
        career = CareerProfile(
            title="Analyst", industry="Finance", experience_level="Entry Level"
        )
        assert explain_match(profile, career) == [
            "Matches your preferred finance industry",
            "Appropriate for your entry level experience",
        ]
