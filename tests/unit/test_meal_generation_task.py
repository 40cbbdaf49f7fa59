"""Unit tests for the single-meal prompt."""
import pytest

from tasks import build_meal_generation_description
from validation_config import DEFAULT_CONFIG, format_tolerances_for_prompt

BUDGET = {
    "meal_type": "dinner",
    "calorie_budget": 920,
    "protein_budget": 64,
    "carbs_budget": 100,
    "fat_budget": 28,
}


@pytest.mark.priority_medium
@pytest.mark.unit
class TestMealPrompt:
    def test_budget_and_slot_are_stated(self):
        prompt = build_meal_generation_description("2025-01-06", BUDGET, {"locale": "fr"}, "standard")

        assert "DINNER for 2025-01-06" in prompt
        assert "Calories: 920 kcal" in prompt
        assert "Protein: 64 g" in prompt
        assert '"meal_type" must be "dinner"' in prompt
        assert "Locale: fr" in prompt
        assert "GLP-1" not in prompt

    def test_preferences_and_glp1_guidance(self):
        context = {"diet_type": "vegan", "avoid_ingredients": ["peanuts"], "disliked_foods": ["tofu"]}
        prompt = build_meal_generation_description("2025-01-06", BUDGET, context, "glp1")

        assert "Vegan (no animal products)" in prompt
        assert "never use): peanuts" in prompt
        assert "tofu" in prompt
        assert "GLP-1 MEDICATION CONSIDERATIONS" in prompt

    def test_retry_section_lists_rejected_foods_and_issues(self):
        prompt = build_meal_generation_description(
            "2025-01-06",
            BUDGET,
            {},
            "standard",
            avoid_composition=["pasta", "pesto"],
            validation_feedback=["Calories: 1500 kcal is over the 920 kcal target by more than 10%"],
            tolerance_rules=format_tolerances_for_prompt(DEFAULT_CONFIG),
        )

        assert "Do NOT reuse this composition: pasta, pesto" in prompt
        assert "1. Calories: 1500 kcal" in prompt

    def test_first_attempt_has_no_retry_section(self):
        prompt = build_meal_generation_description("2025-01-06", BUDGET, {}, "standard")
        assert "PREVIOUS ATTEMPT" not in prompt
