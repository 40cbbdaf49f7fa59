"""Unit tests for meal classification and the quantity auto-fixer."""
import pytest

from conftest import make_meal
from meal_validator import classify_meal, clamp_scale_factor, target_scale_factor, validate_day
from quantity_adjuster import MIN_SCALED_QUANTITY, auto_fix_meal, scale_meal
from schemas import DayPlan, Meal, MealBudget
from validation_config import DEFAULT_CONFIG, NutritionPlanConfig, restrictions_for_context

LUNCH_BUDGET = MealBudget(
    meal_type="lunch", calorie_budget=800, protein_budget=50, carbs_budget=90, fat_budget=25
)


@pytest.mark.priority_high
@pytest.mark.unit
class TestClassifyMeal:
    """pass / scalable / needs_regeneration decisions."""

    def test_meal_on_budget_passes(self):
        verdict = classify_meal(make_meal("lunch", 800, 50), LUNCH_BUDGET)

        assert verdict.status == "pass"
        assert verdict.passed
        assert verdict.issues == []

    def test_calorie_band_is_inclusive(self):
        assert classify_meal(make_meal("lunch", 880, 50), LUNCH_BUDGET).passed
        assert classify_meal(make_meal("lunch", 720, 50), LUNCH_BUDGET).passed
        assert not classify_meal(make_meal("lunch", 881, 50), LUNCH_BUDGET).passed

    def test_protein_below_floor_fails(self):
        # floor is 95% of 50g = 47.5g
        verdict = classify_meal(make_meal("lunch", 800, 40), LUNCH_BUDGET)

        assert not verdict.passed
        assert any("Protein" in issue for issue in verdict.issues)

    def test_double_sized_meal_is_scalable(self):
        verdict = classify_meal(make_meal("lunch", 1600, 100), LUNCH_BUDGET)

        assert verdict.status == "scalable"
        assert verdict.scale_factor == pytest.approx(0.5)

    def test_factor_outside_clamp_needs_regeneration(self):
        # Needs x0.2, clamp stops at x0.5 -> still 2000 kcal
        verdict = classify_meal(make_meal("lunch", 4000, 250), LUNCH_BUDGET)
        assert verdict.status == "needs_regeneration"

    def test_low_protein_ratio_cannot_be_scaled_away(self):
        # Scaling to 800 kcal leaves protein at 20g, far below the floor
        verdict = classify_meal(make_meal("lunch", 1600, 40), LUNCH_BUDGET)
        assert verdict.status == "needs_regeneration"

    def test_empty_meal_needs_regeneration(self):
        assert classify_meal(None, LUNCH_BUDGET).status == "needs_regeneration"

    def test_auto_fix_disabled_sends_everything_to_regeneration(self):
        config = NutritionPlanConfig(enable_auto_fix=False)
        verdict = classify_meal(make_meal("lunch", 1600, 100), LUNCH_BUDGET, config)
        assert verdict.status == "needs_regeneration"

    def test_dietary_violation_forces_regeneration(self):
        restrictions = restrictions_for_context("vegetarian", [], [])
        meal = make_meal("lunch", 800, 50, names=["grilled chicken breast", "brown rice"])

        verdict = classify_meal(meal, LUNCH_BUDGET, DEFAULT_CONFIG, restrictions)

        assert verdict.status == "needs_regeneration"
        assert any("vegetarian" in issue for issue in verdict.issues)

    def test_disliked_food_is_only_a_warning(self):
        restrictions = restrictions_for_context(None, [], ["broccoli"])
        meal = make_meal("lunch", 800, 50, names=["steamed broccoli", "tofu"])

        assert classify_meal(meal, LUNCH_BUDGET, DEFAULT_CONFIG, restrictions).passed


@pytest.mark.priority_high
@pytest.mark.unit
class TestAutoFix:
    """Uniform rescaling of scalable meals."""

    def test_double_sized_meal_fixed_in_one_pass(self):
        meal = make_meal("lunch", 1600, 100, carbs=180, fat=50)

        fixed, adjusted, verdict = auto_fix_meal(meal, LUNCH_BUDGET)

        assert adjusted is True
        assert verdict.passed
        assert abs(verdict.totals["calories"] - 800) <= 80

    def test_scaling_factor_is_uniform_across_items(self):
        meal = make_meal("lunch", 1600, 100, names=["tofu", "quinoa", "spinach"])

        fixed, _, _ = auto_fix_meal(meal, LUNCH_BUDGET)

        ratios = {
            round(new.quantity / old.quantity, 3) for old, new in zip(meal.items, fixed.items)
        }
        assert ratios == {0.5}
        for old, new in zip(meal.items, fixed.items):
            assert new.calories == pytest.approx(old.calories * 0.5, abs=0.05)
            assert new.protein_grams == pytest.approx(old.protein_grams * 0.5, abs=0.05)

    def test_auto_fix_is_idempotent_on_passing_meal(self):
        meal = make_meal("lunch", 820, 52)

        once, adjusted_once, _ = auto_fix_meal(meal, LUNCH_BUDGET)
        twice, adjusted_twice, _ = auto_fix_meal(once, LUNCH_BUDGET)

        assert adjusted_once is False
        assert adjusted_twice is False
        assert once == meal
        assert twice == meal

    def test_applying_twice_equals_applying_once(self):
        meal = make_meal("lunch", 1600, 100)

        once, _, _ = auto_fix_meal(meal, LUNCH_BUDGET)
        twice, adjusted_again, _ = auto_fix_meal(once, LUNCH_BUDGET)

        assert adjusted_again is False
        assert twice == once

    def test_unfixable_meal_is_left_untouched(self):
        meal = make_meal("lunch", 4000, 250)

        result, adjusted, verdict = auto_fix_meal(meal, LUNCH_BUDGET)

        assert adjusted is False
        assert result == meal
        assert verdict.status == "needs_regeneration"

    def test_scale_meal_preserves_ids_and_names(self):
        meal = make_meal("lunch", 800, 50)
        scaled = scale_meal(meal, 1.5)

        assert [i.id for i in scaled.items] == [i.id for i in meal.items]
        assert [i.name for i in scaled.items] == [i.name for i in meal.items]

    def test_tiny_quantity_stays_positive(self):
        meal = make_meal("lunch", 200, 10)
        meal.items[0].quantity = 0.08

        scaled = scale_meal(meal, 0.5)

        assert scaled.items[0].quantity == MIN_SCALED_QUANTITY
        # Stored plans are re-validated on read
        assert Meal.model_validate(scaled.model_dump()).items[0].quantity > 0


@pytest.mark.priority_medium
@pytest.mark.unit
class TestScaleFactor:
    def test_clamp_bounds(self):
        assert clamp_scale_factor(0.1) == DEFAULT_CONFIG.min_scale_factor
        assert clamp_scale_factor(5.0) == DEFAULT_CONFIG.max_scale_factor
        assert clamp_scale_factor(1.2) == pytest.approx(1.2)

    def test_zero_calorie_meal_has_no_factor(self):
        assert target_scale_factor(0, 800) is None

    def test_strict_profile_narrows_the_clamp(self):
        strict = NutritionPlanConfig(min_scale_factor=0.7, max_scale_factor=1.3)
        assert target_scale_factor(1600, 800, strict) == pytest.approx(0.7)


@pytest.mark.priority_medium
@pytest.mark.unit
class TestValidateDay:
    def test_day_on_target_is_compliant(self, sample_targets):
        day = DayPlan(
            date="2025-01-06",
            meals=[
                make_meal("breakfast", 575, 40),
                make_meal("lunch", 805, 56),
                make_meal("dinner", 920, 64),
            ],
        )
        result = validate_day(day, sample_targets)

        assert result["compliant"] is True
        assert result["totals"]["calories"] == pytest.approx(2300)

    def test_day_missing_a_meal_is_not_compliant(self, sample_targets):
        day = DayPlan(date="2025-01-06", meals=[make_meal("breakfast", 575, 40)])
        result = validate_day(day, sample_targets)

        assert result["compliant"] is False
        assert result["issues"]
