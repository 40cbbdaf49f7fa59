"""
Macro arithmetic for meal plans: per-meal budget allocation, feasibility
pre-check and meal/day totals.

Everything here is deterministic Python so the completion service only has to
pick foods, never to do the math:
- allocate_meal_budgets splits daily targets by plan profile
- check_feasibility rejects impossible targets before any AI call
- calculate_meal_totals / calculate_daily_totals sum item macros
"""

import logging
from typing import Dict, List, Sequence, Tuple

from errors import AI_PLAN_INFEASIBLE, VALIDATION_ERROR, NutritionApiError
from schemas import DayPlan, Meal, MealBudget, NutritionTargets, PlannedFoodItem
from validation_config import DEFAULT_CONFIG, MACRO_CALORIE_SLACK, NutritionPlanConfig

logger = logging.getLogger(__name__)

# Ordered (meal_type, share of the day) per plan profile
MEAL_SPLITS: Dict[str, Tuple[Tuple[str, float], ...]] = {
    "standard": (("breakfast", 0.25), ("lunch", 0.35), ("dinner", 0.40)),
    # Smaller, more frequent meals with a substantial snack
    "glp1": (("breakfast", 0.20), ("lunch", 0.25), ("dinner", 0.25), ("snack", 0.30)),
}

CALORIES_PER_GRAM = {"protein": 4, "carbs": 4, "fat": 9}


def meal_slots_for_profile(plan_profile: str) -> List[str]:
    """Return the ordered meal types of a plan profile.

    Raises:
        NutritionApiError: VALIDATION_ERROR for unknown profiles
    """
    split = MEAL_SPLITS.get(plan_profile)
    if split is None:
        raise NutritionApiError(
            VALIDATION_ERROR,
            f"Unknown plan profile '{plan_profile}'. Expected one of: {', '.join(MEAL_SPLITS)}",
        )
    return [meal_type for meal_type, _ in split]


def check_feasibility(
    targets: NutritionTargets,
    config: NutritionPlanConfig = DEFAULT_CONFIG,
) -> None:
    """Reject targets no realistic food composition can satisfy.

    Protein alone may not consume more than ``max_protein_calorie_share`` of
    the day's calories. Macro calories exceeding the calorie target only
    produce a warning.

    Raises:
        NutritionApiError: AI_PLAN_INFEASIBLE when protein calories are too high
    """
    protein_calories = targets.protein_grams * CALORIES_PER_GRAM["protein"]
    protein_ceiling = targets.calories_per_day * config.max_protein_calorie_share

    if protein_calories > protein_ceiling:
        raise NutritionApiError(
            AI_PLAN_INFEASIBLE,
            f"Protein target {targets.protein_grams:.0f}g ({protein_calories:.0f} kcal) exceeds "
            f"{config.max_protein_calorie_share:.0%} of the {targets.calories_per_day:.0f} kcal "
            "daily target. Lower the protein target or raise calories.",
            details={
                "protein_calories": round(protein_calories, 1),
                "max_protein_calories": round(protein_ceiling, 1),
            },
        )

    macro_calories = (
        protein_calories
        + targets.carbs_grams * CALORIES_PER_GRAM["carbs"]
        + targets.fat_grams * CALORIES_PER_GRAM["fat"]
    )
    if macro_calories > targets.calories_per_day * (1 + MACRO_CALORIE_SLACK):
        logger.warning(
            "⚠️  Macro calories %.0f exceed calorie target %.0f by more than %.0f%%",
            macro_calories,
            targets.calories_per_day,
            MACRO_CALORIE_SLACK * 100,
        )


def allocate_meal_budgets(
    targets: NutritionTargets,
    plan_profile: str = "standard",
    config: NutritionPlanConfig = DEFAULT_CONFIG,
) -> List[MealBudget]:
    """Split daily targets into ordered per-meal budgets.

    The feasibility check runs first. The last meal absorbs the rounding
    remainder so budgets sum exactly to the targets.

    Args:
        targets: Daily macro targets
        plan_profile: "standard" (3 meals) or "glp1" (4 meals)
        config: Tuning profile carrying the feasibility threshold

    Returns:
        One MealBudget per meal slot, in serving order
    """
    meal_slots_for_profile(plan_profile)
    check_feasibility(targets, config)

    totals = {
        "calorie_budget": targets.calories_per_day,
        "protein_budget": targets.protein_grams,
        "carbs_budget": targets.carbs_grams,
        "fat_budget": targets.fat_grams,
    }
    allocated = {key: 0.0 for key in totals}
    split = MEAL_SPLITS[plan_profile]
    budgets: List[MealBudget] = []

    for index, (meal_type, share) in enumerate(split):
        is_last = index == len(split) - 1
        values = {}
        for key, total in totals.items():
            value = total - allocated[key] if is_last else total * share
            values[key] = round(value, 1)
            allocated[key] += values[key]
        budgets.append(MealBudget(meal_type=meal_type, **values))

    return budgets


def budget_for_slot(
    targets: NutritionTargets,
    plan_profile: str,
    meal_type: str,
    config: NutritionPlanConfig = DEFAULT_CONFIG,
) -> MealBudget:
    """Nominal budget of one meal type; falls back to an even split for foreign slots."""
    for budget in allocate_meal_budgets(targets, plan_profile, config):
        if budget.meal_type == meal_type:
            return budget
    share = 1.0 / len(MEAL_SPLITS[plan_profile])
    return MealBudget(
        meal_type=meal_type,
        calorie_budget=round(targets.calories_per_day * share, 1),
        protein_budget=round(targets.protein_grams * share, 1),
        carbs_budget=round(targets.carbs_grams * share, 1),
        fat_budget=round(targets.fat_grams * share, 1),
    )


def calculate_item_totals(items: Sequence[PlannedFoodItem]) -> Dict[str, float]:
    """Sum calories and macros of food items.

    Returns:
        Dict with calories, protein_g, carbs_g, fat_g
    """
    totals = {"calories": 0.0, "protein_g": 0.0, "carbs_g": 0.0, "fat_g": 0.0}
    for item in items:
        totals["calories"] += item.calories
        totals["protein_g"] += item.protein_grams
        totals["carbs_g"] += item.carbs_grams
        totals["fat_g"] += item.fats_grams
    return {key: round(value, 1) for key, value in totals.items()}


def calculate_meal_totals(meal: Meal) -> Dict[str, float]:
    """Total calories and macros of one meal."""
    return calculate_item_totals(meal.items)


def calculate_daily_totals(day: DayPlan) -> Dict[str, float]:
    """Total calories and macros of every meal in a day."""
    totals = {"calories": 0.0, "protein_g": 0.0, "carbs_g": 0.0, "fat_g": 0.0}
    for meal in day.meals:
        for key, value in calculate_meal_totals(meal).items():
            totals[key] += value
    return {key: round(value, 1) for key, value in totals.items()}


def format_day_explanation(day: DayPlan, targets: NutritionTargets) -> str:
    """One-line summary of a day's totals against its targets."""
    totals = calculate_daily_totals(day)
    return (
        f"{len(day.meals)} meals, {totals['calories']:.0f}/{targets.calories_per_day:.0f} kcal, "
        f"P {totals['protein_g']:.0f}/{targets.protein_grams:.0f}g, "
        f"C {totals['carbs_g']:.0f}/{targets.carbs_grams:.0f}g, "
        f"F {totals['fat_g']:.0f}/{targets.fat_grams:.0f}g"
    )
