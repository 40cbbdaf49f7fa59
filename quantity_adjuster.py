"""Deterministic quantity rescaling for out-of-tolerance meals.

The auto-fixer multiplies every item of a "scalable" meal by one factor that
moves the meal's calories to the middle of its tolerance band (the budget
itself). Quantities and all macro fields scale together, so ratios between
items are preserved. No completion-service call is ever made here.
"""

import logging
from typing import List, Optional, Tuple

from meal_validator import MealVerdict, classify_meal
from schemas import Meal, MealBudget
from validation_config import DEFAULT_CONFIG, DietaryRestriction, NutritionPlanConfig

logger = logging.getLogger(__name__)

# Quantities must stay positive after rounding
MIN_SCALED_QUANTITY = 0.1


def scale_meal(meal: Meal, factor: float) -> Meal:
    """Return a copy of ``meal`` with every quantity and macro multiplied by ``factor``."""
    scaled_items = [
        item.model_copy(
            update={
                "quantity": max(round(item.quantity * factor, 1), MIN_SCALED_QUANTITY),
                "calories": round(item.calories * factor, 1),
                "protein_grams": round(item.protein_grams * factor, 1),
                "carbs_grams": round(item.carbs_grams * factor, 1),
                "fats_grams": round(item.fats_grams * factor, 1),
            }
        )
        for item in meal.items
    ]
    return meal.model_copy(update={"items": scaled_items})


def auto_fix_meal(
    meal: Meal,
    budget: MealBudget,
    config: NutritionPlanConfig = DEFAULT_CONFIG,
    restrictions: Optional[List[DietaryRestriction]] = None,
) -> Tuple[Meal, bool, MealVerdict]:
    """Pull a scalable meal into tolerance by uniform rescaling.

    Passing meals and meals that need regeneration are returned untouched, so
    applying this twice is the same as applying it once.

    Args:
        meal: Meal to fix
        budget: The slot's macro budget
        config: Tolerances and scale clamp
        restrictions: Dietary rules forwarded to the validator

    Returns:
        Tuple of (meal, was_adjusted, verdict)
        - meal: Scaled copy, or the original when nothing was done
        - was_adjusted: True if a factor was applied
        - verdict: Classification of the returned meal
    """
    verdict = classify_meal(meal, budget, config, restrictions)
    if verdict.status != "scalable" or verdict.scale_factor is None:
        return meal, False, verdict

    factor = verdict.scale_factor
    adjusted = scale_meal(meal, factor)
    new_verdict = classify_meal(adjusted, budget, config, restrictions)

    logger.info(
        "🔧 Scaled %s by x%.2f: %.0f → %.0f kcal (budget %.0f) [%s]",
        meal.id,
        factor,
        verdict.totals["calories"],
        new_verdict.totals["calories"],
        budget.calorie_budget,
        new_verdict.status,
    )
    return adjusted, True, new_verdict
