"""Classify generated meals against their budgets.

A meal is compared with its own MealBudget:
- pass: calories inside the tolerance band and protein above the floor
- scalable: one uniform factor inside the scale clamp would make it pass
- needs_regeneration: anything else (including empty meals and meals that
  break a critical dietary restriction)

Day-level checks use the same band against the daily targets. Only meals that
individually fail are ever repaired.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Optional

from macro_calculator import calculate_daily_totals, calculate_meal_totals
from schemas import DayPlan, Meal, MealBudget, NutritionTargets
from validation_config import (
    DEFAULT_CONFIG,
    DietaryRestriction,
    NutritionPlanConfig,
    check_dietary_restrictions,
    is_within_tolerance,
)

MealStatus = Literal["pass", "scalable", "needs_regeneration"]


@dataclass(frozen=True)
class MealVerdict:
    """Outcome of validating one meal.

    Attributes:
        status: pass / scalable / needs_regeneration
        totals: Meal totals (calories, protein_g, carbs_g, fat_g)
        scale_factor: Clamped factor the auto-fixer should apply (scalable only)
        issues: Human-readable reasons for a non-pass status
    """

    status: MealStatus
    totals: Dict[str, float]
    scale_factor: Optional[float] = None
    issues: List[str] = field(default_factory=list)

    @property
    def passed(self) -> bool:
        return self.status == "pass"


def clamp_scale_factor(factor: float, config: NutritionPlanConfig = DEFAULT_CONFIG) -> float:
    return max(config.min_scale_factor, min(config.max_scale_factor, factor))


def target_scale_factor(
    meal_calories: float,
    calorie_budget: float,
    config: NutritionPlanConfig = DEFAULT_CONFIG,
) -> Optional[float]:
    """Clamped factor that moves ``meal_calories`` to the middle of the band.

    Returns None when the meal has no calories to scale.
    """
    if meal_calories <= 0:
        return None
    return clamp_scale_factor(calorie_budget / meal_calories, config)


def _macro_issues(
    calories: float,
    protein: float,
    calorie_target: float,
    protein_target: float,
    config: NutritionPlanConfig,
) -> List[str]:
    issues = []
    if not is_within_tolerance(calories, calorie_target, config.calorie_tolerance):
        direction = "over" if calories > calorie_target else "under"
        issues.append(
            f"Calories: {calories:.0f} kcal is {direction} the {calorie_target:.0f} kcal "
            f"target by more than {config.calorie_tolerance:.0%}"
        )
    protein_floor = protein_target * config.protein_floor_ratio
    if protein < protein_floor - 1e-9:
        issues.append(
            f"Protein: {protein:.1f}g is below the {protein_floor:.1f}g floor "
            f"({config.protein_floor_ratio:.0%} of {protein_target:.1f}g)"
        )
    return issues


def classify_meal(
    meal: Optional[Meal],
    budget: MealBudget,
    config: NutritionPlanConfig = DEFAULT_CONFIG,
    restrictions: Optional[List[DietaryRestriction]] = None,
) -> MealVerdict:
    """Classify one meal as pass, scalable or needs_regeneration.

    Args:
        meal: The meal to check; None stands for a slot generation left empty
        budget: The slot's macro budget
        config: Tolerances and scale clamp
        restrictions: Dietary rules; critical violations force regeneration

    Returns:
        MealVerdict describing the outcome
    """
    if meal is None or not meal.items:
        return MealVerdict(
            status="needs_regeneration",
            totals={"calories": 0.0, "protein_g": 0.0, "carbs_g": 0.0, "fat_g": 0.0},
            issues=["Meal has no items"],
        )

    totals = calculate_meal_totals(meal)

    if restrictions:
        restriction_check = check_dietary_restrictions(
            [item.name for item in meal.items], restrictions
        )
        if not restriction_check["passed"]:
            return MealVerdict(
                status="needs_regeneration",
                totals=totals,
                issues=[
                    f"Dietary restriction '{v['restriction']}' violated by '{v['ingredient']}'"
                    for v in restriction_check["violations"]
                ],
            )

    issues = _macro_issues(
        totals["calories"], totals["protein_g"], budget.calorie_budget, budget.protein_budget, config
    )
    if not issues:
        return MealVerdict(status="pass", totals=totals)

    factor = target_scale_factor(totals["calories"], budget.calorie_budget, config)
    if factor is not None and config.enable_auto_fix:
        scaled_issues = _macro_issues(
            totals["calories"] * factor,
            totals["protein_g"] * factor,
            budget.calorie_budget,
            budget.protein_budget,
            config,
        )
        if not scaled_issues:
            return MealVerdict(status="scalable", totals=totals, scale_factor=factor, issues=issues)

    return MealVerdict(status="needs_regeneration", totals=totals, issues=issues)


def validate_day(
    day: DayPlan,
    targets: NutritionTargets,
    config: NutritionPlanConfig = DEFAULT_CONFIG,
) -> Dict[str, Any]:
    """Check a day's totals against the daily targets.

    Returns:
        Dict with:
        - compliant: bool - calories inside the band and protein above the floor
        - issues: List[str] - Human-readable failures
        - totals: Dict[str, float] - Day totals
    """
    totals = calculate_daily_totals(day)
    issues = _macro_issues(
        totals["calories"], totals["protein_g"], targets.calories_per_day, targets.protein_grams, config
    )
    return {"compliant": not issues, "issues": issues, "totals": totals}
