"""Centralized tolerance constants and tuning profiles for meal plan validation.

Single source of truth for the values used by:
- macro_calculator.py check_feasibility (pre-generation rejection)
- meal_validator.py classify_meal / validate_day (pass / scalable / regenerate)
- quantity_adjuster.py scale_meal (scale clamp)
- regeneration.py RegenerationCoordinator (retry budget)
- meal_planning_pipeline.py regenerate_meal (budget reallocation)

Two calorie tolerances coexist on purpose and must not be merged:
DAY_CALORIE_TOLERANCE is the pass/fail boundary of a meal or day, while
BUDGET_REALLOCATION_TOLERANCE bounds how far a regenerated meal's budget may
drift from its nominal share when the rest of the day is off target.
"""

import os
from dataclasses import dataclass, fields, replace
from typing import Any, Dict, List, Optional

from errors import VALIDATION_ERROR, NutritionApiError

# Pass/fail boundary: calories within +/-10% of the budget
DAY_CALORIE_TOLERANCE = 0.10
# Protein must reach 95% of the budget (no upper bound)
PROTEIN_FLOOR_RATIO = 0.95
# Uniform scaling factor clamp used by the auto-fixer
MIN_SCALE_FACTOR = 0.5
MAX_SCALE_FACTOR = 2.0
# Protein calories above this share of the day make the targets unsatisfiable
MAX_PROTEIN_CALORIE_SHARE = 0.6
# Macro calories may exceed the calorie target by this much before we warn
MACRO_CALORIE_SLACK = 0.10
# Regenerated meal budget may move +/-20% away from its nominal slot budget
BUDGET_REALLOCATION_TOLERANCE = 0.20

DEFAULT_MAX_REGENERATIONS = int(os.getenv("MAX_REGENERATIONS_PER_MEAL", "1"))
DEFAULT_REGENERATION_BACKOFF_SECONDS = float(os.getenv("REGENERATION_BACKOFF_SECONDS", "0.5"))


@dataclass(frozen=True)
class NutritionPlanConfig:
    """Tuning knobs for one generation request.

    Attributes:
        calorie_tolerance: Allowed calorie deviation (decimal) for pass/fail
        protein_floor_ratio: Minimum share of the protein budget to reach
        min_scale_factor: Lower clamp of the auto-fix scaling factor
        max_scale_factor: Upper clamp of the auto-fix scaling factor
        max_regenerations_per_meal: Regeneration attempts per failing meal
        enable_auto_fix: When False, out-of-range meals go straight to regeneration
        max_protein_calorie_share: Feasibility threshold for protein calories
        budget_reallocation_tolerance: Clamp for single-meal budget reallocation
        regeneration_backoff_seconds: Base delay between retryable attempts (0 = none)
    """

    calorie_tolerance: float = DAY_CALORIE_TOLERANCE
    protein_floor_ratio: float = PROTEIN_FLOOR_RATIO
    min_scale_factor: float = MIN_SCALE_FACTOR
    max_scale_factor: float = MAX_SCALE_FACTOR
    max_regenerations_per_meal: int = DEFAULT_MAX_REGENERATIONS
    enable_auto_fix: bool = True
    max_protein_calorie_share: float = MAX_PROTEIN_CALORIE_SHARE
    budget_reallocation_tolerance: float = BUDGET_REALLOCATION_TOLERANCE
    regeneration_backoff_seconds: float = DEFAULT_REGENERATION_BACKOFF_SECONDS


DEFAULT_CONFIG = NutritionPlanConfig()

# Narrow scaling window, more regeneration budget
STRICT_CONFIG = NutritionPlanConfig(
    min_scale_factor=0.7,
    max_scale_factor=1.3,
    max_regenerations_per_meal=2,
)

# Wide scaling window, never spends quota on regeneration
RELAXED_CONFIG = NutritionPlanConfig(
    calorie_tolerance=0.15,
    protein_floor_ratio=0.90,
    min_scale_factor=0.3,
    max_scale_factor=2.0,
    max_regenerations_per_meal=0,
)

CONFIG_PROFILES: Dict[str, NutritionPlanConfig] = {
    "default": DEFAULT_CONFIG,
    "strict": STRICT_CONFIG,
    "relaxed": RELAXED_CONFIG,
}


def get_nutrition_config(profile: Optional[str] = None) -> NutritionPlanConfig:
    """Return the named tuning profile (``default`` when omitted).

    Raises:
        NutritionApiError: VALIDATION_ERROR for unknown profile names
    """
    if not profile:
        return DEFAULT_CONFIG
    config = CONFIG_PROFILES.get(profile.lower())
    if config is None:
        raise NutritionApiError(
            VALIDATION_ERROR,
            f"Unknown config profile '{profile}'. Expected one of: {', '.join(CONFIG_PROFILES)}",
        )
    return config


def merge_nutrition_config(
    overrides: Optional[Dict[str, Any]],
    base: NutritionPlanConfig = DEFAULT_CONFIG,
) -> NutritionPlanConfig:
    """Apply partial overrides on top of ``base``; ``None`` values are ignored."""
    if not overrides:
        return base
    known = {f.name for f in fields(NutritionPlanConfig)}
    unknown = sorted(set(overrides) - known)
    if unknown:
        raise NutritionApiError(
            VALIDATION_ERROR,
            f"Unknown config keys: {', '.join(unknown)}",
            details={"unknown_keys": unknown},
        )
    merged = replace(base, **{k: v for k, v in overrides.items() if v is not None})
    if merged.min_scale_factor <= 0 or merged.min_scale_factor > merged.max_scale_factor:
        raise NutritionApiError(
            VALIDATION_ERROR,
            f"Invalid scale bounds [{merged.min_scale_factor}, {merged.max_scale_factor}]",
        )
    return merged


def is_within_tolerance(actual: float, target: float, pct_tolerance: float) -> bool:
    """Check that ``actual`` lies inside the symmetric band around ``target``.

    Boundary values pass (exactly +10% is within a +/-10% band).
    """
    if target <= 0:
        return actual <= 0
    return abs(actual - target) <= target * pct_tolerance + 1e-9


def format_tolerances_for_prompt(config: NutritionPlanConfig = DEFAULT_CONFIG) -> str:
    """Describe the acceptance band for LLM prompts."""
    return (
        f"ACCEPTANCE RULES (checked by code after you answer):\n"
        f"- Meal calories within +/-{config.calorie_tolerance:.0%} of the calorie budget\n"
        f"- Meal protein at least {config.protein_floor_ratio:.0%} of the protein budget\n"
        f"- Carbs and fat should stay close to their budgets"
    )


# =============================================================================
# Dietary Restrictions
# =============================================================================


@dataclass(frozen=True)
class DietaryRestriction:
    """A single dietary restriction rule.

    Attributes:
        name: Identifier for the restriction (e.g., "vegetarian")
        forbidden_keywords: Keywords that trigger rejection (case-insensitive)
        exceptions: Allowed exceptions (e.g., "peanut butter" for "butter")
        severity: "critical" = meal must be regenerated, "warning" = log only
    """

    name: str
    forbidden_keywords: tuple
    exceptions: tuple = ()
    severity: str = "critical"


_MEAT = ("chicken", "beef", "pork", "turkey", "bacon", "ham", "lamb", "steak", "sausage", "veal")
_SEAFOOD = ("salmon", "tuna", "cod", "shrimp", "prawn", "fish", "trout", "sardine", "anchov")
_ANIMAL_PRODUCTS = ("egg", "milk", "cheese", "yogurt", "yoghurt", "butter", "cream", "honey", "whey")

# Plant foods whose names contain a forbidden keyword ("ham" in "champignon")
_MEAT_LOOKALIKES = (
    "champignon",
    "graham",
    "beefsteak tomato",
    "cauliflower steak",
    "mushroom steak",
    "lamb's lettuce",
    "lambs lettuce",
)
_ANIMAL_PRODUCT_LOOKALIKES = (
    "eggplant",
    "veggie",
    "butternut",
    "cocoa butter",
    "coconut cream",
    "cream of tartar",
    "honeydew",
    "peanut butter",
    "almond butter",
    "coconut milk",
    "oat milk",
    "soy milk",
    "almond milk",
    "soy yogurt",
    "coconut yogurt",
)

DIET_TYPE_RESTRICTIONS: Dict[str, DietaryRestriction] = {
    "vegetarian": DietaryRestriction("vegetarian", _MEAT + _SEAFOOD, exceptions=_MEAT_LOOKALIKES),
    "vegan": DietaryRestriction(
        "vegan",
        _MEAT + _SEAFOOD + _ANIMAL_PRODUCTS,
        exceptions=_MEAT_LOOKALIKES + _ANIMAL_PRODUCT_LOOKALIKES,
    ),
    "pescatarian": DietaryRestriction("pescatarian", _MEAT, exceptions=_MEAT_LOOKALIKES),
}


def restrictions_for_context(
    diet_type: Optional[str],
    avoid_ingredients: List[str],
    disliked_foods: List[str],
) -> List[DietaryRestriction]:
    """Build restriction rules from a user's diet type, avoid list and dislikes."""
    restrictions: List[DietaryRestriction] = []
    if diet_type and diet_type.lower() in DIET_TYPE_RESTRICTIONS:
        restrictions.append(DIET_TYPE_RESTRICTIONS[diet_type.lower()])
    avoid = tuple(a.strip() for a in avoid_ingredients if a and a.strip())
    if avoid:
        restrictions.append(DietaryRestriction("avoid_ingredients", avoid))
    disliked = tuple(d.strip() for d in disliked_foods if d and d.strip())
    if disliked:
        restrictions.append(DietaryRestriction("disliked_foods", disliked, severity="warning"))
    return restrictions


def check_dietary_restrictions(
    ingredients: List[str],
    restrictions: List[DietaryRestriction],
) -> Dict[str, Any]:
    """Check ingredient names against dietary restrictions.

    Args:
        ingredients: Ingredient names to check
        restrictions: Rules built by restrictions_for_context

    Returns:
        Dict with:
        - passed: bool - True if no critical violations
        - violations: List[Dict] - Critical violations found
        - warnings: List[Dict] - Non-critical matches
    """
    violations: List[Dict[str, Any]] = []
    warnings: List[Dict[str, Any]] = []

    for ingredient in ingredients:
        if not ingredient:
            continue
        ingredient_lower = ingredient.lower()

        for restriction in restrictions:
            # An exception masks only its own phrase: "eggplant with cheese" still fails vegan
            remaining = ingredient_lower
            for exc in restriction.exceptions:
                remaining = remaining.replace(exc.lower(), " ")

            for keyword in restriction.forbidden_keywords:
                if keyword.lower() in remaining:
                    violation = {
                        "ingredient": ingredient,
                        "restriction": restriction.name,
                        "matched_keyword": keyword,
                        "severity": restriction.severity,
                    }
                    if restriction.severity == "critical":
                        violations.append(violation)
                    else:
                        warnings.append(violation)
                    break  # first match per restriction is enough

    return {
        "passed": len(violations) == 0,
        "violations": violations,
        "warnings": warnings,
    }
