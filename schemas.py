"""Pydantic models for meal plans, generation status and quality metrics.

Field names are snake_case in Python and camelCase on the wire; both spellings
are accepted on input.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Annotated, List, Literal, Optional, Union

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    computed_field,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

MealType = Literal["breakfast", "lunch", "dinner", "snack"]
PlanProfile = Literal["standard", "glp1"]
DayOutcome = Literal["perfect", "scaled", "regenerated", "out_of_range"]

DATE_FORMAT = "%Y-%m-%d"
DAYS_PER_WEEK = 7


def parse_iso_date(value: str) -> datetime:
    """Parse a YYYY-MM-DD string, raising ValueError on any other format."""
    return datetime.strptime(value, DATE_FORMAT)


def shift_date(value: str, days: int) -> str:
    """Return the YYYY-MM-DD date ``days`` after ``value``."""
    return (parse_iso_date(value) + timedelta(days=days)).strftime(DATE_FORMAT)


def _check_iso_date(value: str) -> str:
    try:
        parse_iso_date(value)
    except ValueError as exc:
        raise ValueError(f"Invalid date format. Expected YYYY-MM-DD, got: {value}") from exc
    return value


class CamelModel(BaseModel):
    """Base model serializing to camelCase while accepting snake_case input."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ============================================================================
# Targets & Budgets
# ============================================================================


class NutritionTargets(CamelModel):
    """Daily macro targets for one user. Immutable input."""

    model_config = ConfigDict(frozen=True)

    calories_per_day: float = Field(..., gt=0, description="Daily calorie target (kcal)")
    protein_grams: float = Field(..., gt=0, description="Daily protein target in grams")
    carbs_grams: float = Field(..., gt=0, description="Daily carbohydrate target in grams")
    fat_grams: float = Field(..., gt=0, description="Daily fat target in grams")


class MealBudget(CamelModel):
    """Calorie and macro allotment for one meal slot."""

    model_config = ConfigDict(frozen=True)

    meal_type: MealType
    calorie_budget: float = Field(..., ge=0)
    protein_budget: float = Field(..., ge=0)
    carbs_budget: float = Field(..., ge=0)
    fat_budget: float = Field(..., ge=0)


# ============================================================================
# Plans
# ============================================================================


class PlannedFoodItem(CamelModel):
    """One food item of a meal with its quantity and macros."""

    id: str
    name: str = Field(..., min_length=1)
    quantity: float = Field(..., gt=0)
    unit: str = Field(default="g")
    calories: float = Field(..., ge=0)
    protein_grams: float = Field(..., ge=0)
    carbs_grams: float = Field(..., ge=0)
    fats_grams: float = Field(..., ge=0)


class Meal(CamelModel):
    """A meal slot. ``locked`` meals are carried verbatim into future weeks."""

    id: str
    type: MealType
    items: List[PlannedFoodItem] = Field(default_factory=list)
    locked: bool = False


class DayPlan(CamelModel):
    """All meals of one date."""

    date: str
    meals: List[Meal] = Field(default_factory=list)
    explanation: Optional[str] = Field(
        default=None, description="Short human-readable summary of the day"
    )

    @field_validator("date")
    @classmethod
    def validate_date(cls, v: str) -> str:
        return _check_iso_date(v)

    def meal_of_type(self, meal_type: str) -> Optional[Meal]:
        for meal in self.meals:
            if meal.type == meal_type:
                return meal
        return None


class WeeklyPlan(CamelModel):
    """Seven consecutive day plans starting at ``week_start_date``."""

    week_start_date: str
    days: List[DayPlan]

    @field_validator("week_start_date")
    @classmethod
    def validate_week_start_date(cls, v: str) -> str:
        return _check_iso_date(v)

    @model_validator(mode="after")
    def check_consecutive_days(self) -> "WeeklyPlan":
        if len(self.days) != DAYS_PER_WEEK:
            raise ValueError(f"A weekly plan needs exactly {DAYS_PER_WEEK} days, got {len(self.days)}")
        for index, day in enumerate(self.days):
            expected = shift_date(self.week_start_date, index)
            if day.date != expected:
                raise ValueError(f"Day {index} must be {expected}, got {day.date}")
        return self


# ============================================================================
# User Context
# ============================================================================


class DietaryPreferences(CamelModel):
    """Per-request dietary overrides."""

    diet_type: Optional[str] = None
    avoid_ingredients: List[str] = Field(default_factory=list)
    disliked_foods: List[str] = Field(default_factory=list)


class UserContext(CamelModel):
    """Who the plan is for and what they must not eat."""

    locale: str = "en"
    city: Optional[str] = None
    diet_type: Optional[str] = None
    avoid_ingredients: List[str] = Field(default_factory=list)
    disliked_foods: List[str] = Field(default_factory=list)

    def merged_with(self, preferences: Optional[DietaryPreferences]) -> "UserContext":
        """Overlay request preferences; list fields are unioned, diet type replaced."""
        if preferences is None:
            return self
        return self.model_copy(
            update={
                "diet_type": preferences.diet_type or self.diet_type,
                "avoid_ingredients": _union(self.avoid_ingredients, preferences.avoid_ingredients),
                "disliked_foods": _union(self.disliked_foods, preferences.disliked_foods),
            }
        )


def _union(first: List[str], second: List[str]) -> List[str]:
    seen = {value.lower() for value in first}
    return list(first) + [value for value in second if value.lower() not in seen]


# ============================================================================
# Completion Service Boundary
# ============================================================================


class GeneratedFoodItem(BaseModel):
    """Food item as returned by the completion service (no id yet)."""

    # Whitespace-only names fail min_length here instead of later in PlannedFoodItem
    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)

    name: str = Field(..., min_length=1)
    quantity: float = Field(..., gt=0)
    unit: str = "g"
    calories: float = Field(..., ge=0, validation_alias=AliasChoices("calories", "kcal"))
    protein_grams: float = Field(
        ..., ge=0, validation_alias=AliasChoices("protein_grams", "proteinGrams", "protein_g", "protein")
    )
    carbs_grams: float = Field(
        ..., ge=0, validation_alias=AliasChoices("carbs_grams", "carbsGrams", "carbs_g", "carbs")
    )
    fats_grams: float = Field(
        ...,
        ge=0,
        validation_alias=AliasChoices("fats_grams", "fatsGrams", "fat_grams", "fat_g", "fat"),
    )


class ValidMeal(BaseModel):
    """A completion decoded into a structurally valid meal."""

    model_config = ConfigDict(extra="ignore")

    kind: Literal["valid"] = "valid"
    meal_type: MealType = Field(validation_alias=AliasChoices("meal_type", "mealType", "type"))
    items: List[GeneratedFoodItem] = Field(..., min_length=1, max_length=3)
    explanation: Optional[str] = None

    @field_validator("meal_type", mode="before")
    @classmethod
    def normalize_meal_type(cls, v):
        """Accept 'Breakfast' / ' LUNCH ' style labels."""
        return v.strip().lower() if isinstance(v, str) else v


class ParseError(BaseModel):
    """A completion that could not be interpreted as a meal."""

    kind: Literal["parse_error"] = "parse_error"
    reasons: List[str] = Field(default_factory=list)
    raw_excerpt: str = ""


DecodedMeal = Annotated[Union[ValidMeal, ParseError], Field(discriminator="kind")]


# ============================================================================
# Progress & Quality
# ============================================================================


class AutoFixRecord(CamelModel):
    """How one day's out-of-range meals were handled."""

    date: str
    method: Literal["scaling", "regeneration", "none", "failed"]
    attempt_count: int = 0
    original_out_of_range: int = 0
    fixed_in_range: int = 0


class OutOfRangeMeal(CamelModel):
    date: str
    meal_type: MealType
    reason: str


class QualitySummary(CamelModel):
    """Per-request classification of day outcomes."""

    perfect: int = 0
    scaled: int = 0
    regenerated: int = 0
    out_of_range: int = 0
    out_of_range_meals: List[OutOfRangeMeal] = Field(default_factory=list)
    auto_fix_results: List[AutoFixRecord] = Field(default_factory=list)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def summary(self) -> str:
        return (
            f"{self.perfect} perfect on first pass, {self.scaled} scaled, "
            f"{self.regenerated} regenerated, {self.out_of_range} still out-of-range"
        )


class GenerationError(CamelModel):
    code: str
    message: str
    retryable: bool = False


class GenerationStatus(CamelModel):
    """Immutable snapshot of a generation session's progress."""

    model_config = ConfigDict(frozen=True)

    session_id: str
    phase: str
    days_generated: int = 0
    days_auto_fixed: int = 0
    days_regenerated: int = 0
    total_days: int = DAYS_PER_WEEK
    quality_summary: Optional[QualitySummary] = None
    error: Optional[GenerationError] = None
    started_at: float
    ended_at: Optional[float] = None

    @property
    def is_terminal(self) -> bool:
        return self.phase in ("complete", "error")


class QualityBreakdown(CamelModel):
    perfect: int = 0
    scaled: int = 0
    regenerated: int = 0
    out_of_range: int = 0


def _rate(count: int, total: int) -> float:
    return round(count / total, 4) if total else 0.0


class QualityMetrics(CamelModel):
    """Snapshot of process-wide counters; rates are derived at read time."""

    total_weeks_generated: int = 0
    breakdown: QualityBreakdown = Field(default_factory=QualityBreakdown)
    total_days_generated: int = 0
    regeneration_attempts: int = 0
    regeneration_successes: int = 0
    regeneration_failures: int = 0
    total_generation_seconds: float = 0.0

    @computed_field  # type: ignore[prop-decorator]
    @property
    def first_pass_quality(self) -> float:
        return _rate(self.breakdown.perfect, self.total_weeks_generated)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def auto_fix_rate(self) -> float:
        return _rate(self.breakdown.scaled, self.total_weeks_generated)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def regeneration_rate(self) -> float:
        return _rate(self.breakdown.regenerated, self.total_weeks_generated)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def out_of_range_rate(self) -> float:
        return _rate(self.breakdown.out_of_range, self.total_weeks_generated)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def regeneration_success_rate(self) -> float:
        return _rate(self.regeneration_successes, self.regeneration_attempts)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def average_generation_seconds(self) -> float:
        if not self.total_weeks_generated:
            return 0.0
        return round(self.total_generation_seconds / self.total_weeks_generated, 3)


# ============================================================================
# Week Generation Response
# ============================================================================


class SkippedLockedMeal(CamelModel):
    """A locked meal that had no matching slot in the new week."""

    day_index: int
    date: str
    meal_type: MealType
    reason: str


class WeekGenerationResponse(CamelModel):
    session_id: str
    week_start_date: str
    weekly_plan: Optional[WeeklyPlan] = None
    quality_summary: Optional[QualitySummary] = None
    skipped_locked_meals: List[SkippedLockedMeal] = Field(default_factory=list)
