"""Bounded regeneration of meals the auto-fixer cannot repair.

Each attempt yields an explicit RepairOutcome:
- success: the regenerated meal passes (possibly after auto-fix scaling)
- needs_retry: the attempt failed validation or hit a retryable error
- failed: the retry budget is spent, or the error is not retryable

The coordinator loops on ``needs_retry`` until the budget is exhausted, so
retry accounting is visible in the returned data rather than in exception
handlers.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, List, Literal, Optional

from errors import AI_PLAN_FAILED, NutritionApiError
from meal_generator import GenerationFailure, PlanGenerator
from quantity_adjuster import auto_fix_meal
from retry_utils import exponential_backoff_delay
from schemas import Meal, MealBudget, UserContext
from validation_config import DEFAULT_CONFIG, DietaryRestriction, NutritionPlanConfig

logger = logging.getLogger(__name__)

RepairStatus = Literal["success", "needs_retry", "failed"]


@dataclass(frozen=True)
class RepairOutcome:
    """Result of one regeneration attempt or of a whole repair.

    Attributes:
        status: success / needs_retry / failed
        meal: The best meal produced (None when nothing usable came back)
        attempts: Completion calls spent so far on this meal
        scaled: True if the regenerated meal also needed auto-fix scaling
        error: Last transport or parse error, if any
        issues: Validation issues of the last attempt
    """

    status: RepairStatus
    meal: Optional[Meal] = None
    attempts: int = 0
    scaled: bool = False
    error: Optional[NutritionApiError] = None
    issues: List[str] = field(default_factory=list)

    def to_error(self, date: str, meal_type: str) -> NutritionApiError:
        """Terminal error for day/single-meal callers."""
        reason = "; ".join(self.issues) if self.issues else (self.error.message if self.error else "unknown")
        return NutritionApiError(
            AI_PLAN_FAILED,
            f"Could not produce an in-range {meal_type} for {date} after "
            f"{self.attempts} regeneration attempt(s): {reason}",
            details={
                "date": date,
                "meal_type": meal_type,
                "attempts": self.attempts,
                "last_error_code": self.error.code if self.error else None,
            },
        )


class RegenerationCoordinator:
    """Re-invoke the generator for one slot under a bounded retry budget."""

    def __init__(
        self,
        generator: PlanGenerator,
        config: NutritionPlanConfig = DEFAULT_CONFIG,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.generator = generator
        self.config = config
        self._sleep = sleep

    def attempt(
        self,
        date: str,
        budget: MealBudget,
        user_context: UserContext,
        plan_profile: str,
        avoid_composition: List[str],
        issues: List[str],
        attempt_number: int,
        restrictions: Optional[List[DietaryRestriction]] = None,
    ) -> RepairOutcome:
        """Run a single regeneration attempt (1-based ``attempt_number``)."""
        budget_left = attempt_number < self.config.max_regenerations_per_meal

        result = self.generator.generate_meal(
            date,
            budget,
            user_context,
            plan_profile,
            avoid_composition=avoid_composition,
            validation_feedback=issues,
            attempt=attempt_number,
        )

        if isinstance(result, GenerationFailure):
            status: RepairStatus = "needs_retry" if result.retryable and budget_left else "failed"
            return RepairOutcome(
                status=status,
                attempts=attempt_number,
                error=result.error,
                issues=[result.error.message],
            )

        meal, scaled, verdict = auto_fix_meal(result.meal, budget, self.config, restrictions)
        if verdict.passed:
            return RepairOutcome(status="success", meal=meal, attempts=attempt_number, scaled=scaled)

        return RepairOutcome(
            status="needs_retry" if budget_left else "failed",
            meal=meal,
            attempts=attempt_number,
            scaled=scaled,
            issues=list(verdict.issues),
        )

    def regenerate(
        self,
        date: str,
        budget: MealBudget,
        user_context: UserContext,
        plan_profile: str,
        failed_meal: Optional[Meal] = None,
        issues: Optional[List[str]] = None,
        restrictions: Optional[List[DietaryRestriction]] = None,
    ) -> RepairOutcome:
        """Regenerate one slot until it passes or the budget runs out.

        Args:
            date: Day of the meal
            budget: The slot's macro budget
            user_context: Locale, diet type and food exclusions
            plan_profile: "standard" or "glp1"
            failed_meal: The rejected meal, whose foods must not be reused
            issues: Why it was rejected
            restrictions: Dietary rules forwarded to the validator

        Returns:
            Final RepairOutcome (status success or failed). On failure,
            ``meal`` holds the last parseable attempt, or the original meal.
        """
        max_attempts = self.config.max_regenerations_per_meal
        avoid = [item.name for item in failed_meal.items] if failed_meal else []
        last_issues = list(issues or [])

        if max_attempts <= 0:
            return RepairOutcome(status="failed", meal=failed_meal, attempts=0, issues=last_issues)

        outcome = RepairOutcome(status="needs_retry", meal=failed_meal, issues=last_issues)
        best_meal = failed_meal
        attempt_number = 0

        while outcome.status == "needs_retry":
            if attempt_number > 0 and outcome.error is not None:
                delay = exponential_backoff_delay(
                    attempt_number - 1, base_delay=self.config.regeneration_backoff_seconds
                )
                if delay > 0:
                    self._sleep(delay)

            attempt_number += 1
            outcome = self.attempt(
                date,
                budget,
                user_context,
                plan_profile,
                avoid_composition=avoid,
                issues=outcome.issues,
                attempt_number=attempt_number,
                restrictions=restrictions,
            )
            if outcome.meal is not None:
                best_meal = outcome.meal
                avoid = avoid + [item.name for item in outcome.meal.items if item.name not in avoid]

            logger.info(
                "🔄 %s %s regeneration %d/%d → %s",
                date,
                budget.meal_type,
                attempt_number,
                max_attempts,
                outcome.status,
            )

        if outcome.status == "failed" and outcome.meal is None and best_meal is not None:
            outcome = RepairOutcome(
                status="failed",
                meal=best_meal,
                attempts=outcome.attempts,
                error=outcome.error,
                issues=outcome.issues,
            )
        return outcome
