"""Meal planning pipeline: allocation, generation, auto-fix and regeneration.

Week requests run in four observable phases:
1. initializing     - budgets are allocated and locked meals carried over
2. generating_days  - each day's open slots are generated (days in parallel)
3. auto_fixing      - out-of-range meals are rescaled when a factor fixes them
4. validating       - meals scaling cannot fix are regenerated, then the
                      week is assembled, summarized and stored

Failures inside the pipeline travel as result values (GenerationFailure,
RepairOutcome). Only the public methods raise NutritionApiError.
"""

import concurrent.futures
import logging
import os
import time
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from errors import (
    AI_PLAN_FAILED,
    CANCELLED,
    UNKNOWN_ERROR,
    VALIDATION_ERROR,
    NutritionApiError,
)
from food_lookup import FoodLookupService
from generation_progress import ProgressTracker
from locked_meals import CarryoverResult, carry_over_locked_meals
from macro_calculator import (
    allocate_meal_budgets,
    budget_for_slot,
    calculate_meal_totals,
    check_feasibility,
    format_day_explanation,
)
from meal_generator import CrewCompletionService, GenerationFailure, PlanGenerator
from meal_validator import validate_day
from observability import log_data_structure, log_workflow
from plan_repository import InMemoryPlanRepository, PlanRepository
from quality_metrics import OUTCOME_SEVERITY, QualityMetricsAggregator
from quantity_adjuster import auto_fix_meal
from regeneration import RegenerationCoordinator, RepairOutcome
from schemas import (
    DAYS_PER_WEEK,
    DayOutcome,
    DayPlan,
    DietaryPreferences,
    GenerationStatus,
    Meal,
    MealBudget,
    NutritionTargets,
    OutOfRangeMeal,
    QualityMetrics,
    QualitySummary,
    UserContext,
    WeekGenerationResponse,
    WeeklyPlan,
    parse_iso_date,
    shift_date,
)
from session_store import SESSION_GRACE_PERIOD_SECONDS, GenerationSession, SessionStore
from validation_config import (
    DEFAULT_CONFIG,
    DietaryRestriction,
    NutritionPlanConfig,
    get_nutrition_config,
    restrictions_for_context,
)

logger = logging.getLogger(__name__)

MAX_PARALLEL_DAYS = int(os.getenv("MAX_PARALLEL_DAYS", "7"))
MAX_PARALLEL_REGENERATIONS = int(os.getenv("MAX_PARALLEL_REGENERATIONS", "4"))
DEFAULT_USER_ID = os.getenv("DEFAULT_USER_ID", "default-user")

# Lower bounds for a reallocated single-meal budget
MIN_REALLOCATED_CALORIES = 100.0
MIN_REALLOCATED_PROTEIN = 10.0
MIN_REALLOCATED_CARBS = 10.0
MIN_REALLOCATED_FAT = 5.0


# ============================================================================
# Week Job State
# ============================================================================


@dataclass
class MealSlot:
    """Working state of one meal slot during a week request."""

    day_index: int
    date: str
    budget: MealBudget
    meal: Optional[Meal] = None
    locked: bool = False
    error: Optional[NutritionApiError] = None
    issues: List[str] = field(default_factory=list)
    outcome: DayOutcome = "perfect"
    needs_regeneration: bool = False
    repair: Optional[RepairOutcome] = None

    @property
    def meal_type(self) -> str:
        return self.budget.meal_type


@dataclass
class WeekGenerationJob:
    """Everything a background week run needs, fixed when the session opens."""

    session: GenerationSession
    targets: NutritionTargets
    user_context: UserContext
    plan_profile: str
    config: NutritionPlanConfig
    restrictions: List[DietaryRestriction]
    carryover: CarryoverResult
    slots: List[List[MealSlot]]
    started: float = field(default_factory=time.perf_counter)
    weekly_plan: Optional[WeeklyPlan] = None
    quality_summary: Optional[QualitySummary] = None

    @property
    def session_id(self) -> str:
        return self.session.session_id

    @property
    def tracker(self) -> ProgressTracker:
        return self.session.tracker

    def response(self) -> WeekGenerationResponse:
        return WeekGenerationResponse(
            session_id=self.session_id,
            week_start_date=self.session.week_start_date,
            weekly_plan=self.weekly_plan,
            quality_summary=self.quality_summary,
            skipped_locked_meals=list(self.carryover.skipped),
        )


def _require_date(value: str, field_name: str) -> str:
    try:
        parse_iso_date(value)
    except (TypeError, ValueError) as exc:
        raise NutritionApiError(
            VALIDATION_ERROR,
            f"Invalid {field_name}. Expected YYYY-MM-DD, got: {value}",
        ) from exc
    return value


def _worst(outcomes: List[str]) -> DayOutcome:
    worst = "perfect"
    for outcome in outcomes:
        if OUTCOME_SEVERITY.index(outcome) > OUTCOME_SEVERITY.index(worst):
            worst = outcome
    return worst


# ============================================================================
# Pipeline
# ============================================================================


class MealPlanningPipeline:
    """Orchestrates week, day and single-meal generation.

    All collaborators are injected; ``build_default_pipeline`` wires the
    production ones.
    """

    def __init__(
        self,
        generator: PlanGenerator,
        session_store: Optional[SessionStore] = None,
        metrics: Optional[QualityMetricsAggregator] = None,
        repository: Optional[PlanRepository] = None,
        config: NutritionPlanConfig = DEFAULT_CONFIG,
        executor: Optional[concurrent.futures.Executor] = None,
        session_grace_seconds: float = SESSION_GRACE_PERIOD_SECONDS,
        sleep=time.sleep,
    ):
        self.generator = generator
        self.session_store = session_store or SessionStore()
        self.metrics = metrics or QualityMetricsAggregator()
        self.repository = repository
        self.config = config
        self.session_grace_seconds = session_grace_seconds
        self._executor = executor
        self._sleep = sleep

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _resolve_config(self, config_profile: Optional[str]) -> NutritionPlanConfig:
        return get_nutrition_config(config_profile) if config_profile else self.config

    def _generator_for(self, config: NutritionPlanConfig) -> PlanGenerator:
        if config == self.generator.config:
            return self.generator
        return PlanGenerator(self.generator.completion_service, self.generator.food_lookup, config)

    def _coordinator_for(self, config: NutritionPlanConfig) -> RegenerationCoordinator:
        return RegenerationCoordinator(self._generator_for(config), config, sleep=self._sleep)

    @staticmethod
    def _restrictions(user_context: UserContext) -> List[DietaryRestriction]:
        return restrictions_for_context(
            user_context.diet_type, user_context.avoid_ingredients, user_context.disliked_foods
        )

    def _get_executor(self) -> concurrent.futures.Executor:
        if self._executor is None:
            self._executor = concurrent.futures.ThreadPoolExecutor(
                max_workers=2, thread_name_prefix="week-generation"
            )
        return self._executor

    def shutdown(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=False)
        self.session_store.clear()

    # ------------------------------------------------------------------
    # Week generation
    # ------------------------------------------------------------------

    def open_week_session(
        self,
        week_start_date: str,
        targets: NutritionTargets,
        user_context: Optional[UserContext] = None,
        plan_profile: str = "standard",
        user_id: str = DEFAULT_USER_ID,
        previous_week: Optional[WeeklyPlan] = None,
        config_profile: Optional[str] = None,
        preferences: Optional[DietaryPreferences] = None,
    ) -> WeekGenerationJob:
        """Validate a week request, carry locked meals over and register a session.

        Infeasible targets are rejected here, before any session exists and
        before any completion call.

        Raises:
            NutritionApiError: VALIDATION_ERROR or AI_PLAN_INFEASIBLE
        """
        _require_date(week_start_date, "weekStartDate")
        config = self._resolve_config(config_profile)
        budgets = allocate_meal_budgets(targets, plan_profile, config)
        context = (user_context or UserContext()).merged_with(preferences)

        if previous_week is None and self.repository is not None:
            previous_week = self.repository.get_weekly_plan(user_id, shift_date(week_start_date, -DAYS_PER_WEEK))

        carryover = carry_over_locked_meals(
            previous_week, week_start_date, [budget.meal_type for budget in budgets]
        )

        slots: List[List[MealSlot]] = []
        for day_index in range(DAYS_PER_WEEK):
            date = shift_date(week_start_date, day_index)
            day_slots = []
            for budget in budgets:
                locked_meal = carryover.slots[day_index].get(budget.meal_type)
                day_slots.append(
                    MealSlot(
                        day_index=day_index,
                        date=date,
                        budget=budget,
                        meal=locked_meal,
                        locked=locked_meal is not None,
                    )
                )
            slots.append(day_slots)

        session = self.session_store.create(user_id, week_start_date)
        logger.info(
            "🍽️  Week %s queued as session %s (profile=%s, %d locked, %d skipped)",
            week_start_date,
            session.session_id,
            plan_profile,
            carryover.carried_count,
            len(carryover.skipped),
        )
        return WeekGenerationJob(
            session=session,
            targets=targets,
            user_context=context,
            plan_profile=plan_profile,
            config=config,
            restrictions=self._restrictions(context),
            carryover=carryover,
            slots=slots,
        )

    def run_week_session(self, job: WeekGenerationJob) -> WeekGenerationResponse:
        """Run all phases of a week request. Never raises NutritionApiError.

        The session ends in ``complete`` or ``error``; the response carries
        the plan only when it completed.
        """
        tracker = job.tracker
        try:
            with log_workflow(logger, "week_generation", session_id=job.session_id):
                self._run_phases(job)
        except NutritionApiError as exc:
            tracker.fail(exc)
        except Exception as exc:
            tracker.fail(NutritionApiError(UNKNOWN_ERROR, f"Week generation crashed: {exc}"))
            raise
        finally:
            self.session_store.schedule_removal(job.session_id, self.session_grace_seconds)
        return job.response()

    def _check_cancelled(self, job: WeekGenerationJob) -> None:
        if job.session.is_cancelled:
            raise NutritionApiError(CANCELLED, f"Generation {job.session_id} was cancelled")

    def _run_phases(self, job: WeekGenerationJob) -> None:
        generator = self._generator_for(job.config)

        self._check_cancelled(job)
        job.tracker.start_generating_days()
        self._generate_days(job, generator)

        self._check_cancelled(job)
        job.tracker.start_auto_fixing()
        self._auto_fix_days(job)

        self._check_cancelled(job)
        job.tracker.start_validating()
        self._regenerate_days(job)

        self._check_cancelled(job)
        plan, summary = self._assemble_week(job)
        if not any(day.meals for day in plan.days):
            raise NutritionApiError(
                AI_PLAN_FAILED,
                f"No meals could be generated for the week of {plan.week_start_date}",
            )

        job.weekly_plan = plan
        job.quality_summary = summary

        if self.repository is not None:
            self.repository.upsert_weekly_plan(job.session.user_id, plan)

        repairs = [slot.repair for day in job.slots for slot in day if slot.repair is not None]
        self.metrics.record_week(
            summary,
            days=len(plan.days),
            regeneration_attempts=sum(r.attempts for r in repairs),
            regeneration_successes=sum(1 for r in repairs if r.status == "success"),
            regeneration_failures=sum(1 for r in repairs if r.status != "success"),
            generation_seconds=time.perf_counter() - job.started,
        )
        log_data_structure(logger, f"Quality summary {job.session_id}", summary, level="INFO")
        job.tracker.complete(summary)

    def _generate_days(self, job: WeekGenerationJob, generator: PlanGenerator) -> None:
        def generate_day(day_slots: List[MealSlot]) -> None:
            for slot in day_slots:
                if slot.locked:
                    continue
                result = generator.generate_meal(
                    slot.date, slot.budget, job.user_context, job.plan_profile, attempt=0
                )
                if isinstance(result, GenerationFailure):
                    slot.error = result.error
                else:
                    slot.meal = result.meal
            job.tracker.increment_days_generated()

        max_workers = max(1, min(MAX_PARALLEL_DAYS, len(job.slots)))
        with concurrent.futures.ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="day-generation"
        ) as executor:
            futures = [executor.submit(generate_day, day_slots) for day_slots in job.slots]
            for future in concurrent.futures.as_completed(futures):
                future.result()

    def _auto_fix_days(self, job: WeekGenerationJob) -> None:
        for day_slots in job.slots:
            out_of_range = 0
            scaled = 0
            for slot in day_slots:
                if slot.locked:
                    continue

                if slot.error is not None:
                    out_of_range += 1
                    slot.issues = [slot.error.message]
                    if slot.error.retryable:
                        slot.needs_regeneration = True
                    else:
                        slot.outcome = "out_of_range"
                    continue

                meal, was_adjusted, verdict = auto_fix_meal(
                    slot.meal, slot.budget, job.config, job.restrictions
                )
                if verdict.passed:
                    if was_adjusted:
                        slot.meal = meal
                        slot.outcome = "scaled"
                        out_of_range += 1
                        scaled += 1
                    continue

                out_of_range += 1
                slot.needs_regeneration = True
                slot.issues = list(verdict.issues)

            date = day_slots[0].date
            if out_of_range == 0:
                job.tracker.record_day_within_tolerance(date)
            elif scaled:
                job.tracker.record_auto_fix_result(date, "scaling", out_of_range, scaled)

    def _regenerate_days(self, job: WeekGenerationJob) -> None:
        coordinator = self._coordinator_for(job.config)

        def regenerate_day(day_slots: List[MealSlot]) -> None:
            pending = [slot for slot in day_slots if slot.needs_regeneration]
            for slot in pending:
                outcome = coordinator.regenerate(
                    slot.date,
                    slot.budget,
                    job.user_context,
                    job.plan_profile,
                    failed_meal=slot.meal,
                    issues=slot.issues,
                    restrictions=job.restrictions,
                )
                slot.repair = outcome
                slot.meal = outcome.meal
                if outcome.status == "success":
                    slot.outcome = "regenerated"
                    slot.issues = []
                else:
                    slot.outcome = "out_of_range"
                    slot.issues = list(outcome.issues) or slot.issues

            out_of_range = sum(1 for slot in day_slots if slot.outcome != "perfect")
            fixed = sum(1 for slot in day_slots if slot.outcome in ("scaled", "regenerated"))
            job.tracker.record_auto_fix_result(
                day_slots[0].date,
                "regeneration" if all(s.outcome == "regenerated" for s in pending) else "failed",
                out_of_range,
                fixed,
                attempt_count=sum(slot.repair.attempts for slot in pending),
            )
            # Only days with at least one successful regeneration count
            if any(slot.outcome == "regenerated" for slot in pending):
                job.tracker.increment_days_regenerated()

        days_to_repair = [day for day in job.slots if any(s.needs_regeneration for s in day)]
        if not days_to_repair:
            return

        max_workers = max(1, min(MAX_PARALLEL_REGENERATIONS, len(days_to_repair)))
        with concurrent.futures.ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="meal-regeneration"
        ) as executor:
            futures = [executor.submit(regenerate_day, day) for day in days_to_repair]
            for future in concurrent.futures.as_completed(futures):
                future.result()

    def _assemble_week(self, job: WeekGenerationJob) -> Tuple[WeeklyPlan, QualitySummary]:
        days: List[DayPlan] = []
        counts: Dict[str, int] = {outcome: 0 for outcome in OUTCOME_SEVERITY}
        out_of_range_meals: List[OutOfRangeMeal] = []

        for day_slots in job.slots:
            date = day_slots[0].date
            day = DayPlan(date=date, meals=[slot.meal for slot in day_slots if slot.meal is not None])
            day = day.model_copy(update={"explanation": format_day_explanation(day, job.targets)})
            days.append(day)

            counts[_worst([slot.outcome for slot in day_slots])] += 1
            for slot in day_slots:
                if slot.outcome == "out_of_range":
                    out_of_range_meals.append(
                        OutOfRangeMeal(
                            date=date,
                            meal_type=slot.meal_type,
                            reason="; ".join(slot.issues) or "Out of range",
                        )
                    )

            day_check = validate_day(day, job.targets, job.config)
            if not day_check["compliant"]:
                logger.warning("⚠️  %s day totals off target: %s", date, "; ".join(day_check["issues"]))

        plan = WeeklyPlan(week_start_date=job.session.week_start_date, days=days)
        summary = QualitySummary(
            perfect=counts["perfect"],
            scaled=counts["scaled"],
            regenerated=counts["regenerated"],
            out_of_range=counts["out_of_range"],
            out_of_range_meals=out_of_range_meals,
            auto_fix_results=job.tracker.auto_fix_results(),
        )
        logger.info("✅ Week %s: %s", plan.week_start_date, summary.summary)
        return plan, summary

    def generate_meal_plan_for_week(
        self,
        week_start_date: str,
        targets: NutritionTargets,
        user_context: Optional[UserContext] = None,
        plan_profile: str = "standard",
        user_id: str = DEFAULT_USER_ID,
        previous_week: Optional[WeeklyPlan] = None,
        config_profile: Optional[str] = None,
        preferences: Optional[DietaryPreferences] = None,
        run_in_background: bool = True,
    ) -> WeekGenerationResponse:
        """Generate a 7-day plan.

        Args:
            week_start_date: First day of the week (YYYY-MM-DD)
            targets: Daily macro targets, applied to every day
            user_context: Locale, diet type and food exclusions
            plan_profile: "standard" or "glp1"
            user_id: Owner of the plan (storage key, previous-week lookup)
            previous_week: Plan whose locked meals are carried over; loaded
                from the repository when omitted
            config_profile: Tuning profile name (default/strict/relaxed)
            preferences: Request-level dietary overrides
            run_in_background: Return right away with the session id and poll
                ``get_generation_status`` for progress

        Returns:
            WeekGenerationResponse; ``weekly_plan`` is set only for
            synchronous runs

        Raises:
            NutritionApiError: VALIDATION_ERROR / AI_PLAN_INFEASIBLE before a
                session exists; for synchronous runs, the error that ended it
        """
        job = self.open_week_session(
            week_start_date,
            targets,
            user_context=user_context,
            plan_profile=plan_profile,
            user_id=user_id,
            previous_week=previous_week,
            config_profile=config_profile,
            preferences=preferences,
        )

        if run_in_background:
            self._get_executor().submit(self.run_week_session, job)
            return job.response()

        response = self.run_week_session(job)
        status = job.tracker.status
        if status.error is not None:
            raise NutritionApiError(status.error.code, status.error.message, retryable=status.error.retryable)
        return response

    # ------------------------------------------------------------------
    # Day / single meal
    # ------------------------------------------------------------------

    def _produce_meal(
        self,
        date: str,
        budget: MealBudget,
        user_context: UserContext,
        plan_profile: str,
        config: NutritionPlanConfig,
        restrictions: List[DietaryRestriction],
        avoid_composition: Optional[List[str]] = None,
    ) -> Meal:
        """Generate, auto-fix and if needed regenerate one slot, or raise."""
        result = self._generator_for(config).generate_meal(
            date, budget, user_context, plan_profile, avoid_composition=avoid_composition
        )

        failed_meal: Optional[Meal] = None
        if isinstance(result, GenerationFailure):
            if not result.retryable:
                raise result.error
            issues = [result.error.message]
        else:
            meal, _, verdict = auto_fix_meal(result.meal, budget, config, restrictions)
            if verdict.passed:
                return meal
            failed_meal = meal
            issues = list(verdict.issues)

        outcome = self._coordinator_for(config).regenerate(
            date,
            budget,
            user_context,
            plan_profile,
            failed_meal=failed_meal,
            issues=issues,
            restrictions=restrictions,
        )
        if outcome.status != "success" or outcome.meal is None:
            raise outcome.to_error(date, budget.meal_type)
        return outcome.meal

    def generate_meal_plan_for_day(
        self,
        date: str,
        targets: NutritionTargets,
        user_context: Optional[UserContext] = None,
        plan_profile: str = "standard",
        preferences: Optional[DietaryPreferences] = None,
        config_profile: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> DayPlan:
        """Generate one day synchronously.

        Raises:
            NutritionApiError: VALIDATION_ERROR, AI_PLAN_INFEASIBLE, or the
                error of the first slot that could not be brought into range
        """
        _require_date(date, "date")
        config = self._resolve_config(config_profile)
        budgets = allocate_meal_budgets(targets, plan_profile, config)
        context = (user_context or UserContext()).merged_with(preferences)
        restrictions = self._restrictions(context)

        with log_workflow(logger, "day_generation", date=date, plan_profile=plan_profile):
            meals = [
                self._produce_meal(date, budget, context, plan_profile, config, restrictions)
                for budget in budgets
            ]

        day = DayPlan(date=date, meals=meals)
        day = day.model_copy(update={"explanation": format_day_explanation(day, targets)})

        if self.repository is not None and user_id:
            self.repository.upsert_day_plan(user_id, day)
        return day

    def reallocate_meal_budget(
        self,
        day_plan: DayPlan,
        meal_index: int,
        targets: NutritionTargets,
        plan_profile: str = "standard",
        config: Optional[NutritionPlanConfig] = None,
    ) -> MealBudget:
        """Budget for replacing one meal: what the other meals leave over.

        Each macro is clamped to the slot's nominal budget
        ±``budget_reallocation_tolerance`` and never drops below a floor.
        """
        config = config or self.config
        meal = day_plan.meals[meal_index]
        others = [m for i, m in enumerate(day_plan.meals) if i != meal_index]
        used = {"calories": 0.0, "protein_g": 0.0, "carbs_g": 0.0, "fat_g": 0.0}
        for other in others:
            for key, value in calculate_meal_totals(other).items():
                used[key] += value

        nominal = budget_for_slot(targets, plan_profile, meal.type, config)
        tolerance = config.budget_reallocation_tolerance

        def reallocate(target: float, used_amount: float, nominal_amount: float, floor: float) -> float:
            remaining = target - used_amount
            clamped = min(nominal_amount * (1 + tolerance), max(nominal_amount * (1 - tolerance), remaining))
            return round(max(floor, clamped), 1)

        return MealBudget(
            meal_type=meal.type,
            calorie_budget=reallocate(
                targets.calories_per_day, used["calories"], nominal.calorie_budget, MIN_REALLOCATED_CALORIES
            ),
            protein_budget=reallocate(
                targets.protein_grams, used["protein_g"], nominal.protein_budget, MIN_REALLOCATED_PROTEIN
            ),
            carbs_budget=reallocate(
                targets.carbs_grams, used["carbs_g"], nominal.carbs_budget, MIN_REALLOCATED_CARBS
            ),
            fat_budget=reallocate(targets.fat_grams, used["fat_g"], nominal.fat_budget, MIN_REALLOCATED_FAT),
        )

    def regenerate_meal(
        self,
        date: str,
        day_plan: DayPlan,
        meal_index: int,
        targets: NutritionTargets,
        user_id: Optional[str] = None,
        plan_profile: str = "standard",
        preferences: Optional[DietaryPreferences] = None,
        user_context: Optional[UserContext] = None,
        config_profile: Optional[str] = None,
        week_start_date: Optional[str] = None,
    ) -> DayPlan:
        """Replace one meal of a day with a fresh, different one.

        Args:
            date: Day of the plan (YYYY-MM-DD)
            day_plan: The current day
            meal_index: Position of the meal to replace
            targets: Daily macro targets
            user_id: Owner; when set and a repository is wired, the new day
                is stored
            plan_profile: "standard" or "glp1"
            preferences: Request-level dietary overrides
            user_context: Locale, diet type and food exclusions
            config_profile: Tuning profile name
            week_start_date: When set, the stored week containing this day is
                updated as well

        Returns:
            The day with the meal replaced (unlocked)

        Raises:
            NutritionApiError: VALIDATION_ERROR for a bad index or date,
                AI_PLAN_INFEASIBLE, or AI_PLAN_FAILED when no in-range meal
                could be produced
        """
        meal_count = len(day_plan.meals)
        if meal_index < 0 or meal_index >= meal_count:
            raise NutritionApiError(
                VALIDATION_ERROR,
                f"Invalid meal index {meal_index}. Must be between 0 and {meal_count - 1}.",
                details={"meal_index": meal_index, "meal_count": meal_count},
            )
        _require_date(date, "date")
        config = self._resolve_config(config_profile)
        check_feasibility(targets, config)

        context = (user_context or UserContext()).merged_with(preferences)
        current = day_plan.meals[meal_index]
        budget = self.reallocate_meal_budget(day_plan, meal_index, targets, plan_profile, config)

        logger.info(
            "🔄 Regenerating %s for %s (budget %.0f kcal, P %.0fg)",
            current.type,
            date,
            budget.calorie_budget,
            budget.protein_budget,
        )
        with log_workflow(logger, "meal_regeneration", date=date, meal_type=current.type):
            new_meal = self._produce_meal(
                date,
                budget,
                context,
                plan_profile,
                config,
                self._restrictions(context),
                avoid_composition=[item.name for item in current.items],
            )

        meals = list(day_plan.meals)
        meals[meal_index] = new_meal.model_copy(update={"id": f"{current.type}-{date}", "locked": False})
        updated = day_plan.model_copy(update={"date": date, "meals": meals})
        updated = updated.model_copy(update={"explanation": format_day_explanation(updated, targets)})

        if self.repository is not None and user_id:
            self.repository.upsert_day_plan(user_id, updated)
            if week_start_date:
                stored_week = self.repository.get_weekly_plan(user_id, week_start_date)
                if stored_week is not None:
                    days = [updated if d.date == date else d for d in stored_week.days]
                    self.repository.upsert_weekly_plan(user_id, stored_week.model_copy(update={"days": days}))
        return updated

    # ------------------------------------------------------------------
    # Sessions & metrics
    # ------------------------------------------------------------------

    def get_generation_status(self, session_id: str) -> Optional[GenerationStatus]:
        session = self.session_store.get(session_id)
        return session.tracker.status if session is not None else None

    def cancel_generation(self, session_id: str, remove: bool = True) -> bool:
        """Flag a session as cancelled; the run stops at its next phase boundary.

        Returns:
            False when the session is unknown
        """
        session = self.session_store.get(session_id)
        if session is None:
            return False
        session.cancelled.set()
        if session.tracker.is_terminal or remove:
            self.session_store.remove(session_id)
        logger.info("🛑 Session %s cancelled", session_id)
        return True

    def get_metrics(self) -> QualityMetrics:
        return self.metrics.snapshot()


def build_default_pipeline() -> MealPlanningPipeline:
    """Wire the production pipeline: CrewAI completions, trusted food table, in-memory storage."""
    config = get_nutrition_config(os.getenv("NUTRITION_CONFIG_PROFILE") or None)
    generator = PlanGenerator(CrewCompletionService(), food_lookup=FoodLookupService(), config=config)
    return MealPlanningPipeline(
        generator,
        session_store=SessionStore(),
        metrics=QualityMetricsAggregator(),
        repository=InMemoryPlanRepository(),
        config=config,
    )
