"""Robustness tests for completion-service failures at every granularity."""
import json
import time

import pytest

from conftest import WEEK_START, FakeCompletionService
from errors import (
    AI_PARSE_FAILED,
    AI_PLAN_FAILED,
    AI_TIMEOUT,
    NETWORK_ERROR,
    NutritionApiError,
)
from meal_generator import CrewCompletionService, GenerationFailure, MealRequest, PlanGenerator
from retry_utils import CircuitBreaker, CircuitBreakerOpen
from schemas import MealBudget, UserContext

BUDGET = MealBudget(meal_type="lunch", calorie_budget=800, protein_budget=56, carbs_budget=88, fat_budget=25)


class SlowCrewCompletionService(CrewCompletionService):
    """Crew service whose kickoff hangs longer than its timeout."""

    def _kickoff(self, request):
        time.sleep(1.0)
        return "{}"


@pytest.mark.priority_high
@pytest.mark.robustness
class TestGeneratorFailures:
    def test_transport_timeout_becomes_retryable_failure(self):
        fake = FakeCompletionService().script("lunch", TimeoutError("timed out"))
        result = PlanGenerator(fake).generate_meal("2025-01-06", BUDGET, UserContext())

        assert isinstance(result, GenerationFailure)
        assert result.ok is False
        assert result.error.code == AI_TIMEOUT
        assert result.retryable is True

    def test_unparseable_output_becomes_parse_failure(self):
        fake = FakeCompletionService().script("lunch", "```\nnot even close\n```")
        result = PlanGenerator(fake).generate_meal("2025-01-06", BUDGET, UserContext())

        assert isinstance(result, GenerationFailure)
        assert result.error.code == AI_PARSE_FAILED
        assert result.retryable is False
        assert result.error.details["reasons"]

    def test_generated_ids_are_deterministic(self):
        result = PlanGenerator(FakeCompletionService()).generate_meal(
            "2025-01-06", BUDGET, UserContext(), attempt=2
        )

        assert result.ok is True
        assert result.meal.id == "lunch-2025-01-06"
        assert [item.id for item in result.meal.items] == [
            "item-2025-01-06-lunch-2-0",
            "item-2025-01-06-lunch-2-1",
        ]

    @pytest.mark.timeout(10)
    def test_crew_service_enforces_per_call_timeout(self):
        service = SlowCrewCompletionService(llm=object(), timeout_seconds=0.05)
        request = MealRequest(date="2025-01-06", budget=BUDGET, user_context=UserContext())
        try:
            with pytest.raises(TimeoutError):
                service.complete(request)
            assert service.circuit_breaker.failure_count == 1
        finally:
            service.shutdown()

    def test_open_circuit_short_circuits_to_network_error(self):
        breaker = CircuitBreaker("test", failure_threshold=1, recovery_timeout=60)
        breaker.record_failure()
        service = CrewCompletionService(llm=object(), circuit_breaker=breaker)
        request = MealRequest(date="2025-01-06", budget=BUDGET, user_context=UserContext())
        try:
            with pytest.raises(CircuitBreakerOpen):
                service.complete(request)

            result = PlanGenerator(service).generate_meal("2025-01-06", BUDGET, UserContext())
            assert result.error.code == NETWORK_ERROR
        finally:
            service.shutdown()


@pytest.mark.priority_high
@pytest.mark.robustness
class TestWeekDegradation:
    """Week requests degrade per meal instead of failing outright."""

    @pytest.mark.timeout(30)
    def test_non_retryable_slot_failure_marks_meal_out_of_range(self, pipeline, fake_completion, sample_targets):
        fake_completion.script("lunch", *[ValueError("model exploded") for _ in range(7)])

        response = pipeline.generate_meal_plan_for_week(WEEK_START, sample_targets, run_in_background=False)

        assert len(response.weekly_plan.days) == 7
        assert all(len(day.meals) == 2 for day in response.weekly_plan.days)
        assert response.quality_summary.out_of_range == 7
        assert {m.meal_type for m in response.quality_summary.out_of_range_meals} == {"lunch"}
        # Non-retryable failures are not regenerated
        assert len(fake_completion.calls_for("lunch")) == 7

    @pytest.mark.timeout(30)
    def test_blank_item_name_marks_one_meal_out_of_range(self, pipeline, fake_completion, sample_targets):
        blank = json.dumps(
            {
                "meal_type": "lunch",
                "items": [{"name": "  ", "quantity": 150, "calories": 800, "protein": 56, "carbs": 88, "fat": 25}],
            }
        )
        fake_completion.script("lunch", blank)

        response = pipeline.generate_meal_plan_for_week(WEEK_START, sample_targets, run_in_background=False)

        assert len(response.weekly_plan.days) == 7
        assert response.quality_summary.out_of_range == 1
        assert len(fake_completion.calls_for("lunch")) == 7

    @pytest.mark.timeout(30)
    def test_retryable_slot_failure_is_regenerated(self, pipeline, fake_completion, sample_targets):
        fake_completion.script("dinner", TimeoutError("timed out"))

        response = pipeline.generate_meal_plan_for_week(WEEK_START, sample_targets, run_in_background=False)

        summary = response.quality_summary
        assert summary.regenerated == 1
        assert summary.perfect == 6
        assert summary.out_of_range == 0
        assert len(fake_completion.calls_for("dinner")) == 8

    @pytest.mark.timeout(30)
    def test_all_slots_failing_fails_the_week(self, pipeline, fake_completion, sample_targets):
        for meal_type in ("breakfast", "lunch", "dinner"):
            fake_completion.script(meal_type, *[ValueError("model exploded") for _ in range(7)])

        with pytest.raises(NutritionApiError) as exc_info:
            pipeline.generate_meal_plan_for_week(WEEK_START, sample_targets, run_in_background=False)

        assert exc_info.value.code == AI_PLAN_FAILED
        assert pipeline.get_metrics().total_weeks_generated == 0


@pytest.mark.priority_high
@pytest.mark.robustness
class TestDayAndMealPropagation:
    """Day and single-meal requests propagate the terminal error."""

    def test_day_parse_failure_propagates(self, pipeline, fake_completion, sample_targets):
        fake_completion.script("lunch", "no json here")

        with pytest.raises(NutritionApiError) as exc_info:
            pipeline.generate_meal_plan_for_day("2025-01-06", sample_targets)

        assert exc_info.value.code == AI_PARSE_FAILED

    def test_day_blank_item_name_is_parse_failure(self, pipeline, fake_completion, sample_targets):
        fake_completion.script(
            "breakfast",
            '{"meal_type": "breakfast", "items": [{"name": " ", "quantity": 100, "calories": 500, '
            '"protein": 30, "carbs": 60, "fat": 15}]}',
        )

        with pytest.raises(NutritionApiError) as exc_info:
            pipeline.generate_meal_plan_for_day("2025-01-06", sample_targets)

        assert exc_info.value.code == AI_PARSE_FAILED

    def test_day_exhausted_regeneration_is_plan_failed(self, pipeline, fake_completion, sample_targets):
        fake_completion.script("lunch", 3.0, 3.0)

        with pytest.raises(NutritionApiError) as exc_info:
            pipeline.generate_meal_plan_for_day("2025-01-06", sample_targets)

        assert exc_info.value.code == AI_PLAN_FAILED
        assert exc_info.value.details["meal_type"] == "lunch"

    def test_day_recovers_after_one_regeneration(self, pipeline, fake_completion, sample_targets):
        fake_completion.script("dinner", 3.0)

        day = pipeline.generate_meal_plan_for_day("2025-01-06", sample_targets)

        assert [meal.type for meal in day.meals] == ["breakfast", "lunch", "dinner"]
        assert len(fake_completion.calls_for("dinner")) == 2
