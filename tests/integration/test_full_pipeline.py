"""End-to-end pipeline tests with a scripted completion service."""
import time

import pytest

from conftest import WEEK_START, make_meal, meal_json
from errors import AI_PLAN_INFEASIBLE, CANCELLED, VALIDATION_ERROR, NutritionApiError
from generation_progress import PHASE_ORDER
from schemas import DayPlan, NutritionTargets, shift_date

USER = "athlete-42"


def _standard_day(date, locked_type=None):
    """Day whose meals sit exactly on the 2300/160 standard budgets."""
    return DayPlan(
        date=date,
        meals=[
            make_meal("breakfast", 575, 40, date=date, locked=locked_type == "breakfast"),
            make_meal("lunch", 805, 56, date=date, locked=locked_type == "lunch"),
            make_meal("dinner", 920, 64, date=date, locked=locked_type == "dinner"),
        ],
    )


def _wait_for_terminal(pipeline, session_id, timeout=10.0):
    """Poll a session until it ends, returning every phase observed."""
    phases = []
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        status = pipeline.get_generation_status(session_id)
        if status is not None and (not phases or phases[-1] != status.phase):
            phases.append(status.phase)
        if status is not None and status.is_terminal:
            return phases, status
        time.sleep(0.002)
    raise AssertionError(f"Session {session_id} did not finish; saw {phases}")


@pytest.mark.priority_high
@pytest.mark.integration
class TestWeekGeneration:
    @pytest.mark.timeout(30)
    def test_synchronous_week(self, pipeline, fake_completion, sample_targets):
        response = pipeline.generate_meal_plan_for_week(
            WEEK_START, sample_targets, user_id=USER, run_in_background=False
        )

        plan = response.weekly_plan
        assert [day.date for day in plan.days] == [shift_date(WEEK_START, i) for i in range(7)]
        assert all([meal.type for meal in day.meals] == ["breakfast", "lunch", "dinner"] for day in plan.days)
        assert all(day.explanation for day in plan.days)
        assert fake_completion.call_count == 21

        summary = response.quality_summary
        assert (summary.perfect, summary.scaled, summary.regenerated, summary.out_of_range) == (7, 0, 0, 0)
        assert all(record.method == "none" for record in summary.auto_fix_results)

        status = pipeline.get_generation_status(response.session_id)
        assert status.phase == "complete"
        assert status.days_generated == 7
        assert status.quality_summary == summary

        metrics = pipeline.get_metrics()
        assert metrics.total_weeks_generated == 1
        assert metrics.breakdown.perfect == 1
        assert metrics.total_days_generated == 7

    @pytest.mark.timeout(30)
    def test_glp1_week_has_snacks(self, pipeline, fake_completion, sample_targets):
        response = pipeline.generate_meal_plan_for_week(
            WEEK_START, sample_targets, plan_profile="glp1", run_in_background=False
        )

        assert all(len(day.meals) == 4 for day in response.weekly_plan.days)
        assert len(fake_completion.calls_for("snack")) == 7

    def test_infeasible_targets_rejected_before_any_work(self, pipeline, fake_completion):
        targets = NutritionTargets(calories_per_day=1200, protein_grams=200, carbs_grams=60, fat_grams=30)

        with pytest.raises(NutritionApiError) as exc_info:
            pipeline.generate_meal_plan_for_week(WEEK_START, targets, plan_profile="glp1", run_in_background=False)

        assert exc_info.value.code == AI_PLAN_INFEASIBLE
        assert fake_completion.call_count == 0
        assert len(pipeline.session_store) == 0

    def test_bad_week_start_date(self, pipeline, sample_targets):
        with pytest.raises(NutritionApiError) as exc_info:
            pipeline.generate_meal_plan_for_week("06/01/2025", sample_targets, run_in_background=False)
        assert exc_info.value.code == VALIDATION_ERROR

    @pytest.mark.timeout(30)
    def test_scaled_meal(self, pipeline, fake_completion, sample_targets):
        fake_completion.script("breakfast", 2.0)

        response = pipeline.generate_meal_plan_for_week(WEEK_START, sample_targets, run_in_background=False)

        summary = response.quality_summary
        assert summary.scaled == 1
        assert summary.perfect == 6
        assert len(fake_completion.calls_for("breakfast")) == 7
        assert [r.method for r in summary.auto_fix_results].count("scaling") == 1
        assert pipeline.get_generation_status(response.session_id).days_auto_fixed == 1

    @pytest.mark.timeout(30)
    def test_regenerated_meal(self, pipeline, fake_completion, sample_targets):
        fake_completion.script("breakfast", 3.0)

        response = pipeline.generate_meal_plan_for_week(WEEK_START, sample_targets, run_in_background=False)

        summary = response.quality_summary
        assert summary.regenerated == 1
        assert len(fake_completion.calls_for("breakfast")) == 8
        regeneration_call = fake_completion.calls_for("breakfast")[-1]
        assert regeneration_call.avoid_composition == ("breakfast plate", "breakfast side salad")
        assert regeneration_call.validation_feedback

        status = pipeline.get_generation_status(response.session_id)
        assert status.days_regenerated == 1
        metrics = pipeline.get_metrics()
        assert metrics.regeneration_attempts == 1
        assert metrics.regeneration_successes == 1

    @pytest.mark.timeout(30)
    def test_failed_regeneration_does_not_count_as_regenerated_day(self, pipeline, fake_completion, sample_targets):
        fake_completion.script("breakfast", 3.0, 3.0)

        response = pipeline.generate_meal_plan_for_week(WEEK_START, sample_targets, run_in_background=False)

        assert response.quality_summary.out_of_range == 1
        assert response.quality_summary.regenerated == 0
        assert pipeline.get_generation_status(response.session_id).days_regenerated == 0

    @pytest.mark.timeout(30)
    def test_background_phases_only_move_forward(self, pipeline, sample_targets):
        response = pipeline.generate_meal_plan_for_week(WEEK_START, sample_targets)

        assert response.weekly_plan is None
        phases, status = _wait_for_terminal(pipeline, response.session_id)

        assert status.phase == "complete"
        indexes = [PHASE_ORDER.index(phase) for phase in phases]
        assert indexes == sorted(indexes)

    def test_cancelled_session_stops_before_generating(self, pipeline, fake_completion, sample_targets):
        job = pipeline.open_week_session(WEEK_START, sample_targets)

        assert pipeline.cancel_generation(job.session_id) is True
        response = pipeline.run_week_session(job)

        assert response.weekly_plan is None
        assert job.tracker.phase == "error"
        assert job.tracker.status.error.code == CANCELLED
        assert fake_completion.call_count == 0
        assert pipeline.get_generation_status(job.session_id) is None
        assert pipeline.cancel_generation(job.session_id) is False


@pytest.mark.priority_high
@pytest.mark.integration
class TestLockedMealRoundTrip:
    @pytest.mark.timeout(30)
    def test_locked_meal_carried_from_stored_week(self, pipeline, fake_completion, sample_targets):
        first = pipeline.generate_meal_plan_for_week(
            WEEK_START, sample_targets, user_id=USER, run_in_background=False
        ).weekly_plan

        days = list(first.days)
        lunch = days[2].meals[1].model_copy(update={"locked": True})
        days[2] = days[2].model_copy(update={"meals": [days[2].meals[0], lunch, days[2].meals[2]]})
        pipeline.repository.upsert_weekly_plan(USER, first.model_copy(update={"days": days}))

        next_week = shift_date(WEEK_START, 7)
        calls_before = len(fake_completion.calls_for("lunch"))
        second = pipeline.generate_meal_plan_for_week(
            next_week, sample_targets, user_id=USER, run_in_background=False
        )

        carried = second.weekly_plan.days[2].meals[1]
        assert carried.locked is True
        assert carried.items == lunch.items
        assert carried.id == f"lunch-{shift_date(next_week, 2)}"
        assert len(fake_completion.calls_for("lunch")) - calls_before == 6
        assert second.skipped_locked_meals == []

    @pytest.mark.timeout(30)
    def test_snack_lock_skipped_for_standard_week(self, pipeline, sample_targets):
        date = shift_date(WEEK_START, -7)
        previous = pipeline.generate_meal_plan_for_week(
            date, sample_targets, plan_profile="glp1", run_in_background=False
        ).weekly_plan
        days = list(previous.days)
        snack = days[0].meals[3].model_copy(update={"locked": True})
        days[0] = days[0].model_copy(update={"meals": days[0].meals[:3] + [snack]})

        response = pipeline.generate_meal_plan_for_week(
            WEEK_START,
            sample_targets,
            previous_week=previous.model_copy(update={"days": days}),
            run_in_background=False,
        )

        assert len(response.skipped_locked_meals) == 1
        assert response.skipped_locked_meals[0].meal_type == "snack"
        assert len(response.weekly_plan.days[0].meals) == 3


@pytest.mark.priority_high
@pytest.mark.integration
class TestDayGeneration:
    def test_reference_day(self, pipeline, fake_completion, sample_targets):
        day = pipeline.generate_meal_plan_for_day("2025-01-08", sample_targets, user_id=USER)

        assert [meal.type for meal in day.meals] == ["breakfast", "lunch", "dinner"]
        calories = sum(item.calories for meal in day.meals for item in meal.items)
        protein = sum(item.protein_grams for meal in day.meals for item in meal.items)
        assert 2070 <= calories <= 2530
        assert protein >= 152
        assert fake_completion.call_count == 3
        assert pipeline.repository.get_day_plan(USER, "2025-01-08") == day

    def test_scalable_meal_is_fixed_without_extra_calls(self, pipeline, fake_completion, sample_targets):
        fake_completion.script("lunch", 0.6)

        day = pipeline.generate_meal_plan_for_day("2025-01-08", sample_targets)

        lunch = day.meal_of_type("lunch")
        assert sum(item.calories for item in lunch.items) == pytest.approx(805, rel=0.02)
        assert fake_completion.call_count == 3

    def test_unknown_profile(self, pipeline, sample_targets):
        with pytest.raises(NutritionApiError) as exc_info:
            pipeline.generate_meal_plan_for_day("2025-01-08", sample_targets, plan_profile="keto")
        assert exc_info.value.code == VALIDATION_ERROR


@pytest.mark.priority_high
@pytest.mark.integration
class TestSingleMealRegeneration:
    @pytest.mark.parametrize("index", [-1, 3, 99])
    def test_invalid_index(self, pipeline, fake_completion, sample_targets, index):
        with pytest.raises(NutritionApiError) as exc_info:
            pipeline.regenerate_meal("2025-01-08", _standard_day("2025-01-08"), index, sample_targets)

        assert exc_info.value.code == VALIDATION_ERROR
        assert "index" in exc_info.value.message
        assert fake_completion.call_count == 0

    def test_budget_reallocated_from_remaining_day(self, pipeline, sample_targets):
        day = DayPlan(
            date="2025-01-08",
            meals=[
                make_meal("breakfast", 700, 40, date="2025-01-08"),
                make_meal("lunch", 900, 56, date="2025-01-08"),
                make_meal("dinner", 920, 64, date="2025-01-08"),
            ],
        )

        budget = pipeline.reallocate_meal_budget(day, 2, sample_targets)

        assert budget.meal_type == "dinner"
        # 700 kcal remain, clamped to 80% of the 920 kcal nominal dinner
        assert budget.calorie_budget == 736.0
        assert budget.protein_budget == 64.0

    def test_replaced_meal_is_new_and_unlocked(self, pipeline, fake_completion, sample_targets):
        date = "2025-01-08"
        day = _standard_day(date, locked_type="dinner")
        budget = pipeline.reallocate_meal_budget(day, 2, sample_targets)
        fake_completion.script("dinner", meal_json(budget, names=["seared tuna", "wild rice"]))

        updated = pipeline.regenerate_meal(date, day, 2, sample_targets)

        dinner = updated.meals[2]
        assert [item.name for item in dinner.items] == ["seared tuna", "wild rice"]
        assert dinner.locked is False
        assert dinner.id == f"dinner-{date}"
        assert updated.meals[:2] == day.meals[:2]
        assert fake_completion.calls_for("dinner")[0].avoid_composition == ("dinner bowl", "dinner fruit")

    @pytest.mark.timeout(30)
    def test_stored_week_updated(self, pipeline, fake_completion, sample_targets):
        week = pipeline.generate_meal_plan_for_week(
            WEEK_START, sample_targets, user_id=USER, run_in_background=False
        ).weekly_plan
        date = week.days[1].date
        budget = pipeline.reallocate_meal_budget(week.days[1], 0, sample_targets)
        fake_completion.script("breakfast", meal_json(budget, names=["greek yogurt", "berries"]))

        pipeline.regenerate_meal(
            date, week.days[1], 0, sample_targets, user_id=USER, week_start_date=WEEK_START
        )

        stored = pipeline.repository.get_weekly_plan(USER, WEEK_START)
        assert [item.name for item in stored.days[1].meals[0].items] == ["greek yogurt", "berries"]
        assert stored.days[0] == week.days[0]
        assert pipeline.repository.get_day_plan(USER, date).meals[0].items[0].name == "greek yogurt"
