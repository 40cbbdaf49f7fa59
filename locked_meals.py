"""Carry locked meals from a previous week into a new one.

Locked meals are matched by day index and meal type: previous day ``i``'s
locked breakfast becomes new day ``i``'s breakfast, item for item. A locked
meal whose type is not a slot of the new plan profile (a glp1 snack going
into a standard week) is not carried and is reported instead.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from schemas import DAYS_PER_WEEK, Meal, SkippedLockedMeal, WeeklyPlan, shift_date

logger = logging.getLogger(__name__)


@dataclass
class CarryoverResult:
    """Pre-filled slots per day index plus the locked meals that did not fit."""

    slots: List[Dict[str, Meal]] = field(default_factory=lambda: [{} for _ in range(DAYS_PER_WEEK)])
    skipped: List[SkippedLockedMeal] = field(default_factory=list)

    @property
    def carried_count(self) -> int:
        return sum(len(day) for day in self.slots)


def carry_over_locked_meals(
    previous_week: Optional[WeeklyPlan],
    week_start_date: str,
    meal_slots: List[str],
) -> CarryoverResult:
    """Copy every locked meal of ``previous_week`` into the matching new slot.

    Args:
        previous_week: The prior week's plan (None = nothing to carry)
        week_start_date: First day of the new week (YYYY-MM-DD)
        meal_slots: Meal types of the new week's plan profile

    Returns:
        CarryoverResult whose ``slots[i]`` maps meal type to the copied meal
    """
    result = CarryoverResult()
    if previous_week is None:
        return result

    for index, previous_day in enumerate(previous_week.days[:DAYS_PER_WEEK]):
        new_date = shift_date(week_start_date, index)

        for meal in previous_day.meals:
            if not meal.locked:
                continue

            if meal.type not in meal_slots:
                reason = f"No '{meal.type}' slot in the new plan profile ({', '.join(meal_slots)})"
            elif meal.type in result.slots[index]:
                reason = f"Slot '{meal.type}' already filled by another locked meal"
            else:
                result.slots[index][meal.type] = meal.model_copy(
                    update={"id": f"{meal.type}-{new_date}"}, deep=True
                )
                continue

            logger.warning("🔒 Locked %s from %s not carried: %s", meal.type, previous_day.date, reason)
            result.skipped.append(
                SkippedLockedMeal(day_index=index, date=new_date, meal_type=meal.type, reason=reason)
            )

    if result.carried_count:
        logger.info("🔒 Carried %d locked meal(s) into week %s", result.carried_count, week_start_date)
    return result
