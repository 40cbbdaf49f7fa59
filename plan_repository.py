"""Storage seam for generated plans.

Weekly plans are keyed by (user_id, week_start_date), single days by
(user_id, date). Plans are stored as JSON-mode dumps so callers never share
mutable model instances with the store.
"""

import logging
import threading
from typing import Dict, Optional, Protocol, Tuple

from schemas import DayPlan, WeeklyPlan

logger = logging.getLogger(__name__)


class PlanRepository(Protocol):
    def get_weekly_plan(self, user_id: str, week_start_date: str) -> Optional[WeeklyPlan]:
        ...

    def upsert_weekly_plan(self, user_id: str, plan: WeeklyPlan) -> None:
        ...

    def delete_weekly_plan(self, user_id: str, week_start_date: str) -> bool:
        ...

    def get_day_plan(self, user_id: str, date: str) -> Optional[DayPlan]:
        ...

    def upsert_day_plan(self, user_id: str, day: DayPlan) -> None:
        ...

    def delete_day_plan(self, user_id: str, date: str) -> bool:
        ...


class InMemoryPlanRepository:
    """Process-local PlanRepository."""

    def __init__(self):
        self._lock = threading.Lock()
        self._weeks: Dict[Tuple[str, str], dict] = {}
        self._days: Dict[Tuple[str, str], dict] = {}

    def get_weekly_plan(self, user_id: str, week_start_date: str) -> Optional[WeeklyPlan]:
        with self._lock:
            stored = self._weeks.get((user_id, week_start_date))
        return WeeklyPlan.model_validate(stored) if stored is not None else None

    def upsert_weekly_plan(self, user_id: str, plan: WeeklyPlan) -> None:
        with self._lock:
            self._weeks[(user_id, plan.week_start_date)] = plan.model_dump(mode="json")
        logger.info("💾 Stored weekly plan %s for user %s", plan.week_start_date, user_id)

    def delete_weekly_plan(self, user_id: str, week_start_date: str) -> bool:
        with self._lock:
            return self._weeks.pop((user_id, week_start_date), None) is not None

    def get_day_plan(self, user_id: str, date: str) -> Optional[DayPlan]:
        with self._lock:
            stored = self._days.get((user_id, date))
        return DayPlan.model_validate(stored) if stored is not None else None

    def upsert_day_plan(self, user_id: str, day: DayPlan) -> None:
        with self._lock:
            self._days[(user_id, day.date)] = day.model_dump(mode="json")
        logger.info("💾 Stored day plan %s for user %s", day.date, user_id)

    def delete_day_plan(self, user_id: str, date: str) -> bool:
        with self._lock:
            return self._days.pop((user_id, date), None) is not None
