"""Shared test fixtures for the meal planning service tests."""
import json
import threading
from typing import Dict, List, Optional, Union

import pytest

from meal_generator import MealRequest, PlanGenerator
from meal_planning_pipeline import MealPlanningPipeline
from plan_repository import InMemoryPlanRepository
from quality_metrics import QualityMetricsAggregator
from schemas import Meal, MealBudget, NutritionTargets, PlannedFoodItem
from session_store import SessionStore
from validation_config import NutritionPlanConfig

WEEK_START = "2025-01-06"  # a Monday

Scripted = Union[str, BaseException, float]


def meal_json(budget: MealBudget, factor: float = 1.0, names: Optional[List[str]] = None) -> str:
    """Completion text for a two-item meal whose totals are ``factor`` x the budget."""
    names = names or [f"{budget.meal_type} plate", f"{budget.meal_type} side salad"]
    items = []
    for name in names:
        share = factor / len(names)
        items.append(
            {
                "name": name,
                "quantity": 150,
                "unit": "g",
                "calories": round(budget.calorie_budget * share, 1),
                "protein": round(budget.protein_budget * share, 1),
                "carbs": round(budget.carbs_budget * share, 1),
                "fat": round(budget.fat_budget * share, 1),
            }
        )
    return json.dumps({"meal_type": budget.meal_type, "items": items, "explanation": "Balanced plate"})


class FakeCompletionService:
    """Scripted stand-in for the completion service.

    By default every request gets a meal that exactly matches its budget.
    ``script(meal_type, *outcomes)`` queues per-slot outcomes, consumed in
    order: a str is returned as raw text, an exception is raised, a float is
    a budget multiplier for the generated meal.
    """

    def __init__(self, default_factor: float = 1.0):
        self.default_factor = default_factor
        self.calls: List[MealRequest] = []
        self._scripts: Dict[str, List[Scripted]] = {}
        self._lock = threading.Lock()

    def script(self, meal_type: str, *outcomes: Scripted) -> "FakeCompletionService":
        with self._lock:
            self._scripts.setdefault(meal_type, []).extend(outcomes)
        return self

    @property
    def call_count(self) -> int:
        with self._lock:
            return len(self.calls)

    def calls_for(self, meal_type: str) -> List[MealRequest]:
        with self._lock:
            return [call for call in self.calls if call.budget.meal_type == meal_type]

    def complete(self, request: MealRequest) -> str:
        with self._lock:
            self.calls.append(request)
            queue = self._scripts.get(request.budget.meal_type)
            outcome: Scripted = queue.pop(0) if queue else self.default_factor

        if isinstance(outcome, BaseException):
            raise outcome
        if isinstance(outcome, str):
            return outcome
        return meal_json(request.budget, factor=outcome)


def make_meal(
    meal_type: str,
    calories: float,
    protein: float,
    carbs: float = 40.0,
    fat: float = 15.0,
    date: str = WEEK_START,
    locked: bool = False,
    names: Optional[List[str]] = None,
) -> Meal:
    """Build a meal split evenly over its items."""
    names = names or [f"{meal_type} bowl", f"{meal_type} fruit"]
    count = len(names)
    return Meal(
        id=f"{meal_type}-{date}",
        type=meal_type,
        locked=locked,
        items=[
            PlannedFoodItem(
                id=f"item-{date}-{meal_type}-{index}",
                name=name,
                quantity=100,
                calories=calories / count,
                protein_grams=protein / count,
                carbs_grams=carbs / count,
                fats_grams=fat / count,
            )
            for index, name in enumerate(names)
        ],
    )


@pytest.fixture
def sample_targets():
    """The reference scenario: 2300 kcal, 160g protein, 250g carbs, 70g fat."""
    return NutritionTargets(calories_per_day=2300, protein_grams=160, carbs_grams=250, fat_grams=70)


@pytest.fixture
def test_config():
    """Default tolerances, one regeneration per meal, no backoff sleeps."""
    return NutritionPlanConfig(max_regenerations_per_meal=1, regeneration_backoff_seconds=0.0)


@pytest.fixture
def fake_completion():
    return FakeCompletionService()


@pytest.fixture
def generator(fake_completion, test_config):
    return PlanGenerator(fake_completion, config=test_config)


@pytest.fixture
def pipeline(generator, test_config):
    """Pipeline with fresh registries and a fake completion service."""
    pipe = MealPlanningPipeline(
        generator,
        session_store=SessionStore(),
        metrics=QualityMetricsAggregator(),
        repository=InMemoryPlanRepository(),
        config=test_config,
        session_grace_seconds=60,
        sleep=lambda _seconds: None,
    )
    yield pipe
    pipe.shutdown()
