"""Tasks for the meal planning pipeline."""
from .meal_generation_task import (
    build_meal_generation_description,
    create_meal_generation_task,
)

__all__ = [
    "build_meal_generation_description",
    "create_meal_generation_task",
]
