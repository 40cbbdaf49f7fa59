"""Agents for the meal planning pipeline."""
from .meal_generation_agent import create_meal_generation_agent

__all__ = [
    "create_meal_generation_agent",
]
