"""Agent responsible for composing one meal that fits a macro budget."""
from crewai import Agent
from typing import Any, Optional, Sequence


def create_meal_generation_agent(
    llm: Any,
    tools: Optional[Sequence[Any]] = None,
) -> Agent:
    """
    Create an agent that composes a single simple meal for a macro budget.

    The agent answers with JSON only. It never retries on its own: retry
    budgets are owned by the regeneration coordinator, so the agent's
    internal retry limit is zero.

    Args:
        llm: The language model to use
        tools: Optional food lookup tools

    Returns:
        Configured Agent instance
    """
    tools_list = list(tools) if tools else []

    agent_kwargs = {
        "role": "Sports Nutrition Meal Composer",
        "goal": "Compose one realistic meal of 1-3 common foods whose calories and protein land on the requested budget",
        "backstory": """You are a registered dietitian who builds practical meals from
        everyday groceries. You know the macros of common foods by heart and size
        portions in grams so totals add up.

        HOW YOU WORK:
        - One meal at a time, 1 to 3 food items, standard portions
        - Protein first: pick the protein source, then fill carbs and fats
        - Respect diet type, avoided ingredients and disliked foods strictly
        - Prefer whole foods over exotic or branded items
        - Report per-item calories, protein, carbs and fats for the stated quantity

        OUTPUT DISCIPLINE:
        - Reply with a single JSON object and nothing else
        - No markdown, no commentary, no reasoning text""",
        "verbose": False,
        "allow_delegation": False,
        "max_retry_limit": 0,
        "llm": llm,
        "tools": tools_list,
    }

    return Agent(**agent_kwargs)
