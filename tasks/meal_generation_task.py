"""Task for generating a single meal against a macro budget."""

from __future__ import annotations

import json
from typing import Any, Dict, Iterable, List

from crewai import Task

DIET_LABELS: Dict[str, str] = {
    "vegetarian": "Vegetarian (no meat, poultry, or fish)",
    "vegan": "Vegan (no animal products)",
    "pescatarian": "Pescatarian (fish allowed, no meat/poultry)",
    "keto": "Ketogenic (very low carb, high fat)",
    "paleo": "Paleo (no grains, legumes, dairy)",
    "low_carb": "Low carb (moderate carb restriction)",
    "mediterranean": "Mediterranean (fish, olive oil, vegetables)",
    "halal": "Halal (Islamic dietary laws)",
    "kosher": "Kosher (Jewish dietary laws)",
}

GLP1_GUIDANCE = """
GLP-1 MEDICATION CONSIDERATIONS:
- The user may have reduced appetite and early satiety
- Prioritize protein-dense, easily digestible foods (Greek yogurt, lean meats, eggs)
- Keep meal volumes small (90-170 g protein portions, not 250 g+)
- Avoid very high-fat or high-fiber meals that may cause discomfort
- Snacks are substantial mini-meals with protein, not a piece of fruit"""

OUTPUT_EXAMPLE = {
    "meal_type": "lunch",
    "items": [
        {
            "name": "chicken breast, grilled",
            "quantity": 150,
            "unit": "g",
            "calories": 248,
            "protein_grams": 46.5,
            "carbs_grams": 0,
            "fats_grams": 5.4,
        }
    ],
    "explanation": "Why these foods fit the budget",
}


def build_meal_generation_description(
    date: str,
    budget: Dict[str, Any],
    user_context: Dict[str, Any],
    plan_profile: str,
    avoid_composition: Iterable[str] | None = None,
    validation_feedback: List[str] | None = None,
    tolerance_rules: str = "",
) -> str:
    """Render the prompt asking for one meal."""
    meal_type = budget["meal_type"]

    preferences_section = ""
    diet_type = user_context.get("diet_type")
    if diet_type and diet_type != "none":
        preferences_section += f"\nDIET TYPE: {DIET_LABELS.get(diet_type, diet_type)}"
    avoid = user_context.get("avoid_ingredients") or []
    if avoid:
        preferences_section += f"\nAVOID INGREDIENTS (never use): {', '.join(avoid)}"
    disliked = user_context.get("disliked_foods") or []
    if disliked:
        preferences_section += f"\nDISLIKED FOODS (avoid if possible): {', '.join(disliked)}"

    context_lines = [f"- Locale: {user_context.get('locale') or 'en'}"]
    if user_context.get("city"):
        context_lines.append(f"- User location: {user_context['city']}")
    if plan_profile == "glp1":
        context_lines.append("- Plan Profile: GLP-1 medication (smaller portions, protein priority)")

    retry_section = ""
    previous = list(avoid_composition or [])
    if previous:
        retry_section = f"""

⚠️ A PREVIOUS ATTEMPT FOR THIS SLOT WAS REJECTED
Do NOT reuse this composition: {', '.join(previous)}"""
        if validation_feedback:
            retry_section += "\nIssues found:\n" + "\n".join(
                f"  {idx + 1}. {issue}" for idx, issue in enumerate(validation_feedback[:5])
            )

    return f"""
Compose the {meal_type.upper()} for {date}.

MEAL BUDGET:
- Calories: {budget['calorie_budget']:.0f} kcal
- Protein: {budget['protein_budget']:.0f} g (meet or exceed)
- Carbs: {budget['carbs_budget']:.0f} g
- Fats: {budget['fat_budget']:.0f} g

{tolerance_rules}

CONTEXT:
{chr(10).join(context_lines)}
{preferences_section}
{GLP1_GUIDANCE if plan_profile == "glp1" else ""}{retry_section}

RULES:
- Use 1 to 3 common food items with standard portions
- Give each quantity in grams ("g") or millilitres ("ml") whenever possible
- Per-item macros must be for the stated quantity, not per 100 g
- "meal_type" must be "{meal_type}"

Return ONLY a JSON object shaped like this example (no markdown fences, no commentary):
{json.dumps(OUTPUT_EXAMPLE, indent=2)}
"""


def create_meal_generation_task(
    agent: Any,
    date: str,
    budget: Dict[str, Any],
    user_context: Dict[str, Any],
    plan_profile: str = "standard",
    avoid_composition: Iterable[str] | None = None,
    validation_feedback: List[str] | None = None,
    tolerance_rules: str = "",
) -> Task:
    """Create a task asking for one meal that fits ``budget``."""
    description = build_meal_generation_description(
        date,
        budget,
        user_context,
        plan_profile,
        avoid_composition=avoid_composition,
        validation_feedback=validation_feedback,
        tolerance_rules=tolerance_rules,
    )

    return Task(
        description=description,
        agent=agent,
        expected_output=f"A single JSON object describing one {budget['meal_type']} with 1-3 items and per-item macros",
    )
