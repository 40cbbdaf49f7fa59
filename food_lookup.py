"""Authoritative macros for well-known foods.

Used to ground completion-service estimates: when an item's name matches a
trusted entry and its unit is a mass or volume, the item's macros are
recomputed from its quantity. Anything else keeps the model's estimate.
"""

import logging
import re
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple

from schemas import PlannedFoodItem

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FoodMacro:
    """Macros of one reference serving."""

    name: str
    calories: float
    protein: float
    carbs: float
    fat: float
    serving_size: float = 100.0
    serving_unit: str = "g"


# Longer keys first so "brown rice" wins over "rice"
TRUSTED_FOODS: Dict[str, FoodMacro] = {
    # Proteins
    "chicken breast": FoodMacro("Chicken Breast (cooked)", 165, 31, 0, 3.6),
    "greek yogurt": FoodMacro("Greek Yogurt (non-fat)", 59, 10, 3.6, 0.4),
    "salmon": FoodMacro("Salmon (cooked)", 208, 20, 0, 13),
    "steak": FoodMacro("Beef Steak (grilled)", 271, 26, 0, 19),
    "tofu": FoodMacro("Tofu (firm)", 144, 17, 3, 8),
    "egg": FoodMacro("Large Egg", 72, 6, 0.4, 5, serving_size=50),
    # Carbs
    "sweet potato": FoodMacro("Sweet Potato (baked)", 90, 2, 20.7, 0.15),
    "brown rice": FoodMacro("Brown Rice (cooked)", 111, 2.6, 23, 0.9),
    "quinoa": FoodMacro("Quinoa (cooked)", 120, 4.4, 21.3, 1.9),
    "pasta": FoodMacro("Pasta (cooked)", 131, 5, 25, 1.1),
    "oats": FoodMacro("Oats (rolled, dry)", 389, 16.9, 66, 6.9),
    "rice": FoodMacro("White Rice (cooked)", 130, 2.7, 28, 0.3),
    # Fats
    "peanut butter": FoodMacro("Peanut Butter", 588, 25, 20, 50),
    "olive oil": FoodMacro("Olive Oil", 884, 0, 0, 100, serving_unit="ml"),
    "avocado": FoodMacro("Avocado", 160, 2, 8.5, 14.7),
    "almonds": FoodMacro("Almonds", 579, 21, 22, 50),
    # Fruits / vegetables
    "broccoli": FoodMacro("Broccoli (cooked)", 35, 2.4, 7.2, 0.4),
    "spinach": FoodMacro("Spinach (raw)", 23, 2.9, 3.6, 0.4),
    "banana": FoodMacro("Banana", 89, 1.1, 22.8, 0.3),
    "apple": FoodMacro("Apple", 52, 0.3, 14, 0.2),
}

# Compound names where a key appears as a whole word but names another food
NON_MATCHING_COMPOUNDS: Dict[str, Tuple[str, ...]] = {
    "rice": ("cauliflower rice", "rice noodle", "rice paper", "rice cake"),
    "steak": ("tuna steak", "cauliflower steak", "mushroom steak"),
    "egg": ("egg noodle",),
    "pasta": ("lentil pasta", "chickpea pasta", "zucchini pasta"),
}

# Units convertible to the reference serving unit (grams or millilitres)
UNIT_TO_BASE = {
    "g": 1.0,
    "gram": 1.0,
    "grams": 1.0,
    "ml": 1.0,
    "kg": 1000.0,
    "l": 1000.0,
    "oz": 28.35,
}


class FoodLookupService:
    """Whole-word lookup over a trusted food table."""

    def __init__(
        self,
        foods: Optional[Dict[str, FoodMacro]] = None,
        compounds: Optional[Dict[str, Tuple[str, ...]]] = None,
    ):
        table = foods if foods is not None else TRUSTED_FOODS
        # Plurals match ("eggs", "apples"); "eggplant" and "pineapple" do not
        self._foods = [
            (re.compile(rf"\b{re.escape(key)}(?:s|es)?\b"), key, macro)
            for key, macro in sorted(table.items(), key=lambda kv: len(kv[0]), reverse=True)
        ]
        self._compounds = compounds if compounds is not None else NON_MATCHING_COMPOUNDS

    def find(self, name: str) -> Optional[FoodMacro]:
        normalized = " ".join(name.lower().split())
        for pattern, key, macro in self._foods:
            if not pattern.search(normalized):
                continue
            if any(compound in normalized for compound in self._compounds.get(key, ())):
                continue
            return macro
        return None

    def find_batch(self, names: Iterable[str]) -> Dict[str, Optional[FoodMacro]]:
        """Look up several names at once; unknown names map to None."""
        return {name: self.find(name) for name in names}

    def ground_item(self, item: PlannedFoodItem) -> PlannedFoodItem:
        """Replace an item's macros with trusted values when they can be derived."""
        macro = self.find(item.name)
        multiplier = UNIT_TO_BASE.get(item.unit.lower().strip())
        if macro is None or multiplier is None:
            return item

        servings = item.quantity * multiplier / macro.serving_size
        grounded = item.model_copy(
            update={
                "calories": round(macro.calories * servings, 1),
                "protein_grams": round(macro.protein * servings, 1),
                "carbs_grams": round(macro.carbs * servings, 1),
                "fats_grams": round(macro.fat * servings, 1),
            }
        )
        if abs(grounded.calories - item.calories) > max(25.0, item.calories * 0.15):
            logger.info(
                "🔎 Grounded '%s': model said %.0f kcal, trusted table says %.0f kcal",
                item.name,
                item.calories,
                grounded.calories,
            )
        return grounded

    def ground_items(self, items: List[PlannedFoodItem]) -> List[PlannedFoodItem]:
        return [self.ground_item(item) for item in items]
