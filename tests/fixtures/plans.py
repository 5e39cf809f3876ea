"""Plan document fixtures.

The default day sums to exactly 2000 kcal with a "maintain" distribution:
breakfast 27%, lunch 31%, dinner 31%, one snack 11%; macros total
120 g protein / 240 g carbs / 65 g fat.
"""

import copy
import json
from typing import Any, Dict, List, Optional

TARGET_CALORIES = 2000
OVERVIEW_MACROS = {"protein": 120, "carbs": 240, "fat": 65}

INSTRUCTIONS = (
    "Prepare all ingredients, cook over medium heat for 10 minutes, stirring "
    "occasionally, then season and serve warm."
)


def make_meal(
    name: str,
    ingredients: List[str],
    calories: float,
    protein: float,
    carbs: float,
    fat: float,
    instructions: str = INSTRUCTIONS,
    **extra: Any,
) -> Dict[str, Any]:
    meal = {
        "name": name,
        "ingredients": list(ingredients),
        "instructions": instructions,
        "nutrition": {"calories": calories, "protein": protein, "carbs": carbs, "fat": fat},
    }
    meal.update(extra)
    return meal


def make_snack(**overrides: Any) -> Dict[str, Any]:
    snack = make_meal(
        "Apple with Almond Butter",
        ["1 medium apple", "1 tbsp almond butter"],
        220,
        10,
        25,
        8,
        instructions="Slice the apple and serve with almond butter.",
        portionSize="1 medium apple (150g) + 1 tbsp almond butter (16g)",
        allergens=["tree nuts"],
    )
    snack.update(overrides)
    return snack


def make_day_meals() -> Dict[str, Any]:
    return {
        "breakfast": make_meal(
            "Masala Oats Porridge",
            ["1 cup rolled oats", "1 cup almond milk", "1 medium banana", "1 tsp cinnamon"],
            540,
            30,
            70,
            15,
        ),
        "lunch": make_meal(
            "Chickpea Spinach Curry with Brown Rice",
            [
                "1 cup cooked chickpeas",
                "100 g spinach",
                "1 cup cooked brown rice",
                "1 tbsp olive oil",
                "1 tsp cumin",
            ],
            620,
            40,
            75,
            20,
        ),
        "dinner": make_meal(
            "Grilled Tofu Vegetable Stir Fry",
            ["150 g tofu", "1 cup broccoli", "1 medium bell pepper", "2 tbsp soy sauce", "1 tbsp olive oil"],
            620,
            40,
            70,
            22,
        ),
        "snacks": [make_snack()],
    }


GROCERY_LIST = {
    "produce": [
        "1 medium banana",
        "100 g spinach",
        "1 cup broccoli",
        "1 medium bell pepper",
        "1 medium apple",
    ],
    "protein": ["150 g tofu"],
    "dairy": ["1 cup almond milk"],
    "pantry": [
        "1 cup rolled oats",
        "1/2 cup chickpeas",
        "1/2 cup brown rice",
        "2 tbsp olive oil",
        "2 tbsp soy sauce",
        "1 tbsp almond butter",
    ],
    "spices": ["1 tsp cinnamon", "1 tsp cumin"],
}


def make_plan(
    days: int = 1,
    start_day: int = 1,
    plan_type: str = "daily",
    duration: Optional[int] = None,
) -> Dict[str, Any]:
    """A plan document that passes validation for a 2000 kcal "maintain" profile."""
    return {
        "overview": {
            "dailyCalories": TARGET_CALORIES,
            "macros": dict(OVERVIEW_MACROS),
            "duration": duration if duration is not None else days,
            "type": plan_type,
        },
        "days": [
            {"day": start_day + offset, "meals": make_day_meals()} for offset in range(days)
        ],
        "groceryList": copy.deepcopy(GROCERY_LIST),
    }


def with_snack_calories(plan: Dict[str, Any], calories: float) -> Dict[str, Any]:
    """Change every day's snack calories (shifts the daily total)."""
    for day in plan["days"]:
        for snack in day["meals"]["snacks"]:
            snack["nutrition"]["calories"] = calories
    return plan


def plan_text(plan: Dict[str, Any], fenced: bool = False) -> str:
    text = json.dumps(plan, indent=2)
    return f"```json\n{text}\n```" if fenced else text
