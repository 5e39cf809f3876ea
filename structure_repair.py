"""Structural repair for loosely-typed generated plan JSON.

Models return the right shape most of the time, but not always: numbers as
strings ("350 kcal"), ingredient lists as one newline-separated string,
snacks as a single object, the plan wrapped in an envelope key, missing
overview or grocery list. These helpers coerce the document into the shape
the aggregator and validator expect. They never invent meal content; a
field that cannot be coerced is left absent so validation reports it.
"""

import copy
import re
import sys
from typing import Any, Dict, List, Mapping, Optional

from macro_calculator import calculate_macro_targets

MEAL_SLOTS = ("breakfast", "lunch", "dinner")
NUTRITION_FIELDS = ("calories", "protein", "carbs", "fat", "fiber", "sodium")
ENVELOPE_KEYS = ("mealPlan", "meal_plan", "plan", "data", "result")

_NUMBER_RE = re.compile(r"-?\d+(?:[.,]\d+)?")

# snake_case / alternate spellings seen in model output -> canonical key
_KEY_ALIASES = {
    "portion_size": "portionSize",
    "portion": "portionSize",
    "serving_size": "portionSize",
    "grocery_list": "groceryList",
    "shopping_list": "groceryList",
    "shoppingList": "groceryList",
    "daily_calories": "dailyCalories",
    "calories_per_day": "dailyCalories",
}


def ensure_list(value: Any, split_text: bool = False) -> List[Any]:
    """Coerce a value into a list.

    Args:
        value: None, list, tuple, dict or scalar
        split_text: Split strings on newlines / semicolons / bullets

    Returns:
        A new list (never the original object)
    """
    if value is None:
        return []
    if isinstance(value, list):
        return list(value)
    if isinstance(value, tuple):
        return list(value)
    if isinstance(value, str):
        if not split_text:
            return [value] if value.strip() else []
        parts = re.split(r"[\n;]+|\s+•\s+", value)
        return [re.sub(r"^\s*(?:[-*•]|\d+[.)])\s*", "", p).strip() for p in parts if p.strip()]
    if isinstance(value, Mapping):
        return list(value.values())
    return [value]


def coerce_number(value: Any) -> Optional[float]:
    """Turn 350, "350", "350 kcal" or "1,200" into a float; None otherwise."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        text = value.strip().replace(",", "") if re.search(r"\d,\d{3}", value) else value.strip()
        match = _NUMBER_RE.search(text)
        if match:
            return float(match.group(0).replace(",", "."))
    return None


def _canonical_keys(data: Dict[str, Any]) -> Dict[str, Any]:
    for alias, canonical in _KEY_ALIASES.items():
        if alias in data and canonical not in data:
            data[canonical] = data.pop(alias)
    return data


def repair_nutrition(nutrition: Any) -> Any:
    """Coerce numeric nutrition fields in place; non-dicts are returned untouched."""
    if not isinstance(nutrition, dict):
        return nutrition
    for field in NUTRITION_FIELDS:
        if field in nutrition:
            number = coerce_number(nutrition[field])
            if number is None:
                nutrition.pop(field)
            else:
                nutrition[field] = int(number) if number == int(number) else round(number, 1)
    return nutrition


def repair_meal(meal: Any) -> Any:
    """Normalize a single meal/snack dict."""
    if not isinstance(meal, dict):
        return meal
    _canonical_keys(meal)

    if isinstance(meal.get("name"), str):
        meal["name"] = meal["name"].strip()

    if "ingredients" in meal:
        meal["ingredients"] = [
            str(item).strip()
            for item in ensure_list(meal["ingredients"], split_text=True)
            if item is not None and str(item).strip()
        ]

    instructions = meal.get("instructions")
    if isinstance(instructions, list):
        meal["instructions"] = " ".join(str(step).strip() for step in instructions if step)

    if "nutrition" not in meal and any(f in meal for f in ("calories", "protein")):
        meal["nutrition"] = {f: meal.pop(f) for f in NUTRITION_FIELDS if f in meal}
    repair_nutrition(meal.get("nutrition"))

    if "allergens" in meal:
        meal["allergens"] = [str(a) for a in ensure_list(meal["allergens"]) if a]
    if "swaps" in meal:
        meal["swaps"] = ensure_list(meal["swaps"])
    if meal.get("portionSize") is not None and not isinstance(meal["portionSize"], str):
        meal["portionSize"] = str(meal["portionSize"])
    return meal


def repair_day_meals(meals: Any) -> Any:
    """Normalize a day's meals mapping (slots + snacks list)."""
    if isinstance(meals, list):
        # [{"type": "breakfast", ...}, ...] -> mapping
        by_slot: Dict[str, Any] = {"snacks": []}
        for meal in meals:
            if not isinstance(meal, dict):
                continue
            slot = str(meal.get("type") or meal.get("meal_type") or "").lower()
            if slot in MEAL_SLOTS:
                by_slot[slot] = meal
            else:
                by_slot["snacks"].append(meal)
        meals = by_slot
    if not isinstance(meals, dict):
        return meals

    for slot in MEAL_SLOTS:
        if slot in meals:
            meals[slot] = repair_meal(meals[slot])

    snacks = meals.pop("snack", None) if "snacks" not in meals else meals.get("snacks")
    if isinstance(snacks, dict):
        snacks = [snacks]
    meals["snacks"] = [repair_meal(s) for s in ensure_list(snacks) if isinstance(s, dict)]
    return meals


def _unwrap_envelope(data: Dict[str, Any]) -> Dict[str, Any]:
    if "days" in data:
        return data
    for key in ENVELOPE_KEYS:
        inner = data.get(key)
        if isinstance(inner, dict) and "days" in inner:
            return inner
    return data


def repair_plan_structure(
    data: Any,
    plan_type: str = "daily",
    duration: Optional[int] = None,
    target_calories: Optional[int] = None,
    goal: Optional[str] = None,
) -> Dict[str, Any]:
    """Return a structurally repaired deep copy of a generated plan.

    Args:
        data: Parsed model output
        plan_type: daily / weekly / monthly (used for overview defaults)
        duration: Expected number of days (overview default)
        target_calories: Calorie target (overview default)
        goal: Profile goal, used for the default macro split

    Returns:
        Dict with overview, days and groceryList keys present
    """
    if not isinstance(data, dict):
        data = {"days": data} if isinstance(data, list) else {}
    plan = _canonical_keys(copy.deepcopy(_unwrap_envelope(data)))
    corrections: List[str] = []

    days = plan.get("days")
    if isinstance(days, dict):
        days = [days[key] for key in sorted(days, key=lambda k: coerce_number(k) or 0)]
        corrections.append("days: mapping converted to list")
    if not isinstance(days, list):
        days = []
        corrections.append("days: replaced with empty list")
    plan["days"] = [day for day in days if isinstance(day, dict)]

    for position, day in enumerate(plan["days"], start=1):
        index = coerce_number(day.get("day"))
        if index is None:
            day["day"] = position
            corrections.append(f"days[{position - 1}].day: set to {position}")
        else:
            day["day"] = int(index)
        day["meals"] = repair_day_meals(day.get("meals"))

    overview = plan.get("overview")
    if not isinstance(overview, dict):
        calories = target_calories or 2000
        overview = {
            "dailyCalories": calories,
            "macros": calculate_macro_targets(calories, goal),
            "duration": duration or len(plan["days"]) or 1,
            "type": plan_type,
        }
        corrections.append("overview: created default")
    _canonical_keys(overview)
    for field in ("dailyCalories", "duration"):
        number = coerce_number(overview.get(field))
        if number is not None:
            overview[field] = int(round(number))
    if not isinstance(overview.get("macros"), dict):
        overview["macros"] = calculate_macro_targets(
            overview.get("dailyCalories") or target_calories or 2000, goal
        )
        corrections.append("overview.macros: created default")
    repair_nutrition(overview["macros"])
    overview.setdefault("type", plan_type)
    overview.setdefault("duration", duration or len(plan["days"]))
    plan["overview"] = overview

    grocery = plan.get("groceryList")
    if isinstance(grocery, list):
        plan["groceryList"] = {"pantry": [str(item) for item in grocery]}
        corrections.append("groceryList: list wrapped into pantry")
    elif not isinstance(grocery, dict):
        plan["groceryList"] = {}
        corrections.append("groceryList: created empty")

    for correction in corrections:
        print(f"   🔧 Structure repair: {correction}", file=sys.stderr)

    return plan
