"""
Calorie and macro targets computed in Python rather than by the model.

- Daily calorie target from the profile (Mifflin-St Jeor BMR, activity
  multiplier, goal adjustment)
- Goal-based macro split in grams for the plan overview
- Per-day nutrition totals summed from generated meals
"""

from typing import Any, Dict, Iterable, Mapping, Optional

# Activity multipliers applied to BMR
ACTIVITY_MULTIPLIERS = {
    "sedentary": 1.2,
    "light": 1.375,
    "moderate": 1.55,
    "active": 1.725,
    "athlete": 1.9,
}
DEFAULT_ACTIVITY_MULTIPLIER = 1.55

# Goal adjustment on TDEE
GOAL_CALORIE_FACTORS = {
    "lose_weight": 0.85,  # 15% deficit
    "build_muscle": 1.15,  # 15% surplus
}

# Used when age/height/weight are missing
DEFAULT_CALORIES_BY_GOAL = {
    "lose_weight": 1500,
    "build_muscle": 2500,
}
DEFAULT_CALORIES = 2000

# Share of calories from protein / carbs / fat
MACRO_SPLITS = {
    "lose_weight": (0.30, 0.40, 0.30),
    "build_muscle": (0.30, 0.45, 0.25),
    "weight_gain": (0.25, 0.50, 0.25),
}
DEFAULT_MACRO_SPLIT = (0.25, 0.45, 0.30)

KCAL_PER_GRAM = {"protein": 4, "carbs": 4, "fat": 9}

NUTRITION_FIELDS = ("calories", "protein", "carbs", "fat")


def _profile_value(profile: Any, name: str) -> Any:
    if isinstance(profile, Mapping):
        return profile.get(name)
    return getattr(profile, name, None)


def calculate_daily_calories(profile: Any) -> int:
    """Estimate daily calorie needs for a profile.

    Args:
        profile: UserProfile (or a dict with the same snake_case keys)

    Returns:
        Rounded daily calorie target
    """
    goal = (_profile_value(profile, "goal") or "").lower()
    age = _profile_value(profile, "age")
    height = _profile_value(profile, "height")
    weight = _profile_value(profile, "current_weight")

    if not age or not height or not weight:
        return DEFAULT_CALORIES_BY_GOAL.get(goal, DEFAULT_CALORIES)

    is_male = (_profile_value(profile, "gender") or "").lower() == "male"
    bmr = (10 * weight) + (6.25 * height) - (5 * age)
    bmr += 5 if is_male else -161

    activity = (_profile_value(profile, "activity") or "").lower()
    tdee = bmr * ACTIVITY_MULTIPLIERS.get(activity, DEFAULT_ACTIVITY_MULTIPLIER)

    return round(tdee * GOAL_CALORIE_FACTORS.get(goal, 1.0))


def calculate_macro_targets(calories: float, goal: Optional[str] = None) -> Dict[str, int]:
    """Split a calorie target into protein/carbs/fat grams for the goal."""
    protein_pct, carbs_pct, fat_pct = MACRO_SPLITS.get((goal or "").lower(), DEFAULT_MACRO_SPLIT)
    return {
        "protein": round(calories * protein_pct / KCAL_PER_GRAM["protein"]),
        "carbs": round(calories * carbs_pct / KCAL_PER_GRAM["carbs"]),
        "fat": round(calories * fat_pct / KCAL_PER_GRAM["fat"]),
    }


def nutrition_value(meal: Any, field: str) -> float:
    """Numeric nutrition value of a loosely-typed meal dict (0 when missing)."""
    if not isinstance(meal, Mapping):
        return 0.0
    nutrition = meal.get("nutrition")
    if not isinstance(nutrition, Mapping):
        return 0.0
    value = nutrition.get(field)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0.0
    return float(value)


def iter_day_meals(day_meals: Any) -> Iterable[Any]:
    """Yield breakfast, lunch, dinner and every snack of a day's meals dict."""
    if not isinstance(day_meals, Mapping):
        return
    for key in ("breakfast", "lunch", "dinner"):
        if day_meals.get(key) is not None:
            yield day_meals[key]
    snacks = day_meals.get("snacks")
    if isinstance(snacks, list):
        for snack in snacks:
            if snack is not None:
                yield snack


def calculate_daily_totals(day_meals: Any) -> Dict[str, float]:
    """Sum calories/protein/carbs/fat across a day's meals and snacks.

    Args:
        day_meals: The "meals" mapping of one day

    Returns:
        Dict with calories, protein, carbs, fat totals (rounded to 0.1)
    """
    totals = {field: 0.0 for field in NUTRITION_FIELDS}
    for meal in iter_day_meals(day_meals):
        for field in NUTRITION_FIELDS:
            totals[field] += nutrition_value(meal, field)
    return {field: round(value, 1) for field, value in totals.items()}
