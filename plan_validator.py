"""Rule engine checking a generated plan against the profile and targets.

``validate_plan`` works on the loosely-typed plan document (after structural
repair and grocery aggregation) and returns every violation it finds;
``pass`` is true iff none of them is critical. ``apply_leniency`` is the
final relaxed gate run once repairs are exhausted.
"""

import re
from dataclasses import dataclass, field
from typing import Any, List, Mapping, Optional, Sequence, Tuple

from ingredient_parser import extract_ingredient_name
from macro_calculator import calculate_daily_totals, nutrition_value
from observability import setup_structured_logger
from schemas import SAFETY_CODES, UserProfile, ValidationResult, Violation
from validation_config import (
    CORE_NAME_DESCRIPTORS_RE,
    COOKED_GROCERY_ITEMS,
    CULTURAL_ALTERNATIVES,
    CULTURAL_CONFLICTS,
    DEFAULT_LENIENCY,
    FORBIDDEN_UNIT_RE,
    GROCERY_MISCLASSIFICATIONS,
    KITCHEN_STAPLES,
    MACRO_TOLERANCE_PCT,
    MIN_INGREDIENTS,
    MIN_INSTRUCTIONS_CHARS,
    MIN_SHARED_WORD_LENGTH,
    DietaryRestriction,
    LeniencyPolicy,
    calorie_tolerance,
    get_goal_distribution_rules,
    match_restriction,
    restrictions_for_allergies,
    restrictions_for_diet,
    restrictions_for_religion,
)

logger = setup_structured_logger("mealplan.validator")

MEAL_SLOTS = ("breakfast", "lunch", "dinner")
DISTRIBUTION_CODES = {
    "breakfast": "BREAKFAST_DISTRIBUTION",
    "lunch": "LUNCH_DISTRIBUTION",
    "dinner": "DINNER_DISTRIBUTION",
}
MACRO_CODES = {
    "protein": "MACRO_MISMATCH_PROTEIN",
    "carbs": "MACRO_MISMATCH_CARBS",
    "fat": "MACRO_MISMATCH_FAT",
}


class _Collector:
    """Accumulates violations while walking a plan."""

    def __init__(self):
        self.violations: List[Violation] = []

    def add(
        self,
        code: str,
        message: str,
        field_path: str,
        severity: str = "critical",
        suggested_fix: Optional[str] = None,
        **details: Any,
    ) -> None:
        self.violations.append(
            Violation(
                severity=severity,
                code=code,
                message=message,
                field_path=field_path,
                suggested_fix=suggested_fix,
                details=details,
            )
        )


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _text(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


def _fmt(value: float) -> str:
    return f"{value:.0f}" if float(value).is_integer() else f"{value:.1f}"


# =============================================================================
# Per-meal rules
# =============================================================================


def _check_nutrition_fields(
    out: _Collector, meal: Mapping[str, Any], path: str, label: str, prefix: str
) -> None:
    nutrition = meal.get("nutrition")
    if not isinstance(nutrition, Mapping):
        out.add(f"MISSING_{prefix}NUTRITION", f"{label} is missing nutrition information", f"{path}.nutrition")
        return
    for nutrient in ("calories", "protein", "carbs", "fat"):
        if not _is_number(nutrition.get(nutrient)):
            out.add(
                f"MISSING_{prefix}{nutrient.upper()}",
                f"{label} is missing {nutrient}",
                f"{path}.nutrition.{nutrient}",
            )


def _check_units(
    out: _Collector, meal: Mapping[str, Any], path: str, label: str, code: str
) -> None:
    ingredients = meal.get("ingredients")
    if not isinstance(ingredients, list):
        return
    for index, ingredient in enumerate(ingredients):
        if isinstance(ingredient, str) and FORBIDDEN_UNIT_RE.search(ingredient):
            out.add(
                code,
                f'{label} ingredient "{ingredient}" uses tbsp/tsp for vegetables/solid foods. '
                "Use grams/cups/pieces instead",
                f"{path}.ingredients[{index}]",
                severity="warning",
                suggested_fix='Change to grams/cups/pieces (e.g., "150g bell peppers" instead of '
                '"8 tbsp chopped bell peppers")',
            )


def _validate_meal(out: _Collector, meal: Any, path: str, label: str) -> None:
    if not isinstance(meal, Mapping):
        out.add("INVALID_MEAL", f"{label} is not a meal object", path)
        return
    if not _text(meal.get("name")):
        out.add("MISSING_MEAL_NAME", f"{label} is missing name", f"{path}.name")
    ingredients = meal.get("ingredients")
    if not isinstance(ingredients, list) or len(ingredients) < MIN_INGREDIENTS:
        out.add(
            "INSUFFICIENT_INGREDIENTS",
            f"{label} must have at least {MIN_INGREDIENTS} ingredients",
            f"{path}.ingredients",
        )
    if len(_text(meal.get("instructions"))) < MIN_INSTRUCTIONS_CHARS:
        out.add(
            "INSUFFICIENT_INSTRUCTIONS",
            f"{label} instructions must be at least {MIN_INSTRUCTIONS_CHARS} characters",
            f"{path}.instructions",
        )
    _check_nutrition_fields(out, meal, path, label, prefix="")
    _check_units(out, meal, path, label, "FORBIDDEN_UNIT")


def _validate_snack(out: _Collector, snack: Any, path: str, label: str) -> None:
    if not isinstance(snack, Mapping):
        out.add("INVALID_MEAL", f"{label} is not a meal object", path)
        return
    name = _text(snack.get("name")) or "unnamed"
    label = f'{label} "{name}"'
    if not _text(snack.get("name")):
        out.add("MISSING_SNACK_NAME", f"{label} is missing name", f"{path}.name")
    ingredients = snack.get("ingredients")
    if not isinstance(ingredients, list) or not ingredients:
        out.add(
            "MISSING_SNACK_INGREDIENTS",
            f"{label} is missing ingredients",
            f"{path}.ingredients",
            suggested_fix='Add full ingredient list with quantities (e.g., ["1 medium apple (150g)", '
            '"1 tbsp almond butter (16g)"])',
        )
    if not _text(snack.get("instructions")):
        out.add(
            "MISSING_SNACK_INSTRUCTIONS",
            f"{label} is missing instructions",
            f"{path}.instructions",
            suggested_fix="Add preparation/assembly instructions (even if assembly-only)",
        )
    _check_nutrition_fields(out, snack, path, label, prefix="SNACK_")
    if not _text(snack.get("portionSize")):
        out.add(
            "MISSING_SNACK_PORTION",
            f"{label} is missing portion size",
            f"{path}.portionSize",
            suggested_fix='Add portion size (e.g., "1 medium apple (150g) + 2 tbsp almond butter (32g)")',
        )
    if not isinstance(snack.get("allergens"), list):
        out.add(
            "MISSING_SNACK_ALLERGENS",
            f"{label} is missing allergen information",
            f"{path}.allergens",
            severity="warning",
            suggested_fix='Add allergens array (e.g., ["tree nuts", "dairy"])',
        )
    _check_units(out, snack, path, label, "FORBIDDEN_UNIT_SNACK")


# =============================================================================
# Per-day numeric rules
# =============================================================================


def _check_day_numbers(
    out: _Collector,
    meals: Mapping[str, Any],
    overview: Mapping[str, Any],
    target_calories: float,
    plan_type: str,
    goal: Optional[str],
    day_label: str,
    day_path: str,
) -> None:
    totals = calculate_daily_totals(meals)
    daily_total = totals["calories"]

    tolerance = calorie_tolerance(plan_type)
    difference = abs(daily_total - target_calories)
    if difference > tolerance:
        out.add(
            "CALORIE_MISMATCH",
            f"{day_label} total calories ({_fmt(daily_total)}) does not match target "
            f"({_fmt(target_calories)}). Difference: {_fmt(difference)} kcal "
            f"(must be within ±{tolerance} kcal)",
            day_path,
            suggested_fix=f"Adjust meal portions to reach exactly {_fmt(target_calories)} kcal total",
            actual=daily_total,
            target=target_calories,
            difference=round(difference, 1),
        )

    macros = overview.get("macros") if isinstance(overview, Mapping) else None
    if isinstance(macros, Mapping):
        for nutrient, code in MACRO_CODES.items():
            target = macros.get(nutrient)
            if not _is_number(target) or target <= 0:
                continue
            diff = abs(totals[nutrient] - target)
            if diff > target * MACRO_TOLERANCE_PCT:
                out.add(
                    code,
                    f"{day_label} {nutrient} total ({_fmt(totals[nutrient])}g) does not match overview "
                    f"({_fmt(target)}g). Difference: {_fmt(diff)}g "
                    f"(must be within ±{MACRO_TOLERANCE_PCT:.0%})",
                    day_path,
                    suggested_fix=f"Adjust meal {nutrient} to match overview target of {_fmt(target)}g",
                    actual=totals[nutrient],
                    target=target,
                    difference=round(diff, 1),
                    difference_pct=round(diff / target, 4),
                )

    if daily_total <= 0:
        return

    rules = get_goal_distribution_rules(goal)
    for slot in MEAL_SLOTS:
        share = nutrition_value(meals.get(slot), "calories") / daily_total
        low, high = getattr(rules, slot)
        if share < low or share > high:
            out.add(
                DISTRIBUTION_CODES[slot],
                f"{day_label} {slot} is {share * 100:.1f}% of daily calories. "
                f"Should be {low * 100:.0f}-{high * 100:.0f}%",
                f"{day_path}.meals.{slot}",
                share=round(share, 4),
            )

    snacks = meals.get("snacks") if isinstance(meals.get("snacks"), list) else []
    snack_calories = sum(nutrition_value(s, "calories") for s in snacks)
    snack_share = snack_calories / daily_total
    low, high = rules.snacks
    if snack_share < low or snack_share > high:
        out.add(
            "SNACKS_DISTRIBUTION",
            f"{day_label} snacks are {snack_share * 100:.1f}% of daily calories. "
            f"Should be {low * 100:.0f}-{high * 100:.0f}%",
            f"{day_path}.meals.snacks",
            share=round(snack_share, 4),
        )
    for index, snack in enumerate(snacks):
        share = nutrition_value(snack, "calories") / daily_total
        if share > rules.max_single_snack:
            name = _text(snack.get("name")) if isinstance(snack, Mapping) else ""
            out.add(
                "SNACK_TOO_LARGE",
                f'{day_label} snack "{name or "unnamed"}" is {share * 100:.1f}% of daily calories. '
                f"Maximum allowed: {rules.max_single_snack * 100:.0f}%",
                f"{day_path}.meals.snacks[{index}]",
                suggested_fix="Reduce snack portion size or split into multiple smaller snacks",
                share=round(share, 4),
            )


# =============================================================================
# Safety rules (allergens, religious compliance) and diet
# =============================================================================

_RESTRICTION_CODES = {
    "allergen": "ALLERGEN_VIOLATION",
    "religious": "RELIGIOUS_VIOLATION",
    "diet": "DIET_VIOLATION",
}


def profile_restrictions(profile: Optional[UserProfile]) -> List[DietaryRestriction]:
    if profile is None:
        return []
    return (
        restrictions_for_allergies(profile.allergies)
        + restrictions_for_religion(profile.religious)
        + restrictions_for_diet(profile.diet)
    )


def _check_restrictions(
    out: _Collector,
    meal: Any,
    path: str,
    label: str,
    restrictions: Sequence[DietaryRestriction],
) -> None:
    if not isinstance(meal, Mapping) or not restrictions:
        return
    texts: List[Tuple[str, str]] = []
    if _text(meal.get("name")):
        texts.append((f"{path}.name", meal["name"]))
    ingredients = meal.get("ingredients")
    if isinstance(ingredients, list):
        texts.extend(
            (f"{path}.ingredients[{i}]", item)
            for i, item in enumerate(ingredients)
            if isinstance(item, str)
        )

    for restriction in restrictions:
        for field_path, text in texts:
            keyword = match_restriction(text, restriction)
            if keyword is None:
                continue
            code = _RESTRICTION_CODES.get(restriction.kind, "DIET_VIOLATION")
            out.add(
                code,
                f'{label} contains "{text}", which violates the {restriction.name} '
                f"{restriction.kind} restriction",
                field_path,
                severity=restriction.severity,
                suggested_fix=f'Replace "{text}" with an ingredient free of {keyword}',
                restriction=restriction.name,
                keyword=keyword,
            )
            break  # one violation per restriction per meal


# =============================================================================
# Grocery list rules
# =============================================================================


def core_name(name: str) -> str:
    return re.sub(r"\s+", " ", CORE_NAME_DESCRIPTORS_RE.sub(" ", name.lower())).strip()


def names_match(ingredient: str, grocery_item: str) -> bool:
    """Fuzzy match: substring either way, or a shared word longer than 3 chars."""
    if ingredient == grocery_item or ingredient in grocery_item or grocery_item in ingredient:
        return True
    core_ing = core_name(ingredient)
    core_grocery = core_name(grocery_item)
    if len(core_ing) <= 2 or len(core_grocery) <= 2:
        return False
    if core_ing in core_grocery or core_grocery in core_ing:
        return True
    ing_words = {w for w in core_ing.split() if len(w) >= MIN_SHARED_WORD_LENGTH}
    grocery_words = {w for w in core_grocery.split() if len(w) >= MIN_SHARED_WORD_LENGTH}
    return bool(ing_words & grocery_words)


def _grocery_entries(grocery: Mapping[str, Any]) -> List[Tuple[str, str]]:
    entries = []
    for category, items in grocery.items():
        if isinstance(items, list):
            entries.extend((str(category), item) for item in items if isinstance(item, str))
    return entries


def _check_grocery_list(out: _Collector, plan: Mapping[str, Any], ingredient_names: List[str]) -> None:
    grocery = plan.get("groceryList")
    if not isinstance(grocery, Mapping) or not _grocery_entries(grocery):
        out.add(
            "MISSING_GROCERY_LIST",
            "Meal plan is missing grocery list",
            "groceryList",
        )
        return

    entries = _grocery_entries(grocery)
    grocery_names = [n for n in (extract_ingredient_name(item) for _, item in entries) if n]

    for name in ingredient_names:
        if name in KITCHEN_STAPLES:
            continue
        if not any(names_match(name, item) for item in grocery_names):
            out.add(
                "MISSING_GROCERY_ITEM",
                f'Ingredient "{name}" is used in meals but missing from grocery list',
                "groceryList",
                suggested_fix=f'Add "{name}" to appropriate grocery list category',
                ingredient=name,
            )

    for category, item in entries:
        item_lower = item.lower()
        for keyword, (wrong, correct) in GROCERY_MISCLASSIFICATIONS.items():
            if category.lower() == wrong and re.search(rf"\b{re.escape(keyword)}\b", item_lower):
                out.add(
                    "GROCERY_MISCLASSIFICATION",
                    f'"{item}" is incorrectly classified in "{category}". Should be in "{correct}"',
                    f"groceryList.{category}",
                    suggested_fix=f'Move "{item}" to {correct} category',
                )
                break
        for grain in COOKED_GROCERY_ITEMS:
            if re.search(rf"\bcooked {grain}\b", item_lower) and "dry" not in item_lower:
                out.add(
                    "COOKED_WITHOUT_DRY",
                    f'"{item}" lists cooked quantity without dry equivalent. '
                    "Grocery lists should show dry quantities for shopping.",
                    f"groceryList.{category}",
                    suggested_fix=f'Convert to dry equivalent (e.g., "1 cup cooked {grain}" -> '
                    f'"~1/2 cup dry {grain}")',
                )

    seen = set()
    for _, item in entries:
        name = extract_ingredient_name(item)
        if name and name in seen:
            out.add(
                "GROCERY_DUPLICATE",
                f'"{item}" appears multiple times in grocery list. Consolidate quantities.',
                "groceryList",
                severity="warning",
                suggested_fix="Sum quantities and list once",
            )
        if name:
            seen.add(name)


def _check_cultural(out: _Collector, meal_names: List[str], profile: Optional[UserProfile]) -> None:
    if profile is None:
        return
    preference = f"{profile.cultural_background} {profile.cuisine_preference}".lower()
    joined = " ".join(meal_names).lower()
    for culture, terms in CULTURAL_CONFLICTS.items():
        if culture not in preference:
            continue
        found = [term for term in terms if term in joined]
        if found:
            out.add(
                "CULTURAL_AUTHENTICITY",
                f"Meal plan contains {', '.join(found)}, which may not be culturally appropriate "
                f"for a {culture} cuisine preference",
                "days",
                severity="warning",
                suggested_fix=f"Prefer {CULTURAL_ALTERNATIVES.get(culture, 'traditional alternatives')}",
                terms=found,
            )


# =============================================================================
# Entry point
# =============================================================================


def validate_plan(
    plan: Mapping[str, Any],
    profile: Optional[UserProfile],
    target_calories: float,
    plan_type: str = "daily",
) -> ValidationResult:
    """Validate a plan document.

    Args:
        plan: Structurally repaired plan dict (overview, days, groceryList)
        profile: User profile (allergies, religion, diet, goal, culture)
        target_calories: Daily calorie target
        plan_type: daily / weekly / monthly (selects calorie tolerance)

    Returns:
        ValidationResult; ``passed`` is True iff there is no critical violation
    """
    out = _Collector()
    days = plan.get("days") if isinstance(plan, Mapping) else None
    if not isinstance(days, list) or not days:
        out.add("MISSING_DAYS", "Meal plan must have at least one day", "days")
        return ValidationResult(passed=False, violations=out.violations)

    overview = plan.get("overview") if isinstance(plan.get("overview"), Mapping) else {}
    expected = overview.get("duration")
    if _is_number(expected) and int(expected) != len(days):
        out.add(
            "DURATION_MISMATCH",
            f"Plan has {len(days)} days but overview.duration is {expected}",
            "days",
            expected=expected,
            actual=len(days),
        )

    goal = profile.goal if profile is not None else None
    restrictions = profile_restrictions(profile)
    ingredient_names: List[str] = []
    meal_names: List[str] = []
    first_day = days[0].get("day") if isinstance(days[0], Mapping) else None
    first_index = int(first_day) if _is_number(first_day) else 1

    for index, day in enumerate(days):
        day_path = f"days[{index}]"
        if not isinstance(day, Mapping):
            out.add("MISSING_MEALS", f"Day {index + 1} is not an object", day_path)
            continue
        day_number = day.get("day") if _is_number(day.get("day")) else index + 1
        day_label = f"Day {_fmt(day_number)}"
        if day_number != first_index + index:
            out.add(
                "DAY_INDEX_MISMATCH",
                f"Day at position {index + 1} is numbered {day_number}, expected {first_index + index}",
                f"{day_path}.day",
                expected=first_index + index,
                actual=day_number,
            )

        meals = day.get("meals")
        if not isinstance(meals, Mapping):
            out.add("MISSING_MEALS", f"{day_label} is missing meals", f"{day_path}.meals")
            continue

        for slot in MEAL_SLOTS:
            slot_path = f"{day_path}.meals.{slot}"
            if not meals.get(slot):
                out.add(f"MISSING_{slot.upper()}", f"{day_label} is missing {slot}", slot_path)
                continue
            meal = meals[slot]
            _validate_meal(out, meal, slot_path, f"{day_label} {slot}")
            _check_restrictions(out, meal, slot_path, f"{day_label} {slot}", restrictions)

        snacks = meals.get("snacks") if isinstance(meals.get("snacks"), list) else []
        for snack_index, snack in enumerate(snacks):
            snack_path = f"{day_path}.meals.snacks[{snack_index}]"
            _validate_snack(out, snack, snack_path, f"{day_label} snack {snack_index + 1}")
            _check_restrictions(out, snack, snack_path, f"{day_label} snack", restrictions)

        _check_day_numbers(
            out, meals, overview, target_calories, plan_type, goal, day_label, day_path
        )

        for meal in [meals.get(slot) for slot in MEAL_SLOTS] + list(snacks):
            if not isinstance(meal, Mapping):
                continue
            if _text(meal.get("name")):
                meal_names.append(meal["name"])
            for ingredient in meal.get("ingredients") or []:
                name = extract_ingredient_name(ingredient) if isinstance(ingredient, str) else ""
                if len(name) >= 2 and name not in ingredient_names:
                    ingredient_names.append(name)

    _check_grocery_list(out, plan, ingredient_names)
    _check_cultural(out, meal_names, profile)

    result = ValidationResult(
        passed=not any(v.is_critical for v in out.violations),
        violations=out.violations,
    )
    logger.info(
        "Plan validated",
        extra={
            "extra_fields": {
                "passed": result.passed,
                "days": len(days),
                "critical": len(result.critical),
                "warnings": len(result.warnings),
                "safety": len(result.safety),
            }
        },
    )
    return result


# =============================================================================
# Leniency gate
# =============================================================================


@dataclass
class LeniencyOutcome:
    """Split of residual critical violations after the leniency gate."""

    blocking: List[Violation] = field(default_factory=list)
    accepted: List[Violation] = field(default_factory=list)

    @property
    def passed(self) -> bool:
        return not self.blocking

    @property
    def safety_blocking(self) -> List[Violation]:
        return [v for v in self.blocking if v.is_safety]


def is_lenient(violation: Violation, policy: LeniencyPolicy = DEFAULT_LENIENCY) -> bool:
    """Whether a critical violation falls inside the wider acceptance band."""
    if violation.code in SAFETY_CODES:
        return False
    if violation.code in policy.non_blocking_codes:
        return True

    details = violation.details
    if violation.code == "CALORIE_MISMATCH":
        return details.get("difference", float("inf")) <= policy.calorie_kcal
    if violation.code in MACRO_CODES.values():
        return details.get("difference_pct", float("inf")) <= policy.macro_pct
    if violation.code in DISTRIBUTION_CODES.values():
        share = details.get("share")
        return share is not None and policy.meal_share_min <= share <= policy.meal_share_max
    if violation.code == "SNACKS_DISTRIBUTION":
        share = details.get("share")
        return share is not None and share <= policy.snack_share_max
    if violation.code == "SNACK_TOO_LARGE":
        share = details.get("share")
        return share is not None and share <= policy.single_snack_max
    return False


def apply_leniency(
    violations: Sequence[Violation], policy: LeniencyPolicy = DEFAULT_LENIENCY
) -> LeniencyOutcome:
    """Downgrade residual critical violations within the leniency bands.

    Warnings are ignored; safety-class violations always block.
    """
    outcome = LeniencyOutcome()
    for violation in violations:
        if not violation.is_critical:
            continue
        if is_lenient(violation, policy):
            outcome.accepted.append(violation)
        else:
            outcome.blocking.append(violation)
    return outcome
