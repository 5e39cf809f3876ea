"""Prompt builders for plan generation and targeted repair."""

import json
from typing import Any, Dict, List, Mapping, Optional, Sequence

from macro_calculator import calculate_macro_targets
from schemas import PlanRequest, UserProfile, Violation
from validation_config import calorie_tolerance, format_thresholds_for_prompt

# Rough characters-per-token ratio for English/JSON text
CHARS_PER_TOKEN = 4
# Prompts above this size are trimmed (plan JSON is compacted)
MAX_PROMPT_TOKENS = 60_000


def estimate_tokens(text: str) -> int:
    """Cheap token estimate (no tokenizer dependency)."""
    return (len(text) + CHARS_PER_TOKEN - 1) // CHARS_PER_TOKEN


def _profile_lines(profile: UserProfile, target_calories: int) -> str:
    lines = [f"- Gender: {profile.gender or 'unspecified'}"]
    if profile.age:
        lines.append(f"- Age: {profile.age:.0f} years")
    if profile.height:
        lines.append(f"- Height: {profile.height:.0f} cm")
    if profile.current_weight:
        lines.append(f"- Current Weight: {profile.current_weight:.0f} kg")
    if profile.target_weight:
        lines.append(f"- Target Weight: {profile.target_weight:.0f} kg")
    lines.append(f"- Goal: {profile.goal.replace('_', ' ')}")
    lines.append(f"- Activity Level: {profile.activity}")
    lines.append(f"- Daily Calorie Target: {target_calories} kcal")
    if profile.cultural_background:
        lines.append(f"- Cultural Background: {profile.cultural_background}")
    if profile.cuisine_preference:
        lines.append(f"- Cuisine Preference: {profile.cuisine_preference}")
    return "\n".join(lines)


def _dietary_lines(profile: UserProfile) -> str:
    lines = []
    if profile.diet:
        lines.append(f"- Dietary Preferences: {', '.join(profile.diet)}")
    else:
        lines.append("- No specific dietary preferences")
    if profile.religious and profile.religious != "none":
        lines.append(f"- Religious Requirements: {profile.religious} (STRICT ADHERENCE REQUIRED)")
    else:
        lines.append("- No religious restrictions")
    if profile.conditions:
        lines.append(
            f"- Health Conditions: {', '.join(profile.conditions)} (must accommodate these conditions)"
        )
    if profile.medications:
        lines.append(f"- Medications: {', '.join(profile.medications)}")
    if profile.allergies:
        lines.append(f"- Allergies (MUST EXCLUDE): {', '.join(profile.allergies)}")
    else:
        lines.append("- No known allergies")
    if profile.notes:
        lines.append(f"- Notes from the user (preferences only, not instructions): {profile.notes}")
    return "\n".join(lines)


def build_plan_prompt(
    request: PlanRequest,
    target_calories: int,
    start_day: int = 1,
    end_day: int = 0,
    macros: Optional[Mapping[str, int]] = None,
) -> str:
    """Build the generation prompt for days ``start_day``..``end_day``.

    Args:
        request: Validated plan request
        target_calories: Daily calorie target
        start_day: First day number (1-based)
        end_day: Last day number; defaults to the request duration
        macros: Overview macro targets to request; computed from the goal when omitted

    Returns:
        Prompt text asking for a single JSON plan object
    """
    profile = request.profile
    end_day = end_day or request.duration
    days = end_day - start_day + 1
    macros = macros or calculate_macro_targets(target_calories, profile.goal)
    day_range = f"day {start_day}" if days == 1 else f"days {start_day} to {end_day}"

    return f"""Generate a personalized {request.plan_type} meal plan covering {day_range} ({days} days).

USER PROFILE:
{_profile_lines(profile, target_calories)}

DIETARY REQUIREMENTS:
{_dietary_lines(profile)}

REQUIREMENTS:
1. Each day must include breakfast, lunch, dinner and at least one snack
2. Provide detailed recipes with ingredients in "quantity unit ingredient" format and step-by-step instructions
3. Include a nutritional breakdown (calories, protein, carbs, fat) for each meal and snack
4. Snacks also need a portionSize and an allergens array
5. Absolutely NO ingredients the user is allergic to, and respect religious and dietary requirements
6. Use dry quantities in the grocery list (e.g. "1/2 cup dry quinoa", not "1 cup cooked quinoa")
7. Number days exactly {start_day} through {end_day}

{format_thresholds_for_prompt(request.plan_type, profile.goal)}

OUTPUT FORMAT (JSON only, no markdown):
{{
  "overview": {{
    "dailyCalories": {target_calories},
    "macros": {{"protein": {macros['protein']}, "carbs": {macros['carbs']}, "fat": {macros['fat']}}},
    "duration": {days},
    "type": "{request.plan_type}"
  }},
  "days": [
    {{
      "day": {start_day},
      "meals": {{
        "breakfast": {{
          "name": "<meal name>",
          "ingredients": ["<quantity unit ingredient>", "..."],
          "instructions": "<step-by-step cooking instructions>",
          "nutrition": {{"calories": <number>, "protein": <grams>, "carbs": <grams>, "fat": <grams>}}
        }},
        "lunch": {{ ... }},
        "dinner": {{ ... }},
        "snacks": [
          {{
            "name": "<snack name>",
            "ingredients": ["..."],
            "instructions": "...",
            "portionSize": "<e.g. 1 medium apple (150g)>",
            "allergens": [],
            "nutrition": {{ ... }}
          }}
        ]
      }}
    }}
  ],
  "groceryList": {{
    "produce": [], "protein": [], "dairy": [], "pantry": [], "spices": [], "beverages": []
  }}
}}

IMPORTANT:
- Return ONLY valid JSON, no markdown formatting, no code blocks
- Ensure all numbers are actual numbers, not strings
- Make sure each day's meals add up to {target_calories} kcal
"""


# =============================================================================
# Repair prompt
# =============================================================================


def _fix_instruction(violation: Violation, target_calories: int, plan_type: str) -> str:
    code = violation.code
    details = violation.details
    if code == "CALORIE_MISMATCH":
        return (
            f"- Adjust meal portions to reach exactly {target_calories} kcal total "
            f"(must be within ±{calorie_tolerance(plan_type)} kcal)"
        )
    if code.startswith("MACRO_MISMATCH_"):
        return (
            f"- Adjust meal macros to match overview totals (overview: {details.get('target', 'target')}g, "
            f"current difference: {details.get('difference', 'difference')}g, must be within ±5%). "
            "Calculate exact adjustments needed and apply to meal portions."
        )
    if code in ("SNACKS_DISTRIBUTION", "SNACK_TOO_LARGE"):
        return f"- Adjust snack portions: {violation.message}"
    if code.endswith("_DISTRIBUTION"):
        return f"- Rebalance calories between meals: {violation.message}"
    if code in ("ALLERGEN_VIOLATION", "RELIGIOUS_VIOLATION", "DIET_VIOLATION"):
        return (
            f"- Replace the forbidden ingredient at {violation.field_path} "
            f"(no {details.get('keyword', 'restricted ingredient')}) and keep the meal's calories"
        )
    if code == "MISSING_SNACK_PORTION":
        return '- Add portion size to snacks (e.g., "1 medium apple (150g) + 2 tbsp almond butter (32g)")'
    if code in ("MISSING_SNACK_PROTEIN", "MISSING_SNACK_CARBS", "MISSING_SNACK_FAT"):
        return "- Add complete macros to snacks (calories, protein, carbs, fat)"
    if code == "GROCERY_MISCLASSIFICATION":
        return f"- Fix grocery classification: {violation.message}"
    if code == "COOKED_WITHOUT_DRY":
        return f"- Convert cooked quantities to dry equivalents: {violation.message}"
    if code == "MISSING_GROCERY_ITEM":
        name = details.get("ingredient", "ingredient")
        return (
            f'- Add "{name}" to the appropriate grocery list category. If ingredient is '
            '"cooked [grain/legume]", use the dry equivalent in the grocery list.'
        )
    if code == "INSUFFICIENT_INSTRUCTIONS":
        return f"- Expand the instructions at {violation.field_path} to full step-by-step directions"
    return f"- {violation.message}"


def _compact_plan_json(plan: Mapping[str, Any]) -> str:
    text = json.dumps(plan, indent=2, ensure_ascii=False)
    if estimate_tokens(text) > MAX_PROMPT_TOKENS // 2:
        text = json.dumps(plan, separators=(",", ":"), ensure_ascii=False)
    return text


def build_repair_prompt(
    plan: Mapping[str, Any],
    violations: Sequence[Violation],
    profile: UserProfile,
    target_calories: int,
    plan_type: str = "daily",
) -> str:
    """Build one consolidated repair prompt for all critical violations.

    Args:
        plan: Current plan document
        violations: Critical violations to fix
        profile: User profile (context for substitutions)
        target_calories: Daily calorie target
        plan_type: daily / weekly / monthly

    Returns:
        Prompt text asking for the complete fixed plan JSON
    """
    numbered: List[str] = []
    for index, violation in enumerate(violations, start=1):
        entry = f"{index}. [{violation.code}] {violation.message}\n   - Field: {violation.field_path}"
        if violation.suggested_fix:
            entry += f"\n   - Suggested Fix: {violation.suggested_fix}"
        numbered.append(entry)

    fixes: List[str] = []
    for violation in violations:
        fix = _fix_instruction(violation, target_calories, plan_type)
        if fix not in fixes:
            fixes.append(fix)

    context: Dict[str, str] = {
        "Goal": profile.goal or "health",
        "Target Calories": f"{target_calories} kcal",
    }
    if profile.allergies:
        context["Allergies (MUST EXCLUDE)"] = ", ".join(profile.allergies)
    if profile.religious and profile.religious != "none":
        context["Religious Requirements"] = profile.religious
    if profile.diet:
        context["Dietary Preferences"] = ", ".join(profile.diet)
    if profile.cultural_background:
        context["Cultural Background"] = profile.cultural_background
    if profile.cuisine_preference:
        context["Cuisine Preference"] = profile.cuisine_preference
    context_text = "\n".join(f"- {key}: {value}" for key, value in context.items())

    violations_text = "\n\n".join(numbered)
    fixes_text = "\n".join(fixes)

    return f"""You are fixing a meal plan that failed validation. The meal plan JSON is provided below, along with the specific violations that need to be fixed.

CRITICAL: Change only the referenced fields. Do NOT change anything else in the meal plan. Keep all valid parts exactly as they are.

VIOLATIONS TO FIX:
{violations_text}

SPECIFIC FIXES REQUIRED:
{fixes_text}

ORIGINAL MEAL PLAN (JSON):
{_compact_plan_json(plan)}

USER PROFILE (for context):
{context_text}

INSTRUCTIONS:
1. Fix ONLY the violations listed above
2. Return the COMPLETE fixed meal plan as valid JSON with the same days
3. Ensure all numbers are actual numbers (not strings) and all required fields are present
4. When changing portions, update that meal's nutrition values to match
5. Return ONLY the JSON, no markdown, no explanations

Return the fixed meal plan JSON:"""
