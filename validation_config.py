"""Centralized validation thresholds and rule tables.

Single source of truth for the values used by:
- plan_validator.py (strict rules)
- plan_validator.apply_leniency (final relaxed gate)
- prompts.py (thresholds quoted to the model)

Strict tolerances mirror what the prompt asks for. The leniency policy is a
pragmatic acceptance band for generated output and is configurable through
the environment (MEALPLAN_LENIENCY_* variables).
"""

import os
import re
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple

# =============================================================================
# Strict tolerances
# =============================================================================

DAILY_CALORIE_TOLERANCE = 25  # kcal, single-day plans
DEFAULT_CALORIE_TOLERANCE = 50  # kcal, weekly / monthly plans
MACRO_TOLERANCE_PCT = 0.05  # +/- 5% of overview.macros

MIN_INGREDIENTS = 3
MIN_INSTRUCTIONS_CHARS = 50


def calorie_tolerance(plan_type: str) -> int:
    """Per-day calorie tolerance for a plan type."""
    return DAILY_CALORIE_TOLERANCE if plan_type == "daily" else DEFAULT_CALORIE_TOLERANCE


# =============================================================================
# Meal distribution bands
# =============================================================================


@dataclass(frozen=True)
class GoalDistributionRules:
    """Allowed share of daily calories per meal slot (as decimals).

    Each range is inclusive. ``max_single_snack`` caps any one snack.
    """

    breakfast: Tuple[float, float]
    lunch: Tuple[float, float]
    dinner: Tuple[float, float]
    snacks: Tuple[float, float]
    max_single_snack: float


_STANDARD_RULES = GoalDistributionRules(
    breakfast=(0.25, 0.30),
    lunch=(0.30, 0.35),
    dinner=(0.30, 0.35),
    snacks=(0.10, 0.15),
    max_single_snack=0.20,
)

GOAL_DISTRIBUTION_RULES: Dict[str, GoalDistributionRules] = {
    "lose_weight": _STANDARD_RULES,
    "maintain": _STANDARD_RULES,
    "health": _STANDARD_RULES,
    "weight_gain": GoalDistributionRules(
        breakfast=(0.25, 0.30),
        lunch=(0.30, 0.35),
        dinner=(0.30, 0.35),
        snacks=(0.15, 0.25),
        max_single_snack=0.30,
    ),
    "build_muscle": GoalDistributionRules(
        breakfast=(0.25, 0.30),
        lunch=(0.30, 0.35),
        dinner=(0.30, 0.35),
        snacks=(0.15, 0.20),
        max_single_snack=0.25,
    ),
}
DEFAULT_DISTRIBUTION_RULES = _STANDARD_RULES


def get_goal_distribution_rules(goal: Optional[str]) -> GoalDistributionRules:
    return GOAL_DISTRIBUTION_RULES.get((goal or "").lower(), DEFAULT_DISTRIBUTION_RULES)


# =============================================================================
# Leniency gate
# =============================================================================


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        return default


@dataclass(frozen=True)
class LeniencyPolicy:
    """Wider acceptance bands applied once repairs are exhausted.

    Safety-class violations are never covered, whatever the values here.
    """

    calorie_kcal: float = 150.0
    macro_pct: float = 0.30
    meal_share_min: float = 0.20
    meal_share_max: float = 0.50
    snack_share_max: float = 0.30
    single_snack_max: float = 0.35
    non_blocking_codes: Tuple[str, ...] = ("MISSING_GROCERY_ITEM",)

    @classmethod
    def from_env(cls) -> "LeniencyPolicy":
        return cls(
            calorie_kcal=_env_float("MEALPLAN_LENIENCY_CALORIES", cls.calorie_kcal),
            macro_pct=_env_float("MEALPLAN_LENIENCY_MACRO_PCT", cls.macro_pct),
            meal_share_min=_env_float("MEALPLAN_LENIENCY_MEAL_MIN", cls.meal_share_min),
            meal_share_max=_env_float("MEALPLAN_LENIENCY_MEAL_MAX", cls.meal_share_max),
            snack_share_max=_env_float("MEALPLAN_LENIENCY_SNACK_MAX", cls.snack_share_max),
            single_snack_max=_env_float(
                "MEALPLAN_LENIENCY_SINGLE_SNACK_MAX", cls.single_snack_max
            ),
        )


DEFAULT_LENIENCY = LeniencyPolicy()


# =============================================================================
# Dietary restrictions (allergens, religious rules, diets)
# =============================================================================


@dataclass(frozen=True)
class DietaryRestriction:
    """A single dietary restriction rule.

    Attributes:
        name: Identifier for the restriction (e.g., "peanuts")
        forbidden_keywords: Keywords that trigger a violation (case-insensitive,
            whole words, plural forms included)
        exceptions: Phrases that neutralize a match (e.g. "eggplant" for egg)
        severity: "critical" = block validation, "warning" = log only
        kind: "allergen", "religious" or "diet"
    """

    name: str
    forbidden_keywords: tuple
    exceptions: tuple = ()
    severity: str = "critical"
    kind: str = "allergen"


MEAT_KEYWORDS = (
    "chicken", "beef", "pork", "lamb", "mutton", "goat", "turkey", "duck",
    "bacon", "ham", "sausage", "salami", "pepperoni", "veal", "venison",
    "meat", "prosciutto", "chorizo", "lard", "gelatin",
)
FISH_KEYWORDS = (
    "fish", "salmon", "tuna", "cod", "tilapia", "sardine", "anchovy",
    "mackerel", "trout", "halibut", "haddock", "fish sauce",
)
SHELLFISH_KEYWORDS = (
    "shrimp", "prawn", "crab", "lobster", "clam", "mussel", "oyster",
    "scallop", "squid", "calamari", "shellfish",
)
DAIRY_KEYWORDS = (
    "milk", "cheese", "yogurt", "yoghurt", "butter", "cream", "paneer",
    "ghee", "curd", "whey", "casein", "kefir", "buttermilk", "dairy",
)
PLANT_DAIRY_EXCEPTIONS = (
    "coconut milk", "almond milk", "oat milk", "soy milk", "rice milk",
    "cashew milk", "peanut butter", "almond butter", "nut butter",
    "cashew butter", "sunflower butter", "cocoa butter", "coconut cream",
    "vegan cheese", "dairy-free", "dairy free", "coconut yogurt", "soy yogurt",
    "butternut", "butter beans",
)

ALLERGEN_RESTRICTIONS: Dict[str, DietaryRestriction] = {
    "peanuts": DietaryRestriction(
        name="peanuts",
        forbidden_keywords=("peanut", "peanut butter", "groundnut", "peanut oil", "satay"),
    ),
    "tree nuts": DietaryRestriction(
        name="tree nuts",
        forbidden_keywords=(
            "almond", "cashew", "walnut", "pecan", "pistachio", "hazelnut",
            "macadamia", "brazil nut", "pine nut", "nut butter", "mixed nuts",
        ),
        exceptions=("nutmeg", "butternut", "coconut", "water chestnut"),
    ),
    "dairy": DietaryRestriction(
        name="dairy",
        forbidden_keywords=DAIRY_KEYWORDS,
        exceptions=PLANT_DAIRY_EXCEPTIONS,
    ),
    "eggs": DietaryRestriction(
        name="eggs",
        forbidden_keywords=("egg", "egg white", "egg yolk", "mayonnaise", "meringue"),
        exceptions=("eggplant", "egg-free", "eggless", "vegan mayonnaise"),
    ),
    "gluten": DietaryRestriction(
        name="gluten",
        forbidden_keywords=(
            "wheat", "flour", "bread", "pasta", "couscous", "semolina", "barley",
            "rye", "seitan", "bulgur", "noodles", "roti", "chapati", "naan",
            "tortilla", "breadcrumbs", "cracker",
        ),
        exceptions=(
            "gluten-free", "gluten free", "almond flour", "rice flour",
            "coconut flour", "chickpea flour", "besan", "corn tortilla",
            "rice noodles", "buckwheat",
        ),
    ),
    "soy": DietaryRestriction(
        name="soy",
        forbidden_keywords=("soy", "soya", "tofu", "tempeh", "edamame", "miso", "soy sauce"),
    ),
    "fish": DietaryRestriction(name="fish", forbidden_keywords=FISH_KEYWORDS),
    "shellfish": DietaryRestriction(name="shellfish", forbidden_keywords=SHELLFISH_KEYWORDS),
    "sesame": DietaryRestriction(
        name="sesame", forbidden_keywords=("sesame", "tahini", "sesame oil", "gomasio")
    ),
}

# User wording -> canonical allergen entry
ALLERGY_ALIASES = {
    "peanut": "peanuts",
    "groundnut": "peanuts",
    "groundnuts": "peanuts",
    "nut": "tree nuts",
    "nuts": "tree nuts",
    "tree nut": "tree nuts",
    "milk": "dairy",
    "lactose": "dairy",
    "lactose intolerance": "dairy",
    "egg": "eggs",
    "wheat": "gluten",
    "celiac": "gluten",
    "coeliac": "gluten",
    "soya": "soy",
    "shrimp": "shellfish",
    "crustaceans": "shellfish",
    "seafood": "shellfish",
}

RELIGIOUS_RESTRICTIONS: Dict[str, DietaryRestriction] = {
    "halal": DietaryRestriction(
        name="halal",
        forbidden_keywords=(
            "pork", "bacon", "ham", "lard", "gelatin", "prosciutto", "pepperoni",
            "alcohol", "wine", "beer", "rum", "brandy", "sake", "mirin",
        ),
        exceptions=("wine vinegar", "halal gelatin", "beef bacon", "turkey bacon"),
        kind="religious",
    ),
    "kosher": DietaryRestriction(
        name="kosher",
        forbidden_keywords=("pork", "bacon", "ham", "lard", "prosciutto") + SHELLFISH_KEYWORDS,
        exceptions=("turkey bacon", "beef bacon"),
        kind="religious",
    ),
    "hindu": DietaryRestriction(
        name="hindu",
        forbidden_keywords=("beef", "veal", "steak", "brisket"),
        kind="religious",
    ),
    "jain": DietaryRestriction(
        name="jain",
        forbidden_keywords=MEAT_KEYWORDS
        + FISH_KEYWORDS
        + SHELLFISH_KEYWORDS
        + (
            "egg", "onion", "garlic", "potato", "carrot", "beetroot", "radish",
            "ginger", "honey", "mushroom", "sweet potato", "turnip",
        ),
        exceptions=("eggplant", "eggless", "ginger powder", "dry ginger"),
        kind="religious",
    ),
    "buddhist": DietaryRestriction(
        name="buddhist",
        forbidden_keywords=MEAT_KEYWORDS + FISH_KEYWORDS + SHELLFISH_KEYWORDS,
        kind="religious",
    ),
}

DIET_RESTRICTIONS: Dict[str, DietaryRestriction] = {
    "vegetarian": DietaryRestriction(
        name="vegetarian",
        forbidden_keywords=MEAT_KEYWORDS + FISH_KEYWORDS + SHELLFISH_KEYWORDS,
        exceptions=("vegetarian sausage", "veggie sausage", "plant-based"),
        kind="diet",
    ),
    "vegan": DietaryRestriction(
        name="vegan",
        forbidden_keywords=MEAT_KEYWORDS
        + FISH_KEYWORDS
        + SHELLFISH_KEYWORDS
        + DAIRY_KEYWORDS
        + ("egg", "honey", "mayonnaise"),
        exceptions=PLANT_DAIRY_EXCEPTIONS + ("eggplant", "vegan", "plant-based"),
        kind="diet",
    ),
    "pescatarian": DietaryRestriction(
        name="pescatarian",
        forbidden_keywords=MEAT_KEYWORDS,
        exceptions=("vegetarian sausage", "plant-based"),
        kind="diet",
    ),
}


def _normalize_term(term: str) -> str:
    return re.sub(r"\s+", " ", (term or "").strip().lower())


def restrictions_for_allergies(allergies: Iterable[str]) -> List[DietaryRestriction]:
    """Map user allergy wording to restriction rules.

    Unknown allergies become a rule on the allergy term itself, so "kiwi"
    still blocks "kiwi slices".
    """
    restrictions: List[DietaryRestriction] = []
    seen = set()
    for allergy in allergies or ():
        term = _normalize_term(allergy)
        if not term or term in ("none", "no", "n/a"):
            continue
        key = ALLERGY_ALIASES.get(term, term)
        if key in ALLERGEN_RESTRICTIONS:
            restriction = ALLERGEN_RESTRICTIONS[key]
        else:
            singular = term[:-1] if term.endswith("s") and len(term) > 3 else term
            restriction = DietaryRestriction(name=term, forbidden_keywords=(singular,))
        if restriction.name not in seen:
            seen.add(restriction.name)
            restrictions.append(restriction)
    return restrictions


def restrictions_for_religion(religious: Optional[str]) -> List[DietaryRestriction]:
    restriction = RELIGIOUS_RESTRICTIONS.get(_normalize_term(religious or ""))
    return [restriction] if restriction else []


def restrictions_for_diet(diets: Iterable[str]) -> List[DietaryRestriction]:
    restrictions = []
    for diet in diets or ():
        restriction = DIET_RESTRICTIONS.get(_normalize_term(diet))
        if restriction is not None:
            restrictions.append(restriction)
    return restrictions


def _keyword_regex(keyword: str) -> "re.Pattern[str]":
    return re.compile(rf"\b{re.escape(keyword.lower())}(?:e?s)?\b")


def match_restriction(text: str, restriction: DietaryRestriction) -> Optional[str]:
    """Return the forbidden keyword found in text, or None.

    Exception phrases are blanked out before matching so "eggplant" never
    counts as "egg" while "eggplant and egg" still does.
    """
    lowered = (text or "").lower()
    for exception in restriction.exceptions:
        lowered = lowered.replace(exception.lower(), " ")
    for keyword in restriction.forbidden_keywords:
        if _keyword_regex(keyword).search(lowered):
            return keyword
    return None


# =============================================================================
# Grocery list rules
# =============================================================================

# keyword -> (wrong category, correct category), compared case-insensitively
GROCERY_MISCLASSIFICATIONS: Dict[str, Tuple[str, str]] = {
    "almond butter": ("dairy", "pantry"),
    "peanut butter": ("dairy", "pantry"),
    "nut butter": ("dairy", "pantry"),
    "mixed berries": ("pantry", "produce"),
    "canned chickpeas": ("produce", "pantry"),
    "tofu": ("dairy", "protein"),
    "nuts": ("dairy", "pantry"),
    "paneer": ("pantry", "dairy"),
    "yogurt": ("pantry", "dairy"),
    "cheese": ("pantry", "dairy"),
}

# Listed "cooked X" in a grocery list without a dry quantity
COOKED_GROCERY_ITEMS = ("quinoa", "lentils", "rice", "beans")

# Exact names exempt from the grocery completeness check
KITCHEN_STAPLES = frozenset(
    {
        "salt", "pepper", "water", "oil", "butter", "garlic", "onion", "sugar",
        "flour", "baking powder", "baking soda", "vanilla extract", "vinegar",
        "soy sauce", "hot sauce", "mustard", "ketchup", "mayonnaise", "honey",
        "maple syrup", "lemon juice", "lime juice", "broth", "stock",
        "herbs", "spices",
    }
)

# Descriptors removed before fuzzy grocery matching
CORE_NAME_DESCRIPTORS_RE = re.compile(
    r"\b(?:cooked|dry|canned|fresh|dried|frozen|chopped|diced|sliced|minced|grated|"
    r"crushed|drained|rinsed|halved|seeded|finely|roughly|coarsely|"
    r"medium|large|small|extra|whole|pieces?)\b"
)

MIN_SHARED_WORD_LENGTH = 4

# =============================================================================
# Unit-class and cultural heuristics
# =============================================================================

# Solid produce measured by the spoon (warning)
FORBIDDEN_UNIT_RE = re.compile(
    r"\b\d+(?:[./]\d+)?\s*(?:tbsp|tsp|tablespoons?|teaspoons?)\s+(?:of\s+)?"
    r"(?:(?:chopped|diced|sliced|minced|fresh)\s+)?"
    r"(?:onions?|tomato(?:es)?|carrots?|cucumbers?|bell peppers?|capsicum|zucchini|"
    r"broccoli|cauliflower|spinach|cabbage|potato(?:es)?|mushrooms?|celery|"
    r"apples?|bananas?|mangos?|mangoes|berries|strawberries|blueberries)\b",
    re.IGNORECASE,
)

# cuisine keyword -> meal-name terms considered out of place
CULTURAL_CONFLICTS: Dict[str, Tuple[str, ...]] = {
    "indian": ("tortilla", "quinoa", "avocado toast", "burrito"),
}
CULTURAL_ALTERNATIVES: Dict[str, str] = {
    "indian": "roti/chapati instead of tortilla, rice or millets instead of quinoa",
}


def format_thresholds_for_prompt(plan_type: str, goal: Optional[str] = None) -> str:
    """Human-readable rule summary quoted in generation prompts."""
    rules = get_goal_distribution_rules(goal)

    def pct(band: Tuple[float, float]) -> str:
        return f"{band[0]:.0%}-{band[1]:.0%}"

    return f"""NUMERIC RULES (checked automatically):
- Each day's meals must sum to the daily calorie target +/-{calorie_tolerance(plan_type)} kcal
- Daily protein/carbs/fat must be within +/-{MACRO_TOLERANCE_PCT:.0%} of overview.macros
- Breakfast {pct(rules.breakfast)}, lunch {pct(rules.lunch)}, dinner {pct(rules.dinner)} of daily calories
- All snacks together {pct(rules.snacks)}; no single snack above {rules.max_single_snack:.0%}
- Every meal: >= {MIN_INGREDIENTS} ingredients, instructions >= {MIN_INSTRUCTIONS_CHARS} characters, numeric calories/protein/carbs/fat
- Never measure chopped vegetables or fruit in tbsp/tsp; use grams, cups or pieces"""
