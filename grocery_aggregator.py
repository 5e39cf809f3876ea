"""Derive a canonical, deduplicated grocery list from a plan's meals.

The grocery list is never trusted from the model: it is rebuilt from the
ingredient strings after every generation and repair round. Rebuilding is
deterministic, so running it twice on the same meals yields the same list.

Pipeline per ingredient string:
    parse -> skip exclusions -> cooked->dry scaling -> base unit (ml/g/count)
    -> group by normalized name -> render -> categorize -> merge near-duplicates
"""

import math
import re
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from ingredient_parser import ParsedIngredient, extract_ingredient_name, parse_ingredient
from macro_calculator import iter_day_meals
from schemas import AggregatedIngredient

# ============================================================================
# Conversion tables
# ============================================================================

VOLUME_TO_ML = {"cup": 240.0, "tbsp": 15.0, "tsp": 5.0, "ml": 1.0, "l": 1000.0, "oz": 30.0}
MASS_TO_G = {"g": 1.0, "kg": 1000.0, "lb": 454.0}

# Dry goods bought by weight: grams per cup
DRY_CUP_TO_GRAMS = {
    "flour": 120.0,
    "semolina": 170.0,
    "rice": 185.0,
    "sugar": 200.0,
    "oats": 90.0,
    "quinoa": 170.0,
}
# Liquids that merely contain a dry-goods word ("rice vinegar", "oat milk")
_LIQUID_WORDS_RE = re.compile(r"\b(?:milk|vinegar|wine|syrup|water|flakes|noodles)\b")

# Cooked yield -> dry quantity to buy
COOKED_TO_DRY_RATIOS = {
    "rice": 0.5,
    "quinoa": 0.33,
    "lentils": 0.33,
    "lentil": 0.33,
    "chickpeas": 0.33,
    "beans": 0.33,
}
_COOKED_RE = re.compile(r"\bcooked\b\s*")

# Count units that keep their own word when rendered ("3 cloves garlic")
NAMED_COUNT_UNITS = {"clove": "cloves", "bunch": "bunches", "head": "heads"}

ML_PER_CUP = 240.0
ML_PER_TBSP = 15.0
ML_PER_TSP = 5.0
TBSP_PER_CUP = 16
PACKET_THRESHOLD_G = 15.0

_EXCLUDED_RE = re.compile(
    r"^(?:(?:cold|hot|warm|boiling|filtered|ice|plain|lukewarm)\s+)?water$"
    r"|\bto taste\b|\bgarnish\b|\bfor garnishing\b",
)

_PREP_WORDS_RE = re.compile(
    r"\b(?:chopped|diced|sliced|minced|grated|crushed|peeled|halved|cubed|shredded|"
    r"finely|roughly|coarsely|thinly|trimmed|rinsed|drained|mashed)\b"
)

_SPICE_LIKE_RE = re.compile(
    r"\b(?:powder|spice|spices|seasoning|masala|cumin|turmeric|paprika|cinnamon|"
    r"cardamom|oregano|thyme|nutmeg|chili flakes|chilli flakes|asafoetida|hing|"
    r"fenugreek|saffron|black pepper|salt)\b"
)

# ============================================================================
# Categorization
# ============================================================================

CATEGORY_ORDER = ("produce", "protein", "dairy", "pantry", "spices", "beverages")
DEFAULT_CATEGORY = "pantry"

CATEGORY_KEYWORDS: Dict[str, Tuple[str, ...]] = {
    "produce": (
        "apple", "banana", "berries", "berry", "mixed berries", "blueberries",
        "strawberries", "orange", "mango", "pear", "grapes", "papaya", "pineapple",
        "lemon", "lime", "avocado", "tomato", "cherry tomatoes", "cucumber",
        "spinach", "kale", "lettuce", "arugula", "broccoli", "cauliflower",
        "carrot", "zucchini", "onion", "red onion", "green onion", "spring onion",
        "shallot", "garlic", "ginger", "bell pepper", "capsicum", "green chili",
        "chili", "mushroom", "potato", "sweet potato", "cabbage", "celery",
        "eggplant", "brinjal", "okra", "peas", "green beans", "beetroot",
        "pumpkin", "squash", "corn", "asparagus", "herbs", "parsley",
        "cilantro", "coriander leaves", "basil", "mint", "dill", "curry leaves",
        "scallion", "leek", "radish", "fruit", "vegetables",
    ),
    "protein": (
        "chicken", "chicken breast", "chicken thigh", "turkey", "beef", "pork",
        "lamb", "mutton", "fish", "salmon", "tuna", "cod", "tilapia", "shrimp",
        "prawns", "egg", "egg whites", "tofu", "tempeh", "seitan", "edamame",
    ),
    "dairy": (
        "milk", "yogurt", "greek yogurt", "curd", "cheese", "cottage cheese",
        "feta", "mozzarella", "parmesan", "cheddar", "paneer", "butter", "ghee",
        "cream", "sour cream", "kefir", "almond milk", "soy milk", "oat milk",
    ),
    "pantry": (
        "rice", "brown rice", "basmati rice", "quinoa", "oats", "rolled oats",
        "flour", "whole wheat flour", "semolina", "pasta", "bread",
        "whole wheat bread", "tortilla", "couscous", "barley", "millet",
        "poha", "lentils", "dal", "chickpeas", "canned chickpeas", "beans",
        "black beans", "kidney beans", "nuts", "almonds", "walnuts", "cashews",
        "peanuts", "peanut butter", "almond butter", "nut butter", "seeds",
        "chia seeds", "flax seeds", "sesame seeds", "pumpkin seeds", "olive oil",
        "oil", "coconut oil", "sesame oil", "vinegar", "soy sauce", "honey",
        "maple syrup", "sugar", "stock", "broth", "chicken broth",
        "vegetable broth", "coconut milk", "tomato paste", "canned tomatoes",
        "protein powder", "dark chocolate", "raisins", "dates", "granola",
        "hummus", "tahini", "mustard", "salsa", "baking powder", "baking soda",
        "vanilla extract",
    ),
    "spices": (
        "salt", "black pepper", "pepper", "cumin", "cumin seeds", "turmeric",
        "paprika", "cinnamon", "cardamom", "garam masala", "chili powder",
        "chilli powder", "curry powder", "coriander powder", "oregano",
        "thyme", "rosemary", "nutmeg", "bay leaf", "bay leaves", "mustard seeds",
        "fenugreek", "asafoetida", "garlic powder", "onion powder",
        "chili flakes", "red pepper flakes", "italian seasoning", "saffron",
    ),
    "beverages": (
        "coffee", "tea", "green tea", "juice", "orange juice", "coconut water",
        "sparkling water", "kombucha",
    ),
}


def _keyword_pattern(keyword: str) -> "re.Pattern[str]":
    return re.compile(rf"\b{re.escape(keyword)}(?:e?s)?\b")


_CATEGORY_PATTERNS: List[Tuple[str, str, "re.Pattern[str]"]] = [
    (category, keyword, _keyword_pattern(keyword))
    for category in CATEGORY_ORDER
    for keyword in CATEGORY_KEYWORDS[category]
]


def categorize(name: str) -> str:
    """Pick the shopping section whose longest keyword matches the name."""
    best_category = DEFAULT_CATEGORY
    best_length = 0
    for category, keyword, pattern in _CATEGORY_PATTERNS:
        if len(keyword) > best_length and pattern.search(name):
            best_category = category
            best_length = len(keyword)
    return best_category


# ============================================================================
# Normalization
# ============================================================================


@dataclass
class _Group:
    name: str
    base_unit: str
    amount: float
    count_unit: Optional[str] = None

    @property
    def key(self) -> Tuple[str, str, Optional[str]]:
        return (self.name, self.base_unit, self.count_unit)


def normalize_name(name: str) -> str:
    """Lower-case, drop parentheticals, prep clauses and prep words, collapse whitespace."""
    cleaned = extract_ingredient_name(name) or name.lower()
    cleaned = _PREP_WORDS_RE.sub(" ", cleaned)
    cleaned = re.sub(r"\b(?:and|or)\s*$", " ", cleaned)
    return re.sub(r"\s+", " ", cleaned).strip(" ,.-")


def is_excluded(text: str, name: str = "") -> bool:
    """Plain water, "to taste" and garnish-only entries never reach the list."""
    lowered = text.lower()
    return bool(_EXCLUDED_RE.search(lowered) or (name and _EXCLUDED_RE.search(name)))


def _cooked_to_dry(parsed: ParsedIngredient) -> ParsedIngredient:
    if not _COOKED_RE.search(parsed.name):
        return parsed
    for grain, ratio in COOKED_TO_DRY_RATIOS.items():
        if re.search(rf"\b{grain}\b", parsed.name):
            name = _COOKED_RE.sub("", parsed.name).strip()
            return ParsedIngredient(parsed.amount * ratio, parsed.unit, name, parsed.defaulted)
    return parsed


def _dry_cup_factor(name: str) -> Optional[float]:
    if _LIQUID_WORDS_RE.search(name):
        return None
    for ingredient, grams in DRY_CUP_TO_GRAMS.items():
        if re.search(rf"\b{ingredient}\b", name):
            return grams
    return None


def to_base_unit(parsed: ParsedIngredient, name: str) -> Tuple[float, str, Optional[str]]:
    """Convert a parsed quantity to (amount, base unit, count sub-unit)."""
    unit = parsed.unit
    if unit == "cup":
        grams_per_cup = _dry_cup_factor(name)
        if grams_per_cup is not None:
            return parsed.amount * grams_per_cup, "g", None
    if unit in VOLUME_TO_ML:
        return parsed.amount * VOLUME_TO_ML[unit], "ml", None
    if unit in MASS_TO_G:
        return parsed.amount * MASS_TO_G[unit], "g", None
    if unit in NAMED_COUNT_UNITS:
        return parsed.amount, "count", unit
    return parsed.amount, "count", None


# ============================================================================
# Rendering
# ============================================================================


def _ceil(value: float) -> int:
    # Rounding guards against 14.999999 style float drift
    return int(math.ceil(round(value, 6)))


def render_volume(ml: float) -> str:
    """Greedy cups + tbsp + tsp decomposition; raw ml below one teaspoon."""
    if ml < ML_PER_TSP:
        return f"{max(1, int(round(ml)))} ml"

    remaining = round(ml, 6)
    cups = int(remaining // ML_PER_CUP)
    remaining -= cups * ML_PER_CUP
    tbsp = int(round(remaining, 6) // ML_PER_TBSP)
    remaining -= tbsp * ML_PER_TBSP
    tsp = _ceil(remaining / ML_PER_TSP)

    if tsp >= 3:
        tbsp += tsp // 3
        tsp %= 3
    if tbsp >= TBSP_PER_CUP:
        cups += tbsp // TBSP_PER_CUP
        tbsp %= TBSP_PER_CUP

    parts = []
    if cups:
        parts.append(f"{cups} cup" if cups == 1 else f"{cups} cups")
    if tbsp:
        parts.append(f"{tbsp} tbsp")
    if tsp:
        parts.append(f"{tsp} tsp")
    return " + ".join(parts)


def render_mass(grams: float, name: str) -> str:
    """kg + g above 1 kg, "1 packet" for small spice amounts, else next 10 g."""
    if grams > 1000:
        kilos = int(grams // 1000)
        rest = _ceil((grams - kilos * 1000) / 10.0) * 10
        if rest >= 1000:
            kilos += 1
            rest -= 1000
        return f"{kilos} kg {rest} g" if rest else f"{kilos} kg"
    if grams < PACKET_THRESHOLD_G and _SPICE_LIKE_RE.search(name):
        return "1 packet"
    return f"{max(10, _ceil(grams / 10.0) * 10)} g"


def render_count(amount: float, count_unit: Optional[str]) -> str:
    count = max(1, _ceil(amount))
    if count_unit:
        word = count_unit if count == 1 else NAMED_COUNT_UNITS[count_unit]
        return f"{count} {word}"
    return str(count)


def render_group(group: _Group) -> str:
    if group.base_unit == "ml":
        return render_volume(group.amount)
    if group.base_unit == "g":
        return render_mass(group.amount, group.name)
    return render_count(group.amount, group.count_unit)


# ============================================================================
# Aggregation
# ============================================================================


def iter_plan_ingredients(plan: Mapping[str, Any]) -> Iterable[str]:
    """Yield every ingredient string of every meal and snack, in plan order."""
    days = plan.get("days") if isinstance(plan, Mapping) else None
    if not isinstance(days, list):
        return
    for day in days:
        if not isinstance(day, Mapping):
            continue
        for meal in iter_day_meals(day.get("meals")):
            ingredients = meal.get("ingredients") if isinstance(meal, Mapping) else None
            if not isinstance(ingredients, list):
                continue
            for ingredient in ingredients:
                if isinstance(ingredient, str):
                    yield ingredient


def _names_overlap(short: str, long: str) -> bool:
    if short == long:
        return True
    candidates = {short}
    if short.endswith("es") and len(short) > 4:
        candidates.add(short[:-2])
    if short.endswith("s") and len(short) > 3:
        candidates.add(short[:-1])
    return any(re.search(rf"\b{re.escape(c)}(?:e?s)?\b", long) for c in candidates)


def _merge_near_duplicates(groups: List[_Group]) -> Dict[str, List[_Group]]:
    by_category: Dict[str, List[_Group]] = {}
    for group in sorted(groups, key=lambda g: (-len(g.name), g.name, g.base_unit)):
        category = categorize(group.name)
        merged = by_category.setdefault(category, [])
        target = next(
            (
                kept
                for kept in merged
                if kept.base_unit == group.base_unit
                and kept.count_unit == group.count_unit
                and _names_overlap(group.name, kept.name)
            ),
            None,
        )
        if target is None:
            merged.append(_Group(group.name, group.base_unit, group.amount, group.count_unit))
        else:
            target.amount += group.amount
    return by_category


def aggregate_ingredients(plan: Mapping[str, Any]) -> List[AggregatedIngredient]:
    """Build the consolidated ingredient groups for a plan.

    Args:
        plan: Loosely-typed plan document (dict with "days")

    Returns:
        AggregatedIngredient list ordered by category then name
    """
    groups: Dict[Tuple[str, str, Optional[str]], _Group] = {}

    for text in iter_plan_ingredients(plan):
        if is_excluded(text):
            continue
        parsed = parse_ingredient(text)
        if parsed is None:
            continue
        parsed = _cooked_to_dry(parsed)
        name = normalize_name(parsed.name)
        if not name or is_excluded(name):
            continue

        amount, base_unit, count_unit = to_base_unit(parsed, name)
        group = _Group(name, base_unit, amount, count_unit)
        existing = groups.get(group.key)
        if existing is None:
            groups[group.key] = group
        else:
            existing.amount += amount

    by_category = _merge_near_duplicates(list(groups.values()))

    result: List[AggregatedIngredient] = []
    for category in CATEGORY_ORDER:
        for group in sorted(by_category.get(category, []), key=lambda g: (g.name, g.base_unit)):
            result.append(
                AggregatedIngredient(
                    canonical_name=group.name,
                    total_base_amount=round(group.amount, 3),
                    base_unit=group.base_unit,
                    rendered_quantity=render_group(group),
                    category=category,
                    count_unit=group.count_unit,
                )
            )
    return result


def aggregate_grocery_list(plan: Mapping[str, Any]) -> Dict[str, List[str]]:
    """Render the plan's grocery list as category -> quantity strings."""
    grocery: Dict[str, List[str]] = {}
    for item in aggregate_ingredients(plan):
        grocery.setdefault(item.category, []).append(item.line)
    return grocery


def refresh_grocery_list(plan: Dict[str, Any]) -> Dict[str, Any]:
    """Replace the plan's groceryList wholesale with a freshly aggregated one."""
    plan["groceryList"] = aggregate_grocery_list(plan)
    return plan
