"""Parse free-text ingredient strings into (amount, unit, name).

Handles the shapes generated meal plans actually use:

    "1 1/2 cups cooked rice"   -> (1.5, "cup", "cooked rice")
    "150g chicken breast"      -> (150.0, "g", "chicken breast")
    "2 eggs"                   -> (2.0, "count", "eggs")
    "cumin"                    -> (1.0, "tsp", "cumin")        # category default
    "salt to taste"            -> None                          # no discrete quantity
"""

import re
from dataclasses import dataclass
from typing import Optional

# Canonical unit vocabulary (synonym -> canonical)
UNIT_SYNONYMS = {
    "cup": "cup",
    "cups": "cup",
    "c": "cup",
    "tbsp": "tbsp",
    "tbsps": "tbsp",
    "tbs": "tbsp",
    "tbl": "tbsp",
    "tablespoon": "tbsp",
    "tablespoons": "tbsp",
    "tsp": "tsp",
    "tsps": "tsp",
    "teaspoon": "tsp",
    "teaspoons": "tsp",
    "ml": "ml",
    "milliliter": "ml",
    "milliliters": "ml",
    "millilitre": "ml",
    "millilitres": "ml",
    "l": "l",
    "liter": "l",
    "liters": "l",
    "litre": "l",
    "litres": "l",
    "g": "g",
    "gr": "g",
    "gram": "g",
    "grams": "g",
    "kg": "kg",
    "kgs": "kg",
    "kilo": "kg",
    "kilos": "kg",
    "kilogram": "kg",
    "kilograms": "kg",
    "lb": "lb",
    "lbs": "lb",
    "pound": "lb",
    "pounds": "lb",
    "oz": "oz",
    "ounce": "oz",
    "ounces": "oz",
    "piece": "piece",
    "pieces": "piece",
    "pc": "piece",
    "pcs": "piece",
    "bunch": "bunch",
    "bunches": "bunch",
    "head": "head",
    "heads": "head",
    "clove": "clove",
    "cloves": "clove",
}

VOLUME_UNITS = frozenset({"cup", "tbsp", "tsp", "ml", "l", "oz"})
MASS_UNITS = frozenset({"g", "kg", "lb"})

UNICODE_FRACTIONS = {
    "½": "1/2",
    "⅓": "1/3",
    "⅔": "2/3",
    "¼": "1/4",
    "¾": "3/4",
    "⅛": "1/8",
    "⅜": "3/8",
    "⅝": "5/8",
    "⅞": "7/8",
}

# Largest integer still read as a discrete count ("2 eggs", not "200 chicken")
MAX_COUNT_AMOUNT = 20

_NO_QUANTITY_RE = re.compile(
    r"\b(?:to taste|as needed|as required|as desired|pinch(?:es)?|a dash|for serving)\b",
    re.IGNORECASE,
)

# "1 1/2", "1/2", "1.5", "1,5", "2-3", "2 to 3"
_AMOUNT_RE = re.compile(
    r"^(?P<amount>"
    r"\d+\s+\d+/\d+"
    r"|\d+/\d+"
    r"|\d+(?:[.,]\d+)?(?:\s*(?:-|–|to)\s*\d+(?:[.,]\d+)?)?"
    r")\s*"
)
_UNIT_TOKEN_RE = re.compile(r"^(?P<unit>[a-zA-Z]+)\.?(?:\s+|$)")
_LEADING_OF_RE = re.compile(r"^of\s+", re.IGNORECASE)

# Name-only defaults by ingredient class
SPICE_KEYWORDS = (
    "cumin",
    "turmeric",
    "paprika",
    "cinnamon",
    "cardamom",
    "coriander powder",
    "chili powder",
    "chilli powder",
    "garam masala",
    "masala",
    "oregano",
    "thyme",
    "rosemary",
    "nutmeg",
    "cloves",
    "black pepper",
    "pepper flakes",
    "curry powder",
    "asafoetida",
    "hing",
    "fenugreek",
    "bay leaf",
    "bay leaves",
    "spice",
    "seasoning",
    "powder",
)
SEED_KEYWORDS = (
    "seeds",
    "seed",
    "chia",
    "flax",
    "flaxseed",
    "sesame",
)
GRAIN_LEGUME_KEYWORDS = (
    "rice",
    "quinoa",
    "oats",
    "oatmeal",
    "lentils",
    "lentil",
    "dal",
    "chickpeas",
    "beans",
    "pasta",
    "couscous",
    "barley",
    "bulgur",
    "millet",
    "buckwheat",
    "poha",
    "semolina",
)
PRODUCE_KEYWORDS = (
    "apple",
    "banana",
    "berries",
    "berry",
    "orange",
    "mango",
    "pear",
    "grapes",
    "lemon",
    "lime",
    "avocado",
    "tomato",
    "tomatoes",
    "cucumber",
    "spinach",
    "kale",
    "lettuce",
    "broccoli",
    "cauliflower",
    "carrot",
    "carrots",
    "zucchini",
    "onion",
    "onions",
    "bell pepper",
    "capsicum",
    "mushroom",
    "mushrooms",
    "potato",
    "sweet potato",
    "cabbage",
    "celery",
    "eggplant",
    "peas",
    "greens",
    "herbs",
    "parsley",
    "cilantro",
    "basil",
    "mint",
    "ginger",
    "vegetables",
    "fruit",
)


@dataclass(frozen=True)
class ParsedIngredient:
    """A single parsed ingredient quantity."""

    amount: float
    unit: str
    name: str
    defaulted: bool = False

    @property
    def family(self) -> str:
        """Unit family: volume, mass, or count."""
        return unit_family(self.unit)


def unit_family(unit: str) -> str:
    if unit in VOLUME_UNITS:
        return "volume"
    if unit in MASS_UNITS:
        return "mass"
    return "count"


def normalize_unit(token: str) -> Optional[str]:
    """Map a unit token (any case, optional trailing period) to its canonical form."""
    if not token:
        return None
    return UNIT_SYNONYMS.get(token.strip().rstrip(".").lower())


def _replace_unicode_fractions(text: str) -> str:
    for char, fraction in UNICODE_FRACTIONS.items():
        text = text.replace(char, f" {fraction}")
    return re.sub(r"\s+", " ", text).strip()


def parse_amount(token: str) -> Optional[float]:
    """Parse a numeric amount: integer, decimal, fraction, mixed number or range.

    Ranges ("2-3") resolve to their upper bound so shopping quantities are
    never short.
    """
    token = token.strip()
    if not token:
        return None

    range_match = re.match(
        r"^(\d+(?:[.,]\d+)?)\s*(?:-|–|to)\s*(\d+(?:[.,]\d+)?)$", token
    )
    if range_match:
        return max(
            float(range_match.group(1).replace(",", ".")),
            float(range_match.group(2).replace(",", ".")),
        )

    mixed_match = re.match(r"^(\d+)\s+(\d+)/(\d+)$", token)
    if mixed_match:
        whole, num, den = (int(x) for x in mixed_match.groups())
        if den == 0:
            return None
        return whole + num / den

    fraction_match = re.match(r"^(\d+)/(\d+)$", token)
    if fraction_match:
        num, den = (int(x) for x in fraction_match.groups())
        if den == 0:
            return None
        return num / den

    try:
        return float(token.replace(",", "."))
    except ValueError:
        return None


def _clean_name(name: str) -> str:
    name = _LEADING_OF_RE.sub("", name.strip())
    name = re.sub(r"\s+", " ", name)
    return name.strip(" ,.;:-").lower()


def _contains_keyword(name: str, keywords) -> bool:
    return any(re.search(rf"\b{re.escape(kw)}\b", name) for kw in keywords)


def default_quantity_for(name: str) -> ParsedIngredient:
    """Assign a category-based default quantity to a name-only ingredient."""
    lowered = name.lower()
    if _contains_keyword(lowered, SEED_KEYWORDS):
        return ParsedIngredient(1.0, "tbsp", lowered, defaulted=True)
    if _contains_keyword(lowered, SPICE_KEYWORDS):
        return ParsedIngredient(1.0, "tsp", lowered, defaulted=True)
    if _contains_keyword(lowered, GRAIN_LEGUME_KEYWORDS):
        return ParsedIngredient(1.0, "cup", lowered, defaulted=True)
    if _contains_keyword(lowered, PRODUCE_KEYWORDS):
        return ParsedIngredient(200.0, "g", lowered, defaulted=True)
    return ParsedIngredient(100.0, "g", lowered, defaulted=True)


def parse_ingredient(text: str) -> Optional[ParsedIngredient]:
    """Parse an ingredient string into amount, canonical unit and name.

    Args:
        text: Free-text ingredient (e.g. "2 tbsp olive oil")

    Returns:
        ParsedIngredient, or None when the text carries no discrete quantity
        ("to taste", "as needed", "pinch") or is empty.
    """
    if not isinstance(text, str):
        return None

    cleaned = _replace_unicode_fractions(text)
    if not cleaned or _NO_QUANTITY_RE.search(cleaned):
        return None

    amount_match = _AMOUNT_RE.match(cleaned)
    if not amount_match:
        name = _clean_name(cleaned)
        if not name:
            return None
        return default_quantity_for(name)

    amount = parse_amount(amount_match.group("amount"))
    rest = cleaned[amount_match.end():]
    if amount is None:
        return None

    # "<number> <unit> <name>" (unit may be attached: "150g chicken")
    unit_match = _UNIT_TOKEN_RE.match(rest)
    if unit_match:
        unit = normalize_unit(unit_match.group("unit"))
        if unit is not None:
            name = _clean_name(rest[unit_match.end():])
            if name:
                return ParsedIngredient(amount, unit, name)

    # "<number> <name>"
    name = _clean_name(rest)
    if not name:
        return None
    if amount == int(amount) and amount <= MAX_COUNT_AMOUNT and not re.search(r"\d", name):
        return ParsedIngredient(amount, "count", name)
    return ParsedIngredient(amount, "g", name)


_QUANTITY_PREFIX_RE = re.compile(
    r"^(?:~|\+|(?:approx|about|and|packets?)\b\.?|"
    r"\d+\s+\d+/\d+|\d+/\d+|\d+(?:[.,]\d+)?(?:\s*(?:-|–|to)\s*\d+(?:[.,]\d+)?)?"
    r")\s*",
    re.IGNORECASE,
)


def extract_ingredient_name(text: str) -> str:
    """Strip every leading quantity/unit token and prep clause from a string.

    Works on both meal ingredients ("1 onion, finely chopped") and rendered
    grocery entries ("1 kg 200 g chicken breast", "1 cup + 2 tbsp milk").
    """
    if not isinstance(text, str):
        return ""
    name = _replace_unicode_fractions(text).lower()
    name = re.sub(r"\([^)]*\)", " ", name)
    name = name.split(",")[0]
    name = _NO_QUANTITY_RE.sub(" ", name)
    name = re.sub(r"\s+", " ", name).strip()

    while name:
        stripped = _QUANTITY_PREFIX_RE.sub("", name, count=1)
        if stripped == name:
            break
        unit_match = _UNIT_TOKEN_RE.match(stripped)
        if unit_match and normalize_unit(unit_match.group("unit")):
            stripped = stripped[unit_match.end():]
        name = stripped

    return _clean_name(name)
