"""Sanitize user-supplied profile fields before they reach a prompt.

Profile text ends up verbatim inside generation prompts, so control
characters, code fences and markdown separators are stripped, lengths are
capped, and free-text fields showing prompt-injection phrasing are cut down
to a shorter limit.
"""

import re
from typing import Any, Iterable, List, Optional

from observability import setup_structured_logger

logger = setup_structured_logger("mealplan.sanitizer")

DEFAULT_MAX_LENGTH = 500
SHORT_FIELD_MAX_LENGTH = 200

_CONTROL_CHARS_RE = re.compile(r"[\x00-\x08\x0B-\x0C\x0E-\x1F\x7F]")

INJECTION_PATTERNS = (
    re.compile(r"ignore (?:previous|above|all) (?:instructions?|rules?|guidelines?)", re.I),
    re.compile(r"forget (?:previous|above|all) (?:instructions?|rules?|guidelines?)", re.I),
    re.compile(r"\byou are now\b", re.I),
    re.compile(r"\bact as if\b", re.I),
    re.compile(r"\bpretend to be\b", re.I),
    re.compile(r"\b(?:system|assistant|user)\s*:", re.I),
    re.compile(r"\[(?:system|assistant|user)\]", re.I),
    re.compile(r"\b(?:override|bypass|jailbreak)\b", re.I),
)

# (min, max) clamps for numeric profile fields
NUMERIC_BOUNDS = {
    "age": (1, 120),
    "height": (50, 250),
    "current_weight": (20, 500),
    "target_weight": (20, 500),
}


def sanitize_string(value: Any, max_length: int = DEFAULT_MAX_LENGTH) -> str:
    """Trim, cap and strip prompt-breaking sequences from a string."""
    if not isinstance(value, str) or not value:
        return ""

    sanitized = value.strip()[:max_length]
    sanitized = _CONTROL_CHARS_RE.sub("", sanitized)
    sanitized = sanitized.replace("```", "")
    sanitized = sanitized.replace("---", "-")
    sanitized = re.sub(r"\n{3,}", "\n\n", sanitized)
    return sanitized.strip()


def sanitize_string_list(
    values: Optional[Iterable[Any]], max_length: int = SHORT_FIELD_MAX_LENGTH
) -> List[str]:
    """Sanitize each string in a list, dropping non-strings and empties."""
    if values is None or isinstance(values, (str, bytes)):
        return []
    cleaned = (sanitize_string(item, max_length) for item in values if isinstance(item, str))
    return [item for item in cleaned if item]


def sanitize_number(value: Any, minimum: float, maximum: float) -> Optional[float]:
    """Clamp a numeric (or numeric string) value; None when not a number."""
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if number != number:  # NaN
        return None
    return max(minimum, min(maximum, number))


def detect_prompt_injection(value: Any) -> bool:
    if not isinstance(value, str) or not value:
        return False
    return any(pattern.search(value) for pattern in INJECTION_PATTERNS)


def sanitize_free_text(value: Any, field_name: str = "notes") -> str:
    """Sanitize a free-text field, shortening it hard when it looks like an injection."""
    if detect_prompt_injection(value):
        logger.warning(
            f"Potential prompt injection detected in field {field_name}",
            extra={"extra_fields": {"field": field_name}},
        )
        return sanitize_string(value, SHORT_FIELD_MAX_LENGTH)
    return sanitize_string(value, DEFAULT_MAX_LENGTH)
