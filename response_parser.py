"""Recover a JSON plan object from raw generated text.

Strategies, each tried only if the previous one fails:
1. Direct json.loads on the cleaned text
2. Content of a fenced ```json block
3. Light syntactic repair (comments, trailing commas, bare keys)
4. Largest {...} span with missing closers balanced, then repaired;
   json_repair salvages whatever partial object remains
"""

import json
import re
from typing import Any, Callable, Dict, List, Optional, Tuple

import json_repair

from errors import PlanParseError
from observability import setup_structured_logger

logger = setup_structured_logger("mealplan.parser")

# json_repair is slow on very large inputs
JSON_REPAIR_MAX_CHARS = 150_000

_FENCE_RE = re.compile(r"```(?:json|JSON)?\s*\n?(.*?)```", re.DOTALL)
_THOUGHT_RE = re.compile(r"<(thought|thinking)>.*?</\1>", re.DOTALL | re.IGNORECASE)
_LINE_COMMENT_RE = re.compile(r"(^|[,{\[])[ \t]*//[^\n]*$", re.MULTILINE)
_BLOCK_COMMENT_RE = re.compile(r"/\*.*?\*/", re.DOTALL)
_TRAILING_COMMA_RE = re.compile(r",\s*([}\]])")
_BARE_KEY_RE = re.compile(r"([{,]\s*)([A-Za-z_][A-Za-z0-9_]*)(\s*:)")
_STRING_LITERAL_RE = re.compile(r'("(?:\\.|[^"\\])*")')


def clean_model_text(text: str) -> str:
    """Drop thought blocks and reasoning preamble before the first brace."""
    text = _THOUGHT_RE.sub("", text).strip()
    first_brace = text.find("{")
    fence = text.find("```")
    if first_brace > 0 and (fence == -1 or fence > first_brace):
        text = text[first_brace:]
    return text.strip()


def repair_json_text(text: str) -> str:
    """Light syntactic repair: comments, trailing commas, unquoted keys.

    Commas and keys are only rewritten outside string literals, so recipe
    text such as ``"Mix well, Note: serve warm"`` is left untouched.
    """
    repaired = _BLOCK_COMMENT_RE.sub("", text)
    repaired = _LINE_COMMENT_RE.sub(r"\1", repaired)
    # split() keeps the captured literals at odd indexes
    parts = _STRING_LITERAL_RE.split(repaired)
    for index in range(0, len(parts), 2):
        part = _TRAILING_COMMA_RE.sub(r"\1", parts[index])
        parts[index] = _BARE_KEY_RE.sub(r'\1"\2"\3', part)
    return "".join(parts)


def extract_json_object(text: str) -> Optional[str]:
    """Extract the first complete JSON object using brace balancing.

    Escaped quotes and braces inside strings are skipped.
    """
    start = text.find("{")
    if start == -1:
        return None

    depth = 0
    in_string = False
    escape_next = False
    for i, char in enumerate(text[start:], start):
        if escape_next:
            escape_next = False
            continue
        if char == "\\":
            escape_next = True
            continue
        if char == '"':
            in_string = not in_string
            continue
        if in_string:
            continue
        if char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return text[start : i + 1]
    return None


def balance_closers(text: str) -> str:
    """Append the closing brackets/braces (and quote) a truncated object is missing."""
    stack: List[str] = []
    in_string = False
    escape_next = False
    for char in text:
        if escape_next:
            escape_next = False
            continue
        if char == "\\":
            escape_next = True
            continue
        if char == '"':
            in_string = not in_string
            continue
        if in_string:
            continue
        if char in "{[":
            stack.append("}" if char == "{" else "]")
        elif char in "}]" and stack and stack[-1] == char:
            stack.pop()

    balanced = text.rstrip()
    if in_string:
        balanced += '"'
    balanced = re.sub(r",\s*$", "", balanced)
    return balanced + "".join(reversed(stack))


def largest_object_span(text: str) -> Optional[str]:
    """From the first '{' to the last '}' (or end of text when truncated)."""
    start = text.find("{")
    if start == -1:
        return None
    end = text.rfind("}")
    if end <= start:
        return text[start:]
    span = text[start : end + 1]
    if balance_closers(span) != span.rstrip():
        # Still unclosed at the last brace: the output was cut off mid-object
        return text[start:]
    return span


def _loads_dict(candidate: Optional[str]) -> Optional[Dict[str, Any]]:
    if not candidate:
        return None
    try:
        parsed = json.loads(candidate)
    except (json.JSONDecodeError, ValueError):
        return None
    return parsed if isinstance(parsed, dict) else None


def _strategy_direct(text: str) -> Optional[Dict[str, Any]]:
    return _loads_dict(text)


def _strategy_fenced(text: str) -> Optional[Dict[str, Any]]:
    for block in _FENCE_RE.findall(text):
        parsed = _loads_dict(block.strip())
        if parsed is not None:
            return parsed
    return None


def _strategy_light_repair(text: str) -> Optional[Dict[str, Any]]:
    fenced = _FENCE_RE.findall(text)
    candidates = [block.strip() for block in fenced] + [text]
    for candidate in candidates:
        parsed = _loads_dict(repair_json_text(candidate))
        if parsed is not None:
            return parsed
        parsed = _loads_dict(repair_json_text(extract_json_object(candidate) or ""))
        if parsed is not None:
            return parsed
    return None


def _strategy_salvage(text: str) -> Optional[Dict[str, Any]]:
    span = largest_object_span(_FENCE_RE.sub(lambda m: m.group(1), text))
    if span is None:
        return None

    parsed = _loads_dict(repair_json_text(balance_closers(span)))
    if parsed is not None:
        return parsed

    if len(span) > JSON_REPAIR_MAX_CHARS:
        logger.warning(
            "Skipping json_repair salvage (input too large)",
            extra={"extra_fields": {"chars": len(span)}},
        )
        return None
    try:
        salvaged = json_repair.repair_json(span, return_objects=True)
    except (ValueError, RecursionError) as exc:
        logger.warning(f"json_repair salvage failed: {exc}")
        return None
    return salvaged if isinstance(salvaged, dict) and salvaged else None


STRATEGIES: List[Tuple[str, Callable[[str], Optional[Dict[str, Any]]]]] = [
    ("direct", _strategy_direct),
    ("fenced_block", _strategy_fenced),
    ("light_repair", _strategy_light_repair),
    ("salvage", _strategy_salvage),
]


def parse_model_output(text: Any) -> Dict[str, Any]:
    """Parse raw generated text into a plan dict.

    Args:
        text: Raw model output

    Returns:
        The recovered JSON object

    Raises:
        PlanParseError: If no strategy yields a JSON object
    """
    if not isinstance(text, str) or not text.strip():
        raise PlanParseError("Generated text is empty", raw_length=0)

    cleaned = clean_model_text(text)
    for name, strategy in STRATEGIES:
        parsed = strategy(cleaned)
        if parsed is not None:
            if name != "direct":
                logger.info(
                    f"Recovered plan JSON via {name}",
                    extra={"extra_fields": {"strategy": name, "chars": len(text)}},
                )
            return parsed

    raise PlanParseError(
        f"Could not recover a JSON object from {len(text)} chars of generated text",
        raw_length=len(text),
    )
