"""Centralized generation configuration - single source of truth.

Model, endpoint, sampling and time-budget settings for the meal plan
pipeline. Everything can be overridden through environment variables (or a
.env file loaded by ``load_env_with_optional_override``).
"""

import os
from dataclasses import dataclass
from typing import Dict

from dotenv import load_dotenv


def load_env_with_optional_override() -> None:
    """Load .env without clobbering explicit environment overrides."""

    load_dotenv(override=False)
    if os.getenv("DOTENV_FORCE_OVERRIDE", "").strip().lower() in {"1", "true", "yes", "on"}:
        load_dotenv(override=True)


load_env_with_optional_override()


# =============================================================================
# Model / endpoint
# =============================================================================

DEFAULT_BASE_URL = os.getenv("OPENAI_API_BASE", "https://api.openai.com/v1")
DEFAULT_MODEL = os.getenv("MEALPLAN_MODEL", "gpt-4o")
API_KEY_ENV = "OPENAI_API_KEY"

# Sampling
GENERATION_TEMPERATURE = float(os.getenv("MEALPLAN_TEMPERATURE", "0.7"))
REPAIR_TEMPERATURE = float(os.getenv("MEALPLAN_REPAIR_TEMPERATURE", "0.3"))

# Output token caps by number of days requested in one call
MAX_TOKENS_BY_DAYS: Dict[int, int] = {
    30: 8000,
    7: 4000,
    1: 2000,
}


def max_tokens_for_days(days: int) -> int:
    """Output token cap for a generation call covering ``days`` days."""
    for threshold in sorted(MAX_TOKENS_BY_DAYS, reverse=True):
        if days >= threshold:
            return MAX_TOKENS_BY_DAYS[threshold]
    return MAX_TOKENS_BY_DAYS[1]


def is_thinking_model(model: str) -> bool:
    """Check if model is a reasoning model (emits thought blocks, rejects temperature).

    Args:
        model: Model name to check

    Returns:
        True if model is a thinking model
    """
    model_lower = model.lower()
    if "thinking" in model_lower:
        return True
    if "deepseek" in model_lower and "r1" in model_lower:
        return True
    return model_lower.split("/")[-1].startswith(("o1", "o3"))


# =============================================================================
# Time budget
# =============================================================================


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name, "").strip()
    return float(raw) if raw else default


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    return int(raw) if raw else default


@dataclass(frozen=True)
class GenerationBudget:
    """Wall-clock and attempt limits for one plan request.

    Attributes:
        daily_seconds / weekly_seconds / monthly_seconds: Total budget per plan type
        window_days: Days per chunk when a plan is generated in windows
        retry_window_days: Smaller window used when a chunk under-delivers
        chunk_threshold_days: Plans longer than this are chunked
        window_ceiling_seconds: Upper bound for a single window's sub-deadline
        min_window_seconds: Below this, a new window is not started
        merge_reserve_seconds: Kept free for merging and final aggregation
        backoff_reserve_seconds: Kept free after a backoff sleep
        min_delay_seconds: Smallest backoff worth sleeping
        max_retries: Retries after the first full generation attempt
        max_repair_attempts: Repair rounds per generated plan or window
    """

    daily_seconds: float = 120.0
    weekly_seconds: float = 180.0
    monthly_seconds: float = 600.0
    window_days: int = 10
    retry_window_days: int = 5
    chunk_threshold_days: int = 10
    window_ceiling_seconds: float = 150.0
    min_window_seconds: float = 30.0
    merge_reserve_seconds: float = 20.0
    backoff_reserve_seconds: float = 10.0
    min_delay_seconds: float = 1.0
    max_retries: int = 3
    max_repair_attempts: int = 3

    def total_for(self, plan_type: str) -> float:
        """Total budget in seconds for a plan type."""
        return {
            "daily": self.daily_seconds,
            "weekly": self.weekly_seconds,
            "monthly": self.monthly_seconds,
        }.get(plan_type, self.weekly_seconds)

    @classmethod
    def from_env(cls) -> "GenerationBudget":
        return cls(
            daily_seconds=_env_float("MEALPLAN_BUDGET_DAILY_SECONDS", cls.daily_seconds),
            weekly_seconds=_env_float("MEALPLAN_BUDGET_WEEKLY_SECONDS", cls.weekly_seconds),
            monthly_seconds=_env_float("MEALPLAN_BUDGET_MONTHLY_SECONDS", cls.monthly_seconds),
            window_days=_env_int("MEALPLAN_WINDOW_DAYS", cls.window_days),
            retry_window_days=_env_int("MEALPLAN_RETRY_WINDOW_DAYS", cls.retry_window_days),
            chunk_threshold_days=_env_int("MEALPLAN_CHUNK_THRESHOLD_DAYS", cls.chunk_threshold_days),
            window_ceiling_seconds=_env_float(
                "MEALPLAN_WINDOW_CEILING_SECONDS", cls.window_ceiling_seconds
            ),
            min_window_seconds=_env_float("MEALPLAN_MIN_WINDOW_SECONDS", cls.min_window_seconds),
            merge_reserve_seconds=_env_float(
                "MEALPLAN_MERGE_RESERVE_SECONDS", cls.merge_reserve_seconds
            ),
            backoff_reserve_seconds=_env_float(
                "MEALPLAN_BACKOFF_RESERVE_SECONDS", cls.backoff_reserve_seconds
            ),
            max_retries=_env_int("MEALPLAN_MAX_RETRIES", cls.max_retries),
            max_repair_attempts=_env_int("MEALPLAN_MAX_REPAIR_ATTEMPTS", cls.max_repair_attempts),
        )
