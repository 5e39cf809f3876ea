"""Typed error taxonomy for the meal plan pipeline.

Every failure surfaced to callers is a MealPlanError subclass carrying a
``kind`` string the HTTP layer (and any other caller) can switch on:

- config_error: missing credentials or malformed request shape
- rate_limited / timeout / generation_error: generation call failures
- parse_error: generated text could not be turned into a (complete) plan object
- validation_exhausted: residual critical violations after repair + leniency
- safety_violation: allergen / religious violations still present
"""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING, List, Optional, Sequence

if TYPE_CHECKING:  # pragma: no cover
    from schemas import Violation


class MealPlanError(Exception):
    """Base class for all pipeline errors."""

    kind = "generation_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        """Serialize as the structured error payload returned to callers."""
        return {"error": self.kind, "message": self.message}


class ConfigurationError(MealPlanError):
    """Missing credentials or an invalid request; never retried."""

    kind = "config_error"


class DeadlineExceededError(MealPlanError):
    """The global wall-clock budget ran out before a plan was produced."""

    kind = "timeout"

    def __init__(self, message: str, stage: Optional[str] = None):
        super().__init__(message)
        self.stage = stage


class PlanParseError(MealPlanError):
    """Generated text could not be recovered as a JSON object."""

    kind = "parse_error"

    def __init__(self, message: str, raw_length: int = 0):
        super().__init__(message)
        self.raw_length = raw_length


class GenerationErrorKind(str, Enum):
    """Classification produced at the generation-call boundary."""

    TIMEOUT = "timeout"
    CONNECTION = "connection"
    RATE_LIMIT = "rate_limit"
    SERVER = "server"
    AUTH = "auth"
    BAD_REQUEST = "bad_request"
    EMPTY_RESPONSE = "empty_response"


RETRYABLE_GENERATION_KINDS = frozenset(
    {
        GenerationErrorKind.TIMEOUT,
        GenerationErrorKind.CONNECTION,
        GenerationErrorKind.RATE_LIMIT,
        GenerationErrorKind.SERVER,
        GenerationErrorKind.EMPTY_RESPONSE,
    }
)


class GenerationError(MealPlanError):
    """Failure of the external generation call."""

    def __init__(
        self,
        message: str,
        error_kind: GenerationErrorKind,
        status_code: Optional[int] = None,
    ):
        super().__init__(message)
        self.error_kind = GenerationErrorKind(error_kind)
        self.status_code = status_code

    @property
    def kind(self) -> str:  # type: ignore[override]
        if self.error_kind == GenerationErrorKind.RATE_LIMIT:
            return "rate_limited"
        if self.error_kind == GenerationErrorKind.TIMEOUT:
            return "timeout"
        return "generation_error"

    @property
    def retryable(self) -> bool:
        return self.error_kind in RETRYABLE_GENERATION_KINDS

    def to_dict(self) -> dict:
        payload = super().to_dict()
        payload["error_kind"] = self.error_kind.value
        if self.status_code is not None:
            payload["status_code"] = self.status_code
        return payload


class ValidationExhaustedError(MealPlanError):
    """Critical violations remain after repairs and the leniency gate."""

    kind = "validation_exhausted"

    def __init__(self, message: str, violations: Sequence["Violation"] = ()):
        super().__init__(message)
        self.violations: List["Violation"] = list(violations)

    @property
    def calorie_only(self) -> bool:
        """True when every residual violation is a calorie mismatch."""
        return bool(self.violations) and all(
            v.code == "CALORIE_MISMATCH" for v in self.violations
        )

    def to_dict(self) -> dict:
        payload = super().to_dict()
        payload["violations"] = [v.model_dump() for v in self.violations]
        return payload


class SafetyViolationError(ValidationExhaustedError):
    """Allergen or religious violations survived every repair attempt."""

    kind = "safety_violation"


class ChunkGenerationError(MealPlanError):
    """A window of a chunked plan could not be produced, even when split."""

    kind = "generation_error"

    def __init__(self, message: str, start_day: int = 0, end_day: int = 0):
        super().__init__(message)
        self.start_day = start_day
        self.end_day = end_day


class IncompletePlanError(PlanParseError):
    """Generated output parsed but covers fewer days than requested."""

    def __init__(self, message: str, expected_days: int = 0, delivered_days: int = 0):
        super().__init__(message)
        self.expected_days = expected_days
        self.delivered_days = delivered_days
