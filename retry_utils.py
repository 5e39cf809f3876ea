"""Deadline tracking and retry with exponential backoff for plan generation.

Provides:
- Deadline: Monotonic wall-clock budget propagated through the pipeline
- exponential_backoff_delay: Delay with jitter, capped by the remaining budget
- is_retriable_error: Typed classification of pipeline errors
- run_with_retries: Retry loop bounded by attempts and deadline
"""

import random
import sys
import time
from typing import Callable, Optional, TypeVar

from errors import (
    ChunkGenerationError,
    ConfigurationError,
    DeadlineExceededError,
    GenerationError,
    PlanParseError,
    SafetyViolationError,
    ValidationExhaustedError,
)
from observability import setup_structured_logger

logger = setup_structured_logger("mealplan.retry")

T = TypeVar("T")

DEFAULT_BASE_DELAY_SECONDS = 1.0
DEFAULT_EXPONENTIAL_BASE = 2.0
DEFAULT_MAX_JITTER_SECONDS = 1.0
DEFAULT_SAFETY_RESERVE_SECONDS = 10.0
DEFAULT_MIN_DELAY_SECONDS = 1.0


class Deadline:
    """Absolute point in (monotonic) time by which work must finish.

    A deadline is created once per request and handed down; sub-steps get a
    ``child`` deadline that can never outlive the parent.
    """

    def __init__(self, seconds: float, clock: Callable[[], float] = time.monotonic):
        """Initialize a deadline.

        Args:
            seconds: Budget from now, in seconds
            clock: Monotonic time source (injectable for tests)
        """
        self._clock = clock
        self.budget = max(0.0, float(seconds))
        self.expires_at = clock() + self.budget

    def remaining(self) -> float:
        """Seconds left before expiry (never negative)."""
        return max(0.0, self.expires_at - self._clock())

    @property
    def expired(self) -> bool:
        return self.remaining() <= 0

    def child(self, ceiling: Optional[float] = None, reserve: float = 0.0) -> "Deadline":
        """Derive a sub-deadline: min(ceiling, remaining - reserve)."""
        seconds = self.remaining() - reserve
        if ceiling is not None:
            seconds = min(ceiling, seconds)
        return Deadline(max(0.0, seconds), clock=self._clock)

    def check(self, stage: str, needed: float = 0.0) -> None:
        """Raise DeadlineExceededError if less than ``needed`` seconds remain."""
        remaining = self.remaining()
        if remaining <= 0 or remaining < needed:
            raise DeadlineExceededError(
                f"Deadline exceeded before {stage} "
                f"({remaining:.1f}s remaining, {needed:.1f}s needed)",
                stage=stage,
            )

    def __repr__(self) -> str:
        return f"Deadline(remaining={self.remaining():.1f}s, budget={self.budget:.1f}s)"


def exponential_backoff_delay(
    attempt: int,
    deadline: Optional[Deadline] = None,
    base_delay: float = DEFAULT_BASE_DELAY_SECONDS,
    exponential_base: float = DEFAULT_EXPONENTIAL_BASE,
    max_jitter: float = DEFAULT_MAX_JITTER_SECONDS,
    safety_reserve: float = DEFAULT_SAFETY_RESERVE_SECONDS,
    min_delay: float = DEFAULT_MIN_DELAY_SECONDS,
) -> Optional[float]:
    """Calculate delay with exponential backoff and jitter.

    Formula: base_delay * (exponential_base ** attempt) + uniform(0, max_jitter),
    capped at ``deadline.remaining() - safety_reserve``.

    Args:
        attempt: Current attempt number (0-indexed)
        deadline: Request deadline; no cap when omitted
        base_delay: Initial delay in seconds
        exponential_base: Base for exponential growth (default 2)
        max_jitter: Upper bound of the random jitter in seconds
        safety_reserve: Seconds kept free for the next attempt
        min_delay: Smallest delay worth sleeping

    Returns:
        Delay in seconds, or None when not even ``min_delay`` fits in the
        remaining budget (the caller should stop retrying)
    """
    delay = base_delay * (exponential_base**attempt) + random.uniform(0, max_jitter)
    if deadline is not None:
        delay = min(delay, deadline.remaining() - safety_reserve)
    if delay < min_delay:
        return None
    return delay


def is_retriable_error(exc: BaseException) -> bool:
    """Check if an error should trigger another generation attempt.

    Args:
        exc: Exception raised by one generation attempt

    Returns:
        True for transient generation failures, unparseable output and
        calorie-only validation exhaustion
    """
    if isinstance(exc, (ConfigurationError, DeadlineExceededError, ChunkGenerationError)):
        return False
    if isinstance(exc, GenerationError):
        return exc.retryable
    if isinstance(exc, PlanParseError):
        return True
    # SafetyViolationError subclasses ValidationExhaustedError
    if isinstance(exc, SafetyViolationError):
        return False
    if isinstance(exc, ValidationExhaustedError):
        return exc.calorie_only
    return False


def run_with_retries(
    operation: Callable[[int], T],
    deadline: Deadline,
    max_retries: int = 3,
    sleep: Callable[[float], None] = time.sleep,
    label: str = "generation",
    safety_reserve: float = DEFAULT_SAFETY_RESERVE_SECONDS,
    min_delay: float = DEFAULT_MIN_DELAY_SECONDS,
) -> T:
    """Run ``operation(attempt)`` until it succeeds or retrying is pointless.

    Args:
        operation: Callable receiving the 0-indexed attempt number
        deadline: Request deadline; bounds both attempts and sleeps
        max_retries: Retries after the first attempt
        sleep: Sleep function (injectable for tests)
        label: Name used in logs
        safety_reserve: Seconds kept free after a backoff sleep
        min_delay: Smallest backoff worth sleeping

    Returns:
        The operation's result

    Raises:
        The last error when it is not retryable, attempts are exhausted or
        the deadline leaves no room for another attempt
    """
    attempt = 0
    while True:
        deadline.check(f"{label} attempt {attempt + 1}")
        try:
            return operation(attempt)
        except Exception as exc:
            retriable = is_retriable_error(exc)
            logger.warning(
                f"{label} attempt {attempt + 1} failed: {exc}",
                extra={
                    "extra_fields": {
                        "attempt": attempt + 1,
                        "error_type": type(exc).__name__,
                        "error_kind": getattr(exc, "kind", None),
                        "retriable": retriable,
                        "remaining_s": round(deadline.remaining(), 1),
                    }
                },
            )
            if not retriable or attempt >= max_retries:
                raise

            delay = exponential_backoff_delay(
                attempt, deadline, safety_reserve=safety_reserve, min_delay=min_delay
            )
            if delay is None:
                print(
                    f"   ⏱️  {label}: no time left for another attempt "
                    f"({deadline.remaining():.1f}s remaining)",
                    file=sys.stderr,
                )
                raise
            print(
                f"   🔄 {label}: retrying in {delay:.1f}s "
                f"(attempt {attempt + 2}/{max_retries + 1})",
                file=sys.stderr,
            )
            sleep(delay)
            attempt += 1
