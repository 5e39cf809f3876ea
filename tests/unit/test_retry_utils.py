"""Unit tests for deadlines, backoff and the retry loop."""
import pytest

from errors import (
    ChunkGenerationError,
    ConfigurationError,
    DeadlineExceededError,
    GenerationError,
    GenerationErrorKind,
    IncompletePlanError,
    PlanParseError,
    SafetyViolationError,
    ValidationExhaustedError,
)
import retry_utils
from retry_utils import Deadline, exponential_backoff_delay, is_retriable_error, run_with_retries
from schemas import Violation


def _violation(code):
    return Violation(severity="critical", code=code, message=code)


@pytest.fixture
def no_jitter(monkeypatch):
    monkeypatch.setattr(retry_utils.random, "uniform", lambda low, high: 0.0)


@pytest.mark.priority_high
@pytest.mark.unit
class TestDeadline:
    """Monotonic budget arithmetic."""

    def test_remaining_counts_down(self, fake_clock):
        deadline = Deadline(120, clock=fake_clock)
        fake_clock.advance(45)

        assert deadline.remaining() == 75
        assert deadline.expired is False

    def test_never_negative(self, fake_clock):
        deadline = Deadline(10, clock=fake_clock)
        fake_clock.advance(30)

        assert deadline.remaining() == 0
        assert deadline.expired is True

    def test_child_respects_ceiling_and_reserve(self, fake_clock):
        deadline = Deadline(600, clock=fake_clock)

        assert deadline.child(ceiling=150, reserve=20).remaining() == 150
        fake_clock.advance(500)
        assert deadline.child(ceiling=150, reserve=20).remaining() == 80

    def test_child_cannot_outlive_parent(self, fake_clock):
        deadline = Deadline(30, clock=fake_clock)

        assert deadline.child(reserve=50).remaining() == 0

    def test_check_raises_with_stage(self, fake_clock):
        deadline = Deadline(40, clock=fake_clock)

        deadline.check("window 1", needed=30)
        with pytest.raises(DeadlineExceededError) as exc_info:
            deadline.check("window 2", needed=50)
        assert exc_info.value.stage == "window 2"
        assert exc_info.value.kind == "timeout"


@pytest.mark.unit
class TestBackoff:
    """Exponential delay capped by the remaining budget."""

    def test_grows_exponentially(self, no_jitter):
        assert [exponential_backoff_delay(a) for a in range(4)] == [1.0, 2.0, 4.0, 8.0]

    def test_jitter_is_bounded(self):
        for _ in range(50):
            delay = exponential_backoff_delay(1)
            assert 2.0 <= delay <= 3.0

    def test_capped_by_deadline_minus_reserve(self, fake_clock, no_jitter):
        deadline = Deadline(15, clock=fake_clock)

        assert exponential_backoff_delay(5, deadline) == 5.0

    def test_none_when_budget_too_small(self, fake_clock, no_jitter):
        deadline = Deadline(10.5, clock=fake_clock)

        assert exponential_backoff_delay(0, deadline) is None


@pytest.mark.priority_high
@pytest.mark.unit
class TestRetriableClassification:
    """Which typed errors earn another attempt."""

    @pytest.mark.parametrize(
        "exc,expected",
        [
            (GenerationError("slow", GenerationErrorKind.TIMEOUT), True),
            (GenerationError("busy", GenerationErrorKind.RATE_LIMIT, 429), True),
            (GenerationError("down", GenerationErrorKind.SERVER, 503), True),
            (GenerationError("empty", GenerationErrorKind.EMPTY_RESPONSE), True),
            (GenerationError("denied", GenerationErrorKind.AUTH, 401), False),
            (GenerationError("bad", GenerationErrorKind.BAD_REQUEST, 400), False),
            (PlanParseError("garbled"), True),
            (IncompletePlanError("short", expected_days=10, delivered_days=7), True),
            (ConfigurationError("no key"), False),
            (DeadlineExceededError("late"), False),
            (ChunkGenerationError("window", 11, 20), False),
            (ValueError("unexpected"), False),
        ],
    )
    def test_classification(self, exc, expected):
        assert is_retriable_error(exc) is expected

    def test_calorie_only_exhaustion_is_retried(self):
        exc = ValidationExhaustedError("calories", [_violation("CALORIE_MISMATCH")])
        assert is_retriable_error(exc) is True

    def test_mixed_exhaustion_is_not_retried(self):
        exc = ValidationExhaustedError(
            "mixed", [_violation("CALORIE_MISMATCH"), _violation("MISSING_DINNER")]
        )
        assert is_retriable_error(exc) is False

    def test_safety_is_never_retried(self):
        exc = SafetyViolationError("peanut", [_violation("ALLERGEN_VIOLATION")])
        assert is_retriable_error(exc) is False


@pytest.mark.priority_high
@pytest.mark.unit
class TestRunWithRetries:
    """Retry loop bounded by attempts and deadline."""

    def test_succeeds_after_transient_failures(self, fake_clock, no_jitter):
        deadline = Deadline(120, clock=fake_clock)
        attempts = []

        def operation(attempt):
            attempts.append(attempt)
            if attempt < 2:
                raise GenerationError("busy", GenerationErrorKind.RATE_LIMIT, 429)
            return "plan"

        result = run_with_retries(operation, deadline, max_retries=3, sleep=fake_clock.sleep)

        assert result == "plan"
        assert attempts == [0, 1, 2]
        assert fake_clock.sleeps == [1.0, 2.0]

    def test_non_retriable_raises_immediately(self, fake_clock):
        deadline = Deadline(120, clock=fake_clock)
        calls = []

        def operation(attempt):
            calls.append(attempt)
            raise ConfigurationError("no key")

        with pytest.raises(ConfigurationError):
            run_with_retries(operation, deadline, sleep=fake_clock.sleep)
        assert calls == [0]
        assert fake_clock.sleeps == []

    def test_gives_up_after_max_retries(self, fake_clock, no_jitter):
        deadline = Deadline(600, clock=fake_clock)
        calls = []

        def operation(attempt):
            calls.append(attempt)
            raise PlanParseError("garbled")

        with pytest.raises(PlanParseError):
            run_with_retries(operation, deadline, max_retries=2, sleep=fake_clock.sleep)
        assert calls == [0, 1, 2]

    def test_stops_when_no_time_for_backoff(self, fake_clock, no_jitter):
        deadline = Deadline(30, clock=fake_clock)
        calls = []

        def operation(attempt):
            calls.append(attempt)
            fake_clock.advance(25)
            raise GenerationError("slow", GenerationErrorKind.TIMEOUT)

        with pytest.raises(GenerationError):
            run_with_retries(operation, deadline, max_retries=3, sleep=fake_clock.sleep)
        assert calls == [0]
        assert fake_clock.sleeps == []

    def test_expired_deadline_blocks_first_attempt(self, fake_clock):
        deadline = Deadline(5, clock=fake_clock)
        fake_clock.advance(10)

        with pytest.raises(DeadlineExceededError):
            run_with_retries(lambda attempt: "plan", deadline)
