"""Shared test fixtures for the meal plan pipeline tests.

Generation is always faked: ``ScriptedGenerator`` replays canned responses
and ``RangeGenerator`` answers plan prompts for whatever day range they ask.
No test performs network I/O.
"""
import json
import os
import re
from typing import Any, Callable, Dict, List, Optional, Union

import pytest

os.environ.setdefault("LOG_TO_FILE", "false")

from llm_config import GenerationBudget  # noqa: E402
from schemas import PlanRequest, UserProfile  # noqa: E402
from tests.fixtures.plans import TARGET_CALORIES, make_plan  # noqa: E402
from validation_config import LeniencyPolicy  # noqa: E402

_RANGE_RE = re.compile(r"covering days? (\d+)(?: to (\d+))?")

Response = Union[str, BaseException, Callable[[str], str]]


class ScriptedGenerator:
    """GenerateFn replaying a fixed list of responses in order.

    Each entry is returned as-is (str), raised (exception) or called with the
    prompt (callable). The last entry repeats once the script runs out.
    """

    def __init__(self, responses: List[Response]):
        self.responses = list(responses)
        self.prompts: List[str] = []
        self.timeouts: List[float] = []

    def __call__(self, prompt: str, timeout: float) -> str:
        self.prompts.append(prompt)
        self.timeouts.append(timeout)
        index = min(len(self.prompts) - 1, len(self.responses) - 1)
        response = self.responses[index]
        if isinstance(response, BaseException):
            raise response
        if callable(response):
            return response(prompt)
        return response

    @property
    def calls(self) -> int:
        return len(self.prompts)


class RangeGenerator:
    """Answers generation prompts with a valid plan for the requested range.

    ``short_ranges`` maps a (start, end) range to the number of days to
    actually return, simulating under-delivery. Repair prompts are answered
    with the plan embedded in the prompt, unchanged.
    """

    def __init__(self, short_ranges: Optional[Dict[tuple, int]] = None):
        self.short_ranges = short_ranges or {}
        self.ranges: List[tuple] = []
        self.prompts: List[str] = []

    def __call__(self, prompt: str, timeout: float) -> str:
        self.prompts.append(prompt)
        match = _RANGE_RE.search(prompt)
        if match is None:
            start = prompt.index("ORIGINAL MEAL PLAN (JSON):") + len("ORIGINAL MEAL PLAN (JSON):")
            end = prompt.index("USER PROFILE (for context):")
            return prompt[start:end].strip()
        start_day = int(match.group(1))
        end_day = int(match.group(2) or start_day)
        self.ranges.append((start_day, end_day))
        days = self.short_ranges.get((start_day, end_day), end_day - start_day + 1)
        return json.dumps(make_plan(days=days, start_day=start_day, plan_type="monthly"))


class FakeClock:
    """Monotonic clock advanced manually (or by the fake sleep)."""

    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def profile() -> UserProfile:
    return UserProfile(goal="maintain", activity="moderate", gender="female")


@pytest.fixture
def peanut_allergy_profile() -> UserProfile:
    return UserProfile(goal="maintain", allergies=["peanuts"])


@pytest.fixture
def valid_plan() -> Dict[str, Any]:
    return make_plan()


@pytest.fixture
def daily_request(profile) -> PlanRequest:
    return PlanRequest(plan_type="daily", target_calories=TARGET_CALORIES, profile=profile)


@pytest.fixture
def monthly_request(profile) -> PlanRequest:
    return PlanRequest(plan_type="monthly", target_calories=TARGET_CALORIES, profile=profile)


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def budget() -> GenerationBudget:
    return GenerationBudget()


@pytest.fixture
def policy() -> LeniencyPolicy:
    return LeniencyPolicy()


@pytest.fixture
def scripted_generator() -> Callable[[List[Response]], ScriptedGenerator]:
    return ScriptedGenerator


@pytest.fixture
def range_generator() -> Callable[..., RangeGenerator]:
    return RangeGenerator
