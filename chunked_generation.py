"""Window-by-window generation of long plans.

A single generation call cannot reliably produce 30 days of recipes inside
the output token cap, so long plans are generated in consecutive day windows
(1-10, 11-20, 21-30). Each window is generated, structurally repaired,
validated and repaired on its own by a ``SegmentGenerator``. A window that
under-delivers or cannot be parsed is retried once as smaller sub-windows;
if that fails too, the whole request fails. Generation call failures are not
split: they propagate so the request-level retry loop can back off. Every
window after the first is generated and validated against the first window's
macro targets. Windows run sequentially and are merged in day order, then the
grocery list is aggregated once over the merged plan.
"""

import sys
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from errors import (
    ChunkGenerationError,
    DeadlineExceededError,
    IncompletePlanError,
    PlanParseError,
)
from generation_client import GenerateFn, for_days, for_repair
from grocery_aggregator import refresh_grocery_list
from llm_config import GenerationBudget
from macro_calculator import calculate_macro_targets
from observability import log_workflow, setup_structured_logger
from plan_validator import validate_plan
from prompts import build_plan_prompt
from repair_controller import RepairController
from response_parser import parse_model_output
from retry_utils import Deadline
from schemas import PlanRequest, ValidationResult
from structure_repair import repair_plan_structure

logger = setup_structured_logger("mealplan.chunked")


def split_into_windows(start_day: int, end_day: int, size: int) -> List[Tuple[int, int]]:
    """Split an inclusive day range into consecutive windows of ``size`` days.

    >>> split_into_windows(1, 30, 10)
    [(1, 10), (11, 20), (21, 30)]
    """
    if size < 1:
        raise ValueError("window size must be >= 1")
    windows = []
    start = start_day
    while start <= end_day:
        end = min(start + size - 1, end_day)
        windows.append((start, end))
        start = end + 1
    return windows


def renumber_days(days: List[Dict[str, Any]], start_day: int) -> int:
    """Assign day numbers by position; returns how many were wrong."""
    mismatches = 0
    for offset, day in enumerate(days):
        expected = start_day + offset
        if day.get("day") != expected:
            mismatches += 1
            day["day"] = expected
    return mismatches


@dataclass
class SegmentResult:
    """A generated, repaired and validated day range."""

    start_day: int
    end_day: int
    plan: Dict[str, Any]
    result: ValidationResult
    repair_attempts: int = 0

    @property
    def days(self) -> List[Dict[str, Any]]:
        return self.plan["days"]


class SegmentGenerator:
    """Generates one contiguous day range and runs the repair loop on it."""

    def __init__(
        self,
        generate: GenerateFn,
        request: PlanRequest,
        target_calories: int,
        budget: Optional[GenerationBudget] = None,
        macros: Optional[Dict[str, int]] = None,
    ):
        self.generate = generate
        self.request = request
        self.target_calories = target_calories
        self.budget = budget or GenerationBudget()
        # shared overview targets; None lets the first window set them
        self.macros = macros

    def generate_segment(self, start_day: int, end_day: int, deadline: Deadline) -> SegmentResult:
        """Generate days ``start_day``..``end_day`` (inclusive).

        Raises:
            GenerationError: The generation call failed
            PlanParseError: The output could not be parsed
            IncompletePlanError: Fewer days than requested were returned
            DeadlineExceededError: No time left to start the call
        """
        days = end_day - start_day + 1
        request = self.request
        profile = request.profile
        deadline.check(f"days {start_day}-{end_day}")

        prompt = build_plan_prompt(
            request, self.target_calories, start_day, end_day, macros=self.macros
        )
        text = for_days(self.generate, days)(prompt, deadline.remaining())
        plan = repair_plan_structure(
            parse_model_output(text),
            plan_type=request.plan_type,
            duration=days,
            target_calories=self.target_calories,
            goal=profile.goal,
        )

        delivered = len(plan["days"])
        if delivered < days:
            raise IncompletePlanError(
                f"Days {start_day}-{end_day}: expected {days} days, got {delivered}",
                expected_days=days,
                delivered_days=delivered,
            )
        if delivered > days:
            print(
                f"   ✂️  Days {start_day}-{end_day}: dropping {delivered - days} extra day(s)",
                file=sys.stderr,
            )
            del plan["days"][days:]

        mismatches = renumber_days(plan["days"], start_day)
        if mismatches:
            logger.warning(
                "Day numbers did not match requested range; renumbered",
                extra={
                    "extra_fields": {
                        "start_day": start_day,
                        "end_day": end_day,
                        "mismatches": mismatches,
                    }
                },
            )
        plan["overview"]["duration"] = days
        if self.macros:
            plan["overview"]["macros"] = dict(self.macros)

        refresh_grocery_list(plan)
        result = validate_plan(plan, profile, self.target_calories, request.plan_type)

        controller = RepairController(
            for_repair(for_days(self.generate, days)),
            max_attempts=self.budget.max_repair_attempts,
            plan_type=request.plan_type,
        )
        outcome = controller.repair_until_valid(
            plan, result, profile, self.target_calories, deadline
        )
        # a repair answer may renumber days; positions stay authoritative
        renumber_days(outcome.plan["days"], start_day)
        return SegmentResult(
            start_day=start_day,
            end_day=end_day,
            plan=outcome.plan,
            result=outcome.result,
            repair_attempts=outcome.attempts,
        )


class ChunkedPlanOrchestrator:
    """Generates long plans window by window and merges them."""

    def __init__(
        self,
        generate: GenerateFn,
        budget: Optional[GenerationBudget] = None,
    ):
        self._generate = generate
        self.budget = budget or GenerationBudget()

    def _window_deadline(self, deadline: Deadline, start_day: int, end_day: int) -> Deadline:
        needed = self.budget.min_window_seconds + self.budget.merge_reserve_seconds
        remaining = deadline.remaining()
        if remaining < needed:
            raise DeadlineExceededError(
                f"Only {remaining:.1f}s left before days {start_day}-{end_day} "
                f"(need {needed:.0f}s)",
                stage=f"window {start_day}-{end_day}",
            )
        return deadline.child(
            ceiling=self.budget.window_ceiling_seconds,
            reserve=self.budget.merge_reserve_seconds,
        )

    def _run_window(
        self, segments: SegmentGenerator, start_day: int, end_day: int, deadline: Deadline
    ) -> SegmentResult:
        segment = segments.generate_segment(
            start_day, end_day, self._window_deadline(deadline, start_day, end_day)
        )
        if len(segment.days) != end_day - start_day + 1:
            raise IncompletePlanError(
                f"Days {start_day}-{end_day}: repair returned {len(segment.days)} days",
                expected_days=end_day - start_day + 1,
                delivered_days=len(segment.days),
            )
        if segments.macros is None:
            segments.macros = self._macro_targets(
                segment, segments.request, segments.target_calories
            )
        return segment

    def _retry_in_subwindows(
        self,
        segments: SegmentGenerator,
        start_day: int,
        end_day: int,
        deadline: Deadline,
    ) -> List[SegmentResult]:
        results = []
        for sub_start, sub_end in split_into_windows(
            start_day, end_day, self.budget.retry_window_days
        ):
            try:
                results.append(self._run_window(segments, sub_start, sub_end, deadline))
            except PlanParseError as exc:
                raise ChunkGenerationError(
                    f"Days {sub_start}-{sub_end} failed after retry: {exc}",
                    start_day=sub_start,
                    end_day=sub_end,
                ) from exc
        return results

    def generate(
        self, request: PlanRequest, target_calories: int, deadline: Deadline
    ) -> Dict[str, Any]:
        """Generate, merge and aggregate a plan of ``request.duration`` days.

        Args:
            request: Plan request
            target_calories: Daily calorie target
            deadline: Request deadline

        Returns:
            Merged plan document (not yet validated as a whole)

        Raises:
            ChunkGenerationError: A window failed even as sub-windows, or the
                merged plan does not have exactly ``duration`` days
            DeadlineExceededError: Not enough time to start a window
            GenerationError: A generation call failed; never split into sub-windows
        """
        duration = request.duration
        segments = SegmentGenerator(self._generate, request, target_calories, self.budget)
        windows = split_into_windows(1, duration, self.budget.window_days)
        results: List[SegmentResult] = []

        with log_workflow(logger, "chunked_generation", duration=duration, windows=len(windows)):
            for start_day, end_day in windows:
                print(
                    f"   📆 Generating days {start_day}-{end_day} of {duration} "
                    f"({deadline.remaining():.0f}s left)",
                    file=sys.stderr,
                )
                try:
                    results.append(self._run_window(segments, start_day, end_day, deadline))
                except PlanParseError as exc:
                    logger.warning(
                        f"Days {start_day}-{end_day} failed, retrying as "
                        f"{self.budget.retry_window_days}-day windows: {exc}",
                        extra={
                            "extra_fields": {
                                "start_day": start_day,
                                "end_day": end_day,
                                "error_type": type(exc).__name__,
                            }
                        },
                    )
                    results.extend(
                        self._retry_in_subwindows(segments, start_day, end_day, deadline)
                    )

            merged = self._merge(results, request, target_calories, segments.macros)

        if len(merged["days"]) != duration:
            raise ChunkGenerationError(
                f"Merged plan has {len(merged['days'])} days, expected {duration}",
                start_day=1,
                end_day=duration,
            )
        return merged

    @staticmethod
    def _macro_targets(
        first: SegmentResult, request: PlanRequest, target_calories: int
    ) -> Dict[str, int]:
        """Overview macros every window is held to, taken from the first window."""
        macros = first.plan.get("overview", {}).get("macros")
        if isinstance(macros, dict) and all(
            isinstance(macros.get(key), (int, float)) for key in ("protein", "carbs", "fat")
        ):
            return {key: macros[key] for key in ("protein", "carbs", "fat")}
        return calculate_macro_targets(target_calories, request.profile.goal)

    def _merge(
        self,
        results: List[SegmentResult],
        request: PlanRequest,
        target_calories: int,
        macros: Optional[Dict[str, int]] = None,
    ) -> Dict[str, Any]:
        results = sorted(results, key=lambda r: r.start_day)
        days: List[Dict[str, Any]] = []
        for result in results:
            days.extend(result.days)

        merged = {
            "overview": {
                "dailyCalories": target_calories,
                "macros": dict(macros or calculate_macro_targets(target_calories, request.profile.goal)),
                "duration": len(days),
                "type": request.plan_type,
            },
            "days": days,
            # per-window grocery lists are discarded
            "groceryList": {},
        }
        return refresh_grocery_list(merged)
