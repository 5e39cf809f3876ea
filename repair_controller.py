"""Targeted repair of a validated plan through the generation call.

Each round sends one consolidated prompt listing every critical violation,
parses and structurally repairs the answer, re-aggregates the grocery list
and re-validates. The best plan seen so far (fewest safety, then fewest
critical violations) is kept; a round that fails in any way, or answers with
a different number of days, leaves it alone.
"""

import copy
import sys
from dataclasses import dataclass, field
from typing import Any, Dict, List, Sequence

from errors import GenerationError, PlanParseError
from generation_client import GenerateFn
from grocery_aggregator import refresh_grocery_list
from observability import log_workflow, setup_structured_logger
from plan_validator import validate_plan
from prompts import build_repair_prompt, estimate_tokens
from response_parser import parse_model_output
from retry_utils import Deadline
from schemas import UserProfile, ValidationResult, Violation
from structure_repair import repair_plan_structure

# A repair call is not attempted with less time than this left
MIN_REPAIR_SECONDS = 5.0


@dataclass
class RepairOutcome:
    """Best plan produced by a repair loop and its validation result."""

    plan: Dict[str, Any]
    result: ValidationResult
    attempts: int = 0
    history: List[int] = field(default_factory=list)

    @property
    def passed(self) -> bool:
        return self.result.passed


class RepairController:
    """Runs bounded repair rounds against a GenerateFn."""

    def __init__(
        self,
        generate: GenerateFn,
        max_attempts: int = 3,
        plan_type: str = "daily",
        min_call_seconds: float = MIN_REPAIR_SECONDS,
        logger=None,
    ):
        self.generate = generate
        self.max_attempts = max_attempts
        self.plan_type = plan_type
        self.min_call_seconds = min_call_seconds
        self.logger = logger or setup_structured_logger("mealplan.repair")

    def repair(
        self,
        plan: Dict[str, Any],
        violations: Sequence[Violation],
        profile: UserProfile,
        target_calories: int,
        deadline: Deadline,
    ) -> Dict[str, Any]:
        """Run one repair call.

        Args:
            plan: Current plan document (not modified)
            violations: Violations from the last validation
            profile: User profile
            target_calories: Daily calorie target
            deadline: Deadline bounding the call

        Returns:
            The repaired plan document, or a copy of ``plan`` when there is
            nothing critical to fix

        Raises:
            GenerationError: The call failed
            PlanParseError: The answer could not be parsed
        """
        critical = [v for v in violations if v.is_critical]
        if not critical:
            return copy.deepcopy(plan)

        working = copy.deepcopy(plan)
        prompt = build_repair_prompt(working, critical, profile, target_calories, self.plan_type)
        self.logger.info(
            "Requesting plan repair",
            extra={
                "extra_fields": {
                    "violations": len(critical),
                    "codes": sorted({v.code for v in critical}),
                    "prompt_tokens_est": estimate_tokens(prompt),
                    "timeout_s": round(deadline.remaining(), 1),
                }
            },
        )
        text = self.generate(prompt, deadline.remaining())
        parsed = parse_model_output(text)

        overview = working.get("overview") or {}
        repaired = repair_plan_structure(
            parsed,
            plan_type=self.plan_type,
            duration=len(working.get("days") or []),
            target_calories=target_calories,
            goal=profile.goal,
        )
        # the repaired plan is judged against the targets it was asked to meet
        repaired["overview"]["duration"] = len(working.get("days") or [])
        if isinstance(overview.get("macros"), dict):
            repaired["overview"]["macros"] = dict(overview["macros"])
        return repaired

    def repair_until_valid(
        self,
        plan: Dict[str, Any],
        result: ValidationResult,
        profile: UserProfile,
        target_calories: int,
        deadline: Deadline,
    ) -> RepairOutcome:
        """Repair up to ``max_attempts`` times, keeping the best-ranked plan.

        Args:
            plan: Plan document that produced ``result``
            result: Its validation result
            profile: User profile
            target_calories: Daily calorie target
            deadline: Request (or window) deadline

        Returns:
            RepairOutcome with the best plan and its validation result
        """
        outcome = RepairOutcome(plan=plan, result=result, history=[len(result.critical)])
        if result.passed:
            return outcome

        with log_workflow(
            self.logger,
            "repair_loop",
            max_attempts=self.max_attempts,
            initial_critical=len(result.critical),
        ):
            for attempt in range(1, self.max_attempts + 1):
                if deadline.remaining() < self.min_call_seconds:
                    print(
                        f"   ⏱️  Repair stopped before attempt {attempt}: "
                        f"{deadline.remaining():.1f}s left",
                        file=sys.stderr,
                    )
                    break

                outcome.attempts = attempt
                try:
                    candidate = self.repair(
                        outcome.plan, outcome.result.violations, profile, target_calories, deadline
                    )
                except (GenerationError, PlanParseError) as exc:
                    self.logger.warning(
                        f"Repair attempt {attempt} failed: {exc}",
                        extra={"extra_fields": {"attempt": attempt, "error_kind": exc.kind}},
                    )
                    continue

                expected_days = len(outcome.plan.get("days") or [])
                delivered_days = len(candidate.get("days") or [])
                if delivered_days != expected_days:
                    self.logger.warning(
                        f"Repair attempt {attempt} returned {delivered_days} days, "
                        f"expected {expected_days}; discarded",
                        extra={
                            "extra_fields": {
                                "attempt": attempt,
                                "expected_days": expected_days,
                                "delivered_days": delivered_days,
                            }
                        },
                    )
                    print(
                        f"   🔧 Repair attempt {attempt}/{self.max_attempts}: "
                        f"{delivered_days}/{expected_days} days - discarded",
                        file=sys.stderr,
                    )
                    continue

                refresh_grocery_list(candidate)
                candidate_result = validate_plan(
                    candidate, profile, target_calories, self.plan_type
                )
                outcome.history.append(len(candidate_result.critical))

                improved = candidate_result.rank() < outcome.result.rank()
                print(
                    f"   🔧 Repair attempt {attempt}/{self.max_attempts}: "
                    f"{len(candidate_result.critical)} critical "
                    f"({len(candidate_result.safety)} safety)"
                    f"{' - kept' if improved else ' - discarded'}",
                    file=sys.stderr,
                )
                if improved:
                    outcome.plan = candidate
                    outcome.result = candidate_result
                if outcome.result.passed:
                    break

        return outcome
