"""End-to-end meal plan generation.

Pipeline per attempt:
    prompt -> generate -> parse -> structural repair -> aggregate groceries
    -> validate -> repair loop -> (chunk merge for long plans) -> leniency gate

Attempts are wrapped in ``run_with_retries`` under one request deadline.
A plan is either returned whole (promoted to ``MealPlan``) or the request
fails with a typed ``MealPlanError``; partial plans are never returned.
"""

import json
import sys
import time
from typing import Any, Callable, Dict, List, Optional, Tuple

from pydantic import ValidationError

from chunked_generation import ChunkedPlanOrchestrator, SegmentGenerator
from errors import (
    IncompletePlanError,
    MealPlanError,
    SafetyViolationError,
    ValidationExhaustedError,
)
from generation_client import GenerateFn, LLMGenerationClient
from llm_config import GenerationBudget
from observability import log_data_structure, log_workflow, setup_structured_logger
from plan_validator import apply_leniency, validate_plan
from retry_utils import Deadline, run_with_retries
from schemas import MealPlan, PlanRequest, ValidationResult
from validation_config import LeniencyPolicy

logger = setup_structured_logger("mealplan.generator")

MAX_VALIDATION_NOTES = 50


class MealPlanGenerator:
    """Runs the full generation pipeline for one request at a time.

    The generation callable is injected (an ``LLMGenerationClient`` from the
    environment when omitted); nothing is shared between requests.
    """

    def __init__(
        self,
        generate: Optional[GenerateFn] = None,
        budget: Optional[GenerationBudget] = None,
        policy: Optional[LeniencyPolicy] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.generate = generate if generate is not None else LLMGenerationClient.from_env()
        self.budget = budget or GenerationBudget.from_env()
        self.policy = policy or LeniencyPolicy.from_env()
        self.sleep = sleep
        self.clock = clock

    # ------------------------------------------------------------------
    # Single attempt
    # ------------------------------------------------------------------

    def _produce(
        self, request: PlanRequest, target_calories: int, deadline: Deadline
    ) -> Tuple[Dict[str, Any], ValidationResult]:
        if request.duration > self.budget.chunk_threshold_days:
            orchestrator = ChunkedPlanOrchestrator(self.generate, self.budget)
            plan = orchestrator.generate(request, target_calories, deadline)
            result = validate_plan(plan, request.profile, target_calories, request.plan_type)
            return plan, result

        segment = SegmentGenerator(
            self.generate, request, target_calories, self.budget
        ).generate_segment(1, request.duration, deadline)
        return segment.plan, segment.result

    def _gate(self, plan: Dict[str, Any], result: ValidationResult) -> List[str]:
        """Apply the leniency gate; returns validation notes for accepted issues.

        Raises:
            SafetyViolationError: Allergen/religious violations remain
            ValidationExhaustedError: Other critical violations outside leniency
        """
        outcome = apply_leniency(result.violations, self.policy)
        if outcome.safety_blocking:
            raise SafetyViolationError(
                f"{len(outcome.safety_blocking)} allergen/religious violation(s) could not be repaired",
                outcome.safety_blocking,
            )
        if outcome.blocking:
            codes = sorted({v.code for v in outcome.blocking})
            raise ValidationExhaustedError(
                f"{len(outcome.blocking)} critical violation(s) remain after repair: {', '.join(codes)}",
                outcome.blocking,
            )

        notes = [f"Accepted within tolerance: {v.message}" for v in outcome.accepted]
        notes.extend(v.message for v in result.warnings)
        if outcome.accepted:
            print(
                f"   ⚖️  Leniency gate accepted {len(outcome.accepted)} violation(s)",
                file=sys.stderr,
            )
        return notes[:MAX_VALIDATION_NOTES]

    def _attempt(
        self, request: PlanRequest, target_calories: int, deadline: Deadline, attempt: int
    ) -> Tuple[Dict[str, Any], List[str]]:
        with log_workflow(
            logger,
            "generation_attempt",
            attempt=attempt + 1,
            plan_type=request.plan_type,
            duration=request.duration,
        ):
            plan, result = self._produce(request, target_calories, deadline)
            delivered = len(plan.get("days") or [])
            if delivered != request.duration:
                raise IncompletePlanError(
                    f"Plan has {delivered} days, expected {request.duration}",
                    expected_days=request.duration,
                    delivered_days=delivered,
                )
            log_data_structure(
                logger,
                "Validation result",
                {
                    "passed": result.passed,
                    "critical": [v.code for v in result.critical],
                    "warnings": len(result.warnings),
                },
            )
            return plan, self._gate(plan, result)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def generate_plan(self, request: PlanRequest) -> MealPlan:
        """Generate a validated plan for ``request``.

        Args:
            request: Validated plan request (duration/target already filled)

        Returns:
            MealPlan with ``validation_notes`` listing leniency acceptances

        Raises:
            MealPlanError: Typed failure (see errors.py)
        """
        target_calories = int(request.target_calories)
        deadline = Deadline(self.budget.total_for(request.plan_type), clock=self.clock)
        print(
            f"\n🍽️  Generating {request.plan_type} meal plan: {request.duration} day(s), "
            f"{target_calories} kcal/day, budget {deadline.budget:.0f}s\n",
            file=sys.stderr,
        )

        with log_workflow(
            logger,
            "generate_meal_plan",
            plan_type=request.plan_type,
            duration=request.duration,
            target_calories=target_calories,
        ):
            plan, notes = run_with_retries(
                lambda attempt: self._attempt(request, target_calories, deadline, attempt),
                deadline,
                max_retries=self.budget.max_retries,
                sleep=self.sleep,
                label="meal plan generation",
                safety_reserve=self.budget.backoff_reserve_seconds,
                min_delay=self.budget.min_delay_seconds,
            )

            document = dict(plan, validationNotes=notes)
            try:
                meal_plan = MealPlan.model_validate(document)
            except ValidationError as exc:
                raise ValidationExhaustedError(
                    f"Plan passed validation but does not match the plan schema: "
                    f"{exc.error_count()} error(s)"
                ) from exc

        print(
            f"✅ Meal plan ready: {len(meal_plan.days)} day(s), "
            f"{len(meal_plan.validation_notes)} note(s), {deadline.remaining():.0f}s left\n",
            file=sys.stderr,
        )
        return meal_plan


def generate_meal_plan(
    request: PlanRequest,
    generate: Optional[GenerateFn] = None,
    budget: Optional[GenerationBudget] = None,
    policy: Optional[LeniencyPolicy] = None,
) -> MealPlan:
    """Generate a meal plan (module-level convenience wrapper).

    Args:
        request: Plan request
        generate: Generation callable; defaults to LLMGenerationClient.from_env()
        budget: Time/attempt budget; defaults to GenerationBudget.from_env()
        policy: Leniency policy; defaults to LeniencyPolicy.from_env()

    Returns:
        Validated MealPlan

    Raises:
        MealPlanError: Typed failure
    """
    return MealPlanGenerator(generate=generate, budget=budget, policy=policy).generate_plan(request)


def main() -> None:
    """Read a plan request as JSON on stdin, write the plan (or error) as JSON on stdout."""
    input_data = sys.stdin.read()
    try:
        payload = json.loads(input_data)
        if isinstance(payload, list) and payload:
            payload = payload[0]
        request = PlanRequest.model_validate(payload)
        meal_plan = generate_meal_plan(request)
        print(json.dumps(meal_plan.to_document(), indent=2, ensure_ascii=False))
    except MealPlanError as exc:
        print(f"\n❌ Error: {exc}\n", file=sys.stderr)
        print(json.dumps(exc.to_dict(), indent=2, default=str))
        sys.exit(1)
    except (json.JSONDecodeError, ValidationError) as exc:
        print(f"\n❌ Invalid request: {exc}\n", file=sys.stderr)
        print(json.dumps({"error": "config_error", "message": str(exc)}, indent=2))
        sys.exit(1)


if __name__ == "__main__":
    main()
