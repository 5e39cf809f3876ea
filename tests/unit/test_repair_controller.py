"""Unit tests for the targeted repair loop."""
import json

import pytest

from errors import GenerationError, GenerationErrorKind
from grocery_aggregator import refresh_grocery_list
from plan_validator import validate_plan
from repair_controller import RepairController
from retry_utils import Deadline
from tests.fixtures.plans import TARGET_CALORIES, make_plan, with_snack_calories


def _broken_plan():
    """Passes everything except an 80 kcal calorie overshoot."""
    return refresh_grocery_list(with_snack_calories(make_plan(), 300))


@pytest.fixture
def allergen_plan():
    plan = make_plan()
    plan["days"][0]["meals"]["lunch"]["ingredients"].append("2 tbsp peanut butter")
    return refresh_grocery_list(plan)


@pytest.mark.priority_high
@pytest.mark.unit
class TestRepairUntilValid:
    """Bounded rounds keeping the best-ranked plan."""

    def test_passing_plan_is_not_repaired(self, valid_plan, profile, scripted_generator, fake_clock):
        generator = scripted_generator(["{}"])
        result = validate_plan(refresh_grocery_list(valid_plan), profile, TARGET_CALORIES)
        controller = RepairController(generator)

        outcome = controller.repair_until_valid(
            valid_plan, result, profile, TARGET_CALORIES, Deadline(60, clock=fake_clock)
        )

        assert outcome.passed
        assert outcome.attempts == 0
        assert generator.calls == 0

    def test_allergen_is_repaired(self, allergen_plan, peanut_allergy_profile, scripted_generator, fake_clock):
        result = validate_plan(allergen_plan, peanut_allergy_profile, TARGET_CALORIES)
        generator = scripted_generator([json.dumps(make_plan())])
        controller = RepairController(generator)

        outcome = controller.repair_until_valid(
            allergen_plan, result, peanut_allergy_profile, TARGET_CALORIES, Deadline(60, clock=fake_clock)
        )

        assert outcome.passed
        assert outcome.attempts == 1
        assert outcome.history == [1, 0]
        prompt = generator.prompts[0]
        assert "[ALLERGEN_VIOLATION]" in prompt
        assert "days[0].meals.lunch.ingredients[5]" in prompt
        assert "Allergies (MUST EXCLUDE): peanuts" in prompt

    def test_worse_candidate_is_discarded(self, allergen_plan, peanut_allergy_profile, scripted_generator, fake_clock):
        worse = make_plan()
        worse["days"][0]["meals"]["dinner"]["ingredients"].append("1 tbsp peanut oil")
        worse["days"][0]["meals"]["breakfast"]["ingredients"].append("1 tbsp peanuts")
        result = validate_plan(allergen_plan, peanut_allergy_profile, TARGET_CALORIES)
        controller = RepairController(scripted_generator([json.dumps(worse)]), max_attempts=2)

        outcome = controller.repair_until_valid(
            allergen_plan, result, peanut_allergy_profile, TARGET_CALORIES, Deadline(60, clock=fake_clock)
        )

        assert outcome.plan is allergen_plan
        assert outcome.attempts == 2
        assert outcome.history == [1, 2, 2]
        assert outcome.passed is False

    def test_failed_round_keeps_best_plan(self, allergen_plan, peanut_allergy_profile, scripted_generator, fake_clock):
        result = validate_plan(allergen_plan, peanut_allergy_profile, TARGET_CALORIES)
        generator = scripted_generator(
            [
                GenerationError("busy", GenerationErrorKind.RATE_LIMIT, 429),
                "I could not produce JSON this time",
                json.dumps(make_plan()),
            ]
        )
        controller = RepairController(generator, max_attempts=3)

        outcome = controller.repair_until_valid(
            allergen_plan, result, peanut_allergy_profile, TARGET_CALORIES, Deadline(60, clock=fake_clock)
        )

        assert outcome.passed
        assert outcome.attempts == 3
        assert generator.calls == 3

    def test_stops_when_deadline_is_close(self, profile, scripted_generator, fake_clock):
        plan = _broken_plan()
        result = validate_plan(plan, profile, TARGET_CALORIES)
        generator = scripted_generator([json.dumps(plan)])
        controller = RepairController(generator, max_attempts=3)

        outcome = controller.repair_until_valid(
            plan, result, profile, TARGET_CALORIES, Deadline(4, clock=fake_clock)
        )

        assert generator.calls == 0
        assert outcome.result is result

    def test_repair_without_critical_returns_copy(self, valid_plan, profile, scripted_generator, fake_clock):
        controller = RepairController(scripted_generator(["{}"]))

        repaired = controller.repair(valid_plan, [], profile, TARGET_CALORIES, Deadline(60, clock=fake_clock))

        assert repaired == valid_plan
        assert repaired is not valid_plan

    def test_repair_timeout_comes_from_deadline(self, allergen_plan, peanut_allergy_profile, scripted_generator, fake_clock):
        result = validate_plan(allergen_plan, peanut_allergy_profile, TARGET_CALORIES)
        generator = scripted_generator([json.dumps(make_plan())])
        deadline = Deadline(60, clock=fake_clock)
        fake_clock.advance(15)

        RepairController(generator).repair(
            allergen_plan, result.violations, peanut_allergy_profile, TARGET_CALORIES, deadline
        )

        assert generator.timeouts == [45]

    def test_answer_with_fewer_days_is_discarded(self, profile, scripted_generator, fake_clock):
        plan = refresh_grocery_list(with_snack_calories(make_plan(days=2), 300))
        result = validate_plan(plan, profile, TARGET_CALORIES)
        # a valid one-day plan would otherwise outrank the two failing days
        generator = scripted_generator([json.dumps(make_plan())])
        controller = RepairController(generator, max_attempts=3)

        outcome = controller.repair_until_valid(
            plan, result, profile, TARGET_CALORIES, Deadline(60, clock=fake_clock)
        )

        assert outcome.plan is plan
        assert len(outcome.plan["days"]) == 2
        assert outcome.passed is False
        assert outcome.attempts == 3
        assert outcome.history == [2]

    def test_repaired_overview_keeps_working_targets(self, allergen_plan, peanut_allergy_profile, scripted_generator, fake_clock):
        answer = make_plan(duration=3)
        answer["overview"]["macros"]["protein"] = 90
        result = validate_plan(allergen_plan, peanut_allergy_profile, TARGET_CALORIES)
        controller = RepairController(scripted_generator([json.dumps(answer)]))

        repaired = controller.repair(
            allergen_plan, result.violations, peanut_allergy_profile, TARGET_CALORIES, Deadline(60, clock=fake_clock)
        )

        assert repaired["overview"]["duration"] == 1
        assert repaired["overview"]["macros"] == allergen_plan["overview"]["macros"]
