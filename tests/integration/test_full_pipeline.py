"""Integration tests for the complete generate -> validate -> repair -> gate pipeline.

Generation is scripted; everything downstream of the generation call runs for real.
"""
import io
import json
from types import SimpleNamespace

import httpx
import pytest
from fastapi.testclient import TestClient

import meal_plan_generator
import server
from errors import GenerationError, GenerationErrorKind, SafetyViolationError, ValidationExhaustedError
from llm_config import GenerationBudget
from meal_plan_generator import MealPlanGenerator
from schemas import PlanRequest
from tests.fixtures.plans import TARGET_CALORIES, make_plan, with_snack_calories
from validation_config import LeniencyPolicy


def _generator(generate, fake_clock):
    return MealPlanGenerator(
        generate=generate,
        budget=GenerationBudget(),
        policy=LeniencyPolicy(),
        sleep=fake_clock.sleep,
        clock=fake_clock,
    )


def _peanut_plan():
    plan = make_plan()
    plan["days"][0]["meals"]["lunch"]["ingredients"].append("2 tbsp peanut butter")
    return plan


@pytest.mark.priority_medium
@pytest.mark.integration
class TestFullPipeline:
    """MealPlanGenerator end to end."""

    @pytest.mark.timeout(30)
    def test_daily_plan(self, daily_request, scripted_generator, fake_clock):
        generator = scripted_generator([json.dumps(make_plan())])

        meal_plan = _generator(generator, fake_clock).generate_plan(daily_request)

        document = meal_plan.to_document()
        assert [d["day"] for d in document["days"]] == [1]
        assert document["overview"]["type"] == "daily"
        assert "150 g tofu" in document["groceryList"]["protein"]
        assert generator.calls == 1
        assert fake_clock.sleeps == []

    @pytest.mark.timeout(30)
    def test_fenced_output_with_commentary(self, daily_request, scripted_generator, fake_clock):
        text = "Here is the plan you asked for:\n```json\n" + json.dumps(make_plan(), indent=2) + "\n```"

        meal_plan = _generator(scripted_generator([text]), fake_clock).generate_plan(daily_request)

        assert len(meal_plan.days) == 1

    @pytest.mark.timeout(30)
    def test_small_calorie_miss_is_accepted_with_note(self, daily_request, scripted_generator, fake_clock):
        generator = scripted_generator([json.dumps(with_snack_calories(make_plan(), 250))])

        meal_plan = _generator(generator, fake_clock).generate_plan(daily_request)

        assert any(note.startswith("Accepted within tolerance") for note in meal_plan.validation_notes)
        # one generation plus the repair rounds that could not improve the plan
        assert generator.calls == 1 + GenerationBudget().max_repair_attempts

    @pytest.mark.timeout(30)
    def test_unparseable_output_is_retried(self, daily_request, scripted_generator, fake_clock):
        generator = scripted_generator(["Sorry, something went wrong.", json.dumps(make_plan())])

        meal_plan = _generator(generator, fake_clock).generate_plan(daily_request)

        assert len(meal_plan.days) == 1
        assert generator.calls == 2
        assert len(fake_clock.sleeps) == 1

    @pytest.mark.timeout(30)
    def test_rate_limit_then_success(self, daily_request, scripted_generator, fake_clock):
        generator = scripted_generator(
            [GenerationError("slow down", GenerationErrorKind.RATE_LIMIT, 429), json.dumps(make_plan())]
        )

        _generator(generator, fake_clock).generate_plan(daily_request)

        assert generator.calls == 2

    @pytest.mark.timeout(30)
    def test_allergen_that_survives_repair_fails_the_request(
        self, peanut_allergy_profile, scripted_generator, fake_clock
    ):
        request = PlanRequest(planType="daily", targetCalories=TARGET_CALORIES, profile=peanut_allergy_profile)
        generator = scripted_generator([json.dumps(_peanut_plan())])

        with pytest.raises(SafetyViolationError) as exc_info:
            _generator(generator, fake_clock).generate_plan(request)

        assert {v.code for v in exc_info.value.violations} == {"ALLERGEN_VIOLATION"}
        assert fake_clock.sleeps == []

    @pytest.mark.timeout(30)
    def test_allergen_repaired_in_one_round(self, peanut_allergy_profile, scripted_generator, fake_clock):
        request = PlanRequest(planType="daily", targetCalories=TARGET_CALORIES, profile=peanut_allergy_profile)
        generator = scripted_generator([json.dumps(_peanut_plan()), json.dumps(make_plan())])

        meal_plan = _generator(generator, fake_clock).generate_plan(request)

        lunch = meal_plan.days[0].meals.lunch
        assert all("peanut" not in ingredient for ingredient in lunch.ingredients)
        assert generator.calls == 2

    @pytest.mark.timeout(30)
    def test_calorie_only_failure_is_retried_then_raised(self, daily_request, scripted_generator, fake_clock):
        generator = scripted_generator([json.dumps(with_snack_calories(make_plan(), 420))])

        with pytest.raises(ValidationExhaustedError) as exc_info:
            _generator(generator, fake_clock).generate_plan(daily_request)

        assert exc_info.value.calorie_only
        assert len(fake_clock.sleeps) == GenerationBudget().max_retries

    @pytest.mark.timeout(60)
    def test_monthly_plan_in_windows(self, monthly_request, range_generator, fake_clock):
        generator = range_generator()

        meal_plan = _generator(generator, fake_clock).generate_plan(monthly_request)

        document = meal_plan.to_document()
        assert generator.ranges == [(1, 10), (11, 20), (21, 30)]
        assert [d["day"] for d in document["days"]] == list(range(1, 31))
        assert document["overview"]["duration"] == 30
        assert "4 kg 500 g tofu" in document["groceryList"]["protein"]

    @pytest.mark.timeout(60)
    def test_monthly_plan_with_short_window(self, monthly_request, range_generator, fake_clock):
        generator = range_generator(short_ranges={(21, 30): 8})

        meal_plan = _generator(generator, fake_clock).generate_plan(monthly_request)

        assert generator.ranges[-2:] == [(21, 25), (26, 30)]
        assert [d.day for d in meal_plan.days] == list(range(1, 31))

    @pytest.mark.timeout(60)
    def test_monthly_rate_limit_backs_off_and_retries(
        self, monthly_request, range_generator, scripted_generator, fake_clock
    ):
        ranges = range_generator()
        busy = GenerationError("slow down", GenerationErrorKind.RATE_LIMIT, 429)
        generator = scripted_generator([busy, busy, lambda prompt: ranges(prompt, 0)])

        meal_plan = _generator(generator, fake_clock).generate_plan(monthly_request)

        assert len(fake_clock.sleeps) == 2
        assert ranges.ranges == [(1, 10), (11, 20), (21, 30)]
        assert [d.day for d in meal_plan.days] == list(range(1, 31))

    @pytest.mark.timeout(30)
    def test_short_repair_answer_never_replaces_the_week(self, profile, scripted_generator, fake_clock):
        request = PlanRequest(planType="weekly", targetCalories=TARGET_CALORIES, profile=profile)
        generator = scripted_generator(
            [
                json.dumps(with_snack_calories(make_plan(days=7, plan_type="weekly"), 600)),
                json.dumps(make_plan()),
                json.dumps(make_plan(days=7, plan_type="weekly")),
            ]
        )

        meal_plan = _generator(generator, fake_clock).generate_plan(request)

        assert [d.day for d in meal_plan.days] == list(range(1, 8))
        assert meal_plan.overview.duration == 7
        assert generator.calls == 3

    @pytest.mark.timeout(30)
    def test_short_repair_answers_fail_the_week(self, profile, scripted_generator, fake_clock):
        request = PlanRequest(planType="weekly", targetCalories=TARGET_CALORIES, profile=profile)
        week = json.dumps(with_snack_calories(make_plan(days=7, plan_type="weekly"), 600))
        one_day = json.dumps(make_plan())
        # generation prompts get the failing week, repair prompts a single valid day
        generator = scripted_generator([lambda prompt: week if "covering days" in prompt else one_day])

        with pytest.raises(ValidationExhaustedError) as exc_info:
            _generator(generator, fake_clock).generate_plan(request)

        assert exc_info.value.calorie_only
        assert len(fake_clock.sleeps) == GenerationBudget().max_retries


# =============================================================================
# HTTP layer
# =============================================================================


class _CallbackRecorder:
    """Stands in for httpx.AsyncClient; records callback POSTs."""

    posts = []

    def __init__(self, *args, **kwargs):
        pass

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        return False

    async def post(self, url, json=None):
        self.posts.append((url, json))
        return SimpleNamespace(status_code=200)


@pytest.fixture
def api(monkeypatch, scripted_generator):
    """TestClient whose generator replays ``api.responses``."""
    state = SimpleNamespace(responses=[json.dumps(make_plan())])

    def build():
        return MealPlanGenerator(
            generate=scripted_generator(state.responses),
            budget=GenerationBudget(),
            policy=LeniencyPolicy(),
            sleep=lambda seconds: None,
        )

    monkeypatch.setattr(server, "_build_generator", build)
    monkeypatch.setattr(httpx, "AsyncClient", _CallbackRecorder)
    _CallbackRecorder.posts = []
    state.client = TestClient(server.app)
    return state


@pytest.mark.priority_medium
@pytest.mark.integration
class TestServer:
    """REST endpoints around the pipeline."""

    @pytest.mark.timeout(30)
    def test_health(self, api):
        assert api.client.get("/health").json() == {"status": "ok"}

    @pytest.mark.timeout(30)
    def test_meal_plan(self, api):
        response = api.client.post(
            "/meal-plan", json={"planType": "daily", "targetCalories": TARGET_CALORIES, "profile": {"goal": "maintain"}}
        )

        assert response.status_code == 200
        body = response.json()
        assert body["overview"]["duration"] == 1
        assert body["validationNotes"] == []

    @pytest.mark.timeout(30)
    def test_invalid_request(self, api):
        response = api.client.post("/meal-plan", json={"planType": "yearly"})
        assert response.status_code == 422

    @pytest.mark.timeout(30)
    def test_generation_failure_maps_to_502(self, api):
        api.responses = [GenerationError("bad key", GenerationErrorKind.AUTH, 401)]

        response = api.client.post("/meal-plan", json={"planType": "daily", "targetCalories": TARGET_CALORIES})

        assert response.status_code == 502
        assert response.json() == {
            "error": "generation_error",
            "message": "bad key",
            "error_kind": "auth",
            "status_code": 401,
        }

    @pytest.mark.timeout(30)
    def test_safety_failure_maps_to_422(self, api):
        api.responses = [json.dumps(_peanut_plan())]

        response = api.client.post(
            "/meal-plan",
            json={"planType": "daily", "targetCalories": TARGET_CALORIES, "profile": {"allergies": "peanuts"}},
        )

        assert response.status_code == 422
        assert response.json()["error"] == "safety_violation"

    @pytest.mark.timeout(30)
    def test_async_job_and_callback(self, api):
        response = api.client.post(
            "/meal-plan-async",
            json={
                "planType": "daily",
                "targetCalories": TARGET_CALORIES,
                "callback_url": "http://callback.test/plans",
                "request_id": "req-42",
            },
        )

        assert response.status_code == 202
        job_id = response.json()["job_id"]
        status = api.client.get(f"/meal-plan-status/{job_id}").json()
        assert status["status"] == "completed"
        assert status["has_result"] is True
        ((url, payload),) = _CallbackRecorder.posts
        assert url == "http://callback.test/plans"
        assert payload["request_id"] == "req-42"
        assert payload["plan"]["overview"]["type"] == "daily"

    @pytest.mark.timeout(30)
    def test_unknown_job(self, api):
        assert api.client.get("/meal-plan-status/missing").status_code == 404


@pytest.mark.integration
class TestCommandLine:
    """JSON in on stdin, JSON out on stdout."""

    def test_plan_written_to_stdout(self, monkeypatch, capsys, scripted_generator):
        def fake_generate(request, generate=None, budget=None, policy=None):
            return MealPlanGenerator(
                generate=scripted_generator([json.dumps(make_plan())]),
                budget=GenerationBudget(),
                policy=LeniencyPolicy(),
            ).generate_plan(request)

        monkeypatch.setattr(meal_plan_generator, "generate_meal_plan", fake_generate)
        monkeypatch.setattr("sys.stdin", io.StringIO(json.dumps([{"planType": "daily", "targetCalories": 2000}])))

        meal_plan_generator.main()

        document = json.loads(capsys.readouterr().out)
        assert document["overview"]["type"] == "daily"

    def test_invalid_json(self, monkeypatch, capsys):
        monkeypatch.setattr("sys.stdin", io.StringIO("{not json"))

        with pytest.raises(SystemExit) as exc_info:
            meal_plan_generator.main()

        assert exc_info.value.code == 1
        assert json.loads(capsys.readouterr().out)["error"] == "config_error"
