"""HTTP server exposing meal plan generation as a REST API."""

from __future__ import annotations

import asyncio
import sys
import uuid
from datetime import datetime
from typing import Any, Dict, Optional

import httpx
from fastapi import BackgroundTasks, FastAPI, HTTPException
from fastapi.responses import JSONResponse
from pydantic import Field

from errors import MealPlanError
from meal_plan_generator import MealPlanGenerator
from observability import setup_structured_logger
from schemas import PlanRequest

logger = setup_structured_logger("mealplan.server")

app = FastAPI(
    title="Meal Plan Generator",
    description="Validated daily, weekly and monthly meal plans from a user profile",
)

ERROR_STATUS_CODES: Dict[str, int] = {
    "rate_limited": 429,
    "timeout": 504,
    "validation_exhausted": 422,
    "safety_violation": 422,
    "config_error": 500,
    "parse_error": 502,
    "generation_error": 502,
}


class MealPlanAsyncRequest(PlanRequest):
    """Plan request whose result is POSTed to a callback URL when ready."""

    callback_url: str = Field(
        ...,
        description="URL to POST the finished plan (or error) to",
    )
    request_id: Optional[str] = Field(
        default=None,
        description="Caller-side identifier echoed in the callback payload",
    )


# Simple in-memory job tracking for async generation
# Key: job_id, Value: {"status": str, "started_at": str, "result": Optional[dict]}
_meal_plan_jobs: Dict[str, Dict[str, Any]] = {}


def _build_generator() -> MealPlanGenerator:
    """One generator per request; raises ConfigurationError without credentials."""
    return MealPlanGenerator()


def _run_generation(request: PlanRequest) -> Dict[str, Any]:
    return _build_generator().generate_plan(request).to_document()


def error_response(exc: MealPlanError) -> JSONResponse:
    """Map a typed pipeline error to a JSON error response."""
    return JSONResponse(
        status_code=ERROR_STATUS_CODES.get(exc.kind, 500),
        content=exc.to_dict(),
    )


@app.get("/health")
async def healthcheck() -> Dict[str, str]:
    """Simple readiness probe."""
    return {"status": "ok"}


@app.post("/meal-plan")
async def create_meal_plan(request_body: PlanRequest) -> JSONResponse:
    """
    Generate a meal plan synchronously.

    Args:
        request_body: planType, optional duration/targetCalories and profile

    Returns:
        The validated plan document, or a typed error payload
    """
    print(
        f"\n🍽️  Generating {request_body.plan_type} meal plan "
        f"({request_body.duration} days, {request_body.target_calories} kcal)\n",
        file=sys.stderr,
    )
    loop = asyncio.get_running_loop()
    try:
        # The pipeline is synchronous; keep the event loop free
        result = await loop.run_in_executor(None, _run_generation, request_body)
    except MealPlanError as exc:
        print(f"\n❌ Meal plan generation failed ({exc.kind}): {exc}\n", file=sys.stderr)
        return error_response(exc)

    return JSONResponse(content=result)


async def _run_meal_plan_and_callback(job_id: str, request: MealPlanAsyncRequest) -> None:
    """Background task: Generate meal plan and POST result to callback URL."""
    print(f"\n🚀 [Job {job_id}] Starting async meal plan generation...\n", file=sys.stderr)
    _meal_plan_jobs[job_id]["status"] = "running"

    plan_request = PlanRequest.model_validate(
        request.model_dump(exclude={"callback_url", "request_id"})
    )
    loop = asyncio.get_running_loop()
    try:
        plan = await loop.run_in_executor(None, _run_generation, plan_request)
        result: Dict[str, Any] = {"request_id": request.request_id, "job_id": job_id, "plan": plan}
        _meal_plan_jobs[job_id]["status"] = "completed"
        print(f"\n✅ [Job {job_id}] Meal plan ready. Sending callback...\n", file=sys.stderr)
    except MealPlanError as exc:
        print(f"\n❌ [Job {job_id}] Error ({exc.kind}): {exc}\n", file=sys.stderr)
        result = {"request_id": request.request_id, "job_id": job_id, **exc.to_dict()}
        _meal_plan_jobs[job_id]["status"] = "failed"
    _meal_plan_jobs[job_id]["result"] = result

    try:
        async with httpx.AsyncClient(timeout=30.0) as client:
            response = await client.post(request.callback_url, json=result)
        print(
            f"\n📤 [Job {job_id}] Callback sent to {request.callback_url}: "
            f"HTTP {response.status_code}\n",
            file=sys.stderr,
        )
    except httpx.HTTPError as callback_exc:
        logger.error(
            f"Failed to send callback for job {job_id}: {callback_exc}",
            extra={"extra_fields": {"job_id": job_id, "callback_url": request.callback_url}},
        )


@app.post("/meal-plan-async")
async def create_meal_plan_async(
    request_body: MealPlanAsyncRequest,
    background_tasks: BackgroundTasks,
) -> JSONResponse:
    """
    Start async meal plan generation and return immediately with a job ID.

    The result will be POSTed to the callback_url when complete.

    Args:
        request_body: Plan request plus callback_url (required) and request_id

    Returns:
        Job ID for tracking (the result comes via callback)
    """
    job_id = str(uuid.uuid4())[:8]
    _meal_plan_jobs[job_id] = {
        "status": "pending",
        "started_at": datetime.now().isoformat(),
        "request_id": request_body.request_id,
        "plan_type": request_body.plan_type,
        "duration": request_body.duration,
        "result": None,
    }

    print(
        f"\n🍽️  [Job {job_id}] Queued async {request_body.plan_type} meal plan "
        f"({request_body.duration} days)\n   Callback URL: {request_body.callback_url}\n",
        file=sys.stderr,
    )
    background_tasks.add_task(_run_meal_plan_and_callback, job_id, request_body)

    return JSONResponse(
        status_code=202,
        content={
            "job_id": job_id,
            "request_id": request_body.request_id,
            "status": "accepted",
            "message": "Meal plan generation started. Result will be sent to callback URL.",
        },
    )


@app.get("/meal-plan-status/{job_id}")
async def get_meal_plan_status(job_id: str) -> JSONResponse:
    """
    Check the status of an async meal plan job.

    Args:
        job_id: The job ID returned by /meal-plan-async

    Returns:
        Job status and whether a result is available
    """
    if job_id not in _meal_plan_jobs:
        raise HTTPException(status_code=404, detail=f"Job {job_id} not found")

    job = _meal_plan_jobs[job_id]
    return JSONResponse(
        content={
            "job_id": job_id,
            "status": job["status"],
            "started_at": job["started_at"],
            "request_id": job.get("request_id"),
            "has_result": job["result"] is not None,
        }
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("server:app", host="0.0.0.0", port=8000, reload=False)
