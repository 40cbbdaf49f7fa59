"""HTTP server exposing meal plan generation as a REST API."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

import httpx
from fastapi import BackgroundTasks, FastAPI, HTTPException, Query
from fastapi.exceptions import RequestValidationError
from fastapi.requests import Request
from fastapi.responses import JSONResponse
from pydantic import Field

from errors import (
    AI_PARSE_FAILED,
    AI_PLAN_FAILED,
    AI_PLAN_INFEASIBLE,
    AI_QUOTA_EXCEEDED,
    AI_TIMEOUT,
    NETWORK_ERROR,
    VALIDATION_ERROR,
    NutritionApiError,
)
from meal_planning_pipeline import (
    DEFAULT_USER_ID,
    MealPlanningPipeline,
    WeekGenerationJob,
    build_default_pipeline,
)
from observability import setup_structured_logger
from quality_metrics import QualityThresholds
from schemas import (
    CamelModel,
    DayPlan,
    DietaryPreferences,
    NutritionTargets,
    PlanProfile,
    UserContext,
    WeeklyPlan,
)
from session_store import SESSION_MAX_AGE_SECONDS, SESSION_SWEEP_INTERVAL_SECONDS

logger = logging.getLogger(__name__)

ERROR_STATUS_CODES: Dict[str, int] = {
    VALIDATION_ERROR: 400,
    AI_PLAN_INFEASIBLE: 422,
    AI_PLAN_FAILED: 502,
    AI_PARSE_FAILED: 502,
    AI_TIMEOUT: 504,
    AI_QUOTA_EXCEEDED: 429,
    NETWORK_ERROR: 503,
}
CALLBACK_TIMEOUT_SECONDS = 30.0
# Module loggers that also write JSON lines under LOG_DIR
STRUCTURED_LOGGERS = ("meal_planning_pipeline", "regeneration", "session_store", "quality_metrics")


# ============================================================================
# Request Models
# ============================================================================


class WeekPlanRequest(CamelModel):
    """Request model for weekly meal planning."""

    week_start_date: Optional[str] = Field(
        default=None,
        description="Start date of the week (YYYY-MM-DD). Defaults to next Monday if not provided.",
    )
    targets: NutritionTargets
    user_id: str = DEFAULT_USER_ID
    plan_profile: PlanProfile = "standard"
    user_context: Optional[UserContext] = None
    preferences: Optional[DietaryPreferences] = None
    previous_week: Optional[WeeklyPlan] = None
    config_profile: Optional[str] = None
    callback_url: Optional[str] = Field(
        default=None,
        description="URL to POST the final result to when generation completes",
    )


class DayPlanRequest(CamelModel):
    date: str
    targets: NutritionTargets
    user_id: Optional[str] = None
    plan_profile: PlanProfile = "standard"
    user_context: Optional[UserContext] = None
    preferences: Optional[DietaryPreferences] = None
    config_profile: Optional[str] = None


class RegenerateMealRequest(CamelModel):
    date: str
    day_plan: DayPlan
    meal_index: int
    targets: NutritionTargets
    user_id: Optional[str] = None
    plan_profile: PlanProfile = "standard"
    user_context: Optional[UserContext] = None
    preferences: Optional[DietaryPreferences] = None
    config_profile: Optional[str] = None
    week_start_date: Optional[str] = None


def _calculate_next_monday() -> str:
    """Calculate the date of the next Monday."""
    today = datetime.now()
    days_until_monday = (7 - today.weekday()) % 7
    if days_until_monday == 0:
        days_until_monday = 7  # If today is Monday, get next Monday
    next_monday = today + timedelta(days=days_until_monday)
    return next_monday.strftime("%Y-%m-%d")


def _error_response(error: NutritionApiError) -> JSONResponse:
    return JSONResponse(
        status_code=ERROR_STATUS_CODES.get(error.code, 500),
        content={"error": error.to_dict()},
    )


async def _run_week_and_callback(
    pipeline: MealPlanningPipeline,
    job: WeekGenerationJob,
    callback_url: Optional[str],
) -> None:
    """Background task: run the week, then POST the outcome to the callback URL."""
    response = await asyncio.to_thread(pipeline.run_week_session, job)
    if not callback_url:
        return

    status = job.tracker.status
    payload: Dict[str, Any] = {
        "status": status.model_dump(mode="json", by_alias=True),
        "result": response.model_dump(mode="json", by_alias=True),
    }
    try:
        async with httpx.AsyncClient(timeout=CALLBACK_TIMEOUT_SECONDS) as client:
            callback = await client.post(callback_url, json=payload)
        logger.info("📤 [%s] Callback sent to %s: HTTP %s", job.session_id, callback_url, callback.status_code)
    except httpx.HTTPError as exc:
        logger.error("❌ [%s] Failed to send callback to %s: %s", job.session_id, callback_url, exc)


# ============================================================================
# Application
# ============================================================================


def create_app(pipeline: Optional[MealPlanningPipeline] = None) -> FastAPI:
    """Build the FastAPI app around ``pipeline`` (the production one by default)."""
    pipeline = pipeline or build_default_pipeline()
    for name in STRUCTURED_LOGGERS:
        setup_structured_logger(name)

    async def sweep_sessions() -> None:
        while True:
            await asyncio.sleep(SESSION_SWEEP_INTERVAL_SECONDS)
            pipeline.session_store.sweep(SESSION_MAX_AGE_SECONDS)

    @asynccontextmanager
    async def lifespan(_: FastAPI):
        sweeper = asyncio.create_task(sweep_sessions())
        try:
            yield
        finally:
            sweeper.cancel()
            pipeline.shutdown()

    app = FastAPI(
        title="Meal Plan Generation Service",
        description="AI meal plan generation with deterministic quality control",
        lifespan=lifespan,
    )
    app.state.pipeline = pipeline

    @app.exception_handler(NutritionApiError)
    async def handle_nutrition_error(_: Request, exc: NutritionApiError) -> JSONResponse:
        return _error_response(exc)

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(_: Request, exc: RequestValidationError) -> JSONResponse:
        issues = [
            f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}" for err in exc.errors()
        ]
        return _error_response(
            NutritionApiError(VALIDATION_ERROR, "Invalid request: " + "; ".join(issues), details={"issues": issues})
        )

    @app.get("/health")
    async def healthcheck() -> Dict[str, Any]:
        """Simple readiness probe."""
        return {"status": "ok", "active_sessions": len(pipeline.session_store)}

    @app.post("/meal-plan/week")
    async def generate_week(request_body: WeekPlanRequest, background_tasks: BackgroundTasks) -> JSONResponse:
        """Start weekly generation and return immediately with a session id.

        Poll ``/generation/{session_id}/status`` for progress; when
        ``callback_url`` is set the final result is POSTed there.
        """
        week_start_date = request_body.week_start_date or _calculate_next_monday()
        job = pipeline.open_week_session(
            week_start_date,
            request_body.targets,
            user_context=request_body.user_context,
            plan_profile=request_body.plan_profile,
            user_id=request_body.user_id,
            previous_week=request_body.previous_week,
            config_profile=request_body.config_profile,
            preferences=request_body.preferences,
        )
        background_tasks.add_task(_run_week_and_callback, pipeline, job, request_body.callback_url)

        content = {"sessionId": job.session_id, "weekStartDate": week_start_date}
        if job.carryover.skipped:
            content["skippedLockedMeals"] = [
                skipped.model_dump(by_alias=True) for skipped in job.carryover.skipped
            ]
        return JSONResponse(status_code=202, content=content)

    @app.post("/meal-plan/day")
    def generate_day(request_body: DayPlanRequest) -> Dict[str, Any]:
        day = pipeline.generate_meal_plan_for_day(
            request_body.date,
            request_body.targets,
            user_context=request_body.user_context,
            plan_profile=request_body.plan_profile,
            preferences=request_body.preferences,
            config_profile=request_body.config_profile,
            user_id=request_body.user_id,
        )
        return day.model_dump(by_alias=True)

    @app.post("/meal-plan/regenerate-meal")
    def regenerate_meal(request_body: RegenerateMealRequest) -> Dict[str, Any]:
        day = pipeline.regenerate_meal(
            request_body.date,
            request_body.day_plan,
            request_body.meal_index,
            request_body.targets,
            user_id=request_body.user_id,
            plan_profile=request_body.plan_profile,
            preferences=request_body.preferences,
            user_context=request_body.user_context,
            config_profile=request_body.config_profile,
            week_start_date=request_body.week_start_date,
        )
        return day.model_dump(by_alias=True)

    @app.get("/meal-plan/week/{week_start_date}")
    async def get_week(week_start_date: str, user_id: str = Query(default=DEFAULT_USER_ID)) -> Dict[str, Any]:
        if pipeline.repository is None:
            raise HTTPException(status_code=404, detail="Plan storage is not configured")
        plan = pipeline.repository.get_weekly_plan(user_id, week_start_date)
        if plan is None:
            raise HTTPException(status_code=404, detail=f"No plan for week {week_start_date}")
        return plan.model_dump(by_alias=True)

    @app.get("/generation/{session_id}/status")
    async def get_status(session_id: str) -> Dict[str, Any]:
        status = pipeline.get_generation_status(session_id)
        if status is None:
            raise HTTPException(status_code=404, detail=f"Session {session_id} not found")
        return status.model_dump(by_alias=True)

    @app.delete("/generation/{session_id}")
    async def cancel_generation(session_id: str) -> Dict[str, Any]:
        if not pipeline.cancel_generation(session_id):
            raise HTTPException(status_code=404, detail=f"Session {session_id} not found")
        return {"sessionId": session_id, "cancelled": True}

    @app.get("/metrics")
    async def get_metrics() -> Dict[str, Any]:
        return {
            **pipeline.get_metrics().model_dump(by_alias=True),
            "summaryLine": pipeline.metrics.summary(),
            "violations": pipeline.metrics.quality_violations(QualityThresholds()),
        }

    return app


if __name__ == "__main__":
    import uvicorn

    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    uvicorn.run("server:create_app", factory=True, host="0.0.0.0", port=8000, reload=False)
