"""
Forecasts Router — run forecasts and read their series and per-well results.
"""

from datetime import datetime

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from alerts.notifications import NotificationSink
from api.deps import get_current_user, get_notification_sink, get_store, get_task_engine
from api.v1.routers.tasks import TaskResponse
from db.store import DocumentStore
from workers.forecast import (
    get_forecast,
    get_forecast_results,
    get_forecast_series,
    list_forecasts,
    run_forecast,
)
from workers.task_engine import TaskEngine

router = APIRouter(prefix="/api/v1/forecasts", tags=["forecasts"])


# ─── Schemas ────────────────────────────────────────────────────────────────


class ForecastRunRequest(BaseModel):
    scenario_id: str | None = None
    model_id: str
    well_ids: list[str] = Field(min_length=1)
    horizon_months: int


class ForecastRunResponse(BaseModel):
    forecast_id: str
    task: TaskResponse


class ForecastResponse(BaseModel):
    id: str
    org_id: str
    scenario_id: str | None
    model_id: str
    well_ids: list[str]
    horizon_months: int
    status: str
    confidence: str
    created_by_user_id: str
    task_id: str | None
    created_at: datetime

    model_config = {"from_attributes": True}


class SeriesPointResponse(BaseModel):
    date: str
    p10: float
    p50: float
    p90: float


class SeriesMeta(BaseModel):
    forecast_id: str
    well_id: str
    scenario: str
    model: str
    unit: str


class ForecastSeriesResponse(BaseModel):
    meta: SeriesMeta
    series: list[SeriesPointResponse]
    metrics: dict
    confidence: str


class WellResultResponse(BaseModel):
    forecast_id: str
    well_id: str
    well_code: str
    p50_final_level: float
    prob_cross_threshold: float
    expected_drop_rate: float
    risk_level: str

    model_config = {"from_attributes": True}


class ForecastResultsResponse(BaseModel):
    items: list[WellResultResponse]


# ─── Endpoints ──────────────────────────────────────────────────────────────


@router.post("/run", response_model=ForecastRunResponse)
async def request_forecast_run(
    body: ForecastRunRequest,
    store: DocumentStore = Depends(get_store),
    engine: TaskEngine = Depends(get_task_engine),
    sink: NotificationSink = Depends(get_notification_sink),
    user: dict = Depends(get_current_user),
):
    """Start a forecast run. Returns immediately with the queued task."""
    run = await run_forecast(
        store,
        engine,
        sink,
        user=user,
        model_id=body.model_id,
        well_ids=body.well_ids,
        horizon_months=body.horizon_months,
        scenario_id=body.scenario_id,
    )
    return ForecastRunResponse(forecast_id=run.forecast_id, task=TaskResponse.model_validate(run.task))


@router.get("/", response_model=list[ForecastResponse])
async def list_org_forecasts(
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=100),
    store: DocumentStore = Depends(get_store),
    user: dict = Depends(get_current_user),
):
    """List forecasts, newest first."""
    return await list_forecasts(store, org_id=user["org_id"], skip=skip, limit=limit)


@router.get("/{forecast_id}", response_model=ForecastResponse)
async def read_forecast(
    forecast_id: str,
    store: DocumentStore = Depends(get_store),
    user: dict = Depends(get_current_user),
):
    return await get_forecast(store, forecast_id=forecast_id, org_id=user["org_id"])


@router.get("/{forecast_id}/series", response_model=ForecastSeriesResponse)
async def read_forecast_series(
    forecast_id: str,
    well_id: str,
    store: DocumentStore = Depends(get_store),
    user: dict = Depends(get_current_user),
):
    """Monthly p10/p50/p90 for one well of a forecast (empty until the run completes)."""
    return await get_forecast_series(store, forecast_id=forecast_id, well_id=well_id, org_id=user["org_id"])


@router.get("/{forecast_id}/results", response_model=ForecastResultsResponse)
async def read_forecast_results(
    forecast_id: str,
    store: DocumentStore = Depends(get_store),
    user: dict = Depends(get_current_user),
):
    items = await get_forecast_results(store, forecast_id=forecast_id, org_id=user["org_id"])
    return ForecastResultsResponse(items=[WellResultResponse.model_validate(r) for r in items])
