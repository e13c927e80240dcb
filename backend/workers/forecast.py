"""
Forecast Runtime Workers — run forecasts as engine tasks and publish their results.

Flow:
  run_forecast        validate, persist Forecast (status=running), create task, start it
  task steps          validate → generate_series → compute_risk → publish
  completing tick     replace series/results, status=ready (same transaction as task success)
  failing tick        status=failed (same transaction as task failure)
  on success          notify for high/critical wells
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date
from functools import partial
from typing import Any

import structlog

from alerts.notifications import NotificationSink, build_notification
from core.config import get_settings
from core.errors import InvalidInputError, NotFoundError
from db.audit import record_audit
from db.models import (
    Forecast,
    ForecastModel,
    ForecastSeriesPoint,
    ForecastWellResult,
    Task,
    Well,
    generate_id,
    utcnow,
)
from db.store import DocumentStore, StoreTransaction
from forecasting.generator import ForecastOutput, WellResult, generate_forecast
from forecasting.risk import confidence_from_quality, is_elevated
from workers.task_engine import TaskEngine, TaskHandle

logger = structlog.get_logger()

FORECAST_STEPS = ["validate", "generate_series", "compute_risk", "publish"]
DEFAULT_MODEL_METRICS = {"rmse": 2.0, "mae": 1.4, "r2": 0.78, "nse": 0.62}


@dataclass
class ForecastRun:
    forecast_id: str
    task: Task
    handle: TaskHandle


def _series_start() -> date:
    return utcnow().date().replace(day=1)


def _series_rows(forecast_id: str, output: ForecastOutput) -> list[ForecastSeriesPoint]:
    return [
        ForecastSeriesPoint(
            id=f"fcs_{forecast_id}_{point.well_id}_{point.month_offset}",
            forecast_id=forecast_id,
            well_id=point.well_id,
            month_offset=point.month_offset,
            date=point.date,
            p10=point.p10,
            p50=point.p50,
            p90=point.p90,
        )
        for point in output.series_points
    ]


def _result_rows(forecast_id: str, output: ForecastOutput) -> list[ForecastWellResult]:
    return [
        ForecastWellResult(
            forecast_id=forecast_id,
            well_id=result.well_id,
            well_code=result.well_code,
            p50_final_level=result.p50_final_level,
            prob_cross_threshold=result.prob_cross_threshold,
            expected_drop_rate=result.expected_drop_rate,
            risk_level=result.risk_level,
        )
        for result in output.well_results
    ]


async def run_forecast(
    store: DocumentStore,
    engine: TaskEngine,
    sink: NotificationSink,
    *,
    user: dict,
    model_id: str,
    well_ids: list[str],
    horizon_months: int,
    scenario_id: str | None = None,
    series_start: date | None = None,
) -> ForecastRun:
    """
    Request a forecast. Returns as soon as the task is queued and its driver
    started; poll the task to follow progress.
    """
    settings = get_settings()
    org_id = user["org_id"]
    if not settings.forecast_min_horizon_months <= horizon_months <= settings.forecast_max_horizon_months:
        raise InvalidInputError(
            f"horizon_months must be between {settings.forecast_min_horizon_months} "
            f"and {settings.forecast_max_horizon_months}"
        )

    forecast_id = generate_id("fc")
    async with store.transaction() as tx:
        model = await tx.find(ForecastModel, ForecastModel.id == model_id, ForecastModel.org_id == org_id)
        if model is None:
            raise NotFoundError("Model not found")

        wells = await tx.find_all(Well, Well.org_id == org_id, Well.id.in_(well_ids), order_by=Well.code)
        if not wells:
            raise NotFoundError("No wells selected")

        forecast = Forecast(
            id=forecast_id,
            org_id=org_id,
            scenario_id=scenario_id,
            model_id=model.id,
            well_ids=[w.id for w in wells],
            horizon_months=horizon_months,
            status="running",
            confidence=confidence_from_quality(w.data_quality_score for w in wells),
            created_by_user_id=user["sub"],
            created_at=utcnow(),
        )
        tx.add(forecast)
        await record_audit(
            tx,
            org_id=org_id,
            user=user,
            action="forecast.run.requested",
            entity="forecast",
            entity_id=forecast_id,
            payload={
                "scenario_id": scenario_id,
                "model_id": model_id,
                "well_ids": well_ids,
                "horizon_months": horizon_months,
            },
        )

    task = await engine.create_task(org_id, "forecast_run", FORECAST_STEPS, result={"forecast_id": forecast_id})
    async with store.transaction() as tx:
        stored = await tx.find(Forecast, Forecast.id == forecast_id)
        stored.task_id = task.id

    logger.info(
        "forecast_run.requested",
        forecast_id=forecast_id,
        task_id=task.id,
        org_id=org_id,
        wells=len(wells),
        horizon_months=horizon_months,
    )
    handle = engine.run(
        task.id,
        on_complete=partial(_publish_on_completion, forecast_id=forecast_id, series_start=series_start),
        on_abort=partial(_fail_on_abort, forecast_id=forecast_id),
        on_success=partial(_notify_on_success, store, sink, forecast_id=forecast_id, user_id=user["sub"]),
        on_fail=partial(_log_task_failure, forecast_id=forecast_id),
    )
    return ForecastRun(forecast_id=forecast_id, task=task, handle=handle)


async def _publish_on_completion(
    tx: StoreTransaction, task: Task, *, forecast_id: str, series_start: date | None
) -> None:
    forecast = await tx.find(Forecast, Forecast.id == forecast_id)
    if forecast is None:
        raise NotFoundError("Forecast not found")
    await write_forecast_outputs(tx, forecast, series_start=series_start)


async def _fail_on_abort(tx: StoreTransaction, task: Task, message: str, *, forecast_id: str) -> None:
    await mark_forecast_failed(tx, forecast_id)


async def _notify_on_success(
    store: DocumentStore, sink: NotificationSink, task: Task, *, forecast_id: str, user_id: str
) -> None:
    results = await store.find_all(
        ForecastWellResult,
        ForecastWellResult.forecast_id == forecast_id,
        order_by=ForecastWellResult.well_code,
    )
    await notify_elevated_wells(sink, org_id=task.org_id, user_id=user_id, forecast_id=forecast_id, results=results)


def _log_task_failure(task: Task, message: str, *, forecast_id: str) -> None:
    logger.warning("forecast_run.task_failed", forecast_id=forecast_id, task_id=task.id, error=message)


async def mark_forecast_failed(tx: StoreTransaction, forecast_id: str) -> None:
    forecast = await tx.find(Forecast, Forecast.id == forecast_id)
    if forecast is not None:
        forecast.status = "failed"


async def write_forecast_outputs(
    tx: StoreTransaction, forecast: Forecast, *, series_start: date | None = None
) -> ForecastOutput:
    """
    Generate a forecast's series and per-well results inside ``tx`` and mark it ready.

    Prior rows for the same forecast id are replaced, never appended to, so a
    rerun leaves exactly one row per (well, month).
    """
    settings = get_settings()
    wells = await tx.find_all(
        Well,
        Well.org_id == forecast.org_id,
        Well.id.in_(forecast.well_ids),
        order_by=Well.code,
    )
    output = generate_forecast(
        wells,
        forecast.horizon_months,
        start=series_start or _series_start(),
        default_level_m=settings.default_gw_level_m,
    )
    await tx.replace_collection(
        ForecastSeriesPoint,
        [ForecastSeriesPoint.forecast_id == forecast.id],
        _series_rows(forecast.id, output),
    )
    await tx.replace_collection(
        ForecastWellResult,
        [ForecastWellResult.forecast_id == forecast.id],
        _result_rows(forecast.id, output),
    )
    forecast.status = "ready"
    logger.info(
        "forecast_run.published",
        forecast_id=forecast.id,
        series_points=len(output.series_points),
        well_results=len(output.well_results),
    )
    return output


async def notify_elevated_wells(
    sink: NotificationSink,
    *,
    org_id: str,
    user_id: str,
    forecast_id: str,
    results: Iterable[WellResult | ForecastWellResult],
) -> int:
    """One notification per high/critical well; returns how many were sent."""
    sent = 0
    for result in results:
        if not is_elevated(result.risk_level):
            continue
        critical = result.risk_level == "critical"
        await sink.emit(
            build_notification(
                org_id=org_id,
                user_id=user_id,
                title="Critical forecast alert" if critical else "Forecast alert",
                body=(
                    f"{result.well_code}: probability of crossing the threshold "
                    f"{result.prob_cross_threshold * 100:.0f}%"
                ),
                severity="critical" if critical else "warning",
                related_entity="forecast",
                related_entity_id=forecast_id,
            )
        )
        sent += 1
    return sent


async def publish_forecast(
    store: DocumentStore,
    sink: NotificationSink,
    forecast_id: str,
    *,
    user_id: str,
    series_start: date | None = None,
) -> ForecastOutput | None:
    """Regenerate a stored forecast outside the task flow, then notify."""
    async with store.transaction() as tx:
        forecast = await tx.find(Forecast, Forecast.id == forecast_id)
        if forecast is None:
            logger.warning("forecast_run.forecast_missing", forecast_id=forecast_id)
            return None
        output = await write_forecast_outputs(tx, forecast, series_start=series_start)
        org_id = forecast.org_id

    # Notifications go out only once the rows are committed.
    await notify_elevated_wells(
        sink, org_id=org_id, user_id=user_id, forecast_id=forecast_id, results=output.well_results
    )
    return output


# ──────────────────────────────────────────────────────────────────────────
# Reads
# ──────────────────────────────────────────────────────────────────────────


async def get_forecast(store: DocumentStore, *, forecast_id: str, org_id: str) -> Forecast:
    forecast = await store.find(Forecast, Forecast.id == forecast_id, Forecast.org_id == org_id)
    if forecast is None:
        raise NotFoundError("Forecast not found")
    return forecast


async def list_forecasts(store: DocumentStore, *, org_id: str, skip: int = 0, limit: int = 50) -> list[Forecast]:
    return await store.find_all(
        Forecast, Forecast.org_id == org_id, order_by=Forecast.created_at.desc(), offset=skip, limit=limit
    )


async def get_forecast_series(store: DocumentStore, *, forecast_id: str, well_id: str, org_id: str) -> dict[str, Any]:
    async with store.snapshot() as tx:
        forecast = await tx.find(Forecast, Forecast.id == forecast_id, Forecast.org_id == org_id)
        if forecast is None:
            raise NotFoundError("Forecast not found")
        if well_id not in (forecast.well_ids or []):
            raise NotFoundError("Well not in forecast")

        points = await tx.find_all(
            ForecastSeriesPoint,
            ForecastSeriesPoint.forecast_id == forecast_id,
            ForecastSeriesPoint.well_id == well_id,
            order_by=ForecastSeriesPoint.month_offset,
        )
        model = await tx.find(ForecastModel, ForecastModel.id == forecast.model_id)

    return {
        "meta": {
            "forecast_id": forecast.id,
            "well_id": well_id,
            "scenario": forecast.scenario_id or "baseline",
            "model": model.name if model else forecast.model_id,
            "unit": "m",
        },
        "series": [{"date": p.date.isoformat(), "p10": p.p10, "p50": p.p50, "p90": p.p90} for p in points],
        "metrics": (model.metrics if model and model.metrics else DEFAULT_MODEL_METRICS),
        "confidence": forecast.confidence,
    }


async def get_forecast_results(store: DocumentStore, *, forecast_id: str, org_id: str) -> list[ForecastWellResult]:
    async with store.snapshot() as tx:
        forecast = await tx.find(Forecast, Forecast.id == forecast_id, Forecast.org_id == org_id)
        if forecast is None:
            raise NotFoundError("Forecast not found")
        return await tx.find_all(
            ForecastWellResult,
            ForecastWellResult.forecast_id == forecast_id,
            order_by=ForecastWellResult.well_code,
        )
