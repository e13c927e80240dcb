"""
Model Training Workers — register a draft forecast model and train it as an engine task.

Flow:
  train_model         validate, persist ForecastModel (status=draft), create task, start it
  task steps          data_prep → train → validation → package_artifacts
  completing tick     metrics, feature importance and trained_at (same transaction as task success)

Training here is a stand-in: the metrics are drawn from plausible ranges so the
registry, activation and forecast series payloads have something to show.
"""

from __future__ import annotations

from dataclasses import dataclass
from functools import partial

import numpy as np
import structlog

from core.errors import InvalidInputError, NotFoundError
from db.audit import record_audit
from db.models import MODEL_STATUSES, TRAINABLE_MODEL_FAMILIES, ForecastModel, Task, generate_id, utcnow
from db.store import DocumentStore, StoreTransaction
from workers.task_engine import TaskEngine, TaskHandle

logger = structlog.get_logger()

MODEL_TRAIN_STEPS = ["data_prep", "train", "validation", "package_artifacts"]
DRAFT_VERSION = "0.1.0"

# (low, spread, floor, ceiling) per metric: value = clamp(low + u * spread, floor, ceiling)
METRIC_RANGES = {
    "rmse": (1.6, 1.6, 0.7, 5.0),
    "mae": (1.0, 1.3, 0.4, 4.0),
    "r2": (0.72, 0.22, 0.0, 0.99),
    "nse": (0.55, 0.3, -1.0, 0.95),
}

TREE_FEATURE_IMPORTANCE = [
    {"feature": "gw_level_lag_1", "importance": 0.22},
    {"feature": "precip_lag_2", "importance": 0.18},
    {"feature": "tmean", "importance": 0.12},
    {"feature": "seasonality", "importance": 0.08},
]
SEQUENCE_FEATURE_IMPORTANCE = [
    {"feature": "gw_level_lag_1", "importance": 0.24},
    {"feature": "precip_lag_2", "importance": 0.14},
    {"feature": "tmean", "importance": 0.1},
]


@dataclass
class ModelTrainRun:
    model_id: str
    task: Task
    handle: TaskHandle


def draw_training_metrics(rng: np.random.Generator) -> dict[str, float]:
    draws = rng.random(len(METRIC_RANGES))
    return {
        name: round(float(np.clip(low + u * spread, floor, ceiling)), 2)
        for (name, (low, spread, floor, ceiling)), u in zip(METRIC_RANGES.items(), draws)
    }


def feature_importance_for(family: str) -> list[dict]:
    source = SEQUENCE_FEATURE_IMPORTANCE if family == "LSTM" else TREE_FEATURE_IMPORTANCE
    return [dict(item) for item in source]


async def train_model(
    store: DocumentStore,
    engine: TaskEngine,
    *,
    user: dict,
    dataset_ids: list[str],
    family: str,
    target: str = "gw_level",
    include_precip_temp: bool = True,
    include_lag_features: bool = True,
    rng: np.random.Generator | None = None,
) -> ModelTrainRun:
    """
    Register a draft model and start its training task.

    The model stays ``draft`` after training; activation is a separate step.
    """
    if family not in TRAINABLE_MODEL_FAMILIES:
        raise InvalidInputError(f"family must be one of {', '.join(TRAINABLE_MODEL_FAMILIES)}")
    if not dataset_ids:
        raise InvalidInputError("At least one dataset is required")

    org_id = user["org_id"]
    model_id = generate_id("mdl")
    async with store.transaction() as tx:
        tx.add(
            ForecastModel(
                id=model_id,
                org_id=org_id,
                name=f"{family}_demo_{model_id[-4:]}",
                family=family,
                version=DRAFT_VERSION,
                status="draft",
                created_at=utcnow(),
            )
        )
        await record_audit(
            tx,
            org_id=org_id,
            user=user,
            action="model.train.requested",
            entity="model",
            entity_id=model_id,
            payload={
                "dataset_ids": dataset_ids,
                "target": target,
                "family": family,
                "include_precip_temp": include_precip_temp,
                "include_lag_features": include_lag_features,
            },
        )

    task = await engine.create_task(org_id, "model_train", MODEL_TRAIN_STEPS, result={"model_id": model_id})
    logger.info("model_train.requested", model_id=model_id, task_id=task.id, org_id=org_id, family=family)

    handle = engine.run(
        task.id,
        on_complete=partial(
            _record_training_on_completion,
            model_id=model_id,
            rng=rng if rng is not None else np.random.default_rng(),
        ),
        on_fail=partial(_log_task_failure, model_id=model_id),
    )
    return ModelTrainRun(model_id=model_id, task=task, handle=handle)


async def _record_training_on_completion(
    tx: StoreTransaction, task: Task, *, model_id: str, rng: np.random.Generator
) -> None:
    model = await tx.find(ForecastModel, ForecastModel.id == model_id)
    if model is None:
        raise NotFoundError("Model not found")
    model.metrics = draw_training_metrics(rng)
    model.feature_importance = feature_importance_for(model.family)
    model.trained_at = utcnow()
    logger.info("model_train.completed", model_id=model_id, task_id=task.id, rmse=model.metrics["rmse"])


def _log_task_failure(task: Task, message: str, *, model_id: str) -> None:
    logger.warning("model_train.task_failed", model_id=model_id, task_id=task.id, error=message)


# ──────────────────────────────────────────────────────────────────────────
# Registry
# ──────────────────────────────────────────────────────────────────────────


async def list_models(
    store: DocumentStore,
    *,
    org_id: str,
    status: str | None = None,
    search: str | None = None,
    skip: int = 0,
    limit: int = 50,
) -> list[ForecastModel]:
    criteria = [ForecastModel.org_id == org_id]
    if status:
        if status not in MODEL_STATUSES:
            raise InvalidInputError(f"Unknown model status: {status}")
        criteria.append(ForecastModel.status == status)
    if search and search.strip():
        criteria.append(ForecastModel.name.ilike(f"%{search.strip()}%"))
    return await store.find_all(
        ForecastModel, *criteria, order_by=ForecastModel.created_at.desc(), offset=skip, limit=limit
    )


async def get_model(store: DocumentStore, *, model_id: str, org_id: str) -> ForecastModel:
    model = await store.find(ForecastModel, ForecastModel.id == model_id, ForecastModel.org_id == org_id)
    if model is None:
        raise NotFoundError("Model not found")
    return model


async def activate_model(store: DocumentStore, *, model_id: str, org_id: str) -> ForecastModel:
    """Make one model the org's active model; any other active model is archived."""
    async with store.transaction() as tx:
        models = await tx.find_all(ForecastModel, ForecastModel.org_id == org_id)
        target = next((m for m in models if m.id == model_id), None)
        if target is None:
            raise NotFoundError("Model not found")
        archived = []
        for other in models:
            if other.id != target.id and other.status == "active":
                other.status = "archived"
                archived.append(other.id)
        target.status = "active"

    logger.info("model.activated", model_id=model_id, org_id=org_id, archived=len(archived))
    return target
