"""
Models Router — forecast model registry, training runs and activation.
"""

from datetime import datetime
from typing import Literal

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from api.deps import get_current_user, get_store, get_task_engine
from api.v1.routers.tasks import TaskResponse
from db.store import DocumentStore
from workers.model_train import activate_model, get_model, list_models, train_model
from workers.task_engine import TaskEngine

router = APIRouter(prefix="/api/v1/models", tags=["models"])


# ─── Schemas ────────────────────────────────────────────────────────────────


class ModelTrainRequest(BaseModel):
    dataset_ids: list[str] = Field(min_length=1)
    target: str = "gw_level"
    family: Literal["RF", "XGB", "LSTM"]
    include_precip_temp: bool = True
    include_lag_features: bool = True


class ModelTrainResponse(BaseModel):
    model_id: str
    task: TaskResponse


class ForecastModelResponse(BaseModel):
    id: str
    name: str
    family: str
    version: str
    status: str
    metrics: dict | None
    feature_importance: list[dict] | None
    trained_at: datetime | None
    created_at: datetime

    model_config = {"from_attributes": True}


# ─── Endpoints ──────────────────────────────────────────────────────────────


@router.get("/", response_model=list[ForecastModelResponse])
async def list_org_models(
    status: str | None = None,
    search: str | None = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=100),
    store: DocumentStore = Depends(get_store),
    user: dict = Depends(get_current_user),
):
    """List registered models, newest first."""
    return await list_models(store, org_id=user["org_id"], status=status, search=search, skip=skip, limit=limit)


@router.post("/train", response_model=ModelTrainResponse)
async def request_model_training(
    body: ModelTrainRequest,
    store: DocumentStore = Depends(get_store),
    engine: TaskEngine = Depends(get_task_engine),
    user: dict = Depends(get_current_user),
):
    """Register a draft model and start training it. Returns immediately with the queued task."""
    run = await train_model(
        store,
        engine,
        user=user,
        dataset_ids=body.dataset_ids,
        family=body.family,
        target=body.target,
        include_precip_temp=body.include_precip_temp,
        include_lag_features=body.include_lag_features,
    )
    return ModelTrainResponse(model_id=run.model_id, task=TaskResponse.model_validate(run.task))


@router.get("/{model_id}", response_model=ForecastModelResponse)
async def read_model(
    model_id: str,
    store: DocumentStore = Depends(get_store),
    user: dict = Depends(get_current_user),
):
    return await get_model(store, model_id=model_id, org_id=user["org_id"])


@router.post("/{model_id}/activate", response_model=ForecastModelResponse)
async def promote_model(
    model_id: str,
    store: DocumentStore = Depends(get_store),
    user: dict = Depends(get_current_user),
):
    """Make this the active model and archive the previous one."""
    return await activate_model(store, model_id=model_id, org_id=user["org_id"])
