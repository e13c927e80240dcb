"""
Tasks Router — poll long-running task status.
"""

from datetime import datetime

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from api.deps import get_current_user, get_task_engine
from workers.task_engine import TaskEngine

router = APIRouter(prefix="/api/v1/tasks", tags=["tasks"])


# ─── Schemas ────────────────────────────────────────────────────────────────


class TaskStepResponse(BaseModel):
    name: str
    status: str


class TaskResponse(BaseModel):
    id: str
    org_id: str
    kind: str
    status: str
    progress: int
    steps: list[TaskStepResponse]
    logs: list[str]
    result: dict | None
    error_message: str | None
    created_at: datetime
    started_at: datetime | None
    finished_at: datetime | None

    model_config = {"from_attributes": True}


# ─── Endpoints ──────────────────────────────────────────────────────────────


@router.get("/", response_model=list[TaskResponse])
async def list_tasks(
    kind: str | None = None,
    status: str | None = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=100),
    engine: TaskEngine = Depends(get_task_engine),
    user: dict = Depends(get_current_user),
):
    """List tasks for the caller's organization, newest first."""
    return await engine.list_tasks(user["org_id"], kind=kind, status=status, skip=skip, limit=limit)


@router.get("/{task_id}", response_model=TaskResponse)
async def get_task(
    task_id: str,
    engine: TaskEngine = Depends(get_task_engine),
    user: dict = Depends(get_current_user),
):
    """Get one task; callers poll this until status is success or failed."""
    return await engine.get_task(task_id, user["org_id"])
