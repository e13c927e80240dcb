"""
Notifications Router — the caller's in-app inbox.
"""

from datetime import datetime

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from alerts.notifications import list_notifications, mark_all_read, mark_read
from api.deps import get_current_user, get_store
from db.store import DocumentStore

router = APIRouter(prefix="/api/v1/notifications", tags=["notifications"])


class NotificationResponse(BaseModel):
    id: str
    title: str
    body: str
    severity: str
    created_at: datetime
    read_at: datetime | None
    related_entity: str | None
    related_entity_id: str | None

    model_config = {"from_attributes": True}


class MarkAllReadResponse(BaseModel):
    updated: int


@router.get("/", response_model=list[NotificationResponse])
async def list_inbox(
    unread: bool = False,
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=100),
    store: DocumentStore = Depends(get_store),
    user: dict = Depends(get_current_user),
):
    """List the caller's notifications, newest first."""
    return await list_notifications(
        store, org_id=user["org_id"], user_id=user["sub"], unread_only=unread, skip=skip, limit=limit
    )


@router.post("/read-all", response_model=MarkAllReadResponse)
async def read_all(
    store: DocumentStore = Depends(get_store),
    user: dict = Depends(get_current_user),
):
    updated = await mark_all_read(store, org_id=user["org_id"], user_id=user["sub"])
    return MarkAllReadResponse(updated=updated)


@router.post("/{notification_id}/read", response_model=NotificationResponse)
async def read_one(
    notification_id: str,
    store: DocumentStore = Depends(get_store),
    user: dict = Depends(get_current_user),
):
    return await mark_read(store, notification_id=notification_id, org_id=user["org_id"], user_id=user["sub"])
