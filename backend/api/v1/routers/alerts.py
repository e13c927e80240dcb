"""
Alerts Router — rule management, test runs and evaluation history.
"""

from datetime import datetime
from typing import Literal

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from alerts.engine import (
    acknowledge_history,
    create_alert,
    list_alert_history,
    list_alerts,
    run_alert_test,
    update_alert,
)
from alerts.notifications import NotificationSink
from api.deps import get_current_user, get_notification_sink, get_store
from db.models import Alert
from db.store import DocumentStore

router = APIRouter(prefix="/api/v1/alerts", tags=["alerts"])

Severity = Literal["info", "warning", "critical"]
AlertStatus = Literal["enabled", "disabled"]
ConditionType = Literal["gw_level_below", "drop_rate_above", "prob_cross_threshold_above", "data_quality_below"]


# ─── Schemas ────────────────────────────────────────────────────────────────


class AlertScope(BaseModel):
    plain_ids: list[str] = []
    aquifer_ids: list[str] = []
    well_ids: list[str] = []


class AlertChannels(BaseModel):
    in_app: bool = True
    email: bool = False


class AlertCreate(BaseModel):
    name: str
    severity: Severity
    status: AlertStatus = "enabled"
    scope: AlertScope = AlertScope()
    condition_type: ConditionType
    params: dict = {}
    channels: AlertChannels = AlertChannels()


class AlertScopeUpdate(BaseModel):
    plain_ids: list[str] | None = None
    aquifer_ids: list[str] | None = None
    well_ids: list[str] | None = None


class AlertChannelsUpdate(BaseModel):
    in_app: bool | None = None
    email: bool | None = None


class AlertUpdate(BaseModel):
    name: str | None = None
    severity: Severity | None = None
    status: AlertStatus | None = None
    scope: AlertScopeUpdate | None = None
    condition_type: ConditionType | None = None
    params: dict | None = None
    channels: AlertChannelsUpdate | None = None


class AlertResponse(BaseModel):
    id: str
    org_id: str
    name: str
    severity: str
    status: str
    scope: AlertScope
    condition_type: str
    params: dict
    channels: AlertChannels
    last_triggered_at: datetime | None
    created_at: datetime
    updated_at: datetime


class AffectedWell(BaseModel):
    id: str
    code: str
    risk_level: str


class AlertTestResponse(BaseModel):
    affected_wells: list[AffectedWell]
    history_id: str
    summary: str


class AlertHistoryResponse(BaseModel):
    id: str
    alert_id: str
    triggered_at: datetime
    wells_affected: list[str]
    summary: str
    acknowledged_at: datetime | None
    acknowledged_by_user_id: str | None

    model_config = {"from_attributes": True}


# ─── Endpoints ──────────────────────────────────────────────────────────────


@router.get("/", response_model=list[AlertResponse])
async def list_org_alerts(
    status: str | None = None,
    severity: str | None = None,
    search: str | None = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=100),
    store: DocumentStore = Depends(get_store),
    user: dict = Depends(get_current_user),
):
    """List alert rules with filters."""
    alerts = await list_alerts(
        store, org_id=user["org_id"], status=status, severity=severity, search=search, skip=skip, limit=limit
    )
    return [_serialize_alert(a) for a in alerts]


@router.post("/", response_model=AlertResponse, status_code=201)
async def create_org_alert(
    body: AlertCreate,
    store: DocumentStore = Depends(get_store),
    user: dict = Depends(get_current_user),
):
    alert = await create_alert(store, user=user, data=body.model_dump())
    return _serialize_alert(alert)


@router.patch("/{alert_id}", response_model=AlertResponse)
async def update_org_alert(
    alert_id: str,
    body: AlertUpdate,
    store: DocumentStore = Depends(get_store),
    user: dict = Depends(get_current_user),
):
    """Partially update an alert rule; omitted fields are left untouched."""
    alert = await update_alert(store, alert_id=alert_id, user=user, changes=body.model_dump(exclude_none=True))
    return _serialize_alert(alert)


@router.post("/{alert_id}/test", response_model=AlertTestResponse)
async def run_org_alert_test(
    alert_id: str,
    store: DocumentStore = Depends(get_store),
    sink: NotificationSink = Depends(get_notification_sink),
    user: dict = Depends(get_current_user),
):
    """
    Evaluate an alert against current well data.

    Always records a history entry, even when no wells are affected.
    """
    result = await run_alert_test(store, sink, alert_id=alert_id, user=user)
    return AlertTestResponse(
        affected_wells=result.affected_wells,
        history_id=result.history_id,
        summary=result.summary,
    )


@router.get("/{alert_id}/history", response_model=list[AlertHistoryResponse])
async def read_alert_history(
    alert_id: str,
    store: DocumentStore = Depends(get_store),
    user: dict = Depends(get_current_user),
):
    return await list_alert_history(store, alert_id=alert_id, org_id=user["org_id"])


@router.post("/history/{history_id}/ack", response_model=AlertHistoryResponse)
async def acknowledge_alert_history(
    history_id: str,
    store: DocumentStore = Depends(get_store),
    user: dict = Depends(get_current_user),
):
    return await acknowledge_history(store, history_id=history_id, user=user)


def _serialize_alert(alert: Alert) -> AlertResponse:
    return AlertResponse(
        id=alert.id,
        org_id=alert.org_id,
        name=alert.name,
        severity=alert.severity,
        status=alert.status,
        scope=AlertScope(
            plain_ids=alert.plain_ids or [],
            aquifer_ids=alert.aquifer_ids or [],
            well_ids=alert.well_ids or [],
        ),
        condition_type=alert.condition_type,
        params=alert.params or {},
        channels=AlertChannels(in_app=alert.channel_in_app, email=alert.channel_email),
        last_triggered_at=alert.last_triggered_at,
        created_at=alert.created_at,
        updated_at=alert.updated_at,
    )
