"""
Alert Engine — rule evaluation over monitored wells, plus alert lifecycle.

Condition Types:
  - gw_level_below:             latest groundwater level < threshold_m
  - drop_rate_above:            drop-rate proxy > threshold (m/month)
  - prob_cross_threshold_above: crossing-probability proxy > threshold_pct / 100
  - data_quality_below:         data-quality score < min_score

Scope is the OR-union of listed wells, wells in listed plains and wells in
listed aquifers. A missing, non-numeric or non-finite parameter never
matches: a badly configured rule reports zero wells rather than failing the
dashboard that evaluates it.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any

import structlog

from alerts.email import send_alert_email
from alerts.notifications import NotificationSink, build_notification
from core.errors import InvalidInputError, NotFoundError
from db.audit import record_audit
from db.models import (
    ALERT_CONDITION_TYPES,
    ALERT_SEVERITIES,
    ALERT_STATUSES,
    Alert,
    AlertHistory,
    Well,
    generate_id,
    utcnow,
)
from db.store import DocumentStore
from forecasting.risk import proxy_crossing_probability, proxy_drop_rate

logger = structlog.get_logger()

CONDITION_PARAM_KEYS = {
    "gw_level_below": "threshold_m",
    "drop_rate_above": "threshold",
    "prob_cross_threshold_above": "threshold_pct",
    "data_quality_below": "min_score",
}


@dataclass
class AlertTestResult:
    affected_wells: list[dict[str, Any]]
    history_id: str
    summary: str


# ──────────────────────────────────────────────────────────────────────────
# Evaluation
# ──────────────────────────────────────────────────────────────────────────


def numeric_param(params: dict[str, Any] | None, key: str) -> float | None:
    """Read a finite number from rule params, or None when unusable."""
    if not params:
        return None
    value = params.get(key)
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def resolve_scope_wells(alert: Alert, wells: list[Well]) -> list[Well]:
    """Wells listed directly, or sitting in a listed plain or aquifer."""
    well_ids = set(alert.well_ids or [])
    plain_ids = set(alert.plain_ids or [])
    aquifer_ids = set(alert.aquifer_ids or [])

    scoped: list[Well] = []
    seen: set[str] = set()
    for well in wells:
        if well.id in seen:
            continue
        if well.id in well_ids or well.plain_id in plain_ids or well.aquifer_id in aquifer_ids:
            scoped.append(well)
            seen.add(well.id)
    return scoped


def well_matches(condition_type: str, params: dict[str, Any] | None, well: Well) -> bool:
    key = CONDITION_PARAM_KEYS.get(condition_type)
    if key is None:
        return False
    threshold = numeric_param(params, key)
    if threshold is None:
        return False

    if condition_type == "gw_level_below":
        return well.latest_gw_level_m is not None and well.latest_gw_level_m < threshold
    if condition_type == "drop_rate_above":
        return proxy_drop_rate(well.risk_score) > threshold
    if condition_type == "prob_cross_threshold_above":
        return proxy_crossing_probability(well.risk_score) > threshold / 100
    return well.data_quality_score < threshold


def evaluate_alert(alert: Alert, wells: list[Well]) -> list[Well]:
    """Wells in the alert's scope that satisfy its condition. Touches no state."""
    return [w for w in resolve_scope_wells(alert, wells) if well_matches(alert.condition_type, alert.params, w)]


def build_summary(affected_count: int) -> str:
    noun = "well" if affected_count == 1 else "wells"
    return f"{affected_count} {noun} affected (test run)."


def notification_severity(alert_severity: str) -> str:
    return alert_severity if alert_severity in ALERT_SEVERITIES else "info"


# ──────────────────────────────────────────────────────────────────────────
# Test Run (evaluate + record + notify)
# ──────────────────────────────────────────────────────────────────────────


async def run_alert_test(
    store: DocumentStore,
    sink: NotificationSink,
    *,
    alert_id: str,
    user: dict,
) -> AlertTestResult:
    """
    Evaluate one alert now:
    1. Resolve scope and evaluate the condition
    2. Stamp last_triggered_at and append a history row (even for zero wells)
    3. Commit
    4. Notify in-app (only when wells are affected) and hand off to email
    """
    org_id = user["org_id"]
    async with store.transaction() as tx:
        alert = await tx.find(Alert, Alert.id == alert_id, Alert.org_id == org_id)
        if alert is None:
            raise NotFoundError("Alert not found")
        wells = await tx.find_all(Well, Well.org_id == org_id, order_by=Well.code)

        affected = evaluate_alert(alert, wells)
        now = utcnow()
        alert.last_triggered_at = now

        summary = build_summary(len(affected))
        history = AlertHistory(
            id=generate_id("alh"),
            alert_id=alert.id,
            org_id=org_id,
            triggered_at=now,
            wells_affected=[w.id for w in affected],
            summary=summary,
        )
        await tx.append_unique(history)
        await record_audit(
            tx,
            org_id=org_id,
            user=user,
            action="alert.test",
            entity="alert",
            entity_id=alert.id,
            payload={"history_id": history.id, "affected": len(affected)},
        )

    logger.info("alert_test.completed", alert_id=alert.id, org_id=org_id, affected=len(affected))

    if affected and alert.channel_in_app:
        await sink.emit(
            build_notification(
                org_id=org_id,
                user_id=user["sub"],
                title=f"Alert test result: {alert.name}",
                body=summary,
                severity=notification_severity(alert.severity),
                related_entity="alert",
                related_entity_id=alert.id,
            )
        )
    if affected and alert.channel_email:
        await send_alert_email(user["sub"], alert.name, alert.severity, summary)

    return AlertTestResult(
        affected_wells=[{"id": w.id, "code": w.code, "risk_level": w.risk_level} for w in affected],
        history_id=history.id,
        summary=summary,
    )


# ──────────────────────────────────────────────────────────────────────────
# Alert Lifecycle
# ──────────────────────────────────────────────────────────────────────────


def _validate_choice(value: str, allowed: tuple[str, ...], field: str) -> str:
    if value not in allowed:
        raise InvalidInputError(f"Invalid {field}: {value}")
    return value


async def create_alert(store: DocumentStore, *, user: dict, data: dict[str, Any]) -> Alert:
    org_id = user["org_id"]
    scope = data.get("scope") or {}
    channels = data.get("channels") or {}
    now = utcnow()
    alert = Alert(
        id=generate_id("al"),
        org_id=org_id,
        name=data["name"],
        severity=_validate_choice(data["severity"], ALERT_SEVERITIES, "severity"),
        status=_validate_choice(data.get("status", "enabled"), ALERT_STATUSES, "status"),
        plain_ids=list(scope.get("plain_ids", [])),
        aquifer_ids=list(scope.get("aquifer_ids", [])),
        well_ids=list(scope.get("well_ids", [])),
        condition_type=_validate_choice(data["condition_type"], ALERT_CONDITION_TYPES, "condition_type"),
        params=dict(data.get("params") or {}),
        channel_in_app=bool(channels.get("in_app", True)),
        channel_email=bool(channels.get("email", False)),
        created_at=now,
        updated_at=now,
    )
    async with store.transaction() as tx:
        tx.add(alert)
        await record_audit(tx, org_id=org_id, user=user, action="alert.create", entity="alert", entity_id=alert.id, payload=data)
    logger.info("alert.created", alert_id=alert.id, org_id=org_id, condition_type=alert.condition_type)
    return alert


async def update_alert(store: DocumentStore, *, alert_id: str, user: dict, changes: dict[str, Any]) -> Alert:
    """Apply a partial update; scope and channels merge key by key."""
    org_id = user["org_id"]
    async with store.transaction() as tx:
        alert = await tx.find(Alert, Alert.id == alert_id, Alert.org_id == org_id)
        if alert is None:
            raise NotFoundError("Alert not found")

        if changes.get("name") is not None:
            alert.name = changes["name"]
        if changes.get("severity") is not None:
            alert.severity = _validate_choice(changes["severity"], ALERT_SEVERITIES, "severity")
        if changes.get("status") is not None:
            alert.status = _validate_choice(changes["status"], ALERT_STATUSES, "status")
        if changes.get("condition_type") is not None:
            alert.condition_type = _validate_choice(changes["condition_type"], ALERT_CONDITION_TYPES, "condition_type")
        if changes.get("params") is not None:
            alert.params = dict(changes["params"])

        scope = changes.get("scope") or {}
        for key in ("plain_ids", "aquifer_ids", "well_ids"):
            if scope.get(key) is not None:
                setattr(alert, key, list(scope[key]))

        channels = changes.get("channels") or {}
        if channels.get("in_app") is not None:
            alert.channel_in_app = bool(channels["in_app"])
        if channels.get("email") is not None:
            alert.channel_email = bool(channels["email"])

        alert.updated_at = utcnow()
        await record_audit(tx, org_id=org_id, user=user, action="alert.update", entity="alert", entity_id=alert.id, payload=changes)
    return alert


async def list_alerts(
    store: DocumentStore,
    *,
    org_id: str,
    status: str | None = None,
    severity: str | None = None,
    search: str | None = None,
    skip: int = 0,
    limit: int = 50,
) -> list[Alert]:
    criteria = [Alert.org_id == org_id]
    if status:
        criteria.append(Alert.status == status)
    if severity:
        criteria.append(Alert.severity == severity)
    if search and search.strip():
        criteria.append(Alert.name.ilike(f"%{search.strip()}%"))
    return await store.find_all(Alert, *criteria, order_by=Alert.updated_at.desc(), offset=skip, limit=limit)


async def list_alert_history(store: DocumentStore, *, alert_id: str, org_id: str) -> list[AlertHistory]:
    return await store.find_all(
        AlertHistory,
        AlertHistory.alert_id == alert_id,
        AlertHistory.org_id == org_id,
        order_by=AlertHistory.triggered_at.desc(),
    )


async def acknowledge_history(store: DocumentStore, *, history_id: str, user: dict) -> AlertHistory:
    """Acknowledge one evaluation; the only mutation history rows ever see."""
    async with store.transaction() as tx:
        entry = await tx.find(AlertHistory, AlertHistory.id == history_id, AlertHistory.org_id == user["org_id"])
        if entry is None:
            raise NotFoundError("History not found")
        entry.acknowledged_at = utcnow()
        entry.acknowledged_by_user_id = user["sub"]
    return entry
