"""
Groundwater DSS Database Models

Organization-scoped tables backing the task engine, forecasting and alerting.
Every table carries org_id; no query in the core crosses organizations.

Tables:
  Inputs (seeded, read-only for the core):
  1. wells                  - Monitored wells with precomputed risk/quality scores
  2. forecast_models        - Model registry entries referenced by forecasts,
                              created as drafts by training tasks

  Task engine:
  3. tasks                  - Long-running stepped work (forecast runs, training, ...)

  Forecasting:
  4. forecasts              - One projection request for a well set
  5. forecast_series_points - p10/p50/p90 per (forecast, well, month offset)
  6. forecast_well_results  - Per-well risk summary of a forecast

  Alerting:
  7. alerts                 - Rule definitions (scope + condition + channels)
  8. alert_history          - One row per evaluation
  9. notifications          - In-app inbox messages
  10. audit_logs            - Who did what, with a truncated payload
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    Float,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)

from db.session import Base

TASK_KINDS = ("forecast_run", "model_train", "scenario_run", "report_generate")
TASK_STATUSES = ("queued", "running", "success", "failed")
TERMINAL_TASK_STATUSES = ("success", "failed")
FORECAST_STATUSES = ("running", "ready", "failed")
CONFIDENCE_LEVELS = ("high", "medium", "low")
RISK_LEVELS = ("low", "medium", "high", "critical")
MODEL_STATUSES = ("draft", "active", "archived")
TRAINABLE_MODEL_FAMILIES = ("RF", "XGB", "LSTM")
ALERT_SEVERITIES = ("info", "warning", "critical")
ALERT_STATUSES = ("enabled", "disabled")
ALERT_CONDITION_TYPES = (
    "gw_level_below",
    "drop_rate_above",
    "prob_cross_threshold_above",
    "data_quality_below",
)


def generate_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


def utcnow() -> datetime:
    """Naive UTC timestamp; SQLite DateTime columns do not keep offsets."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _in_clause(column: str, values: tuple[str, ...]) -> str:
    quoted = ", ".join(f"'{v}'" for v in values)
    return f"{column} IN ({quoted})"


# ─── 1. Wells ───────────────────────────────────────────────────────────────


class Well(Base):
    __tablename__ = "wells"

    id = Column(String(40), primary_key=True, default=lambda: generate_id("well"))
    org_id = Column(String(40), nullable=False)
    code = Column(String(50), nullable=False)
    name = Column(String(255), nullable=False)
    plain_id = Column(String(40), nullable=False)
    aquifer_id = Column(String(40), nullable=False)
    status = Column(String(20), nullable=False, default="active")
    latest_gw_level_m = Column(Float)
    data_quality_score = Column(Float, nullable=False)
    risk_score = Column(Float, nullable=False)
    risk_level = Column(String(20), nullable=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        Index("ix_wells_org", "org_id"),
        Index("ix_wells_org_plain", "org_id", "plain_id"),
        Index("ix_wells_org_aquifer", "org_id", "aquifer_id"),
        CheckConstraint(_in_clause("risk_level", RISK_LEVELS), name="ck_well_risk_level"),
        CheckConstraint("status IN ('active', 'inactive')", name="ck_well_status"),
    )


# ─── 2. Forecast Models ─────────────────────────────────────────────────────


class ForecastModel(Base):
    __tablename__ = "forecast_models"

    id = Column(String(40), primary_key=True, default=lambda: generate_id("mdl"))
    org_id = Column(String(40), nullable=False)
    name = Column(String(255), nullable=False)
    family = Column(String(50), nullable=False, default="baseline")
    version = Column(String(50), nullable=False, default="v1")
    status = Column(String(20), nullable=False, default="active")
    metrics = Column(JSON)  # {"rmse", "mae", "r2", "nse"}
    feature_importance = Column(JSON)  # [{"feature": ..., "importance": ...}]
    trained_at = Column(DateTime)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        Index("ix_forecast_models_org", "org_id"),
        CheckConstraint(_in_clause("status", MODEL_STATUSES), name="ck_forecast_model_status"),
    )


# ─── 3. Tasks ───────────────────────────────────────────────────────────────


class Task(Base):
    __tablename__ = "tasks"

    id = Column(String(40), primary_key=True, default=lambda: generate_id("task"))
    org_id = Column(String(40), nullable=False)
    kind = Column(String(30), nullable=False)
    status = Column(String(20), nullable=False, default="queued")
    progress = Column(Integer, nullable=False, default=0)
    steps = Column(JSON, nullable=False, default=list)  # [{"name": ..., "status": ...}]
    logs = Column(JSON, nullable=False, default=list)
    result = Column(JSON)
    error_message = Column(Text)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    started_at = Column(DateTime)
    finished_at = Column(DateTime)

    __table_args__ = (
        Index("ix_tasks_org_created", "org_id", "created_at"),
        CheckConstraint(_in_clause("kind", TASK_KINDS), name="ck_task_kind"),
        CheckConstraint(_in_clause("status", TASK_STATUSES), name="ck_task_status"),
        CheckConstraint("progress >= 0 AND progress <= 100", name="ck_task_progress"),
    )


# ─── 4. Forecasts ───────────────────────────────────────────────────────────


class Forecast(Base):
    __tablename__ = "forecasts"

    id = Column(String(40), primary_key=True, default=lambda: generate_id("fc"))
    org_id = Column(String(40), nullable=False)
    scenario_id = Column(String(40))
    model_id = Column(String(40), nullable=False)
    well_ids = Column(JSON, nullable=False, default=list)
    horizon_months = Column(Integer, nullable=False)
    status = Column(String(20), nullable=False, default="running")
    confidence = Column(String(10), nullable=False)
    created_by_user_id = Column(String(64), nullable=False)
    task_id = Column(String(40))
    created_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        Index("ix_forecasts_org_created", "org_id", "created_at"),
        CheckConstraint(_in_clause("status", FORECAST_STATUSES), name="ck_forecast_status"),
        CheckConstraint(_in_clause("confidence", CONFIDENCE_LEVELS), name="ck_forecast_confidence"),
    )


# ─── 5. Forecast Series Points ──────────────────────────────────────────────


class ForecastSeriesPoint(Base):
    __tablename__ = "forecast_series_points"

    id = Column(String(120), primary_key=True)
    forecast_id = Column(String(40), nullable=False)
    well_id = Column(String(40), nullable=False)
    month_offset = Column(Integer, nullable=False)
    date = Column(Date, nullable=False)
    p10 = Column(Float, nullable=False)
    p50 = Column(Float, nullable=False)
    p90 = Column(Float, nullable=False)

    __table_args__ = (
        UniqueConstraint("forecast_id", "well_id", "month_offset", name="uq_series_forecast_well_month"),
        Index("ix_series_forecast_well", "forecast_id", "well_id"),
        CheckConstraint("p10 <= p50 AND p50 <= p90", name="ck_series_percentile_order"),
    )


# ─── 6. Forecast Well Results ───────────────────────────────────────────────


class ForecastWellResult(Base):
    __tablename__ = "forecast_well_results"

    forecast_id = Column(String(40), primary_key=True)
    well_id = Column(String(40), primary_key=True)
    well_code = Column(String(50), nullable=False)
    p50_final_level = Column(Float, nullable=False)
    prob_cross_threshold = Column(Float, nullable=False)
    expected_drop_rate = Column(Float, nullable=False)
    risk_level = Column(String(20), nullable=False)

    __table_args__ = (CheckConstraint(_in_clause("risk_level", RISK_LEVELS), name="ck_result_risk_level"),)


# ─── 7. Alerts ──────────────────────────────────────────────────────────────


class Alert(Base):
    __tablename__ = "alerts"

    id = Column(String(40), primary_key=True, default=lambda: generate_id("al"))
    org_id = Column(String(40), nullable=False)
    name = Column(String(255), nullable=False)
    severity = Column(String(20), nullable=False)
    status = Column(String(20), nullable=False, default="enabled")
    plain_ids = Column(JSON, nullable=False, default=list)
    aquifer_ids = Column(JSON, nullable=False, default=list)
    well_ids = Column(JSON, nullable=False, default=list)
    condition_type = Column(String(40), nullable=False)
    params = Column(JSON, nullable=False, default=dict)
    channel_in_app = Column(Boolean, nullable=False, default=True)
    channel_email = Column(Boolean, nullable=False, default=False)
    last_triggered_at = Column(DateTime)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index("ix_alerts_org_status", "org_id", "status"),
        CheckConstraint(_in_clause("severity", ALERT_SEVERITIES), name="ck_alert_severity"),
        CheckConstraint(_in_clause("status", ALERT_STATUSES), name="ck_alert_status"),
        CheckConstraint(_in_clause("condition_type", ALERT_CONDITION_TYPES), name="ck_alert_condition_type"),
    )


# ─── 8. Alert History ───────────────────────────────────────────────────────


class AlertHistory(Base):
    __tablename__ = "alert_history"

    id = Column(String(40), primary_key=True, default=lambda: generate_id("alh"))
    alert_id = Column(String(40), nullable=False)
    org_id = Column(String(40), nullable=False)
    triggered_at = Column(DateTime, nullable=False, default=utcnow)
    wells_affected = Column(JSON, nullable=False, default=list)
    summary = Column(Text, nullable=False)
    acknowledged_at = Column(DateTime)
    acknowledged_by_user_id = Column(String(64))

    __table_args__ = (Index("ix_alert_history_alert", "alert_id", "triggered_at"),)


# ─── 9. Notifications ───────────────────────────────────────────────────────


class Notification(Base):
    __tablename__ = "notifications"

    id = Column(String(40), primary_key=True, default=lambda: generate_id("nt"))
    org_id = Column(String(40), nullable=False)
    user_id = Column(String(64), nullable=False)
    title = Column(String(255), nullable=False)
    body = Column(Text, nullable=False)
    severity = Column(String(20), nullable=False, default="info")
    created_at = Column(DateTime, nullable=False, default=utcnow)
    read_at = Column(DateTime)
    related_entity = Column(String(40))
    related_entity_id = Column(String(40))

    __table_args__ = (
        Index("ix_notifications_org_user", "org_id", "user_id", "created_at"),
        CheckConstraint(_in_clause("severity", ALERT_SEVERITIES), name="ck_notification_severity"),
    )


# ─── 10. Audit Logs ─────────────────────────────────────────────────────────


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id = Column(String(40), primary_key=True, default=lambda: generate_id("aud"))
    org_id = Column(String(40), nullable=False)
    user_id = Column(String(64), nullable=False)
    user_email = Column(String(255), nullable=False, default="")
    action = Column(String(80), nullable=False)
    entity = Column(String(40), nullable=False)
    entity_id = Column(String(40))
    payload_snippet = Column(Text)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (Index("ix_audit_logs_org_created", "org_id", "created_at"),)
