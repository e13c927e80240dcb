"""
Seed Demo Data — wells, forecast models and alert rules for local development.

All randomness flows from one injected ``random.Random``, so the same seed
always produces the same wells. Re-running against a seeded database is a
no-op for rows that already exist.

Run: python scripts/seed_demo.py [--seed SEED] [--org-id ORG]
"""

import argparse
import asyncio
import random
from datetime import datetime

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.config import get_settings
from db.models import Alert, ForecastModel, Well, utcnow
from db.session import Base, build_engine
from db.store import DocumentStore
from forecasting.risk import clamp, risk_level_from_score

logger = structlog.get_logger()

HISTORY_MONTHS = 60

# (plain, aquifers, code prefix, base level in m)
WELL_GROUPS = [
    ("plain_1", ("aq_1", "aq_2"), "YAS", 1125.0),
    ("plain_2", ("aq_3", "aq_4"), "SIS", 1138.0),
    ("plain_3", ("aq_5", "aq_6"), "MAR", 1112.0),
]
WELLS_PER_GROUP = 10


def _simulate_levels(rng: random.Random, base_level: float) -> tuple[list[float | None], int]:
    """Monthly levels with seasonality, noise, gaps and spikes. Returns (levels, anomaly_count)."""
    drop_per_month = 0.25 + rng.random() * 0.4
    seasonal_amp = 0.4 + rng.random() * 0.35
    noise_amp = 0.08 + rng.random() * 0.12

    missing = set(rng.sample(range(HISTORY_MONTHS), 2 + rng.randrange(5)))
    anomalies = set(rng.sample(range(HISTORY_MONTHS), 1 + rng.randrange(3))) - missing

    levels: list[float | None] = []
    for m in range(HISTORY_MONTHS):
        if m in missing:
            levels.append(None)
            continue
        seasonal = seasonal_amp * (1 if (m % 12) in (2, 3, 4) else -0.3)
        level = base_level - drop_per_month * m + seasonal + (rng.random() - 0.5) * noise_amp
        if m in anomalies:
            level += (rng.random() - 0.5) * 4.5
        levels.append(round(level, 2))
    return levels, len(anomalies)


def _monthly_drop_rate(levels: list[float | None]) -> float:
    """Average drop over the last ~12 months of observations; 0.35 when too sparse."""
    observed = [i for i, v in enumerate(levels) if v is not None]
    if not observed:
        return 0.35
    last = observed[-1]
    earlier = [i for i in observed if i <= max(0, last - 12)]
    if not earlier or last - earlier[-1] < 6:
        return 0.35
    first = earlier[-1]
    return clamp((levels[first] - levels[last]) / (last - first), 0.0, 1.2)


def build_demo_wells(rng: random.Random, org_id: str, *, created_at: datetime | None = None) -> list[Well]:
    created_at = created_at or utcnow()
    wells = []
    for plain_id, aquifer_ids, prefix, base in WELL_GROUPS:
        for i in range(1, WELLS_PER_GROUP + 1):
            code = f"{prefix}-{i:03d}"
            levels, anomaly_count = _simulate_levels(rng, base + (rng.random() - 0.5) * 10 + (i - 5) * 0.4)
            observed = [v for v in levels if v is not None]
            missing_pct = 1 - len(observed) / HISTORY_MONTHS
            anomaly_pct = anomaly_count / max(len(observed), 1)
            quality = round(clamp((1 - missing_pct) * 80 + (1 - anomaly_pct) * 20, 35, 98))
            risk_score = round(
                clamp((_monthly_drop_rate(levels) / 0.9) * 0.7 + ((100 - quality) / 100) * 0.3, 0.0, 1.0), 3
            )
            wells.append(
                Well(
                    id=f"well_{prefix.lower()}_{i:03d}",
                    org_id=org_id,
                    code=code,
                    name=f"Well {code}",
                    plain_id=plain_id,
                    aquifer_id=aquifer_ids[i % 2],
                    status="active" if rng.random() > 0.08 else "inactive",
                    latest_gw_level_m=observed[-1] if observed else None,
                    data_quality_score=float(quality),
                    risk_score=risk_score,
                    risk_level=risk_level_from_score(risk_score),
                    created_at=created_at,
                )
            )
    return wells


def build_demo_models(org_id: str) -> list[ForecastModel]:
    return [
        ForecastModel(
            id="mdl_xgb_2",
            org_id=org_id,
            name="XGB v2",
            family="XGB",
            version="2.0.0",
            status="active",
            metrics={"rmse": 1.8, "mae": 1.3, "r2": 0.81, "nse": 0.66},
        ),
        ForecastModel(id="mdl_rf_1", org_id=org_id, name="Random Forest v1", family="RF", version="1.1.0", status="archived"),
    ]


def build_demo_alerts(org_id: str) -> list[Alert]:
    now = utcnow()
    rules = [
        ("al_level_plain1", "Critical: groundwater level below 1100 m", "critical",
         {"plain_ids": ["plain_1"]}, "gw_level_below", {"threshold_m": 1100}, False),
        ("al_drop_rate", "Warning: drop rate above 0.6 m/month", "warning",
         {"plain_ids": ["plain_2", "plain_3"]}, "drop_rate_above", {"threshold": 0.6}, True),
        ("al_quality", "Info: data quality below 60", "info",
         {"aquifer_ids": ["aq_1", "aq_3", "aq_5"]}, "data_quality_below", {"min_score": 60}, False),
    ]
    return [
        Alert(
            id=alert_id,
            org_id=org_id,
            name=name,
            severity=severity,
            status="enabled",
            plain_ids=scope.get("plain_ids", []),
            aquifer_ids=scope.get("aquifer_ids", []),
            well_ids=scope.get("well_ids", []),
            condition_type=condition_type,
            params=params,
            channel_in_app=True,
            channel_email=email,
            created_at=now,
            updated_at=now,
        )
        for alert_id, name, severity, scope, condition_type, params, email in rules
    ]


async def seed_demo(store: DocumentStore, *, org_id: str, seed: str) -> dict[str, int]:
    """Insert demo rows that are not already present. Returns counts inserted per kind."""
    rng = random.Random(seed)
    counts = {"wells": 0, "models": 0, "alerts": 0}
    async with store.transaction() as tx:
        for well in build_demo_wells(rng, org_id):
            counts["wells"] += await tx.append_unique(well)
        for model in build_demo_models(org_id):
            counts["models"] += await tx.append_unique(model)
        for alert in build_demo_alerts(org_id):
            counts["alerts"] += await tx.append_unique(alert)
    return counts


async def main(org_id: str, seed: str) -> None:
    settings = get_settings()
    engine = build_engine(settings.database_url)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    store = DocumentStore(async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False))
    counts = await seed_demo(store, org_id=org_id, seed=seed)
    await engine.dispose()
    logger.info("seed_demo.completed", org_id=org_id, seed=seed, **counts)


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Seed demo wells, models and alerts")
    parser.add_argument("--org-id", default="org_demo")
    parser.add_argument("--seed", default=None, help="RNG seed (defaults to DEMO_SEED)")
    args = parser.parse_args()
    asyncio.run(main(args.org_id, args.seed or get_settings().demo_seed))
