"""
Test Configuration — Fixtures for the async store, task engine, sink and test client.

Each test gets a fresh in-memory SQLite database. StaticPool keeps a single
connection alive so every session sees the same in-memory schema.
"""

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from alerts.notifications import StoreNotificationSink
from api.deps import get_current_user, get_notification_sink, get_store, get_task_engine
from api.main import app
from db.models import ForecastModel, Well, utcnow
from db.session import Base
from db.store import DocumentStore
from forecasting.risk import risk_level_from_score
from workers.task_engine import TaskEngine

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

ORG_ID = "org_test"
OTHER_ORG_ID = "org_other"
MODEL_ID = "mdl_test"


def make_well(
    well_id: str,
    *,
    org_id: str = ORG_ID,
    plain_id: str = "plain_1",
    aquifer_id: str = "aq_1",
    level: float | None = 1120.0,
    quality: float = 85.0,
    risk_score: float = 0.2,
) -> Well:
    return Well(
        id=well_id,
        org_id=org_id,
        code=well_id.upper(),
        name=f"Well {well_id}",
        plain_id=plain_id,
        aquifer_id=aquifer_id,
        status="active",
        latest_gw_level_m=level,
        data_quality_score=quality,
        risk_score=risk_score,
        risk_level=risk_level_from_score(risk_score),
        created_at=utcnow(),
    )


@pytest.fixture
async def test_engine():
    """Create a test database engine and build all tables."""
    engine = create_async_engine(TEST_DATABASE_URL, echo=False, poolclass=StaticPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def store(test_engine):
    return DocumentStore(async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False))


@pytest.fixture
async def task_engine(store):
    engine = TaskEngine(store, step_interval_seconds=0)
    yield engine
    await engine.join(timeout=5)


@pytest.fixture
def sink(store):
    return StoreNotificationSink(store, pubsub_enabled=False)


@pytest.fixture
def well_factory():
    return make_well


@pytest.fixture
def mock_user():
    """Mock authenticated user."""
    return {
        "sub": "user-test",
        "email": "analyst@groundwater.test",
        "org_id": ORG_ID,
    }


@pytest.fixture
async def seeded_store(store):
    """Seed the store with a forecast model and a handful of wells."""
    wells = [
        make_well("well_a", plain_id="plain_1", aquifer_id="aq_1", level=1120.0, quality=90, risk_score=0.1),
        make_well("well_b", plain_id="plain_1", aquifer_id="aq_2", level=1095.0, quality=45, risk_score=0.55),
        make_well("well_c", plain_id="plain_2", aquifer_id="aq_3", level=1130.0, quality=70, risk_score=0.9),
        make_well("well_d", plain_id="plain_3", aquifer_id="aq_5", level=None, quality=60, risk_score=0.3),
        make_well("well_x", org_id=OTHER_ORG_ID, plain_id="plain_1", aquifer_id="aq_1", quality=10, risk_score=0.95),
    ]
    model = ForecastModel(
        id=MODEL_ID,
        org_id=ORG_ID,
        name="Test Model",
        family="XGB",
        version="1.0.0",
        status="active",
        metrics={"rmse": 1.5, "mae": 1.1, "r2": 0.8, "nse": 0.7},
    )
    async with store.transaction() as tx:
        for well in wells:
            tx.add(well)
        tx.add(model)
    return store


@pytest.fixture
async def client(seeded_store, task_engine, sink, mock_user):
    """Create an async test client with dependency overrides."""
    app.dependency_overrides[get_store] = lambda: seeded_store
    app.dependency_overrides[get_task_engine] = lambda: task_engine
    app.dependency_overrides[get_notification_sink] = lambda: sink
    app.dependency_overrides[get_current_user] = lambda: mock_user

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    app.dependency_overrides.clear()
