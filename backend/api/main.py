"""
Groundwater DSS API — FastAPI Application Entry Point
"""

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.requests import Request

from alerts.notifications import StoreNotificationSink
from core.config import get_settings
from core.errors import InvalidInputError, NotFoundError
from db.session import AsyncSessionLocal, Base, engine
from db.store import DocumentStore
from workers.task_engine import TaskEngine

settings = get_settings()
logger = structlog.get_logger()

SHUTDOWN_DRAIN_SECONDS = 30.0


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    logger.info("Groundwater DSS API starting up", version=settings.app_version)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    store = DocumentStore(AsyncSessionLocal)
    app.state.store = store
    app.state.task_engine = TaskEngine(store)
    app.state.notification_sink = StoreNotificationSink(store)
    yield

    # Tasks cannot be cancelled; let in-flight ones reach a terminal state.
    task_engine: TaskEngine = app.state.task_engine
    if task_engine.active_count:
        logger.info("Draining running tasks", active=task_engine.active_count)
        await task_engine.join(timeout=SHUTDOWN_DRAIN_SECONDS)
    await engine.dispose()
    logger.info("Groundwater DSS API shutting down")


app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Groundwater monitoring decision-support core: tasks, forecasts and alerts",
    lifespan=lifespan,
)


@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(InvalidInputError)
async def invalid_input_handler(request: Request, exc: InvalidInputError):
    return JSONResponse(status_code=422, content={"detail": str(exc)})


# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Import and register routers
from api.v1.routers import alerts, forecasts, models, notifications, tasks

app.include_router(tasks.router)
app.include_router(forecasts.router)
app.include_router(models.router)
app.include_router(alerts.router)
app.include_router(notifications.router)


@app.get("/health")
async def health_check():
    """Health check endpoint for load balancers."""
    return {"status": "healthy", "version": settings.app_version}
