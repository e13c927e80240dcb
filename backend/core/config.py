"""
Groundwater DSS Configuration

Settings come from environment variables (or a .env file) through
pydantic-settings. ``get_settings()`` is cached; tests clear the cache after
changing the environment.
"""

from functools import lru_cache
from pathlib import Path

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_JWT_SECRET = "dev-secret-change-in-production"
LOCAL_ENVIRONMENTS = frozenset({"", "local", "dev", "development", "test"})


def _locate_env_file() -> Path:
    """Prefer ./.env; fall back to the repository root."""
    cwd_env = Path(".env")
    if cwd_env.exists():
        return cwd_env
    repo_env = Path(__file__).resolve().parents[2] / ".env"
    return repo_env if repo_env.exists() else cwd_env


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=str(_locate_env_file()),
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    app_name: str = "Groundwater DSS"
    app_version: str = "1.0.0"
    app_env: str = "local"
    debug: bool = False

    # Storage
    database_url: str = "sqlite+aiosqlite:///./groundwater.db"
    database_echo: bool = False

    # Live notification fan-out; the inbox table is always written
    redis_url: str = "redis://localhost:6379/0"
    notifications_pubsub_enabled: bool = False

    # Bearer tokens are issued elsewhere and only verified here
    jwt_secret: str = DEFAULT_JWT_SECRET
    jwt_algorithm: str = "HS256"

    # Seconds between task ticks; 0 drives a task to completion without pausing
    task_step_interval_seconds: float = 0.85

    forecast_min_horizon_months: int = 3
    forecast_max_horizon_months: int = 120
    default_gw_level_m: float = 1100.0

    demo_seed: str = "groundwater-dss-demo"

    cors_origins: list[str] = ["http://localhost:5173"]

    @field_validator("task_step_interval_seconds")
    @classmethod
    def _interval_not_negative(cls, value: float) -> float:
        if value < 0:
            raise ValueError("task_step_interval_seconds must be non-negative")
        return value

    @model_validator(mode="after")
    def _horizon_bounds_ordered(self) -> "Settings":
        if not 0 < self.forecast_min_horizon_months <= self.forecast_max_horizon_months:
            raise ValueError("forecast horizon bounds must satisfy 0 < min <= max")
        return self

    @property
    def is_local(self) -> bool:
        return self.app_env.strip().lower() in LOCAL_ENVIRONMENTS


@lru_cache
def get_settings() -> Settings:
    settings = Settings()
    check_deployment_safety(settings)
    return settings


def check_deployment_safety(settings: Settings) -> None:
    """Refuse debug mode and the placeholder JWT secret outside local environments."""
    if settings.is_local:
        return
    if settings.debug:
        raise ValueError(f"debug=true is not allowed in app_env={settings.app_env!r}")
    if settings.jwt_secret == DEFAULT_JWT_SECRET:
        raise ValueError(f"the default JWT secret is not allowed in app_env={settings.app_env!r}")
