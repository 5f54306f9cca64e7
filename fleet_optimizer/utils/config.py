"""Environment-driven runtime settings."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Settings:
    app_name: str
    app_version: str
    log_level: str
    database_path: Path

    default_horizon_days: int
    trend_window_days: int
    recent_incident_limit: int
    reader_max_workers: int

    scheduler_enabled: bool
    scheduler_interval_seconds: float
    scheduler_horizon_days: int | None

    synthetic_random_seed: int
    synthetic_trend_days: int
    synthetic_trip_count: int
    synthetic_seed_on_startup: bool


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Build settings once per process from FLEET_OPT_* variables."""
    scheduler_horizon = os.getenv("FLEET_OPT_SCHEDULER_HORIZON_DAYS")
    return Settings(
        app_name=os.getenv("FLEET_OPT_APP_NAME", "Fleet Resource Optimization Engine"),
        app_version=os.getenv("FLEET_OPT_APP_VERSION", "1.0.0"),
        log_level=os.getenv("FLEET_OPT_LOG_LEVEL", "INFO"),
        database_path=Path(os.getenv("FLEET_OPT_DATABASE_PATH", "data/fleet_optimizer.db")),
        default_horizon_days=int(os.getenv("FLEET_OPT_DEFAULT_HORIZON_DAYS", "7")),
        trend_window_days=int(os.getenv("FLEET_OPT_TREND_WINDOW_DAYS", "21")),
        recent_incident_limit=int(os.getenv("FLEET_OPT_RECENT_INCIDENT_LIMIT", "50")),
        reader_max_workers=int(os.getenv("FLEET_OPT_READER_MAX_WORKERS", "6")),
        scheduler_enabled=_env_bool("FLEET_OPT_SCHEDULER_ENABLED", True),
        scheduler_interval_seconds=float(
            os.getenv("FLEET_OPT_SCHEDULER_INTERVAL_SECONDS", "3600")
        ),
        scheduler_horizon_days=int(scheduler_horizon) if scheduler_horizon else None,
        synthetic_random_seed=int(os.getenv("FLEET_OPT_SYNTHETIC_RANDOM_SEED", "42")),
        synthetic_trend_days=int(os.getenv("FLEET_OPT_SYNTHETIC_TREND_DAYS", "21")),
        synthetic_trip_count=int(os.getenv("FLEET_OPT_SYNTHETIC_TRIP_COUNT", "24")),
        synthetic_seed_on_startup=_env_bool("FLEET_OPT_SYNTHETIC_SEED_ON_STARTUP", True),
    )
