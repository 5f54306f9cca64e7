"""
app.py: FastAPI application factory and startup lifecycle.

This is the ASGI application object imported by uvicorn.
It wires the repository and optimization service, registers routers, and
runs startup initialization and the periodic optimization scheduler.

Usage (via launcher):
    python main.py

Usage (direct uvicorn):
    uvicorn app:app --reload
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from fleet_optimizer.controllers.optimization_controller import router as optimization_router
from fleet_optimizer.repository.data_repository import DataRepository
from fleet_optimizer.services.optimization_service import ResourceOptimizationService
from fleet_optimizer.utils.config import Settings, get_settings
from fleet_optimizer.utils.logger import get_logger


logger = get_logger(__name__)


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """
    Build and wire the FastAPI application.

    Services are created here and exposed through app.state so every
    dependency is traceable from this function.
    """
    settings = settings or get_settings()

    repository = DataRepository(settings)
    optimization_service = ResourceOptimizationService(
        repository=repository,
        settings=settings,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Initialize storage and the scheduler; stop the scheduler on shutdown."""
        _startup(app, settings)
        yield
        _shutdown(app)

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        lifespan=lifespan,
    )

    app.include_router(optimization_router)

    app.state.settings = settings
    app.state.repository = repository
    app.state.optimization_service = optimization_service

    return app


def _startup(app: FastAPI, settings: Settings) -> None:
    """
    Idempotent startup sequence. Safe to re-run on server restarts.

    Schema must exist before seeding; the scheduler starts last.
    """
    repository: DataRepository = app.state.repository
    optimization_service: ResourceOptimizationService = app.state.optimization_service

    logger.info("Startup: initializing database schema")
    repository.initialize_database()

    if settings.synthetic_seed_on_startup:
        logger.info("Startup: seeding synthetic fleet data (skipped if vehicles exist)")
        repository.seed_synthetic_data()

    if settings.scheduler_enabled:
        logger.info("Startup: starting optimization scheduler")
        optimization_service.start_scheduler(
            interval_seconds=settings.scheduler_interval_seconds,
            horizon_days=settings.scheduler_horizon_days,
        )

    logger.info("Startup complete | system ready")


def _shutdown(app: FastAPI) -> None:
    optimization_service: ResourceOptimizationService = app.state.optimization_service
    optimization_service.stop_scheduler()
    logger.info("Shutdown complete")


# Module-level app object for uvicorn
app = create_app()
