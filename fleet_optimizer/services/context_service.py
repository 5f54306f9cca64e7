"""Gathers the raw operational reads behind one optimization cycle."""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from typing import Optional

from fleet_optimizer.domain.constraints import validate_horizon
from fleet_optimizer.domain.models import OptimizationContext
from fleet_optimizer.repository.data_repository import DataRepository
from fleet_optimizer.utils.config import Settings, get_settings
from fleet_optimizer.utils.logger import get_logger


logger = get_logger(__name__)


class ContextAssembler:
    """Issues the store reads for a horizon concurrently and joins them."""

    def __init__(
        self,
        repository: Optional[DataRepository] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository or DataRepository(self._settings)

    def assemble(self, horizon_days: Optional[int] = None) -> OptimizationContext:
        horizon = self._settings.default_horizon_days if horizon_days is None else horizon_days
        validate_horizon(horizon)

        repository = self._repository
        with ThreadPoolExecutor(
            max_workers=self._settings.reader_max_workers,
            thread_name_prefix="context-read",
        ) as pool:
            trends_future = pool.submit(
                repository.get_reservation_trends,
                self._settings.trend_window_days,
            )
            load_future = pool.submit(repository.get_trip_load_factors, horizon)
            vehicles_future = pool.submit(repository.list_vehicles)
            incidents_future = pool.submit(
                repository.get_recent_incidents,
                self._settings.recent_incident_limit,
            )
            search_future = pool.submit(repository.get_search_stats)
            snapshot_future = pool.submit(repository.get_dashboard_snapshot)

            # result() re-raises the first read failure; nothing partial is returned.
            trends = trends_future.result()
            load_factors = load_future.result()
            vehicles = vehicles_future.result()
            incidents = incidents_future.result()
            search_stats = search_future.result()
            snapshot = snapshot_future.result()

        incident_trip_ids = [incident.trip_id for incident in incidents if incident.trip_id]
        incident_vehicle_ids = repository.get_trip_vehicle_ids(incident_trip_ids)

        logger.info(
            "Context assembled | horizon=%s | trends=%s | trips=%s | vehicles=%s | incidents=%s",
            horizon,
            len(trends),
            len(load_factors),
            len(vehicles),
            len(incidents),
        )
        return OptimizationContext(
            trends=trends,
            load_factors=load_factors,
            vehicles=vehicles,
            incidents=incidents,
            search_stats=search_stats,
            snapshot=snapshot,
            incident_vehicle_ids=incident_vehicle_ids,
        )
