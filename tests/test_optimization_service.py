from __future__ import annotations

import sqlite3
import time
from dataclasses import replace
from datetime import date, datetime, timedelta, timezone

import pytest

from fleet_optimizer.domain.models import ComputeContext, OptimizationReport
from fleet_optimizer.repository.data_repository import DataRepository, RepositoryError
from fleet_optimizer.services import optimization_service as optimization_service_module
from fleet_optimizer.services.optimization_service import (
    OptimizationValidationError,
    RecommendationNotFoundError,
    ResourceOptimizationService,
)
from fleet_optimizer.services.simulation_service import RuleOverride
from fleet_optimizer.utils.config import get_settings


def _build_test_settings(tmp_path, filename: str):
    get_settings.cache_clear()
    return replace(
        get_settings(),
        database_path=tmp_path / filename,
        scheduler_enabled=False,
        reader_max_workers=4,
    )


def _seed_reallocation_case(repository: DataRepository) -> None:
    """One saturated trip and one nearly empty trip on different vehicles."""
    now = datetime.now(timezone.utc)
    busy_vehicle = repository.create_vehicle("TN-900", 20, status="on_route")
    idle_vehicle = repository.create_vehicle("TN-901", 20, status="available")
    busy_trip = repository.create_trip(
        origin="tunis",
        destination="sousse",
        departure=now + timedelta(days=1),
        seat_capacity=20,
        price=18.0,
        vehicle_id=busy_vehicle,
    )
    idle_trip = repository.create_trip(
        origin="sfax",
        destination="gabes",
        departure=now + timedelta(days=2),
        seat_capacity=20,
        price=12.0,
        vehicle_id=idle_vehicle,
        driver_id="driver-3",
    )
    repository.create_reservation(busy_trip, 19, 342.0)
    repository.create_reservation(idle_trip, 6, 72.0)
    repository.create_incident(trip_id=busy_trip, incident_type="breakdown")


def _build_service(tmp_path, filename: str = "optimization.db") -> tuple[ResourceOptimizationService, DataRepository]:
    settings = _build_test_settings(tmp_path, filename)
    repository = DataRepository(settings)
    repository.initialize_database()
    _seed_reallocation_case(repository)
    service = ResourceOptimizationService(
        repository=repository,
        settings=settings,
        today_provider=lambda: date(2026, 3, 4),
    )
    return service, repository


def _wait_for(predicate, timeout: float = 5.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.02)
    return predicate()


def test_compute_report_is_side_effect_free(tmp_path) -> None:
    service, repository = _build_service(tmp_path)
    captured: list[ComputeContext] = []

    report = service.compute_report(5, on_compute=captured.append)

    assert report.horizon_days == 5
    assert [entry.date for entry in report.demand_forecast][0] == "2026-03-05"
    assert len(report.demand_forecast) == 5
    assert {insight.action.value for insight in report.pricing_insights} == {"augmenter", "baisser"}
    assert report.maintenance.vehicles[0].plate == "TN-900"
    assert report.maintenance.vehicles[0].incident_count == 1
    assert [scenario.id for scenario in report.impact_simulations] == [
        "extra-bus",
        "flash-offer",
        "predictive-maintenance",
    ]
    assert 10 <= report.predictive_dashboard.stress_index <= 100

    assert len(captured) == 1
    assert len(captured[0].load_factors) == 2
    assert service.get_latest_report() is None
    assert repository.count_recommendations() == 0


def test_report_serializes_to_plain_dict(tmp_path) -> None:
    service, _ = _build_service(tmp_path)

    payload = service.compute_report().to_dict()

    assert payload["horizon_days"] == 7
    assert payload["pricing_insights"][0]["action"] in {"augmenter", "baisser", "stabiliser"}
    assert payload["maintenance"]["vehicles"][0]["risk_label"] in {"low", "medium", "high"}
    assert isinstance(payload["maintenance"]["vehicles"][0]["next_check_date"], str)
    assert set(payload["predictive_dashboard"]) == {"stress_index", "alerts", "opportunity_windows"}


@pytest.mark.parametrize("horizon", [0, 15, -3])
def test_invalid_horizon_is_rejected(tmp_path, horizon: int) -> None:
    service, _ = _build_service(tmp_path)

    with pytest.raises(OptimizationValidationError):
        service.compute_report(horizon)


def test_run_cycle_persists_suggestions_and_caches_report(tmp_path) -> None:
    service, repository = _build_service(tmp_path)

    report = service.run_cycle(7)

    assert isinstance(report, OptimizationReport)
    assert service.get_latest_report() is report
    (stored,) = repository.list_optimization_recommendations()
    assert stored.status == "pending"
    assert stored.route_from == "Sfax -> Gabes"
    assert stored.route_to == "Tunis -> Sousse"
    assert stored.priority == 7
    assert stored.recommended_driver_id == "driver-3"


def test_persistence_failure_still_caches_report(tmp_path, monkeypatch) -> None:
    service, repository = _build_service(tmp_path)

    def _failing_write(suggestion):
        raise RepositoryError("disk full")

    monkeypatch.setattr(repository, "create_optimization_recommendation", _failing_write)

    report = service.run_cycle()

    assert service.get_latest_report() is report
    assert repository.count_recommendations() == 0


def test_read_failure_propagates_and_keeps_previous_report(tmp_path, monkeypatch) -> None:
    service, repository = _build_service(tmp_path)
    first = service.run_cycle()

    def _failing_read():
        raise sqlite3.OperationalError("database is locked")

    monkeypatch.setattr(repository, "list_vehicles", _failing_read)

    with pytest.raises(sqlite3.OperationalError):
        service.run_cycle()
    assert service.get_latest_report() is first


def test_scheduler_is_idempotent_and_runs_cycles(tmp_path) -> None:
    service, repository = _build_service(tmp_path)

    assert service.start_scheduler(interval_seconds=0.05) is True
    try:
        assert service.start_scheduler(interval_seconds=0.05) is False
        assert service.scheduler_running
        assert _wait_for(lambda: service.get_latest_report() is not None)
    finally:
        assert service.stop_scheduler() is True
    assert not service.scheduler_running
    assert service.stop_scheduler() is False
    assert repository.count_recommendations() >= 1


def test_scheduler_survives_failed_cycle(tmp_path, monkeypatch) -> None:
    service, repository = _build_service(tmp_path)
    original = repository.get_dashboard_snapshot
    calls = {"count": 0}

    def _flaky_snapshot():
        calls["count"] += 1
        if calls["count"] == 1:
            raise sqlite3.OperationalError("transient")
        return original()

    monkeypatch.setattr(repository, "get_dashboard_snapshot", _flaky_snapshot)

    service.start_scheduler(interval_seconds=0.05)
    try:
        assert _wait_for(lambda: service.get_latest_report() is not None)
    finally:
        service.stop_scheduler()
    assert calls["count"] >= 2


def test_scheduled_tick_is_skipped_while_cycle_in_flight(tmp_path) -> None:
    service, _ = _build_service(tmp_path)

    service._cycle_lock.acquire()
    try:
        service._scheduled_tick(None)
    finally:
        service._cycle_lock.release()

    assert service.get_latest_report() is None
    service._scheduled_tick(None)
    assert service.get_latest_report() is not None


def test_scheduler_rejects_non_positive_interval(tmp_path) -> None:
    service, _ = _build_service(tmp_path)

    with pytest.raises(OptimizationValidationError):
        service.start_scheduler(interval_seconds=0)


def test_simulate_uses_overrides_without_persisting(tmp_path) -> None:
    service, repository = _build_service(tmp_path)
    stored_rule = repository.create_optimization_rule(name="Coastal", route_pattern="sousse")

    baseline = service.simulate(5)
    assert baseline["suggestions"][0]["matched_rule_id"] is None

    result = service.simulate(
        5,
        [
            RuleOverride(rule_id=stored_rule.rule_id, threshold=0.9, auto_apply=True),
            RuleOverride(name="Temporary surge", threshold=0.5),
        ],
    )

    assert result["horizon_days"] == 5
    (suggestion,) = result["suggestions"]
    assert suggestion["matched_rule_id"] == stored_rule.rule_id
    assert suggestion["auto_apply"] is True
    assert [rule["name"] for rule in result["rules"]] == ["Coastal", "Temporary surge"]
    assert result["kpis"]["balance_score"] >= 45
    assert len(result["heatmap"]) == 2
    assert repository.count_recommendations() == 0
    assert repository.get_optimization_rule(stored_rule.rule_id).threshold == pytest.approx(1.2)


def test_simulate_rejects_invalid_override(tmp_path) -> None:
    service, _ = _build_service(tmp_path)

    with pytest.raises(OptimizationValidationError):
        service.simulate(5, [RuleOverride(name="Bad", service_window="5-23")])


def test_save_rules_updates_known_ids_and_creates_others(tmp_path) -> None:
    service, repository = _build_service(tmp_path)
    existing = repository.create_optimization_rule(name="Coastal")

    saved = service.save_rules(
        [
            RuleOverride(rule_id=existing.rule_id, name="Coastal v2", threshold=0.7),
            RuleOverride(rule_id="unknown", name="Recreated"),
            RuleOverride(name="Brand new", route_pattern="tunis"),
        ]
    )

    assert saved[0].rule_id == existing.rule_id
    assert saved[0].name == "Coastal v2"
    assert saved[0].threshold == pytest.approx(0.7)
    assert saved[1].rule_id != "unknown"
    assert len(repository.list_optimization_rules()) == 3

    with pytest.raises(OptimizationValidationError):
        service.save_rules([RuleOverride(threshold=0.5)])


def test_recommendation_view_and_status_update(tmp_path) -> None:
    service, _ = _build_service(tmp_path)
    service.run_cycle()

    view = service.list_recommendation_view(7, statuses=["pending"])
    (stored,) = view["stored_recommendations"]
    assert len(view["suggestions"]) == 1
    assert view["kpis"]["unmet_demand"] >= 0

    updated = service.update_recommendation_status(
        stored["recommendation_id"],
        "approved",
        priority=3,
        comment="dispatch",
    )
    assert updated.status == "approved"
    assert updated.priority == 3
    assert updated.metadata["annotations"]["comment"] == "dispatch"
    assert service.list_recommendation_view(7, statuses=["pending"])["stored_recommendations"] == []

    with pytest.raises(RecommendationNotFoundError):
        service.update_recommendation_status("missing", "rejected")
    with pytest.raises(OptimizationValidationError):
        service.update_recommendation_status(stored["recommendation_id"], "archived")


def test_default_today_follows_the_utc_calendar(tmp_path, monkeypatch) -> None:
    monkeypatch.setattr(optimization_service_module, "utc_today", lambda: date(2026, 3, 4))
    settings = _build_test_settings(tmp_path, "utc.db")
    repository = DataRepository(settings)
    repository.initialize_database()
    _seed_reallocation_case(repository)
    service = ResourceOptimizationService(repository=repository, settings=settings)

    report = service.compute_report(3)

    assert [entry.date for entry in report.demand_forecast] == ["2026-03-05", "2026-03-06", "2026-03-07"]
    assert report.maintenance.vehicles[0].next_check_date > date(2026, 3, 4)


def test_scheduler_period_does_not_stretch_with_cycle_duration(tmp_path, monkeypatch) -> None:
    service, _ = _build_service(tmp_path)
    started: list[float] = []

    def _slow_cycle(horizon_days):
        started.append(time.monotonic())
        time.sleep(0.2)

    monkeypatch.setattr(service, "_run_cycle_locked", _slow_cycle)

    service.start_scheduler(interval_seconds=0.3)
    try:
        assert _wait_for(lambda: len(started) >= 3)
    finally:
        service.stop_scheduler()

    gaps = [later - earlier for earlier, later in zip(started, started[1:])]
    assert all(gap < 0.42 for gap in gaps[:2])
