from __future__ import annotations

from datetime import datetime, timedelta

import pytest

from fleet_optimizer.domain.models import (
    ComputeContext,
    DashboardSnapshot,
    MaintenanceInsight,
    OptimizationRule,
    TripLoadFactor,
)
from fleet_optimizer.services.matching_service import (
    generate_operational_recommendations,
    rule_matches,
)


DEPARTURE = datetime(2026, 3, 5, 7, 30)


def _trip(
    trip_id: str,
    origin: str,
    destination: str,
    reserved: int,
    capacity: int,
    vehicle_id: str | None,
    departure: datetime | None = DEPARTURE,
) -> TripLoadFactor:
    return TripLoadFactor(
        trip_id=trip_id,
        origin=origin,
        destination=destination,
        departure=departure,
        capacity=capacity,
        reserved=reserved,
        price=20.0,
        vehicle_id=vehicle_id,
        driver_id=f"driver-{trip_id}",
        vehicle_plate=f"TN-{vehicle_id}" if vehicle_id else None,
    )


def _ctx(load_factors: list[TripLoadFactor]) -> ComputeContext:
    return ComputeContext(
        load_factors=load_factors,
        maintenance=MaintenanceInsight(fleet_risk_index=35, vehicles=[]),
        demand_forecast=[],
        snapshot=DashboardSnapshot(0, 0, 0, 0, 0.0, 0.0, 0),
    )


def _rule(rule_id: str, **overrides) -> OptimizationRule:
    return OptimizationRule(rule_id=rule_id, name=f"rule {rule_id}", **overrides)


def test_single_pair_example_scores() -> None:
    recipient = _trip("r1", "tunis", "sousse", 19, 20, "V2", DEPARTURE + timedelta(hours=3))
    donor = _trip("d1", "sfax", "gabes", 6, 20, "V1")

    (suggestion,) = generate_operational_recommendations(_ctx([donor, recipient]))

    assert suggestion.recommended_vehicle_id == "V1"
    assert suggestion.recommended_driver_id == "driver-d1"
    assert suggestion.route_from == "Sfax -> Gabes"
    assert suggestion.route_to == "Tunis -> Sousse"
    assert suggestion.recommended_start == DEPARTURE + timedelta(hours=3)
    assert suggestion.confidence == pytest.approx(0.875)
    assert suggestion.priority == 7
    assert suggestion.metadata.demand_gap == pytest.approx(0.65)
    assert suggestion.metadata.high_occupancy == pytest.approx(0.95)
    assert suggestion.metadata.low_occupancy == pytest.approx(0.3)
    assert suggestion.metadata.schema_version == 1
    assert suggestion.matched_rule_id is None
    assert suggestion.auto_apply is False
    assert "TN-V1" in suggestion.narrative
    assert suggestion.reason == "Projected demand 95% vs 30% load factor."


def test_donor_vehicle_is_never_reused() -> None:
    trips = [
        _trip("r1", "tunis", "sousse", 20, 20, "V9"),
        _trip("r2", "tunis", "bizerte", 19, 20, "V8"),
        _trip("r3", "sfax", "tunis", 18, 20, "V7"),
        _trip("d1", "nabeul", "hammamet", 2, 20, "V1"),
        _trip("d2", "sousse", "monastir", 4, 20, "V1"),
        _trip("d3", "gabes", "sfax", 6, 20, "V3"),
    ]

    suggestions = generate_operational_recommendations(_ctx(trips))

    vehicles = [suggestion.recommended_vehicle_id for suggestion in suggestions]
    assert sorted(vehicles) == ["V1", "V3"]
    assert len(set(vehicles)) == len(vehicles)


def test_recipient_route_is_never_its_own_donor() -> None:
    trips = [
        _trip("r1", "tunis", "sousse", 19, 20, "V2"),
        _trip("d1", "Tunis", "Sousse", 4, 20, "V1"),
    ]

    assert generate_operational_recommendations(_ctx(trips)) == []


def test_donor_sharing_recipient_vehicle_is_skipped() -> None:
    trips = [
        _trip("r1", "tunis", "sousse", 19, 20, "V1"),
        _trip("d1", "sfax", "gabes", 2, 20, "V1"),
        _trip("d2", "sfax", "gabes", 7, 20, "V4"),
    ]

    (suggestion,) = generate_operational_recommendations(_ctx(trips))

    assert suggestion.recommended_vehicle_id == "V4"
    assert suggestion.priority == 6


def test_at_most_three_suggestions() -> None:
    trips = [_trip(f"r{index}", f"city{index}", "hub", 20, 20, f"R{index}") for index in range(5)]
    trips += [_trip(f"d{index}", f"town{index}", "depot", 1, 20, f"D{index}") for index in range(5)]

    suggestions = generate_operational_recommendations(_ctx(trips))

    assert len(suggestions) == 3
    assert all(0 <= suggestion.confidence <= 0.95 for suggestion in suggestions)
    assert all(1 <= suggestion.priority <= 9 for suggestion in suggestions)


def test_trips_without_capacity_or_departure_are_ignored() -> None:
    trips = [
        _trip("r1", "tunis", "sousse", 19, 20, "V2", departure=None),
        _trip("r2", "tunis", "sfax", 5, 0, "V5"),
        _trip("d1", "sfax", "gabes", 1, 20, "V1"),
    ]

    assert generate_operational_recommendations(_ctx(trips)) == []


def test_donors_without_vehicle_are_not_used() -> None:
    trips = [
        _trip("r1", "tunis", "sousse", 19, 20, "V2"),
        _trip("d1", "sfax", "gabes", 1, 20, None),
    ]

    assert generate_operational_recommendations(_ctx(trips)) == []


def test_first_qualifying_rule_is_attached() -> None:
    trips = [
        _trip("r1", "tunis", "sousse", 19, 20, "V2"),
        _trip("d1", "sfax", "gabes", 6, 20, "V1"),
    ]
    rules = [
        _rule("disabled", enabled=False, threshold=0.5),
        _rule("broken", route_pattern="([", threshold=0.5),
        _rule("other-route", route_pattern="^sfax", threshold=0.5),
        _rule("default-threshold", route_pattern="tunis"),
        _rule("match", route_pattern="TUNIS -> sou", threshold=0.9, auto_apply=True),
        _rule("late", threshold=0.1),
    ]

    (suggestion,) = generate_operational_recommendations(_ctx(trips), rules)

    assert suggestion.matched_rule_id == "match"
    assert suggestion.auto_apply is True
    assert suggestion.metadata.rule_id == "match"
    assert suggestion.metadata.auto_apply is True


def test_rule_threshold_compares_raw_ratio() -> None:
    default_rule = _rule("default")

    assert default_rule.threshold == pytest.approx(1.2)
    assert rule_matches(default_rule, "Tunis -> Sousse", 1.0) is False
    assert rule_matches(_rule("low", threshold=0.85), "Tunis -> Sousse", 0.85) is True


def test_no_recipients_means_no_suggestions() -> None:
    trips = [_trip("d1", "sfax", "gabes", 1, 20, "V1"), _trip("d2", "tunis", "sousse", 12, 20, "V2")]

    assert generate_operational_recommendations(_ctx(trips)) == []
    assert generate_operational_recommendations(_ctx([])) == []
