"""Per-vehicle maintenance risk scoring."""

from __future__ import annotations

from collections import Counter, defaultdict
from datetime import date, timedelta
from typing import Mapping, Optional, Sequence

from fleet_optimizer.domain.models import (
    VEHICLE_STATUS_AVAILABLE,
    VEHICLE_STATUS_MAINTENANCE,
    Incident,
    MaintenanceInsight,
    RiskLabel,
    TripLoadFactor,
    Vehicle,
    VehicleRisk,
)
from fleet_optimizer.utils.clock import utc_today
from fleet_optimizer.utils.numeric import average, clamp, round_half_up


BASE_RISK = 35
EMPTY_FLEET_RISK_INDEX = 35
NO_LOAD_OCCUPANCY = 0.35
MAX_RISK_VEHICLES = 4

_RECOMMENDATIONS = {
    RiskLabel.HIGH: "Schedule priority maintenance",
    RiskLabel.MEDIUM: "Reduce load or inspect within 72h",
    RiskLabel.LOW: "Nominal pace, routine monitoring",
}


def risk_label(score: float) -> RiskLabel:
    if score >= 70:
        return RiskLabel.HIGH
    if score >= 45:
        return RiskLabel.MEDIUM
    return RiskLabel.LOW


def count_incidents_by_vehicle(
    incidents: Sequence[Incident],
    incident_vehicle_ids: Mapping[str, str],
) -> Counter:
    """Count incidents whose trip resolves to a vehicle."""
    counts: Counter = Counter()
    for incident in incidents:
        if not incident.trip_id:
            continue
        vehicle_id = incident_vehicle_ids.get(incident.trip_id)
        if vehicle_id:
            counts[vehicle_id] += 1
    return counts


def score_vehicle(
    vehicle: Vehicle,
    incident_count: int,
    loads: Sequence[TripLoadFactor],
    today: date,
) -> VehicleRisk:
    avg_occupancy = average(
        (load.reserved / load.capacity if load.capacity else 0.0 for load in loads),
        fallback=NO_LOAD_OCCUPANCY,
    )
    score = BASE_RISK + incident_count * 20 + len(loads) * 3 + avg_occupancy * 25
    if vehicle.status == VEHICLE_STATUS_MAINTENANCE:
        score += 15
    elif vehicle.status == VEHICLE_STATUS_AVAILABLE and avg_occupancy < 0.4:
        score -= 5
    score = clamp(score, 10, 100)
    label = risk_label(score)
    return VehicleRisk(
        vehicle_id=vehicle.vehicle_id,
        plate=vehicle.plate,
        status=vehicle.status,
        incident_count=incident_count,
        risk_score=round_half_up(score),
        risk_label=label,
        avg_occupancy_percent=round(avg_occupancy * 100, 1),
        next_check_date=today + timedelta(days=max(2, 10 - incident_count * 2)),
        recommendation=_RECOMMENDATIONS[label],
    )


def build_maintenance_outlook(
    vehicles: Sequence[Vehicle],
    incidents: Sequence[Incident],
    incident_vehicle_ids: Mapping[str, str],
    load_factors: Sequence[TripLoadFactor],
    today: Optional[date] = None,
) -> MaintenanceInsight:
    """Score every vehicle, then keep the four riskiest.

    The fleet index averages all scores, not only the ones returned.
    """
    check_day = today or utc_today()
    incident_counts = count_incidents_by_vehicle(incidents, incident_vehicle_ids)

    loads_by_vehicle: dict[str, list[TripLoadFactor]] = defaultdict(list)
    for load in load_factors:
        if load.vehicle_id:
            loads_by_vehicle[load.vehicle_id].append(load)

    scored = [
        score_vehicle(
            vehicle,
            incident_counts.get(vehicle.vehicle_id, 0),
            loads_by_vehicle.get(vehicle.vehicle_id, []),
            check_day,
        )
        for vehicle in vehicles
    ]
    fleet_risk_index = round_half_up(
        average((risk.risk_score for risk in scored), fallback=EMPTY_FLEET_RISK_INDEX)
    )
    ranked = sorted(scored, key=lambda risk: risk.risk_score, reverse=True)
    return MaintenanceInsight(
        fleet_risk_index=fleet_risk_index,
        vehicles=ranked[:MAX_RISK_VEHICLES],
    )
