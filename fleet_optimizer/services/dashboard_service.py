"""Fleet stress index, anomaly alerts and opportunity windows."""

from __future__ import annotations

from typing import Sequence

from fleet_optimizer.domain.models import (
    DashboardAlert,
    DashboardSnapshot,
    MaintenanceInsight,
    OpportunityWindow,
    PredictiveDashboardSnapshot,
    PricingAction,
    PricingInsight,
)
from fleet_optimizer.utils.numeric import clamp, round_half_up


INCIDENT_PEAK_THRESHOLD = 3
SATURATION_OCCUPANCY_PERCENT = 95
DEMAND_PRESSURE_POINTS = 25

_WINDOWS = {
    PricingAction.INCREASE: ("48h", "+6% margin"),
    PricingAction.DECREASE: ("72h", "+15% fill"),
}


def demand_pressure(snapshot: DashboardSnapshot) -> int:
    """25 when today's bookings outrun four per scheduled trip, else 0."""
    if snapshot.reservations_today > max(snapshot.total_trips, 1) * 4:
        return DEMAND_PRESSURE_POINTS
    return 0


def stress_index(snapshot: DashboardSnapshot, maintenance: MaintenanceInsight) -> int:
    factors = (
        snapshot.incidents_open * 8,
        demand_pressure(snapshot),
        maintenance.fleet_risk_index * 0.5,
    )
    return int(clamp(round_half_up(sum(factors) / len(factors)), 10, 100))


def build_predictive_overview(
    snapshot: DashboardSnapshot,
    pricing_insights: Sequence[PricingInsight],
    maintenance: MaintenanceInsight,
) -> PredictiveDashboardSnapshot:
    alerts: list[DashboardAlert] = []
    if snapshot.incidents_open > INCIDENT_PEAK_THRESHOLD:
        alerts.append(
            DashboardAlert(
                id="incident-peak",
                severity="high",
                message=f"{snapshot.incidents_open} active incidents: mobilise the field team",
            )
        )
    if any(
        insight.action == PricingAction.INCREASE
        and insight.occupancy > SATURATION_OCCUPANCY_PERCENT
        for insight in pricing_insights
    ):
        alerts.append(
            DashboardAlert(
                id="saturation",
                severity="medium",
                message="Heavy saturation on a recurring line: consider reinforcing the fleet",
            )
        )

    windows = [
        OpportunityWindow(
            route=insight.route,
            window=_WINDOWS[insight.action][0],
            action=insight.action.value,
            gain_potential=_WINDOWS[insight.action][1],
        )
        for insight in pricing_insights
        if insight.action != PricingAction.HOLD
    ]
    return PredictiveDashboardSnapshot(
        stress_index=stress_index(snapshot, maintenance),
        alerts=alerts,
        opportunity_windows=windows,
    )
