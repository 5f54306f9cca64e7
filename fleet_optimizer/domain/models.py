"""Domain models for fleet demand forecasting and resource optimization."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Optional


VEHICLE_STATUS_AVAILABLE = "available"
VEHICLE_STATUS_ON_ROUTE = "on_route"
VEHICLE_STATUS_MAINTENANCE = "maintenance"

INCIDENT_OPEN_STATUSES = ("open", "in_progress")

RECOMMENDATION_STATUSES = ("pending", "approved", "rejected")


class PricingAction(str, Enum):
    INCREASE = "augmenter"
    DECREASE = "baisser"
    HOLD = "stabiliser"


class RiskLabel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


@dataclass(frozen=True)
class TrendPoint:
    day: str
    reservations: int
    revenue: float


@dataclass(frozen=True)
class TripLoadFactor:
    trip_id: str
    origin: str
    destination: str
    departure: Optional[datetime]
    capacity: int
    reserved: int
    price: float
    status: Optional[str] = None
    vehicle_id: Optional[str] = None
    driver_id: Optional[str] = None
    vehicle_status: Optional[str] = None
    vehicle_plate: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["departure"] = self.departure.isoformat() if self.departure else None
        return payload


@dataclass(frozen=True)
class Vehicle:
    vehicle_id: str
    plate: str
    status: Optional[str]
    capacity: int


@dataclass(frozen=True)
class Incident:
    incident_id: str
    trip_id: Optional[str]
    incident_type: str
    severity: str
    status: str
    created_at: Optional[datetime] = None


@dataclass(frozen=True)
class SearchStat:
    origin: Optional[str]
    destination: Optional[str]
    total: int


@dataclass(frozen=True)
class DashboardSnapshot:
    total_vehicles: int
    total_trips: int
    active_trips: int
    reservations_today: int
    revenue_today: float
    revenue_month: float
    incidents_open: int


@dataclass(frozen=True)
class OptimizationRule:
    rule_id: str
    name: str
    enabled: bool = True
    route_pattern: Optional[str] = None
    # Compared directly against a 0-1 occupancy ratio.
    threshold: float = 1.2
    auto_apply: bool = False
    min_rest_hours: int = 8
    service_window: str = "05:00-23:00"
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class RouteBucket:
    origin: str
    destination: str
    total_reserved: int
    total_capacity: int
    price_sum: float
    trip_count: int
    vehicle_ids: tuple[str, ...]

    @property
    def occupancy(self) -> float:
        if not self.total_capacity:
            return 0.0
        return self.total_reserved / self.total_capacity

    @property
    def avg_price(self) -> float:
        if not self.trip_count:
            return 0.0
        return self.price_sum / self.trip_count

    @property
    def label(self) -> str:
        return f"{self.origin} -> {self.destination}"


@dataclass(frozen=True)
class ForecastDrivers:
    weather: float
    events: float
    search: float
    seasonality: float


@dataclass(frozen=True)
class DemandForecastEntry:
    date: str
    demand: int
    confidence: float
    drivers: ForecastDrivers

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class PricingInsight:
    route: str
    action: PricingAction
    delta: int
    occupancy: float
    recommended_price: int
    rationale: str
    confidence: float

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["action"] = self.action.value
        return payload


@dataclass(frozen=True)
class VehicleRisk:
    vehicle_id: str
    plate: str
    status: Optional[str]
    incident_count: int
    risk_score: int
    risk_label: RiskLabel
    avg_occupancy_percent: float
    next_check_date: date
    recommendation: str

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["risk_label"] = self.risk_label.value
        payload["next_check_date"] = self.next_check_date.isoformat()
        return payload


@dataclass(frozen=True)
class MaintenanceInsight:
    fleet_risk_index: int
    vehicles: list[VehicleRisk]

    def to_dict(self) -> dict[str, Any]:
        return {
            "fleet_risk_index": self.fleet_risk_index,
            "vehicles": [vehicle.to_dict() for vehicle in self.vehicles],
        }


@dataclass(frozen=True)
class ImpactSimulation:
    id: str
    title: str
    expected_gain: str
    cost: str
    confidence: float
    summary: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class DashboardAlert:
    id: str
    severity: str
    message: str


@dataclass(frozen=True)
class OpportunityWindow:
    route: str
    window: str
    action: str
    gain_potential: str


@dataclass(frozen=True)
class PredictiveDashboardSnapshot:
    stress_index: int
    alerts: list[DashboardAlert]
    opportunity_windows: list[OpportunityWindow]

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class OptimizationReport:
    generated_at: datetime
    horizon_days: int
    demand_forecast: list[DemandForecastEntry]
    pricing_insights: list[PricingInsight]
    maintenance: MaintenanceInsight
    impact_simulations: list[ImpactSimulation]
    predictive_dashboard: PredictiveDashboardSnapshot

    def to_dict(self) -> dict[str, Any]:
        return {
            "generated_at": self.generated_at.isoformat(),
            "horizon_days": self.horizon_days,
            "demand_forecast": [entry.to_dict() for entry in self.demand_forecast],
            "pricing_insights": [insight.to_dict() for insight in self.pricing_insights],
            "maintenance": self.maintenance.to_dict(),
            "impact_simulations": [scenario.to_dict() for scenario in self.impact_simulations],
            "predictive_dashboard": self.predictive_dashboard.to_dict(),
        }


@dataclass(frozen=True)
class RecommendationMetadata:
    """Versioned side-record attached to each reallocation suggestion."""

    high_occupancy: float
    low_occupancy: float
    demand_gap: float
    rule_id: Optional[str] = None
    auto_apply: bool = False
    annotations: dict[str, Any] = field(default_factory=dict)
    schema_version: int = 1

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class RecommendationSuggestion:
    route_from: str
    route_to: str
    recommended_start: datetime
    narrative: str
    reason: str
    confidence: float
    priority: int
    metadata: RecommendationMetadata
    recommended_vehicle_id: Optional[str] = None
    recommended_driver_id: Optional[str] = None
    matched_rule_id: Optional[str] = None
    auto_apply: bool = False

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        payload["recommended_start"] = self.recommended_start.isoformat()
        return payload


@dataclass(frozen=True)
class StoredRecommendation:
    recommendation_id: str
    route_from: str
    route_to: str
    recommended_start: str
    narrative: str
    reason: str
    priority: int
    confidence: float
    recommended_vehicle_id: Optional[str]
    recommended_driver_id: Optional[str]
    status: str
    metadata: dict[str, Any]
    created_at: str
    updated_at: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class HeatmapEntry:
    route_label: str
    origin: str
    destination: str
    occupancy: float
    avg_price: float
    demand: int
    demand_confidence: float
    capacity: int
    reserved: int
    geo_zone: str
    vehicle_count: int

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class BalanceKPIs:
    average_occupancy: float
    unmet_demand: int
    balance_score: int

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class OptimizationContext:
    """Raw reads for one cycle, as returned by the context assembler."""

    trends: list[TrendPoint]
    load_factors: list[TripLoadFactor]
    vehicles: list[Vehicle]
    incidents: list[Incident]
    search_stats: list[SearchStat]
    snapshot: DashboardSnapshot
    incident_vehicle_ids: dict[str, str]


@dataclass(frozen=True)
class ComputeContext:
    """Derived inputs shared by heatmap, KPI and reallocation builders."""

    load_factors: list[TripLoadFactor]
    maintenance: MaintenanceInsight
    demand_forecast: list[DemandForecastEntry]
    snapshot: DashboardSnapshot
