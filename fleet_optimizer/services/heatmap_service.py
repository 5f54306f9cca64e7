"""Route occupancy heatmap and fleet balance KPIs."""

from __future__ import annotations

import numpy as np

from fleet_optimizer.domain.models import BalanceKPIs, ComputeContext, HeatmapEntry
from fleet_optimizer.services.route_service import aggregate_route_load
from fleet_optimizer.utils.numeric import clamp, round_half_up


DEFAULT_DEMAND_CONFIDENCE = 0.7
BASE_BALANCE_SCORE = 45


def build_heatmap_data(ctx: ComputeContext) -> list[HeatmapEntry]:
    """One heatmap cell per aggregated route."""
    forecast = ctx.demand_forecast
    total_demand = sum(entry.demand for entry in forecast)
    avg_daily_demand = total_demand / len(forecast) if forecast else 0.0
    demand_confidence = forecast[0].confidence if forecast else DEFAULT_DEMAND_CONFIDENCE

    entries = []
    for bucket in aggregate_route_load(ctx.load_factors):
        occupancy = bucket.occupancy
        entries.append(
            HeatmapEntry(
                route_label=f"{bucket.origin} → {bucket.destination}",
                origin=bucket.origin,
                destination=bucket.destination,
                occupancy=round(occupancy, 2),
                avg_price=round(bucket.avg_price, 2),
                demand=round_half_up(avg_daily_demand * occupancy),
                demand_confidence=demand_confidence,
                capacity=bucket.total_capacity,
                reserved=bucket.total_reserved,
                geo_zone=bucket.origin.split(" ")[0].upper(),
                vehicle_count=len(bucket.vehicle_ids),
            )
        )
    return entries


def compute_balance_kpis(ctx: ComputeContext) -> BalanceKPIs:
    """Fleet-wide balance indicators.

    ``average_occupancy`` is reported as a percentage with one decimal; the
    balance score uses the underlying 0-1 ratio.
    """
    if not ctx.load_factors:
        average_ratio = 0.0
        total_capacity = 0
    else:
        reserved = np.array([factor.reserved for factor in ctx.load_factors], dtype=float)
        capacity = np.array([factor.capacity for factor in ctx.load_factors], dtype=float)
        ratios = np.zeros_like(reserved)
        np.divide(reserved, capacity, out=ratios, where=capacity > 0)
        ratios = np.clip(ratios, 0.0, 1.0)
        average_ratio = float(ratios.mean())
        total_capacity = int(np.clip(capacity, 0, None).sum())

    total_demand = sum(entry.demand for entry in ctx.demand_forecast)
    balance_score = clamp(round_half_up(BASE_BALANCE_SCORE + average_ratio * 55), 0, 100)
    return BalanceKPIs(
        average_occupancy=round(average_ratio * 100, 1),
        unmet_demand=max(0, total_demand - total_capacity),
        balance_score=int(balance_score),
    )
