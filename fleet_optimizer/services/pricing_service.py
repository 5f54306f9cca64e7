"""Route-level dynamic pricing guidance."""

from __future__ import annotations

from typing import Sequence

from fleet_optimizer.domain.models import PricingAction, PricingInsight, RouteBucket
from fleet_optimizer.utils.numeric import clamp, round_half_up


INCREASE_OCCUPANCY = 0.90
DECREASE_OCCUPANCY = 0.50
INCREASE_DELTA = 8
DECREASE_DELTA = -6
MAX_PRICING_INSIGHTS = 4

_RATIONALES = {
    PricingAction.INCREASE: "Heavy saturation, seat availability is under pressure",
    PricingAction.DECREASE: "Persistent under-use, run a targeted promotion",
    PricingAction.HOLD: "Load factor within the 70-85% target band",
}


def classify_occupancy(occupancy: float) -> tuple[PricingAction, int]:
    if occupancy >= INCREASE_OCCUPANCY:
        return PricingAction.INCREASE, INCREASE_DELTA
    if occupancy <= DECREASE_OCCUPANCY:
        return PricingAction.DECREASE, DECREASE_DELTA
    return PricingAction.HOLD, 0


def build_pricing_insights(routes: Sequence[RouteBucket]) -> list[PricingInsight]:
    insights = []
    for route in routes:
        occupancy = route.occupancy
        action, delta = classify_occupancy(occupancy)
        insights.append(
            PricingInsight(
                route=route.label,
                action=action,
                delta=delta,
                occupancy=round(occupancy * 100, 1),
                recommended_price=round_half_up(route.avg_price * (1 + delta / 100)),
                rationale=_RATIONALES[action],
                confidence=clamp(occupancy * 0.8 + 0.2, 0.45, 0.9),
            )
        )
    # sorted() is stable: equal |delta| keeps aggregation order.
    insights = sorted(insights, key=lambda insight: abs(insight.delta), reverse=True)
    return insights[:MAX_PRICING_INSIGHTS]
