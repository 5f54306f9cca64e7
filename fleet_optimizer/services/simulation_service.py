"""What-if scenarios and transient rule overrides.

Nothing in this module touches the store: impact scenarios are derived from an
already computed report, and rule overrides only exist for the duration of a
single simulation request.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Optional, Sequence
from uuid import uuid4

from fleet_optimizer.domain.models import (
    ImpactSimulation,
    MaintenanceInsight,
    OptimizationRule,
    PricingAction,
    PricingInsight,
)
from fleet_optimizer.utils.logger import get_logger


logger = get_logger(__name__)

_OVERRIDABLE_FIELDS = (
    "name",
    "enabled",
    "route_pattern",
    "threshold",
    "auto_apply",
    "min_rest_hours",
    "service_window",
    "metadata",
)


@dataclass(frozen=True)
class RuleOverride:
    """Partial rule used for one simulation; unset fields keep stored values."""

    rule_id: Optional[str] = None
    name: Optional[str] = None
    enabled: Optional[bool] = None
    route_pattern: Optional[str] = None
    threshold: Optional[float] = None
    auto_apply: Optional[bool] = None
    min_rest_hours: Optional[int] = None
    service_window: Optional[str] = None
    metadata: Optional[dict[str, Any]] = field(default=None)

    def changes(self) -> dict[str, Any]:
        return {
            name: getattr(self, name)
            for name in _OVERRIDABLE_FIELDS
            if getattr(self, name) is not None
        }


def build_impact_simulations(
    pricing_insights: Sequence[PricingInsight],
    maintenance: MaintenanceInsight,
) -> list[ImpactSimulation]:
    """Turn the strongest signals into scenarios, in a fixed cascade order."""
    scenarios: list[ImpactSimulation] = []

    peak = next(
        (insight for insight in pricing_insights if insight.action == PricingAction.INCREASE),
        None,
    )
    if peak is not None:
        scenarios.append(
            ImpactSimulation(
                id="extra-bus",
                title=f"Add a rotation on {peak.route}",
                expected_gain="+12% satisfaction",
                cost="One extra bus and crew",
                confidence=peak.confidence,
                summary="Relieves saturated departures while keeping dynamic pricing.",
            )
        )

    soft = next(
        (insight for insight in pricing_insights if insight.action == PricingAction.DECREASE),
        None,
    )
    if soft is not None:
        scenarios.append(
            ImpactSimulation(
                id="flash-offer",
                title=f"Flash campaign {soft.route}",
                expected_gain="+18% fill over 72h",
                cost=f"- {abs(soft.delta)}% temporary",
                confidence=soft.confidence,
                summary="Wins back price-sensitive riders on low-pressure routes.",
            )
        )

    if maintenance.vehicles:
        top_risk = maintenance.vehicles[0]
        scenarios.append(
            ImpactSimulation(
                id="predictive-maintenance",
                title=f"Early inspection {top_risk.plate}",
                expected_gain="Secures availability for next week",
                cost="Vehicle off the road < 24h",
                confidence=min(0.9, top_risk.risk_score / 100 + 0.3),
                summary="Lowers incident risk on critical hubs.",
            )
        )

    if not scenarios:
        scenarios.append(
            ImpactSimulation(
                id="baseline",
                title="Stable scenario",
                expected_gain="+3% margin",
                cost="None",
                confidence=0.5,
                summary="Keep operating with closer monitoring.",
            )
        )
    return scenarios


def apply_rule_overrides(
    base_rules: Sequence[OptimizationRule],
    overrides: Optional[Sequence[RuleOverride]],
) -> list[OptimizationRule]:
    """Merge overrides into the stored rules without persisting anything.

    Overrides carrying an id patch the matching rule. Overrides without an id
    but with a name become temporary rules appended after the stored ones.
    Overrides with neither, or with an unknown id, are ignored.
    """
    if not overrides:
        return list(base_rules)

    by_id = {override.rule_id: override for override in overrides if override.rule_id}
    merged = [
        replace(rule, **by_id[rule.rule_id].changes()) if rule.rule_id in by_id else rule
        for rule in base_rules
    ]

    batch = uuid4().hex[:12]
    extras = [
        OptimizationRule(
            rule_id=f"temp-{batch}-{index}",
            name=override.name,
            enabled=True if override.enabled is None else override.enabled,
            route_pattern=override.route_pattern,
            threshold=1.2 if override.threshold is None else override.threshold,
            auto_apply=bool(override.auto_apply),
            min_rest_hours=8 if override.min_rest_hours is None else override.min_rest_hours,
            service_window=override.service_window or "05:00-23:00",
            metadata=dict(override.metadata or {}),
        )
        for index, override in enumerate(
            override for override in overrides if not override.rule_id and override.name
        )
    ]
    logger.info(
        "Rule overrides applied | patched=%s | temporary=%s",
        sum(1 for rule in base_rules if rule.rule_id in by_id),
        len(extras),
    )
    return merged + extras
