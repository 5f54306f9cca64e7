"""Greedy recipient/donor matching for vehicle reallocation suggestions."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional, Sequence

from fleet_optimizer.domain.models import (
    ComputeContext,
    OptimizationRule,
    RecommendationMetadata,
    RecommendationSuggestion,
    TripLoadFactor,
)
from fleet_optimizer.services.route_service import route_key
from fleet_optimizer.utils.logger import get_logger
from fleet_optimizer.utils.numeric import round_half_up


logger = get_logger(__name__)

RECIPIENT_MIN_OCCUPANCY = 0.85
DONOR_MAX_OCCUPANCY = 0.60
MAX_SUGGESTIONS = 3
MAX_CONFIDENCE = 0.95
MAX_PRIORITY = 9


@dataclass(frozen=True)
class _EnrichedTrip:
    trip: TripLoadFactor
    occupancy: float
    route: tuple[str, str]

    @property
    def route_label(self) -> str:
        return f"{self.route[0]} -> {self.route[1]}"


def _enrich(load_factors: Sequence[TripLoadFactor]) -> list[_EnrichedTrip]:
    return [
        _EnrichedTrip(
            trip=factor,
            occupancy=min(1.0, factor.reserved / factor.capacity),
            route=route_key(factor.origin, factor.destination),
        )
        for factor in load_factors
        if factor.capacity > 0 and factor.departure is not None
    ]


def rule_matches(rule: OptimizationRule, route_label: str, occupancy: float) -> bool:
    """True when an enabled rule's pattern and threshold both accept the route.

    The threshold is compared against the raw 0-1 occupancy ratio, so a rule
    left at the 1.2 default never qualifies.
    """
    if not rule.enabled:
        return False
    if rule.route_pattern:
        try:
            if re.search(rule.route_pattern, route_label, re.IGNORECASE) is None:
                return False
        except re.error:
            logger.warning(
                "Skipping rule with invalid route pattern | rule_id=%s | pattern=%s",
                rule.rule_id,
                rule.route_pattern,
            )
            return False
    return occupancy >= rule.threshold


def find_matching_rule(
    rules: Sequence[OptimizationRule],
    route_label: str,
    occupancy: float,
) -> Optional[OptimizationRule]:
    return next((rule for rule in rules if rule_matches(rule, route_label, occupancy)), None)


def _pick_donor(
    donors: list[_EnrichedTrip],
    recipient: _EnrichedTrip,
    used_vehicle_ids: set[str],
) -> Optional[_EnrichedTrip]:
    for index, donor in enumerate(donors):
        vehicle_id = donor.trip.vehicle_id
        if not vehicle_id or vehicle_id == recipient.trip.vehicle_id:
            continue
        if vehicle_id in used_vehicle_ids or donor.route == recipient.route:
            continue
        return donors.pop(index)
    return None


def generate_operational_recommendations(
    ctx: ComputeContext,
    rules: Sequence[OptimizationRule] = (),
) -> list[RecommendationSuggestion]:
    """Pair saturated trips with under-used donor trips, at most three pairs.

    Recipients are visited from the fullest down; each takes the emptiest
    donor whose vehicle is free, is not the recipient's own vehicle and serves
    a different route. Recipients without a donor are skipped. Nothing is
    persisted here.
    """
    enriched = _enrich(ctx.load_factors)
    recipients = sorted(
        (trip for trip in enriched if trip.occupancy >= RECIPIENT_MIN_OCCUPANCY),
        key=lambda trip: trip.occupancy,
        reverse=True,
    )
    donors = sorted(
        (
            trip
            for trip in enriched
            if trip.occupancy <= DONOR_MAX_OCCUPANCY and trip.trip.vehicle_id
        ),
        key=lambda trip: trip.occupancy,
    )

    suggestions: list[RecommendationSuggestion] = []
    used_vehicle_ids: set[str] = set()
    for recipient in recipients:
        if len(suggestions) >= MAX_SUGGESTIONS:
            break
        donor = _pick_donor(donors, recipient, used_vehicle_ids)
        if donor is None:
            continue
        used_vehicle_ids.add(donor.trip.vehicle_id)

        gap = round(recipient.occupancy - donor.occupancy, 4)
        rule = find_matching_rule(rules, recipient.route_label, recipient.occupancy)
        vehicle_label = donor.trip.vehicle_plate or donor.trip.vehicle_id
        suggestions.append(
            RecommendationSuggestion(
                route_from=donor.route_label,
                route_to=recipient.route_label,
                recommended_start=recipient.trip.departure,
                narrative=(
                    f"Reassign vehicle {vehicle_label} from {donor.route_label} "
                    f"to {recipient.route_label} to absorb the projected demand."
                ),
                reason=(
                    f"Projected demand {round_half_up(recipient.occupancy * 100)}% "
                    f"vs {round_half_up(donor.occupancy * 100)}% load factor."
                ),
                confidence=min(MAX_CONFIDENCE, 0.55 + gap * 0.5),
                priority=max(1, round_half_up(min(MAX_PRIORITY, gap * 10))),
                metadata=RecommendationMetadata(
                    high_occupancy=recipient.occupancy,
                    low_occupancy=donor.occupancy,
                    demand_gap=gap,
                    rule_id=rule.rule_id if rule else None,
                    auto_apply=rule.auto_apply if rule else False,
                ),
                recommended_vehicle_id=donor.trip.vehicle_id,
                recommended_driver_id=donor.trip.driver_id,
                matched_rule_id=rule.rule_id if rule else None,
                auto_apply=rule.auto_apply if rule else False,
            )
        )

    logger.info(
        "Reallocation matching completed | recipients=%s | donors_left=%s | suggestions=%s",
        len(recipients),
        len(donors),
        len(suggestions),
    )
    return suggestions
