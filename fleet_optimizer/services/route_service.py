"""Folds per-trip load factors into per-route buckets."""

from __future__ import annotations

from typing import Iterable

from fleet_optimizer.domain.models import RouteBucket, TripLoadFactor
from fleet_optimizer.utils.numeric import capitalize_words


DEFAULT_ORIGIN_LABEL = "Itinéraire"
DEFAULT_DESTINATION_LABEL = "Destination"


def route_key(origin: str | None, destination: str | None) -> tuple[str, str]:
    """Normalise a pair of free-text labels into the aggregation key."""
    return (
        capitalize_words(origin) or DEFAULT_ORIGIN_LABEL,
        capitalize_words(destination) or DEFAULT_DESTINATION_LABEL,
    )


def aggregate_route_load(load_factors: Iterable[TripLoadFactor]) -> list[RouteBucket]:
    """Group trips by (origin, destination); buckets keep first-appearance order.

    Sums are commutative, so shuffling the input changes only the list order,
    never a bucket's totals. Over-booked trips are accepted as-is.
    """
    accumulators: dict[tuple[str, str], dict] = {}
    for entry in load_factors:
        key = route_key(entry.origin, entry.destination)
        bucket = accumulators.setdefault(
            key,
            {
                "total_reserved": 0,
                "total_capacity": 0,
                "price_sum": 0.0,
                "trip_count": 0,
                "vehicle_ids": set(),
            },
        )
        bucket["total_reserved"] += entry.reserved
        bucket["total_capacity"] += entry.capacity
        bucket["price_sum"] += entry.price or 0.0
        bucket["trip_count"] += 1
        if entry.vehicle_id:
            bucket["vehicle_ids"].add(entry.vehicle_id)

    return [
        RouteBucket(
            origin=origin,
            destination=destination,
            total_reserved=values["total_reserved"],
            total_capacity=values["total_capacity"],
            price_sum=values["price_sum"],
            trip_count=values["trip_count"],
            vehicle_ids=tuple(sorted(values["vehicle_ids"])),
        )
        for (origin, destination), values in accumulators.items()
    ]
