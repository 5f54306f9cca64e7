"""Domain-level validation rules for optimization inputs."""

from __future__ import annotations

import math
import re


MIN_HORIZON_DAYS = 1
MAX_HORIZON_DAYS = 14

RECOMMENDATION_HORIZON_BOUNDS = (3, 14)
PREDICTIVE_INSIGHTS_HORIZON_BOUNDS = (5, 14)

SERVICE_WINDOW_PATTERN = r"^\d{2}:\d{2}-\d{2}:\d{2}$"


def validate_horizon(horizon_days: int) -> None:
    if isinstance(horizon_days, bool) or not isinstance(horizon_days, int):
        raise ValueError("horizon_days must be an integer")
    if not MIN_HORIZON_DAYS <= horizon_days <= MAX_HORIZON_DAYS:
        raise ValueError(
            f"horizon_days must be between {MIN_HORIZON_DAYS} and {MAX_HORIZON_DAYS}"
        )


def parse_horizon_param(raw: str | None) -> int | None:
    """Read a query-string horizon; anything that is not a finite number counts as absent."""
    if raw is None:
        return None
    try:
        value = float(raw)
    except ValueError:
        return None
    if not math.isfinite(value):
        return None
    return int(value)


def clamp_horizon(horizon_days: int | None, bounds: tuple[int, int], default: int = 7) -> int:
    """Clamp a caller-supplied horizon into an endpoint's accepted range."""
    if horizon_days is None:
        return default
    lower, upper = bounds
    return max(lower, min(upper, int(horizon_days)))


def validate_rule_fields(
    *,
    name: str | None = None,
    route_pattern: str | None = None,
    threshold: float | None = None,
    min_rest_hours: int | None = None,
    service_window: str | None = None,
) -> None:
    if name is not None and len(name.strip()) < 3:
        raise ValueError("rule name must contain at least 3 characters")
    if route_pattern:
        try:
            re.compile(route_pattern)
        except re.error as exc:
            raise ValueError(f"route_pattern is not a valid expression: {exc}") from exc
    if threshold is not None and not 0.0 <= threshold <= 5.0:
        raise ValueError("threshold must be between 0 and 5")
    if min_rest_hours is not None and min_rest_hours < 0:
        raise ValueError("min_rest_hours must be >= 0")
    if service_window is not None and re.fullmatch(SERVICE_WINDOW_PATTERN, service_window) is None:
        raise ValueError("service_window must follow HH:MM-HH:MM format")
