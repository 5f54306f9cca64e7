"""Tests for horizon and rule validation helpers."""

from __future__ import annotations

import pytest

from fleet_optimizer.domain.constraints import (
    PREDICTIVE_INSIGHTS_HORIZON_BOUNDS,
    RECOMMENDATION_HORIZON_BOUNDS,
    clamp_horizon,
    parse_horizon_param,
    validate_horizon,
    validate_rule_fields,
)
from fleet_optimizer.utils.numeric import average, capitalize_words, round_half_up


# --- Horizon ---

@pytest.mark.parametrize("horizon", [1, 7, 14])
def test_valid_horizon_passes(horizon: int) -> None:
    validate_horizon(horizon)


@pytest.mark.parametrize("horizon", [0, 15, -1, True, 3.5])
def test_invalid_horizon_raises(horizon) -> None:
    with pytest.raises(ValueError):
        validate_horizon(horizon)


def test_clamp_horizon_per_surface() -> None:
    assert clamp_horizon(None, RECOMMENDATION_HORIZON_BOUNDS) == 7
    assert clamp_horizon(1, RECOMMENDATION_HORIZON_BOUNDS) == 3
    assert clamp_horizon(30, RECOMMENDATION_HORIZON_BOUNDS) == 14
    assert clamp_horizon(2, PREDICTIVE_INSIGHTS_HORIZON_BOUNDS) == 5
    assert clamp_horizon(9, PREDICTIVE_INSIGHTS_HORIZON_BOUNDS) == 9


@pytest.mark.parametrize(
    ("raw", "expected"),
    [(None, None), ("9", 9), ("4.7", 4), ("", None), ("soon", None), ("nan", None), ("inf", None)],
)
def test_parse_horizon_param_treats_non_finite_as_absent(raw, expected) -> None:
    assert parse_horizon_param(raw) == expected


# --- Rule fields ---

def test_valid_rule_fields_pass() -> None:
    validate_rule_fields(
        name="Coastal peak",
        route_pattern="^tunis",
        threshold=0.9,
        min_rest_hours=8,
        service_window="05:00-23:00",
    )


@pytest.mark.parametrize(
    "fields",
    [
        {"name": "ab"},
        {"route_pattern": "(["},
        {"threshold": -0.1},
        {"threshold": 5.1},
        {"min_rest_hours": -1},
        {"service_window": "5:00-23:00"},
    ],
)
def test_invalid_rule_fields_raise(fields) -> None:
    with pytest.raises(ValueError):
        validate_rule_fields(**fields)


# --- Numeric helpers ---

def test_round_half_up_differs_from_bankers_rounding() -> None:
    assert round_half_up(6.5) == 7
    assert round_half_up(2.5) == 3
    assert round_half_up(2.49) == 2
    assert round(2.5) == 2


def test_average_and_capitalize_helpers() -> None:
    assert average([], fallback=0.35) == 0.35
    assert average([1.0, 2.0, float("nan")]) == pytest.approx(1.5)
    assert capitalize_words("la marsa") == "La Marsa"
    assert capitalize_words(None) == ""
