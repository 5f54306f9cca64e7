"""Day-of-week demand forecast built from the recent reservation trend."""

from __future__ import annotations

from dataclasses import asdict
from datetime import date, timedelta
from typing import Optional, Sequence

import pandas as pd

from fleet_optimizer.domain.constraints import validate_horizon
from fleet_optimizer.domain.models import (
    DemandForecastEntry,
    ForecastDrivers,
    SearchStat,
    TrendPoint,
)
from fleet_optimizer.utils.clock import utc_today
from fleet_optimizer.utils.numeric import clamp, round_half_up


DEFAULT_BASELINE_DEMAND = 45.0
MIN_DEMAND = 10
MIN_CONFIDENCE = 0.5
MAX_CONFIDENCE = 0.92
SEARCH_PRESSURE_CAP = 0.30
NO_SEARCH_PRESSURE = 0.05
NEAR_TERM_DAYS = 3


def _weekday_baselines(trends: Sequence[TrendPoint]) -> tuple[dict[int, float], float]:
    """Return mean reservations per weekday plus the overall fallback mean."""
    if not trends:
        return {}, DEFAULT_BASELINE_DEMAND

    frame = pd.DataFrame([asdict(point) for point in trends])
    frame["weekday"] = pd.to_datetime(frame["day"], errors="coerce").dt.dayofweek
    frame["reservations"] = pd.to_numeric(frame["reservations"], errors="coerce")
    frame = frame.dropna(subset=["weekday", "reservations"])
    if frame.empty:
        return {}, DEFAULT_BASELINE_DEMAND

    overall = float(frame["reservations"].mean())
    by_weekday = frame.groupby("weekday")["reservations"].mean()
    return {int(weekday): float(value) for weekday, value in by_weekday.items()}, overall


def search_pressure(search_stats: Sequence[SearchStat]) -> float:
    """Share of searches captured by the most searched route, capped at 0.30."""
    total = sum(max(0, stat.total) for stat in search_stats)
    if total <= 0:
        return NO_SEARCH_PRESSURE
    top = max(stat.total for stat in search_stats)
    return min(SEARCH_PRESSURE_CAP, top / total)


def _seasonality(target: date) -> float:
    weekday = target.weekday()
    if weekday >= 5:
        return 0.12
    if weekday == 0:
        return -0.05
    return 0.02


def _weather(target: date) -> float:
    return 0.06 if 6 <= target.month <= 9 else 0.03


def compute_demand_forecast(
    trends: Sequence[TrendPoint],
    horizon_days: int,
    search_stats: Sequence[SearchStat] = (),
    today: Optional[date] = None,
) -> list[DemandForecastEntry]:
    """Project one demand entry per day for ``horizon_days`` days after ``today``.

    Each weekday's baseline is the mean of matching trend days, falling back to
    the mean of the whole series and then to 45. Four additive drivers
    (seasonality, weather, events, search pressure) scale the baseline.
    """
    validate_horizon(horizon_days)
    start = today or utc_today()
    baselines, overall = _weekday_baselines(trends)
    pressure = search_pressure(search_stats)

    forecast: list[DemandForecastEntry] = []
    for offset in range(1, horizon_days + 1):
        target = start + timedelta(days=offset)
        baseline = baselines.get(target.weekday(), overall)
        near_term = offset <= NEAR_TERM_DAYS

        seasonality = _seasonality(target)
        weather = _weather(target)
        events = 0.04 if near_term else 0.02
        search = pressure * (0.35 if near_term else 0.18)

        multiplier = 1 + seasonality + weather + events + search
        demand = round_half_up(max(MIN_DEMAND, baseline * multiplier))
        confidence = clamp(
            0.82 - offset * 0.03 + len(trends) * 0.004,
            MIN_CONFIDENCE,
            MAX_CONFIDENCE,
        )
        forecast.append(
            DemandForecastEntry(
                date=target.isoformat(),
                demand=demand,
                confidence=confidence,
                drivers=ForecastDrivers(
                    weather=round(weather, 2),
                    events=round(events, 2),
                    search=round(search, 2),
                    seasonality=round(seasonality, 2),
                ),
            )
        )
    return forecast
