"""
Forecast Generator — synthetic groundwater-level projections with p10/p50/p90 bands.

Per well:
  p50(m)   = last_level - base_drop * (m + 1) + 0.25 * sin(2πm / 12)
  sigma(m) = 0.55 + (m / H) * 1.2          (uncertainty widens with distance)
  p10/p90  = p50 ∓ 1.1 * sigma

The projection is deterministic; it is a demo model, not a fitted one.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Protocol

import numpy as np
import pandas as pd

from forecasting.risk import (
    base_drop_rate,
    forecast_crossing_probability,
    forecast_risk_score,
    risk_level_from_score,
)

SEASONAL_AMPLITUDE_M = 0.25
SIGMA_BASE = 0.55
SIGMA_GROWTH = 1.2
BAND_WIDTH = 1.1


class WellLike(Protocol):
    id: str
    code: str
    risk_score: float
    latest_gw_level_m: float | None


@dataclass(frozen=True)
class SeriesPoint:
    well_id: str
    month_offset: int
    date: date
    p10: float
    p50: float
    p90: float


@dataclass(frozen=True)
class WellResult:
    well_id: str
    well_code: str
    p50_final_level: float
    prob_cross_threshold: float
    expected_drop_rate: float
    risk_level: str


@dataclass
class ForecastOutput:
    series_points: list[SeriesPoint] = field(default_factory=list)
    well_results: list[WellResult] = field(default_factory=list)


def month_starts(start: date, horizon_months: int) -> list[date]:
    anchor = pd.Timestamp(start.replace(day=1))
    return [ts.date() for ts in pd.date_range(start=anchor, periods=horizon_months, freq="MS")]


def project_levels(last_level: float, base_drop: float, horizon_months: int) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Return rounded (p10, p50, p90) arrays of length ``horizon_months``."""
    months = np.arange(horizon_months, dtype=float)
    seasonal = np.sin(2 * np.pi * months / 12) * SEASONAL_AMPLITUDE_M
    p50 = last_level - base_drop * (months + 1) + seasonal
    sigma = SIGMA_BASE + (months / horizon_months) * SIGMA_GROWTH
    p10 = p50 - BAND_WIDTH * sigma
    p90 = p50 + BAND_WIDTH * sigma
    return np.round(p10, 2), np.round(p50, 2), np.round(p90, 2)


def summarize_well(well: WellLike, base_drop: float, final_p50: float, horizon_months: int) -> WellResult:
    expected_drop_rate = round(base_drop, 2)
    prob_cross = forecast_crossing_probability(well.risk_score, horizon_months)
    score = forecast_risk_score(prob_cross, expected_drop_rate)
    return WellResult(
        well_id=well.id,
        well_code=well.code,
        p50_final_level=final_p50,
        prob_cross_threshold=round(prob_cross, 2),
        expected_drop_rate=expected_drop_rate,
        risk_level=risk_level_from_score(score),
    )


def generate_forecast(
    wells: list[WellLike],
    horizon_months: int,
    *,
    start: date,
    default_level_m: float = 1100.0,
) -> ForecastOutput:
    """
    Project every well over ``[0, horizon_months)`` months.

    The output always holds exactly ``len(wells) * horizon_months`` series
    points and one result per well; an empty well list yields empty output.
    """
    output = ForecastOutput()
    if horizon_months <= 0:
        return output

    dates = month_starts(start, horizon_months)
    for well in wells:
        last_level = well.latest_gw_level_m if well.latest_gw_level_m is not None else default_level_m
        base_drop = base_drop_rate(well.risk_score)
        p10, p50, p90 = project_levels(last_level, base_drop, horizon_months)

        for m in range(horizon_months):
            output.series_points.append(
                SeriesPoint(
                    well_id=well.id,
                    month_offset=m,
                    date=dates[m],
                    p10=float(p10[m]),
                    p50=float(p50[m]),
                    p90=float(p90[m]),
                )
            )
        output.well_results.append(summarize_well(well, base_drop, float(p50[-1]), horizon_months))

    return output
