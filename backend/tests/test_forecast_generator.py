"""
Tests for the Forecast Generator — band ordering, completeness and month alignment.
"""

from dataclasses import dataclass
from datetime import date

import pytest

from forecasting.generator import generate_forecast, month_starts, project_levels


@dataclass
class FakeWell:
    id: str
    code: str
    risk_score: float
    latest_gw_level_m: float | None


WELLS = [
    FakeWell("w1", "W-001", 0.1, 1120.0),
    FakeWell("w2", "W-002", 0.9, 1130.0),
    FakeWell("w3", "W-003", 0.3, None),
]


class TestMonthStarts:
    def test_aligned_to_first_of_month(self):
        assert month_starts(date(2026, 3, 15), 3) == [date(2026, 3, 1), date(2026, 4, 1), date(2026, 5, 1)]

    def test_crosses_year_boundary(self):
        assert month_starts(date(2026, 11, 1), 3)[-1] == date(2027, 1, 1)


class TestProjectLevels:
    def test_band_widens_with_distance(self):
        p10, p50, p90 = project_levels(1100.0, 0.3, 24)
        widths = p90 - p10
        assert widths[-1] > widths[0]

    def test_median_starts_one_month_of_drop_below_last_level(self):
        _, p50, _ = project_levels(1100.0, 0.5, 12)
        assert p50[0] == pytest.approx(1099.5, abs=0.01)


class TestGenerateForecast:
    def test_percentile_ordering(self):
        output = generate_forecast(WELLS, 36, start=date(2026, 1, 1))
        for point in output.series_points:
            assert point.p10 <= point.p50 <= point.p90

    def test_series_completeness(self):
        horizon = 6
        output = generate_forecast(WELLS, horizon, start=date(2026, 1, 1))

        assert len(output.series_points) == len(WELLS) * horizon
        keys = {(p.well_id, p.month_offset) for p in output.series_points}
        assert keys == {(w.id, m) for w in WELLS for m in range(horizon)}
        assert [r.well_id for r in output.well_results] == ["w1", "w2", "w3"]

    def test_missing_level_uses_default(self):
        output = generate_forecast([WELLS[2]], 3, start=date(2026, 1, 1), default_level_m=1000.0)
        assert output.series_points[0].p50 < 1000.0
        assert output.series_points[0].p50 > 999.0

    def test_final_p50_matches_last_point(self):
        output = generate_forecast([WELLS[0]], 12, start=date(2026, 1, 1))
        assert output.well_results[0].p50_final_level == output.series_points[-1].p50

    def test_risk_levels_follow_well_risk(self):
        output = generate_forecast(WELLS[:2], 6, start=date(2026, 1, 1))
        levels = {r.well_id: r.risk_level for r in output.well_results}
        assert levels == {"w1": "low", "w2": "critical"}

    def test_empty_inputs(self):
        assert generate_forecast([], 12, start=date(2026, 1, 1)).series_points == []
        assert generate_forecast(WELLS, 0, start=date(2026, 1, 1)).well_results == []

    def test_deterministic(self):
        first = generate_forecast(WELLS, 12, start=date(2026, 1, 1))
        second = generate_forecast(WELLS, 12, start=date(2026, 1, 1))
        assert first == second
