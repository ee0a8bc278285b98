"""
Tests for support / resistance detection.
"""

import pytest

from signal_pipeline.engines.pipeline_config import IndicatorParams
from signal_pipeline.engines.series import OHLCVSeries
from signal_pipeline.engines.support_resistance import (
    SupportResistanceLevels,
    find_support_resistance,
)


def _levels(candles, params=None):
    series = OHLCVSeries.from_candles(candles)
    return series, find_support_resistance(series.highs, series.lows, series.closes, params)


class TestFindSupportResistance:
    """Level detection over the lookback window."""

    def test_levels_within_window_range(self, choppy_candles):
        series, levels = _levels(choppy_candles)
        floor = min(series.lows[-50:])
        ceiling = max(series.highs[-50:])

        assert levels.support and levels.resistance
        for level in levels.support + levels.resistance:
            assert floor <= level <= ceiling

    def test_at_most_top_n_per_side(self, choppy_candles):
        _, levels = _levels(choppy_candles)

        assert len(levels.support) <= 3
        assert len(levels.resistance) <= 3

    def test_custom_top_n(self, choppy_candles):
        _, levels = _levels(choppy_candles, IndicatorParams(sr_top_n=1))

        assert len(levels.support) <= 1
        assert len(levels.resistance) <= 1

    def test_monotonic_series_uses_percentile_fallback(self, rising_candles):
        """A steady climb has no local extremes, so percentiles stand in."""
        series, levels = _levels(rising_candles)
        floor = min(series.lows[-50:])
        ceiling = max(series.highs[-50:])

        assert levels.support
        assert levels.resistance
        assert all(floor <= s <= ceiling for s in levels.support)
        assert all(floor <= r <= ceiling for r in levels.resistance)
        assert max(levels.support) < min(levels.resistance)

    def test_empty_input(self):
        levels = find_support_resistance([], [], [])

        assert levels.support == []
        assert levels.resistance == []


class TestNearestLevels:
    """Nearest-level lookups."""

    def test_nearest_support_and_resistance(self):
        levels = SupportResistanceLevels(support=[95.0, 90.0], resistance=[105.0, 110.0])

        assert levels.nearest_support(100.0) == 95.0
        assert levels.nearest_resistance(100.0) == 105.0
        assert levels.nearest_support(80.0) is None
        assert levels.nearest_resistance(120.0) is None

    def test_level_at_price_counts(self):
        levels = SupportResistanceLevels(support=[100.0], resistance=[100.0])

        assert levels.nearest_support(100.0) == pytest.approx(100.0)
        assert levels.nearest_resistance(100.0) == pytest.approx(100.0)
