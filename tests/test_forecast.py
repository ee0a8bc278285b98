"""
Tests for the price forecaster, candle resampling and timeframe alignment.
"""

import pytest

from signal_pipeline.engines.forecast import (
    MultiTimeframeAnalyzer,
    PriceForecaster,
    PricePrediction,
    resample,
)
from signal_pipeline.engines.series import OHLCVSeries
from signal_pipeline.engines.signals import Direction, SignalType


def _series(candles):
    return OHLCVSeries.from_candles(candles)


class TestPredict:
    """Short-horizon direction model."""

    def test_short_series_is_neutral(self, rising_candles):
        assert PriceForecaster.predict(_series(rising_candles[:49])) == PricePrediction.neutral()

    def test_steady_rise(self, rising_candles):
        prediction = PriceForecaster.predict(_series(rising_candles))

        # 1.01^3 - 1 = 3.03% momentum, weighted 0.4, no acceleration or surge
        assert prediction.direction is Direction.UP
        assert prediction.predicted_change == pytest.approx(1.21)
        assert prediction.confidence == 68.0

    def test_steady_fall(self, falling_candles):
        prediction = PriceForecaster.predict(_series(falling_candles))

        assert prediction.direction is Direction.DOWN
        assert prediction.predicted_change == pytest.approx(-1.19)
        assert prediction.confidence == 68.0

    def test_flat_is_neutral(self, flat_candles):
        prediction = PriceForecaster.predict(_series(flat_candles))

        assert prediction.direction is Direction.NONE
        assert prediction.confidence == 0.0
        assert prediction.predicted_change == 0.0

    def test_volume_surge_adds_to_move(self, make_candles):
        closes = [100.0 * 1.001**i for i in range(60)]
        quiet = make_candles(closes)
        surging = make_candles(closes, volumes=[1000.0] * 57 + [10_000.0] * 3)

        base = PriceForecaster.predict(_series(quiet))
        boosted = PriceForecaster.predict(_series(surging))

        assert base.direction is boosted.direction is Direction.UP
        assert boosted.predicted_change > base.predicted_change
        assert boosted.confidence > base.confidence

    def test_zero_volume_does_not_raise(self, make_candles):
        candles = make_candles([100.0 * 1.01**i for i in range(60)], volumes=[0.0] * 60)

        assert PriceForecaster.predict(_series(candles)).direction is Direction.UP


class TestForecast:
    """Short and medium horizons folded into one signal."""

    def test_both_horizons_up_buys(self, rising_candles):
        result = PriceForecaster.forecast(_series(rising_candles))

        assert result.signal is SignalType.BUY
        assert result.short_term.confidence == 68.0
        assert result.medium_term.confidence == 87.0
        assert result.confidence == pytest.approx(0.7 * 68 + 0.3 * 87)

    def test_both_horizons_down_sells(self, falling_candles):
        result = PriceForecaster.forecast(_series(falling_candles))

        assert result.signal is SignalType.SELL
        assert result.medium_term.direction is Direction.DOWN

    def test_flat_is_neutral(self, flat_candles):
        result = PriceForecaster.forecast(_series(flat_candles))

        assert result.signal is SignalType.NEUTRAL
        assert result.confidence == 0.0

    def test_deterministic(self, choppy_candles):
        series = _series(choppy_candles)

        assert PriceForecaster.forecast(series) == PriceForecaster.forecast(series)


class TestResample:
    """Bucketing candles into larger timeframes."""

    def test_full_buckets(self, make_candles):
        candles = make_candles([float(c) for c in range(1, 11)], volumes=[10.0] * 10)
        bars = resample(_series(candles), 5)

        assert len(bars) == 2
        assert bars.opens == [candles[0].open, candles[5].open]
        assert bars.closes == [5.0, 10.0]
        assert bars.highs[0] == max(c.high for c in candles[:5])
        assert bars.lows[1] == min(c.low for c in candles[5:])
        assert bars.volumes == [50.0, 50.0]

    def test_trailing_partial_bucket_kept(self, make_candles):
        candles = make_candles([float(c) for c in range(1, 13)])
        bars = resample(_series(candles), 5)

        assert len(bars) == 3
        assert bars.closes[-1] == 12.0
        assert bars.volumes[-1] == 2000.0

    def test_factor_one_is_identity(self, rising_candles):
        series = _series(rising_candles)

        assert resample(series, 1) is series


class TestMultiTimeframe:
    """Weighted alignment across resampled timeframes."""

    def test_needs_min_candles(self, rising_candles):
        assert MultiTimeframeAnalyzer().analyze(_series(rising_candles)) is None

    def test_needs_three_scored_timeframes(self, make_candles):
        # 200 bars only give x1 (200) and x5 (40) at 30+ bars each
        candles = make_candles([100.0 * 1.001**i for i in range(200)])

        assert MultiTimeframeAnalyzer().analyze(_series(candles)) is None

    def test_steady_rise_dominant_up(self, make_candles):
        candles = make_candles([100.0 * 1.001**i for i in range(900)])
        alignment = MultiTimeframeAnalyzer().analyze(_series(candles))

        # x30 has only 30 bars: too short for MACD or the forecaster, so it stays neutral
        assert alignment.timeframe_signals == {
            1: Direction.UP,
            5: Direction.UP,
            15: Direction.UP,
            30: Direction.NONE,
        }
        assert alignment.dominant is Direction.UP
        assert alignment.alignment == pytest.approx(60.0)
        assert alignment.weighted_change > 0

    def test_steady_fall_dominant_down(self, make_candles):
        candles = make_candles([300.0 * 0.999**i for i in range(900)])
        alignment = MultiTimeframeAnalyzer().analyze(_series(candles))

        assert alignment.dominant is Direction.DOWN
        assert alignment.timeframe_count == 4
