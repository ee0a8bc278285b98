"""
Tests for the indicator engine and its indicator groups.
"""

import pytest

from signal_pipeline.engines.calculations import first_defined_index
from signal_pipeline.engines.indicators import (
    IndicatorEngine,
    MomentumIndicators,
    TrendIndicators,
    VolatilityIndicators,
    VolumeIndicators,
)
from signal_pipeline.engines.pipeline_config import IndicatorParams
from signal_pipeline.engines.series import OHLCVSeries


class TestRSI:
    """RSI warm-up, range and edge cases."""

    def test_first_defined_at_period(self, choppy_candles):
        closes = [c.close for c in choppy_candles]
        rsi = MomentumIndicators.calculate_rsi(closes, 14)

        assert len(rsi) == len(closes)
        assert rsi[13] is None
        assert rsi[14] is not None

    def test_values_within_bounds(self, choppy_candles):
        closes = [c.close for c in choppy_candles]
        rsi = MomentumIndicators.calculate_rsi(closes, 14)

        assert all(0.0 <= v <= 100.0 for v in rsi if v is not None)

    def test_no_losses_reads_100(self):
        closes = [100.0 + i for i in range(30)]
        assert MomentumIndicators.calculate_rsi(closes, 14)[-1] == 100.0

    def test_flat_series_reads_100(self):
        """Zero average loss means RSI 100, even with zero gain."""
        assert MomentumIndicators.calculate_rsi([50.0] * 20, 14)[-1] == 100.0

    def test_only_losses_reads_0(self):
        closes = [100.0 - i for i in range(30)]
        assert MomentumIndicators.calculate_rsi(closes, 14)[-1] == pytest.approx(0.0)

    def test_too_short(self):
        assert MomentumIndicators.calculate_rsi([1.0, 2.0], 14) == [None, None]


class TestMACD:
    """MACD alignment."""

    def test_alignment(self, rising_candles):
        closes = [c.close for c in rising_candles]
        macd = MomentumIndicators.calculate_macd(closes, 12, 26, 9)

        assert len(macd.line) == len(macd.signal) == len(macd.histogram) == len(closes)
        assert first_defined_index(macd.line) == 25
        assert first_defined_index(macd.signal) == 33
        assert first_defined_index(macd.histogram) == 33

    def test_rising_series_positive_line(self, rising_candles):
        closes = [c.close for c in rising_candles]
        macd = MomentumIndicators.calculate_macd(closes)

        assert macd.line[-1] > 0
        assert macd.histogram[-1] == pytest.approx(macd.line[-1] - macd.signal[-1])


class TestBollingerAndATR:
    """Volatility indicators."""

    def test_constant_series_collapses_bands(self):
        bands = VolatilityIndicators.calculate_bollinger_bands([10.0] * 25, 20, 2.0)

        assert bands.upper[-1] == pytest.approx(10.0)
        assert bands.lower[-1] == pytest.approx(10.0)
        assert bands.width()[-1] == pytest.approx(0.0)

    def test_bands_ordered(self, choppy_candles):
        closes = [c.close for c in choppy_candles]
        bands = VolatilityIndicators.calculate_bollinger_bands(closes, 20, 2.0)

        for upper, middle, lower in zip(bands.upper, bands.middle, bands.lower):
            if middle is None:
                assert upper is None and lower is None
                continue
            assert lower <= middle <= upper

    def test_atr_first_defined_at_period(self, choppy_candles):
        series = OHLCVSeries.from_candles(choppy_candles)
        atr = VolatilityIndicators.calculate_atr(series.highs, series.lows, series.closes, 14)

        assert atr[13] is None
        assert atr[14] is not None
        assert all(v > 0 for v in atr if v is not None)


class TestOscillators:
    """Stochastic, ROC, momentum, ADX."""

    def test_stochastic_flat_range_reads_50(self):
        flat = [10.0] * 20
        result = MomentumIndicators.calculate_stochastic(flat, flat, flat, 14, 3)

        assert result.k[-1] == pytest.approx(50.0)
        assert result.d[-1] == pytest.approx(50.0)

    def test_roc_and_momentum(self):
        closes = [100.0 + i for i in range(12)]

        roc = MomentumIndicators.calculate_roc(closes, 9)
        momentum = MomentumIndicators.calculate_momentum(closes, 10)

        assert roc[8] is None
        assert roc[9] == pytest.approx(9.0)
        assert momentum[10] == pytest.approx(10.0)

    def test_adx_strong_uptrend(self, rising_candles):
        series = OHLCVSeries.from_candles(rising_candles)
        adx = TrendIndicators.calculate_adx(series.highs, series.lows, series.closes, 14)

        assert adx.adx[-1] > 25
        assert adx.plus_di[-1] > adx.minus_di[-1]

    def test_vwap_zero_volume_falls_back_to_close(self):
        closes = [10.0, 11.0, 12.0]
        vwap = VolumeIndicators.calculate_vwap(closes, closes, closes, [0.0] * 3, 3)

        assert vwap[-1] == 12.0

    def test_cmf_bounded(self, choppy_candles):
        series = OHLCVSeries.from_candles(choppy_candles)
        cmf = VolumeIndicators.calculate_cmf(
            series.highs, series.lows, series.closes, series.volumes, 20
        )

        assert all(-1.0 <= v <= 1.0 for v in cmf if v is not None)


class TestIndicatorEngine:
    """Full snapshot computation."""

    def test_every_series_aligned(self, rising_candles):
        snapshot = IndicatorEngine().compute(OHLCVSeries.from_candles(rising_candles))
        n = len(rising_candles)

        assert snapshot.length == n
        for values in (
            snapshot.sma,
            snapshot.ema,
            snapshot.rsi,
            snapshot.macd.line,
            snapshot.bollinger.upper,
            snapshot.ema_fast,
            snapshot.ema_slow,
            snapshot.sma_trend,
            snapshot.stochastic.k,
            snapshot.roc,
            snapshot.momentum,
            snapshot.atr,
            snapshot.adx.adx,
            snapshot.vwap,
            snapshot.cmf,
        ):
            assert len(values) == n

    def test_warmup_is_none(self, rising_candles):
        snapshot = IndicatorEngine().compute(OHLCVSeries.from_candles(rising_candles))

        assert snapshot.sma[18] is None
        assert snapshot.sma[19] is not None
        assert snapshot.sma_trend[48] is None
        assert snapshot.sma_trend[49] is not None

    def test_custom_params(self, rising_candles):
        engine = IndicatorEngine(IndicatorParams(sma_period=5))
        snapshot = engine.compute(OHLCVSeries.from_candles(rising_candles))

        assert first_defined_index(snapshot.sma) == 4
