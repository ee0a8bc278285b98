"""
Technical Indicators Module
Implements all indicator calculations feeding the signal synthesizer.

Every calculate_* function returns lists index-aligned with its input;
warm-up positions hold None and must be treated as "not yet computable".
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from .calculations import (
    Series,
    calculate_ema,
    calculate_rolling_mean_std,
    calculate_sma,
    true_range,
    wilder_smooth,
)
from .pipeline_config import DEFAULT_CONFIG, IndicatorParams, safe_divide
from .series import OHLCVSeries
from .support_resistance import SupportResistanceLevels, find_support_resistance

logger = logging.getLogger(__name__)


# =============================================================================
# RESULT TYPES
# =============================================================================


@dataclass
class MACDResult:
    """MACD line, signal line and histogram."""

    line: Series
    signal: Series
    histogram: Series


@dataclass
class BollingerBands:
    """Bollinger envelope."""

    upper: Series
    middle: Series
    lower: Series

    def width(self) -> Series:
        """(upper - lower) / middle per bar."""
        return [
            safe_divide(u - l, m) if u is not None and l is not None and m is not None else None
            for u, l, m in zip(self.upper, self.lower, self.middle)
        ]


@dataclass
class StochasticResult:
    """Stochastic oscillator %K and %D."""

    k: Series
    d: Series


@dataclass
class ADXResult:
    """Average Directional Index with its directional indicators."""

    adx: Series
    plus_di: Series
    minus_di: Series


@dataclass
class IndicatorSnapshot:
    """
    Index-aligned indicator arrays for one candle series.

    Core arrays (sma, ema, rsi, macd, bollinger) and support_resistance are
    what downstream consumers rely on; the rest feed additional votes.
    """

    length: int
    sma: Series
    ema: Series
    rsi: Series
    macd: MACDResult
    bollinger: BollingerBands
    support_resistance: SupportResistanceLevels = field(default_factory=SupportResistanceLevels)

    ema_fast: Series = field(default_factory=list)
    ema_slow: Series = field(default_factory=list)
    sma_trend: Series = field(default_factory=list)
    stochastic: Optional[StochasticResult] = None
    roc: Series = field(default_factory=list)
    momentum: Series = field(default_factory=list)
    atr: Series = field(default_factory=list)
    adx: Optional[ADXResult] = None
    vwap: Series = field(default_factory=list)
    cmf: Series = field(default_factory=list)


# =============================================================================
# TREND INDICATORS
# =============================================================================


class TrendIndicators:
    """Moving averages and directional strength."""

    @staticmethod
    def calculate_sma(prices: Sequence[float], period: int) -> Series:
        return calculate_sma(prices, period)

    @staticmethod
    def calculate_ema(prices: Sequence[float], period: int) -> Series:
        return calculate_ema(prices, period)

    @staticmethod
    def calculate_adx(
        highs: Sequence[float], lows: Sequence[float], closes: Sequence[float], period: int = 14
    ) -> ADXResult:
        """
        Wilder's ADX.

        +DM/-DM and true range are Wilder-smoothed into +DI/-DI; DX is
        smoothed again into ADX, so ADX is first defined at 2 * period - 1.
        """
        n = len(closes)
        plus_dm: Series = [None] * n
        minus_dm: Series = [None] * n
        for i in range(1, n):
            up_move = highs[i] - highs[i - 1]
            down_move = lows[i - 1] - lows[i]
            plus_dm[i] = up_move if up_move > down_move and up_move > 0 else 0.0
            minus_dm[i] = down_move if down_move > up_move and down_move > 0 else 0.0

        tr_smooth = wilder_smooth(true_range(highs, lows, closes), period)
        plus_smooth = wilder_smooth(plus_dm, period)
        minus_smooth = wilder_smooth(minus_dm, period)

        plus_di: Series = [None] * n
        minus_di: Series = [None] * n
        dx: Series = [None] * n
        for i in range(n):
            tr = tr_smooth[i]
            if tr is None or plus_smooth[i] is None or minus_smooth[i] is None:
                continue
            p = safe_divide(plus_smooth[i], tr) * 100
            m = safe_divide(minus_smooth[i], tr) * 100
            plus_di[i] = p
            minus_di[i] = m
            dx[i] = safe_divide(abs(p - m), p + m) * 100

        return ADXResult(adx=wilder_smooth(dx, period), plus_di=plus_di, minus_di=minus_di)


# =============================================================================
# MOMENTUM INDICATORS
# =============================================================================


class MomentumIndicators:
    """RSI, MACD, stochastic, rate of change, momentum."""

    @staticmethod
    def calculate_rsi(closes: Sequence[float], period: int = 14) -> Series:
        """
        Relative Strength Index with Wilder smoothing.

        First defined at index `period` (needs `period` price changes).
        RSI is 100 when the average loss is exactly zero.
        """
        n = len(closes)
        out: Series = [None] * n
        if period <= 0 or n <= period:
            return out

        gains = [0.0] * n
        losses = [0.0] * n
        for i in range(1, n):
            delta = closes[i] - closes[i - 1]
            gains[i] = delta if delta > 0 else 0.0
            losses[i] = -delta if delta < 0 else 0.0

        avg_gain = sum(gains[1:period + 1]) / period
        avg_loss = sum(losses[1:period + 1]) / period

        for i in range(period, n):
            if i > period:
                avg_gain = (avg_gain * (period - 1) + gains[i]) / period
                avg_loss = (avg_loss * (period - 1) + losses[i]) / period

            if avg_loss == 0:
                out[i] = 100.0
            else:
                rs = avg_gain / avg_loss
                out[i] = 100 - (100 / (1 + rs))

        return out

    @staticmethod
    def calculate_macd(
        closes: Sequence[float],
        fast: int = 12,
        slow: int = 26,
        signal: int = 9,
    ) -> MACDResult:
        """MACD line = EMA(fast) - EMA(slow); signal = EMA(line, signal)."""
        fast_ema = calculate_ema(closes, fast)
        slow_ema = calculate_ema(closes, slow)

        line: Series = [
            f - s if f is not None and s is not None else None for f, s in zip(fast_ema, slow_ema)
        ]
        signal_line = calculate_ema(line, signal)
        histogram: Series = [
            m - s if m is not None and s is not None else None for m, s in zip(line, signal_line)
        ]
        return MACDResult(line=line, signal=signal_line, histogram=histogram)

    @staticmethod
    def calculate_stochastic(
        highs: Sequence[float],
        lows: Sequence[float],
        closes: Sequence[float],
        period: int = 14,
        smooth: int = 3,
    ) -> StochasticResult:
        """%K over `period` bars, %D = SMA(%K, smooth). Flat ranges read 50."""
        n = len(closes)
        k: Series = [None] * n
        for i in range(period - 1, n):
            highest = max(highs[i - period + 1:i + 1])
            lowest = min(lows[i - period + 1:i + 1])
            k[i] = safe_divide(closes[i] - lowest, highest - lowest, default=0.5) * 100
        return StochasticResult(k=k, d=calculate_sma(k, smooth))

    @staticmethod
    def calculate_roc(closes: Sequence[float], period: int = 9) -> Series:
        """Rate of change in percent."""
        n = len(closes)
        out: Series = [None] * n
        for i in range(period, n):
            out[i] = safe_divide(closes[i] - closes[i - period], closes[i - period]) * 100
        return out

    @staticmethod
    def calculate_momentum(closes: Sequence[float], period: int = 10) -> Series:
        """Price difference over `period` bars."""
        n = len(closes)
        out: Series = [None] * n
        for i in range(period, n):
            out[i] = closes[i] - closes[i - period]
        return out


# =============================================================================
# VOLATILITY INDICATORS
# =============================================================================


class VolatilityIndicators:
    """Bollinger Bands and ATR."""

    @staticmethod
    def calculate_bollinger_bands(
        closes: Sequence[float], period: int = 20, k: float = 2.0
    ) -> BollingerBands:
        """Middle = SMA(period); bands at ±k population standard deviations."""
        means, stds = calculate_rolling_mean_std(closes, period)
        upper: Series = [
            m + k * s if m is not None and s is not None else None for m, s in zip(means, stds)
        ]
        lower: Series = [
            m - k * s if m is not None and s is not None else None for m, s in zip(means, stds)
        ]
        return BollingerBands(upper=upper, middle=means, lower=lower)

    @staticmethod
    def calculate_atr(
        highs: Sequence[float], lows: Sequence[float], closes: Sequence[float], period: int = 14
    ) -> Series:
        """Average True Range with Wilder's smoothing; first defined at index `period`."""
        return wilder_smooth(true_range(highs, lows, closes), period)


# =============================================================================
# VOLUME INDICATORS
# =============================================================================


class VolumeIndicators:
    """Volume-weighted price and money flow."""

    @staticmethod
    def calculate_vwap(
        highs: Sequence[float],
        lows: Sequence[float],
        closes: Sequence[float],
        volumes: Sequence[float],
        period: int = 14,
    ) -> Series:
        """Rolling VWAP on typical price; zero-volume windows fall back to the close."""
        n = len(closes)
        out: Series = [None] * n
        for i in range(period - 1, n):
            pv = 0.0
            vol = 0.0
            for j in range(i - period + 1, i + 1):
                typical = (highs[j] + lows[j] + closes[j]) / 3
                pv += typical * volumes[j]
                vol += volumes[j]
            out[i] = safe_divide(pv, vol, default=closes[i])
        return out

    @staticmethod
    def calculate_cmf(
        highs: Sequence[float],
        lows: Sequence[float],
        closes: Sequence[float],
        volumes: Sequence[float],
        period: int = 20,
    ) -> Series:
        """Chaikin Money Flow in [-1, 1]."""
        n = len(closes)
        mf_volume = []
        for i in range(n):
            multiplier = safe_divide(
                (closes[i] - lows[i]) - (highs[i] - closes[i]), highs[i] - lows[i]
            )
            mf_volume.append(multiplier * volumes[i])

        out: Series = [None] * n
        for i in range(period - 1, n):
            vol = sum(volumes[i - period + 1:i + 1])
            out[i] = safe_divide(sum(mf_volume[i - period + 1:i + 1]), vol)
        return out


# =============================================================================
# ENGINE
# =============================================================================


class IndicatorEngine:
    """
    Computes the full IndicatorSnapshot for a candle series.

    Stateless apart from its parameters; safe to share between sessions.
    """

    def __init__(self, params: Optional[IndicatorParams] = None):
        self.params = params or DEFAULT_CONFIG.indicators

    def compute(self, series: OHLCVSeries) -> IndicatorSnapshot:
        p = self.params
        highs, lows, closes, volumes = series.highs, series.lows, series.closes, series.volumes

        snapshot = IndicatorSnapshot(
            length=len(closes),
            sma=calculate_sma(closes, p.sma_period),
            ema=calculate_ema(closes, p.ema_period),
            rsi=MomentumIndicators.calculate_rsi(closes, p.rsi_period),
            macd=MomentumIndicators.calculate_macd(closes, p.macd_fast, p.macd_slow, p.macd_signal),
            bollinger=VolatilityIndicators.calculate_bollinger_bands(
                closes, p.bollinger_period, p.bollinger_k
            ),
            support_resistance=find_support_resistance(highs, lows, closes, p),
            ema_fast=calculate_ema(closes, p.ema_fast_period),
            ema_slow=calculate_ema(closes, p.ema_slow_period),
            sma_trend=calculate_sma(closes, p.sma_trend_period),
            stochastic=MomentumIndicators.calculate_stochastic(
                highs, lows, closes, p.stochastic_period, p.stochastic_smooth
            ),
            roc=MomentumIndicators.calculate_roc(closes, p.roc_period),
            momentum=MomentumIndicators.calculate_momentum(closes, p.momentum_period),
            atr=VolatilityIndicators.calculate_atr(highs, lows, closes, p.atr_period),
            adx=TrendIndicators.calculate_adx(highs, lows, closes, p.adx_period),
            vwap=VolumeIndicators.calculate_vwap(highs, lows, closes, volumes, p.vwap_period),
            cmf=VolumeIndicators.calculate_cmf(highs, lows, closes, volumes, p.cmf_period),
        )
        logger.debug(f"Computed indicator snapshot over {snapshot.length} candles")
        return snapshot
