"""
Market Regime Detector - coarse classification of recent price behaviour.

Regimes modulate how strict the signal stabilizer is:
- TRENDING: strong directional move (ADX high), stabilizer relaxes
- VOLATILE: ATR expanding well above its average, stabilizer tightens
- ACCUMULATION / DISTRIBUTION: ranging market, split by volume flow
- UNDEFINED: not enough candles yet

The detector is a pure function of the candles it is given. Throttling
(recompute at most every 30s) is the caller's concern; see
SignalStabilizer.regime_for().
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Sequence

from .calculations import average_last, calculate_ema, calculate_sma, defined_values
from .indicators import TrendIndicators, VolatilityIndicators, VolumeIndicators
from .pipeline_config import DEFAULT_CONFIG, RegimeThresholds, clamp, safe_divide
from .series import Candle, OHLCVSeries
from .signals import Direction

logger = logging.getLogger(__name__)


class RegimeKind(Enum):
    """Regime classes consumed by the stabilizer and dispatcher."""

    TRENDING = "TRENDING"
    ACCUMULATION = "ACCUMULATION"
    DISTRIBUTION = "DISTRIBUTION"
    VOLATILE = "VOLATILE"
    UNDEFINED = "UNDEFINED"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class MarketRegime:
    """Regime classification with strength (0-100) and volatility (0-100)."""

    kind: RegimeKind
    strength: float
    direction: Direction
    volatility: float
    squeeze: bool = False

    @classmethod
    def undefined(cls) -> "MarketRegime":
        return cls(kind=RegimeKind.UNDEFINED, strength=0.0, direction=Direction.NONE, volatility=0.0)

    @property
    def is_trending(self) -> bool:
        return self.kind is RegimeKind.TRENDING

    @property
    def is_volatile(self) -> bool:
        return self.kind is RegimeKind.VOLATILE


class MarketRegimeDetector:
    """
    Classifies the last N candles into a MarketRegime.

    Usage:
        detector = MarketRegimeDetector()
        regime = detector.detect(candles)
        if regime.is_trending and regime.direction is Direction.UP:
            ...
    """

    def __init__(self, thresholds: Optional[RegimeThresholds] = None):
        self.thresholds = thresholds or DEFAULT_CONFIG.regime

    def detect(self, candles: Sequence[Candle]) -> MarketRegime:
        t = self.thresholds
        if len(candles) < t.min_candles:
            return MarketRegime.undefined()

        series = OHLCVSeries.from_candles(candles[-t.lookback:])
        highs, lows, closes = series.highs, series.lows, series.closes
        close = closes[-1]

        volatility = self._volatility(highs, lows, closes)
        adx_values = defined_values(TrendIndicators.calculate_adx(highs, lows, closes).adx)
        adx = adx_values[-1] if adx_values else 0.0
        trend_strength = clamp(adx * t.adx_strength_multiplier, 0.0, 100.0)
        direction = self._direction(closes, close)
        squeeze = self._is_squeeze(closes)

        if volatility > t.volatile_threshold:
            regime = MarketRegime(
                kind=RegimeKind.VOLATILE,
                strength=volatility,
                direction=direction,
                volatility=volatility,
                squeeze=squeeze,
            )
        elif adx > t.adx_trending and direction is not Direction.NONE:
            regime = MarketRegime(
                kind=RegimeKind.TRENDING,
                strength=trend_strength,
                direction=direction,
                volatility=volatility,
                squeeze=squeeze,
            )
        else:
            regime = self._ranging(series, volatility, squeeze)

        logger.debug(
            f"Regime {regime.kind} strength={regime.strength:.1f} dir={regime.direction} "
            f"vol={regime.volatility:.1f} adx={adx:.1f}"
        )
        return regime

    def _volatility(self, highs, lows, closes) -> float:
        atr = defined_values(VolatilityIndicators.calculate_atr(highs, lows, closes))
        if not atr:
            return 0.0
        avg_atr = average_last(atr, self.thresholds.atr_average_window)
        ratio = safe_divide(atr[-1], avg_atr, default=1.0)
        return clamp(ratio * self.thresholds.volatility_scale, 0.0, 100.0)

    @staticmethod
    def _direction(closes, close: float) -> Direction:
        sma20 = calculate_sma(closes, 20)[-1]
        sma50 = calculate_sma(closes, 50)[-1]
        ema10 = calculate_ema(closes, 10)[-1]
        if sma20 is None or ema10 is None:
            return Direction.NONE

        if (sma50 is not None and sma20 > sma50 and close > sma20) or close > ema10 > sma20:
            return Direction.UP
        if (sma50 is not None and sma20 < sma50 and close < sma20) or close < ema10 < sma20:
            return Direction.DOWN
        return Direction.NONE

    def _is_squeeze(self, closes) -> bool:
        bands = VolatilityIndicators.calculate_bollinger_bands(closes)
        widths = defined_values(bands.width())
        if len(widths) < 2:
            return False
        return widths[-1] < self.thresholds.squeeze_ratio * average_last(widths, len(widths))

    def _ranging(self, series: OHLCVSeries, volatility: float, squeeze: bool) -> MarketRegime:
        """Split a directionless market by where the volume went."""
        t = self.thresholds
        closes, volumes = series.closes, series.volumes
        start = max(1, len(closes) - t.flow_window)

        up_volume = 0.0
        down_volume = 0.0
        for i in range(start, len(closes)):
            if closes[i] >= closes[i - 1]:
                up_volume += volumes[i]
            else:
                down_volume += volumes[i]

        up_share = safe_divide(up_volume, up_volume + down_volume, default=0.5)
        if abs(up_share - 0.5) < t.flow_tie_band:
            cmf = defined_values(
                VolumeIndicators.calculate_cmf(
                    series.highs, series.lows, series.closes, series.volumes
                )
            )
            accumulating = (cmf[-1] if cmf else 0.0) >= 0
        else:
            accumulating = up_share > 0.5

        strength = clamp(50 + abs(up_share - 0.5) * 100, 0.0, 100.0)
        return MarketRegime(
            kind=RegimeKind.ACCUMULATION if accumulating else RegimeKind.DISTRIBUTION,
            strength=strength,
            direction=Direction.NONE,
            volatility=volatility,
            squeeze=squeeze,
        )
