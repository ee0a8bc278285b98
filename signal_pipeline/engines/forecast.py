"""
Price Forecaster - short-horizon direction model and multi-timeframe alignment.

The forecaster blends three features of the recent closes into one expected
percentage move:

    combined  = 0.4 * weighted_momentum + 0.4 * acceleration_factor + 0.2 * volume_factor
    predicted = combined * 100

Moves smaller than 0.08% are NEUTRAL. The medium-term view runs the same
model with a doubled window and lag, so both horizons are deterministic for
a given series.

The multi-timeframe analyzer resamples the series into larger buckets
(x5, x15, ... of the base interval) and scores each bucket series with a
handful of indicators plus the forecaster; longer timeframes weigh more.
"""

import logging
import math
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

from .calculations import calculate_sma, last_defined
from .indicators import MomentumIndicators
from .pipeline_config import clamp, safe_divide
from .series import OHLCVSeries
from .signals import Direction, SignalType

logger = logging.getLogger(__name__)


# =============================================================================
# DATA CLASSES
# =============================================================================


@dataclass(frozen=True)
class PricePrediction:
    """Expected move for one horizon."""

    direction: Direction
    confidence: float  # 0-100
    predicted_change: float  # percent

    @classmethod
    def neutral(cls) -> "PricePrediction":
        return cls(direction=Direction.NONE, confidence=0.0, predicted_change=0.0)


@dataclass(frozen=True)
class ForecastResult:
    """Short and medium horizon predictions folded into one call."""

    signal: SignalType
    confidence: float
    short_term: PricePrediction
    medium_term: PricePrediction
    explanation: str


@dataclass(frozen=True)
class TimeframeAlignment:
    """How consistently the resampled timeframes point the same way."""

    dominant: Direction
    alignment: float  # 0-100, weight share of the most common direction
    timeframe_signals: Dict[int, Direction] = field(default_factory=dict)
    weighted_confidence: float = 0.0
    weighted_change: float = 0.0

    @property
    def timeframe_count(self) -> int:
        return len(self.timeframe_signals)


# =============================================================================
# FORECASTER
# =============================================================================


class PriceForecaster:
    """Momentum / acceleration / volume-surge direction model."""

    MIN_CANDLES = 50
    SHORT_WINDOW = 30
    SHORT_LAG = 3
    NEUTRAL_BAND_PCT = 0.08

    @staticmethod
    def _weighted_momentum(prices: Sequence[float], lag: int) -> float:
        momentum_sum = 0.0
        weight_sum = 0.0
        for i in range(lag, len(prices)):
            weight = i ** 1.5
            momentum_sum += safe_divide(prices[i] - prices[i - lag], prices[i - lag]) * weight
            weight_sum += weight
        return safe_divide(momentum_sum, weight_sum)

    @staticmethod
    def _weighted_acceleration(prices: Sequence[float]) -> float:
        deltas = [safe_divide(prices[i] - prices[i - 1], prices[i - 1]) for i in range(1, len(prices))]
        acceleration = [deltas[i] - deltas[i - 1] for i in range(1, len(deltas))]
        acc_sum = sum(a * (i + 1) for i, a in enumerate(acceleration))
        acc_weight = sum(range(1, len(acceleration) + 1))
        return safe_divide(acc_sum, acc_weight)

    @staticmethod
    def _volume_surge(volumes: Sequence[float]) -> float:
        very_recent = sum(volumes[-3:]) / 3
        recent = sum(volumes[-5:]) / 5
        return safe_divide(very_recent, recent, default=1.0)

    @classmethod
    def predict(
        cls,
        series: OHLCVSeries,
        window: Optional[int] = None,
        lag: Optional[int] = None,
    ) -> PricePrediction:
        """
        Predict the next move from the last `window` bars.

        Args:
            series: Candle columns, oldest first
            window: Bars the model looks at (default 30)
            lag: Momentum lookback within the window (default 3)

        Returns:
            PricePrediction; NEUTRAL with zero confidence under 50 bars
        """
        window = window or cls.SHORT_WINDOW
        lag = lag or cls.SHORT_LAG
        if len(series) < cls.MIN_CANDLES:
            return PricePrediction.neutral()

        prices = series.closes[-window:]
        volumes = series.volumes[-window:]

        momentum = cls._weighted_momentum(prices, lag)
        acceleration = cls._weighted_acceleration(prices)
        surge = cls._volume_surge(volumes)

        acceleration_factor = math.copysign(min(1.0, abs(acceleration) * 20), acceleration) if acceleration else 0.0
        volume_factor = 0.0
        if surge > 0 and momentum:
            volume_factor = clamp(math.log(surge) * 2, -1.0, 1.0) * math.copysign(1.0, momentum)

        combined = momentum * 0.4 + acceleration_factor * 0.4 + volume_factor * 0.2
        predicted = combined * 100

        if abs(predicted) < cls.NEUTRAL_BAND_PCT:
            direction = Direction.NONE
            confidence = min(100.0, abs(predicted) / cls.NEUTRAL_BAND_PCT * 100)
        else:
            direction = Direction.UP if predicted > 0 else Direction.DOWN
            confidence = min(100.0, 50 + abs(predicted) * 15)

        if abs(acceleration) > 0.001:
            confidence = min(100.0, confidence * 1.2)

        if surge > 1.5 and momentum:
            confidence = min(100.0, confidence * 1.15)
            if (momentum > 0 and direction is Direction.UP) or (momentum < 0 and direction is Direction.DOWN):
                confidence = min(100.0, confidence * 1.1)

        return PricePrediction(
            direction=direction,
            confidence=float(round(confidence)),
            predicted_change=round(predicted, 2),
        )

    @classmethod
    def forecast(cls, series: OHLCVSeries) -> ForecastResult:
        """Combine the short-term view with a doubled-window medium-term view."""
        short = cls.predict(series)
        medium = cls.predict(series, window=cls.SHORT_WINDOW * 2, lag=cls.SHORT_LAG * 2)
        up, down = Direction.UP, Direction.DOWN

        if short.direction is up and medium.direction is up:
            signal = SignalType.BUY
            confidence = short.confidence * 0.7 + medium.confidence * 0.3
            explanation = "Upward momentum on both horizons"
        elif short.direction is down and medium.direction is down:
            signal = SignalType.SELL
            confidence = short.confidence * 0.7 + medium.confidence * 0.3
            explanation = "Downward momentum on both horizons"
        elif medium.direction is up and short.direction is not down:
            signal = SignalType.BUY
            confidence = medium.confidence * 0.6
            explanation = "Medium-term uptrend without short-term weakness"
        elif medium.direction is down and short.direction is not up:
            signal = SignalType.SELL
            confidence = medium.confidence * 0.6
            explanation = "Medium-term downtrend without short-term strength"
        elif short.direction is Direction.NONE and medium.direction is Direction.NONE:
            signal = SignalType.NEUTRAL
            confidence = (short.confidence + medium.confidence) / 2
            explanation = "No significant move on either horizon"
        else:
            signal = SignalType.NEUTRAL
            confidence = 40.0
            explanation = "Short and medium horizons disagree"

        return ForecastResult(
            signal=signal,
            confidence=round(min(100.0, confidence), 1),
            short_term=short,
            medium_term=medium,
            explanation=explanation,
        )


# =============================================================================
# MULTI-TIMEFRAME
# =============================================================================


def resample(series: OHLCVSeries, factor: int) -> OHLCVSeries:
    """
    Aggregate every `factor` bars into one: first open, max high, min low,
    last close, summed volume. A trailing partial bucket is kept.
    """
    if factor <= 1:
        return series

    opens: List[float] = []
    highs: List[float] = []
    lows: List[float] = []
    closes: List[float] = []
    volumes: List[float] = []
    for start in range(0, len(series), factor):
        end = start + factor
        opens.append(series.opens[start])
        highs.append(max(series.highs[start:end]))
        lows.append(min(series.lows[start:end]))
        closes.append(series.closes[min(end, len(series)) - 1])
        volumes.append(sum(series.volumes[start:end]))
    return OHLCVSeries(opens=opens, highs=highs, lows=lows, closes=closes, volumes=volumes)


class MultiTimeframeAnalyzer:
    """
    Scores the series on several resampled timeframes.

    Usage:
        alignment = MultiTimeframeAnalyzer().analyze(series)
        if alignment is not None and alignment.alignment > 70:
            ...
    """

    # (aggregation factor, weight); longer timeframes count more
    TIMEFRAMES: Tuple[Tuple[int, float], ...] = (
        (1, 0.2),
        (5, 0.4),
        (15, 0.6),
        (30, 0.8),
        (60, 1.0),
        (240, 1.5),
        (1440, 2.0),
    )

    def __init__(self, min_candles: int = 200, min_bars: int = 30, min_timeframes: int = 3):
        self.min_candles = min_candles
        self.min_bars = min_bars
        self.min_timeframes = min_timeframes

    @staticmethod
    def score_timeframe(series: OHLCVSeries) -> Tuple[Direction, PricePrediction]:
        """Bull/bear tally from SMA20, RSI, MACD and the forecaster (worth two)."""
        closes = series.closes
        close = closes[-1]
        sma = last_defined(calculate_sma(closes, 20))
        rsi = last_defined(MomentumIndicators.calculate_rsi(closes, 14))
        macd = MomentumIndicators.calculate_macd(closes)
        line, signal = last_defined(macd.line), last_defined(macd.signal)
        prediction = PriceForecaster.predict(series)

        bull = bear = 0
        if sma is not None:
            if close > sma:
                bull += 1
            else:
                bear += 1
        if rsi is not None:
            if rsi < 30:
                bull += 1
            elif rsi > 70:
                bear += 1
        if line is not None and signal is not None:
            if line > signal:
                bull += 1
            elif line < signal:
                bear += 1
        if prediction.direction is Direction.UP:
            bull += 2
        elif prediction.direction is Direction.DOWN:
            bear += 2

        if bull > bear + 1:
            return Direction.UP, prediction
        if bear > bull + 1:
            return Direction.DOWN, prediction
        return Direction.NONE, prediction

    def analyze(self, series: OHLCVSeries) -> Optional[TimeframeAlignment]:
        """
        Weighted direction across timeframes.

        Returns:
            TimeframeAlignment, or None when the series is shorter than
            min_candles or fewer than min_timeframes have enough bars
        """
        if len(series) < self.min_candles:
            return None

        scores = {Direction.UP: 0.0, Direction.DOWN: 0.0, Direction.NONE: 0.0}
        signals: Dict[int, Direction] = {}
        total_weight = 0.0
        confidence_sum = 0.0
        change_sum = 0.0

        for factor, weight in self.TIMEFRAMES:
            bars = resample(series, factor)
            if len(bars) < self.min_bars:
                continue
            direction, prediction = self.score_timeframe(bars)
            signals[factor] = direction
            scores[direction] += weight
            total_weight += weight
            confidence_sum += prediction.confidence * weight
            change_sum += prediction.predicted_change * weight

        if len(signals) < self.min_timeframes:
            logger.debug(f"Only {len(signals)} timeframes with {self.min_bars}+ bars, skipping alignment")
            return None

        up_share = scores[Direction.UP] / total_weight
        down_share = scores[Direction.DOWN] / total_weight
        dominant = Direction.NONE
        if up_share > down_share and up_share > 0.5:
            dominant = Direction.UP
        elif down_share > up_share and down_share > 0.5:
            dominant = Direction.DOWN

        return TimeframeAlignment(
            dominant=dominant,
            alignment=round(max(scores.values()) / total_weight * 100, 1),
            timeframe_signals=signals,
            weighted_confidence=confidence_sum / total_weight,
            weighted_change=change_sum / total_weight,
        )
