"""
Signal Synthesizer - one aggregate signal from many indicator votes.

Each indicator or pattern casts a SignalVote (BUY / SELL / NEUTRAL with a
0-100 strength). Votes are summed per direction and the net share of the
winning side is mapped onto a 0-100 confidence:

    net        = (winner - loser) / (buy + sell + neutral)
    confidence = clamp(base + scale * net, 0, 100)

The winning direction is emitted when confidence clears the neutral floor;
otherwise the aggregate is NEUTRAL.

Besides the indicator and pattern votes, three context votes weigh in: the
market regime direction, the price forecaster and multi-timeframe alignment
(the last only once 200+ candles are available).

Vote order is part of the output contract: composite and pattern votes come
first (in the order they were cast), then plain votes by descending strength.
"""

import logging
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence

from .calculations import Series, average_last, defined_values, last_defined
from .forecast import MultiTimeframeAnalyzer, PriceForecaster
from .indicators import IndicatorEngine, IndicatorSnapshot
from .pipeline_config import DEFAULT_CONFIG, SynthesisThresholds, clamp, safe_divide
from .regime import MarketRegime, MarketRegimeDetector, RegimeKind
from .series import Candle, OHLCVSeries
from .signals import Direction, PriceTargets, Signal, SignalType, SignalVote

logger = logging.getLogger(__name__)

BUY = SignalType.BUY
SELL = SignalType.SELL
NEUTRAL = SignalType.NEUTRAL


@dataclass
class _VoteContext:
    """Everything a vote function may look at."""

    series: OHLCVSeries
    snapshot: IndicatorSnapshot
    thresholds: SynthesisThresholds
    regime: Optional[MarketRegime] = None

    @property
    def close(self) -> float:
        return self.series.closes[-1]

    def volume_ratio(self) -> float:
        volumes = self.series.volumes
        window = self.thresholds.volume_average_window
        if len(volumes) < 2:
            return 1.0
        baseline = average_last(volumes[:-1], window)
        return safe_divide(volumes[-1], baseline, default=1.0)


def _pair(values: Series, offset: int = 0):
    """(current, previous) at the given offset from the end."""
    return last_defined(values, offset), last_defined(values, offset + 1)


# =============================================================================
# INDICATOR VOTES
# =============================================================================


def _ema_crossover_vote(ctx: _VoteContext) -> Optional[SignalVote]:
    t = ctx.thresholds
    fast, slow = ctx.snapshot.ema_fast, ctx.snapshot.ema_slow
    f0, s0 = last_defined(fast), last_defined(slow)
    if f0 is None or s0 is None or f0 == s0:
        return None

    bullish = f0 > s0
    for k in range(1, t.ema_cross_lookback + 1):
        fk, sk = last_defined(fast, k), last_defined(slow, k)
        if fk is None or sk is None:
            break
        if (bullish and fk <= sk) or (not bullish and fk >= sk):
            label = "above" if bullish else "below"
            return SignalVote(
                "EMA Crossover",
                BUY if bullish else SELL,
                t.ema_cross_strength,
                f"EMA9 crossed {label} EMA21",
            )

    return SignalVote(
        "EMA Alignment",
        BUY if bullish else SELL,
        t.ema_alignment_strength,
        f"EMA9 {'above' if bullish else 'below'} EMA21",
    )


def _trend_vote(ctx: _VoteContext) -> Optional[SignalVote]:
    snap = ctx.snapshot
    sma_trend = last_defined(snap.sma_trend)
    fast, slow = last_defined(snap.ema_fast), last_defined(snap.ema_slow)
    if sma_trend is None or fast is None or slow is None:
        return None

    if ctx.close > sma_trend and fast > slow:
        return SignalVote("Trend", BUY, ctx.thresholds.trend_strength, "Price above SMA50, EMAs stacked up")
    if ctx.close < sma_trend and fast < slow:
        return SignalVote("Trend", SELL, ctx.thresholds.trend_strength, "Price below SMA50, EMAs stacked down")
    return None


def _rsi_vote(ctx: _VoteContext) -> Optional[SignalVote]:
    t = ctx.thresholds
    rsi = last_defined(ctx.snapshot.rsi)
    if rsi is None:
        return None
    if rsi < t.rsi_oversold:
        return SignalVote("RSI", BUY, t.rsi_zone_strength, f"RSI {rsi:.1f} oversold")
    if rsi > t.rsi_overbought:
        return SignalVote("RSI", SELL, t.rsi_zone_strength, f"RSI {rsi:.1f} overbought")
    return SignalVote("RSI", NEUTRAL, t.rsi_neutral_strength, f"RSI {rsi:.1f} neutral")


def _macd_vote(ctx: _VoteContext) -> Optional[SignalVote]:
    t = ctx.thresholds
    macd = ctx.snapshot.macd
    line, prev_line = _pair(macd.line)
    signal, prev_signal = _pair(macd.signal)
    hist, prev_hist = _pair(macd.histogram)
    if line is None or signal is None or hist is None:
        return None

    if prev_line is not None and prev_signal is not None:
        if line > signal and prev_line <= prev_signal:
            return SignalVote("MACD", BUY, t.macd_cross_strength, "MACD crossed above signal")
        if line < signal and prev_line >= prev_signal:
            return SignalVote("MACD", SELL, t.macd_cross_strength, "MACD crossed below signal")

    if prev_hist is not None:
        if hist > 0 and hist > prev_hist:
            return SignalVote("MACD", BUY, t.macd_histogram_strength, "MACD histogram rising")
        if hist < 0 and hist < prev_hist:
            return SignalVote("MACD", SELL, t.macd_histogram_strength, "MACD histogram falling")
    return None


def _stochastic_vote(ctx: _VoteContext) -> Optional[SignalVote]:
    t = ctx.thresholds
    stoch = ctx.snapshot.stochastic
    if stoch is None:
        return None
    k, d = last_defined(stoch.k), last_defined(stoch.d)
    if k is None or d is None:
        return None
    if k < t.stochastic_oversold and k > d:
        return SignalVote("Stochastic", BUY, t.stochastic_strength, f"%K {k:.0f} turning up from oversold")
    if k > t.stochastic_overbought and k < d:
        return SignalVote("Stochastic", SELL, t.stochastic_strength, f"%K {k:.0f} turning down from overbought")
    return None


def _momentum_vote(ctx: _VoteContext) -> Optional[SignalVote]:
    t = ctx.thresholds
    roc, momentum = last_defined(ctx.snapshot.roc), last_defined(ctx.snapshot.momentum)
    if roc is None or momentum is None:
        return None
    if roc > t.roc_threshold_pct and momentum > 0:
        return SignalVote("Momentum", BUY, t.momentum_strength, f"ROC +{roc:.2f}%")
    if roc < -t.roc_threshold_pct and momentum < 0:
        return SignalVote("Momentum", SELL, t.momentum_strength, f"ROC {roc:.2f}%")
    return None


def _bollinger_vote(ctx: _VoteContext) -> Optional[SignalVote]:
    t = ctx.thresholds
    bands = ctx.snapshot.bollinger
    upper, lower = last_defined(bands.upper), last_defined(bands.lower)
    if upper is None or lower is None:
        return None

    surge = ctx.volume_ratio() >= t.volume_surge_ratio
    if ctx.close > upper:
        if surge:
            return SignalVote("Bollinger", BUY, t.bollinger_breakout_strength, "Breakout above upper band on volume")
        return SignalVote("Bollinger", SELL, t.bollinger_touch_strength, "Close above upper band, overextended")
    if ctx.close < lower:
        if surge:
            return SignalVote("Bollinger", SELL, t.bollinger_breakout_strength, "Breakdown below lower band on volume")
        return SignalVote("Bollinger", BUY, t.bollinger_touch_strength, "Close below lower band, oversold")

    widths = defined_values(bands.width())
    if len(widths) >= 2 and widths[-1] < t.bollinger_squeeze_ratio * average_last(widths, len(widths)):
        return SignalVote("Bollinger", NEUTRAL, t.bollinger_squeeze_strength, "Band squeeze, breakout pending")
    return None


def _vwap_vote(ctx: _VoteContext) -> Optional[SignalVote]:
    vwap = last_defined(ctx.snapshot.vwap)
    if vwap is None or ctx.close == vwap:
        return None
    if ctx.close > vwap:
        return SignalVote("VWAP", BUY, ctx.thresholds.vwap_strength, "Price above VWAP")
    return SignalVote("VWAP", SELL, ctx.thresholds.vwap_strength, "Price below VWAP")


def _cmf_vote(ctx: _VoteContext) -> Optional[SignalVote]:
    t = ctx.thresholds
    cmf = last_defined(ctx.snapshot.cmf)
    if cmf is None:
        return None
    if cmf > t.cmf_threshold:
        return SignalVote("CMF", BUY, t.cmf_strength, f"Money flow positive ({cmf:.2f})")
    if cmf < -t.cmf_threshold:
        return SignalVote("CMF", SELL, t.cmf_strength, f"Money flow negative ({cmf:.2f})")
    return None


def _volume_surge_vote(ctx: _VoteContext) -> Optional[SignalVote]:
    t = ctx.thresholds
    ratio = ctx.volume_ratio()
    if ratio < t.volume_surge_ratio:
        return None
    series = ctx.series
    if series.closes[-1] > series.opens[-1]:
        return SignalVote("Volume Surge", BUY, t.volume_surge_strength, f"Volume {ratio:.1f}x on up candle")
    if series.closes[-1] < series.opens[-1]:
        return SignalVote("Volume Surge", SELL, t.volume_surge_strength, f"Volume {ratio:.1f}x on down candle")
    return None


def _support_resistance_vote(ctx: _VoteContext) -> Optional[SignalVote]:
    t = ctx.thresholds
    levels = ctx.snapshot.support_resistance
    close = ctx.close
    support = levels.nearest_support(close)
    resistance = levels.nearest_resistance(close)

    support_gap = safe_divide(close - support, close, default=1.0) * 100 if support is not None else None
    resistance_gap = safe_divide(resistance - close, close, default=1.0) * 100 if resistance is not None else None

    near_support = support_gap is not None and support_gap <= t.sr_proximity_pct
    near_resistance = resistance_gap is not None and resistance_gap <= t.sr_proximity_pct
    if near_support and (not near_resistance or support_gap <= resistance_gap):
        return SignalVote("Support/Resistance", BUY, t.sr_strength, f"Holding support {support:.4f}")
    if near_resistance:
        return SignalVote("Support/Resistance", SELL, t.sr_strength, f"Testing resistance {resistance:.4f}")
    return None


# =============================================================================
# PATTERN VOTES (listed first)
# =============================================================================


def _rsi_divergence_vote(ctx: _VoteContext) -> Optional[SignalVote]:
    t = ctx.thresholds
    lookback = t.divergence_lookback
    closes = ctx.series.closes
    rsi = ctx.snapshot.rsi
    if len(closes) < lookback + 1:
        return None

    window_rsi = [r for r in rsi[-lookback - 1:-1] if r is not None]
    current_rsi = last_defined(rsi)
    if current_rsi is None or len(window_rsi) < lookback:
        return None

    window_closes = closes[-lookback - 1:-1]
    if closes[-1] < min(window_closes) and current_rsi > min(window_rsi):
        return SignalVote(
            "RSI Divergence", BUY, t.divergence_strength,
            "Bullish divergence: lower low in price, higher low in RSI", composite=True,
        )
    if closes[-1] > max(window_closes) and current_rsi < max(window_rsi):
        return SignalVote(
            "RSI Divergence", SELL, t.divergence_strength,
            "Bearish divergence: higher high in price, lower high in RSI", composite=True,
        )
    return None


def _price_acceleration_vote(ctx: _VoteContext) -> Optional[SignalVote]:
    t = ctx.thresholds
    bars = t.acceleration_bars
    closes = ctx.series.closes
    if len(closes) < bars + 1:
        return None

    changes = [closes[i] - closes[i - 1] for i in range(len(closes) - bars, len(closes))]
    increasing = all(later > earlier for earlier, later in zip(changes, changes[1:]))
    decreasing = all(later < earlier for earlier, later in zip(changes, changes[1:]))
    if all(c > 0 for c in changes) and increasing:
        return SignalVote("Price Acceleration", BUY, t.acceleration_strength, "Upside move accelerating", composite=True)
    if all(c < 0 for c in changes) and decreasing:
        return SignalVote("Price Acceleration", SELL, t.acceleration_strength, "Downside move accelerating", composite=True)
    return None


def _combined_strategy_vote(ctx: _VoteContext, votes: List[SignalVote]) -> Optional[SignalVote]:
    """Trend, MACD and momentum agree, and RSI is not stretched against them."""
    by_source = {v.source: v for v in votes}
    trend = by_source.get("Trend")
    macd = by_source.get("MACD")
    momentum = by_source.get("Momentum")
    if trend is None or macd is None or momentum is None:
        return None
    if not (trend.direction == macd.direction == momentum.direction):
        return None

    direction = trend.direction
    rsi = last_defined(ctx.snapshot.rsi)
    t = ctx.thresholds
    if rsi is not None:
        if direction is BUY and rsi > t.rsi_overbought:
            return None
        if direction is SELL and rsi < t.rsi_oversold:
            return None

    return SignalVote(
        "Combined Strategy", direction, t.combined_strength,
        "Trend, MACD and momentum aligned", composite=True,
    )


# =============================================================================
# CONTEXT VOTES (regime, forecaster, timeframe alignment)
# =============================================================================

_DIRECTION_VOTE = {Direction.UP: BUY, Direction.DOWN: SELL, Direction.NONE: NEUTRAL}


def _market_regime_vote(ctx: _VoteContext) -> Optional[SignalVote]:
    regime = ctx.regime
    if regime is None or regime.kind is RegimeKind.UNDEFINED:
        return None
    return SignalVote(
        "Market Regime",
        _DIRECTION_VOTE[regime.direction],
        ctx.thresholds.regime_vote_strength,
        f"Market is in {str(regime.kind).lower()} mode with {regime.strength:.0f}% strength",
    )


def _forecast_vote(ctx: _VoteContext) -> Optional[SignalVote]:
    t = ctx.thresholds
    if len(ctx.series) < PriceForecaster.MIN_CANDLES:
        return None
    result = PriceForecaster.forecast(ctx.series)

    if result.confidence > t.forecast_strong_confidence:
        strength = t.forecast_strong_strength
    elif result.confidence > t.forecast_moderate_confidence:
        strength = t.forecast_moderate_strength
    else:
        strength = t.forecast_weak_strength

    change = result.short_term.predicted_change
    return SignalVote(
        "Price Forecast",
        result.signal,
        strength,
        f"{result.explanation} (short-term {change:+.2f}%, {result.confidence:.0f}% confidence)",
    )


def _multi_timeframe_vote(ctx: _VoteContext) -> Optional[SignalVote]:
    t = ctx.thresholds
    analyzer = MultiTimeframeAnalyzer(
        min_candles=t.mtf_min_candles,
        min_bars=t.mtf_min_bars,
        min_timeframes=t.mtf_min_timeframes,
    )
    alignment = analyzer.analyze(ctx.series)
    if alignment is None:
        return None

    aligned = alignment.alignment > t.mtf_aligned_threshold
    label = "neutral" if alignment.dominant is Direction.NONE else str(alignment.dominant).lower()
    return SignalVote(
        "Multi-Timeframe",
        _DIRECTION_VOTE[alignment.dominant],
        t.mtf_aligned_strength if aligned else t.mtf_mixed_strength,
        f"{alignment.alignment:.0f}% alignment across {alignment.timeframe_count} timeframes, dominant {label}",
    )


INDICATOR_VOTES: List[Callable[[_VoteContext], Optional[SignalVote]]] = [
    _ema_crossover_vote,
    _trend_vote,
    _rsi_vote,
    _macd_vote,
    _stochastic_vote,
    _momentum_vote,
    _bollinger_vote,
    _vwap_vote,
    _cmf_vote,
    _volume_surge_vote,
    _support_resistance_vote,
    _market_regime_vote,
    _forecast_vote,
    _multi_timeframe_vote,
]

PATTERN_VOTES: List[Callable[[_VoteContext], Optional[SignalVote]]] = [
    _rsi_divergence_vote,
    _price_acceleration_vote,
]


def order_votes(votes: Sequence[SignalVote]) -> List[SignalVote]:
    """Composite/pattern votes first in cast order, then by descending strength."""
    composite = [v for v in votes if v.composite]
    plain = sorted((v for v in votes if not v.composite), key=lambda v: v.strength, reverse=True)
    return composite + plain


# =============================================================================
# SYNTHESIZER
# =============================================================================


class SignalSynthesizer:
    """
    Combines indicator votes into one Signal with confidence and targets.

    Usage:
        synthesizer = SignalSynthesizer()
        signal = synthesizer.synthesize(candles)
        if signal.is_actionable:
            print(signal.type, signal.confidence, signal.price_targets)
    """

    def __init__(
        self,
        thresholds: Optional[SynthesisThresholds] = None,
        engine: Optional[IndicatorEngine] = None,
        regime_detector: Optional[MarketRegimeDetector] = None,
    ):
        self.thresholds = thresholds or DEFAULT_CONFIG.synthesis
        self.engine = engine or IndicatorEngine()
        self.regime_detector = regime_detector or MarketRegimeDetector()

    def synthesize(
        self,
        candles: Sequence[Candle],
        snapshot: Optional[IndicatorSnapshot] = None,
        timestamp_ms: Optional[int] = None,
    ) -> Signal:
        """
        Synthesize the aggregate signal for the latest candle.

        Args:
            candles: Candle series, oldest first
            snapshot: Precomputed indicators for exactly these candles
            timestamp_ms: Stamp for the resulting signal

        Returns:
            Signal; NEUTRAL with zero confidence when the series is too short
        """
        t = self.thresholds
        if len(candles) < t.min_candles:
            return Signal.neutral(timestamp_ms)

        series = OHLCVSeries.from_candles(candles)
        if snapshot is None:
            snapshot = self.engine.compute(series)
        ctx = _VoteContext(
            series=series,
            snapshot=snapshot,
            thresholds=t,
            regime=self.regime_detector.detect(candles),
        )

        votes = self.collect_votes(ctx)
        signal_type, confidence = self._aggregate(votes)

        targets = None
        if signal_type.is_actionable:
            targets = self.price_targets(series, snapshot, signal_type)

        signal = Signal(
            type=signal_type,
            confidence=confidence,
            contributing=order_votes(votes),
            price_targets=targets,
            timestamp_ms=timestamp_ms,
        )
        logger.debug(f"Synthesized {signal.describe()} from {len(votes)} votes")
        return signal

    def collect_votes(self, ctx: _VoteContext) -> List[SignalVote]:
        votes: List[SignalVote] = []
        for vote_fn in PATTERN_VOTES + INDICATOR_VOTES:
            vote = vote_fn(ctx)
            if vote is not None:
                votes.append(vote)

        combined = _combined_strategy_vote(ctx, votes)
        if combined is not None:
            votes.insert(0, combined)
        return votes

    def _aggregate(self, votes: Sequence[SignalVote]):
        t = self.thresholds
        buy = sum(v.strength for v in votes if v.direction is BUY)
        sell = sum(v.strength for v in votes if v.direction is SELL)
        neutral = sum(v.strength for v in votes if v.direction is NEUTRAL)
        total = buy + sell + neutral

        net = safe_divide(abs(buy - sell), total)
        confidence = clamp(t.base_confidence + t.confidence_scale * net, 0.0, 100.0)
        if total == 0:
            confidence = 0.0

        if buy == sell or confidence < t.neutral_floor:
            return NEUTRAL, round(confidence, 1)
        return (BUY if buy > sell else SELL), round(confidence, 1)

    def price_targets(
        self,
        series: OHLCVSeries,
        snapshot: IndicatorSnapshot,
        direction: SignalType,
    ) -> PriceTargets:
        """
        Stop at the nearest swing extreme plus a volatility buffer; targets at
        1x, 2x and 3x the resulting risk.
        """
        t = self.thresholds
        entry = series.closes[-1]
        atr = last_defined(snapshot.atr)
        buffer = atr * t.stop_buffer_atr_multiple if atr else entry * t.fallback_buffer_pct / 100

        if direction is BUY:
            stop = min(series.lows[-t.swing_lookback:]) - buffer
        else:
            stop = max(series.highs[-t.swing_lookback:]) + buffer

        risk = abs(entry - stop)
        if risk == 0:
            risk = entry * t.fallback_buffer_pct / 100
            stop = entry - risk if direction is BUY else entry + risk

        sign = 1 if direction is BUY else -1
        target1 = entry + sign * risk
        return PriceTargets(
            entry=entry,
            stop_loss=stop,
            target1=target1,
            target2=entry + sign * 2 * risk,
            target3=entry + sign * 3 * risk,
            risk_reward_ratio=safe_divide(abs(target1 - entry), abs(entry - stop)),
        )
