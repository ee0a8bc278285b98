"""
Signal Stabilizer - hysteresis over raw synthesized signals.

Raw signals flip whenever the indicator balance tips. The stabilizer only
lets an actionable BUY/SELL through when it is consistent with recent
history and not a premature reversal of the last actionable signal;
everything else becomes HOLD.

Rules per tick:
1. NEUTRAL -> HOLD (same confidence)
2. BUY/SELL -> consistency gate, regime-scaled lock period, hold checks,
   with a sustained-reversal override
3. HOLD -> passed through

One stabilizer per session. State is exposed only as a frozen snapshot.
"""

import logging
from collections import deque
from dataclasses import replace
from typing import Callable, List, Optional, Sequence

from ..engines.pipeline_config import DEFAULT_CONFIG, StabilizerThresholds, safe_divide
from ..engines.regime import MarketRegime, MarketRegimeDetector, RegimeKind
from ..engines.series import Candle
from ..engines.signals import Direction, Signal, SignalType
from .data_types import SignalHistoryEntry, StabilizerState, now_ms
from .ring_buffer import TimestampedRingBuffer

logger = logging.getLogger(__name__)


def _aligned(direction: Direction, signal_type: SignalType) -> bool:
    return (direction is Direction.UP and signal_type is SignalType.BUY) or (
        direction is Direction.DOWN and signal_type is SignalType.SELL
    )


class SignalStabilizer:
    """
    Turns a stream of raw signals into a stream of stable ones.

    Usage:
        stabilizer = SignalStabilizer()
        stabilizer.on_actionable(lambda s: print("ACT", s.type))
        stable = stabilizer.process(raw_signal, candles=candles)
    """

    def __init__(
        self,
        thresholds: Optional[StabilizerThresholds] = None,
        detector: Optional[MarketRegimeDetector] = None,
        regime_interval_ms: Optional[int] = None,
        clock: Optional[Callable[[], int]] = None,
    ):
        self.thresholds = thresholds or DEFAULT_CONFIG.stabilizer
        self.detector = detector or MarketRegimeDetector()
        if regime_interval_ms is None:
            regime_interval_ms = self.detector.thresholds.recompute_interval_ms
        self._regime_interval_ms = regime_interval_ms
        self._clock = clock or now_ms

        self._on_actionable: List[Callable[[Signal], None]] = []
        self._history = TimestampedRingBuffer[SignalHistoryEntry](self.thresholds.history_size)
        self._confidence: deque = deque(maxlen=self.thresholds.confidence_window)
        self._init_state()

    def _init_state(self) -> None:
        self._last_actionable_signal: Optional[SignalType] = None
        self._last_actionable_time: Optional[int] = None
        self._lock_period_ms: int = self.thresholds.base_lock_ms
        self._consecutive_same = 0
        self._opposite_streak = 0
        self._hold_count = 0
        self._regime_cache: Optional[MarketRegime] = None
        self._last_regime_check: Optional[int] = None

    # =========================================================================
    # PUBLIC API
    # =========================================================================

    def on_actionable(self, callback: Callable[[Signal], None]) -> None:
        """Register callback for emitted BUY/SELL signals."""
        self._on_actionable.append(callback)

    @property
    def state(self) -> StabilizerState:
        return StabilizerState(
            last_actionable_signal=self._last_actionable_signal,
            last_actionable_time=self._last_actionable_time,
            lock_period_ms=self._lock_period_ms,
            confidence_history=tuple(self._confidence),
            consecutive_same_signals=self._consecutive_same,
            opposite_signal_streak=self._opposite_streak,
            hold_count=self._hold_count,
            regime_cache=self._regime_cache,
            last_regime_check_time=self._last_regime_check,
        )

    @property
    def history(self) -> List[SignalHistoryEntry]:
        """Emitted signals, oldest first."""
        return self._history.values()

    def reset(self) -> None:
        self._history.clear()
        self._confidence.clear()
        self._init_state()

    def regime_for(self, candles: Sequence[Candle], now: Optional[int] = None) -> MarketRegime:
        """
        Regime for the given candles, recomputed at most once per interval.

        Between recomputes the cached regime is returned even if the candles
        changed.
        """
        now = self._clock() if now is None else now
        stale = (
            self._regime_cache is None
            or self._last_regime_check is None
            or now - self._last_regime_check >= self._regime_interval_ms
        )
        if stale:
            self._regime_cache = self.detector.detect(candles)
            self._last_regime_check = now
            logger.debug(f"Regime recomputed: {self._regime_cache.kind}")
        return self._regime_cache  # type: ignore[return-value]

    def process(
        self,
        raw: Signal,
        candles: Optional[Sequence[Candle]] = None,
        regime: Optional[MarketRegime] = None,
        now_ms: Optional[int] = None,
    ) -> Signal:
        """
        Stabilize one raw signal.

        Args:
            raw: Signal from the synthesizer
            candles: Current series, used for the throttled regime lookup
            regime: Explicit regime (skips the lookup)
            now_ms: Tick time; defaults to the stabilizer clock

        Returns:
            The emitted signal: the raw BUY/SELL, or a HOLD
        """
        now = self._clock() if now_ms is None else now_ms
        if regime is None:
            if candles is not None:
                regime = self.regime_for(candles, now)
            else:
                regime = self._regime_cache or MarketRegime.undefined()

        if raw.type is SignalType.NEUTRAL:
            emitted = self._hold(raw, raw.confidence, now)
        elif raw.type is SignalType.HOLD:
            self._hold_count += 1
            emitted = raw if raw.timestamp_ms is not None else replace(raw, timestamp_ms=now)
        else:
            emitted = self._process_actionable(raw, regime, now)

        self._history.append_at(
            SignalHistoryEntry(type=emitted.type, time=now, confidence=emitted.confidence), now
        )
        return emitted

    # =========================================================================
    # RULES
    # =========================================================================

    def _process_actionable(self, raw: Signal, regime: MarketRegime, now: int) -> Signal:
        t = self.thresholds
        direction = raw.type
        confidence = raw.confidence

        self._confidence.append(confidence)
        last = self._last_actionable_signal
        if last is not None:
            if direction is last:
                self._consecutive_same += 1
                self._opposite_streak = 0
            else:
                self._opposite_streak += 1
                self._consecutive_same = 0

        consistent = self._is_consistent(direction, confidence, regime, now)
        self._lock_period_ms = self._lock_period(confidence, regime)

        is_opposite = last is not None and direction is not last
        elapsed = now - self._last_actionable_time if self._last_actionable_time is not None else None
        avg_confidence = safe_divide(sum(self._confidence), len(self._confidence), default=confidence)

        reasons = []
        if not consistent:
            reasons.append("inconsistent")
        if is_opposite and elapsed is not None and elapsed < self._lock_period_ms / 2:
            reasons.append("reversal inside half lock")
        fading_ratio = (
            t.low_confidence_ratio_volatile if regime.kind is RegimeKind.VOLATILE else t.low_confidence_ratio
        )
        if confidence < fading_ratio * avg_confidence and confidence < t.low_confidence_floor:
            reasons.append("confidence fading")
        if is_opposite and elapsed is not None:
            multiplier = (
                t.opposite_lock_multiplier_volatile
                if regime.kind is RegimeKind.VOLATILE
                else t.opposite_lock_multiplier_default
            )
            if elapsed < self._lock_period_ms * multiplier:
                reasons.append("reversal inside lock")

        override = self._opposite_streak >= t.reversal_streak and confidence > t.reversal_confidence
        if reasons and not override:
            logger.debug(f"Holding {direction} {confidence:.0f}%: {', '.join(reasons)}")
            return self._hold(raw, min(t.hold_confidence_cap, confidence), now)

        if override and reasons:
            logger.info(
                f"Sustained reversal to {direction} after {self._opposite_streak} signals, "
                f"overriding lock"
            )
        return self._emit(raw, now)

    def _is_consistent(
        self, direction: SignalType, confidence: float, regime: MarketRegime, now: int
    ) -> bool:
        t = self.thresholds
        if confidence >= t.high_confidence_bypass:
            return True

        recent = self._history.since(now - t.consistency_window_ms)[-t.consistency_entries:]
        same = sum(1 for e in recent if e.type is direction)
        opposite = sum(1 for e in recent if e.type is direction.opposite)

        if same >= t.min_same_entries and opposite <= t.max_opposite_entries:
            return True
        if (
            regime.kind is RegimeKind.TRENDING
            and regime.strength > t.strong_trend_strength
            and _aligned(regime.direction, direction)
        ):
            return same >= 1 and opposite == 0
        if (regime.kind is RegimeKind.ACCUMULATION and direction is SignalType.BUY) or (
            regime.kind is RegimeKind.DISTRIBUTION and direction is SignalType.SELL
        ):
            return same >= 1 and opposite <= 1
        return False

    def _lock_period(self, confidence: float, regime: MarketRegime) -> int:
        t = self.thresholds
        lock = float(t.base_lock_ms)
        if regime.volatility > t.high_volatility:
            lock *= t.high_volatility_lock_multiplier
        elif regime.kind is RegimeKind.TRENDING and regime.strength > t.strong_trend_strength:
            lock *= t.trend_lock_multiplier

        if confidence > t.confident_threshold or self._consecutive_same >= t.streak_for_shorter_lock:
            lock *= t.confident_lock_multiplier
        return int(lock)

    # =========================================================================
    # EMISSION
    # =========================================================================

    def _hold(self, raw: Signal, confidence: float, now: int) -> Signal:
        self._hold_count += 1
        return Signal(
            type=SignalType.HOLD,
            confidence=confidence,
            contributing=list(raw.contributing),
            price_targets=None,
            timestamp_ms=raw.timestamp_ms if raw.timestamp_ms is not None else now,
        )

    def _emit(self, raw: Signal, now: int) -> Signal:
        previous = self._last_actionable_signal
        if previous is None or previous is not raw.type:
            self._consecutive_same = 1
            self._opposite_streak = 0

        self._last_actionable_signal = raw.type
        self._last_actionable_time = now
        self._hold_count = 0

        emitted = raw if raw.timestamp_ms is not None else replace(raw, timestamp_ms=now)
        logger.info(f"Stable signal: {emitted.describe()}")

        for callback in self._on_actionable:
            try:
                callback(emitted)
            except Exception as e:
                logger.error(f"Actionable-signal callback failed: {e}")
        return emitted
