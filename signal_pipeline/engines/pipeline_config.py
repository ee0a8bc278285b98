"""
Pipeline Configuration Module
Centralizes all magic numbers and thresholds for the signal pipeline.

Every threshold that governs synthesis, regime detection, stabilization,
alerting and ingestion lives here as a named dataclass field, so the
policy can be tuned without touching the engines themselves.
"""

import os
from dataclasses import dataclass, field
from typing import Optional

# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================

EPSILON = 1e-9


def safe_divide(numerator: float, denominator: float, default: float = 0.0) -> float:
    """
    Safely divide two numbers, returning default if denominator is near zero.

    Args:
        numerator: The numerator
        denominator: The denominator
        default: Value to return if division is unsafe (default: 0.0)

    Returns:
        numerator / denominator if safe, otherwise default
    """
    return numerator / denominator if abs(denominator) > EPSILON else default


def clamp(value: float, low: float, high: float) -> float:
    """Clamp value into [low, high]."""
    return max(low, min(high, value))


# =============================================================================
# INDICATOR PARAMETERS
# =============================================================================


@dataclass
class IndicatorParams:
    """Periods used by the indicator engine."""

    sma_period: int = 20
    ema_period: int = 21
    ema_fast_period: int = 9
    ema_slow_period: int = 21
    sma_trend_period: int = 50

    rsi_period: int = 14

    macd_fast: int = 12
    macd_slow: int = 26
    macd_signal: int = 9

    bollinger_period: int = 20
    bollinger_k: float = 2.0

    stochastic_period: int = 14
    stochastic_smooth: int = 3
    roc_period: int = 9
    momentum_period: int = 10
    atr_period: int = 14
    adx_period: int = 14
    vwap_period: int = 14
    cmf_period: int = 20

    # Support / resistance
    sr_lookback: int = 50
    sr_pivot_window: int = 5  # bars on each side of a local extremum
    sr_tolerance_pct: float = 0.5  # cluster band, % of price
    sr_dedupe_pct: float = 1.0  # levels closer than this are merged
    sr_top_n: int = 3


# =============================================================================
# SIGNAL SYNTHESIS
# =============================================================================


@dataclass
class SynthesisThresholds:
    """Vote weights and aggregation thresholds for the synthesizer."""

    min_candles: int = 50

    # Aggregation: confidence = base + scale * net_share
    base_confidence: float = 20.0
    confidence_scale: float = 87.0
    neutral_floor: float = 35.0  # below this the overall signal is NEUTRAL

    # EMA crossover
    ema_cross_lookback: int = 2
    ema_cross_strength: float = 75.0
    ema_alignment_strength: float = 45.0

    # Trend consistency
    trend_strength: float = 55.0

    # RSI zones
    rsi_oversold: float = 30.0
    rsi_overbought: float = 70.0
    rsi_zone_strength: float = 65.0
    rsi_neutral_strength: float = 20.0

    # MACD
    macd_cross_strength: float = 70.0
    macd_histogram_strength: float = 50.0

    # Stochastic
    stochastic_oversold: float = 20.0
    stochastic_overbought: float = 80.0
    stochastic_strength: float = 55.0

    # Momentum / ROC
    roc_threshold_pct: float = 1.0
    momentum_strength: float = 40.0

    # Bollinger
    bollinger_touch_strength: float = 60.0
    bollinger_breakout_strength: float = 65.0
    bollinger_squeeze_ratio: float = 0.85  # width < ratio * avg width
    bollinger_squeeze_strength: float = 25.0

    # Money flow
    vwap_strength: float = 35.0
    cmf_threshold: float = 0.1
    cmf_strength: float = 40.0

    # Volume surge
    volume_surge_ratio: float = 1.5
    volume_average_window: int = 20
    volume_surge_strength: float = 50.0

    # Support / resistance proximity
    sr_proximity_pct: float = 1.0
    sr_strength: float = 55.0

    # Patterns
    divergence_lookback: int = 10
    divergence_strength: float = 60.0
    acceleration_bars: int = 3
    acceleration_strength: float = 45.0
    combined_strength: float = 80.0

    # Context votes: regime direction, forecaster, timeframe alignment
    regime_vote_strength: float = 35.0
    forecast_strong_confidence: float = 70.0
    forecast_moderate_confidence: float = 50.0
    forecast_strong_strength: float = 70.0
    forecast_moderate_strength: float = 60.0
    forecast_weak_strength: float = 50.0
    mtf_min_candles: int = 200
    mtf_min_bars: int = 30  # bars a resampled timeframe needs to be scored
    mtf_min_timeframes: int = 3
    mtf_aligned_threshold: float = 70.0
    mtf_aligned_strength: float = 60.0
    mtf_mixed_strength: float = 35.0

    # Price targets
    swing_lookback: int = 10
    stop_buffer_atr_multiple: float = 0.5
    fallback_buffer_pct: float = 0.5  # used when ATR is not yet defined


# =============================================================================
# MARKET REGIME
# =============================================================================


@dataclass
class RegimeThresholds:
    """Regime classification thresholds."""

    min_candles: int = 50
    lookback: int = 50

    adx_trending: float = 25.0
    adx_strength_multiplier: float = 2.0

    atr_average_window: int = 20
    volatility_scale: float = 50.0  # atr / avg_atr * scale
    volatile_threshold: float = 70.0

    squeeze_ratio: float = 0.85
    flow_window: int = 20
    flow_tie_band: float = 0.05  # |up_share - 0.5| below this defers to CMF

    # Recompute at most this often per session
    recompute_interval_ms: int = 30_000


# =============================================================================
# SIGNAL STABILIZER
# =============================================================================


@dataclass
class StabilizerThresholds:
    """Hysteresis policy for the signal stabilizer."""

    base_lock_ms: int = 60_000

    # Consistency gate
    high_confidence_bypass: float = 65.0
    consistency_window_ms: int = 90_000
    consistency_entries: int = 4
    min_same_entries: int = 2
    max_opposite_entries: int = 1
    strong_trend_strength: float = 70.0

    # Lock scaling
    high_volatility: float = 80.0
    high_volatility_lock_multiplier: float = 1.5
    trend_lock_multiplier: float = 0.7
    confident_lock_multiplier: float = 0.7
    confident_threshold: float = 75.0
    streak_for_shorter_lock: int = 3

    # Hold conditions
    low_confidence_ratio: float = 0.85
    low_confidence_ratio_volatile: float = 0.9
    low_confidence_floor: float = 45.0
    opposite_lock_multiplier_volatile: float = 1.0
    opposite_lock_multiplier_default: float = 1.2

    # Sustained reversal override
    reversal_streak: int = 3
    reversal_confidence: float = 65.0

    hold_confidence_cap: float = 70.0
    confidence_window: int = 10
    history_size: int = 20


# =============================================================================
# NOTIFICATIONS
# =============================================================================


@dataclass
class NotificationSettings:
    """Alert delivery settings."""

    confidence_threshold: float = 65.0
    alerts_enabled: bool = True
    alert_volume: float = 0.7  # clamped to [0, 1] on use
    notifications_enabled: bool = True

    toast_interval_ms: int = 5_000

    # Opposite-direction suppression windows
    opposite_window_default_ms: int = 300_000
    opposite_window_volatile_ms: int = 450_000
    opposite_window_trending_ms: int = 200_000
    direction_memory_ms: int = 600_000


# =============================================================================
# INGESTION
# =============================================================================


@dataclass
class IngestionSettings:
    """Data source resilience and store settings."""

    backoff_base_s: float = 1.0
    backoff_multiplier: float = 1.5
    backoff_max_s: float = 30.0
    backoff_jitter: bool = False
    max_reconnect_attempts: int = 10

    refresh_debounce_ms: int = 400
    refresh_throttle_ms: int = 2_000

    heartbeat_interval_s: float = 15.0
    backfill_limit: int = 100

    store_capacity: int = 1000
    significance_epsilon: float = 0.0003  # 0.03% close move

    # Minor (non-significant) updates still reach the stabilizer at or
    # above this raw confidence
    minor_update_min_confidence: float = 45.0


# =============================================================================
# MASTER CONFIG
# =============================================================================


@dataclass
class PipelineConfig:
    """
    Master configuration for the signal pipeline.

    Usage:
        config = PipelineConfig()

        # Or customize:
        config = PipelineConfig(
            stabilizer=StabilizerThresholds(base_lock_ms=90_000),
            notifications=NotificationSettings(confidence_threshold=75),
        )
    """

    indicators: IndicatorParams = field(default_factory=IndicatorParams)
    synthesis: SynthesisThresholds = field(default_factory=SynthesisThresholds)
    regime: RegimeThresholds = field(default_factory=RegimeThresholds)
    stabilizer: StabilizerThresholds = field(default_factory=StabilizerThresholds)
    notifications: NotificationSettings = field(default_factory=NotificationSettings)
    ingestion: IngestionSettings = field(default_factory=IngestionSettings)


# Global default config instance
DEFAULT_CONFIG = PipelineConfig()


def get_config() -> PipelineConfig:
    """Get the default configuration."""
    return DEFAULT_CONFIG


def create_aggressive_config() -> PipelineConfig:
    """
    Shorter locks and a lower alert threshold.
    Useful on fast intervals where late signals are worthless.
    """
    return PipelineConfig(
        synthesis=SynthesisThresholds(neutral_floor=30.0),
        stabilizer=StabilizerThresholds(
            base_lock_ms=30_000, high_confidence_bypass=60.0, consistency_window_ms=60_000
        ),
        notifications=NotificationSettings(confidence_threshold=55.0),
    )


def create_conservative_config() -> PipelineConfig:
    """
    Longer locks and a higher alert threshold.
    Useful on swing intervals where chatter is costlier than latency.
    """
    return PipelineConfig(
        synthesis=SynthesisThresholds(neutral_floor=45.0),
        stabilizer=StabilizerThresholds(
            base_lock_ms=120_000, high_confidence_bypass=75.0, reversal_streak=4
        ),
        notifications=NotificationSettings(confidence_threshold=75.0),
    )


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def load_config_from_env(base: Optional[PipelineConfig] = None) -> PipelineConfig:
    """
    Apply environment overrides to a config.

    Reads:
    - SIGNAL_CONFIDENCE_THRESHOLD: alert threshold (0-100)
    - SIGNAL_ALERTS_ENABLED: play sounds (true/false)
    - SIGNAL_ALERT_VOLUME: sound volume (0-1)
    - SIGNAL_NOTIFICATIONS_ENABLED: OS notifications (true/false)
    - SIGNAL_MAX_RECONNECT_ATTEMPTS: reconnect cap
    """
    config = base or PipelineConfig()
    notif = config.notifications

    threshold = os.getenv("SIGNAL_CONFIDENCE_THRESHOLD")
    if threshold is not None:
        notif.confidence_threshold = clamp(float(threshold), 0.0, 100.0)

    volume = os.getenv("SIGNAL_ALERT_VOLUME")
    if volume is not None:
        notif.alert_volume = clamp(float(volume), 0.0, 1.0)

    notif.alerts_enabled = _env_bool("SIGNAL_ALERTS_ENABLED", notif.alerts_enabled)
    notif.notifications_enabled = _env_bool(
        "SIGNAL_NOTIFICATIONS_ENABLED", notif.notifications_enabled
    )

    attempts = os.getenv("SIGNAL_MAX_RECONNECT_ATTEMPTS")
    if attempts is not None:
        config.ingestion.max_reconnect_attempts = max(0, int(attempts))

    return config
