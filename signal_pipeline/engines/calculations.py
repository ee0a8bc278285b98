"""
Shared math utilities for indicator calculations.

Every series helper returns a list index-aligned with its input. Positions
that cannot be computed yet (warm-up) hold None, never 0.
"""

import math
from typing import List, Optional, Sequence, Tuple

Series = List[Optional[float]]


def average_last(values: Sequence[float], window: int, default: float = 0.0) -> float:
    """Return the average of the last window values (or all values if shorter)."""
    if not values or window <= 0:
        return default
    slice_vals = values[-window:]
    return sum(slice_vals) / len(slice_vals)


def first_defined_index(values: Sequence[Optional[float]]) -> Optional[int]:
    """Index of the first non-None entry, or None if there is none."""
    for i, value in enumerate(values):
        if value is not None:
            return i
    return None


def last_defined(values: Sequence[Optional[float]], offset: int = 0) -> Optional[float]:
    """
    Return the value `offset` positions before the end if it is defined.

    offset=0 is the newest entry, offset=1 the one before it.
    """
    idx = len(values) - 1 - offset
    if idx < 0:
        return None
    return values[idx]


def defined_values(values: Sequence[Optional[float]]) -> List[float]:
    """Drop warm-up gaps."""
    return [v for v in values if v is not None]


def calculate_sma(values: Sequence[Optional[float]], period: int) -> Series:
    """
    Simple Moving Average, index-aligned.

    Leading None entries are skipped: the first SMA lands `period - 1`
    positions after the first defined input.
    """
    n = len(values)
    out: Series = [None] * n
    start = first_defined_index(values)
    if period <= 0 or start is None or n - start < period:
        return out

    window_sum = sum(values[start:start + period])  # type: ignore[arg-type]
    out[start + period - 1] = window_sum / period
    for i in range(start + period, n):
        window_sum += values[i] - values[i - period]  # type: ignore[operator]
        out[i] = window_sum / period
    return out


def calculate_ema(values: Sequence[Optional[float]], period: int) -> Series:
    """
    Exponential Moving Average, index-aligned.

    Seeded with the SMA of the first `period` defined values; thereafter
    ema[i] = value[i] * k + ema[i-1] * (1 - k), k = 2 / (period + 1).
    """
    n = len(values)
    out: Series = [None] * n
    start = first_defined_index(values)
    if period <= 0 or start is None or n - start < period:
        return out

    k = 2 / (period + 1)
    seed_idx = start + period - 1
    ema = sum(values[start:start + period]) / period  # type: ignore[arg-type]
    out[seed_idx] = ema
    for i in range(seed_idx + 1, n):
        ema = values[i] * k + ema * (1 - k)  # type: ignore[operator]
        out[i] = ema
    return out


def wilder_smooth(values: Sequence[Optional[float]], period: int) -> Series:
    """
    Wilder's smoothing (RMA), index-aligned.

    Seeded with the mean of the first `period` defined values; thereafter
    rma[i] = (rma[i-1] * (period - 1) + value[i]) / period.
    """
    n = len(values)
    out: Series = [None] * n
    start = first_defined_index(values)
    if period <= 0 or start is None or n - start < period:
        return out

    seed_idx = start + period - 1
    rma = sum(values[start:start + period]) / period  # type: ignore[arg-type]
    out[seed_idx] = rma
    for i in range(seed_idx + 1, n):
        rma = (rma * (period - 1) + values[i]) / period  # type: ignore[operator]
        out[i] = rma
    return out


def calculate_rolling_mean_std(values: Sequence[float], period: int) -> Tuple[Series, Series]:
    """
    Rolling mean and standard deviation, index-aligned.

    Uses rolling sums for O(n) performance. Standard deviation uses
    population variance (divide by period).
    """
    n = len(values)
    means: Series = [None] * n
    stds: Series = [None] * n
    if period <= 0 or n < period:
        return means, stds

    window_sum = sum(values[:period])
    window_sumsq = sum(v * v for v in values[:period])

    for i in range(period - 1, n):
        if i >= period:
            outgoing = values[i - period]
            incoming = values[i]
            window_sum += incoming - outgoing
            window_sumsq += incoming * incoming - outgoing * outgoing

        mean = window_sum / period
        variance = (window_sumsq / period) - (mean * mean)
        if variance < 0:
            variance = 0.0
        means[i] = mean
        stds[i] = math.sqrt(variance)

    return means, stds


def true_range(highs: Sequence[float], lows: Sequence[float], closes: Sequence[float]) -> Series:
    """True range per bar; index 0 has no previous close and is undefined."""
    n = len(closes)
    out: Series = [None] * n
    for i in range(1, n):
        out[i] = max(
            highs[i] - lows[i],
            abs(highs[i] - closes[i - 1]),
            abs(lows[i] - closes[i - 1]),
        )
    return out


def percentile(values: Sequence[float], pct: float) -> float:
    """Linear-interpolated percentile (pct in [0, 100]) of a non-empty sequence."""
    if not values:
        raise ValueError("percentile of empty sequence")
    ordered = sorted(values)
    if len(ordered) == 1:
        return ordered[0]
    rank = (len(ordered) - 1) * max(0.0, min(100.0, pct)) / 100
    lower = math.floor(rank)
    upper = math.ceil(rank)
    if lower == upper:
        return ordered[lower]
    frac = rank - lower
    return ordered[lower] + (ordered[upper] - ordered[lower]) * frac
