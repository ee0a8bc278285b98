"""
Support / Resistance detection.

Finds local extrema in the lookback window, clusters pivots that sit within
a tolerance band of each other, and ranks the clusters by how often price
touched them and how recently.

Every returned level lies within [min(low), max(high)] of the lookback
window it was computed from.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

from .calculations import percentile
from .pipeline_config import DEFAULT_CONFIG, IndicatorParams, clamp, safe_divide

logger = logging.getLogger(__name__)


@dataclass
class SupportResistanceLevels:
    """Ranked levels per side (strongest first)."""

    support: List[float] = field(default_factory=list)
    resistance: List[float] = field(default_factory=list)

    def nearest_support(self, price: float) -> Optional[float]:
        """Highest support at or below price."""
        below = [s for s in self.support if s <= price]
        return max(below) if below else None

    def nearest_resistance(self, price: float) -> Optional[float]:
        """Lowest resistance at or above price."""
        above = [r for r in self.resistance if r >= price]
        return min(above) if above else None


@dataclass
class _Cluster:
    prices: List[float]
    last_index: int
    touches: int = 0

    @property
    def level(self) -> float:
        return sum(self.prices) / len(self.prices)


def _pivot_points(values: Sequence[float], window: int, find_high: bool) -> List[Tuple[float, int]]:
    """(price, index) of bars that are the extreme of their ±window neighbourhood."""
    pivots = []
    for i in range(window, len(values) - window):
        neighbourhood = values[i - window:i + window + 1]
        extreme = max(neighbourhood) if find_high else min(neighbourhood)
        if values[i] == extreme:
            pivots.append((values[i], i))
    return pivots


def _cluster(pivots: List[Tuple[float, int]], tolerance_pct: float) -> List[_Cluster]:
    """Greedy clustering of pivots sorted by price."""
    clusters: List[_Cluster] = []
    for price, idx in sorted(pivots):
        if clusters:
            current = clusters[-1]
            if safe_divide(abs(price - current.level), current.level) * 100 <= tolerance_pct:
                current.prices.append(price)
                current.last_index = max(current.last_index, idx)
                continue
        clusters.append(_Cluster(prices=[price], last_index=idx))
    return clusters


def _count_touches(cluster: _Cluster, values: Sequence[float], tolerance_pct: float) -> int:
    level = cluster.level
    return sum(1 for v in values if safe_divide(abs(v - level), level) * 100 <= tolerance_pct)


def _dedupe(levels: List[float], dedupe_pct: float) -> List[float]:
    """Keep ranked order, dropping levels within dedupe_pct of an earlier one."""
    kept: List[float] = []
    for level in levels:
        if all(safe_divide(abs(level - k), k) * 100 > dedupe_pct for k in kept):
            kept.append(level)
    return kept


def _rank_side(
    values: Sequence[float],
    find_high: bool,
    params: IndicatorParams,
) -> List[float]:
    pivots = _pivot_points(values, params.sr_pivot_window, find_high)
    clusters = _cluster(pivots, params.sr_tolerance_pct)
    for cluster in clusters:
        cluster.touches = _count_touches(cluster, values, params.sr_tolerance_pct)

    # Touch count first, recency second
    clusters.sort(key=lambda c: (c.touches, c.last_index), reverse=True)
    return _dedupe([c.level for c in clusters], params.sr_dedupe_pct)


def find_support_resistance(
    highs: Sequence[float],
    lows: Sequence[float],
    closes: Sequence[float],
    params: Optional[IndicatorParams] = None,
) -> SupportResistanceLevels:
    """
    Detect ranked support and resistance levels.

    Args:
        highs, lows, closes: Full price columns (only the lookback tail is used)
        params: Indicator parameters (lookback, pivot window, tolerance, top-N)

    Returns:
        SupportResistanceLevels with up to top-N levels per side. Sides with
        no pivot clusters fall back to percentile levels of the window.
    """
    p = params or DEFAULT_CONFIG.indicators
    if not closes or not highs or not lows:
        return SupportResistanceLevels()

    window_highs = list(highs[-p.sr_lookback:])
    window_lows = list(lows[-p.sr_lookback:])
    floor = min(window_lows)
    ceiling = max(window_highs)

    support = _rank_side(window_lows, find_high=False, params=p)
    resistance = _rank_side(window_highs, find_high=True, params=p)

    if not support:
        support = _dedupe(
            [percentile(window_lows, 25), percentile(window_lows, 10)], p.sr_dedupe_pct
        )
    if not resistance:
        resistance = _dedupe(
            [percentile(window_highs, 75), percentile(window_highs, 90)], p.sr_dedupe_pct
        )

    levels = SupportResistanceLevels(
        support=[clamp(level, floor, ceiling) for level in support[:p.sr_top_n]],
        resistance=[clamp(level, floor, ceiling) for level in resistance[:p.sr_top_n]],
    )

    logger.debug(
        f"S/R over {len(window_highs)} bars: support={levels.support} "
        f"resistance={levels.resistance} (range {floor:.4f}-{ceiling:.4f}, "
        f"spread {safe_divide(ceiling - floor, floor) * 100:.2f}%)"
    )
    return levels
