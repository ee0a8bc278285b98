"""
Candle Store - bounded, strictly ordered candle series for one session.

Keyed by open_time: a repeated open_time replaces the forming candle in
place, a newer one appends (evicting the oldest at capacity), and anything
older than the newest candle that is not already present is rejected.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple

from ..engines.series import Candle
from .ring_buffer import RingBuffer

logger = logging.getLogger(__name__)

DEFAULT_CAPACITY = 1000
DEFAULT_SIGNIFICANCE_EPSILON = 0.0003


class UpdateKind(Enum):
    APPENDED = "APPENDED"
    REPLACED = "REPLACED"
    STALE = "STALE"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class UpdateResult:
    """Outcome of CandleStore.update."""

    kind: UpdateKind
    significant: bool
    evicted: Optional[Candle] = None
    changed: bool = True

    @property
    def applied(self) -> bool:
        return self.kind is not UpdateKind.STALE


class CandleStore:
    """
    Rolling candle series with O(1) append and in-place replace.

    Example:
        store = CandleStore(capacity=500)
        result = store.update(candle)
        if result.significant:
            recompute(store.snapshot())
    """

    def __init__(
        self,
        capacity: int = DEFAULT_CAPACITY,
        significance_epsilon: float = DEFAULT_SIGNIFICANCE_EPSILON,
    ):
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self._buffer = RingBuffer[Candle](capacity)
        self._epsilon = significance_epsilon

    @staticmethod
    def is_significant(
        prev: Optional[Candle], next_candle: Candle, epsilon: float = DEFAULT_SIGNIFICANCE_EPSILON
    ) -> bool:
        """True for a new open_time or a relative close move above epsilon."""
        if prev is None or next_candle.open_time != prev.open_time:
            return True
        if prev.close == 0:
            return next_candle.close != 0
        return abs(next_candle.close - prev.close) / prev.close > epsilon

    def update(self, candle: Candle) -> UpdateResult:
        latest = self._buffer.newest()

        if latest is None or candle.open_time > latest.open_time:
            evicted = self._buffer.append(candle)
            return UpdateResult(UpdateKind.APPENDED, significant=True, evicted=evicted)

        if candle.open_time == latest.open_time:
            self._buffer[-1] = candle
            return UpdateResult(
                UpdateKind.REPLACED,
                significant=self.is_significant(latest, candle, self._epsilon),
                changed=latest != candle,
            )

        # Older than the head: only a replay of a stored candle is accepted
        index = self._find(candle.open_time)
        if index is None:
            logger.warning(
                f"Dropping stale candle open_time={candle.open_time} "
                f"(latest {latest.open_time})"
            )
            return UpdateResult(UpdateKind.STALE, significant=False, changed=False)

        previous = self._buffer[index]
        self._buffer[index] = candle
        return UpdateResult(
            UpdateKind.REPLACED,
            significant=self.is_significant(previous, candle, self._epsilon),
            changed=previous != candle,
        )

    def _find(self, open_time: int) -> Optional[int]:
        lo, hi = 0, len(self._buffer) - 1
        while lo <= hi:
            mid = (lo + hi) // 2
            value = self._buffer[mid].open_time
            if value == open_time:
                return mid
            if value < open_time:
                lo = mid + 1
            else:
                hi = mid - 1
        return None

    def snapshot(self) -> Tuple[Candle, ...]:
        """Immutable copy of the series, oldest first."""
        return tuple(self._buffer)

    @property
    def latest(self) -> Optional[Candle]:
        return self._buffer.newest()

    @property
    def capacity(self) -> int:
        return self._buffer.maxlen

    def __len__(self) -> int:
        return len(self._buffer)

    def clear(self) -> None:
        self._buffer.clear()
