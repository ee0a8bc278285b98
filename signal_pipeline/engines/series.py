"""
Candle and column-series types shared by every engine.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Sequence


@dataclass(frozen=True, slots=True)
class Candle:
    """
    One OHLCV bar for a fixed time bucket.

    Uniquely keyed by open_time (ms) within a series. Frozen: a still-forming
    bar is updated by replacing the whole candle, never by mutation.
    """

    open_time: int
    open: float
    high: float
    low: float
    close: float
    volume: float
    close_time: int

    @property
    def datetime(self) -> datetime:
        """UTC datetime for the candle open."""
        return datetime.fromtimestamp(self.open_time / 1000, tz=timezone.utc)

    @property
    def typical_price(self) -> float:
        """Typical price (H+L+C)/3."""
        return (self.high + self.low + self.close) / 3

    @property
    def is_bullish(self) -> bool:
        return self.close > self.open


@dataclass(frozen=True)
class OHLCVSeries:
    """Column view over a candle sequence, the shape indicator functions consume."""

    opens: List[float]
    highs: List[float]
    lows: List[float]
    closes: List[float]
    volumes: List[float]

    @classmethod
    def from_candles(cls, candles: Sequence[Candle]) -> "OHLCVSeries":
        return cls(
            opens=[c.open for c in candles],
            highs=[c.high for c in candles],
            lows=[c.low for c in candles],
            closes=[c.close for c in candles],
            volumes=[c.volume for c in candles],
        )

    def __len__(self) -> int:
        return len(self.closes)

    def tail(self, n: int) -> "OHLCVSeries":
        """Last n bars."""
        if n <= 0:
            return OHLCVSeries([], [], [], [], [])
        return OHLCVSeries(
            opens=self.opens[-n:],
            highs=self.highs[-n:],
            lows=self.lows[-n:],
            closes=self.closes[-n:],
            volumes=self.volumes[-n:],
        )
