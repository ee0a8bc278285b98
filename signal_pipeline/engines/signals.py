"""Shared signal enums and result types to avoid stringly-typed signals."""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional


class SignalType(Enum):
    """Aggregate signal values emitted by the pipeline."""

    BUY = "BUY"
    SELL = "SELL"
    HOLD = "HOLD"
    NEUTRAL = "NEUTRAL"

    def __str__(self) -> str:
        return self.value

    @property
    def is_actionable(self) -> bool:
        """True for BUY and SELL."""
        return self in (SignalType.BUY, SignalType.SELL)

    @property
    def opposite(self) -> "SignalType":
        """BUY <-> SELL; HOLD and NEUTRAL map to themselves."""
        if self is SignalType.BUY:
            return SignalType.SELL
        if self is SignalType.SELL:
            return SignalType.BUY
        return self


class Direction(Enum):
    """Price direction of a market regime."""

    UP = "UP"
    DOWN = "DOWN"
    NONE = "NONE"

    def __str__(self) -> str:
        return self.value


@dataclass
class SignalVote:
    """
    One indicator's or pattern's contribution to the aggregate signal.

    direction is BUY, SELL or NEUTRAL. composite marks composite/pattern
    votes, which are listed ahead of plain indicator votes.
    """

    source: str
    direction: SignalType
    strength: float  # 0-100
    message: str
    composite: bool = False


@dataclass
class PriceTargets:
    """Entry, stop and targets for an actionable signal."""

    entry: float
    stop_loss: float
    target1: float
    target2: float
    target3: float
    risk_reward_ratio: float


@dataclass
class Signal:
    """Aggregate signal with its explanation."""

    type: SignalType
    confidence: float  # 0-100
    contributing: List[SignalVote] = field(default_factory=list)
    price_targets: Optional[PriceTargets] = None
    timestamp_ms: Optional[int] = None

    @property
    def is_actionable(self) -> bool:
        return self.type.is_actionable

    @classmethod
    def neutral(cls, timestamp_ms: Optional[int] = None) -> "Signal":
        """Zero-confidence NEUTRAL (insufficient data)."""
        return cls(type=SignalType.NEUTRAL, confidence=0.0, timestamp_ms=timestamp_ms)

    def describe(self) -> str:
        """One-line summary, e.g. 'BUY 78% (EMA Crossover, MACD)'."""
        sources = ", ".join(v.source for v in self.contributing[:3])
        base = f"{self.type} {self.confidence:.0f}%"
        return f"{base} ({sources})" if sources else base
