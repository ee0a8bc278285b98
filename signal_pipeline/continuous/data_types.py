"""
Core data types for the continuous signal pipeline.

These are the objects exchanged between the ingestion loop, the per-session
state and the callbacks. Candle itself lives in engines.series.
"""

import itertools
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Optional, Tuple

from ..engines.regime import MarketRegime
from ..engines.series import Candle
from ..engines.signals import SignalType


def now_ms() -> int:
    """Wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


# =============================================================================
# SOURCE STATUS
# =============================================================================


class ConnectionState(Enum):
    """Lifecycle of a market data subscription."""

    DISCONNECTED = "DISCONNECTED"
    CONNECTING = "CONNECTING"
    CONNECTED = "CONNECTED"
    RECONNECTING = "RECONNECTING"
    UNAVAILABLE = "UNAVAILABLE"  # retry cap reached; revive with reconnect()
    CLOSED = "CLOSED"

    def __str__(self) -> str:
        return self.value


class SourceHealth(Enum):
    """Where the candles currently come from."""

    LIVE = "LIVE"
    DEGRADED_SIMULATED = "DEGRADED_SIMULATED"
    RETRYING = "RETRYING"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class SourceStatus:
    """Status transition delivered to status callbacks."""

    state: ConnectionState
    health: SourceHealth
    attempt: int
    symbol: str
    interval: str
    message: str = ""
    timestamp_ms: int = field(default_factory=now_ms)

    @property
    def is_degraded(self) -> bool:
        return self.health is SourceHealth.DEGRADED_SIMULATED


# =============================================================================
# SUBSCRIPTION
# =============================================================================

CandleCallback = Callable[[Candle], Any]
BackfillCallback = Callable[[], Any]

_handle_ids = itertools.count(1)


@dataclass(eq=False)
class SubscriptionHandle:
    """
    One live subscription for (symbol, interval).

    Sources deliver candles through the handle; once the handle is closed,
    late deliveries are dropped.
    """

    symbol: str
    interval: str
    on_candle: CandleCallback
    on_backfill_complete: Optional[BackfillCallback] = None
    id: int = field(default_factory=lambda: next(_handle_ids))
    closed: bool = False

    @property
    def key(self) -> Tuple[str, str]:
        return (self.symbol, self.interval)


# =============================================================================
# STABILIZER
# =============================================================================


@dataclass(frozen=True)
class SignalHistoryEntry:
    """One stabilized signal as recorded in the session history."""

    type: SignalType
    time: int
    confidence: float


@dataclass(frozen=True)
class StabilizerState:
    """Read-only snapshot of a SignalStabilizer."""

    last_actionable_signal: Optional[SignalType] = None
    last_actionable_time: Optional[int] = None
    lock_period_ms: int = 0
    confidence_history: Tuple[float, ...] = ()
    consecutive_same_signals: int = 0
    opposite_signal_streak: int = 0
    hold_count: int = 0
    regime_cache: Optional[MarketRegime] = None
    last_regime_check_time: Optional[int] = None
