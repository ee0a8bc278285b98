"""
Continuous Signal Pipeline

"Ingest continuously, decide discretely."

Architecture:
```
MARKET DATA SOURCE (websocket / polling / simulated)
├─ REST backfill
├─ incremental candle updates
└─ reconnect with backoff, UNAVAILABLE after the cap
        ↓
CANDLE STORE (per session, bounded, keyed by open_time)
        ↓ (significant change)
INDICATOR ENGINE → SIGNAL SYNTHESIZER
        ↓
SIGNAL STABILIZER (regime-aware hysteresis)
├─ BUY / SELL
└─ HOLD
        ↓
NOTIFICATION DISPATCHER (sound, OS notification, toast)
```

Usage:
    from signal_pipeline.continuous import SignalPipeline

    async def main():
        pipeline = SignalPipeline()

        @pipeline.on_signal
        def handle_signal(event):
            print(f"{event.symbol}: {event.signal.describe()}")

        async with pipeline:
            await pipeline.start("BTCUSDT", "1m")
            await asyncio.sleep(3600)

    asyncio.run(main())
"""

from .candle_store import CandleStore, UpdateKind, UpdateResult
from .data_types import (
    ConnectionState,
    SignalHistoryEntry,
    SourceHealth,
    SourceStatus,
    StabilizerState,
    SubscriptionHandle,
)
from .ingestion import (
    BinanceKlineSource,
    MarketDataSource,
    PollingKlineSource,
    SimulatedCandleSource,
)
from .notifications import (
    AlertChannel,
    DispatchOutcome,
    LoggingAlertChannel,
    NotificationDispatcher,
)
from .orchestrator import SignalEvent, SignalPipeline, SignalSession
from .ring_buffer import RingBuffer, TimestampedRingBuffer
from .stabilizer import SignalStabilizer

__all__ = [
    # Data types
    "ConnectionState",
    "SourceHealth",
    "SourceStatus",
    "SubscriptionHandle",
    "SignalHistoryEntry",
    "StabilizerState",
    # Buffers
    "RingBuffer",
    "TimestampedRingBuffer",
    "CandleStore",
    "UpdateKind",
    "UpdateResult",
    # Ingestion
    "MarketDataSource",
    "BinanceKlineSource",
    "PollingKlineSource",
    "SimulatedCandleSource",
    # Stabilization / alerts
    "SignalStabilizer",
    "AlertChannel",
    "LoggingAlertChannel",
    "NotificationDispatcher",
    "DispatchOutcome",
    # Orchestrator
    "SignalPipeline",
    "SignalSession",
    "SignalEvent",
]
