"""
Signal Pipeline - wires ingestion to the per-session compute chain.

    MarketDataSource -> CandleStore -> IndicatorEngine -> SignalSynthesizer
        -> SignalStabilizer (regime context) -> NotificationDispatcher

One SignalSession exists per (symbol, interval). Switching pairs tears the
old subscription down completely before the new session starts; nothing
carries over between sessions.

Usage:
    async def main():
        pipeline = SignalPipeline()

        @pipeline.on_signal
        def handle(event):
            print(event.symbol, event.signal.describe())

        async with pipeline:
            await pipeline.start("BTCUSDT", "1m")
            await asyncio.sleep(3600)

    asyncio.run(main())
"""

import asyncio
import functools
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from ..engines.data_fetcher import validate_interval
from ..engines.indicators import IndicatorEngine, IndicatorSnapshot
from ..engines.pipeline_config import PipelineConfig
from ..engines.regime import MarketRegime, MarketRegimeDetector
from ..engines.series import Candle, OHLCVSeries
from ..engines.signals import Signal
from ..engines.synthesizer import SignalSynthesizer
from ..logging_config import log_exception
from .candle_store import CandleStore
from .data_types import ConnectionState, SourceHealth, SourceStatus, SubscriptionHandle, now_ms
from .ingestion import BinanceKlineSource, MarketDataSource, SimulatedCandleSource
from .notifications import AlertChannel, DispatchOutcome, NotificationDispatcher
from .stabilizer import SignalStabilizer

logger = logging.getLogger(__name__)

SignalCallback = Callable[["SignalEvent"], Any]
StatusCallback = Callable[[SourceStatus], Any]


@dataclass(frozen=True)
class SignalEvent:
    """
    One pass through the compute chain.

    signal is the stabilized signal, or None for a minor update whose raw
    confidence was too low to reach the stabilizer.
    """

    symbol: str
    interval: str
    raw: Signal
    signal: Optional[Signal]
    regime: Optional[MarketRegime]
    health: SourceHealth
    candle_count: int
    dispatch: Optional[DispatchOutcome] = None


class SignalSession:
    """
    Everything owned by one (symbol, interval) subscription.

    Compute is synchronous: on_candle applies the update and, when it
    changed the series, runs indicators -> synthesis -> stabilization ->
    dispatch before returning.
    """

    def __init__(
        self,
        symbol: str,
        interval: str,
        config: PipelineConfig,
        alert_channel: Optional[AlertChannel] = None,
        clock: Optional[Callable[[], int]] = None,
    ):
        self.symbol = symbol
        self.interval = interval
        self.config = config
        self._clock = clock or now_ms

        self.store = CandleStore(
            capacity=config.ingestion.store_capacity,
            significance_epsilon=config.ingestion.significance_epsilon,
        )
        self.engine = IndicatorEngine(config.indicators)
        detector = MarketRegimeDetector(config.regime)
        self.synthesizer = SignalSynthesizer(config.synthesis, engine=self.engine, regime_detector=detector)
        self.stabilizer = SignalStabilizer(
            config.stabilizer,
            detector=detector,
            clock=self._clock,
        )
        self.dispatcher = NotificationDispatcher(alert_channel, config.notifications, clock=self._clock)

        self.handle: Optional[SubscriptionHandle] = None
        self.health = SourceHealth.LIVE
        self.backfilling = True
        self.latest_snapshot: Optional[IndicatorSnapshot] = None
        self.latest_event: Optional[SignalEvent] = None

    @property
    def key(self):
        return (self.symbol, self.interval)

    def on_candle(self, candle: Candle) -> Optional[SignalEvent]:
        result = self.store.update(candle)
        if not result.applied or not result.changed or self.backfilling:
            return None
        return self.compute(significant=result.significant)

    def on_backfill_complete(self) -> Optional[SignalEvent]:
        self.backfilling = False
        logger.info(f"Backfill complete for {self.symbol} {self.interval}: {len(self.store)} candles")
        if not len(self.store):
            return None
        return self.compute(significant=True)

    def compute(self, significant: bool = True) -> SignalEvent:
        now = self._clock()
        candles = self.store.snapshot()

        snapshot = None
        if len(candles) >= self.config.synthesis.min_candles:
            snapshot = self.engine.compute(OHLCVSeries.from_candles(candles))
            self.latest_snapshot = snapshot
        raw = self.synthesizer.synthesize(candles, snapshot=snapshot, timestamp_ms=now)

        if not significant and raw.confidence < self.config.ingestion.minor_update_min_confidence:
            event = SignalEvent(
                symbol=self.symbol,
                interval=self.interval,
                raw=raw,
                signal=None,
                regime=self.stabilizer.state.regime_cache,
                health=self.health,
                candle_count=len(candles),
            )
        else:
            stable = self.stabilizer.process(raw, candles=candles, now_ms=now)
            regime = self.stabilizer.state.regime_cache
            outcome = self.dispatcher.dispatch(stable, self.symbol, regime, now_ms=now)
            event = SignalEvent(
                symbol=self.symbol,
                interval=self.interval,
                raw=raw,
                signal=stable,
                regime=regime,
                health=self.health,
                candle_count=len(candles),
                dispatch=outcome,
            )

        self.latest_event = event
        return event


class SignalPipeline:
    """
    Orchestrates one market data source and the active SignalSession.

    The data source strategy is chosen once, at construction. Without one,
    a live websocket source is used with a simulated fallback.
    """

    def __init__(
        self,
        config: Optional[PipelineConfig] = None,
        source: Optional[MarketDataSource] = None,
        alert_channel: Optional[AlertChannel] = None,
        clock: Optional[Callable[[], int]] = None,
    ):
        self.config = config or PipelineConfig()
        self._clock = clock or now_ms
        self.source = source or BinanceKlineSource(
            settings=self.config.ingestion,
            fallback=SimulatedCandleSource(settings=self.config.ingestion),
        )
        self._alert_channel = alert_channel

        self._session: Optional[SignalSession] = None
        self._last_status: Optional[SourceStatus] = None
        self._on_signal: List[SignalCallback] = []
        self._on_raw_signal: List[SignalCallback] = []
        self._on_status: List[StatusCallback] = []

        self.source.add_status_callback(self._handle_status)

    # === Callback Registration ===

    def on_signal(self, callback: SignalCallback) -> SignalCallback:
        """Register callback for stabilized signals. Usable as a decorator."""
        self._on_signal.append(callback)
        return callback

    def on_raw_signal(self, callback: SignalCallback) -> SignalCallback:
        """Register callback for every synthesized (raw) signal."""
        self._on_raw_signal.append(callback)
        return callback

    def on_status(self, callback: StatusCallback) -> StatusCallback:
        """Register callback for source status transitions."""
        self._on_status.append(callback)
        return callback

    # === Properties ===

    @property
    def session(self) -> Optional[SignalSession]:
        return self._session

    @property
    def latest_event(self) -> Optional[SignalEvent]:
        return self._session.latest_event if self._session else None

    @property
    def latest_signal(self) -> Optional[Signal]:
        event = self.latest_event
        return event.signal if event else None

    @property
    def health(self) -> SourceHealth:
        return self.source.health

    @property
    def state(self) -> ConnectionState:
        return self.source.state

    @property
    def is_running(self) -> bool:
        return self._session is not None

    # === Internal Callbacks ===

    @staticmethod
    async def _fan_out(callbacks: List[Callable[[Any], Any]], payload: Any, label: str) -> None:
        for callback in callbacks:
            try:
                result = callback(payload)
                if asyncio.iscoroutine(result):
                    await result
            except Exception as e:
                log_exception(logger, e, f"{label} callback error")

    async def _publish(self, event: Optional[SignalEvent]) -> None:
        if event is None:
            return
        await self._fan_out(self._on_raw_signal, event, "Raw signal")
        if event.signal is not None:
            await self._fan_out(self._on_signal, event, "Signal")

    async def _handle_candle(self, session: SignalSession, candle: Candle) -> None:
        if session is not self._session:
            return
        await self._publish(session.on_candle(candle))

    async def _handle_backfill(self, session: SignalSession) -> None:
        if session is not self._session:
            return
        await self._publish(session.on_backfill_complete())

    async def _handle_status(self, status: SourceStatus) -> None:
        self._last_status = status
        if self._session is not None:
            self._session.health = status.health
        if status.state is ConnectionState.UNAVAILABLE:
            logger.warning(f"Source unavailable for {status.symbol}: {status.message}")
        await self._fan_out(self._on_status, status, "Status")

    # === Lifecycle ===

    async def start(self, symbol: str, interval: str = "1m") -> SignalSession:
        """Start (or keep) the session for (symbol, interval)."""
        if self._session is not None and self._session.key == (symbol, interval):
            return self._session
        return await self.switch(symbol, interval)

    async def switch(self, symbol: str, interval: str) -> SignalSession:
        """
        Tear down the current session and start a new one.

        Raises:
            ValueError: If the interval is not supported
        """
        validate_interval(interval)
        await self._teardown()

        session = SignalSession(symbol, interval, self.config, self._alert_channel, clock=self._clock)
        self._session = session
        logger.info(f"Starting signal session {symbol} {interval}")

        session.handle = await self.source.connect(
            symbol,
            interval,
            functools.partial(self._handle_candle, session),
            functools.partial(self._handle_backfill, session),
        )
        return session

    async def _teardown(self) -> None:
        session = self._session
        if session is None:
            return
        self._session = None
        if session.handle is not None:
            await self.source.disconnect(session.handle)
        logger.info(f"Stopped signal session {session.symbol} {session.interval}")

    async def stop(self) -> None:
        """Stop the active session and release the source."""
        await self._teardown()
        await self.source.close()

    def refresh_now(self) -> bool:
        """Request a throttled manual refresh of the active session."""
        if self._session is None:
            return False
        return self.source.refresh_now()

    async def reconnect(self) -> bool:
        """Revive a source parked in UNAVAILABLE."""
        return await self.source.reconnect()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.stop()

    # === Utility Methods ===

    def get_status(self) -> Dict[str, Any]:
        """Get current pipeline status."""
        session = self._session
        event = self.latest_event
        stabilizer = session.stabilizer.state if session else None
        return {
            "symbol": session.symbol if session else None,
            "interval": session.interval if session else None,
            "running": session is not None,
            "backfilling": session.backfilling if session else False,
            "candles": len(session.store) if session else 0,
            "connection_state": self.source.state.value,
            "health": self.health.value,
            "attempt": self.source.attempt,
            "raw_signal": str(event.raw.type) if event else None,
            "signal": str(event.signal.type) if event and event.signal else None,
            "confidence": event.signal.confidence if event and event.signal else None,
            "regime": str(event.regime.kind) if event and event.regime else None,
            "hold_count": stabilizer.hold_count if stabilizer else 0,
            "last_status": self._last_status.message if self._last_status else None,
        }
