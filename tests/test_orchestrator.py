"""
Tests for the signal pipeline and its per-pair sessions.
"""

import asyncio
from dataclasses import replace

import pytest

from signal_pipeline.continuous.data_types import ConnectionState, SourceHealth
from signal_pipeline.continuous.ingestion import MarketDataSource
from signal_pipeline.continuous.notifications import AlertChannel
from signal_pipeline.continuous.orchestrator import SignalPipeline, SignalSession
from signal_pipeline.engines.pipeline_config import IngestionSettings, PipelineConfig
from signal_pipeline.engines.regime import RegimeKind
from signal_pipeline.engines.signals import SignalType


def _config(**ingestion):
    ingestion.setdefault("backoff_base_s", 0.0)
    ingestion.setdefault("max_reconnect_attempts", 1)
    ingestion.setdefault("refresh_debounce_ms", 0)
    return PipelineConfig(ingestion=IngestionSettings(**ingestion))


class FakeSource(MarketDataSource):
    """Per-symbol history plus a queue of live candles."""

    def __init__(self, histories=None, fail=False, **kwargs):
        super().__init__(**kwargs)
        self.histories = histories or {}
        self.fail = fail
        self.queue = asyncio.Queue()

    async def _fetch_history(self, symbol, interval, limit):
        if self.fail:
            raise ConnectionError("offline")
        return list(self.histories.get(symbol, []))

    async def _stream(self, handle):
        await self._mark_connected(handle)
        while True:
            await self._deliver(handle, await self.queue.get())


class SlowCloseSource(FakeSource):
    """Yields to the event loop while releasing its transport."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.transport_closes = 0

    async def _close_transport(self):
        await asyncio.sleep(0)
        self.transport_closes += 1


class SilentChannel(AlertChannel):
    def __init__(self):
        self.toasts = []

    def play_sound(self, direction, volume):
        pass

    def show_os_notification(self, title, body, icon):
        pass

    def show_toast(self, title, description, severity):
        self.toasts.append(title)


class TestSignalSession:
    """Synchronous compute chain of one session."""

    def _session(self, clock, config=None):
        return SignalSession("BTCUSDT", "1m", config or _config(), SilentChannel(), clock=clock)

    def test_backfill_computes_once(self, rising_candles, clock):
        session = self._session(clock)

        events = [session.on_candle(c) for c in rising_candles]
        assert events == [None] * len(rising_candles)

        event = session.on_backfill_complete()

        assert not session.backfilling
        assert event.candle_count == 60
        assert event.raw.type is SignalType.BUY
        assert event.signal is not None
        assert event.regime is not None and event.regime.kind is RegimeKind.TRENDING
        assert event.dispatch is not None
        assert session.latest_event is event
        assert session.latest_snapshot is not None

    def test_empty_backfill(self, clock):
        session = self._session(clock)

        assert session.on_backfill_complete() is None
        assert not session.backfilling

    def test_short_history_holds(self, rising_candles, clock):
        session = self._session(clock)
        for c in rising_candles[:20]:
            session.on_candle(c)

        event = session.on_backfill_complete()

        assert event.raw.type is SignalType.NEUTRAL
        assert event.signal.type is SignalType.HOLD
        assert session.latest_snapshot is None

    def test_updates_after_backfill(self, rising_candles, clock):
        session = self._session(clock)
        for c in rising_candles[:59]:
            session.on_candle(c)
        session.on_backfill_complete()

        event = session.on_candle(rising_candles[59])

        assert event is not None
        assert event.candle_count == 60
        assert event.signal is not None

    def test_replays_and_stale_candles_skip_compute(self, rising_candles, clock):
        session = self._session(clock)
        for c in rising_candles[:55]:
            session.on_candle(c)
        session.on_backfill_complete()

        assert session.on_candle(rising_candles[54]) is None
        assert session.on_candle(replace(rising_candles[10], open_time=rising_candles[10].open_time + 1)) is None

    def test_minor_update_below_floor_skips_stabilizer(self, rising_candles, clock):
        session = self._session(clock, _config(minor_update_min_confidence=101.0))
        for c in rising_candles:
            session.on_candle(c)
        session.on_backfill_complete()
        history_before = len(session.stabilizer.history)
        last = rising_candles[-1]

        event = session.on_candle(replace(last, close=last.close * 1.0001))

        assert event is not None
        assert event.signal is None
        assert event.dispatch is None
        assert len(session.stabilizer.history) == history_before

    def test_significant_update_reaches_stabilizer(self, rising_candles, clock):
        session = self._session(clock, _config(minor_update_min_confidence=101.0))
        for c in rising_candles:
            session.on_candle(c)
        session.on_backfill_complete()
        last = rising_candles[-1]

        event = session.on_candle(replace(last, close=last.close * 1.01))

        assert event.signal is not None


class TestSignalPipeline:
    """Async wiring, session switching and callbacks."""

    @pytest.mark.asyncio
    async def test_start_backfills_then_streams(self, rising_candles, clock, wait_until):
        source = FakeSource({"BTCUSDT": rising_candles[:59]}, settings=_config().ingestion, clock=clock)
        pipeline = SignalPipeline(_config(), source=source, alert_channel=SilentChannel(), clock=clock)
        raw_events, stable_events = [], []
        pipeline.on_raw_signal(raw_events.append)
        pipeline.on_signal(stable_events.append)

        session = await pipeline.start("BTCUSDT", "1m")
        await wait_until(lambda: len(raw_events) == 1)

        assert pipeline.is_running
        assert pipeline.session is session
        assert raw_events[0].candle_count == 59
        assert len(stable_events) == 1

        source.queue.put_nowait(rising_candles[59])
        await wait_until(lambda: len(raw_events) == 2)

        assert raw_events[1].candle_count == 60
        assert pipeline.latest_event is raw_events[1]
        assert pipeline.latest_signal is raw_events[1].signal
        assert raw_events[1].health is SourceHealth.LIVE
        await pipeline.stop()

    @pytest.mark.asyncio
    async def test_start_same_pair_keeps_session(self, rising_candles, wait_until):
        source = FakeSource({"BTCUSDT": rising_candles}, settings=_config().ingestion)
        pipeline = SignalPipeline(_config(), source=source, alert_channel=SilentChannel())

        first = await pipeline.start("BTCUSDT", "1m")
        second = await pipeline.start("BTCUSDT", "1m")

        assert first is second
        await pipeline.stop()

    @pytest.mark.asyncio
    async def test_switch_tears_down_previous_session(self, rising_candles, falling_candles, wait_until):
        source = FakeSource(
            {"BTCUSDT": rising_candles, "ETHUSDT": falling_candles}, settings=_config().ingestion
        )
        pipeline = SignalPipeline(_config(), source=source, alert_channel=SilentChannel())
        events = []
        pipeline.on_raw_signal(events.append)

        old = await pipeline.start("BTCUSDT", "1m")
        await wait_until(lambda: len(events) == 1)
        new = await pipeline.switch("ETHUSDT", "5m")
        await wait_until(lambda: len(events) == 2)

        assert old.handle.closed
        assert pipeline.session is new
        assert events[1].symbol == "ETHUSDT"
        assert events[1].interval == "5m"
        assert events[1].raw.type is SignalType.SELL

        await pipeline._handle_candle(old, rising_candles[0])
        await pipeline._handle_backfill(old)
        assert len(events) == 2
        await pipeline.stop()

    @pytest.mark.asyncio
    async def test_callback_errors_isolated(self, rising_candles, wait_until):
        source = FakeSource({"BTCUSDT": rising_candles}, settings=_config().ingestion)
        pipeline = SignalPipeline(_config(), source=source, alert_channel=SilentChannel())
        received = []

        @pipeline.on_raw_signal
        def broken(event):
            raise RuntimeError("consumer bug")

        @pipeline.on_raw_signal
        async def collect(event):
            await asyncio.sleep(0)
            received.append(event)

        await pipeline.start("BTCUSDT", "1m")
        await wait_until(lambda: len(received) == 1)
        await pipeline.stop()

    @pytest.mark.asyncio
    async def test_fallback_health_reaches_events(self, rising_candles, wait_until):
        settings = _config().ingestion
        fallback = FakeSource({"BTCUSDT": rising_candles}, settings=settings)
        source = FakeSource(fail=True, fallback=fallback, settings=settings)
        pipeline = SignalPipeline(_config(), source=source, alert_channel=SilentChannel())
        events, statuses = [], []
        pipeline.on_raw_signal(events.append)
        pipeline.on_status(statuses.append)

        await pipeline.start("BTCUSDT", "1m")
        await wait_until(lambda: len(events) == 1)

        assert pipeline.health is SourceHealth.DEGRADED_SIMULATED
        assert pipeline.state is ConnectionState.UNAVAILABLE
        assert events[0].health is SourceHealth.DEGRADED_SIMULATED
        assert any(s.state is ConnectionState.UNAVAILABLE for s in statuses)
        await pipeline.stop()

    @pytest.mark.asyncio
    async def test_get_status(self, rising_candles, wait_until):
        source = FakeSource({"BTCUSDT": rising_candles}, settings=_config().ingestion)
        pipeline = SignalPipeline(_config(), source=source, alert_channel=SilentChannel())

        idle = pipeline.get_status()
        assert idle["running"] is False
        assert idle["symbol"] is None
        assert idle["candles"] == 0

        events = []
        pipeline.on_raw_signal(events.append)
        await pipeline.start("BTCUSDT", "1m")
        await wait_until(lambda: len(events) == 1 and pipeline.state is ConnectionState.CONNECTED)

        status = pipeline.get_status()
        assert status["symbol"] == "BTCUSDT"
        assert status["running"] is True
        assert status["backfilling"] is False
        assert status["candles"] == 60
        assert status["connection_state"] == "CONNECTED"
        assert status["health"] == "LIVE"
        assert status["raw_signal"] == "BUY"
        assert status["regime"] is not None
        await pipeline.stop()

    @pytest.mark.asyncio
    async def test_stop_and_context_manager(self, rising_candles, wait_until):
        source = FakeSource({"BTCUSDT": rising_candles}, settings=_config().ingestion)

        async with SignalPipeline(_config(), source=source, alert_channel=SilentChannel()) as pipeline:
            session = await pipeline.start("BTCUSDT", "1m")
            assert pipeline.refresh_now() is True

        assert not pipeline.is_running
        assert session.handle.closed
        assert source.state is ConnectionState.CLOSED
        assert pipeline.refresh_now() is False

    @pytest.mark.asyncio
    async def test_invalid_interval(self):
        pipeline = SignalPipeline(_config(), source=FakeSource(settings=_config().ingestion))

        with pytest.raises(ValueError):
            await pipeline.start("BTCUSDT", "2m")
        assert not pipeline.is_running

    @pytest.mark.asyncio
    async def test_switch_from_signal_callback(self, rising_candles, falling_candles, wait_until):
        source = SlowCloseSource(
            {"BTCUSDT": rising_candles, "ETHUSDT": falling_candles}, settings=_config().ingestion
        )
        pipeline = SignalPipeline(_config(), source=source, alert_channel=SilentChannel())
        seen = []

        @pipeline.on_signal
        async def follow(event):
            seen.append(event.symbol)
            if event.symbol == "BTCUSDT":
                await pipeline.switch("ETHUSDT", "1m")

        old = await pipeline.start("BTCUSDT", "1m")
        await wait_until(lambda: "ETHUSDT" in seen)
        await wait_until(lambda: pipeline.state is ConnectionState.CONNECTED)

        assert seen == ["BTCUSDT", "ETHUSDT"]
        assert old.handle.closed
        assert pipeline.session is not None
        assert pipeline.session.symbol == "ETHUSDT"
        assert source.handle is pipeline.session.handle
        assert source.transport_closes >= 1
        await pipeline.stop()
