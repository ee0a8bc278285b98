"""
Data Ingestion Layer - candle feeds with reconnection and backoff.

Every source follows the same lifecycle:

    DISCONNECTED -> CONNECTING -> CONNECTED -(error)-> RECONNECTING -(backoff)-> CONNECTING

A subscription first receives a REST backfill, then incremental updates.
After max_reconnect_attempts consecutive failures the source parks in
UNAVAILABLE (no exception escapes) and, if a fallback source was given,
hands the subscription to it with health DEGRADED_SIMULATED.

Implementations:
- BinanceKlineSource: REST backfill + kline websocket (push)
- PollingKlineSource: REST backfill + periodic REST polling
- SimulatedCandleSource: seeded synthetic candles, always flagged degraded
"""

import asyncio
import json
import logging
import math
import random
from abc import ABC, abstractmethod
from dataclasses import replace
from typing import Any, Awaitable, Callable, List, Optional

import aiohttp

from ..engines.data_fetcher import (
    INTERVAL_MS,
    KlineFetcher,
    ConnectionFailedError,
    data_limit_for_interval,
    polling_interval_ms,
    validate_interval,
)
from ..engines.pipeline_config import DEFAULT_CONFIG, IngestionSettings
from ..engines.series import Candle
from ..utils.retry import ExponentialBackoff
from .data_types import (
    BackfillCallback,
    CandleCallback,
    ConnectionState,
    SourceHealth,
    SourceStatus,
    SubscriptionHandle,
    now_ms,
)

logger = logging.getLogger(__name__)

StatusCallback = Callable[[SourceStatus], Any]
FetchKlines = Callable[[str, str, int], Awaitable[List[Candle]]]


async def _cancel_task(task: Optional[asyncio.Task]) -> None:
    """
    Cancel a task and wait for it.

    The calling task is never cancelled: callbacks run on the source's own
    task, so a disconnect issued from a callback must finish its teardown.
    That task exits through the stale-handle checks instead.
    """
    if task is None or task.done() or task is asyncio.current_task():
        return
    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass


class MarketDataSource(ABC):
    """
    Base class for candle sources.

    Subclasses implement _fetch_history (backfill / refresh) and _stream
    (incremental updates; returns or raises when the feed drops). The base
    class owns the reconnect loop, status reporting, the refresh throttle
    and the stale-handle guard.
    """

    live_health = SourceHealth.LIVE

    def __init__(
        self,
        settings: Optional[IngestionSettings] = None,
        fallback: Optional["MarketDataSource"] = None,
        clock: Optional[Callable[[], int]] = None,
    ):
        self.settings = settings or DEFAULT_CONFIG.ingestion
        self._backoff = ExponentialBackoff(
            base=self.settings.backoff_base_s,
            multiplier=self.settings.backoff_multiplier,
            max_delay=self.settings.backoff_max_s,
            jitter=self.settings.backoff_jitter,
        )
        self._clock = clock or now_ms

        self._handle: Optional[SubscriptionHandle] = None
        self._task: Optional[asyncio.Task] = None
        self._refresh_task: Optional[asyncio.Task] = None
        self._state = ConnectionState.DISCONNECTED
        self._health = self.live_health
        self._attempt = 0
        self._in_flight = False
        self._last_refresh_ms: Optional[int] = None
        self._status_callbacks: List[StatusCallback] = []

        self._fallback = fallback
        self._fallback_active = False
        if fallback is not None:
            fallback.add_status_callback(self._forward_fallback_status)

    # =========================================================================
    # PROPERTIES / CALLBACKS
    # =========================================================================

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def health(self) -> SourceHealth:
        if self._fallback_active:
            return SourceHealth.DEGRADED_SIMULATED
        return self._health

    @property
    def attempt(self) -> int:
        return self._attempt

    @property
    def handle(self) -> Optional[SubscriptionHandle]:
        return self._handle

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    def add_status_callback(self, callback: StatusCallback) -> None:
        """Add callback to be called on every status transition."""
        self._status_callbacks.append(callback)

    def remove_status_callback(self, callback: StatusCallback) -> None:
        if callback in self._status_callbacks:
            self._status_callbacks.remove(callback)

    async def _notify_status(self, status: SourceStatus) -> None:
        for callback in self._status_callbacks:
            try:
                result = callback(status)
                if asyncio.iscoroutine(result):
                    await result
            except Exception as e:
                logger.error(f"Status callback error: {e}")

    async def _set_state(
        self,
        state: ConnectionState,
        health: Optional[SourceHealth] = None,
        message: str = "",
    ) -> None:
        self._state = state
        if health is not None:
            self._health = health
        handle = self._handle
        status = SourceStatus(
            state=state,
            health=self.health,
            attempt=self._attempt,
            symbol=handle.symbol if handle else "",
            interval=handle.interval if handle else "",
            message=message,
            timestamp_ms=self._clock(),
        )
        await self._notify_status(status)

    async def _forward_fallback_status(self, status: SourceStatus) -> None:
        if self._fallback_active:
            await self._notify_status(
                replace(status, health=SourceHealth.DEGRADED_SIMULATED, message=f"fallback: {status.message}")
            )

    # =========================================================================
    # DELIVERY
    # =========================================================================

    def _is_current(self, handle: SubscriptionHandle) -> bool:
        return not handle.closed and handle is self._handle

    def _owns(self, handle: SubscriptionHandle) -> bool:
        """True while the calling task is the live run loop for handle."""
        return self._is_current(handle) and self._task is asyncio.current_task()

    async def _deliver(self, handle: SubscriptionHandle, candle: Candle) -> bool:
        """Hand one candle to the subscriber; drops deliveries for stale handles."""
        if not self._is_current(handle):
            logger.debug(f"Dropping candle for stale subscription #{handle.id}")
            return False
        try:
            result = handle.on_candle(candle)
            if asyncio.iscoroutine(result):
                await result
        except Exception as e:
            logger.error(f"Candle callback error for {handle.symbol}: {e}")
        return True

    async def _deliver_backfill(self, handle: SubscriptionHandle, candles: List[Candle]) -> None:
        for candle in candles:
            if not await self._deliver(handle, candle):
                return
        if handle.on_backfill_complete is not None and self._is_current(handle):
            try:
                result = handle.on_backfill_complete()
                if asyncio.iscoroutine(result):
                    await result
            except Exception as e:
                logger.error(f"Backfill callback error for {handle.symbol}: {e}")

    async def _mark_connected(self, handle: SubscriptionHandle) -> None:
        """Called by subclasses once the live feed is established."""
        if not self._is_current(handle):
            return
        self._attempt = 0
        await self._set_state(
            ConnectionState.CONNECTED,
            health=self.live_health,
            message=f"Streaming {handle.symbol} {handle.interval}",
        )
        logger.info(f"{type(self).__name__} connected: {handle.symbol} {handle.interval}")

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    async def connect(
        self,
        symbol: str,
        interval: str,
        on_candle: CandleCallback,
        on_backfill_complete: Optional[BackfillCallback] = None,
    ) -> SubscriptionHandle:
        """
        Subscribe to (symbol, interval), tearing down any previous subscription.

        Raises:
            ValueError: If the interval is not supported
        """
        validate_interval(interval)
        current = self._handle
        if self._in_flight and current is not None and current.key == (symbol, interval):
            logger.debug(f"Connect for {symbol} {interval} already in flight")
            return current

        if current is not None:
            await self.disconnect(current)

        handle = SubscriptionHandle(
            symbol=symbol,
            interval=interval,
            on_candle=on_candle,
            on_backfill_complete=on_backfill_complete,
        )
        await self.attach(handle)
        return handle

    async def attach(self, handle: SubscriptionHandle) -> None:
        """Start serving an existing handle (used for fallback hand-over)."""
        self._handle = handle
        self._attempt = 0
        self._last_refresh_ms = None
        self._task = asyncio.create_task(self._run(handle))

    async def disconnect(self, handle: SubscriptionHandle) -> None:
        """Close a subscription. Forces CLOSED from any state."""
        handle.closed = True
        if handle is not self._handle:
            return

        await _cancel_task(self._refresh_task)
        self._refresh_task = None
        await _cancel_task(self._task)
        self._task = None
        await self._close_transport()
        self._in_flight = False

        if self._fallback_active and self._fallback is not None:
            self._fallback_active = False
            await self._fallback.disconnect(handle)

        await self._set_state(ConnectionState.CLOSED, message="Disconnected")
        self._handle = None
        logger.info(f"{type(self).__name__} closed subscription #{handle.id}")

    async def reconnect(self) -> bool:
        """
        Restart the current subscription with a fresh attempt counter.

        Revives a source parked in UNAVAILABLE. Returns False when there is
        nothing to reconnect.
        """
        handle = self._handle
        if handle is None or handle.closed:
            return False

        if self._fallback_active and self._fallback is not None:
            self._fallback_active = False
            await self._fallback.detach()

        await _cancel_task(self._task)
        await self._close_transport()
        self._in_flight = False
        self._attempt = 0
        self._task = asyncio.create_task(self._run(handle))
        logger.info(f"{type(self).__name__} reconnecting {handle.symbol} {handle.interval}")
        return True

    async def detach(self) -> None:
        """Stop serving the current handle without closing it."""
        await _cancel_task(self._refresh_task)
        await _cancel_task(self._task)
        self._refresh_task = None
        self._task = None
        await self._close_transport()
        self._in_flight = False
        self._handle = None
        self._state = ConnectionState.DISCONNECTED

    async def close(self) -> None:
        """Disconnect the current subscription and release resources."""
        if self._handle is not None:
            await self.disconnect(self._handle)
        if self._fallback is not None:
            await self._fallback.close()

    async def _run(self, handle: SubscriptionHandle) -> None:
        """Connect / stream / back off until the handle closes or the cap is hit."""
        s = self.settings
        while self._owns(handle):
            await self._set_state(
                ConnectionState.CONNECTING,
                message=f"Connecting {handle.symbol} {handle.interval}",
            )
            try:
                self._in_flight = True
                try:
                    candles = await self._fetch_history(
                        handle.symbol, handle.interval, self._backfill_limit(handle.interval)
                    )
                finally:
                    self._in_flight = False
                await self._deliver_backfill(handle, candles)
                if not self._owns(handle):
                    break

                await self._stream(handle)
                if not self._owns(handle):
                    break
                raise ConnectionFailedError(RuntimeError("stream ended"))

            except asyncio.CancelledError:
                raise
            except Exception as e:
                if not self._owns(handle):
                    break
                self._attempt += 1
                if self._attempt > s.max_reconnect_attempts:
                    await self._give_up(handle, e)
                    return

                delay = self._backoff.calculate(self._attempt - 1)
                logger.warning(
                    f"{type(self).__name__} error for {handle.symbol}: {e}. "
                    f"Retry {self._attempt}/{s.max_reconnect_attempts} in {delay:.1f}s"
                )
                await self._set_state(
                    ConnectionState.RECONNECTING,
                    health=SourceHealth.RETRYING,
                    message=f"{e}",
                )
                await self._close_transport()
                await asyncio.sleep(delay)

    async def _give_up(self, handle: SubscriptionHandle, error: Exception) -> None:
        await self._close_transport()
        logger.error(
            f"{type(self).__name__} unavailable for {handle.symbol} {handle.interval} "
            f"after {self._attempt - 1} reconnect attempts: {error}"
        )
        if self._fallback is None:
            await self._set_state(
                ConnectionState.UNAVAILABLE,
                health=SourceHealth.RETRYING,
                message=f"Unavailable: {error}",
            )
            return

        self._fallback_active = True
        await self._set_state(
            ConnectionState.UNAVAILABLE,
            message=f"Unavailable: {error}; serving simulated data",
        )
        # A status callback may have switched or reconnected in the meantime.
        if not self._owns(handle):
            return
        logger.warning(f"Falling back to {type(self._fallback).__name__} for {handle.symbol}")
        await self._fallback.attach(handle)

    def _backfill_limit(self, interval: str) -> int:
        return max(self.settings.backfill_limit, data_limit_for_interval(interval))

    # =========================================================================
    # MANUAL REFRESH
    # =========================================================================

    def refresh_now(self) -> bool:
        """
        Request a debounced re-fetch of recent candles.

        Returns False when ignored: no subscription, throttled (within the
        throttle window of the last accepted call) or work already in flight.
        """
        if self._fallback_active and self._fallback is not None:
            return self._fallback.refresh_now()

        handle = self._handle
        if handle is None or handle.closed:
            return False

        now = self._clock()
        if self._last_refresh_ms is not None and now - self._last_refresh_ms < self.settings.refresh_throttle_ms:
            logger.debug("Refresh throttled")
            return False
        if self._in_flight:
            logger.debug("Refresh skipped, fetch already in flight")
            return False

        self._last_refresh_ms = now
        if self._refresh_task is not None and not self._refresh_task.done():
            self._refresh_task.cancel()
        self._refresh_task = asyncio.create_task(self._debounced_refresh(handle))
        return True

    async def _debounced_refresh(self, handle: SubscriptionHandle) -> None:
        await asyncio.sleep(self.settings.refresh_debounce_ms / 1000)
        if not self._is_current(handle) or self._in_flight:
            return
        self._in_flight = True
        try:
            candles = await self._fetch_history(
                handle.symbol, handle.interval, self._backfill_limit(handle.interval)
            )
        except Exception as e:
            logger.warning(f"Manual refresh failed for {handle.symbol}: {e}")
            return
        finally:
            self._in_flight = False
        for candle in candles:
            if not await self._deliver(handle, candle):
                break

    # =========================================================================
    # SUBCLASS HOOKS
    # =========================================================================

    @abstractmethod
    async def _fetch_history(self, symbol: str, interval: str, limit: int) -> List[Candle]:
        """Recent candles, oldest first."""
        pass

    @abstractmethod
    async def _stream(self, handle: SubscriptionHandle) -> None:
        """Deliver incremental updates until the feed drops (return or raise)."""
        pass

    async def _close_transport(self) -> None:
        """Release per-connection resources. Must be idempotent."""
        return None


# =============================================================================
# LIVE WEBSOCKET SOURCE
# =============================================================================


class BinanceKlineSource(MarketDataSource):
    """
    REST backfill plus kline websocket stream.

    Each kline message carries the forming candle; it is delivered as is and
    the store replaces it in place until the next open_time arrives.
    """

    WS_BASE = "wss://stream.binance.com:9443/ws"

    def __init__(
        self,
        fetcher: Optional[KlineFetcher] = None,
        settings: Optional[IngestionSettings] = None,
        fallback: Optional[MarketDataSource] = None,
        clock: Optional[Callable[[], int]] = None,
    ):
        super().__init__(settings=settings, fallback=fallback, clock=clock)
        self._fetcher = fetcher
        self._owns_fetcher = fetcher is None
        self._session: Optional[aiohttp.ClientSession] = None
        self._ws: Optional[aiohttp.ClientWebSocketResponse] = None
        self._heartbeat_task: Optional[asyncio.Task] = None

    def stream_url(self, symbol: str, interval: str) -> str:
        return f"{self.WS_BASE}/{KlineFetcher._normalize_symbol(symbol).lower()}@kline_{interval}"

    async def _fetch_history(self, symbol: str, interval: str, limit: int) -> List[Candle]:
        if self._fetcher is None:
            self._fetcher = KlineFetcher()
            await self._fetcher.__aenter__()
        return await self._fetcher.get_klines(symbol, interval, limit)

    async def _stream(self, handle: SubscriptionHandle) -> None:
        url = self.stream_url(handle.symbol, handle.interval)
        logger.info(f"Connecting to {url}")
        session = aiohttp.ClientSession()
        self._session = session
        heartbeat: Optional[asyncio.Task] = None
        try:
            async with session.ws_connect(url, receive_timeout=60) as ws:
                self._ws = ws
                await self._mark_connected(handle)
                if not self._is_current(handle):
                    return
                heartbeat = asyncio.create_task(self._heartbeat(ws))
                self._heartbeat_task = heartbeat

                async for msg in ws:
                    if not self._is_current(handle):
                        return
                    if msg.type == aiohttp.WSMsgType.TEXT:
                        candle = self._parse_message(msg.data)
                        if candle is not None:
                            await self._deliver(handle, candle)
                    elif msg.type == aiohttp.WSMsgType.ERROR:
                        raise ConnectionFailedError(ws.exception() or RuntimeError("websocket error"))
                    elif msg.type in (aiohttp.WSMsgType.CLOSE, aiohttp.WSMsgType.CLOSED):
                        break
        finally:
            if self._session is session:
                await self._close_transport()
            else:
                # Torn down from a callback; a newer stream may own the shared slots.
                await _cancel_task(heartbeat)
                await session.close()

    async def _heartbeat(self, ws: aiohttp.ClientWebSocketResponse) -> None:
        interval = self.settings.heartbeat_interval_s
        while not ws.closed:
            await asyncio.sleep(interval)
            try:
                await ws.ping()
            except (aiohttp.ClientError, ConnectionResetError, RuntimeError) as e:
                logger.warning(f"Heartbeat ping failed: {e}")
                return

    @staticmethod
    def _parse_message(raw: str) -> Optional[Candle]:
        """Kline websocket payload to Candle; malformed payloads are logged and dropped."""
        try:
            data = json.loads(raw)
            if data.get("e") != "kline":
                logger.debug(f"Ignoring non-kline event {data.get('e')!r}")
                return None
            k = data["k"]
            return Candle(
                open_time=int(k["t"]),
                open=float(k["o"]),
                high=float(k["h"]),
                low=float(k["l"]),
                close=float(k["c"]),
                volume=float(k["v"]),
                close_time=int(k["T"]),
            )
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            logger.error(f"Dropping malformed kline payload: {e}")
            return None

    async def _close_transport(self) -> None:
        await _cancel_task(self._heartbeat_task)
        self._heartbeat_task = None
        if self._ws is not None:
            await self._ws.close()
            self._ws = None
        if self._session is not None:
            await self._session.close()
            self._session = None

    async def close(self) -> None:
        await super().close()
        if self._owns_fetcher and self._fetcher is not None:
            await self._fetcher.close()
            self._fetcher = None


# =============================================================================
# POLLING SOURCE
# =============================================================================


class PollingKlineSource(MarketDataSource):
    """
    REST-only feed: backfill, then re-fetch the newest candles periodically.

    The poll period follows the candle interval (1m -> 30s ... 1d -> 30min)
    unless poll_interval_ms is given.
    """

    POLL_LIMIT = 2

    def __init__(
        self,
        fetch: Optional[FetchKlines] = None,
        poll_interval_ms: Optional[int] = None,
        settings: Optional[IngestionSettings] = None,
        fallback: Optional[MarketDataSource] = None,
        clock: Optional[Callable[[], int]] = None,
    ):
        super().__init__(settings=settings, fallback=fallback, clock=clock)
        self._fetch = fetch
        self._fetcher: Optional[KlineFetcher] = None
        self._poll_interval_ms = poll_interval_ms

    def poll_interval_ms(self, interval: str) -> int:
        return self._poll_interval_ms or polling_interval_ms(interval)

    async def _fetch_history(self, symbol: str, interval: str, limit: int) -> List[Candle]:
        if self._fetch is not None:
            return await self._fetch(symbol, interval, limit)
        if self._fetcher is None:
            self._fetcher = KlineFetcher()
            await self._fetcher.__aenter__()
        return await self._fetcher.get_klines(symbol, interval, limit)

    async def _stream(self, handle: SubscriptionHandle) -> None:
        await self._mark_connected(handle)
        period_s = self.poll_interval_ms(handle.interval) / 1000
        while self._is_current(handle):
            await asyncio.sleep(period_s)
            candles = await self._fetch_history(handle.symbol, handle.interval, self.POLL_LIMIT)
            for candle in candles:
                if not await self._deliver(handle, candle):
                    return

    async def close(self) -> None:
        await super().close()
        if self._fetcher is not None:
            await self._fetcher.close()
            self._fetcher = None


# =============================================================================
# SIMULATED SOURCE
# =============================================================================


class SimulatedCandleSource(MarketDataSource):
    """
    Deterministic synthetic candles: a sine wave plus a seeded random walk.

    Always reports DEGRADED_SIMULATED so consumers can never mistake it for
    market data.
    """

    live_health = SourceHealth.DEGRADED_SIMULATED

    def __init__(
        self,
        seed: int = 42,
        base_price: float = 100.0,
        amplitude: float = 0.02,
        period: float = 20.0,
        volatility: float = 0.002,
        tick_interval_s: float = 1.0,
        ticks_per_candle: int = 5,
        settings: Optional[IngestionSettings] = None,
        clock: Optional[Callable[[], int]] = None,
    ):
        super().__init__(settings=settings, clock=clock)
        self._rng = random.Random(seed)
        self._base_price = base_price
        self._amplitude = amplitude
        self._period = period
        self._volatility = volatility
        self._tick_interval_s = tick_interval_s
        self._ticks_per_candle = max(1, ticks_per_candle)
        self._step = 0
        self._walk = 0.0
        self._last: Optional[Candle] = None

    def _next_price(self) -> float:
        self._step += 1
        self._walk += self._rng.gauss(0.0, self._volatility) * self._base_price
        wave = self._amplitude * self._base_price * math.sin(self._step / self._period)
        return max(self._base_price + wave + self._walk, self._base_price * 0.01)

    async def attach(self, handle: SubscriptionHandle) -> None:
        self._last = None
        await super().attach(handle)

    def _make_candle(self, open_time: int, interval_ms: int, open_price: float) -> Candle:
        close = self._next_price()
        spread = abs(self._rng.gauss(0.0, self._volatility)) * self._base_price
        return Candle(
            open_time=open_time,
            open=open_price,
            high=max(open_price, close) + spread,
            low=max(min(open_price, close) - spread, 0.0),
            close=close,
            volume=self._rng.uniform(50.0, 150.0),
            close_time=open_time + interval_ms - 1,
        )

    async def _fetch_history(self, symbol: str, interval: str, limit: int) -> List[Candle]:
        interval_ms = INTERVAL_MS[interval]
        if self._last is not None:
            return [self._last]

        start = (self._clock() // interval_ms - limit + 1) * interval_ms
        candles: List[Candle] = []
        price = self._base_price
        for i in range(limit):
            candle = self._make_candle(start + i * interval_ms, interval_ms, price)
            candles.append(candle)
            price = candle.close
        self._last = candles[-1] if candles else None
        return candles

    async def _stream(self, handle: SubscriptionHandle) -> None:
        await self._mark_connected(handle)
        interval_ms = INTERVAL_MS[handle.interval]
        ticks = 0
        while self._is_current(handle):
            await asyncio.sleep(self._tick_interval_s)
            last = self._last
            if last is None:
                continue
            ticks += 1
            if ticks >= self._ticks_per_candle:
                ticks = 0
                candle = self._make_candle(last.open_time + interval_ms, interval_ms, last.close)
            else:
                close = self._next_price()
                candle = replace(
                    last,
                    close=close,
                    high=max(last.high, close),
                    low=min(last.low, close),
                    volume=last.volume + self._rng.uniform(1.0, 10.0),
                )
            self._last = candle
            await self._deliver(handle, candle)
