"""
Tests for the klines REST client against a fake aiohttp session.
"""

import asyncio
from datetime import datetime, timezone

import aiohttp
import pytest

from signal_pipeline.engines.data_fetcher import (
    VALID_INTERVALS,
    ConnectionFailedError,
    KlineFetcher,
    MarketDataAPIError,
    RateLimitError,
    RequestConfig,
    RequestTimeoutError,
    data_limit_for_interval,
    parse_kline_row,
    parse_retry_after,
    polling_interval_ms,
    validate_interval,
)

NO_WAIT = RequestConfig(max_retries=3, retry_base_delay=0.0)


def _row(i, close="100.5"):
    open_time = 1700000000000 + i * 60_000
    return [open_time, "100.0", "101.0", "99.0", close, "12.5", open_time + 59_999, "0", 10]


class FakeResponse:
    def __init__(self, status=200, payload=None, headers=None, text=""):
        self.status = status
        self._payload = payload
        self.headers = headers or {}
        self._text = text

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False

    async def text(self):
        return self._text

    async def json(self):
        return self._payload


class FakeSession:
    """Replays scripted responses (or raises scripted exceptions) per GET."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests = []

    def get(self, url, params=None):
        self.requests.append((url, params))
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


class TestGetKlines:
    """Kline fetching and parsing."""

    @pytest.mark.asyncio
    async def test_parses_rows(self):
        session = FakeSession(FakeResponse(payload=[_row(0), _row(1, close="102.0")]))
        fetcher = KlineFetcher(session=session, request_config=NO_WAIT)

        candles = await fetcher.get_klines("btc/usdt", "1m", limit=2)

        assert [c.close for c in candles] == [100.5, 102.0]
        assert candles[0].open_time == 1700000000000
        assert candles[0].close_time == 1700000059999
        url, params = session.requests[0]
        assert url == "https://api.binance.com/api/v3/klines"
        assert params == {"symbol": "BTCUSDT", "interval": "1m", "limit": 2}

    @pytest.mark.asyncio
    async def test_malformed_rows_skipped(self):
        rows = [_row(0), [1, 2, 3], _row(2, close="oops"), _row(3)]
        fetcher = KlineFetcher(session=FakeSession(FakeResponse(payload=rows)), request_config=NO_WAIT)

        candles = await fetcher.get_klines("BTCUSDT", "1m")

        assert len(candles) == 2

    @pytest.mark.asyncio
    async def test_limit_clamped(self):
        session = FakeSession(FakeResponse(payload=[]))
        fetcher = KlineFetcher(session=session, request_config=NO_WAIT)

        await fetcher.get_klines("BTCUSDT", "1h", limit=5000)

        assert session.requests[0][1]["limit"] == 1000

    @pytest.mark.asyncio
    async def test_invalid_interval(self):
        fetcher = KlineFetcher(session=FakeSession(), request_config=NO_WAIT)

        with pytest.raises(ValueError):
            await fetcher.get_klines("BTCUSDT", "2m")

    @pytest.mark.asyncio
    async def test_requires_session(self):
        with pytest.raises(RuntimeError):
            await KlineFetcher().get_klines("BTCUSDT", "1m")


class TestRetries:
    """Status handling and retry policy."""

    @pytest.mark.asyncio
    async def test_server_error_retried(self):
        session = FakeSession(
            FakeResponse(status=503, text="busy"),
            FakeResponse(payload=[_row(0)]),
        )
        fetcher = KlineFetcher(session=session, request_config=NO_WAIT)

        candles = await fetcher.get_klines("BTCUSDT", "1m")

        assert len(candles) == 1
        assert len(session.requests) == 2

    @pytest.mark.asyncio
    async def test_rate_limit_honours_retry_after(self, monkeypatch):
        delays = []
        real_sleep = asyncio.sleep

        async def fake_sleep(delay):
            delays.append(delay)
            await real_sleep(0)

        monkeypatch.setattr("signal_pipeline.engines.data_fetcher.asyncio.sleep", fake_sleep)
        session = FakeSession(
            FakeResponse(status=429, headers={"Retry-After": "3"}),
            FakeResponse(payload=[_row(0)]),
        )
        fetcher = KlineFetcher(session=session, request_config=NO_WAIT)

        candles = await fetcher.get_klines("BTCUSDT", "1m")

        assert len(candles) == 1
        assert delays == [3]

    @pytest.mark.asyncio
    async def test_unparseable_retry_after_falls_back_to_backoff(self, monkeypatch):
        delays = []
        real_sleep = asyncio.sleep

        async def fake_sleep(delay):
            delays.append(delay)
            await real_sleep(0)

        monkeypatch.setattr("signal_pipeline.engines.data_fetcher.asyncio.sleep", fake_sleep)
        session = FakeSession(
            FakeResponse(status=429, headers={"Retry-After": "soon"}),
            FakeResponse(payload=[_row(0)]),
        )
        fetcher = KlineFetcher(session=session, request_config=NO_WAIT)

        candles = await fetcher.get_klines("BTCUSDT", "1m")

        assert len(candles) == 1
        assert delays == [0.0]

    @pytest.mark.asyncio
    async def test_rate_limit_exhausted(self):
        session = FakeSession(*[FakeResponse(status=429, headers={"Retry-After": "0"}) for _ in range(3)])
        fetcher = KlineFetcher(session=session, request_config=NO_WAIT)

        with pytest.raises(RateLimitError) as exc_info:
            await fetcher.get_klines("BTCUSDT", "1m")

        assert exc_info.value.retry_after == 0
        assert exc_info.value.status_code == 429

    @pytest.mark.asyncio
    async def test_client_error_not_retried(self):
        session = FakeSession(FakeResponse(status=400, text='{"code":-1121,"msg":"Invalid symbol."}'))
        fetcher = KlineFetcher(session=session, request_config=NO_WAIT)

        with pytest.raises(MarketDataAPIError) as exc_info:
            await fetcher.get_klines("NOPE", "1m")

        assert exc_info.value.status_code == 400
        assert "Invalid symbol" in exc_info.value.response_text
        assert len(session.requests) == 1

    @pytest.mark.asyncio
    async def test_connection_errors_mapped(self):
        session = FakeSession(*[aiohttp.ClientConnectionError("refused") for _ in range(3)])
        fetcher = KlineFetcher(session=session, request_config=NO_WAIT)

        with pytest.raises(ConnectionFailedError):
            await fetcher.get_klines("BTCUSDT", "1m")
        assert len(session.requests) == 3

    @pytest.mark.asyncio
    async def test_timeouts_mapped(self):
        session = FakeSession(*[asyncio.TimeoutError() for _ in range(3)])
        fetcher = KlineFetcher(session=session, request_config=NO_WAIT)

        with pytest.raises(RequestTimeoutError):
            await fetcher.get_klines("BTCUSDT", "1m")


class TestHelpers:
    """Interval tables and row parsing."""

    def test_validate_interval(self):
        for interval in VALID_INTERVALS:
            assert validate_interval(interval) == interval
        with pytest.raises(ValueError):
            validate_interval("90s")

    def test_polling_interval(self):
        assert polling_interval_ms("1m") == 30_000
        assert polling_interval_ms("1h") == 600_000
        assert polling_interval_ms("1d") == 1_800_000
        assert polling_interval_ms("3m") == 60_000

    def test_data_limit(self):
        assert data_limit_for_interval("1h") == 720
        assert data_limit_for_interval("1d") == 365
        assert data_limit_for_interval("1m") == 100

    def test_parse_row_errors(self):
        with pytest.raises(ValueError):
            parse_kline_row([1, "2"])
        with pytest.raises(ValueError):
            parse_kline_row([1, "a", "b", "c", "d", "e", 2])

    def test_retry_after_seconds(self):
        assert parse_retry_after("120") == 120
        assert parse_retry_after(" 2.5 ") == 3
        assert parse_retry_after("-4") == 0
        assert parse_retry_after(None) is None
        assert parse_retry_after("") is None

    def test_retry_after_http_date(self):
        now = datetime(2015, 10, 21, 7, 27, 30, tzinfo=timezone.utc)

        assert parse_retry_after("Wed, 21 Oct 2015 07:28:00 GMT", now=now) == 30
        assert parse_retry_after("Wed, 21 Oct 2015 07:20:00 GMT", now=now) == 0

    def test_retry_after_garbage(self):
        assert parse_retry_after("soon") is None
        assert parse_retry_after("nan") is None
