"""
Klines REST client
Fetches OHLCV candles for backfill and polling feeds.
"""

import asyncio
import logging
import math
from dataclasses import dataclass
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Dict, List, Optional, Sequence

import aiohttp

from ..utils.retry import ExponentialBackoff
from .series import Candle

logger = logging.getLogger(__name__)


# =============================================================================
# CUSTOM EXCEPTIONS
# =============================================================================


class MarketDataAPIError(Exception):
    """Base exception for market data API errors."""

    def __init__(self, status_code: int, message: str, response_text: str = ""):
        self.status_code = status_code
        self.message = message
        self.response_text = response_text
        super().__init__(f"Market data API error {status_code}: {message}")


class RateLimitError(MarketDataAPIError):
    """Raised when rate limit (HTTP 429) is hit."""

    def __init__(self, retry_after: Optional[int] = None):
        self.retry_after = retry_after
        super().__init__(429, "Rate limit exceeded", "")


class RequestTimeoutError(MarketDataAPIError):
    """Raised when request times out."""

    def __init__(self, timeout: float):
        self.timeout = timeout
        super().__init__(0, f"Request timed out after {timeout}s", "")


class ConnectionFailedError(MarketDataAPIError):
    """Raised when connection fails."""

    def __init__(self, original_error: Exception):
        self.original_error = original_error
        super().__init__(0, f"Connection error: {original_error}", "")


# =============================================================================
# REQUEST CONFIGURATION
# =============================================================================


@dataclass
class RequestConfig:
    """Configuration for HTTP requests."""

    timeout_total: float = 30.0  # Total request timeout in seconds
    timeout_connect: float = 10.0  # Connection timeout in seconds
    max_retries: int = 3  # Maximum number of attempts
    retry_base_delay: float = 1.0  # Base delay for exponential backoff
    retry_max_delay: float = 30.0  # Maximum delay between retries
    retry_on_status: tuple = (429, 500, 502, 503, 504)  # HTTP status codes to retry


DEFAULT_REQUEST_CONFIG = RequestConfig()


# =============================================================================
# INTERVALS
# =============================================================================

VALID_INTERVALS = [
    "1m",
    "3m",
    "5m",
    "15m",
    "30m",
    "1h",
    "2h",
    "4h",
    "6h",
    "8h",
    "12h",
    "1d",
    "3d",
    "1w",
]

_MINUTE = 60_000

INTERVAL_MS: Dict[str, int] = {
    "1m": _MINUTE,
    "3m": 3 * _MINUTE,
    "5m": 5 * _MINUTE,
    "15m": 15 * _MINUTE,
    "30m": 30 * _MINUTE,
    "1h": 60 * _MINUTE,
    "2h": 120 * _MINUTE,
    "4h": 240 * _MINUTE,
    "6h": 360 * _MINUTE,
    "8h": 480 * _MINUTE,
    "12h": 720 * _MINUTE,
    "1d": 1440 * _MINUTE,
    "3d": 3 * 1440 * _MINUTE,
    "1w": 7 * 1440 * _MINUTE,
}

# How often a REST-only feed re-polls the forming candle
_POLL_MS: Dict[str, int] = {
    "1m": 30_000,
    "5m": 60_000,
    "15m": 120_000,
    "30m": 300_000,
    "1h": 600_000,
    "4h": 900_000,
    "1d": 1_800_000,
}

_DATA_LIMITS: Dict[str, int] = {
    "15m": 300,
    "30m": 480,
    "1h": 720,
    "4h": 500,
    "1d": 365,
}


def validate_interval(interval: str) -> str:
    if interval not in VALID_INTERVALS:
        raise ValueError(f"Invalid interval {interval!r}. Must be one of: {VALID_INTERVALS}")
    return interval


def polling_interval_ms(interval: str) -> int:
    """Poll period for a candle interval (unknown intervals poll every 60s)."""
    return _POLL_MS.get(interval, 60_000)


def data_limit_for_interval(interval: str) -> int:
    """Number of candles to backfill for a candle interval."""
    return _DATA_LIMITS.get(interval, 100)


def parse_kline_row(row: Sequence[Any]) -> Candle:
    """
    Build a Candle from a REST kline row.

    Row layout: [open_time, open, high, low, close, volume, close_time, ...]
    Prices arrive as strings.

    Raises:
        ValueError: If the row is short or a field does not parse
    """
    if len(row) < 7:
        raise ValueError(f"Kline row has {len(row)} fields, expected at least 7")
    try:
        return Candle(
            open_time=int(row[0]),
            open=float(row[1]),
            high=float(row[2]),
            low=float(row[3]),
            close=float(row[4]),
            volume=float(row[5]),
            close_time=int(row[6]),
        )
    except (TypeError, ValueError) as e:
        raise ValueError(f"Malformed kline row: {e}") from e


def parse_retry_after(value: Optional[str], now: Optional[datetime] = None) -> Optional[int]:
    """
    Seconds to wait from a Retry-After header.

    Accepts delta-seconds ("120") or an HTTP date. Returns None for a missing
    or unparseable header so the caller falls back to its backoff.
    """
    if not value:
        return None
    value = value.strip()
    try:
        seconds = float(value)
    except ValueError:
        try:
            when = parsedate_to_datetime(value)
        except (TypeError, ValueError, IndexError):
            logger.warning(f"Ignoring unparseable Retry-After header {value!r}")
            return None
        if when.tzinfo is None:
            when = when.replace(tzinfo=timezone.utc)
        seconds = (when - (now or datetime.now(timezone.utc))).total_seconds()
    if math.isnan(seconds) or math.isinf(seconds):
        return None
    return max(0, math.ceil(seconds))


# =============================================================================
# CLIENT
# =============================================================================


class KlineFetcher:
    """
    Fetches kline (candlestick) data over REST.

    Usage:
        async with KlineFetcher() as fetcher:
            candles = await fetcher.get_klines("BTCUSDT", "1m", limit=100)
    """

    BASE_URL = "https://api.binance.com"

    def __init__(
        self,
        session: Optional[aiohttp.ClientSession] = None,
        request_config: Optional[RequestConfig] = None,
        base_url: Optional[str] = None,
    ):
        self._session = session
        self._owns_session = session is None
        self._config = request_config or DEFAULT_REQUEST_CONFIG
        self._base_url = base_url or self.BASE_URL
        self._backoff = ExponentialBackoff(
            base=self._config.retry_base_delay,
            multiplier=2.0,
            max_delay=self._config.retry_max_delay,
        )

    async def __aenter__(self):
        if self._session is None:
            timeout = aiohttp.ClientTimeout(
                total=self._config.timeout_total, connect=self._config.timeout_connect
            )
            self._session = aiohttp.ClientSession(timeout=timeout)
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def close(self) -> None:
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None

    @staticmethod
    def _normalize_symbol(symbol: str) -> str:
        """Normalize symbol format (BTC/USDT -> BTCUSDT)."""
        return symbol.upper().replace("/", "").replace("-", "").replace("_", "")

    def _retry_delay(self, attempt: int, retry_after: Optional[int] = None) -> float:
        if retry_after is not None:
            return min(retry_after, self._config.retry_max_delay)
        return self._backoff.calculate(attempt)

    async def _get(self, path: str, params: Optional[Dict] = None) -> Any:
        """
        Make GET request with timeout and retry logic.

        Raises:
            MarketDataAPIError: For non-retryable API errors
            RateLimitError: When rate limit is exceeded after retries
            RequestTimeoutError: When request times out after retries
            ConnectionFailedError: When connection fails after retries
        """
        if self._session is None:
            raise RuntimeError(
                "Session not initialized. Use 'async with KlineFetcher()' "
                "or pass a session to __init__."
            )

        url = f"{self._base_url}{path}"
        attempts = max(1, self._config.max_retries)
        last_error: Optional[Exception] = None

        for attempt in range(attempts):
            final = attempt == attempts - 1
            try:
                logger.debug(f"GET {url} params={params} (attempt {attempt + 1}/{attempts})")
                async with self._session.get(url, params=params) as response:
                    if response.status == 429:
                        retry_after = response.headers.get("Retry-After")
                        retry_after_sec = parse_retry_after(retry_after)
                        if final:
                            raise RateLimitError(retry_after_sec)
                        delay = self._retry_delay(attempt, retry_after_sec)
                        logger.warning(
                            f"Rate limited on {url}, attempt {attempt + 1}/{attempts}. "
                            f"Retrying in {delay:.1f}s"
                        )
                        await asyncio.sleep(delay)
                        continue

                    if response.status in self._config.retry_on_status:
                        text = await response.text()
                        if final:
                            raise MarketDataAPIError(response.status, text, text)
                        delay = self._retry_delay(attempt)
                        logger.warning(
                            f"Retryable error {response.status} on {url}, "
                            f"attempt {attempt + 1}/{attempts}. Retrying in {delay:.1f}s"
                        )
                        await asyncio.sleep(delay)
                        continue

                    if response.status != 200:
                        text = await response.text()
                        raise MarketDataAPIError(response.status, text, text)

                    return await response.json()

            except asyncio.TimeoutError:
                last_error = RequestTimeoutError(self._config.timeout_total)
            except aiohttp.ClientError as e:
                last_error = ConnectionFailedError(e)

            if final:
                raise last_error
            delay = self._retry_delay(attempt)
            logger.warning(
                f"{last_error} on {url}, attempt {attempt + 1}/{attempts}. Retrying in {delay:.1f}s"
            )
            await asyncio.sleep(delay)

        raise MarketDataAPIError(0, "Unknown error after retries", "")

    async def get_klines(self, symbol: str, interval: str = "1m", limit: int = 100) -> List[Candle]:
        """
        Fetch OHLCV candles, oldest first.

        Args:
            symbol: Trading pair (e.g., 'BTCUSDT' or 'BTC/USDT')
            interval: Timeframe (1m, 5m, 15m, 1h, 4h, 1d, etc.)
            limit: Number of candles (max 1000)

        Returns:
            List of Candle objects; malformed rows are skipped
        """
        validate_interval(interval)
        params = {
            "symbol": self._normalize_symbol(symbol),
            "interval": interval,
            "limit": max(1, min(limit, 1000)),
        }
        data = await self._get("/api/v3/klines", params)

        candles: List[Candle] = []
        for row in data:
            try:
                candles.append(parse_kline_row(row))
            except ValueError as e:
                logger.error(f"Dropping kline row for {params['symbol']}: {e}")
        return candles
