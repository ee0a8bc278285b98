import asyncio
import math
import os
import sys
from typing import List, Optional, Sequence

import pytest

TESTS_DIR = os.path.dirname(__file__)
PROJECT_ROOT = os.path.abspath(os.path.join(TESTS_DIR, ".."))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from signal_pipeline.engines.series import Candle  # noqa: E402

MINUTE_MS = 60_000
START_MS = 1_700_000_000_000 - (1_700_000_000_000 % MINUTE_MS)


def build_candles(
    closes: Sequence[float],
    volumes: Optional[Sequence[float]] = None,
    start_ms: int = START_MS,
    interval_ms: int = MINUTE_MS,
    spread: float = 0.001,
) -> List[Candle]:
    """Candles whose open is the previous close and whose wicks add `spread`."""
    candles = []
    prev = closes[0]
    for i, close in enumerate(closes):
        open_price = prev
        candles.append(
            Candle(
                open_time=start_ms + i * interval_ms,
                open=open_price,
                high=max(open_price, close) * (1 + spread),
                low=min(open_price, close) * (1 - spread),
                close=close,
                volume=volumes[i] if volumes is not None else 1000.0,
                close_time=start_ms + (i + 1) * interval_ms - 1,
            )
        )
        prev = close
    return candles


class FakeClock:
    """Controllable millisecond clock."""

    def __init__(self, start_ms: int = START_MS):
        self.now = start_ms

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> int:
        self.now += ms
        return self.now


@pytest.fixture
def make_candles():
    """Factory: build_candles(closes, volumes=None, ...)."""
    return build_candles


@pytest.fixture
def rising_candles():
    """60 bars compounding up 1% per bar."""
    return build_candles([100.0 * 1.01**i for i in range(60)])


@pytest.fixture
def falling_candles():
    """60 bars compounding down 1% per bar."""
    return build_candles([200.0 * 0.99**i for i in range(60)])


@pytest.fixture
def flat_candles():
    """60 bars at a constant close."""
    return build_candles([100.0] * 60)


@pytest.fixture
def choppy_candles():
    """60 bars oscillating around 100 with no trend."""
    return build_candles([100.0 + 2.0 * math.sin(i / 2.0) for i in range(60)])


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def wait_until():
    """Async helper: poll a predicate until it holds or the timeout expires."""

    async def _wait(predicate, timeout: float = 2.0, interval: float = 0.005) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        while not predicate():
            if loop.time() > deadline:
                raise AssertionError("condition not met before timeout")
            await asyncio.sleep(interval)

    return _wait
