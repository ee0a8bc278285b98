#!/usr/bin/env python3
"""
Real-time Signal Runner

Streams candles for one symbol, runs the signal pipeline and prints every
stabilized signal.

Usage:
    signal-pipeline                              # Default: BTCUSDT 1m, live
    signal-pipeline ETHUSDT --interval 5m        # Specific pair / interval
    signal-pipeline BTCUSDT --source simulated   # Offline, synthetic candles
    signal-pipeline BTCUSDT --quiet              # Actionable signals only
"""

import argparse
import asyncio
import logging
from typing import List, Optional

from ..continuous import (
    BinanceKlineSource,
    LoggingAlertChannel,
    MarketDataSource,
    PollingKlineSource,
    SignalEvent,
    SignalPipeline,
    SimulatedCandleSource,
    SourceStatus,
)
from ..display import Colors, format_event, format_status
from ..engines.data_fetcher import VALID_INTERVALS
from ..engines.pipeline_config import (
    PipelineConfig,
    clamp,
    create_aggressive_config,
    create_conservative_config,
    load_config_from_env,
)
from ..logging_config import configure_default_logging

logger = logging.getLogger(__name__)

PROFILES = {
    "default": PipelineConfig,
    "aggressive": create_aggressive_config,
    "conservative": create_conservative_config,
}


def build_source(kind: str, config: PipelineConfig) -> MarketDataSource:
    settings = config.ingestion
    if kind == "simulated":
        return SimulatedCandleSource(settings=settings)
    fallback = SimulatedCandleSource(settings=settings)
    if kind == "poll":
        return PollingKlineSource(settings=settings, fallback=fallback)
    return BinanceKlineSource(settings=settings, fallback=fallback)


def build_config(profile: str, threshold: Optional[float]) -> PipelineConfig:
    config = load_config_from_env(PROFILES[profile]())
    if threshold is not None:
        config.notifications.confidence_threshold = clamp(threshold, 0.0, 100.0)
    return config


async def run_pipeline(
    symbol: str,
    interval: str,
    source_kind: str = "live",
    config: Optional[PipelineConfig] = None,
    quiet: bool = False,
    duration_s: Optional[float] = None,
) -> None:
    config = config or PipelineConfig()
    pipeline = SignalPipeline(
        config=config,
        source=build_source(source_kind, config),
        alert_channel=LoggingAlertChannel(),
    )

    @pipeline.on_signal
    def print_signal(event: SignalEvent) -> None:
        if quiet and not event.signal.is_actionable:
            return
        print(format_event(event, verbose=not quiet))

    @pipeline.on_status
    def print_status(status: SourceStatus) -> None:
        if not quiet:
            print(format_status(status))

    print(f"{Colors.DIM}Connecting to {symbol} {interval} ({source_kind})...{Colors.RESET}")
    async with pipeline:
        await pipeline.start(symbol, interval)
        if duration_s is not None:
            await asyncio.sleep(duration_s)
        else:
            while True:
                await asyncio.sleep(3600)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Real-time trading signal pipeline")
    parser.add_argument(
        "symbol", nargs="?", default="BTCUSDT", help="Trading pair symbol (default: BTCUSDT)"
    )
    parser.add_argument(
        "--interval", "-i", default="1m", choices=VALID_INTERVALS, help="Candle interval (default: 1m)"
    )
    parser.add_argument(
        "--source",
        "-s",
        default="live",
        choices=["live", "poll", "simulated"],
        help="Market data source (default: live websocket with simulated fallback)",
    )
    parser.add_argument(
        "--profile",
        default="default",
        choices=sorted(PROFILES),
        help="Threshold profile (default: default)",
    )
    parser.add_argument(
        "--threshold", "-t", type=float, default=None, help="Alert confidence threshold (0-100)"
    )
    parser.add_argument(
        "--duration", type=float, default=None, help="Stop after this many seconds"
    )
    parser.add_argument(
        "--quiet", "-q", action="store_true", help="Minimal output (only actionable signals)"
    )
    parser.add_argument("--log-level", default=None, help="Log level (default: $LOG_LEVEL or INFO)")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> None:
    args = parse_args(argv)
    configure_default_logging(level=args.log_level or ("WARNING" if args.quiet else None))

    symbol = args.symbol.upper().replace("/", "").replace("-", "")
    config = build_config(args.profile, args.threshold)

    try:
        asyncio.run(
            run_pipeline(
                symbol,
                args.interval,
                source_kind=args.source,
                config=config,
                quiet=args.quiet,
                duration_s=args.duration,
            )
        )
    except KeyboardInterrupt:
        print(f"\n{Colors.YELLOW}Shutting down...{Colors.RESET}")


if __name__ == "__main__":
    main()
