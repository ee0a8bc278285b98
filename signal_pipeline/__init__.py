"""Real-time Trading Signal Pipeline.

Public symbols are exposed lazily so importing `signal_pipeline` does not
eagerly import network dependencies (`aiohttp` via the data sources).
"""

from __future__ import annotations

import importlib
from typing import Dict, Tuple

__version__ = "0.1.0"

__all__ = [
    # Data model
    "Candle",
    "OHLCVSeries",
    "Signal",
    "SignalType",
    "SignalVote",
    "PriceTargets",
    "Direction",
    # Engines
    "IndicatorEngine",
    "IndicatorSnapshot",
    "SupportResistanceLevels",
    "find_support_resistance",
    "SignalSynthesizer",
    "MarketRegime",
    "MarketRegimeDetector",
    "RegimeKind",
    # Config
    "PipelineConfig",
    "DEFAULT_CONFIG",
    "get_config",
    "load_config_from_env",
    "create_aggressive_config",
    "create_conservative_config",
    # REST client
    "KlineFetcher",
    "RequestConfig",
    "MarketDataAPIError",
    "RateLimitError",
    "RequestTimeoutError",
    "ConnectionFailedError",
    # Continuous pipeline
    "CandleStore",
    "SignalStabilizer",
    "NotificationDispatcher",
    "AlertChannel",
    "LoggingAlertChannel",
    "MarketDataSource",
    "BinanceKlineSource",
    "PollingKlineSource",
    "SimulatedCandleSource",
    "SourceHealth",
    "ConnectionState",
    "SourceStatus",
    "SignalPipeline",
    "SignalSession",
    "SignalEvent",
    # Logging
    "setup_logging",
]

_EXPORT_TO_SOURCE: Dict[str, Tuple[str, str]] = {}


def _register(module: str, names: list[str]) -> None:
    for name in names:
        _EXPORT_TO_SOURCE[name] = (module, name)


_register(".engines.series", ["Candle", "OHLCVSeries"])
_register(".engines.signals", ["Signal", "SignalType", "SignalVote", "PriceTargets", "Direction"])
_register(".engines.indicators", ["IndicatorEngine", "IndicatorSnapshot"])
_register(".engines.support_resistance", ["SupportResistanceLevels", "find_support_resistance"])
_register(".engines.synthesizer", ["SignalSynthesizer"])
_register(".engines.regime", ["MarketRegime", "MarketRegimeDetector", "RegimeKind"])
_register(
    ".engines.pipeline_config",
    [
        "PipelineConfig",
        "DEFAULT_CONFIG",
        "get_config",
        "load_config_from_env",
        "create_aggressive_config",
        "create_conservative_config",
    ],
)
_register(
    ".engines.data_fetcher",
    [
        "KlineFetcher",
        "RequestConfig",
        "MarketDataAPIError",
        "RateLimitError",
        "RequestTimeoutError",
        "ConnectionFailedError",
    ],
)
_register(".continuous.candle_store", ["CandleStore"])
_register(".continuous.stabilizer", ["SignalStabilizer"])
_register(
    ".continuous.notifications",
    ["NotificationDispatcher", "AlertChannel", "LoggingAlertChannel"],
)
_register(
    ".continuous.ingestion",
    ["MarketDataSource", "BinanceKlineSource", "PollingKlineSource", "SimulatedCandleSource"],
)
_register(".continuous.data_types", ["SourceHealth", "ConnectionState", "SourceStatus"])
_register(".continuous.orchestrator", ["SignalPipeline", "SignalSession", "SignalEvent"])
_register(".logging_config", ["setup_logging"])


_missing_exports = [name for name in __all__ if name not in _EXPORT_TO_SOURCE]
if _missing_exports:
    raise RuntimeError(f"Lazy export map incomplete: {_missing_exports}")


def __getattr__(name: str):
    if name not in _EXPORT_TO_SOURCE:
        raise AttributeError(f"module {__name__!r} has no attribute {name!r}")

    module_name, symbol_name = _EXPORT_TO_SOURCE[name]
    module = importlib.import_module(module_name, __name__)
    value = getattr(module, symbol_name)
    globals()[name] = value
    return value


def __dir__() -> list[str]:
    return sorted(set(globals()) | set(__all__))
