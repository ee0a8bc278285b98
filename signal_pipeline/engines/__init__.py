"""
Pure signal engines: indicators, support/resistance, regime and synthesis.

Nothing here holds session state or does I/O except data_fetcher, which is
imported on demand.
"""

from .indicators import (
    IndicatorEngine,
    IndicatorSnapshot,
    MomentumIndicators,
    TrendIndicators,
    VolatilityIndicators,
    VolumeIndicators,
)
from .forecast import MultiTimeframeAnalyzer, PriceForecaster
from .pipeline_config import DEFAULT_CONFIG, PipelineConfig, get_config, load_config_from_env
from .regime import MarketRegime, MarketRegimeDetector, RegimeKind
from .series import Candle, OHLCVSeries
from .signals import Direction, PriceTargets, Signal, SignalType, SignalVote
from .support_resistance import SupportResistanceLevels, find_support_resistance
from .synthesizer import SignalSynthesizer

__all__ = [
    "Candle",
    "OHLCVSeries",
    "IndicatorEngine",
    "IndicatorSnapshot",
    "TrendIndicators",
    "MomentumIndicators",
    "VolatilityIndicators",
    "VolumeIndicators",
    "SupportResistanceLevels",
    "find_support_resistance",
    "MarketRegime",
    "MarketRegimeDetector",
    "RegimeKind",
    "PriceForecaster",
    "MultiTimeframeAnalyzer",
    "SignalSynthesizer",
    "Signal",
    "SignalType",
    "SignalVote",
    "PriceTargets",
    "Direction",
    "PipelineConfig",
    "DEFAULT_CONFIG",
    "get_config",
    "load_config_from_env",
]
