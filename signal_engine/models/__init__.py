"""Signal engine models module."""

from signal_engine.models.baseline import BaselineStats
from signal_engine.models.cache_entry import CacheEntry, CacheKey, CacheState, ResultKind
from signal_engine.models.series import (
    MetricSample,
    MetricSeries,
    parse_timestamp,
    validate_samples,
    validate_series,
)
from signal_engine.models.spike import Severity, SpikeResult
from signal_engine.models.trend import (
    MAPoint,
    MAState,
    TradingSignal,
    Trend,
    TrendDirection,
    TrendOutlook,
)

__all__ = [
    # Input series
    "MetricSample",
    "MetricSeries",
    "parse_timestamp",
    "validate_samples",
    "validate_series",
    # Baselines
    "BaselineStats",
    # Spikes
    "Severity",
    "SpikeResult",
    # Trends
    "MAPoint",
    "MAState",
    "TradingSignal",
    "Trend",
    "TrendDirection",
    "TrendOutlook",
    # Cache
    "CacheEntry",
    "CacheKey",
    "CacheState",
    "ResultKind",
]
