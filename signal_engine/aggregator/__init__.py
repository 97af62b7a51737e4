"""Batch aggregation module."""

from signal_engine.aggregator.categories import (
    CATEGORY_METRICS,
    MetricCategory,
    category_of,
    metrics_for,
)
from signal_engine.aggregator.dispatcher import (
    BatchResult,
    MetricOutcome,
    MetricRequest,
    OutcomeStatus,
    SignalAggregator,
)

__all__ = [
    "BatchResult",
    "CATEGORY_METRICS",
    "MetricCategory",
    "MetricOutcome",
    "MetricRequest",
    "OutcomeStatus",
    "SignalAggregator",
    "category_of",
    "metrics_for",
]
