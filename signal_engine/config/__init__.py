"""Signal engine configuration module."""

from signal_engine.config.settings import Settings, configure, get_settings, reset_settings
from signal_engine.config.thresholds import (
    MetricThreshold,
    SeverityBands,
    SignalBands,
    ThresholdTable,
    load_threshold_table,
)

__all__ = [
    "MetricThreshold",
    "Settings",
    "SeverityBands",
    "SignalBands",
    "ThresholdTable",
    "configure",
    "get_settings",
    "load_threshold_table",
    "reset_settings",
]
