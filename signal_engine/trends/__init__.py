"""Trend and signal analysis module."""

from signal_engine.trends.moving_average import TrendAnalyzer, classify_signal

__all__ = [
    "TrendAnalyzer",
    "classify_signal",
]
