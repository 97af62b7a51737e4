"""Spike detectors module."""

from signal_engine.detectors.spike_detector import SpikeDetector, compute_deviation_percent

__all__ = [
    "SpikeDetector",
    "compute_deviation_percent",
]
