"""Baseline computation module."""

from signal_engine.baselines.interface import BaselineCalculator
from signal_engine.baselines.statistical import (
    StatisticalBaselineCalculator,
    compute_z_score,
)

__all__ = [
    "BaselineCalculator",
    "StatisticalBaselineCalculator",
    "compute_z_score",
]
