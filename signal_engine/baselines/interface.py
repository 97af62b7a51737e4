"""Interface for baseline calculators."""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Sequence

from signal_engine.models.baseline import BaselineStats
from signal_engine.models.series import MetricSeries


class BaselineCalculator(ABC):
    """Abstract interface for baseline computation strategies.
    
    Implementations must be:
    - Deterministic: Same inputs produce same outputs
    - Pure: No side effects
    - Free of lookahead: Only samples at or before the evaluation point
    """

    @property
    @abstractmethod
    def algorithm_version(self) -> str:
        """Get the algorithm version for this calculator."""
        ...

    @abstractmethod
    def compute(
        self,
        values: Sequence[float],
        current_value: float | None = None,
        window_start: datetime | None = None,
        window_end: datetime | None = None,
    ) -> BaselineStats:
        """Compute baseline statistics from a window of values.
        
        Args:
            values: Window values in timestamp order (oldest first)
            current_value: Value under evaluation, used for degenerate baselines
            window_start: Timestamp of the first value, if known
            window_end: Timestamp of the last value, if known
            
        Returns:
            Baseline statistics; ``insufficient_data`` is set when the
            window is too short for a verdict
        """
        ...

    @abstractmethod
    def compute_for_series(
        self,
        series: MetricSeries,
        as_of: datetime | None = None,
        current_value: float | None = None,
    ) -> BaselineStats:
        """Compute the baseline for a series at an evaluation point.
        
        Args:
            series: Historical series
            as_of: Evaluation point; later samples are ignored
            current_value: Value under evaluation. When omitted, the latest
                sample is evaluated and excluded from its own baseline.
            
        Returns:
            Baseline statistics for the trailing window
        """
        ...
