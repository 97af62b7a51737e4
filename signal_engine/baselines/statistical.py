"""Statistical baseline calculator implementation."""

import math
from datetime import datetime
from typing import Sequence

from signal_engine.baselines.interface import BaselineCalculator
from signal_engine.models.baseline import BaselineStats
from signal_engine.models.series import MetricSeries


class StatisticalBaselineCalculator(BaselineCalculator):
    """Computes baselines with population mean and standard deviation.
    
    Optionally weights samples linearly by recency: with a trend factor
    ``f``, sample ``i`` of ``n`` (0 = oldest) gets weight
    ``1 + f * i / (n - 1)``. A factor of 0 yields plain population
    statistics.
    
    Windows shorter than ``min_samples`` are flagged as insufficient.
    Windows with fewer than 2 values produce a degenerate baseline centred
    on the current value with zero deviation.
    """

    _ALGORITHM_VERSION = "1.0.0"
    _ABSOLUTE_MIN_SAMPLES = 2  # Minimum samples for any statistics at all

    def __init__(
        self,
        min_samples: int = 7,
        window_size: int = 90,
        recency_trend_factor: float = 0.0,
    ) -> None:
        """Initialize the calculator.
        
        Args:
            min_samples: Samples required for a usable verdict
            window_size: Trailing samples kept in the window
            recency_trend_factor: Extra weight given to the newest sample
        """
        if min_samples < self._ABSOLUTE_MIN_SAMPLES:
            raise ValueError(f"min_samples must be at least {self._ABSOLUTE_MIN_SAMPLES}")
        if window_size < min_samples:
            raise ValueError("window_size must not be smaller than min_samples")
        if recency_trend_factor < 0 or not math.isfinite(recency_trend_factor):
            raise ValueError("recency_trend_factor must be a finite non-negative number")

        self._min_samples = min_samples
        self._window_size = window_size
        self._recency_trend_factor = recency_trend_factor

    @property
    def algorithm_version(self) -> str:
        """Get the algorithm version for this calculator."""
        return self._ALGORITHM_VERSION

    @property
    def min_samples(self) -> int:
        """Samples required for a usable verdict."""
        return self._min_samples

    @property
    def window_size(self) -> int:
        """Trailing samples kept in the window."""
        return self._window_size

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
            Computed baseline statistics
        """
        values_list = [float(v) for v in values]
        n = len(values_list)

        if n < self._ABSOLUTE_MIN_SAMPLES:
            return BaselineStats(
                mean=float(current_value) if current_value is not None else 0.0,
                stddev=0.0,
                sample_count=n,
                window_start=window_start,
                window_end=window_end,
                insufficient_data=True,
            )

        weights = self._weights(n)
        mean, stddev = _weighted_mean_stddev(values_list, weights)

        return BaselineStats(
            mean=mean,
            stddev=stddev,
            sample_count=n,
            window_start=window_start,
            window_end=window_end,
            insufficient_data=n < self._min_samples,
        )

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
        history = series.window(as_of=as_of)
        if current_value is None and history:
            current_value = history[-1].value
            history = history[:-1]

        window = history[-self._window_size:]
        return self.compute(
            [s.value for s in window],
            current_value=current_value,
            window_start=window[0].timestamp if window else None,
            window_end=window[-1].timestamp if window else None,
        )

    def _weights(self, n: int) -> list[float]:
        """Linear recency weights, oldest first."""
        if self._recency_trend_factor == 0 or n < 2:
            return [1.0] * n
        return [1.0 + self._recency_trend_factor * i / (n - 1) for i in range(n)]


def _weighted_mean_stddev(values: Sequence[float], weights: Sequence[float]) -> tuple[float, float]:
    """Weighted mean and weighted population standard deviation."""
    total_weight = math.fsum(weights)
    mean = math.fsum(w * v for w, v in zip(weights, values)) / total_weight
    variance = math.fsum(w * (v - mean) ** 2 for w, v in zip(weights, values)) / total_weight
    return mean, math.sqrt(max(0.0, variance))


def compute_z_score(value: float, mean: float, std: float) -> float:
    """Signed distance of ``value`` from ``mean`` in standard deviations.
    
    A flat baseline (``std == 0``) gives 0 at the mean and an infinite
    score anywhere else; the spike detector bands it before calling.
    """
    if std == 0:
        return 0.0 if value == mean else float("inf") if value > mean else float("-inf")
    return (value - mean) / std
