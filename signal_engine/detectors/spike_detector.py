"""Spike detector implementation."""

import math

import structlog

from signal_engine.baselines.statistical import compute_z_score
from signal_engine.config.thresholds import SeverityBands
from signal_engine.models.baseline import BaselineStats
from signal_engine.models.spike import Severity, SpikeResult

logger = structlog.get_logger(__name__)

_SEVERITY_TEXT = {
    Severity.LOW: "moderate",
    Severity.MEDIUM: "significant",
    Severity.HIGH: "major",
    Severity.CRITICAL: "critical",
}


class SpikeDetector:
    """Classifies a current value against a baseline as a spike.
    
    Algorithm:
    1. deviation% = (current - mean) / mean * 100, or sign(current) * 100
       when the mean is zero
    2. A spike is |deviation%| >= threshold%
    3. Severity is the higher of two bands: the multiple of the threshold
       reached (<2x low, <4x medium, <8x high, else critical) and the
       z-score against the baseline (<3 low, <5 medium, <10 high, else
       critical). Both are monotone in |deviation%| for a fixed baseline.
    4. confidence = clamp(|deviation%| / (threshold% * 5), 0, 1)
    
    The detector is pure: it returns a result and notifies nobody.
    """

    _ALGORITHM_VERSION = "1.0.0"

    def __init__(self, severity_bands: SeverityBands | None = None) -> None:
        """Initialize the spike detector.
        
        Args:
            severity_bands: Default banding, overridable per call
        """
        self._bands = severity_bands or SeverityBands()

    @property
    def algorithm_version(self) -> str:
        """Get the algorithm version for this detector."""
        return self._ALGORITHM_VERSION

    def detect(
        self,
        baseline: BaselineStats,
        current_value: float,
        threshold_percent: float,
        metric_name: str = "",
        severity_bands: SeverityBands | None = None,
    ) -> SpikeResult:
        """Classify ``current_value`` against ``baseline``.
        
        Args:
            baseline: Baseline of the historical window
            current_value: Value under evaluation
            threshold_percent: Minimum |deviation%| that counts as a spike
            metric_name: Metric name used in the message
            severity_bands: Banding override for this metric
            
        Returns:
            The classified spike result. Insufficient baselines never
            produce a spike.
            
        Raises:
            ValueError: If the threshold or inputs are not finite and positive
        """
        if not math.isfinite(threshold_percent) or threshold_percent <= 0:
            raise ValueError("Spike threshold must be a finite positive percentage")
        if not math.isfinite(current_value) or not math.isfinite(baseline.mean):
            raise ValueError("Current value and baseline mean must be finite")

        bands = severity_bands or self._bands
        label = metric_name or "metric"

        if baseline.insufficient_data:
            return SpikeResult(
                is_spike=False,
                severity=Severity.NONE,
                confidence=0.0,
                threshold=threshold_percent,
                current_value=current_value,
                baseline=baseline.mean,
                deviation_percent=0.0,
                message=(
                    f"Insufficient historical data for {label}: "
                    f"{baseline.sample_count} samples"
                ),
                metric_name=metric_name,
            )

        deviation = compute_deviation_percent(current_value, baseline.mean)
        magnitude = abs(deviation)
        is_spike = magnitude >= threshold_percent

        severity = Severity.NONE
        if is_spike:
            severity = max(
                _band_by_multiple(magnitude / threshold_percent, bands),
                _band_by_sigma(current_value, baseline, bands),
            )

        confidence = min(1.0, max(0.0, magnitude / (threshold_percent * bands.confidence_divisor)))

        result = SpikeResult(
            is_spike=is_spike,
            severity=severity,
            confidence=confidence,
            threshold=threshold_percent,
            current_value=current_value,
            baseline=baseline.mean,
            deviation_percent=deviation,
            message=_message(label, current_value - baseline.mean, deviation, severity),
            metric_name=metric_name,
        )

        if is_spike:
            logger.debug(
                "spike_detected",
                metric=label,
                severity=severity.value,
                deviation_percent=round(deviation, 2),
                confidence=round(confidence, 3),
            )
        return result


def compute_deviation_percent(current_value: float, mean: float) -> float:
    """Signed percentage deviation of ``current_value`` from ``mean``.
    
    A zero mean yields ``sign(current) * 100``.
    """
    if mean == 0:
        return math.copysign(100.0, current_value) if current_value != 0 else 0.0
    return (current_value - mean) / mean * 100


def _band_by_multiple(multiple: float, bands: SeverityBands) -> Severity:
    if multiple < bands.medium_multiple:
        return Severity.LOW
    if multiple < bands.high_multiple:
        return Severity.MEDIUM
    if multiple < bands.critical_multiple:
        return Severity.HIGH
    return Severity.CRITICAL


def _band_by_sigma(current_value: float, baseline: BaselineStats, bands: SeverityBands) -> Severity:
    # A flat baseline has no scale for a z-score
    if baseline.stddev == 0:
        return Severity.LOW
    z = abs(compute_z_score(current_value, baseline.mean, baseline.stddev))
    if z < bands.medium_sigma:
        return Severity.LOW
    if z < bands.high_sigma:
        return Severity.MEDIUM
    if z < bands.critical_sigma:
        return Severity.HIGH
    return Severity.CRITICAL


def _message(label: str, change: float, deviation: float, severity: Severity) -> str:
    direction = "increase" if change > 0 else "decrease"
    if severity == Severity.NONE:
        return f"No significant spike for {label} ({deviation:+.1f}% versus baseline)"
    return (
        f"{label} shows {_SEVERITY_TEXT[severity]} {direction} "
        f"of {abs(deviation):.1f}% versus baseline"
    )
