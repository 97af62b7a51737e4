"""Spike detection result models."""

from dataclasses import dataclass
from enum import Enum
from typing import Any


class Severity(str, Enum):
    """Spike severity, ordered from none to critical."""

    NONE = "none"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        """Position in the severity ordering (none = 0)."""
        return _SEVERITY_ORDER.index(self)

    def __ge__(self, other: object) -> bool:
        if isinstance(other, Severity):
            return self.rank >= other.rank
        return NotImplemented

    def __gt__(self, other: object) -> bool:
        if isinstance(other, Severity):
            return self.rank > other.rank
        return NotImplemented

    def __le__(self, other: object) -> bool:
        if isinstance(other, Severity):
            return self.rank <= other.rank
        return NotImplemented

    def __lt__(self, other: object) -> bool:
        if isinstance(other, Severity):
            return self.rank < other.rank
        return NotImplemented


_SEVERITY_ORDER = [
    Severity.NONE,
    Severity.LOW,
    Severity.MEDIUM,
    Severity.HIGH,
    Severity.CRITICAL,
]


@dataclass(frozen=True)
class SpikeResult:
    """Classified comparison of a current value against its baseline.

    Field names on the wire are fixed for dashboard compatibility.
    """

    is_spike: bool
    severity: Severity
    confidence: float
    threshold: float  # Spike threshold percentage that was applied
    current_value: float
    baseline: float  # Baseline mean
    deviation_percent: float
    message: str
    metric_name: str = ""

    def __post_init__(self) -> None:
        """Validate constraints and normalize numeric types."""
        for name in ("confidence", "threshold", "current_value", "baseline", "deviation_percent"):
            object.__setattr__(self, name, float(getattr(self, name)))
        if not isinstance(self.severity, Severity):
            object.__setattr__(self, "severity", Severity(self.severity))
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError("Confidence must be between 0.0 and 1.0")
        if self.is_spike and self.severity == Severity.NONE:
            raise ValueError("A spike must have a severity")
        if not self.is_spike and self.severity != Severity.NONE:
            raise ValueError("Severity must be none when there is no spike")

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "isSpike": self.is_spike,
            "severity": self.severity.value,
            "confidence": self.confidence,
            "threshold": self.threshold,
            "currentValue": self.current_value,
            "baseline": self.baseline,
            "deviationPercent": self.deviation_percent,
            "message": self.message,
            "metricName": self.metric_name,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SpikeResult":
        """Create a SpikeResult from a dictionary."""
        return cls(
            is_spike=bool(data["isSpike"]),
            severity=Severity(data["severity"]),
            confidence=float(data["confidence"]),
            threshold=float(data["threshold"]),
            current_value=float(data["currentValue"]),
            baseline=float(data["baseline"]),
            deviation_percent=float(data["deviationPercent"]),
            message=data["message"],
            metric_name=data.get("metricName", ""),
        )
