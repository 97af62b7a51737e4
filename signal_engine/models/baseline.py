"""Baseline statistics model."""

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from signal_engine.models.series import parse_timestamp


@dataclass(frozen=True)
class BaselineStats:
    """Summary statistics of a historical window.

    Computed only from samples at or before the evaluation point.
    When ``insufficient_data`` is set the numbers carry no verdict.
    """

    mean: float
    stddev: float
    sample_count: int
    window_start: datetime | None = None
    window_end: datetime | None = None
    insufficient_data: bool = False

    def __post_init__(self) -> None:
        """Validate baseline constraints."""
        if self.stddev < 0:
            raise ValueError("Standard deviation cannot be negative")
        if self.sample_count < 0:
            raise ValueError("Sample count cannot be negative")
        if self.window_start and self.window_end and self.window_start > self.window_end:
            raise ValueError("Window start must not be after window end")

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "mean": self.mean,
            "stddev": self.stddev,
            "sampleCount": self.sample_count,
            "windowStart": self.window_start.isoformat() if self.window_start else None,
            "windowEnd": self.window_end.isoformat() if self.window_end else None,
            "insufficientData": self.insufficient_data,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "BaselineStats":
        """Create BaselineStats from a dictionary."""
        return cls(
            mean=float(data["mean"]),
            stddev=float(data["stddev"]),
            sample_count=int(data["sampleCount"]),
            window_start=parse_timestamp(data["windowStart"]) if data.get("windowStart") else None,
            window_end=parse_timestamp(data["windowEnd"]) if data.get("windowEnd") else None,
            insufficient_data=bool(data.get("insufficientData", False)),
        )
