"""Input series models.

Series are owned by the data-collection collaborator. The engine only
reads them: samples are stored as tuples and models are frozen.
"""

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterable, Sequence

from signal_engine.errors import InvalidSeriesError


def parse_timestamp(value: str | datetime) -> datetime:
    """Parse an ISO-8601 timestamp, normalizing naive values to UTC."""
    if isinstance(value, datetime):
        parsed = value
    else:
        # Some collectors emit a trailing "Z" for UTC
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass(frozen=True)
class MetricSample:
    """A single observation of a metric."""

    timestamp: datetime
    value: float

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {"timestamp": self.timestamp.isoformat(), "value": self.value}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "MetricSample":
        """Create a MetricSample from a dictionary."""
        return cls(timestamp=parse_timestamp(data["timestamp"]), value=float(data["value"]))


@dataclass(frozen=True)
class MetricSeries:
    """Ordered samples of one metric for one entity and timeframe."""

    entity_id: str
    metric_name: str
    timeframe: str
    samples: tuple[MetricSample, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        # Accept any sequence but never keep a mutable reference
        if not isinstance(self.samples, tuple):
            object.__setattr__(self, "samples", tuple(self.samples))

    def __len__(self) -> int:
        return len(self.samples)

    @property
    def values(self) -> list[float]:
        """Sample values in timestamp order."""
        return [s.value for s in self.samples]

    @property
    def latest(self) -> MetricSample | None:
        """The most recent sample, if any."""
        return self.samples[-1] if self.samples else None

    def window(self, as_of: datetime | None = None, size: int | None = None) -> tuple[MetricSample, ...]:
        """Get the trailing window of samples at or before ``as_of``.

        Args:
            as_of: Evaluation point; samples after it are excluded
            size: Maximum number of samples to keep (most recent)

        Returns:
            Samples in timestamp order
        """
        samples = self.samples
        if as_of is not None:
            cutoff = parse_timestamp(as_of)
            samples = tuple(s for s in samples if s.timestamp <= cutoff)
        if size is not None and size >= 0:
            samples = samples[-size:] if size else ()
        return samples

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "entityId": self.entity_id,
            "metricName": self.metric_name,
            "timeframe": self.timeframe,
            "samples": [s.to_dict() for s in self.samples],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "MetricSeries":
        """Create a MetricSeries from a dictionary."""
        return cls(
            entity_id=data["entityId"],
            metric_name=data["metricName"],
            timeframe=data.get("timeframe", ""),
            samples=tuple(MetricSample.from_dict(s) for s in data.get("samples", [])),
        )

    @classmethod
    def from_values(
        cls,
        entity_id: str,
        metric_name: str,
        timeframe: str,
        points: Iterable[tuple[datetime | str, float]],
    ) -> "MetricSeries":
        """Create a series from ``(timestamp, value)`` pairs."""
        return cls(
            entity_id=entity_id,
            metric_name=metric_name,
            timeframe=timeframe,
            samples=tuple(
                MetricSample(timestamp=parse_timestamp(ts), value=float(v)) for ts, v in points
            ),
        )


def validate_samples(metric_name: str, samples: Sequence[MetricSample]) -> None:
    """Check that samples are strictly ascending and finite.

    Raises:
        InvalidSeriesError: On the first offending sample
    """
    previous: datetime | None = None
    for index, sample in enumerate(samples):
        if not math.isfinite(sample.value):
            raise InvalidSeriesError(
                metric_name, f"non-finite value {sample.value!r} at index {index}"
            )
        if previous is not None and sample.timestamp <= previous:
            raise InvalidSeriesError(
                metric_name,
                f"non-monotonic timestamp {sample.timestamp.isoformat()} at index {index}",
            )
        previous = sample.timestamp


def validate_series(series: MetricSeries) -> None:
    """Validate a whole series (see ``validate_samples``)."""
    validate_samples(series.metric_name, series.samples)
