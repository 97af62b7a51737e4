"""Per-metric threshold table.

The table is supplied by an external configuration source and treated as
read-only input. It is validated once at load time: unknown keys and
malformed values are rejected with ``ThresholdConfigError`` instead of
failing later at call time.
"""

import json
from pathlib import Path
from typing import Any, Mapping

import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from signal_engine.errors import ThresholdConfigError

logger = structlog.get_logger(__name__)

DEFAULT_KEY = "default"


class SeverityBands(BaseModel):
    """Banding of spike severity.

    Severity is banded twice: by the multiple of the spike threshold that the
    deviation reaches, and by the z-score of the current value against the
    baseline. The higher band wins.
    """

    model_config = ConfigDict(frozen=True, extra="forbid", populate_by_name=True)

    medium_multiple: float = Field(default=2.0, gt=1.0, alias="mediumMultiple")
    high_multiple: float = Field(default=4.0, gt=1.0, alias="highMultiple")
    critical_multiple: float = Field(default=8.0, gt=1.0, alias="criticalMultiple")
    medium_sigma: float = Field(default=3.0, gt=0.0, alias="mediumSigma")
    high_sigma: float = Field(default=5.0, gt=0.0, alias="highSigma")
    critical_sigma: float = Field(default=10.0, gt=0.0, alias="criticalSigma")
    confidence_divisor: float = Field(default=5.0, gt=0.0, alias="confidenceDivisor")

    @model_validator(mode="after")
    def _check_ordering(self) -> "SeverityBands":
        if not self.medium_multiple < self.high_multiple < self.critical_multiple:
            raise ValueError("Severity multiples must be strictly increasing")
        if not self.medium_sigma < self.high_sigma < self.critical_sigma:
            raise ValueError("Severity sigma bands must be strictly increasing")
        return self


class SignalBands(BaseModel):
    """Distance-from-MA bands (percent) used to derive trading signals."""

    model_config = ConfigDict(frozen=True, extra="forbid", populate_by_name=True)

    overbought_above: float = Field(default=15.0, alias="overboughtAbove")
    oversold_below: float = Field(default=-15.0, alias="oversoldBelow")
    buy_below: float = Field(default=-5.0, alias="buyBelow")
    sell_above: float = Field(default=5.0, alias="sellAbove")

    @model_validator(mode="after")
    def _check_ordering(self) -> "SignalBands":
        if not self.oversold_below <= self.buy_below <= 0 <= self.sell_above <= self.overbought_above:
            raise ValueError(
                "Signal bands must satisfy oversold <= buy <= 0 <= sell <= overbought"
            )
        return self


class MetricThreshold(BaseModel):
    """Threshold record for one metric."""

    model_config = ConfigDict(frozen=True, extra="forbid", populate_by_name=True)

    spike_threshold_percent: float = Field(default=20.0, gt=0.0, alias="spikeThresholdPercent")
    ma_period: int = Field(default=30, ge=2, alias="maPeriod")
    cache_ttl_seconds: float = Field(default=300.0, gt=0.0, alias="cacheTTLSeconds")
    trend_cache_ttl_seconds: float | None = Field(
        default=None, gt=0.0, alias="trendCacheTTLSeconds"
    )
    severity_bands: SeverityBands = Field(default_factory=SeverityBands, alias="severityBands")
    signal_bands: SignalBands = Field(default_factory=SignalBands, alias="signalBands")

    @property
    def trend_ttl_seconds(self) -> float:
        """TTL for cached trend results (falls back to the spike TTL)."""
        return self.trend_cache_ttl_seconds or self.cache_ttl_seconds


class ThresholdTable(BaseModel):
    """Validated table mapping metric names to threshold records."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    default: MetricThreshold = Field(default_factory=MetricThreshold)
    metrics: dict[str, MetricThreshold] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _check_names(self) -> "ThresholdTable":
        for name in self.metrics:
            if not name or not name.strip():
                raise ValueError("Metric names must be non-empty")
        return self

    def for_metric(self, metric_name: str) -> MetricThreshold:
        """Get the threshold record for a metric, or the table default."""
        return self.metrics.get(metric_name, self.default)

    def __contains__(self, metric_name: object) -> bool:
        return metric_name in self.metrics

    @classmethod
    def from_mapping(
        cls,
        data: Mapping[str, Any],
        default: MetricThreshold | None = None,
    ) -> "ThresholdTable":
        """Build a table from ``{metricName: {spikeThresholdPercent, ...}}``.

        A ``"default"`` entry, if present, replaces the table default.

        Raises:
            ThresholdConfigError: If any entry is malformed or has unknown keys
        """
        if not isinstance(data, Mapping):
            raise ThresholdConfigError("Threshold table must be a mapping")

        entries = dict(data)
        payload: dict[str, Any] = {"metrics": entries}
        if DEFAULT_KEY in entries:
            payload["default"] = entries.pop(DEFAULT_KEY)
        elif default is not None:
            payload["default"] = default

        try:
            return cls.model_validate(payload)
        except ValidationError as e:
            raise ThresholdConfigError(f"Invalid threshold table: {e}") from e

    def to_dict(self) -> dict[str, Any]:
        """Convert to the wire mapping (camelCase keys)."""
        result = {DEFAULT_KEY: self.default.model_dump(by_alias=True)}
        for name, threshold in sorted(self.metrics.items()):
            result[name] = threshold.model_dump(by_alias=True)
        return result


def load_threshold_table(path: str | Path) -> ThresholdTable:
    """Load and validate a threshold table from a JSON file.

    Raises:
        ThresholdConfigError: If the file is missing, unparsable or invalid
    """
    file_path = Path(path)
    try:
        data = json.loads(file_path.read_text())
    except OSError as e:
        raise ThresholdConfigError(f"Cannot read threshold table {file_path}: {e}") from e
    except json.JSONDecodeError as e:
        raise ThresholdConfigError(f"Threshold table {file_path} is not valid JSON: {e}") from e

    table = ThresholdTable.from_mapping(data)
    logger.info("thresholds_loaded", path=str(file_path), metrics=len(table.metrics))
    return table
