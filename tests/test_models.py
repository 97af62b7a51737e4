"""Tests for domain models and their wire format."""

import json
from dataclasses import FrozenInstanceError
from datetime import datetime, timedelta, timezone

import pytest

from signal_engine.errors import InvalidSeriesError
from signal_engine.models import (
    BaselineStats,
    CacheKey,
    MAState,
    MetricSample,
    MetricSeries,
    ResultKind,
    Severity,
    SpikeResult,
    TradingSignal,
    Trend,
    parse_timestamp,
    validate_series,
)

START = datetime(2024, 1, 1, tzinfo=timezone.utc)


def create_spike_result(**overrides) -> SpikeResult:
    """Create a spike result for testing."""
    fields = {
        "is_spike": True,
        "severity": Severity.HIGH,
        "confidence": 0.23,
        "threshold": 70.0,
        "current_value": 180.0,
        "baseline": 100.0,
        "deviation_percent": 80.0,
        "message": "dailyActiveAddresses shows major increase of 80.0% versus baseline",
        "metric_name": "dailyActiveAddresses",
    }
    fields.update(overrides)
    return SpikeResult(**fields)


class TestSpikeResult:
    """Tests for SpikeResult."""

    def test_wire_field_names(self) -> None:
        """Test the dashboard field names."""
        data = create_spike_result().to_dict()

        assert set(data) == {
            "isSpike",
            "severity",
            "confidence",
            "threshold",
            "currentValue",
            "baseline",
            "deviationPercent",
            "message",
            "metricName",
        }
        assert data["severity"] == "high"

    def test_json_round_trip(self) -> None:
        """Test that serialization preserves every field."""
        result = create_spike_result()

        assert SpikeResult.from_dict(json.loads(json.dumps(result.to_dict()))) == result

    def test_numbers_normalized_to_float(self) -> None:
        """Test that integer inputs are stored as floats."""
        result = create_spike_result(current_value=180, baseline=100)

        assert isinstance(result.current_value, float)
        assert isinstance(result.baseline, float)

    def test_severity_from_string(self) -> None:
        """Test that severity strings are coerced."""
        assert create_spike_result(severity="critical").severity == Severity.CRITICAL

    def test_confidence_out_of_range(self) -> None:
        """Test that confidence must lie in [0, 1]."""
        with pytest.raises(ValueError):
            create_spike_result(confidence=1.5)

    def test_severity_consistency(self) -> None:
        """Test that spike flag and severity agree."""
        with pytest.raises(ValueError):
            create_spike_result(severity=Severity.NONE)
        with pytest.raises(ValueError):
            create_spike_result(is_spike=False, severity=Severity.LOW)

    def test_immutable(self) -> None:
        """Test that results are frozen."""
        result = create_spike_result()

        with pytest.raises(FrozenInstanceError):
            result.confidence = 0.5  # type: ignore[misc]


class TestSeverity:
    """Tests for severity ordering."""

    def test_ordering(self) -> None:
        """Test that severities are totally ordered."""
        assert Severity.NONE < Severity.LOW < Severity.MEDIUM < Severity.HIGH < Severity.CRITICAL
        assert max(Severity.MEDIUM, Severity.HIGH) == Severity.HIGH
        assert Severity.CRITICAL.rank == 4


class TestMAState:
    """Tests for MAState."""

    def test_round_trip_with_values(self) -> None:
        """Test serialization of a full state."""
        state = MAState(
            current_value=120.0,
            current_ma=100.5,
            trend=Trend.UP,
            distance_from_ma_percent=19.4,
            volatility=2.5,
            signal=TradingSignal.OVERBOUGHT,
            strength=41.3,
            period=30,
        )
        data = json.loads(json.dumps(state.to_dict()))

        assert data["currentMA"] == 100.5
        assert data["signal"] == "overbought"
        assert MAState.from_dict(data) == state

    def test_round_trip_insufficient(self) -> None:
        """Test that missing MA values survive as None."""
        state = MAState(
            current_value=None,
            current_ma=None,
            trend=Trend.STABLE,
            distance_from_ma_percent=None,
            volatility=0.0,
            signal=TradingSignal.NEUTRAL,
            strength=0.0,
            period=30,
            insufficient_data=True,
        )

        assert MAState.from_dict(state.to_dict()) == state
        assert state.to_dict()["distanceFromMAPercent"] is None

    def test_strength_range(self) -> None:
        """Test that strength must lie in [0, 100]."""
        with pytest.raises(ValueError):
            MAState(1.0, 1.0, Trend.UP, 0.0, 0.0, TradingSignal.NEUTRAL, 101.0, 30)


class TestMetricSeries:
    """Tests for MetricSeries and validation."""

    def test_from_dict_with_zulu_timestamps(self) -> None:
        """Test parsing of collector payloads."""
        series = MetricSeries.from_dict(
            {
                "entityId": "bitcoin",
                "metricName": "hashRate",
                "timeframe": "7d",
                "samples": [
                    {"timestamp": "2024-01-01T00:00:00Z", "value": 1},
                    {"timestamp": "2024-01-02T00:00:00Z", "value": 2.5},
                ],
            }
        )

        assert len(series) == 2
        assert series.values == [1.0, 2.5]
        assert series.latest.timestamp == START + timedelta(days=1)

    def test_samples_stored_as_tuple(self) -> None:
        """Test that the series never keeps a mutable list."""
        samples = [MetricSample(START, 1.0)]
        series = MetricSeries("bitcoin", "hashRate", "24h", samples)  # type: ignore[arg-type]
        samples.append(MetricSample(START + timedelta(days=1), 2.0))

        assert isinstance(series.samples, tuple)
        assert len(series) == 1

    def test_window(self) -> None:
        """Test trailing windows by time and size."""
        series = MetricSeries.from_values(
            "bitcoin", "price", "24h", [(START + timedelta(days=i), float(i)) for i in range(10)]
        )

        assert [s.value for s in series.window(as_of=START + timedelta(days=3))] == [0, 1, 2, 3]
        assert [s.value for s in series.window(size=2)] == [8.0, 9.0]
        assert series.window(size=0) == ()

    def test_naive_timestamps_are_utc(self) -> None:
        """Test timestamp normalization."""
        assert parse_timestamp("2024-01-01T00:00:00") == START

    def test_validate_rejects_duplicates(self) -> None:
        """Test that equal timestamps are not strictly ascending."""
        series = MetricSeries.from_values("bitcoin", "price", "24h", [(START, 1.0), (START, 2.0)])

        with pytest.raises(InvalidSeriesError) as exc_info:
            validate_series(series)
        assert exc_info.value.metric_name == "price"

    def test_validate_rejects_infinite(self) -> None:
        """Test that non-finite values are rejected."""
        series = MetricSeries.from_values("bitcoin", "price", "24h", [(START, float("inf"))])

        with pytest.raises(InvalidSeriesError):
            validate_series(series)

    def test_validate_accepts_empty(self) -> None:
        """Test that an empty series is structurally valid."""
        validate_series(MetricSeries("bitcoin", "price", "24h"))


class TestBaselineStats:
    """Tests for BaselineStats."""

    def test_negative_std_rejected(self) -> None:
        """Test validation of the standard deviation."""
        with pytest.raises(ValueError):
            BaselineStats(mean=1.0, stddev=-1.0, sample_count=3)

    def test_round_trip(self) -> None:
        """Test serialization with window bounds."""
        stats = BaselineStats(
            mean=10.0,
            stddev=2.0,
            sample_count=7,
            window_start=START,
            window_end=START + timedelta(days=6),
        )

        assert BaselineStats.from_dict(stats.to_dict()) == stats


class TestCacheKey:
    """Tests for cache keys."""

    def test_string_form(self) -> None:
        """Test the printable key."""
        key = CacheKey("ethereum", "chainTVL", "7d", ResultKind.TREND)

        assert str(key) == "ethereum:7d:chainTVL:trend"

    def test_hashable(self) -> None:
        """Test that equal keys collide in a dict."""
        assert {CacheKey("a", "b", "c"): 1}[CacheKey("a", "b", "c")] == 1
