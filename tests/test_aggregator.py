"""Tests for the batch signal aggregator."""

import asyncio
import json
from datetime import datetime, timedelta, timezone

import pytest

from signal_engine.aggregator import (
    MetricCategory,
    MetricRequest,
    OutcomeStatus,
    SignalAggregator,
    category_of,
    metrics_for,
)
from signal_engine.baselines import StatisticalBaselineCalculator
from signal_engine.cache import ResultCache
from signal_engine.config import Settings, ThresholdTable
from signal_engine.errors import InvalidSeriesError, SeriesFetchError
from signal_engine.models import (
    CacheKey,
    MetricSample,
    MetricSeries,
    ResultKind,
    Severity,
    TradingSignal,
    TrendDirection,
)

START = datetime(2024, 1, 1, tzinfo=timezone.utc)


def create_series(metric_name: str, values: list[float], entity_id: str = "ethereum") -> MetricSeries:
    """Create a daily series starting at START."""
    return MetricSeries.from_values(
        entity_id,
        metric_name,
        "24h",
        [(START + timedelta(days=i), v) for i, v in enumerate(values)],
    )


class CountingFetcher:
    """Async series fetcher that counts its calls."""

    def __init__(self, series: MetricSeries, delay: float = 0.0) -> None:
        self.series = series
        self.delay = delay
        self.calls = 0

    async def __call__(self) -> MetricSeries:
        self.calls += 1
        await asyncio.sleep(self.delay)
        return self.series


@pytest.fixture
def thresholds() -> ThresholdTable:
    """Threshold table with one tuned metric."""
    return ThresholdTable.from_mapping(
        {
            "dailyActiveAddresses": {
                "spikeThresholdPercent": 50,
                "maPeriod": 5,
                "cacheTTLSeconds": 60,
            }
        }
    )


@pytest.fixture
def cache() -> ResultCache:
    """Fresh result cache."""
    return ResultCache()


@pytest.fixture
def aggregator(cache: ResultCache, thresholds: ThresholdTable) -> SignalAggregator:
    """Aggregator with a 7-sample minimum baseline."""
    return SignalAggregator(
        cache,
        thresholds=thresholds,
        baseline_calculator=StatisticalBaselineCalculator(min_samples=7, window_size=90),
        fetch_timeout=0.5,
    )


class TestBatchAnalysis:
    """Tests for analyze."""

    @pytest.mark.asyncio
    async def test_spike_and_trend_for_supplied_series(self, aggregator: SignalAggregator) -> None:
        """Test a batch with one healthy metric."""
        request = MetricRequest(
            "dailyActiveAddresses",
            series=create_series("dailyActiveAddresses", [100.0] * 30),
            current_value=180.0,
        )
        result = await aggregator.analyze("ethereum", "24h", [request])
        outcome = result.outcomes["dailyActiveAddresses"]

        assert outcome.status == OutcomeStatus.OK
        assert outcome.spike is not None
        assert outcome.spike.is_spike is True
        assert outcome.spike.threshold == 50.0
        assert outcome.spike.deviation_percent == pytest.approx(80.0)
        assert outcome.trend is not None
        assert outcome.trend.period == 5
        assert result.degraded == []

    @pytest.mark.asyncio
    async def test_latest_sample_used_when_no_current_value(
        self, aggregator: SignalAggregator
    ) -> None:
        """Test that the latest sample is evaluated against the rest."""
        request = MetricRequest("tvl", series=create_series("tvl", [100.0] * 29 + [200.0]))
        result = await aggregator.analyze("ethereum", "24h", [request])
        spike = result.spikes["tvl"]

        assert spike is not None
        assert spike.baseline == 100.0
        assert spike.deviation_percent == pytest.approx(100.0)
        assert spike.threshold == 20.0
        assert spike.severity >= Severity.MEDIUM

    @pytest.mark.asyncio
    async def test_failures_are_isolated_per_metric(self, aggregator: SignalAggregator) -> None:
        """Test that bad metrics do not affect healthy ones."""
        reversed_series = MetricSeries(
            "ethereum",
            "averageFee",
            "24h",
            (
                MetricSample(START + timedelta(days=1), 1.0),
                MetricSample(START, 2.0),
            ),
        )
        requests = [
            MetricRequest("dailyTransactions", series=create_series("dailyTransactions", [10.0] * 40)),
            MetricRequest("newAddresses", series=create_series("newAddresses", [10.0, 11.0, 12.0])),
            MetricRequest("averageFee", series=reversed_series),
            MetricRequest("hashRate", series=create_series("hashRate", [1.0] * 10 + [float("nan")])),
        ]
        result = await aggregator.analyze("ethereum", "24h", requests)

        assert result.outcomes["dailyTransactions"].status == OutcomeStatus.OK
        assert result.outcomes["dailyTransactions"].trend.signal == TradingSignal.NEUTRAL

        insufficient = result.outcomes["newAddresses"]
        assert insufficient.status == OutcomeStatus.INSUFFICIENT_DATA
        assert insufficient.spike is None
        assert insufficient.trend is not None
        assert insufficient.trend.insufficient_data is True
        assert "Insufficient data" in insufficient.error

        assert result.outcomes["averageFee"].status == OutcomeStatus.INVALID_SERIES
        assert result.outcomes["averageFee"].spike is None
        assert result.outcomes["averageFee"].trend is None
        assert result.outcomes["hashRate"].status == OutcomeStatus.INVALID_SERIES
        assert sorted(result.degraded) == ["averageFee", "hashRate", "newAddresses"]

    @pytest.mark.asyncio
    async def test_empty_series_is_insufficient(self, aggregator: SignalAggregator) -> None:
        """Test that an empty series never yields a spike."""
        request = MetricRequest("tvl", series=MetricSeries("ethereum", "tvl", "24h"))
        result = await aggregator.analyze("ethereum", "24h", [request])

        assert result.outcomes["tvl"].status == OutcomeStatus.INSUFFICIENT_DATA

    @pytest.mark.asyncio
    async def test_non_finite_current_value(self, aggregator: SignalAggregator) -> None:
        """Test that a NaN current value is an invalid series."""
        request = MetricRequest(
            "tvl", series=create_series("tvl", [1.0] * 10), current_value=float("inf")
        )
        result = await aggregator.analyze("ethereum", "24h", [request])

        assert result.outcomes["tvl"].status == OutcomeStatus.INVALID_SERIES

    @pytest.mark.asyncio
    async def test_fetch_timeout_degrades_one_metric(self, cache: ResultCache) -> None:
        """Test that a slow collaborator only times out its own metric."""
        aggregator = SignalAggregator(cache, fetch_timeout=0.05)
        slow = CountingFetcher(create_series("tvl", [1.0] * 40), delay=1.0)
        fast = CountingFetcher(create_series("fees", [1.0] * 40))

        result = await aggregator.analyze(
            "ethereum",
            "24h",
            [MetricRequest("tvl", fetch=slow), MetricRequest("fees", fetch=fast)],
        )

        assert result.outcomes["tvl"].status == OutcomeStatus.TIMEOUT
        assert result.outcomes["fees"].status == OutcomeStatus.OK

    @pytest.mark.asyncio
    async def test_fetch_error_degrades_one_metric(self, aggregator: SignalAggregator) -> None:
        """Test that a failing collaborator is reported as an error."""

        async def broken() -> MetricSeries:
            raise SeriesFetchError("upstream returned 502")

        result = await aggregator.analyze(
            "ethereum",
            "24h",
            [
                MetricRequest("tvl", fetch=broken),
                MetricRequest("fees", series=create_series("fees", [1.0] * 40)),
            ],
        )

        assert result.outcomes["tvl"].status == OutcomeStatus.ERROR
        assert "upstream returned 502" in result.outcomes["tvl"].error
        assert result.outcomes["fees"].status == OutcomeStatus.OK

    @pytest.mark.asyncio
    async def test_duplicate_metric_names_rejected(self, aggregator: SignalAggregator) -> None:
        """Test that metric names in a batch must be unique."""
        series = create_series("tvl", [1.0] * 10)

        with pytest.raises(ValueError):
            await aggregator.analyze(
                "ethereum",
                "24h",
                [MetricRequest("tvl", series=series), MetricRequest("tvl", series=series)],
            )

    @pytest.mark.asyncio
    async def test_trend_can_be_skipped(self, aggregator: SignalAggregator) -> None:
        """Test include_trend=False."""
        request = MetricRequest("tvl", series=create_series("tvl", [1.0] * 40))
        result = await aggregator.analyze("ethereum", "24h", [request], include_trend=False)

        assert result.trends["tvl"] is None
        assert result.spikes["tvl"] is not None

    @pytest.mark.asyncio
    async def test_result_serializes(self, aggregator: SignalAggregator) -> None:
        """Test that the dashboard map is JSON serializable."""
        requests = [
            MetricRequest("tvl", series=create_series("tvl", [1.0] * 40)),
            MetricRequest("fees", series=create_series("fees", [1.0])),
        ]
        result = await aggregator.analyze("ethereum", "24h", requests)
        data = json.loads(json.dumps(result.to_dict()))

        assert data["entityId"] == "ethereum"
        assert data["spikes"]["fees"] is None
        assert data["status"] == {"tvl": "ok", "fees": "insufficient_data"}
        assert "fees" in data["errors"]


class TestAggregatorCaching:
    """Tests for cache use by the aggregator."""

    @pytest.mark.asyncio
    async def test_second_batch_served_from_cache(
        self, aggregator: SignalAggregator, cache: ResultCache
    ) -> None:
        """Test that cached results skip the fetch."""
        fetcher = CountingFetcher(create_series("tvl", [1.0] * 40))

        first = await aggregator.analyze("ethereum", "24h", [MetricRequest("tvl", fetch=fetcher)])
        second = await aggregator.analyze("ethereum", "24h", [MetricRequest("tvl", fetch=fetcher)])

        assert fetcher.calls == 1
        assert first.spikes == second.spikes
        assert cache.describe(CacheKey("ethereum", "tvl", "24h", ResultKind.TREND))["hit"] is True

    @pytest.mark.asyncio
    async def test_force_refresh_recomputes(self, aggregator: SignalAggregator) -> None:
        """Test that force_refresh bypasses the cache."""
        fetcher = CountingFetcher(create_series("tvl", [1.0] * 40))

        await aggregator.analyze("ethereum", "24h", [MetricRequest("tvl", fetch=fetcher)])
        await aggregator.analyze(
            "ethereum", "24h", [MetricRequest("tvl", fetch=fetcher)], force_refresh=True
        )

        assert fetcher.calls == 2

    @pytest.mark.asyncio
    async def test_concurrent_batches_fetch_once(self, aggregator: SignalAggregator) -> None:
        """Test that concurrent batches for the same key coalesce."""
        fetcher = CountingFetcher(create_series("tvl", [1.0] * 40), delay=0.01)

        results = await asyncio.gather(
            *(
                aggregator.analyze(
                    "ethereum", "24h", [MetricRequest("tvl", fetch=fetcher)], include_trend=False
                )
                for _ in range(10)
            )
        )

        assert fetcher.calls == 1
        assert len({r.spikes["tvl"] for r in results}) == 1

    @pytest.mark.asyncio
    async def test_degraded_outcomes_not_cached(
        self, aggregator: SignalAggregator, cache: ResultCache
    ) -> None:
        """Test that insufficient data leaves no spike entry behind."""
        request = MetricRequest("tvl", series=create_series("tvl", [1.0, 2.0]))
        await aggregator.analyze("ethereum", "24h", [request])

        assert cache.describe(CacheKey("ethereum", "tvl", "24h"))["hit"] is False

    @pytest.mark.asyncio
    async def test_unavailable_cache_falls_back(
        self, aggregator: SignalAggregator, cache: ResultCache
    ) -> None:
        """Test that a shut down cache degrades to uncached computation."""
        cache.shutdown()
        request = MetricRequest("tvl", series=create_series("tvl", [1.0] * 40))

        result = await aggregator.analyze("ethereum", "24h", [request])

        assert result.outcomes["tvl"].status == OutcomeStatus.OK


class TestCategories:
    """Tests for metric categories."""

    def test_category_lookup(self) -> None:
        """Test category membership helpers."""
        assert "dailyActiveAddresses" in metrics_for(MetricCategory.USAGE)
        assert "chainTVL" in metrics_for("tvl")
        assert category_of("bridgeFlows") == MetricCategory.CASHFLOW
        assert category_of("unknownMetric") is None

    def test_unknown_category(self) -> None:
        """Test that unknown categories are rejected."""
        with pytest.raises(ValueError):
            metrics_for("nft")

    @pytest.mark.asyncio
    async def test_analyze_category_filters_requests(self, aggregator: SignalAggregator) -> None:
        """Test that only the category's metrics are evaluated."""
        requests = [
            MetricRequest("dailyActiveAddresses", series=create_series("dailyActiveAddresses", [1.0] * 40)),
            MetricRequest("chainTVL", series=create_series("chainTVL", [1.0] * 40)),
        ]
        result = await aggregator.analyze_category("ethereum", "24h", MetricCategory.USAGE, requests)

        assert list(result.outcomes) == ["dailyActiveAddresses"]


class TestMetricRequest:
    """Tests for request validation and wiring."""

    def test_exactly_one_source(self) -> None:
        """Test that a request needs exactly one series source."""
        with pytest.raises(ValueError):
            MetricRequest("tvl")

        async def fetch() -> MetricSeries:
            return create_series("tvl", [])

        with pytest.raises(ValueError):
            MetricRequest("tvl", series=create_series("tvl", []), fetch=fetch)

    def test_from_settings(self) -> None:
        """Test building an aggregator from settings."""
        settings = Settings(spike_threshold_percent=35.0, ma_period=10, cache_max_entries=16)
        aggregator = SignalAggregator.from_settings(settings)

        assert aggregator.thresholds.default.spike_threshold_percent == 35.0
        assert aggregator.thresholds.default.ma_period == 10
        assert aggregator.cache.stats()["maxEntries"] == 16

    @pytest.mark.asyncio
    async def test_missing_source_reported_as_error(self, aggregator: SignalAggregator) -> None:
        """Test that a request stripped of its fetcher degrades instead of crashing."""

        async def fetch() -> MetricSeries:
            return create_series("tvl", [1.0] * 40)

        request = MetricRequest("tvl", fetch=fetch)
        object.__setattr__(request, "fetch", None)

        result = await aggregator.analyze("ethereum", "24h", [request], include_trend=False)

        assert result.outcomes["tvl"].status == OutcomeStatus.ERROR
        assert "No series source" in result.outcomes["tvl"].error


class TestCancellation:
    """Tests for batches sharing a computation that is cancelled or abandoned."""

    @pytest.mark.asyncio
    async def test_cancelled_batch_does_not_abort_joined_batch(
        self, aggregator: SignalAggregator
    ) -> None:
        """Test that cancelling one batch times out the metric it shared with another."""
        fetcher = CountingFetcher(create_series("tvl", [1.0] * 40), delay=0.3)

        def run() -> asyncio.Task:
            return asyncio.create_task(
                aggregator.analyze(
                    "ethereum", "24h", [MetricRequest("tvl", fetch=fetcher)], include_trend=False
                )
            )

        owner = run()
        await asyncio.sleep(0.01)
        joiner = run()
        await asyncio.sleep(0.01)

        owner.cancel()

        with pytest.raises(asyncio.CancelledError):
            await owner
        result = await joiner
        assert result.outcomes["tvl"].status == OutcomeStatus.TIMEOUT
        assert "cancelled" in result.outcomes["tvl"].error
        assert fetcher.calls == 1

    @pytest.mark.asyncio
    async def test_shutdown_during_batches(
        self, aggregator: SignalAggregator, cache: ResultCache
    ) -> None:
        """Test that shutting the cache down mid-batch degrades joined metrics."""
        fetcher = CountingFetcher(create_series("tvl", [1.0] * 40), delay=0.1)

        def run() -> asyncio.Task:
            return asyncio.create_task(
                aggregator.analyze(
                    "ethereum", "24h", [MetricRequest("tvl", fetch=fetcher)], include_trend=False
                )
            )

        owner = run()
        await asyncio.sleep(0.01)
        joiner = run()
        await asyncio.sleep(0.01)

        cache.shutdown()

        owner_result, joiner_result = await asyncio.gather(owner, joiner)
        assert owner_result.outcomes["tvl"].status == OutcomeStatus.OK
        assert joiner_result.outcomes["tvl"].status == OutcomeStatus.TIMEOUT
        assert "shutdown" in joiner_result.outcomes["tvl"].error


class TestOutlook:
    """Tests for the on-demand recent-versus-older outlook."""

    @pytest.mark.asyncio
    async def test_outlook_for_supplied_series(self, aggregator: SignalAggregator) -> None:
        """Test a rising recent window."""
        request = MetricRequest("tvl", series=create_series("tvl", [100.0] * 7 + [110.0] * 7))

        outlook = await aggregator.outlook(request)

        assert outlook.direction == TrendDirection.BULLISH

    @pytest.mark.asyncio
    async def test_outlook_fetches_series(self, aggregator: SignalAggregator) -> None:
        """Test that the outlook resolves a fetcher once."""
        fetcher = CountingFetcher(create_series("tvl", [100.0] * 7 + [90.0] * 7))

        outlook = await aggregator.outlook(MetricRequest("tvl", fetch=fetcher), lookback=7)

        assert outlook.direction == TrendDirection.BEARISH
        assert fetcher.calls == 1

    @pytest.mark.asyncio
    async def test_outlook_rejects_invalid_series(self, aggregator: SignalAggregator) -> None:
        """Test that a malformed series raises."""
        reversed_series = MetricSeries(
            "ethereum",
            "tvl",
            "24h",
            (
                MetricSample(START + timedelta(days=1), 1.0),
                MetricSample(START, 2.0),
            ),
        )

        with pytest.raises(InvalidSeriesError):
            await aggregator.outlook(MetricRequest("tvl", series=reversed_series))
