"""Batch dispatcher fanning metric requests out to the detectors.

Each metric runs in its own task. A failure on one metric is recorded as a
degraded outcome for that metric only; the rest of the batch is unaffected.
"""

import asyncio
import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Sequence

import structlog

from signal_engine.aggregator.categories import MetricCategory, metrics_for
from signal_engine.baselines.statistical import StatisticalBaselineCalculator
from signal_engine.cache.result_cache import ResultCache
from signal_engine.config.settings import Settings
from signal_engine.config.thresholds import MetricThreshold, ThresholdTable
from signal_engine.detectors.spike_detector import SpikeDetector
from signal_engine.errors import (
    CacheUnavailableError,
    ComputationTimeoutError,
    InsufficientDataError,
    InvalidSeriesError,
)
from signal_engine.models.cache_entry import CacheKey, ResultKind
from signal_engine.models.series import MetricSeries, validate_series
from signal_engine.models.spike import SpikeResult
from signal_engine.models.trend import MAState, TrendOutlook
from signal_engine.trends.moving_average import TrendAnalyzer

logger = structlog.get_logger(__name__)

SeriesFetcher = Callable[[], Awaitable[MetricSeries]]


class OutcomeStatus(str, Enum):
    """Per-metric outcome of a batch."""

    OK = "ok"
    INSUFFICIENT_DATA = "insufficient_data"
    INVALID_SERIES = "invalid_series"
    TIMEOUT = "timeout"
    ERROR = "error"


@dataclass(frozen=True)
class MetricRequest:
    """One metric of a batch: a supplied series or a fetcher for one.

    When ``current_value`` is omitted the latest sample is evaluated
    against the samples preceding it.
    """

    metric_name: str
    series: MetricSeries | None = None
    current_value: float | None = None
    fetch: SeriesFetcher | None = None

    def __post_init__(self) -> None:
        """Validate the request shape."""
        if not self.metric_name:
            raise ValueError("Metric name is required")
        if (self.series is None) == (self.fetch is None):
            raise ValueError("Exactly one of series or fetch must be provided")


@dataclass(frozen=True)
class MetricOutcome:
    """Result for one metric. Degraded outcomes carry no numbers."""

    metric_name: str
    status: OutcomeStatus
    spike: SpikeResult | None = None
    trend: MAState | None = None
    error: str | None = None

    @property
    def degraded(self) -> bool:
        """Check if the metric could not be fully evaluated."""
        return self.status != OutcomeStatus.OK

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "metricName": self.metric_name,
            "status": self.status.value,
            "spike": self.spike.to_dict() if self.spike else None,
            "trend": self.trend.to_dict() if self.trend else None,
            "error": self.error,
        }


@dataclass(frozen=True)
class BatchResult:
    """Outcomes of one batch for one entity and timeframe."""

    entity_id: str
    timeframe: str
    outcomes: dict[str, MetricOutcome]
    computed_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def spikes(self) -> dict[str, SpikeResult | None]:
        """Map of metric name to spike result (None when unavailable)."""
        return {name: o.spike for name, o in self.outcomes.items()}

    @property
    def trends(self) -> dict[str, MAState | None]:
        """Map of metric name to MA state (None when unavailable)."""
        return {name: o.trend for name, o in self.outcomes.items()}

    @property
    def degraded(self) -> list[str]:
        """Names of metrics with a degraded outcome."""
        return [name for name, o in self.outcomes.items() if o.degraded]

    def to_dict(self) -> dict[str, Any]:
        """Convert to the dashboard map."""
        return {
            "entityId": self.entity_id,
            "timeframe": self.timeframe,
            "computedAt": self.computed_at.isoformat(),
            "spikes": {n: s.to_dict() if s else None for n, s in self.spikes.items()},
            "trends": {n: t.to_dict() if t else None for n, t in self.trends.items()},
            "status": {n: o.status.value for n, o in self.outcomes.items()},
            "errors": {n: o.error for n, o in self.outcomes.items() if o.error},
        }


class _LazySeries:
    """Resolves a request's series at most once, on first use."""

    def __init__(self, request: MetricRequest, fetch_timeout: float | None) -> None:
        self._request = request
        self._fetch_timeout = fetch_timeout
        self._series: MetricSeries | None = request.series
        self._validated = False

    async def get(self) -> MetricSeries:
        if self._series is None:
            self._series = await self._fetch()
        if not self._validated:
            validate_series(self._series)
            current = self._request.current_value
            if current is not None and not math.isfinite(current):
                raise InvalidSeriesError(
                    self._request.metric_name, f"non-finite current value {current!r}"
                )
            self._validated = True
        return self._series

    async def _fetch(self) -> MetricSeries:
        fetch = self._request.fetch
        if fetch is None:
            raise ValueError(f"No series source for {self._request.metric_name}")
        try:
            return await asyncio.wait_for(fetch(), timeout=self._fetch_timeout)
        except TimeoutError as e:
            raise ComputationTimeoutError(
                f"Fetching {self._request.metric_name} exceeded {self._fetch_timeout}s"
            ) from e


class SignalAggregator:
    """Runs spike detection and trend analysis for a batch of metrics.
    
    The cache is passed in explicitly and consulted before any computation.
    Cache failures degrade to uncached computation.
    """

    def __init__(
        self,
        cache: ResultCache,
        thresholds: ThresholdTable | None = None,
        baseline_calculator: StatisticalBaselineCalculator | None = None,
        spike_detector: SpikeDetector | None = None,
        trend_analyzer: TrendAnalyzer | None = None,
        fetch_timeout: float | None = None,
    ) -> None:
        """Initialize the aggregator.
        
        Args:
            cache: Shared result cache
            thresholds: Per-metric threshold table
            baseline_calculator: Baseline strategy
            spike_detector: Spike classifier
            trend_analyzer: Moving-average analyzer
            fetch_timeout: Deadline in seconds for series fetches
        """
        self._cache = cache
        self._thresholds = thresholds or ThresholdTable()
        self._baselines = baseline_calculator or StatisticalBaselineCalculator()
        self._detector = spike_detector or SpikeDetector()
        self._analyzer = trend_analyzer or TrendAnalyzer()
        self._fetch_timeout = fetch_timeout

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        cache: ResultCache | None = None,
        thresholds: ThresholdTable | None = None,
    ) -> "SignalAggregator":
        """Build an aggregator wired from settings.
        
        Args:
            settings: Engine settings
            cache: Shared cache; a new one is constructed when omitted
            thresholds: Threshold table; loaded from settings when omitted
        """
        if cache is None:
            cache = ResultCache(
                max_entries=settings.cache_max_entries,
                default_ttl=settings.spike_cache_ttl_seconds,
            )
        return cls(
            cache=cache,
            thresholds=thresholds if thresholds is not None else settings.load_thresholds(),
            baseline_calculator=StatisticalBaselineCalculator(
                min_samples=settings.baseline_min_samples,
                window_size=settings.baseline_window,
                recency_trend_factor=settings.recency_trend_factor,
            ),
            trend_analyzer=TrendAnalyzer(period=settings.ma_period),
            fetch_timeout=settings.fetch_timeout_seconds,
        )

    @property
    def thresholds(self) -> ThresholdTable:
        """The threshold table in use."""
        return self._thresholds

    @property
    def cache(self) -> ResultCache:
        """The result cache in use."""
        return self._cache

    async def analyze(
        self,
        entity_id: str,
        timeframe: str,
        requests: Sequence[MetricRequest],
        include_trend: bool = True,
        force_refresh: bool = False,
    ) -> BatchResult:
        """Evaluate a batch of metrics for one entity and timeframe.
        
        Args:
            entity_id: Entity (chain, token) the metrics belong to
            timeframe: Timeframe label, part of the cache key
            requests: Metrics to evaluate; names must be unique
            include_trend: Also compute moving-average state
            force_refresh: Bypass fresh cache entries
            
        Returns:
            Outcomes for every requested metric
        """
        names = [r.metric_name for r in requests]
        if len(set(names)) != len(names):
            raise ValueError("Metric names in a batch must be unique")

        async with asyncio.TaskGroup() as tg:
            tasks = {
                r.metric_name: tg.create_task(
                    self._run_metric(entity_id, timeframe, r, include_trend, force_refresh)
                )
                for r in requests
            }

        result = BatchResult(
            entity_id=entity_id,
            timeframe=timeframe,
            outcomes={name: task.result() for name, task in tasks.items()},
        )
        logger.info(
            "batch_analyzed",
            entity=entity_id,
            timeframe=timeframe,
            metrics=len(requests),
            spikes=sum(1 for s in result.spikes.values() if s and s.is_spike),
            degraded=len(result.degraded),
        )
        return result

    async def analyze_category(
        self,
        entity_id: str,
        timeframe: str,
        category: MetricCategory | str,
        requests: Sequence[MetricRequest],
        include_trend: bool = True,
        force_refresh: bool = False,
    ) -> BatchResult:
        """Evaluate only the requests belonging to a metric category."""
        wanted = set(metrics_for(category))
        selected = [r for r in requests if r.metric_name in wanted]
        return await self.analyze(entity_id, timeframe, selected, include_trend, force_refresh)

    async def outlook(self, request: MetricRequest, lookback: int = 7) -> TrendOutlook:
        """Compare the latest ``lookback`` samples of one metric with the ones before.
        
        The outlook is computed on demand and not cached.
        
        Raises:
            InvalidSeriesError: If the series is malformed
            ComputationTimeoutError: If the fetch exceeds its deadline
        """
        series = await _LazySeries(request, self._fetch_timeout).get()
        return self._analyzer.outlook(series, lookback=lookback)

    async def _run_metric(
        self,
        entity_id: str,
        timeframe: str,
        request: MetricRequest,
        include_trend: bool,
        force_refresh: bool,
    ) -> MetricOutcome:
        name = request.metric_name
        threshold = self._thresholds.for_metric(name)
        series = _LazySeries(request, self._fetch_timeout)

        try:
            status = OutcomeStatus.OK
            error: str | None = None
            spike: SpikeResult | None = None
            try:
                spike = await self._cached(
                    CacheKey(entity_id, name, timeframe, ResultKind.SPIKE),
                    lambda: self._compute_spike(request, series, threshold),
                    threshold.cache_ttl_seconds,
                    force_refresh,
                )
            except InsufficientDataError as e:
                status = OutcomeStatus.INSUFFICIENT_DATA
                error = str(e)

            trend: MAState | None = None
            if include_trend:
                trend = await self._cached(
                    CacheKey(entity_id, name, timeframe, ResultKind.TREND),
                    lambda: self._compute_trend(series, threshold),
                    threshold.trend_ttl_seconds,
                    force_refresh,
                )
            outcome = MetricOutcome(name, status, spike=spike, trend=trend, error=error)
        except InvalidSeriesError as e:
            outcome = MetricOutcome(name, OutcomeStatus.INVALID_SERIES, error=str(e))
        except ComputationTimeoutError as e:
            outcome = MetricOutcome(name, OutcomeStatus.TIMEOUT, error=str(e))
        except Exception as e:
            logger.exception("metric_failed", entity=entity_id, metric=name)
            outcome = MetricOutcome(name, OutcomeStatus.ERROR, error=f"{type(e).__name__}: {e}")

        if outcome.degraded:
            logger.warning(
                "metric_degraded",
                entity=entity_id,
                metric=name,
                status=outcome.status.value,
                error=outcome.error,
            )
        return outcome

    async def _cached(
        self,
        key: CacheKey,
        compute: Callable[[], Awaitable[Any]],
        ttl: float,
        force_refresh: bool,
    ) -> Any:
        try:
            return await self._cache.get_or_compute(key, compute, ttl=ttl, force_refresh=force_refresh)
        except CacheUnavailableError:
            logger.warning("cache_unavailable_fallback", key=str(key))
            return await compute()

    async def _compute_spike(
        self,
        request: MetricRequest,
        lazy_series: _LazySeries,
        threshold: MetricThreshold,
    ) -> SpikeResult:
        series = await lazy_series.get()
        name = request.metric_name
        if not series.samples:
            raise InsufficientDataError(name, 0, self._baselines.min_samples)

        baseline = self._baselines.compute_for_series(series, current_value=request.current_value)
        if baseline.insufficient_data:
            raise InsufficientDataError(name, baseline.sample_count, self._baselines.min_samples)

        current = request.current_value
        if current is None:
            current = series.samples[-1].value
        return self._detector.detect(
            baseline,
            current,
            threshold.spike_threshold_percent,
            metric_name=name,
            severity_bands=threshold.severity_bands,
        )

    async def _compute_trend(self, lazy_series: _LazySeries, threshold: MetricThreshold) -> MAState:
        series = await lazy_series.get()
        return self._analyzer.analyze(
            series,
            period=threshold.ma_period,
            signal_bands=threshold.signal_bands,
        )
