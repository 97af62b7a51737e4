"""Signal API routes."""

import asyncio
from datetime import datetime
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, ConfigDict, Field

from app.series_reader import SeriesReader, get_reader
from signal_engine.aggregator import (
    BatchResult,
    MetricCategory,
    MetricRequest,
    SignalAggregator,
    metrics_for,
)
from signal_engine.config import get_settings
from signal_engine.errors import ComputationTimeoutError, InvalidSeriesError, SeriesFetchError
from signal_engine.models import CacheKey, MetricSample, MetricSeries, ResultKind

router = APIRouter(prefix="/signals", tags=["Signals"])

# Instances (will be configured in main.py)
_aggregator: SignalAggregator | None = None
_reader: SeriesReader | None = None


def get_aggregator() -> SignalAggregator:
    """Get the signal aggregator instance."""
    global _aggregator
    if _aggregator is None:
        _aggregator = SignalAggregator.from_settings(get_settings())
    return _aggregator


def set_aggregator(aggregator: SignalAggregator | None) -> None:
    """Set the signal aggregator instance."""
    global _aggregator
    _aggregator = aggregator


def get_series_reader() -> SeriesReader:
    """Get the series reader instance."""
    global _reader
    if _reader is None:
        _reader = get_reader()
    return _reader


def set_series_reader(reader: SeriesReader | None) -> None:
    """Set the series reader instance."""
    global _reader
    _reader = reader


def current_aggregator() -> SignalAggregator | None:
    """The configured aggregator, without building a default one."""
    return _aggregator


def current_series_reader() -> SeriesReader | None:
    """The configured series reader, without building a default one."""
    return _reader


# --- Request/Response Models ---


class SampleModel(BaseModel):
    """A single metric sample."""

    timestamp: datetime
    value: float


class MetricSeriesRequest(BaseModel):
    """One metric of an analysis batch."""

    model_config = ConfigDict(populate_by_name=True)

    metric_name: str = Field(..., min_length=1, alias="metricName")
    samples: list[SampleModel] = Field(default_factory=list)
    current_value: float | None = Field(default=None, alias="currentValue")


class AnalyzeRequest(BaseModel):
    """Request model for batch analysis of supplied series."""

    model_config = ConfigDict(populate_by_name=True)

    entity_id: str = Field(..., min_length=1, alias="entityId")
    timeframe: str = Field(default="24h")
    metrics: list[MetricSeriesRequest] = Field(..., min_length=1)
    include_trend: bool = Field(default=True, alias="includeTrend")
    force_refresh: bool = Field(default=False, alias="forceRefresh")


class BatchResponse(BaseModel):
    """Response model for a batch: per-metric spike and trend maps."""

    entityId: str
    timeframe: str
    computedAt: str
    spikes: dict[str, dict[str, Any] | None]
    trends: dict[str, dict[str, Any] | None]
    status: dict[str, str]
    errors: dict[str, str]

    @classmethod
    def from_result(cls, result: BatchResult) -> "BatchResponse":
        """Create response from domain model."""
        return cls(**result.to_dict())


class InvalidateRequest(BaseModel):
    """Request model for cache invalidation."""

    model_config = ConfigDict(populate_by_name=True)

    entity_id: str = Field(..., min_length=1, alias="entityId")
    metric_name: str | None = Field(default=None, alias="metricName")
    timeframe: str | None = None


class InvalidateResponse(BaseModel):
    """Response model for cache invalidation."""

    removed: int


# --- Endpoints ---


@router.post("/analyze", response_model=BatchResponse)
async def analyze_series(
    request: AnalyzeRequest,
    aggregator: SignalAggregator = Depends(get_aggregator),
) -> BatchResponse:
    """Detect spikes and trend signals for supplied series.
    
    Metrics with missing or unreliable data are reported with a status
    and an error, never with substituted numbers.
    """
    names = [m.metric_name for m in request.metrics]
    if len(set(names)) != len(names):
        raise HTTPException(status_code=400, detail="Metric names must be unique")

    metric_requests = [
        MetricRequest(
            metric_name=m.metric_name,
            series=MetricSeries(
                entity_id=request.entity_id,
                metric_name=m.metric_name,
                timeframe=request.timeframe,
                samples=tuple(MetricSample.from_dict(s.model_dump()) for s in m.samples),
            ),
            current_value=m.current_value,
        )
        for m in request.metrics
    ]

    result = await aggregator.analyze(
        request.entity_id,
        request.timeframe,
        metric_requests,
        include_trend=request.include_trend,
        force_refresh=request.force_refresh,
    )
    return BatchResponse.from_result(result)


@router.get("/thresholds")
async def get_thresholds(
    aggregator: SignalAggregator = Depends(get_aggregator),
) -> dict[str, Any]:
    """Get the per-metric threshold table in use."""
    return aggregator.thresholds.to_dict()


@router.get("/cache/stats")
async def get_cache_stats(
    aggregator: SignalAggregator = Depends(get_aggregator),
) -> dict[str, Any]:
    """Get result cache statistics."""
    return aggregator.cache.stats()


@router.get("/cache/describe")
async def describe_cache_entry(
    entity_id: str = Query(..., min_length=1),
    metric: str = Query(..., min_length=1),
    timeframe: str = Query(default="24h"),
    kind: ResultKind = Query(default=ResultKind.SPIKE),
    aggregator: SignalAggregator = Depends(get_aggregator),
) -> dict[str, Any]:
    """Describe one cache key: hit, timestamp and size."""
    return aggregator.cache.describe(CacheKey(entity_id, metric, timeframe, kind))


@router.post("/cache/invalidate", response_model=InvalidateResponse)
async def invalidate_cache(
    request: InvalidateRequest,
    aggregator: SignalAggregator = Depends(get_aggregator),
) -> InvalidateResponse:
    """Invalidate cached results for a metric or a whole entity."""
    cache = aggregator.cache
    if request.metric_name is None:
        return InvalidateResponse(removed=cache.invalidate_entity(request.entity_id))

    if request.timeframe is None:
        raise HTTPException(status_code=400, detail="timeframe is required with metricName")

    removed = 0
    for kind in ResultKind:
        key = CacheKey(request.entity_id, request.metric_name, request.timeframe, kind)
        removed += int(cache.invalidate(key))
    return InvalidateResponse(removed=removed)


@router.get("/{entity_id}", response_model=BatchResponse)
async def get_entity_signals(
    entity_id: str,
    timeframe: str = Query(default="24h"),
    metric: list[str] | None = Query(default=None, description="Metric names"),
    category: MetricCategory | None = Query(default=None, description="Metric category"),
    include_trend: bool = Query(default=True),
    force_refresh: bool = Query(default=False),
    aggregator: SignalAggregator = Depends(get_aggregator),
    reader: SeriesReader = Depends(get_series_reader),
) -> BatchResponse:
    """Detect spikes and trend signals for series fetched from the data source.
    
    Either ``metric`` (repeatable) or ``category`` selects the metrics.
    """
    names = list(dict.fromkeys(metric or []))
    if category is not None:
        names.extend(n for n in metrics_for(category) if n not in names)
    if not names:
        raise HTTPException(status_code=400, detail="Specify metric or category")

    def make_fetch(metric_name: str):
        async def fetch() -> MetricSeries:
            return await asyncio.to_thread(reader.read_series, entity_id, metric_name, timeframe)

        return fetch

    requests = [MetricRequest(metric_name=n, fetch=make_fetch(n)) for n in names]
    result = await aggregator.analyze(
        entity_id,
        timeframe,
        requests,
        include_trend=include_trend,
        force_refresh=force_refresh,
    )
    return BatchResponse.from_result(result)


@router.get("/{entity_id}/outlook")
async def get_entity_outlook(
    entity_id: str,
    metric: str = Query(..., min_length=1, description="Metric name"),
    timeframe: str = Query(default="24h"),
    lookback: int = Query(default=7, ge=1, description="Samples per compared window"),
    aggregator: SignalAggregator = Depends(get_aggregator),
    reader: SeriesReader = Depends(get_series_reader),
) -> dict[str, Any]:
    """Recent-versus-older outlook with support and resistance for one metric."""

    async def fetch() -> MetricSeries:
        return await asyncio.to_thread(reader.read_series, entity_id, metric, timeframe)

    try:
        outlook = await aggregator.outlook(MetricRequest(metric_name=metric, fetch=fetch), lookback)
    except InvalidSeriesError as e:
        raise HTTPException(status_code=422, detail=str(e)) from e
    except ComputationTimeoutError as e:
        raise HTTPException(status_code=504, detail=str(e)) from e
    except SeriesFetchError as e:
        raise HTTPException(status_code=502, detail=str(e)) from e

    return {
        "entityId": entity_id,
        "metricName": metric,
        "timeframe": timeframe,
        "lookback": lookback,
        **outlook.to_dict(),
    }
