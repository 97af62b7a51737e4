"""
Metric Series Readers

Collaborator-side access to the data-collection pipeline. The engine
itself never fetches; the hosting service resolves series through one of
these readers and hands them to the aggregator.

DESIGN RULES:
- READ-ONLY access only (HTTP GET)
- Failures surface as errors, never as empty-looking data:
  timeouts raise ComputationTimeoutError, anything else SeriesFetchError
- A source that simply has no samples yields an empty series, which the
  engine reports as insufficient data
"""

import copy
import json
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import Any

import requests

from signal_engine.config.settings import Settings, get_settings
from signal_engine.errors import ComputationTimeoutError, SeriesFetchError
from signal_engine.models.series import MetricSample, MetricSeries, parse_timestamp


class DataWindow:
    """Time window for series queries."""

    def __init__(
        self,
        start_time: datetime | None = None,
        end_time: datetime | None = None,
        limit: int = 1000,
    ):
        self.start_time = start_time
        self.end_time = end_time
        self.limit = limit

    def apply(self, samples: list[MetricSample]) -> list[MetricSample]:
        """Filter samples to the window and keep the most recent ``limit``."""
        if self.start_time:
            start = parse_timestamp(self.start_time)
            samples = [s for s in samples if s.timestamp >= start]
        if self.end_time:
            end = parse_timestamp(self.end_time)
            samples = [s for s in samples if s.timestamp <= end]
        if self.limit:
            samples = samples[-self.limit:]
        return samples


class SeriesReader(ABC):
    """
    Abstract base class for metric series readers.
    
    All readers are READ-ONLY.
    """

    @abstractmethod
    def read_series(
        self,
        entity_id: str,
        metric_name: str,
        timeframe: str,
        window: DataWindow | None = None,
    ) -> MetricSeries:
        """Read the historical series of one metric for one entity."""
        ...


class HTTPSeriesReader(SeriesReader):
    """
    Read series from the data-collection service over HTTP.
    
    DESIGN RULES (ENFORCED):
    - HTTP GET only (read-only)
    - Configurable timeout, no retries
    - NO POST/PUT/PATCH/DELETE
    """

    def __init__(self, base_url: str | None = None, timeout_seconds: float | None = None):
        settings = get_settings()
        self.base_url = (base_url or settings.series_source_url).rstrip("/")
        self.timeout_seconds = timeout_seconds or settings.fetch_timeout_seconds

    def _build_params(self, timeframe: str, window: DataWindow | None) -> dict[str, str]:
        """Build query parameters from the timeframe and DataWindow."""
        params: dict[str, str] = {"timeframe": timeframe}
        if window:
            if window.start_time:
                params["start_time"] = window.start_time.isoformat()
            if window.end_time:
                params["end_time"] = window.end_time.isoformat()
            if window.limit:
                params["limit"] = str(window.limit)
        return params

    def read_series(
        self,
        entity_id: str,
        metric_name: str,
        timeframe: str,
        window: DataWindow | None = None,
    ) -> MetricSeries:
        """
        Fetch a series from ``/series/{entity_id}/{metric_name}``.
        
        Raises:
            ComputationTimeoutError: The request exceeded its deadline
            SeriesFetchError: Network, HTTP or payload failure
        """
        url = f"{self.base_url}/series/{entity_id}/{metric_name}"
        params = self._build_params(timeframe, window)

        try:
            response = requests.get(url, params=params, timeout=self.timeout_seconds)
            response.raise_for_status()
            data = response.json()
        except requests.Timeout as e:
            raise ComputationTimeoutError(
                f"Series fetch for {entity_id}/{metric_name} timed out"
            ) from e
        except requests.RequestException as e:
            raise SeriesFetchError(f"Series fetch for {entity_id}/{metric_name} failed: {e}") from e
        except json.JSONDecodeError as e:
            raise SeriesFetchError(f"Series payload for {entity_id}/{metric_name} is not JSON") from e

        # Handle wrapped response format
        if isinstance(data, dict) and "data" in data:
            data = data["data"]
        return _series_from_payload(data, entity_id, metric_name, timeframe, window)


class FileSeriesReader(SeriesReader):
    """
    Read series from exported JSONL files.
    
    Layout: ``{data_dir}/{entity_id}/{metric_name}.jsonl`` with one
    ``{"timestamp": ..., "value": ...}`` object per line. Useful for replay
    analysis and testing.
    """

    def __init__(self, data_dir: str | None = None):
        settings = get_settings()
        self.data_dir = Path(data_dir or settings.series_data_dir or "data")

    def read_series(
        self,
        entity_id: str,
        metric_name: str,
        timeframe: str,
        window: DataWindow | None = None,
    ) -> MetricSeries:
        """Read a series from its JSONL file (missing file: empty series)."""
        filepath = self.data_dir / entity_id / f"{metric_name}.jsonl"

        records: list[dict[str, Any]] = []
        if filepath.exists():
            try:
                with open(filepath, "r") as f:
                    for line in f:
                        line = line.strip()
                        if line:
                            records.append(json.loads(line))
            except (OSError, json.JSONDecodeError) as e:
                raise SeriesFetchError(f"Cannot read series file {filepath}: {e}") from e

        return _series_from_payload(
            {"samples": records}, entity_id, metric_name, timeframe, window
        )


class InMemorySeriesReader(SeriesReader):
    """
    In-memory reader for testing.
    
    Holds ``{(entity_id, metric_name): [sample dicts]}`` and returns copies.
    """

    def __init__(self, series: dict[tuple[str, str], list[dict[str, Any]]] | None = None):
        self._series = copy.deepcopy(series) if series else {}

    def read_series(
        self,
        entity_id: str,
        metric_name: str,
        timeframe: str,
        window: DataWindow | None = None,
    ) -> MetricSeries:
        records = copy.deepcopy(self._series.get((entity_id, metric_name), []))
        return _series_from_payload(
            {"samples": records}, entity_id, metric_name, timeframe, window
        )


def _series_from_payload(
    data: Any,
    entity_id: str,
    metric_name: str,
    timeframe: str,
    window: DataWindow | None,
) -> MetricSeries:
    """Build a series from a payload holding ``samples`` (or a bare list)."""
    if isinstance(data, list):
        data = {"samples": data}
    if not isinstance(data, dict):
        raise SeriesFetchError(f"Unexpected series payload for {entity_id}/{metric_name}")

    try:
        samples = [MetricSample.from_dict(s) for s in data.get("samples", [])]
    except (KeyError, TypeError, ValueError) as e:
        raise SeriesFetchError(f"Malformed sample for {entity_id}/{metric_name}: {e}") from e

    if window:
        samples = window.apply(samples)

    return MetricSeries(
        entity_id=data.get("entityId", entity_id),
        metric_name=data.get("metricName", metric_name),
        timeframe=data.get("timeframe", timeframe),
        samples=tuple(samples),
    )


def get_reader(settings: Settings | None = None) -> SeriesReader:
    """
    Get the appropriate reader based on configuration.
    
    Prefers file-based if SERIES_DATA_DIR is set, otherwise uses HTTP.
    """
    settings = settings or get_settings()

    if settings.series_data_dir:
        return FileSeriesReader(settings.series_data_dir)
    return HTTPSeriesReader(settings.series_source_url, settings.fetch_timeout_seconds)
