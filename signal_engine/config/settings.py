"""Signal engine configuration settings."""

import os
from dataclasses import dataclass

from signal_engine.config.thresholds import MetricThreshold, ThresholdTable, load_threshold_table


@dataclass(frozen=True)
class Settings:
    """Global settings for the signal engine and its hosting service."""

    # Algorithm versioning - MUST be updated when detection logic changes
    algorithm_version: str = "1.0.0"

    # Service identification
    service_name: str = "crypto-signal-engine"
    service_version: str = "0.1.0"

    # Baseline calculator
    baseline_window: int = 90  # Samples in the baseline window
    baseline_min_samples: int = 7  # Below this no verdict is possible
    recency_trend_factor: float = 0.0  # 0 disables recency weighting

    # Defaults for metrics missing from the threshold table
    ma_period: int = 30
    spike_threshold_percent: float = 20.0
    spike_cache_ttl_seconds: float = 300.0  # Spike results go stale quickly
    trend_cache_ttl_seconds: float = 1800.0

    # Result cache
    cache_max_entries: int = 1024

    # Collaborator fetches (series readers)
    fetch_timeout_ms: int = 5000
    series_source_url: str = "http://localhost:8200"
    series_data_dir: str | None = None  # For file-based reading

    # Per-metric threshold table (JSON)
    thresholds_path: str | None = None

    # Logging
    log_level: str = "INFO"
    log_json: bool = False

    # API settings
    api_prefix: str = "/api/v1"
    debug: bool = False

    @property
    def fetch_timeout_seconds(self) -> float:
        """Fetch deadline in seconds."""
        return self.fetch_timeout_ms / 1000.0

    def default_threshold(self) -> MetricThreshold:
        """Threshold record applied to metrics without an explicit entry."""
        return MetricThreshold(
            spike_threshold_percent=self.spike_threshold_percent,
            ma_period=self.ma_period,
            cache_ttl_seconds=self.spike_cache_ttl_seconds,
            trend_cache_ttl_seconds=self.trend_cache_ttl_seconds,
        )

    def load_thresholds(self) -> ThresholdTable:
        """Load the threshold table, or an empty table with the defaults."""
        if self.thresholds_path:
            table = load_threshold_table(self.thresholds_path)
            if "default" not in table.model_fields_set:
                table = table.model_copy(update={"default": self.default_threshold()})
            return table
        return ThresholdTable(default=self.default_threshold())

    @classmethod
    def from_env(cls) -> "Settings":
        """Load settings from environment variables."""
        return cls(
            algorithm_version=os.getenv("ALGORITHM_VERSION", "1.0.0"),
            baseline_window=int(os.getenv("BASELINE_WINDOW", "90")),
            baseline_min_samples=int(os.getenv("BASELINE_MIN_SAMPLES", "7")),
            recency_trend_factor=float(os.getenv("RECENCY_TREND_FACTOR", "0.0")),
            ma_period=int(os.getenv("MA_PERIOD", "30")),
            spike_threshold_percent=float(os.getenv("SPIKE_THRESHOLD_PERCENT", "20.0")),
            spike_cache_ttl_seconds=float(os.getenv("SPIKE_CACHE_TTL_SECONDS", "300")),
            trend_cache_ttl_seconds=float(os.getenv("TREND_CACHE_TTL_SECONDS", "1800")),
            cache_max_entries=int(os.getenv("CACHE_MAX_ENTRIES", "1024")),
            fetch_timeout_ms=int(os.getenv("FETCH_TIMEOUT_MS", "5000")),
            series_source_url=os.getenv("SERIES_SOURCE_URL", "http://localhost:8200"),
            series_data_dir=os.getenv("SERIES_DATA_DIR"),
            thresholds_path=os.getenv("THRESHOLDS_PATH"),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_json=os.getenv("LOG_JSON", "false").lower() == "true",
            debug=os.getenv("DEBUG", "false").lower() == "true",
        )


# Global settings instance
_settings: Settings | None = None


def get_settings() -> Settings:
    """Get or create the global settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings.from_env()
    return _settings


def configure(settings: Settings) -> None:
    """Configure the global settings (primarily for testing)."""
    global _settings
    _settings = settings


def reset_settings() -> None:
    """Reset settings to None (for testing)."""
    global _settings
    _settings = None
