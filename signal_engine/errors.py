"""Error taxonomy for the signal engine."""


class SignalEngineError(Exception):
    """Base class for all signal engine errors."""


class InsufficientDataError(SignalEngineError):
    """Fewer samples than required to reach a verdict."""

    def __init__(self, metric_name: str, sample_count: int, required: int) -> None:
        self.metric_name = metric_name
        self.sample_count = sample_count
        self.required = required
        super().__init__(
            f"Insufficient data for {metric_name}: "
            f"need at least {required} samples, got {sample_count}"
        )


class InvalidSeriesError(SignalEngineError):
    """Series has non-monotonic timestamps or non-finite values."""

    def __init__(self, metric_name: str, reason: str) -> None:
        self.metric_name = metric_name
        self.reason = reason
        super().__init__(f"Invalid series for {metric_name}: {reason}")


class CacheUnavailableError(SignalEngineError):
    """The result cache cannot serve requests."""


class ComputationTimeoutError(SignalEngineError):
    """A collaborator fetch exceeded its deadline or was cancelled."""


class SeriesFetchError(SignalEngineError):
    """A collaborator fetch failed for a reason other than a timeout."""


class ThresholdConfigError(SignalEngineError):
    """The per-metric threshold table is malformed."""
