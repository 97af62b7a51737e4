"""Moving-average trend and signal models."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any


class Trend(str, Enum):
    """Direction of the moving average."""

    UP = "up"
    DOWN = "down"
    STABLE = "stable"


class TradingSignal(str, Enum):
    """Signal derived from distance to the moving average and trend."""

    OVERBOUGHT = "overbought"
    OVERSOLD = "oversold"
    BUY_SIGNAL = "buy_signal"
    SELL_SIGNAL = "sell_signal"
    NEUTRAL = "neutral"


class TrendDirection(str, Enum):
    """Coarse market direction over recent windows."""

    BULLISH = "bullish"
    BEARISH = "bearish"
    SIDEWAYS = "sideways"


@dataclass(frozen=True)
class MAPoint:
    """One emitted moving-average point."""

    timestamp: datetime | None
    value: float
    moving_average: float
    deviation_percent: float | None  # (value - MA) / MA * 100, None for a zero MA

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
            "value": self.value,
            "movingAverage": self.moving_average,
            "maDeviation": self.deviation_percent,
        }


def _optional_float(value: Any) -> float | None:
    return None if value is None else float(value)


@dataclass(frozen=True)
class MAState:
    """Moving-average state of a series at its latest sample.

    ``current_ma`` and ``distance_from_ma_percent`` are ``None`` when the
    series is shorter than the period: no value is fabricated.
    """

    current_value: float | None
    current_ma: float | None
    trend: Trend
    distance_from_ma_percent: float | None
    volatility: float
    signal: TradingSignal
    strength: float
    period: int
    insufficient_data: bool = False

    def __post_init__(self) -> None:
        """Validate constraints and normalize numeric types."""
        object.__setattr__(self, "current_value", _optional_float(self.current_value))
        object.__setattr__(self, "current_ma", _optional_float(self.current_ma))
        object.__setattr__(
            self, "distance_from_ma_percent", _optional_float(self.distance_from_ma_percent)
        )
        object.__setattr__(self, "volatility", float(self.volatility))
        object.__setattr__(self, "strength", float(self.strength))
        if not isinstance(self.trend, Trend):
            object.__setattr__(self, "trend", Trend(self.trend))
        if not isinstance(self.signal, TradingSignal):
            object.__setattr__(self, "signal", TradingSignal(self.signal))
        if not 0.0 <= self.strength <= 100.0:
            raise ValueError("Strength must be between 0 and 100")
        if self.period < 1:
            raise ValueError("Period must be positive")

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "currentValue": self.current_value,
            "currentMA": self.current_ma,
            "trend": self.trend.value,
            "distanceFromMAPercent": self.distance_from_ma_percent,
            "volatility": self.volatility,
            "signal": self.signal.value,
            "strength": self.strength,
            "period": self.period,
            "insufficientData": self.insufficient_data,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "MAState":
        """Create an MAState from a dictionary."""
        return cls(
            current_value=_optional_float(data["currentValue"]),
            current_ma=_optional_float(data["currentMA"]),
            trend=Trend(data["trend"]),
            distance_from_ma_percent=_optional_float(data["distanceFromMAPercent"]),
            volatility=float(data["volatility"]),
            signal=TradingSignal(data["signal"]),
            strength=float(data["strength"]),
            period=int(data["period"]),
            insufficient_data=bool(data.get("insufficientData", False)),
        )


@dataclass(frozen=True)
class TrendOutlook:
    """Recent-window trend summary with support and resistance levels."""

    direction: TrendDirection
    strength: float
    momentum: float | None  # Last-step rate of change, percent (None from zero)
    support: float
    resistance: float

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "trend": self.direction.value,
            "strength": self.strength,
            "momentum": self.momentum,
            "support": self.support,
            "resistance": self.resistance,
        }
