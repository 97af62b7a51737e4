"""Moving-average trend and signal analyzer."""

import math
from typing import Sequence

from signal_engine.config.thresholds import SignalBands
from signal_engine.models.series import MetricSeries
from signal_engine.models.trend import (
    MAPoint,
    MAState,
    TradingSignal,
    Trend,
    TrendDirection,
    TrendOutlook,
)

SeriesInput = MetricSeries | Sequence[float]

_OUTLOOK_BAND = 0.02  # +/-2% between recent and older windows
_SUPPORT_FACTOR = 0.98
_RESISTANCE_FACTOR = 1.02


class TrendAnalyzer:
    """Derives moving-average state and trading signals from a series.
    
    Signals are evaluated in priority order: overbought, oversold,
    buy (MA rising while price is below it), sell (MA falling while price
    is above it), otherwise neutral.
    """

    def __init__(
        self,
        period: int = 30,
        signal_bands: SignalBands | None = None,
        stable_tolerance_percent: float = 0.0,
    ) -> None:
        """Initialize the analyzer.
        
        Args:
            period: Default moving-average window
            signal_bands: Default distance bands for signals
            stable_tolerance_percent: MA changes within this percentage
                count as a stable trend
        """
        if period < 1:
            raise ValueError("Period must be positive")
        if stable_tolerance_percent < 0:
            raise ValueError("Stable tolerance cannot be negative")
        self._period = period
        self._bands = signal_bands or SignalBands()
        self._stable_tolerance = stable_tolerance_percent

    @property
    def period(self) -> int:
        """Default moving-average window."""
        return self._period

    def moving_average(self, data: SeriesInput, period: int | None = None) -> list[MAPoint]:
        """Simple moving average for every index with a full trailing window.
        
        Indices with fewer than ``period`` samples of history emit nothing.
        """
        period = self._resolve_period(period)
        timestamps, values = _unpack(data)

        points: list[MAPoint] = []
        for index in range(period - 1, len(values)):
            ma = math.fsum(values[index - period + 1 : index + 1]) / period
            value = values[index]
            points.append(
                MAPoint(
                    timestamp=timestamps[index],
                    value=value,
                    moving_average=ma,
                    deviation_percent=_percent_from(value, ma),
                )
            )
        return points

    def analyze(
        self,
        data: SeriesInput,
        period: int | None = None,
        signal_bands: SignalBands | None = None,
    ) -> MAState:
        """Compute the moving-average state at the latest sample.
        
        Args:
            data: Series or values in timestamp order
            period: Moving-average window (defaults to the analyzer period)
            signal_bands: Band override for this metric
            
        Returns:
            MA state. A series shorter than the period yields a stable,
            neutral state with zero strength and no MA value. A zero MA
            has no percentage distance: the state reports none, with a
            neutral signal and zero strength.
        """
        period = self._resolve_period(period)
        bands = signal_bands or self._bands
        _, values = _unpack(data)
        points = self.moving_average(data, period)

        if not points:
            return MAState(
                current_value=values[-1] if values else None,
                current_ma=None,
                trend=Trend.STABLE,
                distance_from_ma_percent=None,
                volatility=0.0,
                signal=TradingSignal.NEUTRAL,
                strength=0.0,
                period=period,
                insufficient_data=True,
            )

        latest = points[-1]
        previous_ma = points[-2].moving_average if len(points) > 1 else latest.moving_average
        trend = self._trend(latest.moving_average, previous_ma)
        distance = latest.deviation_percent

        deviations = [abs(p.deviation_percent) for p in points[-period:] if p.deviation_percent is not None]
        volatility = math.fsum(deviations) / len(deviations) if deviations else 0.0

        if distance is None:
            signal = TradingSignal.NEUTRAL
            strength = 0.0
        else:
            signal = classify_signal(distance, trend, bands)
            strength = min(100.0, abs(distance) * 2 + volatility)

        return MAState(
            current_value=latest.value,
            current_ma=latest.moving_average,
            trend=trend,
            distance_from_ma_percent=distance,
            volatility=volatility,
            signal=signal,
            strength=strength,
            period=period,
        )

    def outlook(self, data: SeriesInput, lookback: int = 7) -> TrendOutlook:
        """Compare the last ``lookback`` samples with the ones before them."""
        if lookback < 1:
            raise ValueError("Lookback must be positive")
        _, values = _unpack(data)
        if len(values) < 2:
            return TrendOutlook(
                direction=TrendDirection.SIDEWAYS,
                strength=0.0,
                momentum=0.0,
                support=0.0,
                resistance=0.0,
            )

        recent = values[-lookback:]
        older = values[-2 * lookback : -lookback]
        direction = TrendDirection.SIDEWAYS
        strength = 0.0
        if older:
            recent_avg = math.fsum(recent) / len(recent)
            older_avg = math.fsum(older) / len(older)
            if recent_avg > older_avg * (1 + _OUTLOOK_BAND):
                direction = TrendDirection.BULLISH
            elif recent_avg < older_avg * (1 - _OUTLOOK_BAND):
                direction = TrendDirection.BEARISH
            if older_avg != 0:
                strength = abs((recent_avg - older_avg) / older_avg) * 100

        return TrendOutlook(
            direction=direction,
            strength=strength,
            momentum=_percent_from(values[-1], values[-2]),
            support=min(values) * _SUPPORT_FACTOR,
            resistance=max(values) * _RESISTANCE_FACTOR,
        )

    def _resolve_period(self, period: int | None) -> int:
        period = self._period if period is None else period
        if period < 1:
            raise ValueError("Period must be positive")
        return period

    def _trend(self, current_ma: float, previous_ma: float) -> Trend:
        change = current_ma - previous_ma
        if change == 0:
            return Trend.STABLE
        if self._stable_tolerance and previous_ma != 0:
            if abs(change / previous_ma) * 100 <= self._stable_tolerance:
                return Trend.STABLE
        return Trend.UP if change > 0 else Trend.DOWN


def classify_signal(distance_percent: float, trend: Trend, bands: SignalBands) -> TradingSignal:
    """Map distance from MA and MA trend to a trading signal."""
    if distance_percent > bands.overbought_above:
        return TradingSignal.OVERBOUGHT
    if distance_percent < bands.oversold_below:
        return TradingSignal.OVERSOLD
    if trend == Trend.UP and distance_percent < bands.buy_below:
        return TradingSignal.BUY_SIGNAL
    if trend == Trend.DOWN and distance_percent > bands.sell_above:
        return TradingSignal.SELL_SIGNAL
    return TradingSignal.NEUTRAL


def _percent_from(value: float, reference: float) -> float | None:
    if reference == 0:
        return None
    return (value - reference) / reference * 100


def _unpack(data: SeriesInput) -> tuple[list, list[float]]:
    if isinstance(data, MetricSeries):
        return [s.timestamp for s in data.samples], data.values
    values = [float(v) for v in data]
    return [None] * len(values), values
