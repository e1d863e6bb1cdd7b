"""
Garage occupancy forecasting and trend analysis.

Forecasts are seasonal-naive with tiered fallbacks. Parking occupancy repeats
strongly by time of day and day of week, but any single past minute may be
missing, so each tier trades specificity for data availability:

    1. seasonal_naive_weekly   reading from the same minute one week earlier (±5 min)   ±10
    2. weekday_hourly_average  mean of readings with the same weekday and hour          ±15
    3. hourly_average          mean of readings with the same hour of day              ±20
    4. overall_average         mean of every loaded reading                            ±25

Trend analysis fits an ordinary least-squares line of occupancy against the
sample index (not wall-clock time, so uneven sampling is not corrected for)
and ranks hours of the day into peak / off-peak sets.

The forecaster holds no state between calls beyond its injected store.
Hour and weekday are evaluated on the stored naive-UTC timestamps.
"""

import math
from datetime import datetime, timedelta
from typing import Optional, Sequence

from starlette.concurrency import run_in_threadpool

from app.schemas.forecast import (
    ConfidenceInterval,
    ForecastMethod,
    ForecastPrediction,
    TrendAnalysis,
    TrendDirection,
)
from app.schemas.reading import Reading
from app.utils.logger import get_logger
from app.utils.timeutils import truncate_to_minute, utcnow

logger = get_logger(__name__)

CONFIDENCE_BANDS = {
    ForecastMethod.SEASONAL_NAIVE_WEEKLY: 10.0,
    ForecastMethod.WEEKDAY_HOURLY_AVERAGE: 15.0,
    ForecastMethod.HOURLY_AVERAGE: 20.0,
    ForecastMethod.OVERALL_AVERAGE: 25.0,
}

SEASON = timedelta(days=7)
STABLE_THRESHOLD = 1.0       # |change_percentage| below this is "stable"
PEAK_SHARE_TENTHS = 3        # top / bottom 30% of observed hours


class NoHistoricalDataError(Exception):
    """Raised when a garage has no readings at all inside the lookback window."""

    def __init__(self, garage_id: str):
        self.garage_id = garage_id
        super().__init__(f"No historical data available for garage {garage_id}")


def _clamp(value: float) -> float:
    return min(100.0, max(0.0, value))


class HistoryProfile:
    """
    Lookup tables built once from a garage's readings and reused for every
    forecast minute: exact-minute index, weekday×hour and hour-of-day
    accumulators, and the overall mean.
    """

    def __init__(self, readings: Sequence[Reading]):
        if not readings:
            raise ValueError("HistoryProfile needs at least one reading")

        self.by_minute: dict[datetime, float] = {}
        self.weekday_hour_sums = [[0.0] * 24 for _ in range(7)]
        self.weekday_hour_counts = [[0] * 24 for _ in range(7)]
        self.hour_sums = [0.0] * 24
        self.hour_counts = [0] * 24
        total = 0.0

        for reading in readings:
            ts = truncate_to_minute(reading.timestamp)
            value = reading.occupied_percentage
            # First reading seen for a minute wins, matching the earliest-first tie rule
            self.by_minute.setdefault(ts, value)
            self.weekday_hour_sums[ts.weekday()][ts.hour] += value
            self.weekday_hour_counts[ts.weekday()][ts.hour] += 1
            self.hour_sums[ts.hour] += value
            self.hour_counts[ts.hour] += 1
            total += value

        self.overall_mean = total / len(readings)

    def weekly_match(self, target: datetime, tolerance_minutes: int) -> Optional[float]:
        """
        Reading nearest to `target - 7 days` within the tolerance. Smaller
        minute distance wins; at equal distance the earlier reading wins.
        """
        anchor = truncate_to_minute(target) - SEASON
        for distance in range(tolerance_minutes + 1):
            offsets = (0,) if distance == 0 else (-distance, distance)
            for offset in offsets:
                value = self.by_minute.get(anchor + timedelta(minutes=offset))
                if value is not None:
                    return value
        return None

    def weekday_hour_average(self, target: datetime) -> Optional[float]:
        count = self.weekday_hour_counts[target.weekday()][target.hour]
        if not count:
            return None
        return self.weekday_hour_sums[target.weekday()][target.hour] / count

    def hour_average(self, target: datetime) -> Optional[float]:
        count = self.hour_counts[target.hour]
        if not count:
            return None
        return self.hour_sums[target.hour] / count

    def predict(self, garage_id: str, target: datetime, tolerance_minutes: int) -> ForecastPrediction:
        """Walk the fallback tiers until one produces a value."""
        tiers = (
            (ForecastMethod.SEASONAL_NAIVE_WEEKLY, lambda: self.weekly_match(target, tolerance_minutes)),
            (ForecastMethod.WEEKDAY_HOURLY_AVERAGE, lambda: self.weekday_hour_average(target)),
            (ForecastMethod.HOURLY_AVERAGE, lambda: self.hour_average(target)),
        )
        for method, estimate in tiers:
            value = estimate()
            if value is not None:
                return build_prediction(garage_id, target, value, method)
        return build_prediction(garage_id, target, self.overall_mean, ForecastMethod.OVERALL_AVERAGE)


def build_prediction(garage_id: str, target: datetime, value: float,
                     method: ForecastMethod) -> ForecastPrediction:
    value = _clamp(value)
    band = CONFIDENCE_BANDS[method]
    return ForecastPrediction(
        garage_id=garage_id,
        timestamp=target,
        predicted_utilization=value,
        confidence_interval=ConfidenceInterval(lower=_clamp(value - band), upper=_clamp(value + band)),
        method=method,
    )


def linear_trend_change(values: Sequence[float]) -> float:
    """
    Percentage change implied by the OLS line over the whole series,
    relative to the mean level: slope × n / mean × 100.
    """
    n = len(values)
    if n < 2:
        return 0.0

    x_sum = n * (n - 1) / 2
    x2_sum = (n - 1) * n * (2 * n - 1) / 6
    y_sum = sum(values)
    xy_sum = sum(i * y for i, y in enumerate(values))

    slope = (n * xy_sum - x_sum * y_sum) / (n * x2_sum - x_sum * x_sum)
    mean = y_sum / n
    if mean == 0:
        return 0.0
    return slope * n / mean * 100


def classify_trend(change_percentage: float) -> TrendDirection:
    if abs(change_percentage) < STABLE_THRESHOLD:
        return TrendDirection.STABLE
    return TrendDirection.INCREASING if change_percentage > 0 else TrendDirection.DECREASING


def rank_hours(readings: Sequence[Reading]) -> tuple[list[int], list[int]]:
    """
    Peak and off-peak hours of day, each sorted ascending.

    Hours are ranked by average occupancy (ties: lower hour first); each list
    takes ceil(30%) of the hours actually observed. The two lists are sliced
    independently and may overlap when few hours are present.
    """
    sums = [0.0] * 24
    counts = [0] * 24
    for reading in readings:
        hour = reading.timestamp.hour
        sums[hour] += reading.occupied_percentage
        counts[hour] += 1

    averages = [(hour, sums[hour] / counts[hour]) for hour in range(24) if counts[hour]]
    if not averages:
        return [], []

    ranked = sorted(averages, key=lambda item: item[1], reverse=True)
    take = math.ceil(len(ranked) * PEAK_SHARE_TENTHS / 10)
    peak_hours = sorted(hour for hour, _ in ranked[:take])
    off_peak_hours = sorted(hour for hour, _ in ranked[-take:])
    return peak_hours, off_peak_hours


class ParkingForecaster:
    """
    Forecasting and trend engine over a reading store.

    `store` must provide get_historical_data(garage_id, days, now=...),
    list_distinct_garage_ids() and reset(); see
    app.services.reading_store.ReadingStore.
    """

    def __init__(self, store, lookback_days: int = 14, tolerance_minutes: int = 5):
        self.store = store
        self.lookback_days = lookback_days
        self.tolerance_minutes = tolerance_minutes
        self.failed_garages: list[str] = []

    async def _load_history(self, garage_id: str, days: int, now: datetime) -> list[Reading]:
        return await run_in_threadpool(self.store.get_historical_data, garage_id, days, now=now)

    async def seasonal_naive_forecast(self, garage_id: str, horizon_minutes: int = 60,
                                      now: Optional[datetime] = None) -> list[ForecastPrediction]:
        """One prediction per minute for now+1 .. now+horizon, ascending."""
        if horizon_minutes < 1:
            raise ValueError(f"horizon_minutes must be positive, got {horizon_minutes}")

        now = truncate_to_minute(now or utcnow())
        history = await self._load_history(garage_id, self.lookback_days, now)
        if not history:
            raise NoHistoricalDataError(garage_id)

        profile = HistoryProfile(history)
        predictions = [
            profile.predict(garage_id, now + timedelta(minutes=offset), self.tolerance_minutes)
            for offset in range(1, horizon_minutes + 1)
        ]
        logger.debug(
            f"Forecast {garage_id}: {horizon_minutes} min from {len(history)} readings, "
            f"first method={predictions[0].method.value}"
        )
        return predictions

    async def get_trend_analysis(self, garage_id: str, days: int = 7,
                                 now: Optional[datetime] = None) -> TrendAnalysis:
        if days < 1:
            raise ValueError(f"days must be positive, got {days}")

        readings = await self._load_history(garage_id, days, now or utcnow())
        if len(readings) < 2:
            return TrendAnalysis()

        change = linear_trend_change([r.occupied_percentage for r in readings])
        peak_hours, off_peak_hours = rank_hours(readings)
        return TrendAnalysis(
            trend=classify_trend(change),
            change_percentage=change,
            peak_hours=peak_hours,
            off_peak_hours=off_peak_hours,
        )

    async def batch_forecast(self, horizon_minutes: int = 60,
                             now: Optional[datetime] = None) -> list[ForecastPrediction]:
        """
        Forecast every known garage. A garage that fails is logged and
        skipped; its id is left in `failed_garages`.
        """
        if horizon_minutes < 1:
            raise ValueError(f"horizon_minutes must be positive, got {horizon_minutes}")

        now = truncate_to_minute(now or utcnow())
        garage_ids = await run_in_threadpool(self.store.list_distinct_garage_ids)

        predictions: list[ForecastPrediction] = []
        failed: list[str] = []
        for garage_id in garage_ids:
            try:
                predictions.extend(await self.seasonal_naive_forecast(garage_id, horizon_minutes, now=now))
            except Exception as e:
                logger.error(f"Failed to forecast for garage {garage_id}: {e}")
                failed.append(garage_id)
                # A failed SELECT aborts the PostgreSQL transaction for every later garage
                await run_in_threadpool(self.store.reset)

        self.failed_garages = failed
        logger.info(f"Batch forecast: {len(garage_ids) - len(failed)}/{len(garage_ids)} garages, "
                    f"{len(predictions)} predictions")
        return predictions
