# app/schemas/forecast.py
from enum import Enum
from pydantic import BaseModel, Field
from datetime import datetime

from app.schemas.aggregate import AggregatedBucket


class ForecastMethod(str, Enum):
    SEASONAL_NAIVE_WEEKLY = "seasonal_naive_weekly"
    WEEKDAY_HOURLY_AVERAGE = "weekday_hourly_average"
    HOURLY_AVERAGE = "hourly_average"
    OVERALL_AVERAGE = "overall_average"


class TrendDirection(str, Enum):
    INCREASING = "increasing"
    DECREASING = "decreasing"
    STABLE = "stable"


class ConfidenceInterval(BaseModel):
    lower: float = Field(ge=0, le=100)
    upper: float = Field(ge=0, le=100)


class ForecastPrediction(BaseModel):
    garage_id: str
    timestamp: datetime
    predicted_utilization: float = Field(ge=0, le=100)
    confidence_interval: ConfidenceInterval
    method: ForecastMethod


class TrendAnalysis(BaseModel):
    trend: TrendDirection = TrendDirection.STABLE
    change_percentage: float = 0.0
    peak_hours: list[int] = []
    off_peak_hours: list[int] = []


class ForecastResponse(BaseModel):
    success: bool = True
    garage_id: str
    forecast_minutes: int
    predictions: list[ForecastPrediction]
    generated_at: datetime


class BatchForecastRequest(BaseModel):
    minutes: int = 60


class BatchForecastResponse(BaseModel):
    success: bool = True
    forecast_minutes: int
    total_predictions: int
    garages: int
    predictions_by_garage: dict[str, list[ForecastPrediction]]
    failed_garages: list[str] = []
    generated_at: datetime


class TrendsResponse(BaseModel):
    success: bool = True
    garage_id: str
    analysis_period_days: int
    trend_analysis: TrendAnalysis
    historical_data: list[AggregatedBucket]
    generated_at: datetime
