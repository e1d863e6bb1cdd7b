# app/schemas/aggregate.py
from enum import Enum
from pydantic import BaseModel
from datetime import datetime
from typing import Optional


class BucketSize(str, Enum):
    FIVE_MINUTES = "5min"
    HOURLY = "hourly"

    @property
    def minutes(self) -> int:
        return 5 if self is BucketSize.FIVE_MINUTES else 60


class AggregatedBucket(BaseModel):
    """
    One time-bucketed rollup. Stats stay None rather than 0 when a bucket
    has no readings, so charts can render gaps.
    """
    bucket_start: datetime
    avg_utilization: Optional[float] = None
    max_utilization: Optional[float] = None
    min_utilization: Optional[float] = None
    last_utilization: Optional[float] = None


class HistoryResponse(BaseModel):
    success: bool = True
    garage_id: str
    interval: BucketSize
    hours: int
    historical_data: list[AggregatedBucket]
    generated_at: datetime
