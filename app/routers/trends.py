"""
Trend analysis and chart history endpoints.
Bucketed history is sparse: hours without readings are omitted, never zero-filled.
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from starlette.concurrency import run_in_threadpool

from app.config import settings
from app.dependencies import get_forecaster, get_store
from app.schemas.aggregate import BucketSize, HistoryResponse
from app.schemas.forecast import TrendsResponse
from app.services.forecaster import ParkingForecaster
from app.services.reading_store import ReadingStore
from app.utils.timeutils import utcnow

router = APIRouter()


@router.get("/trends", response_model=TrendsResponse, summary="Trend analysis + hourly history")
async def get_trends(garage_id: Optional[str] = None,
                     days: int = settings.DEFAULT_TREND_DAYS,
                     forecaster: ParkingForecaster = Depends(get_forecaster),
                     store: ReadingStore = Depends(get_store)):
    if not garage_id:
        raise HTTPException(status_code=400, detail="garage_id parameter is required")
    if days < 1 or days > settings.MAX_TREND_DAYS:
        raise HTTPException(
            status_code=400,
            detail=f"days parameter must be between 1 and {settings.MAX_TREND_DAYS}",
        )

    trend = await forecaster.get_trend_analysis(garage_id, days)
    history = await run_in_threadpool(store.get_aggregated_data, garage_id, BucketSize.HOURLY, days * 24)

    return TrendsResponse(
        garage_id=garage_id,
        analysis_period_days=days,
        trend_analysis=trend,
        historical_data=history,
        generated_at=utcnow(),
    )


@router.get("/history", response_model=HistoryResponse, summary="Bucketed occupancy history for charts")
def get_history(garage_id: str, interval: BucketSize = BucketSize.FIVE_MINUTES, hours: int = 24,
                store: ReadingStore = Depends(get_store)):
    if hours < 1 or hours > settings.MAX_HISTORY_HOURS:
        raise HTTPException(
            status_code=400,
            detail=f"hours parameter must be between 1 and {settings.MAX_HISTORY_HOURS}",
        )
    return HistoryResponse(
        garage_id=garage_id,
        interval=interval,
        hours=hours,
        historical_data=store.get_aggregated_data(garage_id, interval, hours),
        generated_at=utcnow(),
    )
