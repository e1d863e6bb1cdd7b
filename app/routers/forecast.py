"""
Occupancy forecast endpoints.
GET  /forecast — per-minute forecast for one garage.
POST /forecast — batch forecast for every known garage, grouped by garage.
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException

from app.config import settings
from app.dependencies import get_forecaster
from app.schemas.forecast import BatchForecastRequest, BatchForecastResponse, ForecastResponse
from app.services.forecaster import NoHistoricalDataError, ParkingForecaster
from app.utils.logger import get_logger
from app.utils.timeutils import utcnow

router = APIRouter()
logger = get_logger(__name__)


def _check_minutes(minutes: int, label: str):
    if minutes < 1 or minutes > settings.MAX_FORECAST_MINUTES:
        raise HTTPException(
            status_code=400,
            detail=f"{label} must be between 1 and {settings.MAX_FORECAST_MINUTES}",
        )


@router.get("/forecast", response_model=ForecastResponse, summary="Forecast one garage")
async def get_forecast(garage_id: Optional[str] = None,
                       minutes: int = settings.DEFAULT_FORECAST_MINUTES,
                       forecaster: ParkingForecaster = Depends(get_forecaster)):
    """Seasonal-naive forecast, one prediction per minute for the next `minutes`."""
    if not garage_id:
        raise HTTPException(status_code=400, detail="garage_id parameter is required")
    _check_minutes(minutes, "minutes parameter")

    try:
        predictions = await forecaster.seasonal_naive_forecast(garage_id, minutes)
    except NoHistoricalDataError as e:
        logger.warning(f"Forecast requested for garage without data: {e.garage_id}")
        raise HTTPException(status_code=404, detail=str(e))

    return ForecastResponse(
        garage_id=garage_id,
        forecast_minutes=minutes,
        predictions=predictions,
        generated_at=utcnow(),
    )


@router.post("/forecast", response_model=BatchForecastResponse, summary="Forecast all garages")
async def batch_forecast(body: BatchForecastRequest,
                         forecaster: ParkingForecaster = Depends(get_forecaster)):
    """Garages without data are skipped and listed in `failed_garages`."""
    _check_minutes(body.minutes, "minutes")

    predictions = await forecaster.batch_forecast(body.minutes)
    by_garage: dict = {}
    for prediction in predictions:
        by_garage.setdefault(prediction.garage_id, []).append(prediction)

    return BatchForecastResponse(
        forecast_minutes=body.minutes,
        total_predictions=len(predictions),
        garages=len(by_garage),
        predictions_by_garage=by_garage,
        failed_garages=forecaster.failed_garages,
        generated_at=utcnow(),
    )
