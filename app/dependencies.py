"""FastAPI dependencies that wire the store and forecaster to a request's DB session."""

from fastapi import Depends
from sqlalchemy.orm import Session

from app.config import settings
from app.database import get_db
from app.services.forecaster import ParkingForecaster
from app.services.reading_store import ReadingStore


def get_store(db: Session = Depends(get_db)) -> ReadingStore:
    return ReadingStore(db)


def get_forecaster(store: ReadingStore = Depends(get_store)) -> ParkingForecaster:
    return ParkingForecaster(
        store,
        lookback_days=settings.FORECAST_LOOKBACK_DAYS,
        tolerance_minutes=settings.SEASONAL_TOLERANCE_MINUTES,
    )
