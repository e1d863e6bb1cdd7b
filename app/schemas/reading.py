# app/schemas/reading.py
from pydantic import BaseModel, Field, field_validator
from datetime import datetime
from typing import Optional

from app.utils.timeutils import truncate_to_minute


class Reading(BaseModel):
    """One occupancy observation, validated once at the store/scraper edge."""
    garage_id: str
    garage_name: str
    address: str
    occupied_percentage: float = Field(ge=0, le=100)
    capacity: Optional[int] = None
    occupied_spaces: Optional[int] = None
    timestamp: datetime
    source_hash: Optional[str] = None

    class Config:
        from_attributes = True

    @field_validator("timestamp")
    @classmethod
    def truncate_timestamp(cls, value: datetime) -> datetime:
        return truncate_to_minute(value)


class GarageStatusOut(BaseModel):
    garage_id: str
    garage_name: str
    address: str
    occupied_percentage: float
    capacity: Optional[int] = None
    occupied_spaces: Optional[int] = None
    last_updated: datetime


class GaragesResponse(BaseModel):
    success: bool = True
    timestamp: datetime
    garages: list[GarageStatusOut]
