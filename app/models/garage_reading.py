# app/models/garage_reading.py
"""
Garage occupancy time-series table.
One row per (garage_id, minute). Written by the scrape pipeline,
read by the forecaster, trend analysis and chart aggregation.
"""

from sqlalchemy import Column, Integer, String, DateTime, Float, UniqueConstraint
from app.database import Base


class GarageReading(Base):
    __tablename__ = "garage_readings"
    __table_args__ = (
        UniqueConstraint("garage_id", "timestamp", name="garage_readings_unique_reading"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    garage_id = Column(String(100), nullable=False, index=True)
    garage_name = Column(String(200), nullable=False)
    address = Column(String(300), nullable=False)
    occupied_percentage = Column(Float, nullable=False)
    capacity = Column(Integer)
    occupied_spaces = Column(Integer)
    timestamp = Column(DateTime, nullable=False, index=True)
    source_hash = Column(String(64))
    created_at = Column(DateTime, nullable=False)

    def __repr__(self):
        return f"<GarageReading {self.garage_id} {self.occupied_percentage}% @ {self.timestamp}>"
