"""
Static garage information (name, address, map link).
Upserted from every scrape so the latest descriptive values win.
"""

from sqlalchemy import Column, String, DateTime, Text
from app.database import Base


class GarageInfo(Base):
    __tablename__ = "garage_info"

    garage_id = Column(String(100), primary_key=True)
    garage_name = Column(String(200), nullable=False)
    address = Column(String(300), nullable=False)
    map_url = Column(Text)
    created_at = Column(DateTime, nullable=False)

    def __repr__(self):
        return f"<GarageInfo {self.garage_id} '{self.garage_name}'>"
