# Garage Forecast — Database Models
# Import all models here for SQLAlchemy discovery

from app.models.garage_reading import GarageReading   # noqa
from app.models.garage_info import GarageInfo         # noqa
