"""Current occupancy for every garage (latest stored reading each)."""

from fastapi import APIRouter, Depends

from app.dependencies import get_store
from app.schemas.reading import GaragesResponse, GarageStatusOut
from app.services.reading_store import ReadingStore
from app.utils.timeutils import utcnow

router = APIRouter()


@router.get("/garages", response_model=GaragesResponse, summary="Latest reading per garage")
def list_garages(store: ReadingStore = Depends(get_store)):
    latest = store.get_latest_readings()
    return GaragesResponse(
        timestamp=utcnow(),
        garages=[
            GarageStatusOut(
                garage_id=r.garage_id,
                garage_name=r.garage_name,
                address=r.address,
                occupied_percentage=r.occupied_percentage,
                capacity=r.capacity,
                occupied_spaces=r.occupied_spaces,
                last_updated=r.timestamp,
            )
            for r in latest
        ],
    )
