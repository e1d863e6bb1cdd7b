"""
Scrape trigger endpoints.
POST /scrape — fetch the status page and store one reading per garage
               (Bearer CRON_SECRET required when configured).
GET  /scrape — scraper health probe, stores nothing.
"""

from fastapi import APIRouter, Depends, HTTPException, Request

from app.config import settings
from app.dependencies import get_store
from app.services.reading_store import ReadingStore
from app.services.scraper import ParkingScraper, ScraperError
from app.utils.logger import get_logger
from app.utils.timeutils import utcnow

router = APIRouter()
logger = get_logger(__name__)


def get_scraper() -> ParkingScraper:
    return ParkingScraper()


def _check_cron_secret(request: Request):
    if not settings.CRON_SECRET:
        return
    if request.headers.get("authorization") != f"Bearer {settings.CRON_SECRET}":
        raise HTTPException(status_code=401, detail="Unauthorized")


@router.post("/scrape", summary="Scrape and store current garage occupancy")
async def run_scrape(request: Request,
                     scraper: ParkingScraper = Depends(get_scraper),
                     store: ReadingStore = Depends(get_store)):
    _check_cron_secret(request)
    logger.info("Starting garage data scraping...")

    try:
        garages = await scraper.scrape_garage_data()
    except ScraperError as e:
        logger.error(f"Scrape failed: {e}")
        raise HTTPException(status_code=502, detail=str(e))

    if not garages:
        raise HTTPException(status_code=404, detail="No garage data found")

    readings = scraper.convert_to_readings(garages)
    store.insert_readings(readings, {g.garage_id: g.map_url for g in garages})
    logger.info(f"Successfully scraped and stored data for {len(garages)} garages")

    return {
        "success": True,
        "timestamp": utcnow().isoformat(),
        "garages_updated": len(garages),
        "data": [
            {
                "garage_id": g.garage_id,
                "garage_name": g.garage_name,
                "occupied_percentage": g.occupied_percentage,
                "address": g.address,
            }
            for g in garages
        ],
    }


@router.get("/scrape", summary="Scraper health probe")
async def scrape_health(scraper: ParkingScraper = Depends(get_scraper)):
    result = await scraper.health_check()
    result["timestamp"] = utcnow().isoformat()
    return result
