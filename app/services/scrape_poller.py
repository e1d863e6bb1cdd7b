"""
Periodic ingestion: scrapes the garage status page on a fixed interval
and stores one reading per garage.

Runs as a background task started from app startup when
SCRAPE_POLLING_ENABLED is set. Failures back off exponentially
(doubling, capped at 5 minutes) and the loop never exits on its own.
"""

import asyncio
from typing import Optional

from app.database import SessionLocal
from app.services.reading_store import ReadingStore
from app.services.scraper import ParkingScraper
from app.utils.logger import get_logger

logger = get_logger(__name__)

_MAX_BACKOFF = 300


async def scrape_once(scraper: Optional[ParkingScraper] = None, session_factory=SessionLocal) -> int:
    """Scrape the status page and store the batch. Returns the number of garages stored."""
    scraper = scraper or ParkingScraper()
    garages = await scraper.scrape_garage_data()
    if not garages:
        logger.warning("⚠️  Scrape returned no garages — nothing stored")
        return 0

    readings = scraper.convert_to_readings(garages)
    map_urls = {g.garage_id: g.map_url for g in garages}

    # Use a fresh DB session per scrape
    db = session_factory()
    try:
        stored = ReadingStore(db).insert_readings(readings, map_urls)
    finally:
        db.close()

    logger.info(f"✅ Stored readings for {stored} garages")
    return stored


async def start_scrape_polling(interval_seconds: int):
    """Loop forever: scrape, store, sleep. Called once at backend startup."""
    if interval_seconds <= 0:
        logger.warning("Scrape interval not positive — polling disabled.")
        return

    logger.info(f"🚀 Starting scrape polling every {interval_seconds}s")
    scraper = ParkingScraper()
    delay = interval_seconds

    while True:
        try:
            await scrape_once(scraper)
            delay = interval_seconds  # reset on success
        except asyncio.CancelledError:
            raise
        except Exception as e:
            delay = min(delay * 2, max(_MAX_BACKOFF, interval_seconds))
            logger.error(f"❌ Scrape failed: {e}. Retry in {delay}s", exc_info=True)

        await asyncio.sleep(delay)
