"""
Garage status page scraper.

Fetches the plain garage status page and extracts one entry per garage:

    <div class="garage">
      <h2 class="garage__name">South Garage</h2>
      <a class="garage__address" href="https://maps...">377 S. 7th St.</a>
      <span class="garage__fullness">87 %</span>
    </div>

Garages reported as "Full" are stored as 100%.
"""

import hashlib
import json
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

import httpx
from bs4 import BeautifulSoup

from app.config import settings
from app.schemas.reading import Reading
from app.utils.logger import get_logger
from app.utils.timeutils import utcnow

logger = get_logger(__name__)

_HEADERS = {
    "User-Agent": "Mozilla/5.0 (compatible; Garage-Forecast-Scraper/1.0)",
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.5",
}

_LAST_UPDATED_RE = re.compile(
    r"Last updated\s+(\d{1,4}[-/]\d{1,2}[-/]\d{1,4}\s+\d{1,2}:\d{2}(?::\d{2})?(?:\s*[AP]M)?)",
    re.IGNORECASE,
)
_LAST_UPDATED_FORMATS = ("%Y-%m-%d %I:%M:%S %p", "%Y-%m-%d %H:%M:%S", "%m/%d/%Y %I:%M:%S %p")


class ScraperError(Exception):
    """Upstream page could not be fetched."""


@dataclass
class ScrapedGarage:
    garage_id: str
    garage_name: str
    address: str
    occupied_percentage: float
    raw_fullness: str = ""
    map_url: Optional[str] = None


def generate_garage_id(garage_name: str) -> str:
    """Stable id from a garage name: "South Garage " -> "south-garage"."""
    garage_id = re.sub(r"\s+", "-", garage_name.strip().lower())
    garage_id = re.sub(r"[^a-z0-9-]", "", garage_id)
    return garage_id.strip("-")


def parse_occupancy(text: str) -> float:
    """"87 %" -> 87.0, "Full" -> 100.0, anything unparsable -> 0.0."""
    text = (text or "").strip()
    if text.lower() == "full":
        return 100.0
    match = re.search(r"-?\d+(?:\.\d+)?", text.replace("%", ""))
    if not match:
        return 0.0
    return min(100.0, max(0.0, float(match.group())))


def parse_garage_html(html: str) -> list[ScrapedGarage]:
    soup = BeautifulSoup(html, "html.parser")
    garages = []

    for block in soup.select(".garage"):
        name_tag = block.select_one(".garage__name")
        address_tag = block.select_one(".garage__address")
        fullness_tag = block.select_one(".garage__fullness")

        garage_name = name_tag.get_text(" ", strip=True) if name_tag else ""
        address = address_tag.get_text(" ", strip=True) if address_tag else ""
        if not garage_name or not address:
            continue

        fullness = fullness_tag.get_text(" ", strip=True) if fullness_tag else ""
        garages.append(ScrapedGarage(
            garage_id=generate_garage_id(garage_name),
            garage_name=garage_name,
            address=address,
            occupied_percentage=parse_occupancy(fullness),
            raw_fullness=fullness,
            map_url=address_tag.get("href"),
        ))
        logger.debug(f"Scraped: {garage_name} - {fullness!r} ({address})")

    if not garages:
        logger.warning(f"No garage data found. HTML structure might have changed. Sample: {html[:500]!r}")
    return garages


def parse_last_updated(html: str) -> Optional[datetime]:
    """Page timestamp from the `.timestamp` element, e.g. "Last updated 2025-8-17 9:01:00 PM"."""
    soup = BeautifulSoup(html, "html.parser")
    tag = soup.select_one(".timestamp")
    if not tag:
        return None
    match = _LAST_UPDATED_RE.search(tag.get_text(" ", strip=True))
    if not match:
        return None
    raw = match.group(1).strip()
    for fmt in _LAST_UPDATED_FORMATS:
        try:
            return datetime.strptime(raw, fmt)
        except ValueError:
            continue
    return None


def generate_source_hash(garages: list[ScrapedGarage]) -> str:
    """md5 over the sorted (id, percentage) pairs; an unchanged page gives an unchanged hash."""
    payload = sorted(
        ({"id": g.garage_id, "pct": g.occupied_percentage} for g in garages),
        key=lambda item: item["id"],
    )
    return hashlib.md5(json.dumps(payload, separators=(",", ":")).encode("utf-8")).hexdigest()


class ParkingScraper:
    def __init__(self, url: Optional[str] = None, timeout: Optional[float] = None,
                 verify_ssl: Optional[bool] = None):
        self.url = url or settings.PARKING_STATUS_URL
        self.timeout = timeout if timeout is not None else settings.SCRAPER_TIMEOUT_SECONDS
        self.verify_ssl = settings.SCRAPER_VERIFY_SSL if verify_ssl is None else verify_ssl

    async def fetch_html(self) -> str:
        logger.info(f"Fetching parking data from: {self.url}")
        try:
            async with httpx.AsyncClient(timeout=self.timeout, verify=self.verify_ssl,
                                         headers=_HEADERS, follow_redirects=True) as client:
                response = await client.get(self.url)
        except httpx.HTTPError as e:
            raise ScraperError(f"Failed to fetch parking data: {e}") from e

        if response.status_code != 200:
            raise ScraperError(f"Upstream returned HTTP {response.status_code}")
        return response.text

    async def scrape_garage_data(self) -> list[ScrapedGarage]:
        html = await self.fetch_html()
        garages = parse_garage_html(html)
        logger.info(f"Scraped {len(garages)} garages")
        return garages

    @staticmethod
    def convert_to_readings(garages: list[ScrapedGarage],
                            timestamp: Optional[datetime] = None) -> list[Reading]:
        """One reading per garage, all sharing the batch timestamp and source hash."""
        timestamp = timestamp or utcnow()
        source_hash = generate_source_hash(garages)
        return [
            Reading(
                garage_id=g.garage_id,
                garage_name=g.garage_name,
                address=g.address,
                occupied_percentage=g.occupied_percentage,
                timestamp=timestamp,
                source_hash=source_hash,
            )
            for g in garages
        ]

    async def health_check(self) -> dict:
        """Scrape once and summarise, including the page's own update time. Never raises."""
        try:
            html = await self.fetch_html()
        except ScraperError as e:
            return {"success": False, "message": str(e)}

        garages = parse_garage_html(html)
        if not garages:
            return {"success": False, "message": "No garage data found"}

        last_updated = parse_last_updated(html)
        return {
            "success": True,
            "message": f"Successfully scraped {len(garages)} garages",
            "data": {
                "garage_count": len(garages),
                "last_updated": last_updated.isoformat() if last_updated else None,
                "garages": [{"name": g.garage_name, "utilization": g.occupied_percentage} for g in garages],
            },
        }
