"""
System health check endpoint.
Returns status of backend + DB + data freshness + upstream status page reachability.
"""

import requests
from fastapi import APIRouter, Depends
from sqlalchemy import inspect, text
from sqlalchemy.orm import Session

from app.config import settings
from app.database import get_db
from app.services.reading_store import ReadingStore
from app.utils.timeutils import utcnow

router = APIRouter()


@router.get("/health", summary="System health check")
def health_check(db: Session = Depends(get_db)):
    """
    Returns:
    - Database connectivity and whether garage_readings exists
    - Latest reading age, reading count and active garages over 24h
    - Upstream status page reachability
    Status is "unhealthy" without a database, "degraded" when data is
    missing or stale or the upstream page is unreachable.
    """
    result = {
        "status": "healthy",
        "timestamp": utcnow().isoformat(),
        "database": "unknown",
        "data": {},
        "upstream": "unknown",
    }

    # Check database
    try:
        db.execute(text("SELECT 1"))
        result["database"] = "ok"
    except Exception as e:
        result["database"] = f"error: {str(e)}"
        result["status"] = "unhealthy"
        return result

    if not inspect(db.get_bind()).has_table("garage_readings"):
        result["data"] = {
            "table_exists": False,
            "message": "Database connected but garage_readings table not found. Run initialization.",
        }
        result["status"] = "degraded"
    else:
        stats = ReadingStore(db).get_freshness_stats()
        minutes_since = stats["minutes_since_last_reading"]
        is_fresh = minutes_since is not None and minutes_since < settings.DATA_STALE_MINUTES
        result["data"] = {
            "table_exists": True,
            "latest_reading": stats["latest_reading"].isoformat() if stats["latest_reading"] else None,
            "total_readings_24h": stats["total_readings"],
            "active_garages": stats["active_garages"],
            "minutes_since_last_reading": minutes_since,
            "is_fresh": is_fresh,
        }
        if not is_fresh:
            result["status"] = "degraded"

    # Ping the upstream status page
    try:
        resp = requests.get(settings.PARKING_STATUS_URL, timeout=3, verify=settings.SCRAPER_VERIFY_SSL)
        result["upstream"] = "ok" if resp.status_code == 200 else f"http_{resp.status_code}"
        if resp.status_code != 200:
            result["status"] = "degraded"
    except requests.exceptions.ConnectionError:
        result["upstream"] = "unreachable"
        result["status"] = "degraded"
    except requests.exceptions.RequestException as e:
        result["upstream"] = f"error: {str(e)}"
        result["status"] = "degraded"

    return result
