"""
Reading store: the read/write contract over the garage_readings table.

Writes are minute-truncated upserts (last write wins per garage+minute).
Reads return typed Reading / AggregatedBucket objects; ORM rows never
leave this module.
"""

from datetime import datetime, timedelta
from typing import Iterable, Optional

from sqlalchemy import and_, distinct, func
from sqlalchemy.orm import Session

from app.models.garage_info import GarageInfo
from app.models.garage_reading import GarageReading
from app.schemas.aggregate import AggregatedBucket, BucketSize
from app.schemas.reading import Reading
from app.utils.logger import get_logger
from app.utils.timeutils import floor_to_bucket, truncate_to_minute, utcnow

logger = get_logger(__name__)


def aggregate_buckets(readings: Iterable[Reading], bucket_size: BucketSize) -> list[AggregatedBucket]:
    """
    Roll readings up into fixed-width buckets ordered by bucket start.
    Only buckets that contain readings are produced.
    """
    grouped: dict[datetime, list[Reading]] = {}
    for reading in readings:
        start = floor_to_bucket(reading.timestamp, bucket_size.minutes)
        grouped.setdefault(start, []).append(reading)

    buckets = []
    for start in sorted(grouped):
        members = grouped[start]
        values = [r.occupied_percentage for r in members]
        last = max(members, key=lambda r: r.timestamp)
        buckets.append(AggregatedBucket(
            bucket_start=start,
            avg_utilization=sum(values) / len(values),
            max_utilization=max(values),
            min_utilization=min(values),
            last_utilization=last.occupied_percentage,
        ))
    return buckets


class ReadingStore:
    """Garage reading persistence bound to one SQLAlchemy session."""

    def __init__(self, db: Session):
        self.db = db

    # ── Writes ───────────────────────────────────────────────────────────
    def insert_reading(self, reading: Reading, map_url: Optional[str] = None) -> GarageReading:
        timestamp = truncate_to_minute(reading.timestamp)
        row = self.db.query(GarageReading).filter(
            GarageReading.garage_id == reading.garage_id,
            GarageReading.timestamp == timestamp,
        ).first()
        if not row:
            row = GarageReading(garage_id=reading.garage_id, timestamp=timestamp, created_at=utcnow())
            self.db.add(row)

        row.garage_name = reading.garage_name
        row.address = reading.address
        row.occupied_percentage = reading.occupied_percentage
        row.capacity = reading.capacity
        row.occupied_spaces = reading.occupied_spaces
        row.source_hash = reading.source_hash

        self._upsert_garage_info(reading, map_url)
        self.db.commit()
        return row

    def insert_readings(self, readings: Iterable[Reading], map_urls: Optional[dict] = None) -> int:
        map_urls = map_urls or {}
        count = 0
        for reading in readings:
            self.insert_reading(reading, map_urls.get(reading.garage_id))
            count += 1
        logger.info(f"Stored {count} garage readings")
        return count

    def _upsert_garage_info(self, reading: Reading, map_url: Optional[str]):
        info = self.db.get(GarageInfo, reading.garage_id)
        if not info:
            info = GarageInfo(garage_id=reading.garage_id, created_at=utcnow())
            self.db.add(info)
        info.garage_name = reading.garage_name
        info.address = reading.address
        if map_url:
            info.map_url = map_url

    # ── Reads ────────────────────────────────────────────────────────────
    def get_latest_readings(self) -> list[Reading]:
        """Most recent reading for every garage, ordered by garage_id."""
        latest = (
            self.db.query(
                GarageReading.garage_id,
                func.max(GarageReading.timestamp).label("latest"),
            )
            .group_by(GarageReading.garage_id)
            .subquery()
        )
        rows = (
            self.db.query(GarageReading)
            .join(latest, and_(
                GarageReading.garage_id == latest.c.garage_id,
                GarageReading.timestamp == latest.c.latest,
            ))
            .order_by(GarageReading.garage_id)
            .all()
        )
        return [Reading.model_validate(row) for row in rows]

    def get_historical_data(self, garage_id: str, days: int = 14,
                            now: Optional[datetime] = None) -> list[Reading]:
        """Readings for one garage over the trailing `days`, oldest first. Empty list if none."""
        now = now or utcnow()
        rows = (
            self.db.query(GarageReading)
            .filter(
                GarageReading.garage_id == garage_id,
                GarageReading.timestamp >= now - timedelta(days=days),
                GarageReading.timestamp <= now,
            )
            .order_by(GarageReading.timestamp)
            .all()
        )
        return [Reading.model_validate(row) for row in rows]

    def get_aggregated_data(self, garage_id: str, bucket_size: BucketSize = BucketSize.FIVE_MINUTES,
                            lookback_hours: int = 24,
                            now: Optional[datetime] = None) -> list[AggregatedBucket]:
        """
        Bucketed history for charts. Only buckets starting inside
        [now - lookback_hours, now] are returned; empty buckets are omitted.
        """
        now = now or utcnow()
        cutoff = now - timedelta(hours=lookback_hours)
        rows = (
            self.db.query(GarageReading)
            .filter(
                GarageReading.garage_id == garage_id,
                GarageReading.timestamp >= cutoff,
                GarageReading.timestamp <= now,
            )
            .order_by(GarageReading.timestamp)
            .all()
        )
        buckets = aggregate_buckets((Reading.model_validate(r) for r in rows), BucketSize(bucket_size))
        return [b for b in buckets if b.bucket_start >= cutoff]

    def list_distinct_garage_ids(self) -> list[str]:
        rows = self.db.query(GarageReading.garage_id).distinct().order_by(GarageReading.garage_id).all()
        return [row[0] for row in rows]

    def reset(self):
        """Roll back the session so it stays usable after a failed statement."""
        self.db.rollback()

    def get_freshness_stats(self, window_hours: int = 24, now: Optional[datetime] = None) -> dict:
        """Latest reading time, volume and garage count over the trailing window."""
        now = now or utcnow()
        latest, total, garages = (
            self.db.query(
                func.max(GarageReading.timestamp),
                func.count(GarageReading.id),
                func.count(distinct(GarageReading.garage_id)),
            )
            .filter(GarageReading.timestamp >= now - timedelta(hours=window_hours))
            .one()
        )
        minutes_since = int((now - latest).total_seconds() // 60) if latest else None
        return {
            "latest_reading": latest,
            "total_readings": total or 0,
            "active_garages": garages or 0,
            "minutes_since_last_reading": minutes_since,
        }
