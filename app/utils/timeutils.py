"""
Time helpers shared by the store, scraper and forecaster.
All timestamps in the system are naive UTC.
"""

from datetime import datetime, timedelta, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: datetime) -> datetime:
    """Convert an aware datetime to naive UTC; naive values are assumed UTC already."""
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def truncate_to_minute(value: datetime) -> datetime:
    return to_naive_utc(value).replace(second=0, microsecond=0)


def floor_to_bucket(value: datetime, bucket_minutes: int) -> datetime:
    """Start of the fixed-width bucket (aligned to the hour) containing `value`."""
    value = truncate_to_minute(value)
    if bucket_minutes >= 60:
        return value.replace(minute=0)
    return value - timedelta(minutes=value.minute % bucket_minutes)
