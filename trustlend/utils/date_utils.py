"""Date manipulation utilities"""

from datetime import datetime, timedelta, timezone


def ensure_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes (SQLite drops tzinfo) and convert aware ones"""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def add_seconds(value: datetime, seconds: int) -> datetime:
    return value + timedelta(seconds=seconds)


def seconds_between(start: datetime, end: datetime) -> float:
    """Signed number of seconds from start to end"""
    return (ensure_utc(end) - ensure_utc(start)).total_seconds()
