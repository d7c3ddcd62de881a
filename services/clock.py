"""Time helpers. Stored timestamps are UTC; opening hours use the restaurant clock."""
from datetime import datetime, timedelta, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(moment: datetime) -> datetime:
    """SQLite and spreadsheets hand back naive datetimes; those are UTC."""
    return moment if moment.tzinfo else moment.replace(tzinfo=timezone.utc)


def restaurant_now(offset_hours: int, now: datetime = None) -> datetime:
    """Wall clock at the restaurant as a naive datetime."""
    now = as_utc(now or utcnow())
    return (now + timedelta(hours=offset_hours)).replace(tzinfo=None)
