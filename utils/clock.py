# utils/clock.py
from datetime import datetime, timezone
from zoneinfo import ZoneInfo

import config


def utcnow() -> datetime:
    # naive UTC, the form pymongo hands back
    return datetime.now(timezone.utc).replace(tzinfo=None)


def local_zone() -> ZoneInfo:
    return ZoneInfo(config.LOCAL_TIMEZONE)


def to_storage(dt: datetime) -> datetime:
    """Normalize a client datetime to naive UTC.

    Naive input is read as local wall-clock time in LOCAL_TIMEZONE.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=local_zone())
    return dt.astimezone(timezone.utc).replace(tzinfo=None)
