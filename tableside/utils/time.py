from datetime import date, datetime, timedelta, timezone
from typing import Optional, Tuple, Union

import pytz

from ..config import settings

RESTAURANT_TZ = pytz.timezone(settings.TIMEZONE)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def local_now() -> datetime:
    return utc_now().astimezone(RESTAURANT_TZ)


def parse_timestamp(value: Union[str, datetime, None]) -> Optional[datetime]:
    """Read a stored timestamp back as an aware UTC datetime"""
    if value is None:
        return None
    if isinstance(value, str):
        value = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def local_day_bounds(day: Optional[date] = None) -> Tuple[datetime, datetime]:
    """UTC start/end of a business day in the restaurant's timezone"""
    day = day or local_now().date()
    start = RESTAURANT_TZ.localize(datetime.combine(day, datetime.min.time()))
    end = start + timedelta(days=1) - timedelta(microseconds=1)
    return start.astimezone(pytz.UTC), end.astimezone(pytz.UTC)
