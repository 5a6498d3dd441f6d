"""Time utilities (local business timezone)."""

from datetime import date, datetime, time
from zoneinfo import ZoneInfo

from portfolio_engine.config import settings

LOCAL_TZ = ZoneInfo(settings.TIMEZONE)


def now_local_naive() -> datetime:
    """
    Current time in the business timezone, returned as naive datetime for DB storage.
    """
    return datetime.now(LOCAL_TZ).replace(tzinfo=None)


def today_local() -> date:
    return now_local_naive().date()


def end_of_day(day: date) -> datetime:
    """Last representable naive instant of ``day``."""
    return datetime.combine(day, time.max)


def to_local_naive(dt: datetime) -> datetime:
    """Normalise an incoming datetime to naive local time (naive input is kept as is)."""
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(LOCAL_TZ).replace(tzinfo=None)
