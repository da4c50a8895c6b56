"""
Standardized Date/Time Handling Utilities

CRITICAL RULES:
- Always store datetimes as timezone-aware UTC (use now_utc())
- Daily metrics gating uses UTC calendar days
- Daily goal generation uses local calendar days (GOAL_TIMEZONE, or the
  server's own zone when unset)
- Never mix naive and aware datetimes
"""

import logging
from datetime import datetime, date, time, timedelta, timezone
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

logger = logging.getLogger(__name__)


def now_utc() -> datetime:
    """
    Get current datetime in UTC (timezone-aware)

    Returns:
        Current datetime in UTC with timezone info
    """
    return datetime.now(timezone.utc)


def ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """Treat naive datetimes as UTC; convert aware ones to UTC"""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def utc_day_bounds(moment: datetime) -> tuple[datetime, datetime]:
    """
    Half-open UTC calendar day containing `moment`

    Returns:
        (today 00:00 UTC, tomorrow 00:00 UTC)
    """
    moment = ensure_utc(moment)
    start = datetime.combine(moment.date(), time.min, tzinfo=timezone.utc)
    return start, start + timedelta(days=1)


def resolve_timezone(tz_name: Optional[str]):
    """
    ZoneInfo for `tz_name`, or the server's local zone when empty/invalid
    """
    if tz_name:
        try:
            return ZoneInfo(tz_name)
        except (ZoneInfoNotFoundError, ValueError) as e:
            logger.error(f"Invalid timezone '{tz_name}', falling back to local time: {e}")
    return datetime.now().astimezone().tzinfo


def local_date(moment: datetime, tz_name: Optional[str] = None) -> date:
    """Calendar date of `moment` in the given (or local) zone"""
    return ensure_utc(moment).astimezone(resolve_timezone(tz_name)).date()


def is_same_local_day(dt1: datetime, dt2: datetime, tz_name: Optional[str] = None) -> bool:
    """Compare year/month/day of two instants in the given (or local) zone"""
    return local_date(dt1, tz_name) == local_date(dt2, tz_name)
