from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from typing import Optional, Tuple
from zoneinfo import ZoneInfo

from app.core.config import settings


def clinic_tz() -> ZoneInfo:
    return ZoneInfo(settings.TIMEZONE)


def to_local(moment: datetime) -> datetime:
    """Naive datetimes are stored as UTC."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(clinic_tz())


def local_today(now: Optional[datetime] = None) -> date:
    return to_local(now or datetime.now(timezone.utc)).date()


def local_day_bounds(day: date) -> Tuple[datetime, datetime]:
    """
    Returns naive UTC [start, end) for a clinic calendar day, matching the
    naive UTC DateTime columns.
    """
    start = datetime.combine(day, time.min, tzinfo=clinic_tz())
    end = start + timedelta(days=1)
    return (
        start.astimezone(timezone.utc).replace(tzinfo=None),
        end.astimezone(timezone.utc).replace(tzinfo=None),
    )
