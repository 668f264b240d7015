from datetime import datetime
from typing import Optional
from zoneinfo import ZoneInfo

from gateway.domain.models.schedule import ActiveHours


def _minutes(value: str) -> int:
    hours, minutes = value.split(":")
    return int(hours) * 60 + int(minutes)


def is_within_active_hours(hours: ActiveHours, now: Optional[datetime] = None, timezone: str = "UTC") -> bool:
    """Whether ``now`` falls inside the window.

    The start is inclusive and the end exclusive; a start after the end is an
    overnight window (22:00-06:00). Days are ISO weekdays, Monday=1.
    """
    now = now or datetime.now(ZoneInfo(timezone))

    if hours.days_of_week and now.isoweekday() not in hours.days_of_week:
        return False

    current = now.hour * 60 + now.minute
    start = _minutes(hours.start)
    end = _minutes(hours.end)
    if start <= end:
        return start <= current < end
    return current >= start or current < end
