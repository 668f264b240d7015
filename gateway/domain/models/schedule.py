from typing import List, Optional
from croniter import croniter
from pydantic import BaseModel, ConfigDict, Field, field_validator
from datetime import datetime
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .session import utcnow


def _check_time_of_day(value: str) -> str:
    parts = value.split(":")
    if len(parts) != 2 or not all(p.isdigit() for p in parts):
        raise ValueError(f"Expected HH:MM, got {value!r}")
    hours, minutes = int(parts[0]), int(parts[1])
    if not (0 <= hours <= 23 and 0 <= minutes <= 59):
        raise ValueError(f"Time of day out of range: {value!r}")
    return value


class ActiveHours(BaseModel):
    """Time-of-day window (and optional ISO weekday filter) a job may run in"""
    model_config = ConfigDict(populate_by_name=True)

    start: str
    end: str
    days_of_week: Optional[List[int]] = Field(default=None, alias="daysOfWeek")

    @field_validator("start", "end")
    @classmethod
    def _validate_time(cls, value: str) -> str:
        return _check_time_of_day(value)

    @field_validator("days_of_week")
    @classmethod
    def _validate_days(cls, days: Optional[List[int]]) -> Optional[List[int]]:
        if days is not None and any(d < 1 or d > 7 for d in days):
            raise ValueError("days_of_week uses ISO weekdays 1 (Monday) to 7 (Sunday)")
        return days


class ScheduleConfig(BaseModel):
    """A persisted cron schedule, either for a workflow or a heartbeat"""
    id: str
    name: str
    cron_expression: str
    timezone: str = "UTC"
    active_hours: Optional[ActiveHours] = None
    max_runs: Optional[int] = Field(default=None, ge=1)
    workflow_id: Optional[str] = None
    heartbeat_path: Optional[str] = None
    enabled: bool = True
    created_at: datetime = Field(default_factory=utcnow)

    @field_validator("cron_expression")
    @classmethod
    def _validate_cron(cls, value: str) -> str:
        if not croniter.is_valid(value):
            raise ValueError(f"Invalid cron expression: {value!r}")
        return value

    @field_validator("timezone")
    @classmethod
    def _validate_timezone(cls, value: str) -> str:
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError(f"Unknown timezone: {value!r}")
        return value

    @property
    def is_heartbeat(self) -> bool:
        return self.workflow_id is None


class HeartbeatResult(BaseModel):
    """Outcome of one heartbeat checklist item"""
    check: str
    action_needed: bool
    details: str = ""
