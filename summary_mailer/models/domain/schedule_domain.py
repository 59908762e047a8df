"""
Recurrence schedule configuration.

Schedules are owned by the metrics source (``dashboardSettings.emailSchedule``)
and fetched fresh every time a next occurrence is computed. Malformed fields
never raise: each falls back to a documented default.
"""

import math
from dataclasses import dataclass
from datetime import date
from typing import Any, Literal

Frequency = Literal["weekly", "monthly"]

DEFAULT_HOUR = 8
DEFAULT_MINUTE = 0
DEFAULT_DAY_OF_WEEK = 1  # Monday
DEFAULT_DAY_OF_MONTH = 1
MAX_OFFSET_MINUTES = 24 * 60


def _parse_time_of_day(value: Any) -> tuple[int, int]:
    if not isinstance(value, str) or ":" not in value:
        return DEFAULT_HOUR, DEFAULT_MINUTE

    hour_str, _, minute_str = value.strip().partition(":")
    try:
        hour = int(hour_str)
        minute = int(minute_str)
    except ValueError:
        return DEFAULT_HOUR, DEFAULT_MINUTE

    if not (0 <= hour <= 23 and 0 <= minute <= 59):
        return DEFAULT_HOUR, DEFAULT_MINUTE
    return hour, minute


def _int_in_range(value: Any, low: int, high: int, default: int) -> int:
    # bool is an int subclass; a JSON true is not a day number
    if isinstance(value, bool) or not isinstance(value, int | float):
        return default
    if not (low <= value <= high) or value != int(value):
        return default
    return int(value)


def _parse_stop_date(value: Any) -> date | None:
    if not isinstance(value, str) or not value.strip():
        return None
    try:
        return date.fromisoformat(value.strip()[:10])
    except ValueError:
        return None


@dataclass(slots=True, frozen=True)
class RecurrenceSchedule:
    """Normalized recurrence configuration for one owner."""

    frequency: Frequency = "weekly"
    hour: int = DEFAULT_HOUR
    minute: int = DEFAULT_MINUTE
    day_of_week: int = DEFAULT_DAY_OF_WEEK  # 1=Monday .. 7=Sunday
    day_of_month: int = DEFAULT_DAY_OF_MONTH
    timezone_offset_minutes: int = 0
    stop_date: date | None = None

    @property
    def time_of_day(self) -> str:
        return f"{self.hour:02d}:{self.minute:02d}"

    @classmethod
    def from_settings(cls, raw: Any) -> "RecurrenceSchedule | None":
        """
        Build a schedule from the loosely typed settings payload.

        Returns None when no schedule object is configured at all.
        """
        if not isinstance(raw, dict):
            return None

        hour, minute = _parse_time_of_day(raw.get("timeOfDay"))

        offset = raw.get("timezoneOffsetMinutes")
        if isinstance(offset, bool) or not isinstance(offset, int | float) or not math.isfinite(offset):
            offset = 0
        elif abs(offset) > MAX_OFFSET_MINUTES:
            # offsets beyond one day are malformed
            offset = 0

        return cls(
            frequency="monthly" if raw.get("frequency") == "monthly" else "weekly",
            hour=hour,
            minute=minute,
            day_of_week=_int_in_range(raw.get("dayOfWeek"), 1, 7, DEFAULT_DAY_OF_WEEK),
            day_of_month=_int_in_range(raw.get("dayOfMonth"), 1, 31, DEFAULT_DAY_OF_MONTH),
            timezone_offset_minutes=int(offset),
            stop_date=_parse_stop_date(raw.get("stopDate")),
        )
