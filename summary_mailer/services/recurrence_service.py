"""
Recurrence evaluation for scheduled jobs.

Pure functions: a schedule plus "now" gives the next fire instant, or None
when the schedule is exhausted (past its stop date). All calendar
arithmetic happens on the owner's local wall-clock; conversion to and from
instants is delegated to ``summary_mailer.utils.local_time``.
"""

import calendar
from datetime import date, datetime, time, timedelta
from typing import Any

from summary_mailer.models.domain.schedule_domain import RecurrenceSchedule
from summary_mailer.utils.local_time import to_instant, to_local


def days_in_month(year: int, month: int) -> int:
    return calendar.monthrange(year, month)[1]


def _end_of_day(day: date) -> datetime:
    return datetime.combine(day, time.max)


def _next_weekly(schedule: RecurrenceSchedule, local_now: datetime) -> datetime:
    diff = (schedule.day_of_week - local_now.isoweekday()) % 7
    candidate = datetime.combine(
        local_now.date() + timedelta(days=diff), time(schedule.hour, schedule.minute)
    )
    # Today only counts when the time of day is still ahead
    if candidate <= local_now:
        candidate += timedelta(days=7)
    return candidate


def _next_monthly(schedule: RecurrenceSchedule, local_now: datetime) -> datetime:
    year, month = local_now.year, local_now.month
    day = min(schedule.day_of_month, days_in_month(year, month))
    candidate = datetime(year, month, day, schedule.hour, schedule.minute)

    if candidate <= local_now:
        year, month = (year + 1, 1) if month == 12 else (year, month + 1)
        day = min(schedule.day_of_month, days_in_month(year, month))
        candidate = datetime(year, month, day, schedule.hour, schedule.minute)

    return candidate


def next_fire_instant(schedule: RecurrenceSchedule, now_ms: int) -> int | None:
    """
    Compute the next fire instant strictly after ``now_ms``.

    Args:
        schedule: Normalized recurrence configuration
        now_ms: Current instant in epoch milliseconds

    Returns:
        Next fire instant in epoch milliseconds, or None if exhausted
    """
    offset = schedule.timezone_offset_minutes
    local_now = to_local(now_ms, offset)

    if schedule.stop_date and local_now > _end_of_day(schedule.stop_date):
        return None

    if schedule.frequency == "monthly":
        candidate = _next_monthly(schedule, local_now)
    else:
        candidate = _next_weekly(schedule, local_now)

    if schedule.stop_date and candidate.date() > schedule.stop_date:
        return None

    return to_instant(candidate, offset)


def next_fire_from_settings(raw_schedule: Any, now_ms: int) -> int | None:
    """Same as next_fire_instant, for an unparsed settings payload. No schedule means exhausted."""
    schedule = RecurrenceSchedule.from_settings(raw_schedule)
    if schedule is None:
        return None
    return next_fire_instant(schedule, now_ms)
