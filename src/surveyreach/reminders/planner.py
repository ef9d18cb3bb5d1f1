"""
Reminder planning.

Reminder density scales sub-linearly with the survey's running time:

    duration (days)   reminders
    <= 1              one, 2 hours before end
    2-3               closing day
    4-7               midpoint, closing day
    8-30              one third before end, closing day
    > 30              7 days before end, 1 day before end, closing day

The plan is a pure function of the start and end dates. Delivery instants
are resolved separately against the survey's timezone.
"""

import math
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from enum import Enum
from zoneinfo import ZoneInfo


class ReminderType(str, Enum):
    """Kinds of email sent to a participant."""

    INVITATION = "invitation"
    MIDPOINT = "midpoint"
    WEEK_BEFORE = "week_before"
    DAY_BEFORE = "day_before"
    CLOSING = "closing"


@dataclass(frozen=True)
class ScheduledReminder:
    """One planned reminder.

    ``at`` is set only when the reminder has an exact local time (the
    same-day case); otherwise it is delivered on ``date`` at the configured
    send hour.
    """

    date: date
    type: ReminderType
    at: datetime | None = None

    def due_at(self, tz_name: str | None = None, send_hour: int = 9) -> datetime:
        """Resolve the delivery instant in UTC."""
        tz = ZoneInfo(tz_name) if tz_name else timezone.utc
        local = self.at if self.at is not None else datetime.combine(self.date, time(send_hour))
        return local.replace(tzinfo=tz).astimezone(timezone.utc)


@dataclass(frozen=True)
class ReminderSchedule:
    """Derived reminder plan for a survey."""

    survey_id: str | None
    reminders: tuple[ScheduledReminder, ...] = field(default_factory=tuple)

    @property
    def dates(self) -> list[date]:
        return [reminder.date for reminder in self.reminders]


def _as_datetime(value: date | datetime | str) -> datetime:
    if isinstance(value, str):
        value = datetime.fromisoformat(value)
    if isinstance(value, datetime):
        return value.replace(tzinfo=None)
    return datetime.combine(value, time.min)


def _is_date_only(value: date | datetime | str) -> bool:
    if isinstance(value, str):
        return "T" not in value and " " not in value.strip()
    return not isinstance(value, datetime)


def duration_days(start: date | datetime | str, end: date | datetime | str) -> int:
    """Running time in whole days, rounded up."""
    delta = _as_datetime(end) - _as_datetime(start)
    return math.ceil(delta.total_seconds() / 86400)


def plan_reminders(
    start: date | datetime | str,
    end: date | datetime | str,
    survey_id: str | None = None,
) -> ReminderSchedule:
    """Compute reminder dates for a survey running from start to end.

    Args:
        start: First day of the survey (date, naive datetime or ISO string).
        end: Closing day of the survey.
        survey_id: Carried into the returned schedule.

    Returns:
        The schedule, ordered by date. A non-closing reminder that lands on
        the start or end day is dropped.
    """
    start_dt = _as_datetime(start)
    end_dt = _as_datetime(end)
    span = end_dt - start_dt
    days = duration_days(start_dt, end_dt)

    if days <= 1:
        # A date-only end on the start day means the survey is open all that day.
        end_at = end_dt
        if _is_date_only(end) and end_dt <= start_dt:
            end_at = end_dt + timedelta(days=1)
        at = end_at - timedelta(hours=2)
        return ReminderSchedule(
            survey_id=survey_id,
            reminders=(ScheduledReminder(date=at.date(), type=ReminderType.CLOSING, at=at),),
        )

    closing = ScheduledReminder(date=end_dt.date(), type=ReminderType.CLOSING)
    planned: list[ScheduledReminder] = []
    if days <= 3:
        pass
    elif days <= 7:
        planned.append(
            ScheduledReminder(date=(start_dt + span / 2).date(), type=ReminderType.MIDPOINT)
        )
    elif days <= 30:
        planned.append(
            ScheduledReminder(date=(end_dt - span / 3).date(), type=ReminderType.MIDPOINT)
        )
    else:
        planned.append(
            ScheduledReminder(date=(end_dt - timedelta(days=7)).date(), type=ReminderType.WEEK_BEFORE)
        )
        planned.append(
            ScheduledReminder(date=(end_dt - timedelta(days=1)).date(), type=ReminderType.DAY_BEFORE)
        )

    boundary = {start_dt.date(), end_dt.date()}
    reminders = [reminder for reminder in planned if reminder.date not in boundary]
    reminders.append(closing)
    return ReminderSchedule(survey_id=survey_id, reminders=tuple(reminders))
