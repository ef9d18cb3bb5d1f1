"""
Pydantic schemas for reminder plans.
"""

from datetime import date, datetime

from pydantic import BaseModel

from surveyreach.reminders.planner import ReminderType


class PlannedReminderResponse(BaseModel):
    date: date
    type: ReminderType
    due_at: datetime


class ReminderPlanResponse(BaseModel):
    """Computed reminder schedule of a stored survey."""

    survey_id: str
    start_date: date | None
    end_date: date | None
    timezone: str
    reminders: list[PlannedReminderResponse]
