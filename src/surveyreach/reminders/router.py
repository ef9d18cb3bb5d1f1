"""
Reminder plan API router.
"""

from typing import Annotated

from fastapi import APIRouter, Depends

from surveyreach.dependencies import ServiceContainer, get_services
from surveyreach.reminders.planner import plan_reminders
from surveyreach.reminders.schemas import PlannedReminderResponse, ReminderPlanResponse
from surveyreach.shared.exceptions import NotFoundError
from surveyreach.surveys.repository import SurveyRepository

router = APIRouter(prefix="/surveys", tags=["reminders"])


@router.get("/{survey_id}/reminder-plan", response_model=ReminderPlanResponse)
async def get_reminder_plan(
    survey_id: str,
    services: Annotated[ServiceContainer, Depends(get_services)],
) -> ReminderPlanResponse:
    """Reminder dates for a survey, recomputed on every request."""
    async with services.session_factory() as session:
        survey = await SurveyRepository(session).get(survey_id)
    if survey is None:
        raise NotFoundError(f"Survey {survey_id} not found")

    tz_name = survey.timezone or "UTC"
    reminders: list[PlannedReminderResponse] = []
    if survey.start_date is not None and survey.end_date is not None:
        schedule = plan_reminders(survey.start_date, survey.end_date, survey.id)
        send_hour = services.settings.reminder_send_hour
        reminders = [
            PlannedReminderResponse(
                date=reminder.date,
                type=reminder.type,
                due_at=reminder.due_at(survey.timezone, send_hour),
            )
            for reminder in schedule.reminders
        ]

    return ReminderPlanResponse(
        survey_id=survey.id,
        start_date=survey.start_date,
        end_date=survey.end_date,
        timezone=tz_name,
        reminders=reminders,
    )
