"""
Batch and participant API router.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Query, status

from surveyreach.dependencies import get_registry, get_reminder_service
from surveyreach.participants.registry import BatchRegistry
from surveyreach.participants.schemas import (
    BatchResponse,
    CreateBatchRequest,
    CreateBatchResponse,
    ParticipantListResponse,
    ParticipantResponse,
    SurveyStatsResponse,
)
from surveyreach.reminders.service import ReminderService

router = APIRouter(prefix="/surveys", tags=["participants"])

RegistryDep = Annotated[BatchRegistry, Depends(get_registry)]


@router.post(
    "/{survey_id}/batches",
    response_model=CreateBatchResponse,
    status_code=status.HTTP_201_CREATED,
)
async def send_survey(
    survey_id: str,
    body: CreateBatchRequest,
    registry: RegistryDep,
    reminders: Annotated[ReminderService, Depends(get_reminder_service)],
) -> CreateBatchResponse:
    """Send a survey to a set of recipients as a new batch.

    Each recipient gets an invitation email with a personalized link.
    Failed invitations are reported per recipient and do not undo the batch.
    """
    created = await registry.create_batch(
        survey_id,
        body.recipients,
        voice_escalation=body.voice_escalation,
        escalation_delay_minutes=body.escalation_delay_minutes,
        email_reminders=body.email_reminders,
    )
    invitations = await reminders.send_invitations(created)
    sent = sum(1 for invitation in invitations if invitation.sent)
    return CreateBatchResponse(
        batch=BatchResponse.model_validate(created.batch),
        invitations=invitations,
        sent=sent,
        failed=len(invitations) - sent,
    )


@router.get("/{survey_id}/participants", response_model=ParticipantListResponse)
async def list_participants(
    survey_id: str,
    registry: RegistryDep,
    batch_id: Annotated[str | None, Query()] = None,
) -> ParticipantListResponse:
    """Participants for dashboard display; all batches when batch_id is omitted."""
    participants = await registry.list_participants(survey_id, batch_id)
    return ParticipantListResponse(
        survey_id=survey_id,
        batch_id=batch_id,
        total=len(participants),
        items=[ParticipantResponse.model_validate(p) for p in participants],
    )


@router.get("/{survey_id}/batches/{batch_id}/participants/{participant_id}")
async def get_participant(
    survey_id: str,
    batch_id: str,
    participant_id: str,
    registry: RegistryDep,
) -> ParticipantResponse:
    participant = await registry.get_participant(survey_id, batch_id, participant_id)
    return ParticipantResponse.model_validate(participant)


@router.get("/{survey_id}/stats", response_model=SurveyStatsResponse)
async def survey_stats(survey_id: str, registry: RegistryDep) -> SurveyStatsResponse:
    """Response counts per batch and for the whole survey."""
    return await registry.response_stats(survey_id)
