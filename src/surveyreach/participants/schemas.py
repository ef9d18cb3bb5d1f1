"""
Pydantic schemas for batches, participants and response statistics.
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from surveyreach.participants.models import BatchEscalationState, ParticipantStatus


class Recipient(BaseModel):
    """One recipient of a survey send."""

    email: EmailStr
    phone: str | None = Field(default=None, max_length=50)

    @field_validator("phone", mode="before")
    @classmethod
    def normalize_phone(cls, v: Any) -> Any:
        """Treat blank phone numbers as missing."""
        if isinstance(v, str):
            v = v.strip()
            return v or None
        return v


class CreateBatchRequest(BaseModel):
    """Schema for sending a survey to a set of recipients."""

    recipients: list[Recipient] = Field(..., min_length=1)
    voice_escalation: bool = True
    escalation_delay_minutes: int | None = Field(
        default=None,
        ge=0,
        description="Minutes to wait before calling non-responders; server default when omitted",
    )
    email_reminders: bool = True


class BatchResponse(BaseModel):
    """Schema for batch output."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    survey_id: str
    created_at: datetime
    voice_escalation: bool
    email_reminders: bool
    escalation_delay_minutes: int
    escalation_due_at: datetime
    escalation_state: BatchEscalationState
    processed_at: datetime | None


class ParticipantResponse(BaseModel):
    """Schema for participant output on the dashboard."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    survey_id: str
    batch_id: str
    email: str
    phone: str | None
    status: ParticipantStatus
    sent_at: datetime
    responded_at: datetime | None
    claimed_at: datetime | None
    called_at: datetime | None
    completed_at: datetime | None
    call_id: str | None
    call_result: str | None
    call_answers: dict[str, Any] | None


class ParticipantListResponse(BaseModel):
    """Participants of a survey, optionally limited to one batch."""

    survey_id: str
    batch_id: str | None
    total: int
    items: list[ParticipantResponse]


class InvitationResult(BaseModel):
    """Outcome of sending one invitation email."""

    participant_id: str
    email: str
    link: str
    sent: bool
    error: str | None = None


class CreateBatchResponse(BaseModel):
    """Schema returned after a batch has been created and invitations sent."""

    batch: BatchResponse
    invitations: list[InvitationResult]
    sent: int
    failed: int


class BatchStats(BaseModel):
    """Response counts for one batch."""

    batch_id: str
    total: int
    responded: int
    non_responders: int
    response_rate: int = Field(..., description="Floored percentage of responders")
    by_status: dict[str, int]


class SurveyStatsResponse(BaseModel):
    """Response counts for a survey across all its batches."""

    survey_id: str
    total: int
    responded: int
    non_responders: int
    response_rate: int
    by_status: dict[str, int]
    batches: list[BatchStats]
