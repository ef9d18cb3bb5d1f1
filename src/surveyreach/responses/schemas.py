"""
Pydantic schemas for survey submissions.
"""

from typing import Any

from pydantic import BaseModel, Field

from surveyreach.participants.models import ParticipantStatus


class SubmissionRequest(BaseModel):
    """A respondent's answers, identified by the link token."""

    token: str = Field(..., min_length=1)
    answers: dict[str, Any] = Field(default_factory=dict)


class SubmissionAck(BaseModel):
    """Best-effort acknowledgement returned to the respondent."""

    participant_id: str = Field(..., serialization_alias="participantId")
    status: ParticipantStatus
    first_response: bool = Field(..., serialization_alias="firstResponse")
