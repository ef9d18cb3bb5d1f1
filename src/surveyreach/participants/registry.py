"""
Batch registry.

Creates one isolated batch per survey send and allocates an opaque,
unguessable identity for every recipient in it. Re-inviting a person in a
later send creates an independent participant; batches never share state.
"""

import secrets
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from surveyreach.participants.models import (
    Batch,
    BatchEscalationState,
    Participant,
    ParticipantStatus,
)
from surveyreach.participants.repository import ParticipantRepository
from surveyreach.participants.schemas import BatchStats, Recipient, SurveyStatsResponse
from surveyreach.participants.tokens import SurveyLinkTokens
from surveyreach.shared.database import utcnow
from surveyreach.shared.exceptions import NotFoundError
from surveyreach.shared.logging import get_logger
from surveyreach.surveys.models import Survey
from surveyreach.surveys.repository import SurveyRepository

logger = get_logger(__name__)


@dataclass(frozen=True)
class Invitation:
    """A participant together with its personalized survey link."""

    participant_id: str
    email: str
    phone: str | None
    token: str
    link: str


@dataclass(frozen=True)
class CreatedBatch:
    """Result of creating a batch."""

    batch: Batch
    survey: Survey
    invitations: list[Invitation]


def new_batch_id() -> str:
    return f"b_{secrets.token_hex(8)}"


def new_participant_id() -> str:
    return f"p_{secrets.token_urlsafe(16)}"


def _rate(responded: int, total: int) -> int:
    return (responded * 100) // total if total else 0


class BatchRegistry:
    """Create batches and read batch-scoped participant records."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        tokens: SurveyLinkTokens,
        *,
        default_delay_minutes: int = 300,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._session_factory = session_factory
        self._tokens = tokens
        self._default_delay_minutes = default_delay_minutes
        self._clock = clock

    async def create_batch(
        self,
        survey_id: str,
        recipients: Sequence[Recipient],
        *,
        voice_escalation: bool = True,
        escalation_delay_minutes: int | None = None,
        email_reminders: bool = True,
    ) -> CreatedBatch:
        """Allocate a fresh batch with one SENT participant per recipient.

        Args:
            survey_id: Survey being sent.
            recipients: Email/phone pairs to invite.
            voice_escalation: Whether non-responders are called after the delay.
            escalation_delay_minutes: Delay override; settings default when None.
            email_reminders: Whether planned reminder emails are sent.

        Returns:
            The persisted batch and one invitation per participant.

        Raises:
            NotFoundError: If the survey does not exist.
        """
        now = self._clock()
        delay = (
            self._default_delay_minutes
            if escalation_delay_minutes is None
            else escalation_delay_minutes
        )

        async with self._session_factory.begin() as session:
            survey = await SurveyRepository(session).get(survey_id)
            if survey is None:
                raise NotFoundError(f"Survey {survey_id} not found")

            batch = Batch(
                id=new_batch_id(),
                survey_id=survey_id,
                created_at=now,
                voice_escalation=voice_escalation,
                email_reminders=email_reminders,
                escalation_delay_minutes=delay,
                escalation_due_at=now + timedelta(minutes=delay),
                escalation_state=BatchEscalationState.WAITING,
            )
            participants = [
                Participant(
                    id=new_participant_id(),
                    survey_id=survey_id,
                    batch_id=batch.id,
                    email=str(recipient.email),
                    phone=recipient.phone,
                    status=ParticipantStatus.SENT,
                    version=1,
                    sent_at=now,
                    updated_at=now,
                )
                for recipient in recipients
            ]
            await ParticipantRepository(session).add_batch(batch, participants)

        invitations = []
        for participant in participants:
            token = self._tokens.issue(participant.id, batch.id, survey_id)
            invitations.append(
                Invitation(
                    participant_id=participant.id,
                    email=participant.email,
                    phone=participant.phone,
                    token=token,
                    link=self._tokens.survey_link(survey_id, participant.id, token),
                )
            )

        logger.info(
            "Batch created",
            extra={
                "survey_id": survey_id,
                "batch_id": batch.id,
                "participants": len(participants),
                "voice_escalation": voice_escalation,
                "escalation_due_at": batch.escalation_due_at.isoformat(),
            },
        )
        return CreatedBatch(batch=batch, survey=survey, invitations=invitations)

    async def get_participant(
        self,
        survey_id: str,
        batch_id: str,
        participant_id: str,
    ) -> Participant:
        """Get one participant, scoped to its survey and batch.

        Raises:
            NotFoundError: If no such participant exists in that batch.
        """
        async with self._session_factory() as session:
            participant = await ParticipantRepository(session).get_in_batch(
                survey_id, batch_id, participant_id
            )
        if participant is None:
            raise NotFoundError(
                "Participant not found",
                details={"survey_id": survey_id, "batch_id": batch_id},
            )
        return participant

    async def list_participants(
        self,
        survey_id: str,
        batch_id: str | None = None,
    ) -> list[Participant]:
        """List participants for display.

        Omitting batch_id returns every batch's participants. Escalation never
        uses this unscoped form.
        """
        async with self._session_factory() as session:
            rows = await ParticipantRepository(session).list_participants(survey_id, batch_id)
        return list(rows)

    async def response_stats(self, survey_id: str) -> SurveyStatsResponse:
        """Aggregate response counts per batch and for the whole survey."""
        async with self._session_factory() as session:
            survey = await SurveyRepository(session).get(survey_id)
            if survey is None:
                raise NotFoundError(f"Survey {survey_id} not found")
            repo = ParticipantRepository(session)
            batches = await repo.list_batches(survey_id=survey_id)
            counts = await repo.status_counts(survey_id)

        per_batch: dict[str, dict[str, int]] = {batch.id: {} for batch in batches}
        for batch_id, status, count in counts:
            per_batch.setdefault(batch_id, {})[ParticipantStatus(status).value] = count

        batch_stats = []
        survey_by_status: dict[str, int] = {}
        for batch_id, by_status in per_batch.items():
            total = sum(by_status.values())
            responded = by_status.get(ParticipantStatus.RESPONDED.value, 0)
            batch_stats.append(
                BatchStats(
                    batch_id=batch_id,
                    total=total,
                    responded=responded,
                    non_responders=total - responded,
                    response_rate=_rate(responded, total),
                    by_status=by_status,
                )
            )
            for status, count in by_status.items():
                survey_by_status[status] = survey_by_status.get(status, 0) + count

        total = sum(stats.total for stats in batch_stats)
        responded = sum(stats.responded for stats in batch_stats)
        return SurveyStatsResponse(
            survey_id=survey_id,
            total=total,
            responded=responded,
            non_responders=total - responded,
            response_rate=_rate(responded, total),
            by_status=survey_by_status,
            batches=batch_stats,
        )
