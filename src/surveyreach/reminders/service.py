"""
Invitation and reminder email delivery.

Every email to a participant is claimed first by inserting a
(participant, reminder type) marker. A duplicate insert means the email was
already sent, so the same reminder never goes out twice for one
participant. Provider failures keep the marker with the error text and are
not retried.
"""

from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from surveyreach.notifications.email.interface import EmailProvider
from surveyreach.notifications.email.rendering import TemplateRenderer, build_survey_email
from surveyreach.participants.models import Batch, Participant, ParticipantStatus
from surveyreach.participants.registry import CreatedBatch
from surveyreach.participants.repository import ParticipantRepository
from surveyreach.participants.schemas import InvitationResult
from surveyreach.participants.tokens import SurveyLinkTokens
from surveyreach.reminders.planner import ReminderType, ScheduledReminder, plan_reminders
from surveyreach.reminders.repository import ReminderMarkerRepository
from surveyreach.shared.database import utcnow
from surveyreach.shared.logging import get_logger
from surveyreach.surveys.models import Survey
from surveyreach.surveys.repository import SurveyRepository

logger = get_logger(__name__)


@dataclass
class ReminderRunResult:
    """Counters for one reminder processing pass."""

    sent: int = 0
    failed: int = 0
    skipped: int = 0
    details: list[dict[str, str]] = field(default_factory=list)


class ReminderService:
    """Send invitation emails and due reminder emails."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        email_provider: EmailProvider,
        tokens: SurveyLinkTokens,
        *,
        send_hour: int = 9,
        clock: Callable[[], datetime] = utcnow,
        renderer: TemplateRenderer | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._email = email_provider
        self._tokens = tokens
        self._send_hour = send_hour
        self._clock = clock
        self._renderer = renderer or TemplateRenderer()

    async def send_invitations(self, created: CreatedBatch) -> list[InvitationResult]:
        """Send the invitation email to every participant of a new batch."""
        results: list[InvitationResult] = []
        for invitation in created.invitations:
            ok, error = await self._deliver(
                participant_id=invitation.participant_id,
                batch_id=created.batch.id,
                email=invitation.email,
                reminder_type=ReminderType.INVITATION,
                survey=created.survey,
                link=invitation.link,
            )
            results.append(
                InvitationResult(
                    participant_id=invitation.participant_id,
                    email=invitation.email,
                    link=invitation.link,
                    sent=ok,
                    error=error,
                )
            )

        logger.info(
            "Invitations processed",
            extra={
                "survey_id": created.survey.id,
                "batch_id": created.batch.id,
                "sent": sum(1 for r in results if r.sent),
                "failed": sum(1 for r in results if not r.sent),
            },
        )
        return results

    async def process_due_reminders(self, now: datetime | None = None) -> ReminderRunResult:
        """Send every planned reminder whose delivery time has been reached.

        A reminder applies to a batch only if its delivery instant falls after
        the batch was created and at or before now. Only participants still
        SENT receive it.
        """
        now = now or self._clock()
        result = ReminderRunResult()

        async with self._session_factory() as session:
            batches = await ParticipantRepository(session).list_reminder_batches()

        for batch in batches:
            await self._process_batch(batch, now, result)

        if result.sent or result.failed:
            logger.info(
                "Reminder pass complete",
                extra={"sent": result.sent, "failed": result.failed, "skipped": result.skipped},
            )
        return result

    def due_reminders(
        self,
        survey: Survey,
        batch: Batch,
        now: datetime,
    ) -> list[ScheduledReminder]:
        """Reminders of the survey's plan that are due for this batch."""
        if survey.start_date is None or survey.end_date is None:
            return []
        schedule = plan_reminders(survey.start_date, survey.end_date, survey.id)
        return [
            reminder
            for reminder in schedule.reminders
            if batch.created_at < reminder.due_at(survey.timezone, self._send_hour) <= now
        ]

    def plan_exhausted(self, survey: Survey, now: datetime) -> bool:
        """True once the last planned reminder's delivery time has passed."""
        if survey.start_date is None or survey.end_date is None:
            return True
        schedule = plan_reminders(survey.start_date, survey.end_date, survey.id)
        return schedule.reminders[-1].due_at(survey.timezone, self._send_hour) <= now

    async def _process_batch(self, batch: Batch, now: datetime, result: ReminderRunResult) -> None:
        async with self._session_factory() as session:
            survey = await SurveyRepository(session).get(batch.survey_id)
            if survey is None:
                return
            due = self.due_reminders(survey, batch, now)
            pending: Sequence[Participant] = []
            claimed: set[tuple[str, str]] = set()
            if due:
                pending = await ParticipantRepository(session).list_by_status(
                    batch.id, [ParticipantStatus.SENT]
                )
                claimed = await ReminderMarkerRepository(session).claimed_for_batch(batch.id)

        for reminder in due:
            for participant in pending:
                if (participant.id, reminder.type.value) in claimed:
                    result.skipped += 1
                    continue
                await self._remind(participant, survey, reminder, result)

        if self.plan_exhausted(survey, now):
            async with self._session_factory.begin() as session:
                await ParticipantRepository(session).mark_reminders_completed(batch.id, now)
            logger.info(
                "Reminders completed for batch",
                extra={"survey_id": survey.id, "batch_id": batch.id},
            )

    async def _remind(
        self,
        participant: Participant,
        survey: Survey,
        reminder: ScheduledReminder,
        result: ReminderRunResult,
    ) -> None:
        token = self._tokens.issue(participant.id, participant.batch_id, survey.id)
        ok, error = await self._deliver(
            participant_id=participant.id,
            batch_id=participant.batch_id,
            email=participant.email,
            reminder_type=reminder.type,
            survey=survey,
            link=self._tokens.survey_link(survey.id, participant.id, token),
        )
        if ok:
            result.sent += 1
        elif error == "already_sent":
            result.skipped += 1
        else:
            result.failed += 1
            result.details.append(
                {
                    "participant_id": participant.id,
                    "reminder_type": reminder.type.value,
                    "error": error or "",
                }
            )

    async def _deliver(
        self,
        *,
        participant_id: str,
        batch_id: str,
        email: str,
        reminder_type: ReminderType,
        survey: Survey,
        link: str,
    ) -> tuple[bool, str | None]:
        """Claim the marker, then send. Returns (sent, error)."""
        try:
            async with self._session_factory.begin() as session:
                marker = await ReminderMarkerRepository(session).insert(
                    participant_id, batch_id, reminder_type.value, self._clock()
                )
                marker_id = marker.id
        except IntegrityError:
            logger.debug(
                "Reminder already sent",
                extra={"participant_id": participant_id, "reminder_type": reminder_type.value},
            )
            return False, "already_sent"

        message = build_survey_email(
            reminder_type,
            to_email=email,
            survey_topic=survey.topic,
            survey_link=link,
            renderer=self._renderer,
        )
        sent = await self._email.send(message)
        if sent.success:
            return True, None

        error = sent.error_message or "send failed"
        logger.warning(
            "Survey email rejected by provider",
            extra={
                "participant_id": participant_id,
                "batch_id": batch_id,
                "reminder_type": reminder_type.value,
                "error": error,
            },
        )
        async with self._session_factory.begin() as session:
            await ReminderMarkerRepository(session).record_error(marker_id, error)
        return False, error
