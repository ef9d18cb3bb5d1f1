"""
Response ingestion.

A submission resolves to exactly one participant through its signed link
token and marks that participant RESPONDED. RESPONDED is the escalation
kill-switch: once written, no scheduler tick claims the participant and no
call outcome overwrites it.
"""

from collections.abc import Callable
from datetime import datetime
from typing import Any

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from surveyreach.participants.models import ParticipantStatus
from surveyreach.participants.repository import ParticipantRepository
from surveyreach.participants.tokens import LinkClaims, SurveyLinkTokens
from surveyreach.responses.repository import SubmissionRepository
from surveyreach.responses.schemas import SubmissionAck
from surveyreach.shared.database import utcnow
from surveyreach.shared.exceptions import InvalidTokenError
from surveyreach.shared.logging import get_logger

logger = get_logger(__name__)

# Every status may move to RESPONDED except RESPONDED itself.
RESPONDABLE_STATUSES = tuple(s for s in ParticipantStatus if s != ParticipantStatus.RESPONDED)


class ResponseIngester:
    """Record survey submissions and stop escalation for the respondent."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        tokens: SurveyLinkTokens,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._session_factory = session_factory
        self._tokens = tokens
        self._clock = clock

    async def record_submission(
        self,
        token: str,
        answers: dict[str, Any],
        source: str = "web",
    ) -> SubmissionAck:
        """Store answers for the participant the token identifies.

        A repeated submission replaces the stored answers (last write wins)
        and never moves the status away from RESPONDED.

        Raises:
            InvalidTokenError: If the token is invalid or names no participant.
        """
        claims = self._tokens.decode(token)

        try:
            return await self._record(claims, answers, source)
        except IntegrityError:
            # A concurrent first submission inserted the row; retry as an update.
            logger.info(
                "Concurrent submission detected, retrying",
                extra={"participant_id": claims.participant_id},
            )
            return await self._record(claims, answers, source)

    async def _record(
        self,
        claims: LinkClaims,
        answers: dict[str, Any],
        source: str,
    ) -> SubmissionAck:
        survey_id, batch_id, participant_id = (
            claims.survey_id,
            claims.batch_id,
            claims.participant_id,
        )
        now = self._clock()
        async with self._session_factory.begin() as session:
            participants = ParticipantRepository(session)
            participant = await participants.get_in_batch(survey_id, batch_id, participant_id)
            if participant is None:
                raise InvalidTokenError("Survey token does not match a participant")
            previous = participant.status

            await SubmissionRepository(session).upsert(
                participant_id=participant_id,
                survey_id=survey_id,
                batch_id=batch_id,
                answers=answers,
                source=source,
                now=now,
            )
            first_response = await participants.transition(
                participant_id,
                expected=RESPONDABLE_STATUSES,
                target=ParticipantStatus.RESPONDED,
                values={"responded_at": now},
            )

        logger.info(
            "Submission recorded",
            extra={
                "survey_id": survey_id,
                "batch_id": batch_id,
                "participant_id": participant_id,
                "previous_status": previous.value,
                "first_response": first_response,
            },
        )
        return SubmissionAck(
            participant_id=participant_id,
            status=ParticipantStatus.RESPONDED,
            first_response=first_response,
        )
