"""
Repository for survey submissions.
"""

from datetime import datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from surveyreach.responses.models import SurveySubmission


class SubmissionRepository:
    """Repository for survey submission database operations."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_by_participant(self, participant_id: str) -> SurveySubmission | None:
        result = await self._session.execute(
            select(SurveySubmission).where(SurveySubmission.participant_id == participant_id)
        )
        return result.scalar_one_or_none()

    async def upsert(
        self,
        *,
        participant_id: str,
        survey_id: str,
        batch_id: str,
        answers: dict[str, Any],
        source: str,
        now: datetime,
    ) -> SurveySubmission:
        """Store answers, replacing any earlier submission of the participant.

        Raises:
            sqlalchemy.exc.IntegrityError: If a concurrent first submission
                for the same participant committed first.
        """
        submission = await self.get_by_participant(participant_id)
        if submission is None:
            submission = SurveySubmission(
                participant_id=participant_id,
                survey_id=survey_id,
                batch_id=batch_id,
                answers=answers,
                source=source,
                submission_count=1,
                submitted_at=now,
                updated_at=now,
            )
            self._session.add(submission)
        else:
            submission.answers = answers
            submission.source = source
            submission.submission_count += 1
            submission.updated_at = now
        await self._session.flush()
        return submission
