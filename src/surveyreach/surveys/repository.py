"""
Repository for survey records.
"""

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from surveyreach.surveys.models import Survey


class SurveyRepository:
    """Repository for survey database operations."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(self, survey_id: str) -> Survey | None:
        """Get a survey by id."""
        result = await self._session.execute(select(Survey).where(Survey.id == survey_id))
        return result.scalar_one_or_none()

    async def add(self, survey: Survey) -> Survey:
        """Persist a new survey."""
        self._session.add(survey)
        await self._session.flush()
        return survey
