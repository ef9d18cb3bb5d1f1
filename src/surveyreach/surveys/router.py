"""
Survey catalog API router.
"""

import secrets
from typing import Annotated

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from surveyreach.dependencies import get_session_factory
from surveyreach.shared.exceptions import NotFoundError, ValidationError
from surveyreach.shared.logging import get_logger
from surveyreach.surveys.models import Survey
from surveyreach.surveys.repository import SurveyRepository
from surveyreach.surveys.schemas import SurveyCreate, SurveyResponse

logger = get_logger(__name__)

router = APIRouter(prefix="/surveys", tags=["surveys"])

SessionFactoryDep = Annotated[async_sessionmaker[AsyncSession], Depends(get_session_factory)]


@router.post("", response_model=SurveyResponse, status_code=status.HTTP_201_CREATED)
async def create_survey(body: SurveyCreate, session_factory: SessionFactoryDep) -> SurveyResponse:
    """Register a survey so it can be sent to batches of recipients."""
    survey_id = body.id or f"s_{secrets.token_hex(6)}"
    questions = []
    for index, question in enumerate(body.questions, start=1):
        data = question.model_dump(exclude_none=True)
        data.setdefault("id", f"question_{index}")
        questions.append(data)

    async with session_factory.begin() as session:
        repo = SurveyRepository(session)
        if await repo.get(survey_id) is not None:
            raise ValidationError(f"Survey {survey_id} already exists")
        survey = await repo.add(
            Survey(
                id=survey_id,
                topic=body.topic,
                description=body.description,
                questions=questions,
                start_date=body.start_date,
                end_date=body.end_date,
                timezone=body.timezone,
            )
        )
        response = SurveyResponse.model_validate(survey)

    logger.info("Survey created", extra={"survey_id": survey_id, "questions": len(questions)})
    return response


@router.get("/{survey_id}", response_model=SurveyResponse)
async def get_survey(survey_id: str, session_factory: SessionFactoryDep) -> SurveyResponse:
    async with session_factory() as session:
        survey = await SurveyRepository(session).get(survey_id)
    if survey is None:
        raise NotFoundError(f"Survey {survey_id} not found")
    return SurveyResponse.model_validate(survey)
