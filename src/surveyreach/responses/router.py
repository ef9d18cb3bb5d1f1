"""
Survey submission API router.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, status

from surveyreach.dependencies import get_response_ingester
from surveyreach.responses.schemas import SubmissionAck, SubmissionRequest
from surveyreach.responses.service import ResponseIngester

router = APIRouter(tags=["responses"])


@router.post("/submit", response_model=SubmissionAck, status_code=status.HTTP_202_ACCEPTED)
async def submit_response(
    body: SubmissionRequest,
    ingester: Annotated[ResponseIngester, Depends(get_response_ingester)],
) -> SubmissionAck:
    """Record a respondent's answers. Invalid or unknown tokens return 400."""
    return await ingester.record_submission(body.token, body.answers)
