"""
Claim-before-call dispatch to the voice provider.

Ordering for one participant:

1. Conditionally move SENT -> CALL_CLAIMED and commit. Losing the race
   (already claimed, or RESPONDED) returns ``skipped`` with no side effects.
2. Only after the claim is committed, place the call. The participant id
   is the idempotency key.
3. On acceptance move CALL_CLAIMED -> CALL_TRIGGERED with the provider call id.
4. On rejection or timeout move CALL_CLAIMED -> CALL_FAILED. No retry.

Nothing ever moves a participant back to SENT, so a participant is called
at most once.
"""

import asyncio
from collections.abc import Callable
from datetime import datetime

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from surveyreach.escalation.models import DispatchOutcome, DispatchResult
from surveyreach.participants.models import Participant, ParticipantStatus
from surveyreach.participants.repository import ParticipantRepository
from surveyreach.shared.database import utcnow
from surveyreach.shared.logging import get_logger
from surveyreach.surveys.models import Survey
from surveyreach.telephony.interface import (
    CallTimeoutError,
    OutboundCallRequest,
    OutboundCallResponse,
    VoiceProvider,
    VoiceProviderError,
)

logger = get_logger(__name__)


class NotificationDispatcher:
    """Owns the atomic claim and the outbound call for one participant."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        voice_provider: VoiceProvider,
        *,
        call_timeout_seconds: float = 30.0,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._session_factory = session_factory
        self._voice = voice_provider
        self._call_timeout = call_timeout_seconds
        self._clock = clock

    async def claim_and_call(self, participant: Participant, survey: Survey) -> DispatchResult:
        """Claim the participant and, if the claim wins, call them."""
        pid = participant.id
        batch_id = participant.batch_id

        if not participant.phone:
            return DispatchResult(pid, DispatchOutcome.SKIPPED, batch_id, reason="no_phone")

        try:
            claimed = await self._claim(pid)
        except SQLAlchemyError:
            # Fail closed: no call without a durable claim.
            logger.exception(
                "Claim could not be persisted; call not placed",
                extra={"participant_id": pid, "batch_id": batch_id},
            )
            return DispatchResult(pid, DispatchOutcome.ERROR, batch_id, reason="claim_failed")

        if not claimed:
            logger.debug(
                "Claim lost; participant no longer SENT",
                extra={"participant_id": pid, "batch_id": batch_id},
            )
            return DispatchResult(pid, DispatchOutcome.SKIPPED, batch_id, reason="not_sent")

        request = OutboundCallRequest(
            to=participant.phone,
            participant_id=pid,
            survey_id=survey.id,
            batch_id=batch_id,
            survey_topic=survey.topic,
            question_lines=tuple(survey.question_lines()),
        )

        try:
            response = await asyncio.wait_for(self._voice.place_call(request), self._call_timeout)
        except (TimeoutError, CallTimeoutError) as e:
            logger.warning(
                "Voice provider timed out",
                extra={
                    "alert": "provider_timeout",
                    "participant_id": pid,
                    "batch_id": batch_id,
                    "timeout_seconds": self._call_timeout,
                },
            )
            await self._fail(pid, f"timeout: {e!s}" if str(e) else "timeout")
            return DispatchResult(pid, DispatchOutcome.ERROR, batch_id, reason="timeout")
        except VoiceProviderError as e:
            logger.warning(
                "Voice provider rejected call",
                extra={
                    "participant_id": pid,
                    "batch_id": batch_id,
                    "error_code": e.error_code,
                    "error": str(e),
                },
            )
            await self._fail(pid, f"rejected: {e!s}")
            return DispatchResult(pid, DispatchOutcome.ERROR, batch_id, reason=f"rejected: {e!s}")
        except Exception as e:
            logger.exception(
                "Unexpected voice provider failure",
                extra={"participant_id": pid, "batch_id": batch_id},
            )
            await self._fail(pid, f"error: {e!s}")
            return DispatchResult(pid, DispatchOutcome.ERROR, batch_id, reason="provider_error")

        await self._record_triggered(pid, batch_id, response)
        return DispatchResult(
            pid,
            DispatchOutcome.DISPATCHED,
            batch_id,
            provider_call_id=response.provider_call_id,
        )

    async def _claim(self, participant_id: str) -> bool:
        async with self._session_factory.begin() as session:
            return await ParticipantRepository(session).transition(
                participant_id,
                expected=[ParticipantStatus.SENT],
                target=ParticipantStatus.CALL_CLAIMED,
                values={"claimed_at": self._clock()},
            )

    async def _record_triggered(
        self,
        participant_id: str,
        batch_id: str,
        response: OutboundCallResponse,
    ) -> None:
        try:
            async with self._session_factory.begin() as session:
                repo = ParticipantRepository(session)
                moved = await repo.transition(
                    participant_id,
                    expected=[ParticipantStatus.CALL_CLAIMED],
                    target=ParticipantStatus.CALL_TRIGGERED,
                    values={
                        "called_at": self._clock(),
                        "call_id": response.provider_call_id,
                        "call_result": "triggered",
                    },
                )
                if not moved:
                    # RESPONDED or already ended by a webhook: keep that status,
                    # but store the call id so later events still correlate.
                    await repo.attach_call_id(participant_id, response.provider_call_id)
        except SQLAlchemyError:
            logger.exception(
                "Call placed but its state could not be recorded",
                extra={
                    "reconcile": True,
                    "participant_id": participant_id,
                    "batch_id": batch_id,
                    "provider_call_id": response.provider_call_id,
                },
            )
            return

        logger.info(
            "Call triggered",
            extra={
                "participant_id": participant_id,
                "batch_id": batch_id,
                "provider_call_id": response.provider_call_id,
                "status_advanced": moved,
            },
        )

    async def _fail(self, participant_id: str, reason: str) -> None:
        try:
            async with self._session_factory.begin() as session:
                await ParticipantRepository(session).transition(
                    participant_id,
                    expected=[ParticipantStatus.CALL_CLAIMED],
                    target=ParticipantStatus.CALL_FAILED,
                    values={"call_result": reason[:255], "completed_at": self._clock()},
                )
        except SQLAlchemyError:
            # Left CALL_CLAIMED; the stale claim sweep fails it later.
            logger.exception(
                "Could not record failed call",
                extra={"participant_id": participant_id, "reason": reason},
            )
