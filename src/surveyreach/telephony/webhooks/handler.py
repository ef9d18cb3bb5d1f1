"""
Webhook ingestion for voice provider call events.

Events are authenticated with an HMAC-SHA256 signature over the raw body
before anything is parsed or written. Call-ended events move the matching
participant from CALL_CLAIMED/CALL_TRIGGERED to CALL_COMPLETED or
CALL_FAILED. Every other status, RESPONDED included, is left untouched, so
redelivered and late events are no-ops.
"""

import json
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, assert_never

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from surveyreach.participants.models import Participant, ParticipantStatus
from surveyreach.participants.repository import ParticipantRepository
from surveyreach.shared.database import utcnow
from surveyreach.shared.logging import get_logger
from surveyreach.telephony.events import (
    CallEndedEvent,
    ProviderEvent,
    StatusUpdateEvent,
    TranscriptEvent,
    UnknownEvent,
    parse_provider_event,
)
from surveyreach.telephony.models import CallTranscriptEntry
from surveyreach.telephony.signature import verify_signature
from surveyreach.telephony.transcript import extract_answers

logger = get_logger(__name__)

# A call can only end while it is ours to end.
CALL_ENDABLE_STATUSES = (ParticipantStatus.CALL_CLAIMED, ParticipantStatus.CALL_TRIGGERED)


@dataclass(frozen=True)
class WebhookResult:
    """HTTP status and body for a processed webhook."""

    status_code: int
    body: dict[str, Any] = field(default_factory=dict)


class WebhookIngester:
    """Authenticate and apply voice provider events."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        webhook_secret: str,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._session_factory = session_factory
        self._secret = webhook_secret
        self._clock = clock

    async def handle_provider_event(
        self,
        raw_body: bytes,
        signature: str | None,
    ) -> WebhookResult:
        """Verify, parse and apply one webhook delivery.

        Returns:
            401 on a missing or invalid signature (nothing is written), 500 if
            the event could not be persisted, 200 otherwise.
        """
        if not verify_signature(self._secret, raw_body, signature):
            logger.warning(
                "Webhook signature verification failed",
                extra={
                    "possible_forgery": True,
                    "signature_present": bool(signature),
                    "body_bytes": len(raw_body),
                },
            )
            return WebhookResult(401, {"error": "Unauthorized"})

        try:
            payload = json.loads(raw_body)
        except ValueError:
            logger.warning("Signed webhook body is not valid JSON; ignored")
            return WebhookResult(200, {"received": True, "outcome": "ignored"})

        event = parse_provider_event(payload)
        try:
            outcome = await self._apply(event)
        except SQLAlchemyError:
            logger.exception(
                "Webhook processing failed",
                extra={"event_type": event.event_type, "call_id": event.call_id},
            )
            return WebhookResult(500, {"error": "Webhook processing failed"})

        return WebhookResult(200, {"received": True, "outcome": outcome})

    async def _apply(self, event: ProviderEvent) -> str:
        match event:
            case CallEndedEvent():
                return await self._handle_call_ended(event)
            case StatusUpdateEvent():
                logger.info(
                    "Call status update",
                    extra={"call_id": event.call_id, "status": event.status},
                )
                return "logged"
            case TranscriptEvent():
                logger.info(
                    "Call transcript update",
                    extra={
                        "call_id": event.call_id,
                        "role": event.role,
                        "transcript_chars": len(event.transcript or ""),
                    },
                )
                return "logged"
            case UnknownEvent():
                logger.info(
                    "Unhandled webhook type ignored",
                    extra={"event_type": event.event_type, "call_id": event.call_id},
                )
                return "ignored"
            case _:
                assert_never(event)

    async def _resolve_participant(
        self,
        repo: ParticipantRepository,
        event: CallEndedEvent,
    ) -> Participant | None:
        if event.call_id:
            participant = await repo.get_by_call_id(event.call_id)
            if participant is not None:
                return participant

        # The call id may not be stored yet if the event overtook the dispatcher.
        meta = event.metadata
        if not meta.participant_id:
            return None
        participant = await repo.get(meta.participant_id)
        if participant is None:
            return None
        if meta.survey_id and participant.survey_id != meta.survey_id:
            return None
        if meta.batch_id and participant.batch_id != meta.batch_id:
            return None
        if event.call_id and participant.call_id not in (None, event.call_id):
            return None
        return participant

    async def _handle_call_ended(self, event: CallEndedEvent) -> str:
        now = self._clock()
        answers = extract_answers(event.transcript)
        target = ParticipantStatus.CALL_FAILED if event.failed else ParticipantStatus.CALL_COMPLETED

        async with self._session_factory.begin() as session:
            repo = ParticipantRepository(session)
            participant = await self._resolve_participant(repo, event)

            if participant is None:
                outcome = "unmatched"
                logger.warning(
                    "Call-ended event matches no participant",
                    extra={"call_id": event.call_id, "survey_id": event.metadata.survey_id},
                )
            else:
                values: dict[str, Any] = {
                    "completed_at": now,
                    "call_result": event.ended_reason or "completed",
                    "call_transcript": event.transcript,
                    "call_answers": answers,
                }
                if participant.call_id is None and event.call_id:
                    values["call_id"] = event.call_id
                moved = await repo.transition(
                    participant.id,
                    expected=CALL_ENDABLE_STATUSES,
                    target=target,
                    values=values,
                )
                outcome = "applied" if moved else "noop"
                logger.info(
                    "Call-ended event processed",
                    extra={
                        "call_id": event.call_id,
                        "participant_id": participant.id,
                        "previous_status": participant.status.value,
                        "target_status": target.value if moved else participant.status.value,
                        "outcome": outcome,
                        "answers_found": bool(answers),
                    },
                )

            session.add(
                CallTranscriptEntry(
                    call_id=event.call_id,
                    participant_id=participant.id if participant is not None else None,
                    event_type=event.event_type,
                    outcome=outcome,
                    ended_reason=event.ended_reason,
                    transcript=event.transcript,
                    answers=answers,
                    payload=event.raw_payload,
                    received_at=now,
                )
            )
        return outcome
