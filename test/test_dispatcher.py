"""
Tests for claim-before-call dispatch.
"""

import asyncio
from datetime import datetime, timezone

import pytest
from sqlalchemy.exc import OperationalError

from conftest import recipients
from surveyreach.escalation.dispatcher import NotificationDispatcher
from surveyreach.escalation.models import DispatchOutcome
from surveyreach.participants.models import ParticipantStatus
from surveyreach.participants.repository import ParticipantRepository
from surveyreach.telephony.interface import (
    OutboundCallRequest,
    OutboundCallResponse,
    VoiceProvider,
)
from surveyreach.telephony.mock_adapter import MockVoiceProvider


async def _single_participant(registry, survey, with_phone: bool = True):
    created = await registry.create_batch(survey.id, recipients(1, with_phone=with_phone))
    participants = await registry.list_participants(survey.id, created.batch.id)
    return participants[0]


class RespondingProvider(VoiceProvider):
    """Provider whose call lands after the participant already responded."""

    def __init__(self, on_call) -> None:
        self._on_call = on_call
        self.calls: list[OutboundCallRequest] = []

    async def place_call(self, request: OutboundCallRequest) -> OutboundCallResponse:
        self.calls.append(request)
        await self._on_call(request)
        return OutboundCallResponse(
            provider_call_id="call-late",
            status="queued",
            created_at=datetime.now(timezone.utc),
        )


class TestClaimAndCall:
    @pytest.mark.asyncio
    async def test_successful_call_records_triggered(
        self, registry, dispatcher: NotificationDispatcher, voice_provider: MockVoiceProvider, survey
    ):
        participant = await _single_participant(registry, survey)

        result = await dispatcher.claim_and_call(participant, survey)

        assert result.outcome == DispatchOutcome.DISPATCHED
        assert result.provider_call_id == "MOCK_CALL_000001"
        stored = await registry.get_participant(survey.id, participant.batch_id, participant.id)
        assert stored.status == ParticipantStatus.CALL_TRIGGERED
        assert stored.call_id == "MOCK_CALL_000001"
        assert stored.claimed_at is not None
        assert stored.called_at is not None

        call = voice_provider.get_last_call()
        assert call is not None
        assert call.participant_id == participant.id
        assert call.idempotency_key == participant.id
        assert call.to == participant.phone
        assert call.survey_topic == "Customer Feedback"
        assert call.question_lines[0].startswith("1. How satisfied are you?")

    @pytest.mark.asyncio
    async def test_concurrent_claims_place_exactly_one_call(
        self, registry, dispatcher: NotificationDispatcher, voice_provider: MockVoiceProvider, survey
    ):
        participant = await _single_participant(registry, survey)

        results = await asyncio.gather(
            *(dispatcher.claim_and_call(participant, survey) for _ in range(5))
        )

        outcomes = [r.outcome for r in results]
        assert outcomes.count(DispatchOutcome.DISPATCHED) == 1
        assert outcomes.count(DispatchOutcome.SKIPPED) == 4
        assert len(voice_provider.calls_to(participant.id)) == 1

    @pytest.mark.asyncio
    async def test_responded_participant_is_skipped(
        self, registry, dispatcher, voice_provider: MockVoiceProvider, survey, session_factory
    ):
        participant = await _single_participant(registry, survey)
        async with session_factory.begin() as session:
            await ParticipantRepository(session).transition(
                participant.id,
                expected=[ParticipantStatus.SENT],
                target=ParticipantStatus.RESPONDED,
            )

        result = await dispatcher.claim_and_call(participant, survey)

        assert result.outcome == DispatchOutcome.SKIPPED
        assert voice_provider.calls == []

    @pytest.mark.asyncio
    async def test_missing_phone_is_skipped_without_claim(
        self, registry, dispatcher, voice_provider: MockVoiceProvider, survey
    ):
        participant = await _single_participant(registry, survey, with_phone=False)

        result = await dispatcher.claim_and_call(participant, survey)

        assert result.outcome == DispatchOutcome.SKIPPED
        assert result.reason == "no_phone"
        stored = await registry.get_participant(survey.id, participant.batch_id, participant.id)
        assert stored.status == ParticipantStatus.SENT

    @pytest.mark.asyncio
    async def test_rejected_call_fails_without_retry(
        self, registry, dispatcher, voice_provider: MockVoiceProvider, survey
    ):
        participant = await _single_participant(registry, survey)
        voice_provider.configure_failure(error_message="invalid number", error_code="400")

        result = await dispatcher.claim_and_call(participant, survey)
        again = await dispatcher.claim_and_call(participant, survey)

        assert result.outcome == DispatchOutcome.ERROR
        assert result.reason == "rejected: invalid number"
        assert again.outcome == DispatchOutcome.SKIPPED
        assert len(voice_provider.calls) == 1
        stored = await registry.get_participant(survey.id, participant.batch_id, participant.id)
        assert stored.status == ParticipantStatus.CALL_FAILED
        assert stored.call_result == "rejected: invalid number"

    @pytest.mark.asyncio
    async def test_timeout_fails_participant_and_alerts(
        self, registry, session_factory, voice_provider: MockVoiceProvider, survey, clock, caplog
    ):
        participant = await _single_participant(registry, survey)
        voice_provider.configure_delay(1.0)
        dispatcher = NotificationDispatcher(
            session_factory, voice_provider, call_timeout_seconds=0.05, clock=clock
        )

        with caplog.at_level("WARNING"):
            result = await dispatcher.claim_and_call(participant, survey)

        assert result.outcome == DispatchOutcome.ERROR
        assert result.reason == "timeout"
        stored = await registry.get_participant(survey.id, participant.batch_id, participant.id)
        assert stored.status == ParticipantStatus.CALL_FAILED
        assert any(getattr(r, "alert", None) == "provider_timeout" for r in caplog.records)

    @pytest.mark.asyncio
    async def test_claim_failure_places_no_call(
        self, registry, dispatcher, voice_provider: MockVoiceProvider, survey, monkeypatch
    ):
        participant = await _single_participant(registry, survey)

        async def broken_transition(self, *args, **kwargs):
            raise OperationalError("UPDATE participants", {}, Exception("database is down"))

        monkeypatch.setattr(ParticipantRepository, "transition", broken_transition)

        result = await dispatcher.claim_and_call(participant, survey)

        assert result.outcome == DispatchOutcome.ERROR
        assert result.reason == "claim_failed"
        assert voice_provider.calls == []

    @pytest.mark.asyncio
    async def test_response_during_call_is_not_overwritten(
        self, registry, ingester, session_factory, survey, clock
    ):
        created = await registry.create_batch(survey.id, recipients(1))
        invitation = created.invitations[0]
        participant = (await registry.list_participants(survey.id, created.batch.id))[0]

        async def respond(_: OutboundCallRequest) -> None:
            await ingester.record_submission(invitation.token, {"q1": 5})

        provider = RespondingProvider(respond)
        dispatcher = NotificationDispatcher(session_factory, provider, clock=clock)

        result = await dispatcher.claim_and_call(participant, survey)

        assert result.outcome == DispatchOutcome.DISPATCHED
        stored = await registry.get_participant(survey.id, created.batch.id, participant.id)
        assert stored.status == ParticipantStatus.RESPONDED
        assert stored.call_id == "call-late"
