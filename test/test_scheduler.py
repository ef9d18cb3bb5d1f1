"""
Tests for the escalation scheduler.
"""

import asyncio

import pytest
from sqlalchemy.exc import OperationalError

from conftest import recipients
from surveyreach.escalation.scheduler import EscalationScheduler
from surveyreach.participants.models import BatchEscalationState, ParticipantStatus
from surveyreach.participants.repository import ParticipantRepository
from surveyreach.shared.exceptions import NotFoundError
from surveyreach.telephony.mock_adapter import MockVoiceProvider


async def _respond(session_factory, participant_ids) -> None:
    async with session_factory.begin() as session:
        repo = ParticipantRepository(session)
        for pid in participant_ids:
            await repo.transition(
                pid,
                expected=[ParticipantStatus.SENT],
                target=ParticipantStatus.RESPONDED,
            )


async def _batch_state(session_factory, batch_id: str) -> BatchEscalationState:
    async with session_factory() as session:
        batch = await ParticipantRepository(session).get_batch(batch_id)
    return batch.escalation_state


class TestProcessDueBatches:
    @pytest.mark.asyncio
    async def test_calls_exactly_the_non_responders(
        self,
        registry,
        scheduler: EscalationScheduler,
        voice_provider: MockVoiceProvider,
        session_factory,
        survey,
        clock,
    ):
        created = await registry.create_batch(survey.id, recipients(10))
        responders = [inv.participant_id for inv in created.invitations[:3]]
        await _respond(session_factory, responders)
        clock.advance(minutes=61)

        result = await scheduler.process_due_batches()

        assert result.successful == 7
        assert result.failed == 0
        assert result.batches == [created.batch.id]
        called = {call.participant_id for call in voice_provider.calls}
        assert len(voice_provider.calls) == 7
        assert called.isdisjoint(responders)
        assert await _batch_state(session_factory, created.batch.id) == BatchEscalationState.PROCESSED

        participants = await registry.list_participants(survey.id, created.batch.id)
        by_status = {p.id: p.status for p in participants}
        assert all(by_status[pid] == ParticipantStatus.RESPONDED for pid in responders)
        assert sum(1 for s in by_status.values() if s == ParticipantStatus.CALL_TRIGGERED) == 7

    @pytest.mark.asyncio
    async def test_rescan_of_processed_batch_places_no_calls(
        self, registry, scheduler, voice_provider: MockVoiceProvider, survey, clock
    ):
        await registry.create_batch(survey.id, recipients(4))
        clock.advance(minutes=61)
        await scheduler.process_due_batches()

        again = await scheduler.process_due_batches()

        assert again.successful == 0
        assert again.batches == []
        assert len(voice_provider.calls) == 4

    @pytest.mark.asyncio
    async def test_batch_not_yet_due_is_left_alone(
        self, registry, scheduler, voice_provider: MockVoiceProvider, session_factory, survey, clock
    ):
        created = await registry.create_batch(survey.id, recipients(3))
        clock.advance(minutes=59)

        result = await scheduler.process_due_batches()

        assert result.batches == []
        assert voice_provider.calls == []
        assert await _batch_state(session_factory, created.batch.id) == BatchEscalationState.WAITING

    @pytest.mark.asyncio
    async def test_batches_are_isolated(
        self, registry, scheduler, voice_provider: MockVoiceProvider, survey, clock
    ):
        early = await registry.create_batch(survey.id, recipients(2), escalation_delay_minutes=10)
        late = await registry.create_batch(survey.id, recipients(2), escalation_delay_minutes=120)
        clock.advance(minutes=11)

        await scheduler.process_due_batches()

        called_batches = {call.batch_id for call in voice_provider.calls}
        assert called_batches == {early.batch.id}
        late_participants = await registry.list_participants(survey.id, late.batch.id)
        assert {p.status for p in late_participants} == {ParticipantStatus.SENT}

    @pytest.mark.asyncio
    async def test_voice_disabled_batch_is_never_called(
        self, registry, scheduler, voice_provider: MockVoiceProvider, survey, clock
    ):
        await registry.create_batch(survey.id, recipients(2), voice_escalation=False)
        clock.advance(days=1)

        result = await scheduler.process_due_batches()
        manual = await scheduler.trigger_escalation(survey.id)

        assert result.batches == []
        assert manual.batches == []
        assert voice_provider.calls == []

    @pytest.mark.asyncio
    async def test_participants_without_phone_do_not_block_processing(
        self, registry, scheduler, voice_provider: MockVoiceProvider, session_factory, survey, clock
    ):
        created = await registry.create_batch(
            survey.id,
            recipients(2) + recipients(2, with_phone=False, prefix="nophone"),
        )
        clock.advance(minutes=61)

        result = await scheduler.process_due_batches()

        assert result.successful == 2
        assert await _batch_state(session_factory, created.batch.id) == BatchEscalationState.PROCESSED

    @pytest.mark.asyncio
    async def test_failed_calls_are_not_retried(
        self, registry, scheduler, voice_provider: MockVoiceProvider, survey, clock
    ):
        await registry.create_batch(survey.id, recipients(3))
        voice_provider.configure_failure(error_message="provider down")
        clock.advance(minutes=61)

        first = await scheduler.process_due_batches()
        voice_provider.configure_failure(False)
        second = await scheduler.process_due_batches()

        assert first.failed == 3
        assert len(first.details) == 3
        assert second.successful == 0
        assert len(voice_provider.calls) == 3


class TestTriggerEscalation:
    @pytest.mark.asyncio
    async def test_manual_trigger_ignores_due_time(
        self, registry, scheduler, voice_provider: MockVoiceProvider, survey
    ):
        created = await registry.create_batch(survey.id, recipients(3))

        result = await scheduler.trigger_escalation(survey.id, created.batch.id)

        assert result.successful == 3
        assert {d["batchId"] for d in result.details} == {created.batch.id}

    @pytest.mark.asyncio
    async def test_manual_trigger_racing_tick_never_double_calls(
        self, registry, scheduler, voice_provider: MockVoiceProvider, survey, clock
    ):
        created = await registry.create_batch(survey.id, recipients(6))
        clock.advance(minutes=61)

        manual, automatic = await asyncio.gather(
            scheduler.trigger_escalation(survey.id),
            scheduler.process_due_batches(),
        )

        assert manual.successful + automatic.successful == 6
        for invitation in created.invitations:
            assert len(voice_provider.calls_to(invitation.participant_id)) == 1

    @pytest.mark.asyncio
    async def test_two_schedulers_sharing_a_store_never_double_call(
        self, registry, session_factory, dispatcher, voice_provider: MockVoiceProvider, survey, clock
    ):
        created = await registry.create_batch(survey.id, recipients(5))
        clock.advance(minutes=61)
        first = EscalationScheduler(session_factory, dispatcher, clock=clock)
        second = EscalationScheduler(session_factory, dispatcher, clock=clock)

        await asyncio.gather(first.process_due_batches(), second.process_due_batches())

        for invitation in created.invitations:
            assert len(voice_provider.calls_to(invitation.participant_id)) == 1

    @pytest.mark.asyncio
    async def test_failing_batch_keeps_results_of_calls_already_placed(
        self, registry, scheduler, voice_provider: MockVoiceProvider, session_factory, survey,
        monkeypatch,
    ):
        healthy = await registry.create_batch(survey.id, recipients(2, prefix="ok"))
        broken = await registry.create_batch(survey.id, recipients(2, prefix="bad"))
        original_finish = EscalationScheduler._finish_batch

        async def finish_or_fail(self, batch):
            if batch.id == broken.batch.id:
                raise OperationalError("UPDATE batches", {}, Exception("disk I/O error"))
            return await original_finish(self, batch)

        monkeypatch.setattr(EscalationScheduler, "_finish_batch", finish_or_fail)

        result = await scheduler.trigger_escalation(survey.id)

        assert result.successful == 4
        assert len(voice_provider.calls) == 4
        assert result.failed_batches == [broken.batch.id]
        assert sorted(result.batches) == sorted([healthy.batch.id, broken.batch.id])
        assert await _batch_state(session_factory, healthy.batch.id) == BatchEscalationState.PROCESSED
        assert await _batch_state(session_factory, broken.batch.id) == BatchEscalationState.DUE

    @pytest.mark.asyncio
    async def test_batch_lock_released_once_processed(
        self, registry, scheduler, survey, clock
    ):
        first = await registry.create_batch(survey.id, recipients(2))
        clock.advance(minutes=61)
        await scheduler.process_due_batches()
        second = await registry.create_batch(survey.id, recipients(1, with_phone=False))
        clock.advance(minutes=61)
        await scheduler.process_due_batches()

        assert first.batch.id not in scheduler._batch_locks
        assert second.batch.id not in scheduler._batch_locks

    @pytest.mark.asyncio
    async def test_unknown_batch_raises(self, scheduler, survey):
        with pytest.raises(NotFoundError):
            await scheduler.trigger_escalation(survey.id, "b_missing")


class TestStaleClaims:
    @pytest.mark.asyncio
    async def test_stale_claim_is_failed(
        self, registry, scheduler, session_factory, survey, clock
    ):
        created = await registry.create_batch(survey.id, recipients(2))
        stuck = created.invitations[0].participant_id
        async with session_factory.begin() as session:
            await ParticipantRepository(session).transition(
                stuck,
                expected=[ParticipantStatus.SENT],
                target=ParticipantStatus.CALL_CLAIMED,
                values={"claimed_at": clock()},
            )

        clock.advance(minutes=10)
        assert await scheduler.sweep_stale_claims() == []

        clock.advance(minutes=10)
        assert await scheduler.sweep_stale_claims() == [stuck]

        participant = await registry.get_participant(survey.id, created.batch.id, stuck)
        assert participant.status == ParticipantStatus.CALL_FAILED
        assert participant.call_result == "stale_claim"


class TestSchedules:
    @pytest.mark.asyncio
    async def test_list_schedules_reports_time_until_due(
        self, registry, scheduler, survey, clock
    ):
        created = await registry.create_batch(survey.id, recipients(2))
        clock.advance(minutes=15)

        schedules = await scheduler.list_schedules()

        assert len(schedules) == 1
        schedule = schedules[0]
        assert schedule.batch_id == created.batch.id
        assert schedule.time_until_due_seconds == 45 * 60
        assert schedule.is_due is False
        assert schedule.pending == 2

        clock.advance(minutes=50)
        schedules = await scheduler.list_schedules()
        assert schedules[0].is_due is True
        assert schedules[0].time_until_due_seconds == 0


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_start_runs_ticks_until_stopped(
        self, registry, scheduler, voice_provider: MockVoiceProvider, session_factory, survey, clock
    ):
        created = await registry.create_batch(survey.id, recipients(2))
        clock.advance(minutes=61)

        await scheduler.start()
        await scheduler.start()
        assert scheduler.running is True

        for _ in range(100):
            if await _batch_state(session_factory, created.batch.id) == BatchEscalationState.PROCESSED:
                break
            await asyncio.sleep(0.02)

        await scheduler.stop()

        assert scheduler.running is False
        assert len(voice_provider.calls) == 2

    @pytest.mark.asyncio
    async def test_stop_without_start(self, scheduler):
        await scheduler.stop()

        assert scheduler.running is False
