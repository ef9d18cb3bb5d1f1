"""
Escalation scheduler.

A fixed-interval tick:

1. fails participants stuck in CALL_CLAIMED longer than the stale threshold,
2. processes every batch whose escalation delay has elapsed,
3. sends due email reminders.

A batch moves WAITING -> DUE when first processed and DUE -> PROCESSED once
no participant that could still be called remains SENT. Re-scanning a
PROCESSED batch places no calls. The manual trigger goes through the same
per-batch path, and every call is gated by the participant claim, so a
manual trigger racing a tick cannot call anyone twice.
"""

import asyncio
from collections import defaultdict
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from surveyreach.escalation.dispatcher import NotificationDispatcher
from surveyreach.escalation.models import (
    BatchSchedule,
    DispatchOutcome,
    DispatchResult,
    EscalationRunResult,
)
from surveyreach.participants.models import Batch, BatchEscalationState, Participant
from surveyreach.participants.repository import ParticipantRepository
from surveyreach.reminders.service import ReminderRunResult, ReminderService
from surveyreach.shared.database import utcnow
from surveyreach.shared.exceptions import NotFoundError
from surveyreach.shared.logging import get_logger
from surveyreach.surveys.models import Survey
from surveyreach.surveys.repository import SurveyRepository

logger = get_logger(__name__)

ACTIVE_STATES = (BatchEscalationState.WAITING, BatchEscalationState.DUE)


@dataclass
class TickResult:
    """Outcome of one scheduler tick."""

    stale_failed: list[str] = field(default_factory=list)
    escalation: EscalationRunResult = field(default_factory=EscalationRunResult)
    reminders: ReminderRunResult | None = None


class EscalationScheduler:
    """Drives voice escalation of non-responders on a fixed interval."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        dispatcher: NotificationDispatcher,
        *,
        reminder_service: ReminderService | None = None,
        interval_seconds: float = 60,
        max_concurrent_calls: int = 10,
        stale_claim_minutes: int = 15,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        """Initialize the scheduler.

        Args:
            session_factory: Factory for short per-operation sessions.
            dispatcher: Claim-and-call implementation.
            reminder_service: Sends due reminder emails on each tick when set.
            interval_seconds: Delay between ticks.
            max_concurrent_calls: Upper bound on in-flight provider calls.
            stale_claim_minutes: Age after which a CALL_CLAIMED participant is failed.
            clock: Source of the current UTC time.
        """
        self._session_factory = session_factory
        self._dispatcher = dispatcher
        self._reminders = reminder_service
        self._interval = interval_seconds
        self._stale_after = timedelta(minutes=stale_claim_minutes)
        self._clock = clock
        self._call_slots = asyncio.Semaphore(max_concurrent_calls)
        self._batch_locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._running = False
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._running

    @property
    def interval_seconds(self) -> float:
        return self._interval

    async def start(self) -> None:
        """Start the scheduler background task."""
        if self._running:
            logger.warning("Escalation scheduler already running")
            return

        self._running = True
        self._task = asyncio.create_task(self._run_loop())
        logger.info("Escalation scheduler started", extra={"interval_seconds": self._interval})

    async def stop(self) -> None:
        """Stop the scheduler background task.

        In-flight claims are not rolled back; a restart resumes from the
        persisted participant states.
        """
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Escalation scheduler stopped")

    async def _run_loop(self) -> None:
        while self._running:
            try:
                await self.tick()
            except Exception:
                logger.exception("Scheduler tick failed")
            await asyncio.sleep(self._interval)

    async def tick(self) -> TickResult:
        """Run one full scheduler iteration."""
        result = TickResult()
        result.stale_failed = await self.sweep_stale_claims()
        result.escalation = await self.process_due_batches()
        if self._reminders is not None:
            result.reminders = await self._reminders.process_due_reminders(self._clock())
        return result

    async def sweep_stale_claims(self) -> list[str]:
        """Fail participants whose claim never reached a call outcome."""
        now = self._clock()
        async with self._session_factory.begin() as session:
            failed = await ParticipantRepository(session).fail_stale_claims(
                now - self._stale_after, now
            )
        if failed:
            logger.warning(
                "Stale call claims failed",
                extra={"count": len(failed), "participant_ids": failed},
            )
        return failed

    async def process_due_batches(self) -> EscalationRunResult:
        """Escalate every batch whose delay has elapsed."""
        now = self._clock()
        async with self._session_factory() as session:
            batches = await ParticipantRepository(session).list_due_batches(now)
        return await self._process_batches(batches)

    async def trigger_escalation(
        self,
        survey_id: str,
        batch_id: str | None = None,
    ) -> EscalationRunResult:
        """Escalate a survey's batches now, ignoring their due time.

        Omitting batch_id processes every batch of the survey, each one
        independently.

        Raises:
            NotFoundError: If batch_id names no batch of the survey.
        """
        async with self._session_factory() as session:
            batches = await ParticipantRepository(session).list_batches(survey_id, batch_id)

        if batch_id is not None and not batches:
            raise NotFoundError(
                f"Batch {batch_id} not found",
                details={"survey_id": survey_id, "batch_id": batch_id},
            )

        eligible = [
            batch
            for batch in batches
            if batch.voice_escalation and batch.escalation_state in ACTIVE_STATES
        ]
        logger.info(
            "Manual escalation triggered",
            extra={
                "survey_id": survey_id,
                "batch_id": batch_id,
                "batches": len(eligible),
            },
        )
        return await self._process_batches(eligible)

    async def list_schedules(self) -> list[BatchSchedule]:
        """Active voice-escalation batches with their timing."""
        now = self._clock()
        schedules = []
        async with self._session_factory() as session:
            repo = ParticipantRepository(session)
            for batch in await repo.list_batches():
                if not batch.voice_escalation or batch.escalation_state not in ACTIVE_STATES:
                    continue
                remaining = (batch.escalation_due_at - now).total_seconds()
                schedules.append(
                    BatchSchedule(
                        survey_id=batch.survey_id,
                        batch_id=batch.id,
                        created_at=batch.created_at,
                        escalation_due_at=batch.escalation_due_at,
                        escalation_state=batch.escalation_state,
                        time_until_due_seconds=max(0, int(remaining)),
                        is_due=remaining <= 0,
                        pending=await repo.count_escalation_candidates(batch.id),
                    )
                )
        return schedules

    async def _process_batches(self, batches: Sequence[Batch]) -> EscalationRunResult:
        results = [EscalationRunResult(batches=[batch.id]) for batch in batches]
        outcomes = await asyncio.gather(
            *(self._process_batch(batch, result) for batch, result in zip(batches, results)),
            return_exceptions=True,
        )
        total = EscalationRunResult()
        for batch, result, outcome in zip(batches, results, outcomes):
            if isinstance(outcome, BaseException):
                if not isinstance(outcome, Exception):
                    raise outcome
                logger.error(
                    "Batch escalation failed",
                    exc_info=outcome,
                    extra={
                        "survey_id": batch.survey_id,
                        "batch_id": batch.id,
                        "successful": result.successful,
                    },
                )
                result.failed_batches.append(batch.id)
            total.merge(result)
        return total

    async def _process_batch(self, batch: Batch, result: EscalationRunResult) -> None:
        """Escalate one batch, recording each dispatch into result as it lands."""
        finished = False
        async with self._batch_locks[batch.id]:
            async with self._session_factory.begin() as session:
                repo = ParticipantRepository(session)
                await repo.set_batch_state(
                    batch.id,
                    expected=[BatchEscalationState.WAITING],
                    target=BatchEscalationState.DUE,
                )
                survey = await SurveyRepository(session).get(batch.survey_id)
                candidates = await repo.list_escalation_candidates(batch.id)

            if survey is None:
                logger.error(
                    "Batch references a missing survey",
                    extra={"batch_id": batch.id, "survey_id": batch.survey_id},
                )
                return

            dispatched = await asyncio.gather(
                *(self._dispatch(participant, survey) for participant in candidates)
            )
            for dispatch in dispatched:
                result.record(dispatch)

            finished = await self._finish_batch(batch)

        if finished:
            self._batch_locks.pop(batch.id, None)

        logger.info(
            "Batch escalation processed",
            extra={
                "survey_id": batch.survey_id,
                "batch_id": batch.id,
                "successful": result.successful,
                "failed": result.failed,
                "skipped": result.skipped,
            },
        )

    async def _dispatch(self, participant: Participant, survey: Survey) -> DispatchResult:
        async with self._call_slots:
            try:
                return await self._dispatcher.claim_and_call(participant, survey)
            except Exception:
                logger.exception(
                    "Dispatch failed",
                    extra={"participant_id": participant.id, "batch_id": participant.batch_id},
                )
                return DispatchResult(
                    participant.id,
                    DispatchOutcome.ERROR,
                    participant.batch_id,
                    reason="dispatch_failed",
                )

    async def _finish_batch(self, batch: Batch) -> bool:
        """Mark the batch PROCESSED if nobody is left to call. Returns True when done."""
        async with self._session_factory.begin() as session:
            repo = ParticipantRepository(session)
            if await repo.count_escalation_candidates(batch.id) > 0:
                return False
            processed = await repo.set_batch_state(
                batch.id,
                expected=ACTIVE_STATES,
                target=BatchEscalationState.PROCESSED,
                processed_at=self._clock(),
            )
        if processed:
            logger.info(
                "Batch escalation complete",
                extra={"survey_id": batch.survey_id, "batch_id": batch.id},
            )
        return True
