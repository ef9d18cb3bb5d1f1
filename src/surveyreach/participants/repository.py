"""
Repository for batch and participant records.

Every status change goes through a conditional UPDATE guarded by the
expected current status, so concurrent writers race on the database row and
exactly one of them observes rowcount == 1.
"""

from collections.abc import Iterable, Sequence
from datetime import datetime
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from surveyreach.participants.models import (
    Batch,
    BatchEscalationState,
    Participant,
    ParticipantStatus,
)


class ParticipantRepository:
    """Repository for batch and participant database operations."""

    def __init__(self, session: AsyncSession) -> None:
        """Initialize repository with database session.

        Args:
            session: Async database session.
        """
        self._session = session

    # ------------------------------------------------------------------
    # Batches
    # ------------------------------------------------------------------

    async def add_batch(self, batch: Batch, participants: Sequence[Participant]) -> Batch:
        """Persist a new batch with its participants."""
        self._session.add(batch)
        self._session.add_all(list(participants))
        await self._session.flush()
        return batch

    async def get_batch(self, batch_id: str) -> Batch | None:
        """Get batch by id."""
        result = await self._session.execute(select(Batch).where(Batch.id == batch_id))
        return result.scalar_one_or_none()

    async def list_batches(
        self,
        survey_id: str | None = None,
        batch_id: str | None = None,
    ) -> Sequence[Batch]:
        """List batches, optionally scoped to a survey and/or a single batch."""
        stmt = select(Batch)
        if survey_id is not None:
            stmt = stmt.where(Batch.survey_id == survey_id)
        if batch_id is not None:
            stmt = stmt.where(Batch.id == batch_id)
        stmt = stmt.order_by(Batch.created_at.desc())
        result = await self._session.execute(stmt)
        return result.scalars().all()

    async def list_due_batches(self, now: datetime) -> Sequence[Batch]:
        """Batches with voice escalation whose delay has elapsed and are not processed."""
        stmt = (
            select(Batch)
            .where(
                Batch.voice_escalation.is_(True),
                Batch.escalation_state.in_(
                    [BatchEscalationState.WAITING, BatchEscalationState.DUE]
                ),
                Batch.escalation_due_at <= now,
            )
            .order_by(Batch.escalation_due_at)
        )
        result = await self._session.execute(stmt)
        return result.scalars().all()

    async def list_reminder_batches(self) -> Sequence[Batch]:
        """Batches that opted into email reminders and still have reminders ahead."""
        stmt = (
            select(Batch)
            .where(Batch.email_reminders.is_(True), Batch.reminders_completed_at.is_(None))
            .order_by(Batch.created_at)
        )
        result = await self._session.execute(stmt)
        return result.scalars().all()

    async def set_batch_state(
        self,
        batch_id: str,
        *,
        expected: Iterable[BatchEscalationState],
        target: BatchEscalationState,
        processed_at: datetime | None = None,
    ) -> bool:
        """Conditionally move a batch to a new escalation state."""
        values: dict[str, Any] = {"escalation_state": target}
        if processed_at is not None:
            values["processed_at"] = processed_at
        stmt = (
            update(Batch)
            .where(Batch.id == batch_id, Batch.escalation_state.in_(list(expected)))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return result.rowcount == 1

    async def mark_reminders_completed(self, batch_id: str, completed_at: datetime) -> None:
        """Stop the reminder pass from revisiting a batch."""
        await self._session.execute(
            update(Batch)
            .where(Batch.id == batch_id)
            .values(reminders_completed_at=completed_at)
            .execution_options(synchronize_session=False)
        )

    # ------------------------------------------------------------------
    # Participants
    # ------------------------------------------------------------------

    async def get(self, participant_id: str) -> Participant | None:
        """Get participant by id."""
        result = await self._session.execute(
            select(Participant).where(Participant.id == participant_id)
        )
        return result.scalar_one_or_none()

    async def get_in_batch(
        self,
        survey_id: str,
        batch_id: str,
        participant_id: str,
    ) -> Participant | None:
        """Get a participant only if it belongs to the given survey and batch."""
        stmt = select(Participant).where(
            Participant.id == participant_id,
            Participant.survey_id == survey_id,
            Participant.batch_id == batch_id,
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_by_call_id(self, call_id: str) -> Participant | None:
        """Get participant by provider call id."""
        result = await self._session.execute(
            select(Participant).where(Participant.call_id == call_id)
        )
        return result.scalar_one_or_none()

    async def list_participants(
        self,
        survey_id: str,
        batch_id: str | None = None,
    ) -> Sequence[Participant]:
        """List participants of a survey, optionally limited to one batch."""
        stmt = select(Participant).where(Participant.survey_id == survey_id)
        if batch_id is not None:
            stmt = stmt.where(Participant.batch_id == batch_id)
        stmt = stmt.order_by(Participant.sent_at, Participant.id)
        result = await self._session.execute(stmt)
        return result.scalars().all()

    async def list_by_status(
        self,
        batch_id: str,
        statuses: Iterable[ParticipantStatus],
    ) -> Sequence[Participant]:
        """List participants of one batch whose status is in statuses."""
        stmt = (
            select(Participant)
            .where(Participant.batch_id == batch_id, Participant.status.in_(list(statuses)))
            .order_by(Participant.sent_at, Participant.id)
        )
        result = await self._session.execute(stmt)
        return result.scalars().all()

    async def list_escalation_candidates(self, batch_id: str) -> Sequence[Participant]:
        """Participants of one batch still SENT and reachable by phone."""
        stmt = (
            select(Participant)
            .where(
                Participant.batch_id == batch_id,
                Participant.status == ParticipantStatus.SENT,
                Participant.phone.is_not(None),
            )
            .order_by(Participant.sent_at, Participant.id)
        )
        result = await self._session.execute(stmt)
        return result.scalars().all()

    async def count_escalation_candidates(self, batch_id: str) -> int:
        stmt = select(func.count()).select_from(Participant).where(
            Participant.batch_id == batch_id,
            Participant.status == ParticipantStatus.SENT,
            Participant.phone.is_not(None),
        )
        result = await self._session.execute(stmt)
        return int(result.scalar_one())

    async def status_counts(self, survey_id: str) -> list[tuple[str, ParticipantStatus, int]]:
        """Return (batch_id, status, count) rows for a survey."""
        stmt = (
            select(Participant.batch_id, Participant.status, func.count())
            .where(Participant.survey_id == survey_id)
            .group_by(Participant.batch_id, Participant.status)
        )
        result = await self._session.execute(stmt)
        return [(row[0], row[1], int(row[2])) for row in result.all()]

    async def transition(
        self,
        participant_id: str,
        *,
        expected: Iterable[ParticipantStatus],
        target: ParticipantStatus,
        values: dict[str, Any] | None = None,
    ) -> bool:
        """Compare-and-swap the participant status.

        Args:
            participant_id: Participant to update.
            expected: Statuses the persisted row must currently have.
            target: Status to write.
            values: Extra columns written in the same statement.

        Returns:
            True if this call performed the transition.
        """
        stmt = (
            update(Participant)
            .where(
                Participant.id == participant_id,
                Participant.status.in_(list(expected)),
            )
            .values(
                status=target,
                version=Participant.version + 1,
                **(values or {}),
            )
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return result.rowcount == 1

    async def attach_call_id(self, participant_id: str, call_id: str) -> bool:
        """Store a provider call id without touching status."""
        stmt = (
            update(Participant)
            .where(Participant.id == participant_id, Participant.call_id.is_(None))
            .values(call_id=call_id, version=Participant.version + 1)
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        return result.rowcount == 1

    async def fail_stale_claims(self, cutoff: datetime, now: datetime) -> list[str]:
        """Fail every CALL_CLAIMED participant claimed before cutoff."""
        stale = await self._session.execute(
            select(Participant.id).where(
                Participant.status == ParticipantStatus.CALL_CLAIMED,
                Participant.claimed_at < cutoff,
            )
        )
        failed: list[str] = []
        for participant_id in stale.scalars().all():
            moved = await self.transition(
                participant_id,
                expected=[ParticipantStatus.CALL_CLAIMED],
                target=ParticipantStatus.CALL_FAILED,
                values={"call_result": "stale_claim", "completed_at": now},
            )
            if moved:
                failed.append(participant_id)
        return failed
