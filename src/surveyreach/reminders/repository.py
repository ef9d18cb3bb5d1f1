"""
Repository for reminder send markers.
"""

from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from surveyreach.reminders.models import ReminderMarker


class ReminderMarkerRepository:
    """Insert-as-claim access to reminder markers."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def insert(
        self,
        participant_id: str,
        batch_id: str,
        reminder_type: str,
        sent_at: datetime,
    ) -> ReminderMarker:
        """Insert a marker.

        Raises:
            sqlalchemy.exc.IntegrityError: If this reminder type was already
                claimed for the participant.
        """
        marker = ReminderMarker(
            participant_id=participant_id,
            batch_id=batch_id,
            reminder_type=reminder_type,
            sent_at=sent_at,
        )
        self._session.add(marker)
        await self._session.flush()
        return marker

    async def record_error(self, marker_id: int, error: str) -> None:
        await self._session.execute(
            update(ReminderMarker).where(ReminderMarker.id == marker_id).values(error=error)
        )

    async def list_for_participant(self, participant_id: str) -> list[ReminderMarker]:
        result = await self._session.execute(
            select(ReminderMarker)
            .where(ReminderMarker.participant_id == participant_id)
            .order_by(ReminderMarker.sent_at, ReminderMarker.id)
        )
        return list(result.scalars().all())

    async def claimed_for_batch(self, batch_id: str) -> set[tuple[str, str]]:
        """(participant_id, reminder_type) pairs already claimed in a batch."""
        result = await self._session.execute(
            select(ReminderMarker.participant_id, ReminderMarker.reminder_type).where(
                ReminderMarker.batch_id == batch_id
            )
        )
        return {(row.participant_id, row.reminder_type) for row in result}
