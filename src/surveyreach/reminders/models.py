"""
SQLAlchemy model for reminder send markers.
"""

from datetime import datetime

from sqlalchemy import ForeignKey, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from surveyreach.shared.database import Base, UTCDateTime, utcnow


class ReminderMarker(Base):
    """Records that reminder type X was sent to one participant.

    The unique constraint is the claim: inserting a second marker for the
    same participant and type fails, so the same reminder is never sent twice.
    """

    __tablename__ = "reminder_markers"
    __table_args__ = (
        UniqueConstraint("participant_id", "reminder_type", name="uq_reminder_participant_type"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    participant_id: Mapped[str] = mapped_column(
        String(32),
        ForeignKey("participants.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    batch_id: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    reminder_type: Mapped[str] = mapped_column(String(32), nullable=False)
    sent_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, default=utcnow)
    # Set when the provider rejected the message; the marker is kept.
    error: Mapped[str | None] = mapped_column(Text, nullable=True)

    def __repr__(self) -> str:
        return (
            f"<ReminderMarker(participant_id={self.participant_id}, "
            f"reminder_type={self.reminder_type})>"
        )
