"""
SQLAlchemy models for send batches and their participants.
"""

from datetime import datetime
from enum import Enum
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    Enum as SQLEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from surveyreach.shared.database import Base, UTCDateTime, utcnow


class ParticipantStatus(str, Enum):
    """Participant escalation lifecycle state."""

    SENT = "sent"
    RESPONDED = "responded"
    CALL_CLAIMED = "call_claimed"
    CALL_TRIGGERED = "call_triggered"
    CALL_COMPLETED = "call_completed"
    CALL_FAILED = "call_failed"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {
        ParticipantStatus.RESPONDED,
        ParticipantStatus.CALL_COMPLETED,
        ParticipantStatus.CALL_FAILED,
    }
)


class BatchEscalationState(str, Enum):
    """Voice escalation progress of one batch."""

    WAITING = "waiting"
    DUE = "due"
    PROCESSED = "processed"


def _enum_values(enum_cls: type[Enum]) -> list[str]:
    return [member.value for member in enum_cls]


class Batch(Base):
    """One invitation-sending event for a survey."""

    __tablename__ = "participant_batches"

    id: Mapped[str] = mapped_column(String(32), primary_key=True)
    survey_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("surveys.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, default=utcnow)

    # Channel flags
    voice_escalation: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    email_reminders: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    escalation_delay_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    escalation_due_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, index=True)
    escalation_state: Mapped[BatchEscalationState] = mapped_column(
        SQLEnum(
            BatchEscalationState,
            name="batch_escalation_state",
            native_enum=False,
            values_callable=_enum_values,
        ),
        nullable=False,
        default=BatchEscalationState.WAITING,
    )
    processed_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    # Set once the closing reminder has gone out; the reminder pass skips the batch.
    reminders_completed_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    participants: Mapped[list["Participant"]] = relationship(
        "Participant",
        back_populates="batch",
        lazy="raise",
    )

    def __repr__(self) -> str:
        return (
            f"<Batch(id={self.id}, survey_id={self.survey_id}, "
            f"escalation_state={self.escalation_state})>"
        )


class Participant(Base):
    """A single invited recipient within one batch."""

    __tablename__ = "participants"
    __table_args__ = (Index("ix_participants_survey_batch", "survey_id", "batch_id"),)

    id: Mapped[str] = mapped_column(String(32), primary_key=True)
    survey_id: Mapped[str] = mapped_column(String(64), nullable=False)
    batch_id: Mapped[str] = mapped_column(
        String(32),
        ForeignKey("participant_batches.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    phone: Mapped[str | None] = mapped_column(String(50), nullable=True)

    status: Mapped[ParticipantStatus] = mapped_column(
        SQLEnum(
            ParticipantStatus,
            name="participant_status",
            native_enum=False,
            values_callable=_enum_values,
        ),
        nullable=False,
        default=ParticipantStatus.SENT,
        index=True,
    )
    # Incremented by every conditional write.
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    sent_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, default=utcnow)
    responded_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    claimed_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    called_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    # Provider call id, used to correlate webhook events.
    call_id: Mapped[str | None] = mapped_column(String(128), nullable=True, unique=True)
    call_result: Mapped[str | None] = mapped_column(String(255), nullable=True)
    call_transcript: Mapped[str | None] = mapped_column(Text, nullable=True)
    call_answers: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
    )

    batch: Mapped[Batch] = relationship("Batch", back_populates="participants", lazy="raise")

    def __repr__(self) -> str:
        return f"<Participant(id={self.id}, batch_id={self.batch_id}, status={self.status})>"
