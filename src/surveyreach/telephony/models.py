"""
SQLAlchemy model for the append-only call event log.
"""

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from surveyreach.shared.database import Base, UTCDateTime, utcnow


class CallTranscriptEntry(Base):
    """One call-ended event as received from the voice provider.

    Rows are only ever inserted. Redelivered events add another row and never
    change the participant a second time.
    """

    __tablename__ = "call_transcript_log"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    call_id: Mapped[str | None] = mapped_column(String(128), nullable=True, index=True)
    participant_id: Mapped[str | None] = mapped_column(String(32), nullable=True, index=True)
    event_type: Mapped[str] = mapped_column(String(64), nullable=False)
    # applied | noop | unmatched
    outcome: Mapped[str] = mapped_column(String(16), nullable=False)
    ended_reason: Mapped[str | None] = mapped_column(String(128), nullable=True)
    transcript: Mapped[str | None] = mapped_column(Text, nullable=True)
    answers: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    payload: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    received_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, default=utcnow)

    def __repr__(self) -> str:
        return (
            f"<CallTranscriptEntry(call_id={self.call_id}, "
            f"event_type={self.event_type}, outcome={self.outcome})>"
        )
