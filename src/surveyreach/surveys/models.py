"""
SQLAlchemy model for the survey catalog.

Surveys are authored elsewhere; the escalation path only needs the topic,
questions, running dates and timezone.
"""

from datetime import date, datetime
from typing import Any

from sqlalchemy import JSON, Date, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from surveyreach.shared.database import Base, UTCDateTime, utcnow


class Survey(Base):
    """A survey that can be sent to batches of recipients."""

    __tablename__ = "surveys"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    topic: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    # [{"id": "q1", "text": "...", "type": "rating", "options": [...]}]
    questions: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)
    start_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    end_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    timezone: Mapped[str | None] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, default=utcnow)

    def question_lines(self) -> list[str]:
        """Render questions as numbered lines for the voice assistant."""
        lines = []
        for index, question in enumerate(self.questions or [], start=1):
            qid = question.get("id") or f"question_{index}"
            line = f"{index}. {question.get('text', '')} (ID: {qid})"
            options = question.get("options")
            if options:
                line += f" (Options: {', '.join(str(o) for o in options)})"
            lines.append(line)
        return lines

    def __repr__(self) -> str:
        return f"<Survey(id={self.id}, topic={self.topic!r})>"
