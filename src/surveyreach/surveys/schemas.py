"""
Pydantic schemas for the survey catalog.
"""

from datetime import date, datetime
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class SurveyQuestion(BaseModel):
    """A single survey question."""

    id: str | None = Field(default=None, max_length=64)
    text: str = Field(..., min_length=1)
    type: str = Field(default="text", max_length=32)
    options: list[str] | None = None


class SurveyCreate(BaseModel):
    """Schema for registering a survey."""

    id: str | None = Field(default=None, max_length=64, description="Optional caller-chosen id")
    topic: str = Field(..., min_length=1, max_length=255)
    description: str | None = None
    questions: list[SurveyQuestion] = Field(default_factory=list)
    start_date: date | None = None
    end_date: date | None = None
    timezone: str | None = Field(default=None, description="IANA timezone; UTC when omitted")

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, v: str | None) -> str | None:
        if v is None:
            return v
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"Unknown timezone: {v}") from exc
        return v

    @model_validator(mode="after")
    def validate_dates(self) -> "SurveyCreate":
        if self.start_date and self.end_date and self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        return self


class SurveyResponse(BaseModel):
    """Schema for survey output."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    topic: str
    description: str | None
    questions: list[dict[str, Any]]
    start_date: date | None
    end_date: date | None
    timezone: str | None
    created_at: datetime
