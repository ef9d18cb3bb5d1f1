"""
Pydantic schemas for the escalation operator endpoints.

These endpoints speak camelCase on the wire.
"""

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from surveyreach.participants.models import BatchEscalationState


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class TriggerEscalationRequest(_CamelModel):
    survey_id: str = Field(..., min_length=1)
    batch_id: str | None = None


class TriggerEscalationResponse(_CamelModel):
    successful: int
    failed: int
    skipped: int
    batches: list[str]
    details: list[dict[str, Any]]
    failed_batches: list[str] = Field(default_factory=list)


class BatchScheduleResponse(_CamelModel):
    survey_id: str
    batch_id: str
    created_at: datetime
    due_at: datetime
    state: BatchEscalationState
    time_until_due: int = Field(..., description="Seconds until the batch is due; 0 once due")
    is_due: bool
    pending: int


class SchedulesResponse(_CamelModel):
    scheduler_status: Literal["running", "stopped"]
    interval_seconds: float
    schedules: list[BatchScheduleResponse]


class SchedulerControlRequest(_CamelModel):
    action: Literal["start", "stop", "process"]


class SchedulerControlResponse(_CamelModel):
    scheduler_status: Literal["running", "stopped"]
    message: str
    stale_failed: int | None = None
    escalation: TriggerEscalationResponse | None = None
    reminders_sent: int | None = None
