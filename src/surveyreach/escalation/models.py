"""
Value types for escalation runs.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from surveyreach.participants.models import BatchEscalationState


class DispatchOutcome(str, Enum):
    """Result of one claim-and-call attempt."""

    SKIPPED = "skipped"
    DISPATCHED = "dispatched"
    ERROR = "error"


@dataclass(frozen=True)
class DispatchResult:
    participant_id: str
    outcome: DispatchOutcome
    batch_id: str | None = None
    provider_call_id: str | None = None
    reason: str | None = None

    def as_detail(self) -> dict[str, Any]:
        detail: dict[str, Any] = {
            "participantId": self.participant_id,
            "batchId": self.batch_id,
            "outcome": self.outcome.value,
        }
        if self.provider_call_id:
            detail["callId"] = self.provider_call_id
        if self.reason:
            detail["reason"] = self.reason
        return detail


@dataclass
class EscalationRunResult:
    """Aggregate of one scan over one or more batches.

    Skipped participants (already claimed, or responded in the meantime) are
    counted but not listed in details.
    """

    successful: int = 0
    failed: int = 0
    skipped: int = 0
    batches: list[str] = field(default_factory=list)
    details: list[dict[str, Any]] = field(default_factory=list)
    # Batches whose processing raised; calls already placed in them are still counted.
    failed_batches: list[str] = field(default_factory=list)

    def record(self, result: DispatchResult) -> None:
        if result.outcome == DispatchOutcome.DISPATCHED:
            self.successful += 1
            self.details.append(result.as_detail())
        elif result.outcome == DispatchOutcome.ERROR:
            self.failed += 1
            self.details.append(result.as_detail())
        else:
            self.skipped += 1

    def merge(self, other: "EscalationRunResult") -> None:
        self.successful += other.successful
        self.failed += other.failed
        self.skipped += other.skipped
        self.batches.extend(other.batches)
        self.details.extend(other.details)
        self.failed_batches.extend(other.failed_batches)


@dataclass(frozen=True)
class BatchSchedule:
    """Escalation timing of one batch as seen at a given instant."""

    survey_id: str
    batch_id: str
    created_at: datetime
    escalation_due_at: datetime
    escalation_state: BatchEscalationState
    time_until_due_seconds: int
    is_due: bool
    pending: int
