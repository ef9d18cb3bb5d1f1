"""
Operator endpoints for voice escalation.
"""

from typing import Annotated

from fastapi import APIRouter, Depends

from surveyreach.dependencies import get_scheduler
from surveyreach.escalation.models import EscalationRunResult
from surveyreach.escalation.scheduler import EscalationScheduler
from surveyreach.escalation.schemas import (
    BatchScheduleResponse,
    SchedulerControlRequest,
    SchedulerControlResponse,
    SchedulesResponse,
    TriggerEscalationRequest,
    TriggerEscalationResponse,
)
from surveyreach.shared.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(tags=["escalation"])

SchedulerDep = Annotated[EscalationScheduler, Depends(get_scheduler)]


def _status(scheduler: EscalationScheduler) -> str:
    return "running" if scheduler.running else "stopped"


def _run_response(result: EscalationRunResult) -> TriggerEscalationResponse:
    return TriggerEscalationResponse(
        successful=result.successful,
        failed=result.failed,
        skipped=result.skipped,
        batches=result.batches,
        details=result.details,
        failed_batches=result.failed_batches,
    )


@router.post("/trigger-escalation", response_model=TriggerEscalationResponse)
async def trigger_escalation(
    body: TriggerEscalationRequest,
    scheduler: SchedulerDep,
) -> TriggerEscalationResponse:
    """Call the remaining non-responders of a survey now.

    Uses the same claim path as the scheduler tick, so it never calls a
    participant that was already claimed or has responded.
    """
    result = await scheduler.trigger_escalation(body.survey_id, body.batch_id)
    return _run_response(result)


@router.get("/schedules", response_model=SchedulesResponse)
async def list_schedules(scheduler: SchedulerDep) -> SchedulesResponse:
    """Active escalation batches with time until due."""
    schedules = await scheduler.list_schedules()
    return SchedulesResponse(
        scheduler_status=_status(scheduler),
        interval_seconds=scheduler.interval_seconds,
        schedules=[
            BatchScheduleResponse(
                survey_id=s.survey_id,
                batch_id=s.batch_id,
                created_at=s.created_at,
                due_at=s.escalation_due_at,
                state=s.escalation_state,
                time_until_due=s.time_until_due_seconds,
                is_due=s.is_due,
                pending=s.pending,
            )
            for s in schedules
        ],
    )


@router.post("/scheduler", response_model=SchedulerControlResponse)
async def control_scheduler(
    body: SchedulerControlRequest,
    scheduler: SchedulerDep,
) -> SchedulerControlResponse:
    """Start or stop the recurring tick, or run one tick now."""
    logger.info("Scheduler control requested", extra={"action": body.action})

    match body.action:
        case "start":
            await scheduler.start()
            return SchedulerControlResponse(
                scheduler_status=_status(scheduler),
                message="Scheduler started",
            )
        case "stop":
            await scheduler.stop()
            return SchedulerControlResponse(
                scheduler_status=_status(scheduler),
                message="Scheduler stopped",
            )
        case _:
            tick = await scheduler.tick()
            return SchedulerControlResponse(
                scheduler_status=_status(scheduler),
                message="Tick processed",
                stale_failed=len(tick.stale_failed),
                escalation=_run_response(tick.escalation),
                reminders_sent=tick.reminders.sent if tick.reminders else None,
            )
