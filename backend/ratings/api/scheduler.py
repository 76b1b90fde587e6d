from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel, Field

from ratings.errors import DateParseError
from ratings.scheduler import RatingsScheduler, TriggerResult

router = APIRouter(prefix="/api/ratings", tags=["scheduler"])


class SchedulerStatusResponse(BaseModel):
    is_running: bool
    last_run: datetime | None
    next_scheduled_run: datetime | None
    last_error: str | None


class TriggerResponse(BaseModel):
    status: str
    period: str | None = Field(None, description="Queued period, YYYY-MM; None for a historical recalculation")


def get_scheduler(request: Request) -> RatingsScheduler:
    scheduler = getattr(request.app.state, "scheduler", None)
    if scheduler is None:
        raise HTTPException(status_code=503, detail="Ratings scheduler is not available")
    return scheduler


def _ensure_accepted(result: TriggerResult) -> None:
    if result is TriggerResult.ALREADY_RUNNING:
        raise HTTPException(status_code=409, detail="A ratings recalculation is already running")


@router.get("/scheduler/status", response_model=SchedulerStatusResponse)
def get_scheduler_status(scheduler: RatingsScheduler = Depends(get_scheduler)) -> SchedulerStatusResponse:
    status = scheduler.status()
    return SchedulerStatusResponse(
        is_running=status.is_running,
        last_run=status.last_run,
        next_scheduled_run=status.next_scheduled_run,
        last_error=status.last_error,
    )


@router.post("/scheduler/trigger", response_model=TriggerResponse, status_code=202)
def trigger_recalculation(
    period: str | None = Query(None, description="Period to recalculate, YYYY-MM; previous month if omitted"),
    scheduler: RatingsScheduler = Depends(get_scheduler),
) -> TriggerResponse:
    try:
        target = scheduler.resolve_period(period)
    except DateParseError as exc:
        raise HTTPException(status_code=422, detail=str(exc))
    result = scheduler.trigger(str(target))
    _ensure_accepted(result)
    return TriggerResponse(status=result.value, period=str(target))


@router.post("/recalculate/historical", response_model=TriggerResponse, status_code=202)
def trigger_historical_recalculation(
    scheduler: RatingsScheduler = Depends(get_scheduler),
) -> TriggerResponse:
    result = scheduler.trigger_historical()
    _ensure_accepted(result)
    return TriggerResponse(status=result.value)
