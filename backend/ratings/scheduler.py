"""Background scheduler for monthly Glicko-2 recalculation.

One recalculation runs at a time per process. Manual triggers return as soon
as the run is queued; progress is only visible through ``status()``.
"""

from __future__ import annotations

import itertools
import logging
import threading
import time
from contextlib import AbstractContextManager
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Callable

from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_MISSED, JobExecutionEvent
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

from ratings.domain import Period
from ratings.errors import AlreadyRunning
from ratings.orchestrator import RecalculationOrchestrator
from ratings.periods import as_utc

logger = logging.getLogger(__name__)

MONTHLY_JOB_ID = "monthly-ratings-recalculation"
MANUAL_JOB_PREFIX = "manual-ratings-recalculation"

# A late monthly fire still runs within this window instead of being dropped
MONTHLY_MISFIRE_GRACE_SECONDS = 6 * 3600

OrchestratorFactory = Callable[[], AbstractContextManager[RecalculationOrchestrator]]


class TriggerResult(str, Enum):
    ACCEPTED = "accepted"
    ALREADY_RUNNING = "already_running"


@dataclass(frozen=True)
class SchedulerStatus:
    is_running: bool
    last_run: datetime | None
    next_scheduled_run: datetime | None
    last_error: str | None = None


def next_run_time(now: datetime, run_day: int = 1, run_hour: int = 2) -> datetime:
    """Next monthly fire time strictly after ``now`` (UTC)."""
    now = as_utc(now)
    candidate = datetime(now.year, now.month, run_day, run_hour, tzinfo=timezone.utc)
    if now < candidate:
        return candidate
    following = Period(now.year, now.month).next()
    return datetime(following.year, following.month, run_day, run_hour, tzinfo=timezone.utc)


def previous_period(now: datetime) -> Period:
    now = as_utc(now)
    return Period(now.year, now.month).previous()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RatingsScheduler:
    def __init__(
        self,
        orchestrator_factory: OrchestratorFactory,
        *,
        run_day: int = 1,
        run_hour: int = 2,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._orchestrator_factory = orchestrator_factory
        self.run_day = run_day
        self.run_hour = run_hour
        self._clock = clock
        self._lock = threading.Lock()
        self._is_running = False
        self._last_run: datetime | None = None
        self._last_error: str | None = None
        # Manual job holding the running flag until it starts executing
        self._pending_job_id: str | None = None
        self._job_ids = itertools.count(1)
        self._scheduler = BackgroundScheduler(timezone=timezone.utc)
        self._scheduler.add_listener(self._on_job_not_run, EVENT_JOB_MISSED | EVENT_JOB_ERROR)

    def start(self, monthly: bool = True) -> None:
        """Start the worker pool, and the monthly job unless disabled."""
        if monthly:
            self._scheduler.add_job(
                self._run_monthly,
                CronTrigger(day=self.run_day, hour=self.run_hour, minute=0, timezone=timezone.utc),
                id=MONTHLY_JOB_ID,
                replace_existing=True,
                coalesce=True,
                max_instances=1,
                misfire_grace_time=MONTHLY_MISFIRE_GRACE_SECONDS,
            )
        self._scheduler.start()
        next_run = self.status().next_scheduled_run
        logger.info(
            f"Ratings scheduler started (monthly={monthly}, "
            f"next run {next_run.isoformat() if next_run else 'never'})"
        )

    def shutdown(self, wait: bool = False) -> None:
        if self._scheduler.running:
            self._scheduler.shutdown(wait=wait)
            logger.info("Ratings scheduler stopped")

    @property
    def is_running(self) -> bool:
        return self._is_running

    def status(self) -> SchedulerStatus:
        """Current state; ``next_scheduled_run`` is None when the monthly job is disabled."""
        monthly_enabled = self._scheduler.get_job(MONTHLY_JOB_ID) is not None
        with self._lock:
            return SchedulerStatus(
                is_running=self._is_running,
                last_run=self._last_run,
                next_scheduled_run=(
                    next_run_time(self._clock(), self.run_day, self.run_hour) if monthly_enabled else None
                ),
                last_error=self._last_error,
            )

    def resolve_period(self, period: str | None = None) -> Period:
        """The month a trigger would recalculate: ``period``, or the previous month.

        Raises:
            DateParseError: If ``period`` is not YYYY-MM.
        """
        return Period.parse(period) if period is not None else previous_period(self._clock())

    def trigger(self, period: str | None = None) -> TriggerResult:
        """Queue a recalculation of one month, the previous month by default.

        Raises:
            DateParseError: If ``period`` is not YYYY-MM.
        """
        target = self.resolve_period(period)
        return self._trigger(
            f"period {target}",
            lambda orchestrator: orchestrator.recalculate_month(target.year, target.month),
        )

    def trigger_historical(self) -> TriggerResult:
        """Queue a full historical recalculation."""
        return self._trigger(
            "historical recalculation",
            lambda orchestrator: orchestrator.recalculate_all_historical(now=self._clock()),
        )

    def _acquire(self) -> None:
        with self._lock:
            if self._is_running:
                raise AlreadyRunning("A ratings recalculation is already running")
            self._is_running = True

    def _release(self, error: str | None) -> None:
        with self._lock:
            self._is_running = False
            self._pending_job_id = None
            self._last_run = self._clock()
            self._last_error = error

    def _trigger(self, description: str, work: Callable[[RecalculationOrchestrator], object]) -> TriggerResult:
        try:
            self._acquire()
        except AlreadyRunning:
            logger.warning(f"Rejected manual trigger for {description}: already running")
            return TriggerResult.ALREADY_RUNNING

        job_id = f"{MANUAL_JOB_PREFIX}-{next(self._job_ids)}"
        with self._lock:
            self._pending_job_id = job_id
        try:
            # A queued run starts however late the worker picks it up
            self._scheduler.add_job(
                self._run,
                args=[description, work],
                id=job_id,
                name=description,
                coalesce=True,
                misfire_grace_time=None,
            )
        except Exception as exc:
            self._release(str(exc))
            raise
        logger.info(f"Accepted manual trigger for {description}")
        return TriggerResult.ACCEPTED

    def _on_job_not_run(self, event: JobExecutionEvent) -> None:
        with self._lock:
            pending = event.job_id == self._pending_job_id
        if not pending:
            return
        reason = "missed its run time" if event.code == EVENT_JOB_MISSED else f"failed: {event.exception}"
        logger.error(f"Manual ratings recalculation job {event.job_id} {reason}")
        self._release(f"Job {event.job_id} {reason}")

    def _run_monthly(self) -> None:
        target = previous_period(self._clock())
        try:
            self._acquire()
        except AlreadyRunning:
            logger.warning(f"Skipping scheduled recalculation of {target}: already running")
            return
        self._run(
            f"scheduled period {target}",
            lambda orchestrator: orchestrator.recalculate_month(target.year, target.month),
        )

    def _run(self, description: str, work: Callable[[RecalculationOrchestrator], object]) -> None:
        """Execute one acquired run; always releases the running flag."""
        started = time.monotonic()
        error: str | None = None
        logger.info(f"Starting ratings recalculation: {description}")
        try:
            with self._orchestrator_factory() as orchestrator:
                work(orchestrator)
        except Exception as exc:
            error = f"{type(exc).__name__}: {exc}"
            logger.exception(f"Ratings recalculation failed: {description}")
        else:
            logger.info(f"Ratings recalculation finished: {description} in {time.monotonic() - started:.1f}s")
        finally:
            self._release(error)
