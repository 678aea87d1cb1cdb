"""Background job scheduler.

APScheduler-based sweep that starts escalations for missed check-ins and
hands due executions to the stage executor.
"""

import asyncio
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from shiftguard.config import settings
from shiftguard.database import get_session_maker
from shiftguard.logging_config import bind_correlation_id, get_logger
from shiftguard.models.attendance import AttendanceRecord
from shiftguard.models.base import utcnow
from shiftguard.services import execution_store, stage_executor
from shiftguard.services.escalation_state import ExecutionOutcome, OutcomeAction
from shiftguard.services.policy_resolver import PolicyNotConfigured, resolve_policy
from shiftguard.services.stage_executor import RegistryFactory, default_registry_factory

logger = get_logger(__name__)

# Global scheduler instance
scheduler: AsyncIOScheduler | None = None


@dataclass
class SweepSummary:
    """Counters for one sweep, logged when it finishes."""

    due: int = 0
    created: int = 0
    dispatched: int = 0
    exhausted: int = 0
    deferred: int = 0
    lost: int = 0
    failed: int = 0
    config_errors: int = 0

    def record(self, outcome: ExecutionOutcome) -> None:
        if outcome.dispatched:
            self.dispatched += 1
        if outcome.action == OutcomeAction.EXHAUSTED:
            self.exhausted += 1
        elif outcome.action == OutcomeAction.DEFERRED:
            self.deferred += 1
        elif outcome.action in (OutcomeAction.CLAIM_LOST, OutcomeAction.SUPERSEDED):
            self.lost += 1


async def _run_due_execution(
    session_maker: Callable[[], AsyncSession],
    execution_id: uuid.UUID,
    now: datetime,
    registry_factory: RegistryFactory,
    summary: SweepSummary,
) -> None:
    try:
        async with session_maker() as db:
            outcome = await stage_executor.execute(
                db, execution_id, now=now, registry_factory=registry_factory
            )
        summary.record(outcome)
    except Exception as e:
        logger.error(
            "Escalation attempt failed",
            execution_id=str(execution_id),
            error=str(e),
        )
        summary.failed += 1


async def _start_escalation(
    session_maker: Callable[[], AsyncSession],
    attendance_record_id: uuid.UUID,
    now: datetime,
    registry_factory: RegistryFactory,
    summary: SweepSummary,
) -> None:
    try:
        async with session_maker() as db:
            attendance = await db.get(AttendanceRecord, attendance_record_id)
            if attendance is None:
                return

            try:
                policy = await resolve_policy(
                    db, attendance.organization_id, attendance.staff_id
                )
                execution = await execution_store.create_execution(
                    db, attendance, policy, now
                )
            except (PolicyNotConfigured, ValidationError) as e:
                organization_id = attendance.organization_id
                await execution_store.mark_config_error(db, attendance_record_id)
                logger.error(
                    "Escalation policy configuration error",
                    operator_alert=True,
                    organization_id=str(organization_id),
                    attendance_record_id=str(attendance_record_id),
                    error=str(e),
                )
                summary.config_errors += 1
                return

            if execution is None:
                return
            summary.created += 1

            outcome = await stage_executor.execute(
                db, execution.id, now=now, registry_factory=registry_factory
            )
        summary.record(outcome)
    except Exception as e:
        logger.error(
            "Starting escalation failed",
            attendance_record_id=str(attendance_record_id),
            error=str(e),
        )
        summary.failed += 1


async def run_escalation_sweep(
    now: datetime | None = None,
    session_maker: async_sessionmaker[AsyncSession] | None = None,
    registry_factory: RegistryFactory = default_registry_factory,
) -> SweepSummary:
    """Run one escalation sweep.

    Due executions are advanced first, then overdue attendance records
    get a new execution whose first stage is dispatched right away.
    Every item runs in its own session; dispatch concurrency is bounded
    by ``escalation_max_concurrency``.

    Args:
        now: Sweep time; defaults to the wall clock.
        session_maker: Session factory; defaults to the application's.
        registry_factory: Builds channel registries per organization.

    Returns:
        SweepSummary with per-sweep counters.
    """
    now = now or utcnow()
    session_maker = session_maker or get_session_maker()
    semaphore = asyncio.Semaphore(settings.escalation_max_concurrency)
    summary = SweepSummary()

    async def bounded(coro) -> None:
        async with semaphore:
            await coro

    async with session_maker() as db:
        due_ids = await execution_store.list_due_execution_ids(
            db,
            now,
            settings.escalation_claim_timeout_seconds,
            settings.escalation_sweep_batch_size,
        )
    summary.due = len(due_ids)

    await asyncio.gather(
        *(
            bounded(
                _run_due_execution(
                    session_maker, execution_id, now, registry_factory, summary
                )
            )
            for execution_id in due_ids
        )
    )

    async with session_maker() as db:
        overdue = await execution_store.list_overdue_attendance(
            db, now, settings.escalation_sweep_batch_size
        )
        overdue_ids = [attendance.id for attendance in overdue]

    await asyncio.gather(
        *(
            bounded(
                _start_escalation(
                    session_maker, attendance_id, now, registry_factory, summary
                )
            )
            for attendance_id in overdue_ids
        )
    )

    return summary


async def escalation_sweep_job() -> None:
    """Scheduled entry point for the escalation sweep."""
    with bind_correlation_id() as correlation_id:
        logger.info("Starting escalation sweep", sweep_id=correlation_id)
        try:
            summary = await run_escalation_sweep()
        except Exception as e:
            logger.error("Escalation sweep aborted", error=str(e))
            return

        logger.info(
            "Escalation sweep completed",
            due=summary.due,
            created=summary.created,
            dispatched=summary.dispatched,
            exhausted=summary.exhausted,
            deferred=summary.deferred,
            lost=summary.lost,
            failed=summary.failed,
            config_errors=summary.config_errors,
        )


def start_scheduler() -> AsyncIOScheduler:
    """Start the background job scheduler.

    Returns:
        The started scheduler instance
    """
    global scheduler

    if scheduler is not None:
        logger.warning("Scheduler already running")
        return scheduler

    scheduler = AsyncIOScheduler()

    if settings.escalation_sweep_enabled:
        scheduler.add_job(
            escalation_sweep_job,
            trigger=IntervalTrigger(seconds=settings.escalation_sweep_interval_seconds),
            id="escalation_sweep",
            name="Check-in Escalation Sweep",
            replace_existing=True,
            max_instances=1,
        )
        logger.info(
            "Scheduled escalation sweep job",
            interval_seconds=settings.escalation_sweep_interval_seconds,
            max_concurrency=settings.escalation_max_concurrency,
        )

    scheduler.start()
    logger.info("Background scheduler started")

    return scheduler


def stop_scheduler() -> None:
    """Stop the background job scheduler."""
    global scheduler

    if scheduler is not None:
        scheduler.shutdown(wait=False)
        scheduler = None
        logger.info("Background scheduler stopped")


def get_scheduler() -> AsyncIOScheduler | None:
    return scheduler
