"""Response correlation: stop escalations when staff respond.

A clock-in or a reply on a notification channel resolves the execution.
Resolution always wins a race with an in-flight dispatch: the dispatch's
log entry stays but its execution update is rejected.
"""

import uuid
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from shiftguard.logging_config import get_logger
from shiftguard.models.attendance import AttendanceRecord, AttendanceStatus
from shiftguard.models.base import utcnow
from shiftguard.models.escalation_execution import EscalationExecution
from shiftguard.services import execution_store, notification_log_writer

logger = get_logger(__name__)

# Retries when a dispatch commit lands between our read and our write
MAX_RESOLVE_ATTEMPTS = 5


class AttendanceRecordNotFound(Exception):
    """Raised when a clock-in event references an unknown attendance record."""

    def __init__(self, attendance_record_id: uuid.UUID):
        self.attendance_record_id = attendance_record_id
        super().__init__(f"Attendance record {attendance_record_id} not found")


class ResolutionConflict(Exception):
    """Raised when resolution keeps losing compare-and-set."""


async def resolve(
    db: AsyncSession,
    execution_id: uuid.UUID,
    resolved_via: str,
    now: datetime | None = None,
) -> tuple[EscalationExecution, bool]:
    """Resolve an execution.

    The most recent log entry is marked responded when it was sent on the
    channel the response came in on. Terminal executions are returned
    unchanged.

    Args:
        db: Database session.
        execution_id: Execution to resolve.
        resolved_via: 'clock_in' or the channel the staff replied on.
        now: Current time; defaults to the wall clock.

    Returns:
        Tuple of (execution, changed).

    Raises:
        ExecutionNotFound: If the execution does not exist.
        ResolutionConflict: If concurrent writes kept winning.
    """
    now = now or utcnow()

    for _ in range(MAX_RESOLVE_ATTEMPTS):
        execution = await execution_store.get_execution(db, execution_id)
        if execution.status.is_terminal:
            logger.debug(
                "Execution already terminal, nothing to resolve",
                execution_id=str(execution_id),
                status=execution.status.value,
            )
            return execution, False

        latest = await notification_log_writer.get_latest_log_entry(db, execution_id)
        if latest is not None and latest.type.value == resolved_via:
            notification_log_writer.mark_responded(latest, now)

        if await execution_store.resolve_execution(db, execution, resolved_via, now):
            logger.info(
                "Escalation resolved",
                execution_id=str(execution_id),
                resolved_via=resolved_via,
                stage=execution.current_stage,
            )
            return execution, True

    raise ResolutionConflict(f"Could not resolve execution {execution_id}")


async def record_clock_in(
    db: AsyncSession,
    attendance: AttendanceRecord,
    now: datetime,
) -> None:
    """Stamp the clock-in on a pending attendance record and commit."""
    if attendance.clock_in_at is None:
        attendance.clock_in_at = now
    if attendance.status == AttendanceStatus.PENDING:
        attendance.status = AttendanceStatus.PRESENT
    await db.commit()


async def resolve_for_attendance(
    db: AsyncSession,
    attendance_record_id: uuid.UUID,
    resolved_via: str = "clock_in",
    now: datetime | None = None,
) -> EscalationExecution | None:
    """Resolve whatever escalation exists for an attendance record.

    A ``clock_in`` also stamps the attendance record so the sweep never
    starts an escalation for it afterwards.

    Returns:
        The execution, or None if no escalation had started.

    Raises:
        AttendanceRecordNotFound: If the record does not exist.
    """
    now = now or utcnow()
    attendance = await db.get(AttendanceRecord, attendance_record_id)
    if attendance is None:
        raise AttendanceRecordNotFound(attendance_record_id)

    if resolved_via == "clock_in":
        await record_clock_in(db, attendance, now)

    execution = await execution_store.get_execution_for_attendance(db, attendance_record_id)
    if execution is None:
        logger.debug(
            "No escalation for attendance record",
            attendance_record_id=str(attendance_record_id),
        )
        return None

    execution, _ = await resolve(db, execution.id, resolved_via, now)
    return execution
