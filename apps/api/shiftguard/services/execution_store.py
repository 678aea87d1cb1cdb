"""Escalation execution persistence.

All writes to an execution are compare-and-set: a conditional UPDATE on
the row's ``version`` that only succeeds if nobody else wrote in between.
A write that matches zero rows lost the race and is abandoned. The
attendance record's ``escalation_status`` is mirrored in the same
transaction as the execution write it reflects.
"""

import uuid
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import and_, exists, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from shiftguard.logging_config import get_logger
from shiftguard.models.attendance import (
    AttendanceRecord,
    AttendanceStatus,
    EscalationStatus,
)
from shiftguard.models.escalation_execution import (
    ACTIVE_STATUSES,
    EscalationExecution,
    ExecutionStatus,
)
from shiftguard.models.escalation_policy import EscalationPolicy
from shiftguard.models.staff import Staff
from shiftguard.schemas.escalation_policy import PolicySnapshot

logger = get_logger(__name__)

_ATTENDANCE_MIRROR = {
    ExecutionStatus.PENDING: EscalationStatus.ESCALATING,
    ExecutionStatus.ESCALATING: EscalationStatus.ESCALATING,
    ExecutionStatus.RESOLVED: EscalationStatus.RESOLVED,
    ExecutionStatus.FAILED: EscalationStatus.FAILED,
}


class ExecutionNotFound(Exception):
    """Raised when an execution id does not exist."""

    def __init__(self, execution_id: uuid.UUID):
        self.execution_id = execution_id
        super().__init__(f"Escalation execution {execution_id} not found")


def attendance_status_for(status: ExecutionStatus) -> EscalationStatus:
    return _ATTENDANCE_MIRROR[status]


async def _mirror_attendance(
    db: AsyncSession,
    attendance_record_id: uuid.UUID,
    status: ExecutionStatus,
) -> None:
    await db.execute(
        update(AttendanceRecord)
        .where(AttendanceRecord.id == attendance_record_id)
        .values(escalation_status=attendance_status_for(status))
        .execution_options(synchronize_session=False)
    )


async def create_execution(
    db: AsyncSession,
    attendance: AttendanceRecord,
    policy: EscalationPolicy,
    now: datetime,
) -> EscalationExecution | None:
    """Create the execution for an attendance record.

    The policy is snapshotted so later edits never affect this execution.
    The first attempt is due immediately.

    Args:
        db: Database session.
        attendance: The overdue attendance record.
        policy: The resolved governing policy.
        now: Current time.

    Returns:
        The new execution, or None if one already exists for the record.

    Raises:
        pydantic.ValidationError: If the policy's stages are malformed.
    """
    snapshot = PolicySnapshot.from_policy(policy)
    attendance_id = attendance.id

    execution = EscalationExecution(
        organization_id=attendance.organization_id,
        attendance_record_id=attendance.id,
        staff_id=attendance.staff_id,
        policy_id=policy.id,
        policy_snapshot=snapshot.to_stored(),
        current_stage=0,
        attempts_in_stage=0,
        status=ExecutionStatus.PENDING,
        version=0,
        started_at=now,
        next_attempt_at=now,
    )
    db.add(execution)

    try:
        await db.flush()
        await _mirror_attendance(db, attendance_id, ExecutionStatus.PENDING)
        await db.commit()
    except IntegrityError:
        # Another sweep created it first
        await db.rollback()
        logger.debug(
            "Execution already exists for attendance record",
            attendance_record_id=str(attendance_id),
        )
        return None

    await db.refresh(execution)
    logger.info(
        "Created escalation execution",
        execution_id=str(execution.id),
        attendance_record_id=str(attendance_id),
        policy_id=str(policy.id),
        stages=snapshot.stage_count,
    )
    return execution


async def get_execution(
    db: AsyncSession,
    execution_id: uuid.UUID,
) -> EscalationExecution:
    """Load an execution with fresh state from the database.

    Raises:
        ExecutionNotFound: If the id does not exist.
    """
    result = await db.execute(
        select(EscalationExecution)
        .where(EscalationExecution.id == execution_id)
        .execution_options(populate_existing=True)
    )
    execution = result.scalar_one_or_none()
    if execution is None:
        raise ExecutionNotFound(execution_id)
    return execution


async def get_execution_for_attendance(
    db: AsyncSession,
    attendance_record_id: uuid.UUID,
) -> EscalationExecution | None:
    result = await db.execute(
        select(EscalationExecution)
        .where(EscalationExecution.attendance_record_id == attendance_record_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def _compare_and_set(
    db: AsyncSession,
    execution: EscalationExecution,
    values: dict[str, Any],
    mirror: ExecutionStatus | None = None,
    expected_version: int | None = None,
) -> bool:
    """Apply ``values`` if the row still has the version we read.

    Commits on success and refreshes ``execution``. On a lost race the
    session is rolled back, which expires every loaded instance; callers
    must reload by id before touching ORM state again.
    """
    execution_id = execution.id
    if expected_version is None:
        expected_version = execution.version
    attendance_record_id = execution.attendance_record_id

    result = await db.execute(
        update(EscalationExecution)
        .where(
            and_(
                EscalationExecution.id == execution_id,
                EscalationExecution.version == expected_version,
                EscalationExecution.status.in_(ACTIVE_STATUSES),
            )
        )
        .values(version=EscalationExecution.version + 1, **values)
        .execution_options(synchronize_session=False)
    )

    if result.rowcount != 1:
        await db.rollback()
        logger.debug(
            "Execution write lost compare-and-set",
            execution_id=str(execution_id),
            expected_version=expected_version,
        )
        return False

    if mirror is not None:
        await _mirror_attendance(db, attendance_record_id, mirror)

    await db.commit()
    await db.refresh(execution)
    return True


async def claim_attempt(
    db: AsyncSession,
    execution: EscalationExecution,
    stage: int,
    attempt: int,
    now: datetime,
) -> bool:
    """Claim the right to dispatch ``(stage, attempt)``.

    Records the intent on the row before any side effect happens, so a
    worker that dies mid-dispatch leaves a marker for reconciliation.

    Returns:
        True if this caller owns the attempt.
    """
    return await _compare_and_set(
        db,
        execution,
        {
            "inflight_stage": stage,
            "inflight_attempt": attempt,
            "last_attempt_at": now,
        },
    )


async def commit_attempt(
    db: AsyncSession,
    execution: EscalationExecution,
    *,
    status: ExecutionStatus,
    current_stage: int,
    attempts_in_stage: int,
    next_attempt_at: datetime | None,
    resolved_at: datetime | None = None,
    stopped_reason: str | None = None,
    expected_version: int | None = None,
) -> bool:
    """Apply the outcome of an attempt and clear the in-flight marker.

    ``expected_version`` is the version returned by the claim; the row
    must not have been written since.

    Returns:
        False if a concurrent write (usually a resolution) got there first.
    """
    return await _compare_and_set(
        db,
        execution,
        {
            "status": status,
            "current_stage": current_stage,
            "attempts_in_stage": attempts_in_stage,
            "next_attempt_at": next_attempt_at,
            "resolved_at": resolved_at,
            "stopped_reason": stopped_reason,
            "inflight_stage": None,
            "inflight_attempt": None,
        },
        mirror=status,
        expected_version=expected_version,
    )


async def defer_execution(
    db: AsyncSession,
    execution: EscalationExecution,
    until: datetime,
) -> bool:
    """Push the next attempt out to ``until`` without dispatching."""
    return await _compare_and_set(db, execution, {"next_attempt_at": until})


async def resolve_execution(
    db: AsyncSession,
    execution: EscalationExecution,
    resolved_via: str,
    now: datetime,
    stopped_reason: str | None = None,
) -> bool:
    """Mark an active execution resolved.

    The caller may have staged other changes (the responded log entry)
    on the session; they are committed together with the resolution.
    """
    return await _compare_and_set(
        db,
        execution,
        {
            "status": ExecutionStatus.RESOLVED,
            "resolved_at": now,
            "resolved_via": resolved_via,
            "stopped_reason": stopped_reason,
            "next_attempt_at": None,
            "inflight_stage": None,
            "inflight_attempt": None,
        },
        mirror=ExecutionStatus.RESOLVED,
    )


async def list_due_execution_ids(
    db: AsyncSession,
    now: datetime,
    claim_timeout_seconds: int,
    limit: int,
) -> list[uuid.UUID]:
    """Ids of active executions whose next attempt is due.

    Executions with a live claim are skipped; claims older than the
    timeout are returned so the executor can reconcile them.
    """
    stale_before = now - timedelta(seconds=claim_timeout_seconds)
    result = await db.execute(
        select(EscalationExecution.id)
        .where(
            and_(
                EscalationExecution.status.in_(ACTIVE_STATUSES),
                EscalationExecution.next_attempt_at <= now,
                or_(
                    EscalationExecution.inflight_stage.is_(None),
                    EscalationExecution.last_attempt_at <= stale_before,
                ),
            )
        )
        .order_by(EscalationExecution.next_attempt_at)
        .limit(limit)
    )
    return list(result.scalars().all())


async def list_overdue_attendance(
    db: AsyncSession,
    now: datetime,
    limit: int,
) -> list[AttendanceRecord]:
    """Attendance records past their expected check-in plus grace.

    Only records with no clock-in, no execution and no recorded
    configuration error are returned. The grace period is part of the
    WHERE clause, so records still inside a long grace window never take
    a batch slot from records that are due.
    """
    grace = func.coalesce(Staff.escalation_grace_minutes, 0)
    grace_values = (
        await db.execute(select(grace).where(Staff.is_active.is_(True)).distinct())
    ).scalars().all()
    if not grace_values:
        return []

    # One cutoff per distinct grace value keeps the comparison dialect-neutral
    past_grace = or_(
        *(
            and_(
                grace == minutes,
                AttendanceRecord.expected_clock_in_at <= now - timedelta(minutes=minutes),
            )
            for minutes in grace_values
        )
    )

    result = await db.execute(
        select(AttendanceRecord)
        .join(Staff, Staff.id == AttendanceRecord.staff_id)
        .where(
            and_(
                AttendanceRecord.status == AttendanceStatus.PENDING,
                AttendanceRecord.clock_in_at.is_(None),
                AttendanceRecord.escalation_status == EscalationStatus.NONE,
                Staff.is_active.is_(True),
                past_grace,
                ~exists().where(
                    EscalationExecution.attendance_record_id == AttendanceRecord.id
                ),
            )
        )
        .order_by(AttendanceRecord.expected_clock_in_at, AttendanceRecord.id)
        .limit(limit)
    )
    return list(result.scalars().all())


async def mark_config_error(db: AsyncSession, attendance_record_id: uuid.UUID) -> None:
    """Flag an attendance record whose escalation could not be configured.

    The sweep skips flagged records, so a missing policy is reported once
    instead of on every pass. Resetting ``escalation_status`` to ``none``
    re-arms the record.
    """
    await db.execute(
        update(AttendanceRecord)
        .where(
            and_(
                AttendanceRecord.id == attendance_record_id,
                AttendanceRecord.escalation_status == EscalationStatus.NONE,
            )
        )
        .values(escalation_status=EscalationStatus.CONFIG_ERROR)
        .execution_options(synchronize_session=False)
    )
    await db.commit()
