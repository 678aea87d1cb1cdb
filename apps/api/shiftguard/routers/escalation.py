"""Escalation router.

Event intake from the attendance system, resolution, and read-only views
of escalation status, the notification log and active policies.
"""

import uuid

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from shiftguard.database import get_db
from shiftguard.logging_config import get_logger
from shiftguard.models.attendance import AttendanceRecord
from shiftguard.schemas.escalation import (
    ClockInEventRequest,
    EscalationStatusResponse,
    ExecutionResponse,
    NotificationLogPage,
    NotificationLogResponse,
    ResolutionResponse,
    ResolveExecutionRequest,
)
from shiftguard.schemas.escalation_policy import PolicyListResponse, PolicyResponse
from shiftguard.services import execution_store
from shiftguard.services.execution_store import ExecutionNotFound
from shiftguard.services.notification_log_writer import list_notification_logs
from shiftguard.services.policy_resolver import (
    PolicyNotConfigured,
    list_active_policies,
    resolve_policy,
)
from shiftguard.services.response_correlation import (
    AttendanceRecordNotFound,
    ResolutionConflict,
    resolve,
    resolve_for_attendance,
)

logger = get_logger(__name__)

router = APIRouter(prefix="/api/escalation", tags=["escalation"])


@router.post("/events/clock-in", response_model=EscalationStatusResponse)
async def clock_in_event(
    request: ClockInEventRequest,
    db: AsyncSession = Depends(get_db),
) -> EscalationStatusResponse:
    """Report a clock-in (or response) for an attendance record.

    Stops any running escalation for the record. Safe to repeat.
    """
    try:
        execution = await resolve_for_attendance(
            db, request.attendance_record_id, request.resolved_via
        )
    except AttendanceRecordNotFound:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Attendance record not found",
        )
    except ResolutionConflict:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Escalation is being updated concurrently, retry",
        )

    attendance = await db.get(AttendanceRecord, request.attendance_record_id)
    await db.refresh(attendance)
    return EscalationStatusResponse(
        attendance_record_id=attendance.id,
        escalation_status=attendance.escalation_status,
        execution=ExecutionResponse.model_validate(execution) if execution else None,
    )


@router.post("/executions/{execution_id}/resolve", response_model=ResolutionResponse)
async def resolve_execution(
    execution_id: uuid.UUID,
    request: ResolveExecutionRequest,
    db: AsyncSession = Depends(get_db),
) -> ResolutionResponse:
    """Resolve an execution directly, e.g. from a channel reply."""
    try:
        execution, changed = await resolve(db, execution_id, request.resolved_via)
    except ExecutionNotFound:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Escalation execution not found",
        )
    except ResolutionConflict:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Escalation is being updated concurrently, retry",
        )

    return ResolutionResponse(
        execution=ExecutionResponse.model_validate(execution),
        changed=changed,
    )


@router.get(
    "/attendance/{attendance_record_id}/status",
    response_model=EscalationStatusResponse,
)
async def get_escalation_status(
    attendance_record_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
) -> EscalationStatusResponse:
    """Escalation status for one attendance record."""
    attendance = await db.get(AttendanceRecord, attendance_record_id)
    if attendance is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Attendance record not found",
        )

    execution = await execution_store.get_execution_for_attendance(
        db, attendance_record_id
    )
    return EscalationStatusResponse(
        attendance_record_id=attendance.id,
        escalation_status=attendance.escalation_status,
        execution=ExecutionResponse.model_validate(execution) if execution else None,
    )


@router.get("/notifications", response_model=NotificationLogPage)
async def get_notification_log(
    organization_id: uuid.UUID,
    page: int = Query(1, ge=1, description="Page number"),
    page_size: int = Query(20, ge=1, le=100, description="Items per page"),
    db: AsyncSession = Depends(get_db),
) -> NotificationLogPage:
    """Paginated notification log for an organization, newest first."""
    entries, total, total_pages = await list_notification_logs(
        db, organization_id, page=page, page_size=page_size
    )
    return NotificationLogPage(
        items=[NotificationLogResponse.model_validate(entry) for entry in entries],
        total=total,
        page=page,
        page_size=page_size,
        total_pages=total_pages,
    )


@router.get("/policies", response_model=PolicyListResponse)
async def get_active_policies(
    organization_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
) -> PolicyListResponse:
    """Active escalation policies for an organization."""
    policies = await list_active_policies(db, organization_id)
    return PolicyListResponse(
        policies=[PolicyResponse.model_validate(p) for p in policies],
        total=len(policies),
    )


@router.get("/policies/effective", response_model=PolicyResponse)
async def get_effective_policy(
    organization_id: uuid.UUID,
    staff_id: uuid.UUID | None = None,
    db: AsyncSession = Depends(get_db),
) -> PolicyResponse:
    """The policy that would govern a new escalation for this staff member."""
    try:
        policy = await resolve_policy(db, organization_id, staff_id)
    except PolicyNotConfigured as e:
        logger.error(
            "Escalation policy configuration error",
            operator_alert=True,
            organization_id=str(organization_id),
            error=str(e),
        )
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="No active escalation policy configured",
        )
    return PolicyResponse.model_validate(policy)
