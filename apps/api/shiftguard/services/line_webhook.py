"""LINE webhook event handling.

Postback ``clock_in`` events from the rich menu mark the staff member's
attendance present and resolve any running escalation via push.
"""

import json
import uuid
from datetime import date, datetime
from typing import Any

from sqlalchemy import and_, select
from sqlalchemy.ext.asyncio import AsyncSession

from shiftguard.logging_config import get_logger
from shiftguard.models.attendance import AttendanceRecord, AttendanceStatus
from shiftguard.models.base import utcnow
from shiftguard.models.notification_log import ChannelType
from shiftguard.models.organization import Organization
from shiftguard.models.staff import Staff
from shiftguard.services.message_templates import MessageContext, render_message
from shiftguard.services.response_correlation import record_clock_in, resolve_for_attendance
from shiftguard.services.stage_executor import (
    RegistryFactory,
    default_registry_factory,
    organization_timezone,
)

logger = get_logger(__name__)


def parse_postback_data(data: str | None) -> dict[str, Any]:
    """Postback data is JSON from the rich menu; anything else is ignored."""
    if not data:
        return {}
    try:
        parsed = json.loads(data)
    except ValueError:
        return {}
    return parsed if isinstance(parsed, dict) else {}


async def _find_staff(
    db: AsyncSession,
    organization_id: uuid.UUID,
    line_user_id: str,
) -> Staff | None:
    result = await db.execute(
        select(Staff)
        .where(
            and_(
                Staff.organization_id == organization_id,
                Staff.line_user_id == line_user_id,
            )
        )
        .limit(1)
    )
    return result.scalar_one_or_none()


async def _find_attendance(
    db: AsyncSession,
    staff: Staff,
    local_date: date,
    attendance_record_id: uuid.UUID | None,
) -> AttendanceRecord | None:
    if attendance_record_id is not None:
        attendance = await db.get(AttendanceRecord, attendance_record_id)
        if attendance is not None and attendance.staff_id == staff.id:
            return attendance
        return None

    result = await db.execute(
        select(AttendanceRecord)
        .where(
            and_(
                AttendanceRecord.staff_id == staff.id,
                AttendanceRecord.date == local_date,
                AttendanceRecord.status == AttendanceStatus.PENDING,
            )
        )
        .order_by(AttendanceRecord.expected_clock_in_at)
        .limit(1)
    )
    return result.scalar_one_or_none()


async def handle_clock_in(
    db: AsyncSession,
    organization: Organization,
    line_user_id: str,
    postback: dict[str, Any],
    now: datetime,
    registry_factory: RegistryFactory = default_registry_factory,
) -> AttendanceRecord | None:
    """Record a clock-in pressed from LINE.

    Returns:
        The attendance record that was clocked in, or None if no matching
        staff member or pending record was found.
    """
    staff = await _find_staff(db, organization.id, line_user_id)
    if staff is None:
        logger.warning(
            "Clock-in from unknown LINE user",
            organization_id=str(organization.id),
        )
        return None

    raw_record_id = postback.get("attendanceRecordId")
    try:
        record_id = uuid.UUID(raw_record_id) if raw_record_id else None
    except ValueError:
        record_id = None

    local_date = now.astimezone(organization_timezone(organization)).date()
    attendance = await _find_attendance(db, staff, local_date, record_id)
    if attendance is None:
        logger.warning(
            "No pending attendance record for clock-in",
            staff_id=str(staff.id),
            date=local_date.isoformat(),
        )
        return None

    # Resolution may roll the session back; read everything needed up front
    attendance_id = attendance.id
    staff_id = staff.id
    confirmation = render_message(
        "clock_in_confirmed", MessageContext(staff_name=staff.name)
    )
    registry = registry_factory(organization)

    await record_clock_in(db, attendance, now)
    await resolve_for_attendance(db, attendance_id, ChannelType.PUSH.value, now)

    result = await registry.send(ChannelType.PUSH, line_user_id, confirmation)
    if not result.success:
        logger.warning(
            "Clock-in confirmation not delivered",
            staff_id=str(staff_id),
            error=result.error,
        )

    logger.info(
        "Clock-in recorded from LINE",
        staff_id=str(staff_id),
        attendance_record_id=str(attendance_id),
    )
    return attendance


async def handle_events(
    db: AsyncSession,
    organization: Organization,
    events: list[dict[str, Any]],
    now: datetime | None = None,
    registry_factory: RegistryFactory = default_registry_factory,
) -> int:
    """Process a batch of webhook events.

    A failing event is logged and does not stop the rest of the batch.

    Returns:
        Number of clock-ins recorded.
    """
    now = now or utcnow()
    organization_id = organization.id
    clock_ins = 0

    for event in events:
        if event.get("type") != "postback":
            logger.debug("Ignoring LINE event", event_type=event.get("type"))
            continue

        postback = parse_postback_data((event.get("postback") or {}).get("data"))
        line_user_id = (event.get("source") or {}).get("userId")
        if postback.get("action") != "clock_in" or not line_user_id:
            logger.debug("Ignoring LINE postback", action=postback.get("action"))
            continue

        try:
            attendance = await handle_clock_in(
                db, organization, line_user_id, postback, now, registry_factory
            )
        except Exception as e:
            await db.rollback()
            logger.error(
                "LINE clock-in handling failed",
                organization_id=str(organization_id),
                error=str(e),
            )
            await db.refresh(organization)
            continue

        if attendance is not None:
            clock_ins += 1

    return clock_ins
