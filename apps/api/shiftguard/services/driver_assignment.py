"""Driver assignment notifier.

Sends a single push message to the staff member assigned as driver for a
shift. No stages, retries or execution state: the result is returned to
the caller and never raised.
"""

import uuid
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession

from shiftguard.logging_config import get_logger
from shiftguard.models.notification_log import ChannelType
from shiftguard.models.organization import Organization
from shiftguard.models.shift import Shift
from shiftguard.models.staff import Staff
from shiftguard.services.message_templates import MessageContext, render_message
from shiftguard.services.stage_executor import RegistryFactory, default_registry_factory

logger = get_logger(__name__)


@dataclass(frozen=True)
class DriverAssignmentResult:
    success: bool
    skipped: bool = False
    not_found: bool = False
    reason: str | None = None
    provider_message_id: str | None = None


async def notify_driver_assignment(
    db: AsyncSession,
    organization_id: uuid.UUID,
    shift_id: uuid.UUID,
    registry_factory: RegistryFactory = default_registry_factory,
) -> DriverAssignmentResult:
    """Tell the assigned driver about a shift.

    Succeeds without sending when the shift has no staff driver or the
    driver has no push address.

    Args:
        db: Database session.
        organization_id: Organization the shift belongs to.
        shift_id: Shift whose driver changed.
        registry_factory: Builds the channel registry for the organization.

    Returns:
        DriverAssignmentResult.
    """
    try:
        shift = await db.get(Shift, shift_id)
        if shift is None or shift.organization_id != organization_id:
            return DriverAssignmentResult(success=False, not_found=True, reason="Shift not found")

        if shift.driver_staff_id is None:
            return DriverAssignmentResult(
                success=True, skipped=True, reason="No driver assigned"
            )

        staff = await db.get(Staff, shift.driver_staff_id)
        if staff is None:
            return DriverAssignmentResult(
                success=False, not_found=True, reason="Assigned staff not found"
            )

        if not staff.line_user_id:
            logger.info(
                "Driver has no LINE user id, skipping notification",
                staff_id=str(staff.id),
            )
            return DriverAssignmentResult(
                success=True, skipped=True, reason="Driver has no push address"
            )

        organization = await db.get(Organization, organization_id)
        message = render_message(
            "driver_assignment",
            MessageContext(
                staff_name=staff.name,
                work_name=shift.work_name,
                shift_date=shift.date,
                start_time=shift.start_time,
                end_time=shift.end_time,
            ),
        )
        registry = registry_factory(organization)
        result = await registry.send(ChannelType.PUSH, staff.line_user_id, message)
    except Exception as e:
        logger.exception(
            "Driver assignment notification error",
            shift_id=str(shift_id),
        )
        return DriverAssignmentResult(success=False, reason=str(e))

    if not result.success:
        logger.warning(
            "Driver assignment notification failed",
            shift_id=str(shift_id),
            error=result.error,
        )
        return DriverAssignmentResult(success=False, reason=result.error)

    logger.info(
        "Driver assignment notification sent",
        shift_id=str(shift_id),
        staff_id=str(staff.id),
    )
    return DriverAssignmentResult(
        success=True, provider_message_id=result.provider_message_id
    )
