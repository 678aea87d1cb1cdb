"""Driver assignment notification router."""

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from shiftguard.database import get_db
from shiftguard.schemas.escalation import DriverAssignmentRequest, DriverAssignmentResponse
from shiftguard.services.driver_assignment import notify_driver_assignment

router = APIRouter(prefix="/api", tags=["driver-assignment"])


@router.post("/notify-driver-assignment", response_model=DriverAssignmentResponse)
async def notify_driver(
    request: DriverAssignmentRequest,
    db: AsyncSession = Depends(get_db),
) -> DriverAssignmentResponse:
    """Push a one-off assignment message to the shift's driver."""
    result = await notify_driver_assignment(db, request.organization_id, request.shift_id)

    if not result.success:
        if result.not_found:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail=result.reason,
            )
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=result.reason or "Notification failed",
        )

    return DriverAssignmentResponse(
        success=True,
        skipped=result.skipped,
        reason=result.reason,
        provider_message_id=result.provider_message_id,
    )
