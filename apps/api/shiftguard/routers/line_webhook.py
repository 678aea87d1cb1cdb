"""LINE webhook router."""

import json
import uuid
from typing import Any

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from shiftguard.database import get_db
from shiftguard.integrations.line import verify_line_signature
from shiftguard.logging_config import get_logger
from shiftguard.models.organization import Organization
from shiftguard.services.channels import credentials_for_organization
from shiftguard.services.line_webhook import handle_events

logger = get_logger(__name__)

router = APIRouter(prefix="/api/line", tags=["line"])


@router.post("/webhook")
async def line_webhook(
    request: Request,
    org_id: uuid.UUID | None = Query(None, alias="orgId"),
    x_line_signature: str | None = Header(None),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    """Receive LINE bot events for one organization.

    The request body must be signed with the organization's channel secret.
    """
    if org_id is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Missing orgId parameter",
        )
    if not x_line_signature:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="No signature",
        )

    organization = await db.get(Organization, org_id)
    if organization is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Organization not found",
        )

    body = await request.body()
    credentials = credentials_for_organization(organization)
    if not verify_line_signature(body, x_line_signature, credentials.line_channel_secret):
        logger.warning("Rejected LINE webhook signature", organization_id=str(org_id))
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid signature",
        )

    try:
        payload = json.loads(body)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid JSON body",
        )

    events = (payload.get("events") or []) if isinstance(payload, dict) else []
    clock_ins = await handle_events(db, organization, events)
    return {"success": True, "clock_ins": clock_ins}
