"""Escalation policy resolution.

Picks the single active policy that governs a staff member's escalations.
Inactive (soft-deleted) policies are filtered on every read.
"""

import uuid

from sqlalchemy import and_, select
from sqlalchemy.ext.asyncio import AsyncSession

from shiftguard.config import settings
from shiftguard.logging_config import get_logger
from shiftguard.models.escalation_policy import EscalationPolicy
from shiftguard.models.staff import Staff

logger = get_logger(__name__)


class PolicyNotConfigured(Exception):
    """Raised when no active policy applies to an organization or staff."""

    def __init__(self, organization_id: uuid.UUID, staff_id: uuid.UUID | None = None):
        self.organization_id = organization_id
        self.staff_id = staff_id
        super().__init__(
            f"No active escalation policy for organization {organization_id}"
        )


def _active_policies(organization_id: uuid.UUID):
    return select(EscalationPolicy).where(
        and_(
            EscalationPolicy.organization_id == organization_id,
            EscalationPolicy.is_active.is_(True),
        )
    )


def _newest_first(query):
    return query.order_by(
        EscalationPolicy.created_at.desc(),
        EscalationPolicy.id.desc(),
    )


def _warn_if_below_sweep_interval(policy: EscalationPolicy) -> None:
    delays = [
        stage.get("delay_minutes", 0)
        for stage in (policy.stages or [])
        if isinstance(stage, dict)
    ]
    if not delays:
        return
    if min(delays) * 60 < settings.escalation_sweep_interval_seconds:
        logger.warning(
            "Policy stage delay is shorter than the sweep interval",
            policy_id=str(policy.id),
            min_delay_minutes=min(delays),
            sweep_interval_seconds=settings.escalation_sweep_interval_seconds,
        )


async def _staff_bound_policy(
    db: AsyncSession,
    organization_id: uuid.UUID,
    staff_id: uuid.UUID,
) -> EscalationPolicy | None:
    staff = await db.get(Staff, staff_id)
    if staff is None or staff.organization_id != organization_id:
        return None

    if staff.escalation_policy_id is not None:
        result = await db.execute(
            _active_policies(organization_id).where(
                EscalationPolicy.id == staff.escalation_policy_id
            )
        )
        policy = result.scalar_one_or_none()
        if policy is not None:
            return policy
        logger.debug(
            "Assigned policy is inactive or missing, falling back",
            staff_id=str(staff_id),
            policy_id=str(staff.escalation_policy_id),
        )

    result = await db.execute(
        _newest_first(
            _active_policies(organization_id).where(
                EscalationPolicy.staff_role == staff.role
            )
        ).limit(1)
    )
    return result.scalar_one_or_none()


async def resolve_policy(
    db: AsyncSession,
    organization_id: uuid.UUID,
    staff_id: uuid.UUID | None = None,
) -> EscalationPolicy:
    """Return the active policy for an organization and optional staff member.

    Order: the staff member's assigned policy, then an active policy bound
    to the staff member's role, then the organization's default. When
    several defaults are active the newest wins and a warning is logged.

    Args:
        db: Database session.
        organization_id: Organization's UUID.
        staff_id: Optional staff UUID for staff-bound policies.

    Returns:
        The single governing EscalationPolicy.

    Raises:
        PolicyNotConfigured: If no active policy applies.
    """
    if staff_id is not None:
        policy = await _staff_bound_policy(db, organization_id, staff_id)
        if policy is not None:
            _warn_if_below_sweep_interval(policy)
            return policy

    result = await db.execute(
        _newest_first(
            _active_policies(organization_id).where(
                EscalationPolicy.is_default.is_(True)
            )
        )
    )
    defaults = list(result.scalars().all())

    if not defaults:
        raise PolicyNotConfigured(organization_id, staff_id)

    if len(defaults) > 1:
        logger.warning(
            "Multiple active default policies, using the newest",
            organization_id=str(organization_id),
            policy_ids=[str(p.id) for p in defaults],
        )

    policy = defaults[0]
    _warn_if_below_sweep_interval(policy)
    return policy


async def list_active_policies(
    db: AsyncSession,
    organization_id: uuid.UUID,
) -> list[EscalationPolicy]:
    """List an organization's active policies, newest first."""
    result = await db.execute(_newest_first(_active_policies(organization_id)))
    return list(result.scalars().all())
