"""Escalation policy model.

Organization-scoped, authored by the policy CRUD collaborator. The engine
only reads active policies and snapshots them into each execution.
"""

import uuid
from typing import Any

from sqlalchemy import Boolean, ForeignKey, Integer, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from shiftguard.models.base import Base, JSONType, TimestampMixin


class EscalationPolicy(Base, TimestampMixin):
    """Ordered notification stages with a per-stage retry budget.

    ``stages`` is a list of ``{"channel", "delay_minutes", "template_key"}``
    dicts; list position is the stage index referenced by executions and
    notification logs. Deletion is soft (``is_active=False``).
    """

    __tablename__ = "escalation_policies"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )

    organization_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    name: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
    )

    is_default: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
    )

    is_active: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
    )

    # Staff role this policy is bound to, if any
    staff_role: Mapped[str | None] = mapped_column(
        String(50),
        nullable=True,
    )

    stages: Mapped[list[dict[str, Any]]] = mapped_column(
        JSONType,
        nullable=False,
        default=list,
    )

    # Dispatch attempts per stage before advancing
    max_retries: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=1,
    )

    # {"start": "HH:MM", "end": "HH:MM"} in organization-local time
    active_time_range: Mapped[dict[str, str] | None] = mapped_column(
        JSONType,
        nullable=True,
    )

    def __repr__(self) -> str:
        return (
            f"<EscalationPolicy(name={self.name!r}, stages={len(self.stages)}, "
            f"max_retries={self.max_retries}, default={self.is_default})>"
        )
