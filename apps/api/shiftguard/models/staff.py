"""Staff model.

Owned by the staff directory. The engine reads contact addresses per
channel and the optional policy binding for the staff member.
"""

import uuid

from sqlalchemy import Boolean, ForeignKey, Integer, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from shiftguard.models.base import Base, TimestampMixin


class Staff(Base, TimestampMixin):
    """A staff member who is expected to clock in for shifts."""

    __tablename__ = "staffs"

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

    role: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        default="staff",
    )

    # Push channel address (LINE user id)
    line_user_id: Mapped[str | None] = mapped_column(
        String(64),
        nullable=True,
    )

    # SMS / voice channel address, E.164
    phone_number: Mapped[str | None] = mapped_column(
        String(32),
        nullable=True,
    )

    is_active: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
    )

    # Minutes past the expected check-in before escalation starts
    escalation_grace_minutes: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
    )

    # Explicit assignment binding; overrides role and default policies
    escalation_policy_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("escalation_policies.id", ondelete="SET NULL"),
        nullable=True,
    )

    def __repr__(self) -> str:
        return f"<Staff(name={self.name!r}, role={self.role})>"
