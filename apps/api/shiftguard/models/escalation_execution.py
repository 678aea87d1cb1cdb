"""Escalation execution model.

Runtime state machine instance for one attendance event. Every write goes
through a compare-and-set on ``version`` so concurrent sweeps, engine
instances and resolution events never interleave on the same row.
"""

import enum
import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import Enum, ForeignKey, Integer, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from shiftguard.models.base import Base, JSONType, TimestampMixin, UTCDateTime, utcnow


class ExecutionStatus(str, enum.Enum):
    """Lifecycle state of an escalation execution."""

    PENDING = "pending"
    ESCALATING = "escalating"
    RESOLVED = "resolved"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (ExecutionStatus.RESOLVED, ExecutionStatus.FAILED)


ACTIVE_STATUSES = (ExecutionStatus.PENDING, ExecutionStatus.ESCALATING)


class EscalationExecution(Base, TimestampMixin):
    """Tracks one missed check-in through the stages of its policy.

    ``policy_snapshot`` is captured at creation; later edits or soft
    deletion of the live policy never reshape an execution in flight.
    ``inflight_stage``/``inflight_attempt`` record the attempt a worker has
    claimed but not yet committed, which is what crash recovery reconciles
    against the notification log.
    """

    __tablename__ = "escalation_executions"

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

    # One execution per attendance event
    attendance_record_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("attendance_records.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )

    staff_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("staffs.id", ondelete="CASCADE"),
        nullable=False,
    )

    policy_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("escalation_policies.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    policy_snapshot: Mapped[dict[str, Any]] = mapped_column(
        JSONType,
        nullable=False,
    )

    current_stage: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
    )

    attempts_in_stage: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
    )

    status: Mapped[ExecutionStatus] = mapped_column(
        Enum(
            ExecutionStatus,
            name="executionstatus",
            native_enum=False,
            length=20,
            values_callable=lambda e: [member.value for member in e],
        ),
        nullable=False,
        default=ExecutionStatus.PENDING,
        index=True,
    )

    # Compare-and-set token, bumped on every write
    version: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
    )

    inflight_stage: Mapped[int | None] = mapped_column(
        Integer,
        nullable=True,
    )

    inflight_attempt: Mapped[int | None] = mapped_column(
        Integer,
        nullable=True,
    )

    started_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        nullable=False,
        default=utcnow,
    )

    last_attempt_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime(),
        nullable=True,
    )

    next_attempt_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime(),
        nullable=True,
        index=True,
    )

    resolved_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime(),
        nullable=True,
    )

    # "clock_in" or the channel the staff replied on
    resolved_via: Mapped[str | None] = mapped_column(
        String(20),
        nullable=True,
    )

    stopped_reason: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
    )

    def __repr__(self) -> str:
        return (
            f"<EscalationExecution(attendance={self.attendance_record_id}, "
            f"stage={self.current_stage}, attempts={self.attempts_in_stage}, "
            f"status={self.status.value}, v={self.version})>"
        )
