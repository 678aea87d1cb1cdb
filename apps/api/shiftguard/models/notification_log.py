"""Notification log model.

Append-only audit trail: one row per dispatch attempt. The only mutation
ever applied is ``status -> responded`` when a reply or clock-in is
correlated to the entry.
"""

import enum
import uuid
from datetime import datetime

from sqlalchemy import Enum, ForeignKey, Integer, String, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from shiftguard.models.base import Base, UTCDateTime, utcnow


class ChannelType(str, enum.Enum):
    """Notification transport."""

    PUSH = "push"
    SMS = "sms"
    VOICE = "voice"


class NotificationStatus(str, enum.Enum):
    """Outcome of a dispatch attempt."""

    SENT = "sent"
    FAILED = "failed"
    RESPONDED = "responded"


class NotificationLog(Base):
    """Records a single dispatch attempt for an escalation execution.

    The unique constraint on (execution_id, stage, attempt) makes the
    write idempotent when an interrupted attempt is reconciled.
    """

    __tablename__ = "notification_logs"
    __table_args__ = (
        UniqueConstraint(
            "execution_id",
            "stage",
            "attempt",
            name="uq_notification_logs_execution_stage_attempt",
        ),
    )

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

    execution_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("escalation_executions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    attendance_record_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("attendance_records.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    staff_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("staffs.id", ondelete="CASCADE"),
        nullable=False,
    )

    type: Mapped[ChannelType] = mapped_column(
        Enum(
            ChannelType,
            name="channeltype",
            native_enum=False,
            length=10,
            values_callable=lambda e: [member.value for member in e],
        ),
        nullable=False,
    )

    stage: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
    )

    # 1-based attempt number within the stage
    attempt: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
    )

    recipient: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
    )

    message: Mapped[str] = mapped_column(
        Text,
        nullable=False,
    )

    status: Mapped[NotificationStatus] = mapped_column(
        Enum(
            NotificationStatus,
            name="notificationstatus",
            native_enum=False,
            length=20,
            values_callable=lambda e: [member.value for member in e],
        ),
        nullable=False,
    )

    provider_message_id: Mapped[str | None] = mapped_column(
        String(128),
        nullable=True,
    )

    error_message: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )

    sent_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        nullable=False,
        default=utcnow,
    )

    responded_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime(),
        nullable=True,
    )

    def __repr__(self) -> str:
        return (
            f"<NotificationLog(type={self.type.value}, stage={self.stage}, "
            f"attempt={self.attempt}, status={self.status.value})>"
        )
