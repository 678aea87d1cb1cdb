"""Attendance record model.

One row per staff member per shift. The attendance collaborator owns the
clock-in fields; ``escalation_status`` is written only by the escalation
engine and mirrors the execution status for display.
"""

import enum
import uuid
from datetime import date, datetime

from sqlalchemy import Date, Enum, ForeignKey, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from shiftguard.models.base import Base, TimestampMixin, UTCDateTime


class AttendanceStatus(str, enum.Enum):
    """Attendance state reported by the attendance collaborator."""

    PENDING = "pending"
    PRESENT = "present"
    ABSENT = "absent"
    LATE = "late"
    EARLY_LEAVE = "early_leave"


class EscalationStatus(str, enum.Enum):
    """Escalation state mirrored onto the attendance record."""

    NONE = "none"
    ESCALATING = "escalating"
    RESOLVED = "resolved"
    FAILED = "failed"
    # No policy could be resolved; the sweep does not pick the record up again
    CONFIG_ERROR = "config_error"


class AttendanceRecord(Base, TimestampMixin):
    """Expected check-in for one staff member on one shift."""

    __tablename__ = "attendance_records"

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

    shift_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("shifts.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    staff_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("staffs.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    date: Mapped[date] = mapped_column(
        Date,
        nullable=False,
    )

    expected_clock_in_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        nullable=False,
        index=True,
    )

    clock_in_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime(),
        nullable=True,
    )

    status: Mapped[AttendanceStatus] = mapped_column(
        Enum(
            AttendanceStatus,
            name="attendancestatus",
            native_enum=False,
            length=20,
            values_callable=lambda e: [member.value for member in e],
        ),
        nullable=False,
        default=AttendanceStatus.PENDING,
    )

    escalation_status: Mapped[EscalationStatus] = mapped_column(
        Enum(
            EscalationStatus,
            name="escalationstatus",
            native_enum=False,
            length=20,
            values_callable=lambda e: [member.value for member in e],
        ),
        nullable=False,
        default=EscalationStatus.NONE,
    )

    def __repr__(self) -> str:
        return (
            f"<AttendanceRecord(staff={self.staff_id}, date={self.date}, "
            f"status={self.status.value}, escalation={self.escalation_status.value})>"
        )
